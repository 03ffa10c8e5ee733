"""Error kinds raised by the registry, orchestrator, and adapters."""


class IndexSyncError(Exception):
    """Base class for service errors. Carries an optional underlying cause."""

    def __init__(self, message: str, cause: Exception | None = None):
        super().__init__(message)
        self.message = message
        self.cause = cause


class NotFoundError(IndexSyncError):
    """Unknown index definition, task, or document."""


class DuplicateNameError(IndexSyncError):
    """An index definition with this name already exists."""


class InvalidSourceError(IndexSyncError):
    """Malformed source binding, or a binding that is not part of the index."""


class RebuildInProgressError(IndexSyncError):
    """A rebuild for this index is already pending or running."""

    def __init__(self, index_name: str, task_id: str):
        super().__init__(f"Another rebuild is already running for index {index_name!r} (task {task_id})")
        self.index_name = index_name
        self.task_id = task_id


class RepositoryError(IndexSyncError):
    """An adapter call failed in a way that retrying will not fix."""

    retryable = False


class AdapterConnectionError(RepositoryError):
    """Source or search engine unreachable. Retried with backoff before escalating."""

    retryable = True

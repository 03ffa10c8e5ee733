"""Id generation for indexed documents and rebuild tasks. Deterministic where required."""

import uuid


def indexed_document_id(database: str, collection: str, source_doc_id: str) -> str:
    """Target-index id for a source document. Stable across rebuilds and unique across sources."""
    return f"{database}:{collection}:{source_doc_id}"


def generate_uuid_prefix(prefix: str) -> str:
    """Generate a unique id with prefix, e.g. task_<uuid>."""
    return f"{prefix}_{uuid.uuid4().hex[:24]}"


def generate_task_id() -> str:
    """Generate a unique rebuild task id."""
    return generate_uuid_prefix("task")

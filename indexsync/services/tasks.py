"""
Task Tracker: runs rebuild work on background asyncio tasks and keeps pollable progress snapshots.

Each snapshot is a frozen RebuildTask. Progress is published by replacing the whole record in one
dict assignment, so concurrent readers never observe a half-applied update.
"""

import asyncio
from collections.abc import Awaitable, Callable
from datetime import datetime, timedelta

from indexsync.config.logging import get_logger
from indexsync.domain.errors import NotFoundError
from indexsync.domain.models import RebuildTask, TaskStatus
from indexsync.utils.time import utc_now

logger = get_logger(__name__)

SnapshotListener = Callable[[RebuildTask], None]


class TaskHandle:
    """Write access to one task's snapshot, handed to the work function."""

    def __init__(self, tracker: "TaskTracker", task_id: str):
        self._tracker = tracker
        self.task_id = task_id

    @property
    def snapshot(self) -> RebuildTask:
        return self._tracker._tasks[self.task_id]

    @property
    def cancel_requested(self) -> bool:
        return self.snapshot.cancel_requested

    def update(self, **changes) -> RebuildTask:
        """Swap in a copy of the current snapshot with changes applied. Terminal snapshots are final."""
        current = self.snapshot
        if current.is_terminal:
            raise RuntimeError(f"Task {self.task_id} is already {current.status.value}")
        return self._tracker._publish(current.model_copy(update=changes))

    def start(self, total_docs: int) -> RebuildTask:
        return self.update(status=TaskStatus.RUNNING, total_docs=total_docs)

    def complete(self) -> RebuildTask:
        return self.update(status=TaskStatus.COMPLETED, finished_at=self._tracker._clock())

    def fail(self, reason: str) -> RebuildTask:
        errors = self.snapshot.errors + (reason,)
        return self.update(status=TaskStatus.FAILED, errors=errors, finished_at=self._tracker._clock())


class TaskTracker:
    def __init__(self, ttl_seconds: float = 3600.0, clock: Callable[[], datetime] = utc_now):
        self._ttl = timedelta(seconds=ttl_seconds)
        self._clock = clock
        self._tasks: dict[str, RebuildTask] = {}
        self._running: dict[str, asyncio.Task] = {}
        self._listeners: list[SnapshotListener] = []

    def add_listener(self, listener: SnapshotListener) -> None:
        """Listener is called synchronously with every published snapshot."""
        self._listeners.append(listener)

    def _publish(self, snapshot: RebuildTask) -> RebuildTask:
        self._tasks[snapshot.task_id] = snapshot
        for listener in self._listeners:
            try:
                listener(snapshot)
            except Exception as e:
                logger.warning(
                    "Task listener failed",
                    extra={"task_id": snapshot.task_id, "error": str(e)},
                )
        return snapshot

    def submit(self, task: RebuildTask, work: Callable[[TaskHandle], Awaitable[None]]) -> str:
        """
        Register the pending snapshot and schedule work(handle) on its own asyncio task.
        Must be called from a running event loop. Returns immediately with the task id.
        """
        self.evict_expired()
        self._publish(task)
        handle = TaskHandle(self, task.task_id)
        runner = asyncio.create_task(self._run(handle, work), name=f"rebuild:{task.task_id}")
        self._running[task.task_id] = runner
        runner.add_done_callback(lambda _: self._running.pop(task.task_id, None))
        logger.info("Task submitted", extra={"task_id": task.task_id, "index_name": task.index_name})
        return task.task_id

    async def _run(self, handle: TaskHandle, work: Callable[[TaskHandle], Awaitable[None]]) -> None:
        try:
            await work(handle)
        except asyncio.CancelledError:
            if not handle.snapshot.is_terminal:
                handle.fail("Task cancelled at shutdown")
            raise
        except Exception as e:
            logger.exception("Task crashed", extra={"task_id": handle.task_id})
            if not handle.snapshot.is_terminal:
                handle.fail(f"Unexpected error: {e}")
            return
        if not handle.snapshot.is_terminal:
            handle.complete()

    def get_progress(self, task_id: str) -> RebuildTask:
        """Raises NotFoundError for unknown or evicted tasks."""
        self.evict_expired()
        task = self._tasks.get(task_id)
        if task is None:
            raise NotFoundError(f"Task {task_id!r} not found; it may have completed and been evicted")
        return task

    def list_tasks(self, index_name: str | None = None) -> list[RebuildTask]:
        self.evict_expired()
        tasks = [t for t in self._tasks.values() if index_name is None or t.index_name == index_name]
        return sorted(tasks, key=lambda t: t.started_at)

    def active_task(self, index_name: str) -> RebuildTask | None:
        """Pending or running task of this index that has not been asked to stop."""
        for task in self._tasks.values():
            if task.index_name == index_name and not task.is_terminal and not task.cancel_requested:
                return task
        return None

    def active_task_for_target(self, target_index_name: str) -> RebuildTask | None:
        """Pending or running task writing into this target, whichever definition started it."""
        for task in self._tasks.values():
            if task.target_index_name == target_index_name and not task.is_terminal:
                return task
        return None

    def request_cancel(self, task_id: str) -> RebuildTask:
        """Flag the task for cooperative cancellation. Terminal tasks are returned unchanged."""
        task = self.get_progress(task_id)
        if task.is_terminal or task.cancel_requested:
            return task
        logger.info("Task cancel requested", extra={"task_id": task_id})
        return self._publish(task.model_copy(update={"cancel_requested": True}))

    def evict_expired(self) -> int:
        now = self._clock()
        expired = [
            task_id
            for task_id, task in self._tasks.items()
            if task.is_terminal and task.finished_at is not None and now - task.finished_at >= self._ttl
        ]
        for task_id in expired:
            del self._tasks[task_id]
        if expired:
            logger.debug("Evicted finished tasks", extra={"count": len(expired)})
        return len(expired)

    def forget_index(self, index_name: str) -> int:
        """
        Drop finished tasks of a deleted index and ask its active one to stop. The stopped task
        expires normally. Returns the number of tasks dropped.
        """
        doomed = []
        for task_id, task in list(self._tasks.items()):
            if task.index_name != index_name:
                continue
            if task.is_terminal:
                doomed.append(task_id)
            else:
                self.request_cancel(task_id)
        for task_id in doomed:
            self._tasks.pop(task_id, None)
        return len(doomed)

    async def wait(self, task_id: str) -> RebuildTask:
        runner = self._running.get(task_id)
        if runner is not None:
            await asyncio.wait({runner})
        task = self._tasks.get(task_id)
        if task is None:
            raise NotFoundError(f"Task {task_id!r} not found")
        return task

    async def shutdown(self) -> None:
        runners = list(self._running.values())
        for runner in runners:
            runner.cancel()
        if runners:
            await asyncio.gather(*runners, return_exceptions=True)
            logger.info("Outstanding tasks cancelled", extra={"count": len(runners)})

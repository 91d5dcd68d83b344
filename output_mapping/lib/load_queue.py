"""Deferred table loads and the queue that runs them.

A ``LoadTableTask`` holds everything needed to import one table plus the
metadata writes to run once its import job succeeds. The queue submits all
tasks in order, then waits for each job in the same order.

Example:
    queue = LoadTableQueue([task_a, task_b])
    queue.start()
    job_ids = queue.wait_for_all()
"""

from __future__ import annotations

import logging
from enum import Enum
from typing import Any, Dict, List, Optional, Sequence

from output_mapping.lib.errors import InvalidOutputError, OutputMappingError, StorageApiError
from output_mapping.lib.metadata import MetadataDefinition
from output_mapping.lib.storage.base import JOB_STATUS_ERROR, StorageClient

logger = logging.getLogger(__name__)

__all__ = ["TaskState", "LoadTableTask", "LoadTableQueue"]


class TaskState(str, Enum):
    PENDING = "pending"
    RUNNING = "running"
    SUCCEEDED = "succeeded"
    FAILED = "failed"

    @property
    def is_terminal(self) -> bool:
        return self in (TaskState.SUCCEEDED, TaskState.FAILED)


class LoadTableTask:
    """One deferred import job into ``table_id``."""

    def __init__(self, client: StorageClient, table_id: str, options: Dict[str, Any]) -> None:
        self.client = client
        self.table_id = table_id
        self.options = dict(options)
        self.metadata: List[MetadataDefinition] = []
        self.state = TaskState.PENDING
        self.job_id: Optional[str] = None
        self.job_result: Optional[Dict[str, Any]] = None
        self.error: Optional[OutputMappingError] = None

    def add_metadata(self, definition: MetadataDefinition) -> None:
        self.metadata.append(definition)

    def start(self) -> Optional[str]:
        """Submit the import job without waiting for it.

        A rejected submission marks the task failed; the error is raised
        by ``LoadTableQueue.wait_for_all``.
        """
        if self.state != TaskState.PENDING:
            raise RuntimeError(f"Load of table {self.table_id} was already started")
        try:
            job = self.client.load_table_async(self.table_id, self.options)
        except StorageApiError as e:
            self._fail(e.message, e.code, e)
            return None
        self.job_id = str(job["id"])
        self.state = TaskState.RUNNING
        logger.info(
            "Submitted load of table %s as job %s", self.table_id, self.job_id, extra=self._log_context()
        )
        return self.job_id

    def wait(self) -> None:
        """Wait for the job, then run the metadata writes on success.

        Failures are recorded on the task, not raised.
        """
        if self.state != TaskState.RUNNING or self.job_id is None:
            return
        try:
            self.job_result = self.client.wait_for_job(self.job_id)
        except StorageApiError as e:
            self._fail(e.message, e.code, e)
            return

        if self.job_result.get("status") == JOB_STATUS_ERROR:
            error = self.job_result.get("error") or {}
            self._fail(error.get("message") or "Unknown error", 0, None)
            return

        try:
            for definition in self.metadata:
                definition.apply()
        except StorageApiError as e:
            # The data is loaded at this point; only the metadata is missing
            self._fail(f"Failed to write metadata: {e.message}", e.code, e)
            return

        self.state = TaskState.SUCCEEDED
        logger.info("Loaded table %s (job %s)", self.table_id, self.job_id, extra=self._log_context())

    def _fail(self, message: str, code: int, cause: Optional[BaseException]) -> None:
        self.state = TaskState.FAILED
        self.error = InvalidOutputError(f'Failed to load table "{self.table_id}": {message}', code)
        if cause is not None:
            self.error.__cause__ = cause
        logger.error(
            "Load of table %s (job %s) failed: %s",
            self.table_id,
            self.job_id,
            message,
            extra=self._log_context(),
        )

    def _log_context(self) -> Dict[str, Any]:
        return {"table_id": self.table_id, "job_id": self.job_id}

    def __repr__(self) -> str:
        return f"LoadTableTask({self.table_id!r}, state={self.state.value}, job_id={self.job_id!r})"


class LoadTableQueue:
    """Ordered collection of load tasks.

    Submission order equals the order of ``tasks``; ``wait_for_all`` returns
    job ids in that order too, regardless of completion order.
    """

    def __init__(self, tasks: Sequence[LoadTableTask]) -> None:
        self.tasks: List[LoadTableTask] = list(tasks)

    def start(self) -> None:
        """Submit every task; rejected submissions surface in ``wait_for_all``."""
        for task in self.tasks:
            task.start()
        failed = sum(1 for task in self.tasks if task.state == TaskState.FAILED)
        if failed:
            logger.warning("%d of %d load job(s) could not be submitted", failed, len(self.tasks))

    def wait_for_all(self) -> List[str]:
        """Block until every job is finished and return the job ids.

        Raises:
            InvalidOutputError: the first failure, with every failure in ``errors``
        """
        for task in self.tasks:
            task.wait()

        failures = [task.error for task in self.tasks if task.error is not None]
        if failures:
            first = failures[0]
            raise InvalidOutputError(first.message, first.code, errors=failures) from first.__cause__
        return [task.job_id for task in self.tasks if task.job_id is not None]

    @property
    def job_ids(self) -> List[str]:
        return [task.job_id for task in self.tasks if task.job_id is not None]

    @property
    def task_count(self) -> int:
        return len(self.tasks)

    def get_task(self, table_id: str) -> Optional[LoadTableTask]:
        for task in self.tasks:
            if task.table_id == table_id:
                return task
        return None

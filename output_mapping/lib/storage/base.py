"""Abstract base classes for the storage backend.

Defines the interface that the output mapping core consumes. All methods
may raise ``StorageApiError``; a ``code`` of 404 means "not found".
"""

from __future__ import annotations

import logging
from abc import ABC, abstractmethod
from typing import Any, Dict, List, Optional, Sequence

logger = logging.getLogger(__name__)

__all__ = [
    "StorageClient",
    "MetadataClient",
    "JOB_STATUS_SUCCESS",
    "JOB_STATUS_ERROR",
    "TERMINAL_JOB_STATUSES",
]

JOB_STATUS_SUCCESS = "success"
JOB_STATUS_ERROR = "error"
TERMINAL_JOB_STATUSES = frozenset({JOB_STATUS_SUCCESS, JOB_STATUS_ERROR})


class StorageClient(ABC):
    """Buckets, tables, files and jobs of the storage backend."""

    @abstractmethod
    def bucket_exists(self, bucket_id: str) -> bool:
        pass

    @abstractmethod
    def create_bucket(self, name: str, stage: str) -> str:
        """Create bucket ``<stage>.c-<name>`` and return its id."""
        pass

    @abstractmethod
    def table_exists(self, table_id: str) -> bool:
        pass

    @abstractmethod
    def get_table(self, table_id: str) -> Dict[str, Any]:
        """Return table detail; contains at least ``id`` and ``primaryKey``."""
        pass

    @abstractmethod
    def create_table_async(
        self,
        bucket_id: str,
        name: str,
        columns: Sequence[str],
        primary_key: str = "",
        distribution_key: Optional[str] = None,
    ) -> str:
        """Create an empty table with the given header and return its id.

        ``primary_key`` and ``distribution_key`` are comma-joined column lists.
        """
        pass

    @abstractmethod
    def delete_table_rows(self, table_id: str, options: Dict[str, Any]) -> Dict[str, Any]:
        """Delete rows matching ``whereColumn``/``whereOperator``/``whereValues``."""
        pass

    @abstractmethod
    def remove_table_primary_key(self, table_id: str) -> None:
        pass

    @abstractmethod
    def create_table_primary_key(self, table_id: str, columns: Sequence[str]) -> None:
        pass

    @abstractmethod
    def upload_file(self, path: str, *, compress: bool = True, tags: Sequence[str] = ()) -> str:
        """Upload one local file and return the file id."""
        pass

    @abstractmethod
    def upload_sliced_file(
        self,
        slices: Sequence[str],
        file_name: str,
        *,
        compress: bool = True,
        tags: Sequence[str] = (),
    ) -> str:
        """Upload local slices as one sliced file and return the file id."""
        pass

    @abstractmethod
    def load_table_async(self, table_id: str, options: Dict[str, Any]) -> Dict[str, Any]:
        """Submit an import job without waiting; return the job detail."""
        pass

    @abstractmethod
    def wait_for_job(self, job_id: str) -> Dict[str, Any]:
        """Block until the job is ``success`` or ``error``; return its detail."""
        pass


class MetadataClient(ABC):
    """Key/value metadata attached to buckets, tables and columns."""

    @abstractmethod
    def list_bucket_metadata(self, bucket_id: str) -> List[Dict[str, Any]]:
        pass

    @abstractmethod
    def list_table_metadata(self, table_id: str) -> List[Dict[str, Any]]:
        pass

    @abstractmethod
    def post_bucket_metadata(
        self, bucket_id: str, provider: str, metadata: List[Dict[str, str]]
    ) -> List[Dict[str, Any]]:
        pass

    @abstractmethod
    def post_table_metadata(
        self, table_id: str, provider: str, metadata: List[Dict[str, str]]
    ) -> List[Dict[str, Any]]:
        pass

    @abstractmethod
    def post_column_metadata(
        self, column_id: str, provider: str, metadata: List[Dict[str, str]]
    ) -> List[Dict[str, Any]]:
        pass

"""Table identifier helpers.

Table ids have the form ``<stage>.<bucket>.<table>``, e.g. ``out.c-main.orders``.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import TYPE_CHECKING, Optional

from output_mapping.lib.configuration import TableConfig

if TYPE_CHECKING:
    from output_mapping.lib.session import BackendSession

logger = logging.getLogger(__name__)

__all__ = [
    "TableId",
    "create_destination",
    "is_valid_table_id",
    "rewrite_destination",
    "branch_bucket_id",
]

CSV_SUFFIX = ".csv"
BUCKET_NAME_PREFIX = "c-"


@dataclass(frozen=True)
class TableId:
    """Parsed table identifier."""

    stage: str
    bucket: str
    table: str

    @classmethod
    def parse(cls, table_id: str) -> "TableId":
        parts = table_id.split(".")
        if len(parts) != 3:
            raise ValueError(f"'{table_id}' is not a valid table identifier")
        return cls(*parts)

    @property
    def bucket_id(self) -> str:
        return f"{self.stage}.{self.bucket}"

    @property
    def bucket_name(self) -> str:
        """Bucket name as used when creating it (without the ``c-`` prefix)."""
        if self.bucket.startswith(BUCKET_NAME_PREFIX):
            return self.bucket[len(BUCKET_NAME_PREFIX):]
        return self.bucket

    def __str__(self) -> str:
        return f"{self.stage}.{self.bucket}.{self.table}"


def create_destination(prefix: str, filename: str) -> str:
    """Build a destination from a bucket prefix and a file name.

    A single trailing ``.csv`` is stripped from the file name.

    Example:
        >>> create_destination("out.c-main.", "orders.csv")
        'out.c-main.orders'
        >>> create_destination("", "in.c-main.orders.csv")
        'in.c-main.orders'
    """
    if filename.endswith(CSV_SUFFIX):
        filename = filename[: -len(CSV_SUFFIX)]
    return f"{prefix}{filename}"


def is_valid_table_id(destination: Optional[str]) -> bool:
    return bool(destination) and len(destination.split(".")) == 3


def branch_bucket_id(bucket_id: str, branch_id: str) -> str:
    """Insert a branch id into the bucket part of a bucket id.

    Example:
        >>> branch_bucket_id("out.c-main", "123")
        'out.c-123-main'
    """
    stage, bucket = bucket_id.split(".", 1)
    if bucket.startswith(BUCKET_NAME_PREFIX):
        bucket = bucket[len(BUCKET_NAME_PREFIX):]
    return f"{stage}.{BUCKET_NAME_PREFIX}{branch_id}-{bucket}"


def rewrite_destination(config: TableConfig, session: "BackendSession") -> TableConfig:
    """Point the destination at the development branch bucket.

    No-op outside of a branch context.
    """
    if not session.has_branch:
        return config

    table_id = TableId.parse(config.destination)
    new_bucket_id = branch_bucket_id(table_id.bucket_id, str(session.branch_id))
    new_destination = f"{new_bucket_id}.{table_id.table}"
    logger.info(
        "Using dev destination: '%s' instead of '%s'.",
        new_destination,
        config.destination,
        extra={"table_id": new_destination, "branch_id": session.branch_id},
    )
    return config.with_changes(destination=new_destination)

"""Storage backend contract and its Storage API implementation.

Usage:
    from output_mapping.lib.storage import HttpStorageClient, HttpMetadataClient

    client = HttpStorageClient("https://connection.keboola.com", token)
    metadata = HttpMetadataClient("https://connection.keboola.com", token)
"""

from output_mapping.lib.storage.base import (
    JOB_STATUS_ERROR,
    JOB_STATUS_SUCCESS,
    TERMINAL_JOB_STATUSES,
    MetadataClient,
    StorageClient,
)
from output_mapping.lib.storage.client import HttpMetadataClient, HttpStorageClient

__all__ = [
    "StorageClient",
    "MetadataClient",
    "HttpStorageClient",
    "HttpMetadataClient",
    "JOB_STATUS_SUCCESS",
    "JOB_STATUS_ERROR",
    "TERMINAL_JOB_STATUSES",
]

"""Output mapping library modules.

This package contains the reconciliation, planning and load-queue logic
plus the storage backend and staging abstractions it runs against.
"""

from output_mapping.lib.configuration import (
    MetadataItem,
    SystemMetadata,
    TableConfig,
    TableMapping,
    WriterConfiguration,
)
from output_mapping.lib.destination import TableId, create_destination, rewrite_destination
from output_mapping.lib.errors import (
    InvalidOutputError,
    OutputMappingError,
    OutputOperationError,
    StorageApiError,
)
from output_mapping.lib.load_queue import LoadTableQueue, LoadTableTask, TaskState
from output_mapping.lib.logging import ContextFormatter, JSONFormatter, setup_logging
from output_mapping.lib.merger import build_table_config, merge_configurations
from output_mapping.lib.session import BackendSession
from output_mapping.lib.settings import LoggingSettings, StorageApiSettings
from output_mapping.lib.staging import StagingKind, get_staging
from output_mapping.lib.table_uploader import TableUploader
from output_mapping.lib.table_writer import TableWriter

__all__ = [
    # Configuration
    "MetadataItem",
    "SystemMetadata",
    "TableConfig",
    "TableMapping",
    "WriterConfiguration",
    "StorageApiSettings",
    "LoggingSettings",
    # Destinations
    "TableId",
    "create_destination",
    "rewrite_destination",
    # Errors
    "OutputMappingError",
    "InvalidOutputError",
    "OutputOperationError",
    "StorageApiError",
    # Merging
    "merge_configurations",
    "build_table_config",
    # Loading
    "BackendSession",
    "StagingKind",
    "get_staging",
    "TableUploader",
    "TableWriter",
    "LoadTableQueue",
    "LoadTableTask",
    "TaskState",
    # Logging
    "ContextFormatter",
    "JSONFormatter",
    "setup_logging",
]

"""Plan and prepare the load of one table.

For one effective configuration the uploader makes sure the destination
bucket and table exist (creating them with provenance metadata when they
do not), reconciles the primary key, deletes rows when requested and
finally builds a deferred ``LoadTableTask``.
"""

from __future__ import annotations

import csv
import logging
from pathlib import Path
from typing import Any, Dict, List

from output_mapping.lib.configuration import SystemMetadata, TableConfig
from output_mapping.lib.destination import TableId
from output_mapping.lib.errors import InvalidOutputError, StorageApiError
from output_mapping.lib.load_queue import LoadTableTask
from output_mapping.lib.metadata import (
    KBC_CREATED_BY_BRANCH_ID,
    KBC_LAST_UPDATED_BY_BRANCH_ID,
    SYSTEM_METADATA_PROVIDER,
    MetadataDefinition,
    MetadataKind,
    created_metadata,
    updated_metadata,
)
from output_mapping.lib.primary_key import (
    modify_primary_key,
    modify_primary_key_decider,
    normalize_key_array,
    validate_primary_key_against_table,
)
from output_mapping.lib.session import BackendSession
from output_mapping.lib.staging.base import SourceFile, StagingStrategy

logger = logging.getLogger(__name__)

__all__ = ["TableUploader", "read_csv_header"]

BRANCH_OWNER_KEYS = (KBC_LAST_UPDATED_BY_BRANCH_ID, KBC_CREATED_BY_BRANCH_ID)


def read_csv_header(path: str, delimiter: str = ",", enclosure: str = '"') -> List[str]:
    """Read the first row of a CSV file.

    Raises:
        InvalidOutputError: if the file cannot be opened or has no header
    """
    if enclosure:
        dialect: Dict[str, Any] = {"delimiter": delimiter, "quotechar": enclosure}
    else:
        dialect = {"delimiter": delimiter, "quoting": csv.QUOTE_NONE}
    try:
        with open(path, newline="", encoding="utf-8") as handle:
            header = next(csv.reader(handle, **dialect), [])
    except (OSError, csv.Error, UnicodeDecodeError) as e:
        raise InvalidOutputError(f"Failed to read file {path} Cannot open file {path}") from e
    if not header:
        raise InvalidOutputError(f"Failed to read file {path} Header row is empty")
    return header


class TableUploader:
    """Prepares ``LoadTableTask`` objects against one backend session."""

    def __init__(self, session: BackendSession) -> None:
        self.session = session

    @property
    def client(self):
        return self.session.client

    def upload_table(
        self,
        staging: StagingStrategy,
        source: SourceFile,
        config: TableConfig,
        system_metadata: SystemMetadata,
    ) -> LoadTableTask:
        """Set up the destination of ``config`` and return its deferred load.

        Raises:
            InvalidOutputError: for a sliced source without columns, an
                unreadable header or a bucket owned by another branch
            StorageApiError: for backend failures
        """
        if source.is_sliced and not config.columns:
            raise InvalidOutputError(
                f'Sliced file "{Path(source.path).name}" columns specification missing.'
            )

        table_id = TableId.parse(config.destination)
        if not self.client.bucket_exists(table_id.bucket_id):
            self._create_bucket(table_id, system_metadata)
        else:
            self._check_dev_bucket_metadata(table_id.bucket_id)

        if self.client.table_exists(config.destination):
            self._prepare_existing_table(config)
        else:
            self._create_table(source, config)
            self.session.metadata.post_table_metadata(
                config.destination, SYSTEM_METADATA_PROVIDER, created_metadata(system_metadata)
            )

        load_options: Dict[str, Any] = {
            "delimiter": config.delimiter,
            "enclosure": config.enclosure,
            "columns": list(config.columns),
            "incremental": config.incremental,
        }
        task = LoadTableTask(
            self.client, config.destination, staging.materialize(self.session, source, load_options)
        )
        task.add_metadata(
            MetadataDefinition(
                self.session.metadata,
                config.destination,
                SYSTEM_METADATA_PROVIDER,
                updated_metadata(system_metadata),
                MetadataKind.TABLE,
            )
        )
        return task

    def _prepare_existing_table(self, config: TableConfig) -> None:
        table_info = self.client.get_table(config.destination)
        validate_primary_key_against_table(table_info, config)
        if modify_primary_key_decider(table_info, config):
            modify_primary_key(
                self.client,
                config.destination,
                normalize_key_array(table_info.get("primaryKey") or []),
                normalize_key_array(config.primary_key),
            )
        if config.delete_where_column:
            logger.info(
                "Deleting rows of table %s where %s %s %s",
                config.destination,
                config.delete_where_column,
                config.delete_where_operator,
                config.delete_where_values,
                extra={"table_id": config.destination},
            )
            self.client.delete_table_rows(
                config.destination,
                {
                    "whereColumn": config.delete_where_column,
                    "whereOperator": config.delete_where_operator,
                    "whereValues": list(config.delete_where_values),
                },
            )

    def _create_bucket(self, table_id: TableId, system_metadata: SystemMetadata) -> None:
        self.client.create_bucket(table_id.bucket_name, table_id.stage)
        logger.info("Created bucket %s", table_id.bucket_id, extra={"bucket_id": table_id.bucket_id})
        self.session.metadata.post_bucket_metadata(
            table_id.bucket_id, SYSTEM_METADATA_PROVIDER, created_metadata(system_metadata)
        )

    def _create_table(self, source: SourceFile, config: TableConfig) -> None:
        primary_key = ",".join(normalize_key_array(config.primary_key))
        distribution_key = ",".join(normalize_key_array(config.distribution_key))
        if config.columns:
            columns = list(config.columns)
        else:
            columns = read_csv_header(source.path, config.delimiter, config.enclosure)

        table_id = TableId.parse(config.destination)
        self.client.create_table_async(
            table_id.bucket_id,
            table_id.table,
            columns,
            primary_key,
            distribution_key or None,
        )
        logger.info(
            "Created table %s with columns %s",
            config.destination,
            ", ".join(columns),
            extra={"table_id": config.destination, "source": source.name},
        )

    def _check_dev_bucket_metadata(self, bucket_id: str) -> None:
        """Make sure an existing bucket belongs to the current branch."""
        if not self.session.has_branch:
            return

        branch_id = str(self.session.branch_id)
        branch_name = self.session.branch_name or branch_id
        try:
            metadata = self.session.metadata.list_bucket_metadata(bucket_id)
        except StorageApiError as e:
            # A bucket that does not exist cannot be owned by another branch
            if e.is_not_found:
                return
            raise

        for item in metadata:
            if item.get("key") in BRANCH_OWNER_KEYS:
                if str(item.get("value")) == branch_id:
                    return
                raise InvalidOutputError(
                    f'Trying to create a table in the development bucket "{bucket_id}" on branch '
                    f'"{branch_name}" (ID "{branch_id}"). The bucket metadata marks it '
                    f'as assigned to branch with ID "{item.get("value")}".'
                )

        raise InvalidOutputError(
            f'Trying to create a table in the development bucket "{bucket_id}" on branch '
            f'"{branch_name}" (ID "{branch_id}"), but the bucket is not assigned '
            "to any development branch."
        )

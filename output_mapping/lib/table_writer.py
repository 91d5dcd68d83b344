"""Table output mapping entry point.

``TableWriter.upload_tables`` pairs every output source with its mapping
entries and manifest, validates the result, prepares each destination and
returns a started ``LoadTableQueue``.

Example:
    writer = TableWriter(session)
    queue = writer.upload_tables(
        "out/tables",
        {"mapping": [{"source": "orders.csv", "destination": "out.c-main.orders"}]},
        {"componentId": "keboola.ex-db"},
        "local",
        metadata_path="/data",
    )
    job_ids = queue.wait_for_all()

All sources are reconciled and validated before the first call to the
storage backend, so configuration and reconciliation errors never leave a
partially loaded output behind.
"""

from __future__ import annotations

import dataclasses
import logging
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Dict, Iterable, List, Optional, Union

from pydantic import ValidationError

from output_mapping.lib.configuration import (
    SystemMetadata,
    TableConfig,
    TableMapping,
    WriterConfiguration,
)
from output_mapping.lib.destination import create_destination, is_valid_table_id, rewrite_destination
from output_mapping.lib.errors import InvalidOutputError, OutputOperationError, StorageApiError
from output_mapping.lib.load_queue import LoadTableQueue, LoadTableTask
from output_mapping.lib.manifest import (
    MANIFEST_SUFFIX,
    get_manifest_files,
    manifest_source_name,
    read_table_manifest,
)
from output_mapping.lib.merger import build_table_config, merge_configurations
from output_mapping.lib.metadata import MetadataDefinition, MetadataKind
from output_mapping.lib.primary_key import normalize_key_array
from output_mapping.lib.session import BackendSession
from output_mapping.lib.staging import SourceFile, StagingKind, StagingStrategy, get_staging
from output_mapping.lib.table_uploader import TableUploader

logger = logging.getLogger(__name__)

__all__ = ["TableWriter", "PlannedTable"]


@dataclass(frozen=True)
class PlannedTable:
    """A reconciled source and the validated configuration to load it with."""

    source: SourceFile
    config: TableConfig


class TableWriter:
    """Writes output tables of a job to storage."""

    def __init__(self, session: BackendSession, manifest_format: str = "json") -> None:
        self.session = session
        self.manifest_format = manifest_format

    def upload_tables(
        self,
        source: str,
        configuration: Union[WriterConfiguration, Dict[str, Any]],
        system_metadata: Union[SystemMetadata, Dict[str, Any]],
        staging: Union[str, StagingKind, StagingStrategy],
        **staging_options: Any,
    ) -> LoadTableQueue:
        """Reconcile, prepare and start the load of every output table.

        Args:
            source: Source directory, relative to the staging metadata path
            configuration: ``{"mapping": [...], "bucket": ..., "branchId": ...}``
            system_metadata: Facts about the job (``componentId`` required)
            staging: Staging kind or a ready strategy
            **staging_options: Options for ``get_staging`` when ``staging`` is a kind

        Returns:
            Started queue; call ``wait_for_all()`` for the job ids

        Raises:
            OutputOperationError: if the component id is missing
            InvalidOutputError: for any configuration, reconciliation or backend error
        """
        if isinstance(system_metadata, dict):
            system_metadata = SystemMetadata.from_dict(system_metadata)
        if not system_metadata.component_id:
            raise OutputOperationError("Component Id must be set")

        config = self._parse_configuration(configuration)
        strategy = staging if isinstance(staging, StagingStrategy) else get_staging(staging, **staging_options)
        session = self.session.for_branch(config.branch_id) if config.branch_id else self.session
        if session.has_branch and not system_metadata.branch_id:
            system_metadata = dataclasses.replace(system_metadata, branch_id=str(session.branch_id))

        if strategy.is_local:
            planned = self.reconcile_local(source, config, strategy)
        else:
            planned = self.reconcile_workspace(source, config, strategy)
        logger.info("Reconciled %d output table(s) in %s", len(planned), source)

        uploader = TableUploader(session)
        tasks = [
            self._prepare_table(uploader, session, strategy, table, system_metadata)
            for table in planned
        ]

        queue = LoadTableQueue(tasks)
        queue.start()
        return queue

    @staticmethod
    def _parse_configuration(
        configuration: Union[WriterConfiguration, Dict[str, Any]]
    ) -> WriterConfiguration:
        if isinstance(configuration, WriterConfiguration):
            return configuration
        try:
            return WriterConfiguration.model_validate(configuration or {})
        except ValidationError as e:
            raise InvalidOutputError(f"Invalid output mapping configuration: {e}") from e

    # Reconciliation

    def reconcile_local(
        self, source: str, config: WriterConfiguration, strategy: StagingStrategy
    ) -> List[PlannedTable]:
        """Pair local data files with mapping entries and manifests."""
        data_dir = strategy.data_dir(source)
        metadata_dir = strategy.metadata_dir(source)
        files = self._list_data_files(data_dir)
        file_names = {entry.name for entry in files}

        for mapping in config.mapping:
            if mapping.source not in file_names:
                raise InvalidOutputError(f"Table source '{mapping.source}' not found.", 404)

        for manifest in get_manifest_files(metadata_dir):
            if manifest_source_name(manifest) not in file_names:
                raise InvalidOutputError(f"Found orphaned table manifest: '{manifest.name}'")

        expected = _unique(mapping.source for mapping in config.mapping)
        processed: List[str] = []
        planned: List[PlannedTable] = []
        for entry in files:
            mappings = [m for m in config.mapping if m.source == entry.name]
            if mappings:
                processed.append(entry.name)

            manifest_path = metadata_dir / (entry.name + MANIFEST_SUFFIX)
            manifest: Optional[TableMapping] = None
            if manifest_path.is_file():
                manifest = read_table_manifest(manifest_path, self.manifest_format)
                if not manifest.destination or config.bucket:
                    manifest = _with_destination(
                        manifest, create_destination(config.bucket_prefix, entry.name)
                    )
            else:
                mappings = [
                    _with_destination(m, create_destination(config.bucket_prefix, entry.name))
                    if not m.destination or config.bucket
                    else m
                    for m in mappings
                ] or [TableMapping(destination=create_destination(config.bucket_prefix, entry.name))]

            source_file = SourceFile(entry.name, str(entry), prefix=source, local=True)
            for mapping in mappings or [None]:
                table_config = self._effective_config(merge_configurations(manifest, mapping), entry.name)
                if source_file.is_sliced and not table_config.columns:
                    raise InvalidOutputError(
                        f'Sliced file "{entry.name}" columns specification missing.'
                    )
                planned.append(PlannedTable(source_file, table_config))

        unmatched = [name for name in expected if name not in processed]
        if unmatched:
            raise InvalidOutputError(
                "Can not process output mapping for file(s): {}.".format('", "'.join(unmatched))
            )
        return planned

    def reconcile_workspace(
        self, source: str, config: WriterConfiguration, strategy: StagingStrategy
    ) -> List[PlannedTable]:
        """Pair workspace objects named by mappings or manifests.

        The data lives in the workspace, so source existence is not checked.
        """
        candidates: Dict[str, Optional[Path]] = {name: None for name in _unique(m.source for m in config.mapping)}
        for manifest_path in get_manifest_files(strategy.metadata_dir(source)):
            candidates[manifest_source_name(manifest_path)] = manifest_path

        planned: List[PlannedTable] = []
        for name, manifest_path in candidates.items():
            manifest: Optional[TableMapping] = None
            if manifest_path is not None:
                manifest = read_table_manifest(manifest_path, self.manifest_format)
                if not manifest.destination and config.bucket:
                    manifest = _with_destination(manifest, create_destination(config.bucket_prefix, name))

            mappings: List[Optional[TableMapping]] = [m for m in config.mapping if m.source == name]
            if manifest is None:
                mappings = [
                    _with_destination(m, create_destination(config.bucket_prefix, name))
                    if m is not None and not m.destination and config.bucket
                    else m
                    for m in mappings
                ]

            source_file = SourceFile(name, name, prefix=source, local=False)
            for mapping in mappings or [None]:
                merged = merge_configurations(manifest, mapping)
                if not merged.destination:
                    raise InvalidOutputError(f'Failed to resolve destination for output table "{name}".')
                planned.append(PlannedTable(source_file, self._effective_config(merged, name)))
        return planned

    def _effective_config(self, merged: TableMapping, name: str) -> TableConfig:
        table_config = build_table_config(merged, name)
        if not is_valid_table_id(table_config.destination):
            raise InvalidOutputError(
                f'CSV file "{table_config.destination}" file name is not a valid table identifier, '
                f'either set output mapping for "{name}" or make sure that the file name is a valid '
                "Storage table identifier."
            )
        return table_config

    @staticmethod
    def _list_data_files(data_dir: Path) -> List[Path]:
        if not data_dir.is_dir():
            logger.warning("Output directory %s does not exist", data_dir)
            return []
        return sorted(
            entry
            for entry in data_dir.iterdir()
            if not entry.name.startswith(".") and not entry.name.endswith(MANIFEST_SUFFIX)
        )

    # Execution

    def _prepare_table(
        self,
        uploader: TableUploader,
        session: BackendSession,
        strategy: StagingStrategy,
        table: PlannedTable,
        system_metadata: SystemMetadata,
    ) -> LoadTableTask:
        config = table.config.with_changes(primary_key=normalize_key_array(table.config.primary_key))
        try:
            config = rewrite_destination(config, session)
            task = uploader.upload_table(strategy, table.source, config, system_metadata)
        except StorageApiError as e:
            raise InvalidOutputError(
                f"Cannot upload file '{table.source.name}' to table '{config.destination}' "
                f"in Storage API: {e.message}",
                e.code,
            ) from e
        logger.debug(
            "Prepared load of %s into %s",
            table.source.name,
            config.destination,
            extra={"source": table.source.name, "table_id": config.destination},
        )

        if config.metadata:
            task.add_metadata(
                MetadataDefinition(
                    session.metadata,
                    config.destination,
                    system_metadata.component_id,
                    config.metadata,
                    MetadataKind.TABLE,
                )
            )
        if config.column_metadata:
            task.add_metadata(
                MetadataDefinition(
                    session.metadata,
                    config.destination,
                    system_metadata.component_id,
                    config.column_metadata,
                    MetadataKind.COLUMN,
                )
            )
        return task


def _with_destination(entry: TableMapping, destination: str) -> TableMapping:
    values = entry.declared()
    values["destination"] = destination
    if entry.source is not None:
        values["source"] = entry.source
    return TableMapping(**values)


def _unique(names: Iterable[Optional[str]]) -> List[str]:
    seen: List[str] = []
    for name in names:
        if name and name not in seen:
            seen.append(name)
    return seen

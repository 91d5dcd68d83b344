"""Local filesystem staging: data is uploaded as a storage file."""

from __future__ import annotations

import logging
from pathlib import Path
from typing import TYPE_CHECKING, Any, Dict, List

from output_mapping.lib.staging.base import SourceFile, StagingKind, StagingStrategy

if TYPE_CHECKING:
    from output_mapping.lib.session import BackendSession

logger = logging.getLogger(__name__)

__all__ = ["LocalStaging"]


class LocalStaging(StagingStrategy):
    """Upload local files (or sliced directories) and reference the file id.

    Example:
        >>> staging = LocalStaging("/data/out/tables")
        >>> staging.materialize(session, SourceFile("orders.csv", "/data/out/tables/orders.csv"), {})
        {'dataFileId': '123'}
    """

    @property
    def kind(self) -> StagingKind:
        return StagingKind.LOCAL

    def materialize(
        self, session: "BackendSession", source: SourceFile, options: Dict[str, Any]
    ) -> Dict[str, Any]:
        if source.is_sliced:
            slices = self._list_slices(source.path)
            logger.info("Uploading %d slices of %s", len(slices), source.name, extra={"source": source.name})
            file_id = session.client.upload_sliced_file(slices, Path(source.path).name, compress=True)
        else:
            logger.info("Uploading %s", source.name, extra={"source": source.name})
            file_id = session.client.upload_file(source.path, compress=True)
        return {**options, "dataFileId": file_id}

    @staticmethod
    def _list_slices(directory: str) -> List[str]:
        return sorted(str(entry) for entry in Path(directory).iterdir() if entry.is_file())

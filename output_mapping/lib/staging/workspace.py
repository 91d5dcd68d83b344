"""Workspace staging: the backend reads the data straight from a workspace."""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING, Any, Dict, Optional

from output_mapping.lib.staging.base import SourceFile, StagingKind, StagingStrategy

if TYPE_CHECKING:
    from output_mapping.lib.session import BackendSession

logger = logging.getLogger(__name__)

__all__ = ["WorkspaceStaging"]


class WorkspaceStaging(StagingStrategy):
    """Reference a table-like object in a Snowflake/Redshift/Synapse workspace."""

    def __init__(
        self,
        workspace_id: str = "",
        kind: StagingKind = StagingKind.WORKSPACE_SNOWFLAKE,
        metadata_path: str = "",
        data_path: Optional[str] = None,
    ) -> None:
        super().__init__(metadata_path, data_path)
        if not workspace_id:
            raise ValueError("workspace_id is required for workspace staging")
        self.workspace_id = str(workspace_id)
        self._kind = StagingKind(kind)

    @property
    def kind(self) -> StagingKind:
        return self._kind

    def data_object(self, source: SourceFile) -> str:
        return source.path

    def materialize(
        self, session: "BackendSession", source: SourceFile, options: Dict[str, Any]
    ) -> Dict[str, Any]:
        return {
            "dataWorkspaceId": self.workspace_id,
            "dataObject": self.data_object(source),
            "incremental": options.get("incremental", False),
            "columns": options.get("columns", []),
        }

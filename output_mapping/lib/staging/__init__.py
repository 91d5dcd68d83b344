"""Staging strategies for output data.

Usage:
    from output_mapping.lib.staging import get_staging

    # Local files uploaded to storage
    staging = get_staging("local", metadata_path="/data")

    # Snowflake workspace
    staging = get_staging("workspace-snowflake", workspace_id="123")

    # Azure Blob Storage workspace
    staging = get_staging(
        "workspace-abs",
        workspace_id="123",
        connection_string="...",
        container="workspace-123",
    )
"""

from typing import Any, Union

from output_mapping.lib.staging.abs import AbsWorkspaceStaging
from output_mapping.lib.staging.base import SourceFile, StagingKind, StagingStrategy
from output_mapping.lib.staging.local import LocalStaging
from output_mapping.lib.staging.workspace import WorkspaceStaging

__all__ = [
    "StagingKind",
    "StagingStrategy",
    "SourceFile",
    "LocalStaging",
    "WorkspaceStaging",
    "AbsWorkspaceStaging",
    "get_staging",
]


def get_staging(kind: Union[str, StagingKind], **options: Any) -> StagingStrategy:
    """Get the staging strategy for a staging kind.

    Args:
        kind: One of the ``StagingKind`` values
        **options: Strategy options (metadata_path, data_path, workspace_id,
            connection_string, container, container_client)

    Raises:
        ValueError: for an unknown staging kind
    """
    try:
        kind = StagingKind(kind)
    except ValueError:
        valid = [k.value for k in StagingKind]
        raise ValueError(f"Unknown staging kind '{kind}'. Use one of: {valid}") from None

    if kind == StagingKind.LOCAL:
        return LocalStaging(**options)
    if kind == StagingKind.WORKSPACE_ABS:
        return AbsWorkspaceStaging(**options)
    return WorkspaceStaging(kind=kind, **options)

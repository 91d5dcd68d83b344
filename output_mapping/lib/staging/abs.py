"""Azure Blob Storage workspace staging."""

from __future__ import annotations

import logging
from typing import Optional

from azure.core.exceptions import AzureError
from azure.storage.blob import ContainerClient

from output_mapping.lib.errors import InvalidOutputError
from output_mapping.lib.staging.base import SourceFile, StagingKind
from output_mapping.lib.staging.workspace import WorkspaceStaging

logger = logging.getLogger(__name__)

__all__ = ["AbsWorkspaceStaging"]

PATH_DELIMITER = "/"


class AbsWorkspaceStaging(WorkspaceStaging):
    """Workspace backed by an Azure Blob Storage container.

    A source stored as several blobs under ``<prefix>/<name>/`` is sliced;
    its data object gets a trailing ``/`` so the backend reads all slices.

    Example:
        >>> staging = AbsWorkspaceStaging(
        ...     "123",
        ...     connection_string="BlobEndpoint=https://acc.blob.core.windows.net/;SharedAccessSignature=...",
        ...     container="workspace-123",
        ... )
    """

    def __init__(
        self,
        workspace_id: str = "",
        connection_string: Optional[str] = None,
        container: Optional[str] = None,
        container_client: Optional[ContainerClient] = None,
        metadata_path: str = "",
        data_path: Optional[str] = None,
    ) -> None:
        super().__init__(workspace_id, StagingKind.WORKSPACE_ABS, metadata_path, data_path)
        if container_client is None and not (connection_string and container):
            raise ValueError(
                "ABS workspace staging requires a container_client or connection_string and container"
            )
        self.connection_string = connection_string
        self.container = container
        self._container_client = container_client

    @property
    def container_client(self) -> ContainerClient:
        """Lazy-load the container client."""
        if self._container_client is None:
            self._container_client = ContainerClient.from_connection_string(
                self.connection_string, container_name=self.container
            )
        return self._container_client

    def data_object(self, source: SourceFile) -> str:
        prefix = source.prefix.rstrip("\\/")
        path = f"{prefix}{PATH_DELIMITER}{source.path}" if prefix else source.path
        try:
            # "my" also matches "my-file"; only "my/..." marks a sliced object
            is_sliced = any(
                blob.name.startswith(path + PATH_DELIMITER)
                for blob in self.container_client.list_blobs(name_starts_with=path)
            )
        except (AzureError, ValueError) as e:
            raise InvalidOutputError(f"Failed to list blobs {e}") from e
        if is_sliced:
            logger.debug("Blob object %s is sliced", path)
            path += PATH_DELIMITER
        return path

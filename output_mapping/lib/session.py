"""Explicit backend session passed to every component that talks to storage."""

from __future__ import annotations

import dataclasses
import logging
from dataclasses import dataclass
from typing import Optional

from output_mapping.lib.settings import StorageApiSettings
from output_mapping.lib.storage.base import MetadataClient, StorageClient

logger = logging.getLogger(__name__)

__all__ = ["BackendSession"]


@dataclass(frozen=True)
class BackendSession:
    """Storage and metadata clients plus the optional development branch.

    A session without ``branch_id`` works against the default branch.
    """

    client: StorageClient
    metadata: MetadataClient
    branch_id: Optional[str] = None
    branch_name: Optional[str] = None

    @property
    def has_branch(self) -> bool:
        return bool(self.branch_id)

    def for_branch(self, branch_id: Optional[str], branch_name: Optional[str] = None) -> "BackendSession":
        """Return a copy of the session scoped to another branch."""
        if branch_id == self.branch_id and branch_name is None:
            return self
        return dataclasses.replace(
            self,
            branch_id=branch_id or None,
            branch_name=branch_name,
        )

    @classmethod
    def from_settings(
        cls, settings: Optional[StorageApiSettings] = None, branch_name: Optional[str] = None
    ) -> "BackendSession":
        """Build HTTP clients from ``STORAGE_API_*`` settings.

        Clients always address the default branch URLs; destinations are
        rewritten to branch buckets by the writer.
        """
        from output_mapping.lib.storage.client import HttpMetadataClient, HttpStorageClient

        settings = settings or StorageApiSettings()
        default_branch = settings.model_copy(update={"branch_id": None})
        logger.debug("Creating storage session for %s (branch %s)", settings.url, settings.branch_id)
        return cls(
            client=HttpStorageClient.from_settings(default_branch),
            metadata=HttpMetadataClient.from_settings(default_branch),
            branch_id=settings.branch_id,
            branch_name=branch_name,
        )

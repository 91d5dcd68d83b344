"""Abstract base class for staging strategies.

A staging strategy knows where the output of a job lives (local data
directory or a remote workspace) and turns one source into the data
reference a table import job needs.
"""

from __future__ import annotations

import logging
import os
from abc import ABC, abstractmethod
from dataclasses import dataclass
from enum import Enum
from pathlib import Path
from typing import TYPE_CHECKING, Any, Dict, Optional

if TYPE_CHECKING:
    from output_mapping.lib.session import BackendSession

logger = logging.getLogger(__name__)

__all__ = ["StagingKind", "SourceFile", "StagingStrategy"]


class StagingKind(str, Enum):
    """Where the output data is staged."""

    LOCAL = "local"
    WORKSPACE_SNOWFLAKE = "workspace-snowflake"
    WORKSPACE_REDSHIFT = "workspace-redshift"
    WORKSPACE_SYNAPSE = "workspace-synapse"
    WORKSPACE_ABS = "workspace-abs"

    @property
    def is_workspace(self) -> bool:
        return self != StagingKind.LOCAL


@dataclass(frozen=True)
class SourceFile:
    """One output source.

    Attributes:
        name: Source name as used in mapping entries (file or object name)
        path: Local path for local staging, object name for workspaces
        prefix: Source directory the object was found under
        local: Whether ``path`` refers to the local filesystem
    """

    name: str
    path: str
    prefix: str = ""
    local: bool = True

    @property
    def is_sliced(self) -> bool:
        """A local directory holds the slices of one table."""
        return self.local and os.path.isdir(self.path)


class StagingStrategy(ABC):
    """Abstract base class for staging strategies.

    Subclasses must implement ``kind`` and ``materialize``.
    """

    def __init__(self, metadata_path: str = "", data_path: Optional[str] = None) -> None:
        """Initialize the strategy.

        Args:
            metadata_path: Base directory holding manifest files
            data_path: Base directory holding data files (defaults to metadata_path)
        """
        self.metadata_path = metadata_path
        self.data_path = metadata_path if data_path is None else data_path

    @property
    @abstractmethod
    def kind(self) -> StagingKind:
        pass

    @property
    def is_local(self) -> bool:
        return self.kind == StagingKind.LOCAL

    def metadata_dir(self, source: str) -> Path:
        """Directory holding the manifests of ``source``."""
        return Path(self.metadata_path) / source if self.metadata_path else Path(source)

    def data_dir(self, source: str) -> Path:
        """Directory holding the data files of ``source``."""
        return Path(self.data_path) / source if self.data_path else Path(source)

    @abstractmethod
    def materialize(
        self, session: "BackendSession", source: SourceFile, options: Dict[str, Any]
    ) -> Dict[str, Any]:
        """Return the import options with the data reference of ``source``.

        Args:
            session: Backend session used for uploads
            source: The source to load
            options: Load options (delimiter, enclosure, columns, incremental)
        """
        pass

    def __repr__(self) -> str:
        return f"{self.__class__.__name__}({self.metadata_path!r})"

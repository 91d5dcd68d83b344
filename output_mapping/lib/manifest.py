"""Table manifest sidecar files.

A manifest ``<source>.manifest`` sits next to the data it describes and
holds a ``TableMapping`` serialized as JSON or YAML:

    {"destination": "out.c-main.orders", "primary_key": ["id"]}
"""

from __future__ import annotations

import json
import logging
from pathlib import Path
from typing import Any, List, Union

import yaml
from pydantic import ValidationError

from output_mapping.lib.configuration import TableMapping
from output_mapping.lib.errors import InvalidOutputError

logger = logging.getLogger(__name__)

__all__ = [
    "MANIFEST_SUFFIX",
    "MANIFEST_FORMATS",
    "ManifestAdapter",
    "read_table_manifest",
    "get_manifest_files",
    "manifest_source_name",
]

MANIFEST_SUFFIX = ".manifest"
MANIFEST_FORMATS = ("json", "yaml")


class ManifestAdapter:
    """Deserialize table manifests in one of ``MANIFEST_FORMATS``."""

    def __init__(self, format: str = "json") -> None:
        if format not in MANIFEST_FORMATS:
            raise ValueError(
                f"Unsupported manifest format '{format}'. Use one of: {list(MANIFEST_FORMATS)}"
            )
        self.format = format

    def deserialize(self, serialized: Union[str, bytes]) -> TableMapping:
        """Parse and validate manifest contents.

        Raises:
            ValueError: if the contents cannot be decoded or are not a
                valid table manifest
        """
        if isinstance(serialized, bytes):
            serialized = serialized.decode("utf-8")

        data: Any
        if self.format == "yaml":
            try:
                data = yaml.safe_load(serialized)
            except yaml.YAMLError as e:
                raise ValueError(f"Invalid YAML syntax: {e}") from e
        else:
            try:
                data = json.loads(serialized) if serialized.strip() else {}
            except json.JSONDecodeError as e:
                raise ValueError(f"Invalid JSON syntax: {e}") from e

        if data is None:
            data = {}
        if not isinstance(data, dict):
            raise ValueError("Manifest must contain a mapping of options")
        try:
            return TableMapping.model_validate(data)
        except ValidationError as e:
            raise ValueError(str(e)) from e


def read_table_manifest(path: Union[str, Path], format: str = "json") -> TableMapping:
    """Read one manifest file.

    Raises:
        InvalidOutputError: if the file is missing or invalid
    """
    path = Path(path)
    if not path.exists():
        raise InvalidOutputError(f"File '{path}' not found.")
    try:
        return ManifestAdapter(format).deserialize(path.read_bytes())
    except ValueError as e:
        raise InvalidOutputError(
            f"Failed to read table manifest from file {path.name} {e}"
        ) from e


def get_manifest_files(directory: Union[str, Path]) -> List[Path]:
    """Manifest files at depth 0 of ``directory``, sorted by name. Hidden files are skipped."""
    directory = Path(directory)
    if not directory.is_dir():
        return []
    return sorted(
        entry
        for entry in directory.iterdir()
        if entry.is_file() and not entry.name.startswith(".") and entry.name.endswith(MANIFEST_SUFFIX)
    )


def manifest_source_name(manifest: Union[str, Path]) -> str:
    """Source name a manifest describes.

    Example:
        >>> manifest_source_name("/data/out/tables/orders.csv.manifest")
        'orders.csv'
    """
    name = Path(manifest).name
    return name[: -len(MANIFEST_SUFFIX)] if name.endswith(MANIFEST_SUFFIX) else name

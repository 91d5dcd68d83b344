"""Merge manifest and mapping configurations into one effective config.

Mapping values take precedence. Manifest values fill in whatever the
mapping does not declare. Key/value metadata lists are merged per key so a
mapping can override one manifest metadata entry without dropping the rest.
"""

from __future__ import annotations

import logging
from typing import Any, Dict, List, Optional

from pydantic import ValidationError

from output_mapping.lib.configuration import MetadataItem, TableConfig, TableMapping
from output_mapping.lib.errors import InvalidOutputError

logger = logging.getLogger(__name__)

__all__ = ["merge_configurations", "build_table_config", "merge_metadata"]


def merge_metadata(
    base: List[MetadataItem], override: List[MetadataItem]
) -> List[MetadataItem]:
    """Merge two key/value lists; ``override`` wins on equal keys.

    Order is kept: base keys first (with overridden values), then keys only
    present in ``override``.
    """
    merged: Dict[str, MetadataItem] = {item.key: item for item in base}
    for item in override:
        merged[item.key] = item
    return list(merged.values())


def _merge_column_metadata(
    base: Dict[str, List[MetadataItem]], override: Dict[str, List[MetadataItem]]
) -> Dict[str, List[MetadataItem]]:
    merged = dict(base)
    for column, items in override.items():
        merged[column] = merge_metadata(base.get(column, []), items)
    return merged


def merge_configurations(
    manifest: Optional[TableMapping], mapping: Optional[TableMapping]
) -> TableMapping:
    """Combine a manifest entry and a mapping entry.

    Neither input is modified. ``source`` is taken from the mapping when
    given, else from the manifest.

    Example:
        >>> merged = merge_configurations(
        ...     TableMapping(columns=["Id", "Name"]),
        ...     TableMapping(destination="out.c-main.table"),
        ... )
        >>> merged.destination, merged.columns
        ('out.c-main.table', ['Id', 'Name'])
    """
    from_manifest = manifest.declared() if manifest else {}
    from_mapping = mapping.declared() if mapping else {}

    merged: Dict[str, Any] = dict(from_manifest)
    for key, value in from_mapping.items():
        if key == "metadata":
            merged[key] = merge_metadata(from_manifest.get(key, []), value)
        elif key == "column_metadata":
            merged[key] = _merge_column_metadata(from_manifest.get(key, {}), value)
        else:
            merged[key] = value

    source = (mapping.source if mapping else None) or (manifest.source if manifest else None)
    if source is not None:
        merged["source"] = source
    return TableMapping(**merged)


def build_table_config(merged: TableMapping, source_name: str) -> TableConfig:
    """Validate a merged entry and apply schema defaults.

    Raises:
        InvalidOutputError: if the entry violates the table schema
    """
    try:
        return TableConfig.model_validate(merged.declared())
    except ValidationError as e:
        raise InvalidOutputError(
            f"Failed to write manifest for table {source_name}. {_describe(e)}"
        ) from e


def _describe(error: ValidationError) -> str:
    problems = []
    for item in error.errors():
        location = ".".join(str(part) for part in item["loc"]) or "config"
        problems.append(f"{location}: {item['msg']}")
    return "; ".join(problems)

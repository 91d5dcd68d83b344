"""Provenance and user metadata for buckets, tables and columns.

Provenance keys record which component, configuration, configuration row
and branch created or last updated an object. They are written under the
``system`` provider; user-declared metadata is written under the
component id.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from enum import Enum
from typing import Dict, List, Mapping, Sequence, Union

from output_mapping.lib.configuration import MetadataItem, SystemMetadata
from output_mapping.lib.storage.base import MetadataClient

logger = logging.getLogger(__name__)

__all__ = [
    "SYSTEM_METADATA_PROVIDER",
    "KBC_CREATED_BY_COMPONENT_ID",
    "KBC_CREATED_BY_CONFIGURATION_ID",
    "KBC_CREATED_BY_CONFIGURATION_ROW_ID",
    "KBC_CREATED_BY_BRANCH_ID",
    "KBC_LAST_UPDATED_BY_COMPONENT_ID",
    "KBC_LAST_UPDATED_BY_CONFIGURATION_ID",
    "KBC_LAST_UPDATED_BY_CONFIGURATION_ROW_ID",
    "KBC_LAST_UPDATED_BY_BRANCH_ID",
    "MetadataKind",
    "MetadataDefinition",
    "created_metadata",
    "updated_metadata",
]

SYSTEM_METADATA_PROVIDER = "system"

KBC_CREATED_BY_COMPONENT_ID = "KBC.createdBy.component.id"
KBC_CREATED_BY_CONFIGURATION_ID = "KBC.createdBy.configuration.id"
KBC_CREATED_BY_CONFIGURATION_ROW_ID = "KBC.createdBy.configurationRow.id"
KBC_CREATED_BY_BRANCH_ID = "KBC.createdBy.branch.id"
KBC_LAST_UPDATED_BY_COMPONENT_ID = "KBC.lastUpdatedBy.component.id"
KBC_LAST_UPDATED_BY_CONFIGURATION_ID = "KBC.lastUpdatedBy.configuration.id"
KBC_LAST_UPDATED_BY_CONFIGURATION_ROW_ID = "KBC.lastUpdatedBy.configurationRow.id"
KBC_LAST_UPDATED_BY_BRANCH_ID = "KBC.lastUpdatedBy.branch.id"


def _provenance(system_metadata: SystemMetadata, action: str) -> List[Dict[str, str]]:
    values = [
        ("component", system_metadata.component_id),
        ("configuration", system_metadata.configuration_id),
        ("configurationRow", system_metadata.configuration_row_id),
        ("branch", system_metadata.branch_id),
    ]
    return [
        {"key": f"KBC.{action}.{name}.id", "value": str(value)}
        for name, value in values
        if value
    ]


def created_metadata(system_metadata: SystemMetadata) -> List[Dict[str, str]]:
    """``KBC.createdBy.*`` entries for the non-empty system facts.

    Example:
        >>> created_metadata(SystemMetadata(component_id="foo"))
        [{'key': 'KBC.createdBy.component.id', 'value': 'foo'}]
    """
    return _provenance(system_metadata, "createdBy")


def updated_metadata(system_metadata: SystemMetadata) -> List[Dict[str, str]]:
    """``KBC.lastUpdatedBy.*`` entries for the non-empty system facts."""
    return _provenance(system_metadata, "lastUpdatedBy")


class MetadataKind(str, Enum):
    TABLE = "table"
    COLUMN = "column"


MetadataValues = Union[
    Sequence[Union[MetadataItem, Mapping[str, str]]],
    Mapping[str, Sequence[Union[MetadataItem, Mapping[str, str]]]],
]


def _as_dicts(items: Sequence[Union[MetadataItem, Mapping[str, str]]]) -> List[Dict[str, str]]:
    result = []
    for item in items:
        if isinstance(item, MetadataItem):
            result.append({"key": item.key, "value": item.value})
        else:
            result.append({"key": str(item["key"]), "value": str(item["value"])})
    return result


@dataclass
class MetadataDefinition:
    """A deferred metadata write, run after the owning load job succeeds.

    ``values`` is a list of key/value items for ``TABLE`` metadata and a
    mapping of column name to such a list for ``COLUMN`` metadata.
    """

    client: MetadataClient
    table_id: str
    provider: str
    values: MetadataValues
    kind: MetadataKind = MetadataKind.TABLE
    _applied: bool = field(default=False, init=False, repr=False)

    def apply(self) -> None:
        if self.kind == MetadataKind.TABLE:
            metadata = _as_dicts(self.values)  # type: ignore[arg-type]
            if metadata:
                self.client.post_table_metadata(self.table_id, self.provider, metadata)
        else:
            for column, items in self.values.items():  # type: ignore[union-attr]
                metadata = _as_dicts(items)
                if metadata:
                    self.client.post_column_metadata(f"{self.table_id}.{column}", self.provider, metadata)
        self._applied = True
        logger.debug(
            "Wrote %s metadata of table %s (provider %s)", self.kind.value, self.table_id, self.provider
        )

    @property
    def applied(self) -> bool:
        return self._applied

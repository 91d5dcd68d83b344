"""Declarative configuration records for table output mapping.

A ``TableMapping`` is what users declare (in the ``mapping`` list of the
writer configuration or in a ``<source>.manifest`` sidecar file). A
``TableConfig`` is the validated, defaulted result used to load one table.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator

logger = logging.getLogger(__name__)

__all__ = [
    "MetadataItem",
    "TableMapping",
    "TableConfig",
    "WriterConfiguration",
    "SystemMetadata",
    "DELETE_WHERE_OPERATORS",
]

DELETE_WHERE_OPERATORS = ("eq", "ne")


class MetadataItem(BaseModel):
    """A single key/value metadata entry."""

    model_config = ConfigDict(frozen=True)

    key: str = Field(..., min_length=1)
    value: str

    @field_validator("value", mode="before")
    @classmethod
    def stringify_value(cls, v: Any) -> Any:
        if isinstance(v, (int, float, bool)):
            return str(v)
        return v


class TableMapping(BaseModel):
    """Mapping entry or manifest entry for one table.

    Every field is optional; only fields that were explicitly given take
    part in merging (see ``output_mapping.lib.merger``).
    """

    model_config = ConfigDict(frozen=True, extra="forbid")

    source: Optional[str] = None
    destination: Optional[str] = None
    columns: Optional[List[str]] = None
    primary_key: Optional[List[str]] = None
    distribution_key: Optional[List[str]] = None
    incremental: Optional[bool] = None
    delete_where_column: Optional[str] = None
    delete_where_operator: Optional[str] = None
    delete_where_values: Optional[List[str]] = None
    metadata: Optional[List[MetadataItem]] = None
    column_metadata: Optional[Dict[str, List[MetadataItem]]] = None
    delimiter: Optional[str] = None
    enclosure: Optional[str] = None

    def declared(self) -> Dict[str, Any]:
        """Fields explicitly set to a non-null value, ``source`` excluded."""
        return {
            name: getattr(self, name)
            for name in self.model_fields_set
            if name != "source" and getattr(self, name) is not None
        }


class TableConfig(BaseModel):
    """Effective, schema-validated configuration for loading one table."""

    model_config = ConfigDict(frozen=True, extra="forbid")

    destination: str = Field(..., min_length=1)
    columns: List[str] = Field(default_factory=list)
    primary_key: List[str] = Field(default_factory=list)
    distribution_key: List[str] = Field(default_factory=list)
    incremental: bool = False
    delete_where_column: str = ""
    delete_where_operator: str = "eq"
    delete_where_values: List[str] = Field(default_factory=list)
    metadata: List[MetadataItem] = Field(default_factory=list)
    column_metadata: Dict[str, List[MetadataItem]] = Field(default_factory=dict)
    delimiter: str = ","
    enclosure: str = '"'

    @field_validator("delete_where_operator")
    @classmethod
    def validate_operator(cls, v: str) -> str:
        if v.lower() not in DELETE_WHERE_OPERATORS:
            raise ValueError(f"delete_where_operator must be one of: {list(DELETE_WHERE_OPERATORS)}")
        return v.lower()

    @field_validator("delimiter")
    @classmethod
    def validate_delimiter(cls, v: str) -> str:
        if len(v) != 1:
            raise ValueError("delimiter must be a single character")
        return v

    @field_validator("enclosure")
    @classmethod
    def validate_enclosure(cls, v: str) -> str:
        if len(v) > 1:
            raise ValueError("enclosure must be a single character or empty")
        return v

    def with_changes(self, **changes: Any) -> "TableConfig":
        return self.model_copy(update=changes)


class WriterConfiguration(BaseModel):
    """Input configuration of ``TableWriter.upload_tables``.

    Example:
        >>> WriterConfiguration.model_validate({
        ...     "mapping": [{"source": "orders.csv", "destination": "out.c-main.orders"}],
        ...     "bucket": "out.c-main",
        ... })
    """

    model_config = ConfigDict(frozen=True, populate_by_name=True)

    mapping: List[TableMapping] = Field(default_factory=list)
    bucket: Optional[str] = None
    branch_id: Optional[str] = Field(default=None, alias="branchId")

    @field_validator("mapping")
    @classmethod
    def sources_required(cls, v: List[TableMapping]) -> List[TableMapping]:
        for entry in v:
            if not entry.source:
                raise ValueError("every mapping entry requires a 'source'")
        return v

    @field_validator("branch_id", mode="before")
    @classmethod
    def branch_as_string(cls, v: Any) -> Any:
        if v is None or v == "":
            return None
        return str(v)

    @property
    def bucket_prefix(self) -> str:
        return f"{self.bucket}." if self.bucket else ""


@dataclass(frozen=True)
class SystemMetadata:
    """Facts about the invoking job used to stamp provenance metadata."""

    component_id: str
    configuration_id: Optional[str] = None
    configuration_row_id: Optional[str] = None
    branch_id: Optional[str] = None

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "SystemMetadata":
        """Create from the camelCase keys used by job runners."""

        def value(*keys: str) -> Optional[str]:
            for key in keys:
                if data.get(key) not in (None, ""):
                    return str(data[key])
            return None

        return cls(
            component_id=value("componentId", "component_id") or "",
            configuration_id=value("configurationId", "configuration_id"),
            configuration_row_id=value("configurationRowId", "configuration_row_id"),
            branch_id=value("branchId", "branch_id"),
        )

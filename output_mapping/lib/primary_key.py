"""Primary key normalization and reconciliation with existing tables."""

from __future__ import annotations

import logging
from typing import Any, Dict, Iterable, List, Optional

from output_mapping.lib.configuration import TableConfig
from output_mapping.lib.errors import StorageApiError
from output_mapping.lib.storage.base import StorageClient

logger = logging.getLogger(__name__)

__all__ = [
    "normalize_key_array",
    "validate_primary_key_against_table",
    "modify_primary_key_decider",
    "modify_primary_key",
]


def normalize_key_array(keys: Optional[Iterable[str]], log: Optional[logging.Logger] = None) -> List[str]:
    """Trim key names, drop empty ones and de-duplicate, keeping order.

    Example:
        >>> normalize_key_array([" id", "name", "", "id"])
        ['id', 'name']
    """
    log = log or logger
    normalized: List[str] = []
    for key in keys or []:
        name = str(key).strip()
        if not name:
            log.warning("Empty primary key found")
            continue
        if name in normalized:
            continue
        normalized.append(name)
    return normalized


def _table_primary_key(table_info: Dict[str, Any]) -> List[str]:
    return normalize_key_array(table_info.get("primaryKey") or [])


def validate_primary_key_against_table(table_info: Dict[str, Any], config: TableConfig) -> None:
    """Warn when the declared key does not match the existing table."""
    config_key = normalize_key_array(config.primary_key)
    table_key = _table_primary_key(table_info)
    if sorted(config_key) != sorted(table_key):
        logger.warning(
            "Output mapping does not match destination table: primary key '%s' "
            "does not match '%s' in '%s'.",
            ", ".join(config_key),
            ", ".join(table_key),
            config.destination,
        )


def modify_primary_key_decider(table_info: Dict[str, Any], config: TableConfig) -> bool:
    """Decide whether the existing table key should be altered.

    Only an explicitly declared, different key alters the table. An empty
    declaration never drops an existing key.
    """
    config_key = normalize_key_array(config.primary_key)
    table_key = _table_primary_key(table_info)
    if not config_key:
        if table_key:
            logger.warning(
                "Primary key of table '%s' (%s) is kept because no primary key is declared.",
                config.destination,
                ", ".join(table_key),
            )
        return False
    return sorted(config_key) != sorted(table_key)


def modify_primary_key(
    client: StorageClient,
    table_id: str,
    table_key: List[str],
    config_key: List[str],
) -> None:
    """Replace the table primary key, restoring the old one on failure."""
    logger.warning(
        "Modifying primary key of table '%s' from '%s' to '%s'.",
        table_id,
        ", ".join(table_key),
        ", ".join(config_key),
    )
    if table_key:
        client.remove_table_primary_key(table_id)
    try:
        client.create_table_primary_key(table_id, config_key)
    except StorageApiError as e:
        logger.warning(
            "Error changing primary key of table '%s': %s", table_id, e.message
        )
        if table_key:
            client.create_table_primary_key(table_id, table_key)
            logger.warning(
                "Restored primary key of table '%s' to '%s'.", table_id, ", ".join(table_key)
            )

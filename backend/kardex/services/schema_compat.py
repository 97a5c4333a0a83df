# Overview: Write-path compatibility with databases that predate optional columns.

"""
Optional-column handling.

Some columns were added after the first schema revision (see migration
20251002_optional_document_columns). Deployments that have not run that
revision yet must keep accepting drafts, so before inserting a row the write
path asks which of its columns actually exist:

- optional column missing  -> the key is dropped from the payload
- required column missing  -> SchemaEvolutionError (run `flask db upgrade`)

Live column sets are read once per (engine, table) with the SQLAlchemy
inspector and cached; `reset_column_cache()` clears it (tests, migrations).
"""

from __future__ import annotations

import logging
from typing import Any

from sqlalchemy import inspect

from ..errors import SchemaEvolutionError
from ..extensions import db


logger = logging.getLogger(__name__)


OPTIONAL_COLUMNS: dict[str, frozenset[str]] = {
    "documents": frozenset({
        "idempotency_key",
        "client_id",
        "client_name_snapshot",
    }),
    "document_items": frozenset({
        "product_name_snapshot",
        "product_code_snapshot",
        "measurement_unit_snapshot",
        "barcode_snapshot",
    }),
}

_column_cache: dict[tuple[str, str], frozenset[str]] = {}


def reset_column_cache() -> None:
    _column_cache.clear()


def live_columns(table_name: str) -> frozenset[str]:
    """
    Column names the connected database reports for `table_name`.

    Reflection runs on the session's own connection. An inspector bound to
    the engine checks out a pooled connection and rolls it back on release;
    with a single shared connection (in-memory SQLite) that discards the
    caller's uncommitted writes.
    """
    key = (str(db.engine.url), table_name)
    cached = _column_cache.get(key)
    if cached is not None:
        return cached

    inspector = inspect(db.session.connection())
    columns = frozenset(col["name"] for col in inspector.get_columns(table_name))
    _column_cache[key] = columns
    return columns


def has_column(table_name: str, column_name: str) -> bool:
    return column_name in live_columns(table_name)


def filter_payload(table_name: str, payload: dict[str, Any]) -> dict[str, Any]:
    """
    Return `payload` restricted to columns the live table can store.

    Raises SchemaEvolutionError when a non-optional key has no column.
    """
    columns = live_columns(table_name)
    optional = OPTIONAL_COLUMNS.get(table_name, frozenset())

    filtered: dict[str, Any] = {}
    dropped: list[str] = []
    for key, value in payload.items():
        if key in columns:
            filtered[key] = value
        elif key in optional:
            dropped.append(key)
        else:
            raise SchemaEvolutionError(
                f"Column {table_name}.{key} is missing; run the database migrations"
            )

    if dropped:
        logger.info(
            "%s: live schema lacks optional columns %s; writing without them",
            table_name,
            ", ".join(sorted(dropped)),
        )
    return filtered

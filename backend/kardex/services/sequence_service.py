# Overview: Named counters and per-period document numbering.

"""
Sequence allocation.

Counters
--------
`counters` holds named integers ("documentId", "documentItemId", "kardexId",
"kardexHistoryId"). The stored value is the last number handed out, so the
first allocation for a new name returns 1.

Document numbers
----------------
`document_numbers` holds one row per (document type, warehouse, year, month).
The year/month come from the business time zone, not from UTC, so a document
created at 2025-02-01 03:00Z in Bogota still belongs to January.

Format: {year}-{type code or "000"}-{sequence zero-padded to 6}.

CRITICAL: Both allocators bump rows with a single
UPDATE ... SET x = x + n and read the value back in the same transaction.
Never read-modify-write these rows in Python.

None of these functions commit, except reserve_document_id; the rest run
inside the caller's transaction.
"""

from __future__ import annotations

import logging
from datetime import datetime
from typing import Optional

from flask import current_app
from sqlalchemy import update
from sqlalchemy.exc import IntegrityError

from ..errors import NotFoundError, StoreError, ValidationError
from ..extensions import db
from ..models import Counter, DocumentNumber, DocumentType
from ..time_utils import business_year_month
from .concurrency import run_with_retry


logger = logging.getLogger(__name__)


COUNTER_DOCUMENT = "documentId"
COUNTER_DOCUMENT_ITEM = "documentItemId"
COUNTER_KARDEX = "kardexId"
COUNTER_KARDEX_HISTORY = "kardexHistoryId"

DEFAULT_TYPE_CODE = "000"
NUMBER_PAD = 6


# =============================================================================
# NAMED COUNTERS
# =============================================================================

def _bump_counter(name: str, count: int) -> Optional[int]:
    stmt = (
        update(Counter)
        .where(Counter.name == name)
        .values(value=Counter.value + count)
    )
    result = db.session.execute(stmt)
    if not result.rowcount:
        return None
    return db.session.query(Counter.value).filter(Counter.name == name).scalar()


def allocate_counter_range(name: str, count: int) -> list[int]:
    """
    Reserve `count` consecutive values from counter `name`.

    Returns [last + 1, ..., last + count]. The row is created on first use;
    if another transaction creates it first, the insert's unique violation
    is absorbed by the savepoint and the atomic update is retried.
    """
    if not name:
        raise ValidationError("counter name is required")
    if count <= 0:
        raise ValidationError("count must be a positive integer")

    end = _bump_counter(name, count)
    if end is None:
        try:
            with db.session.begin_nested():
                db.session.add(Counter(name=name, value=count))
            end = count
        except IntegrityError as exc:
            end = _bump_counter(name, count)
            if end is None:
                raise StoreError(f"Counter {name} could not be created or incremented") from exc

    start = end - count + 1
    return list(range(start, end + 1))


def next_counter_value(name: str) -> int:
    return allocate_counter_range(name, 1)[0]


def reserve_document_id() -> int:
    """
    Take the next "documentId" and commit it on its own.

    Callers that build a draft without an id reserve one here first; the draft
    writer never generates ids. A reserved id that ends up unused leaves a gap.
    """
    def _op() -> int:
        value = next_counter_value(COUNTER_DOCUMENT)
        db.session.commit()
        return value

    return run_with_retry(_op)


def peek_counter(name: str) -> int:
    """Last value handed out for `name` (0 when unused)."""
    value = db.session.query(Counter.value).filter(Counter.name == name).scalar()
    return int(value or 0)


# =============================================================================
# DOCUMENT NUMBERS
# =============================================================================

def format_document_number(year: int, type_code: Optional[str], sequence: int) -> str:
    code = (type_code or "").strip() or DEFAULT_TYPE_CODE
    return f"{year}-{code}-{sequence:0{NUMBER_PAD}d}"


def _bump_document_sequence(key: dict) -> Optional[int]:
    stmt = (
        update(DocumentNumber)
        .where(
            DocumentNumber.document_type_id == key["document_type_id"],
            DocumentNumber.warehouse_id == key["warehouse_id"],
            DocumentNumber.year == key["year"],
            DocumentNumber.month == key["month"],
        )
        .values(
            sequence=DocumentNumber.sequence + 1,
            last_number=DocumentNumber.last_number + 1,
        )
    )
    result = db.session.execute(stmt)
    if not result.rowcount:
        return None
    return (
        db.session.query(DocumentNumber.sequence)
        .filter_by(**key)
        .scalar()
    )


def next_document_number(
    document_type_id: int,
    warehouse_id: int,
    now: Optional[datetime] = None,
) -> str:
    """
    Allocate the next document number for a type/warehouse in the current
    business month.

    Raises NotFoundError when the document type does not exist.
    """
    if not document_type_id:
        raise ValidationError("document_type_id is required")
    if not warehouse_id:
        raise ValidationError("warehouse_id is required")

    document_type = db.session.get(DocumentType, document_type_id)
    if document_type is None:
        raise NotFoundError(f"Document type {document_type_id} not found")

    tz_name = current_app.config.get("BUSINESS_TIME_ZONE", "America/Bogota")
    year, month = business_year_month(now, tz_name)
    key = {
        "document_type_id": document_type_id,
        "warehouse_id": warehouse_id,
        "year": year,
        "month": month,
    }

    sequence = _bump_document_sequence(key)
    if sequence is None:
        try:
            with db.session.begin_nested():
                db.session.add(DocumentNumber(sequence=1, last_number=1, **key))
            sequence = 1
        except IntegrityError as exc:
            sequence = _bump_document_sequence(key)
            if sequence is None:
                raise StoreError(
                    f"Document sequence for type {document_type_id} in warehouse {warehouse_id} "
                    f"({year}-{month:02d}) could not be created or incremented"
                ) from exc

    number = format_document_number(year, document_type.code, sequence)
    logger.debug("allocated document number %s", number)
    return number

from __future__ import annotations

from datetime import date, datetime
from decimal import Decimal, InvalidOperation
from typing import Any, Optional

from kardex.errors import ValidationError
from kardex.services.document_service import DocumentCreateRequest, DocumentItemInput
from kardex.time_utils import parse_iso_date, parse_iso_datetime


# Upper bound for quantities / prices accepted from clients (Numeric(14, x) columns)
MAX_AMOUNT = Decimal("9999999999")


def parse_int(
    payload: dict,
    key: str,
    *,
    required: bool = False,
    positive: bool = False,
    default: Optional[int] = None,
) -> Optional[int]:
    """
    Strict integer parsing for JSON input.

    Accepts ints and plain digit strings. Rejects bools, floats, decimals
    and scientific notation so "12.5" never silently becomes 12.
    """
    value = payload.get(key)
    if value is None or (isinstance(value, str) and not value.strip()):
        if required:
            raise ValidationError(f"{key} is required")
        return default

    if isinstance(value, bool):
        raise ValidationError(f"{key} must be an integer")
    if isinstance(value, int):
        result = value
    elif isinstance(value, str):
        stripped = value.strip()
        if "e" in stripped.lower():
            raise ValidationError(f"{key} must be a plain integer (scientific notation not allowed)")
        if "." in stripped:
            raise ValidationError(f"{key} must be an integer (no decimals)")
        try:
            result = int(stripped)
        except ValueError:
            raise ValidationError(f"{key} must be an integer")
    elif isinstance(value, float):
        raise ValidationError(f"{key} must be an integer, not a decimal")
    else:
        raise ValidationError(f"{key} must be an integer")

    if positive and result <= 0:
        raise ValidationError(f"{key} must be a positive integer")
    return result


def parse_decimal(
    payload: dict,
    key: str,
    *,
    required: bool = False,
    minimum: Optional[Decimal] = None,
    default: Optional[Decimal] = None,
) -> Optional[Decimal]:
    value = payload.get(key)
    if value is None or (isinstance(value, str) and not value.strip()):
        if required:
            raise ValidationError(f"{key} is required")
        return default
    if isinstance(value, bool):
        raise ValidationError(f"{key} must be a number")
    try:
        result = Decimal(str(value).strip())
    except (InvalidOperation, ValueError):
        raise ValidationError(f"{key} must be a number")
    if not result.is_finite():
        raise ValidationError(f"{key} must be a finite number")
    if abs(result) > MAX_AMOUNT:
        raise ValidationError(f"{key} is out of range")
    if minimum is not None and result < minimum:
        raise ValidationError(f"{key} must be >= {minimum}")
    return result


def parse_bool(payload: dict, key: str, default: bool = False) -> bool:
    value = payload.get(key)
    if value is None:
        return default
    if isinstance(value, bool):
        return value
    if isinstance(value, str):
        return value.strip().lower() in ("1", "true", "yes", "on")
    return bool(value)


def parse_date(payload: dict, key: str) -> Optional[date]:
    value = payload.get(key)
    if value is None or value == "":
        return None
    if isinstance(value, date):
        return value
    if not isinstance(value, str):
        raise ValidationError(f"{key} must be an ISO-8601 date")
    try:
        return parse_iso_date(value)
    except ValueError:
        raise ValidationError(f"{key} must be an ISO-8601 date")


def parse_datetime_arg(value: Optional[str], key: str) -> Optional[datetime]:
    if value is None or value == "":
        return None
    try:
        return parse_iso_datetime(value)
    except ValueError:
        raise ValidationError(f"{key} must be an ISO-8601 datetime")


def _optional_str(payload: dict, key: str, max_length: Optional[int] = None) -> Optional[str]:
    value = payload.get(key)
    if value is None:
        return None
    text = str(value).strip()
    if not text:
        return None
    if max_length is not None and len(text) > max_length:
        raise ValidationError(f"{key} must be at most {max_length} characters")
    return text


def _parse_item(raw: Any, index: int) -> DocumentItemInput:
    if not isinstance(raw, dict):
        raise ValidationError(f"items[{index}] must be an object")
    try:
        tax_ids = raw.get("tax_ids")
        if tax_ids is not None:
            if not isinstance(tax_ids, list):
                raise ValidationError("tax_ids must be a list")
            tax_ids = [parse_int({"tax_id": t}, "tax_id", required=True, positive=True) for t in tax_ids]

        return DocumentItemInput(
            product_id=parse_int(raw, "product_id", required=True, positive=True),
            quantity=parse_decimal(raw, "quantity", required=True),
            price=parse_decimal(raw, "price", required=True, minimum=Decimal("0")),
            discount=parse_decimal(raw, "discount", minimum=Decimal("0"), default=Decimal("0")),
            discount_type=parse_int(raw, "discount_type", default=0),
            tax_ids=tax_ids,
            product_cost=parse_decimal(raw, "product_cost", minimum=Decimal("0")),
            document_item_id=parse_int(raw, "document_item_id", positive=True),
        )
    except ValidationError as exc:
        raise ValidationError(f"items[{index}]: {exc}")


def parse_document_request(payload: Optional[dict]) -> DocumentCreateRequest:
    """Build a DocumentCreateRequest from a JSON body. Raises ValidationError."""
    if not isinstance(payload, dict):
        raise ValidationError("JSON body required")

    raw_items = payload.get("items")
    if not isinstance(raw_items, list) or not raw_items:
        raise ValidationError("items must be a non-empty list")

    return DocumentCreateRequest(
        document_id=parse_int(payload, "document_id", positive=True),
        user_id=parse_int(payload, "user_id", positive=True, default=1),
        document_type_id=parse_int(payload, "document_type_id", required=True, positive=True),
        warehouse_id=parse_int(payload, "warehouse_id", required=True, positive=True),
        items=[_parse_item(raw, index) for index, raw in enumerate(raw_items)],
        date=parse_date(payload, "date"),
        due_date=parse_date(payload, "due_date"),
        customer_id=parse_int(payload, "customer_id", positive=True),
        order_number=_optional_str(payload, "order_number", 64),
        reference_document_number=_optional_str(payload, "reference_document_number", 128),
        note=_optional_str(payload, "note"),
        internal_note=_optional_str(payload, "internal_note"),
        discount=parse_decimal(payload, "discount", minimum=Decimal("0"), default=Decimal("0")),
        discount_type=parse_int(payload, "discount_type", default=0),
        paid_status=parse_int(payload, "paid_status", default=0),
        idempotency_key=_optional_str(payload, "idempotency_key", 128),
        client_id=parse_int(payload, "client_id", positive=True),
        client_name_snapshot=_optional_str(payload, "client_name", 255),
    )

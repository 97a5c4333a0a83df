# Overview: Structured return values of the public document / kardex operations.

from __future__ import annotations

import logging
from dataclasses import asdict, dataclass, field
from typing import Any, Optional, Type, TypeVar

from ..errors import KardexError, NotFoundError, SchemaEvolutionError, ValidationError, describe_error
from ..extensions import db


R = TypeVar("R", bound="OperationResult")


@dataclass
class OperationResult:
    success: bool
    error: Optional[str] = None
    # NOT_FOUND | VALIDATION | SCHEMA | STORE on failure
    error_code: Optional[str] = None

    @classmethod
    def ok(cls, **kwargs) -> "OperationResult":
        return cls(success=True, **kwargs)

    @classmethod
    def failed(cls, error: str, **kwargs) -> "OperationResult":
        return cls(success=False, error=error, **kwargs)

    def to_dict(self) -> dict[str, Any]:
        data = asdict(self)
        return {k: v for k, v in data.items() if v is not None}


@dataclass
class DraftResult(OperationResult):
    document_id: Optional[int] = None
    document_number: Optional[str] = None
    reused: bool = False


@dataclass
class KardexResult(OperationResult):
    kardex_id: Optional[int] = None
    balance: Optional[float] = None


@dataclass
class VoidResult(OperationResult):
    needs_confirmation: bool = False
    confirm_code: Optional[str] = None
    affected_products: list[dict[str, Any]] = field(default_factory=list)
    reversal_document_id: Optional[int] = None
    reversal_document_number: Optional[str] = None


def error_code_for(exc: BaseException) -> str:
    if isinstance(exc, NotFoundError):
        return "NOT_FOUND"
    if isinstance(exc, ValidationError):
        return "VALIDATION"
    if isinstance(exc, SchemaEvolutionError):
        return "SCHEMA"
    return "STORE"


def failure(result_cls: Type[R], exc: BaseException, *, log: logging.Logger, action: str) -> R:
    """
    Roll back the session and turn `exc` into a failed result.

    Expected service errors are logged as warnings; anything else gets a
    traceback.
    """
    db.session.rollback()
    if isinstance(exc, KardexError):
        log.warning("%s failed: %s", action, exc)
    else:
        log.exception("%s failed", action)
    return result_cls.failed(describe_error(exc), error_code=error_code_for(exc))

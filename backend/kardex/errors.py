# Overview: Error taxonomy shared by the document, finalize and kardex services.

"""
Service errors.

Services raise these internally. Public service functions catch them at their
boundary, roll back the session and hand back a result object with
success=False, so nothing escapes to callers as an exception.

- NotFoundError: document / product / document type missing
- ValidationError: bad identifiers or input, insufficient stock under the
  no-negative-stock policy
- SchemaEvolutionError: the live table lacks a column the write path needs
- StoreError: a counter or document sequence row could not be allocated.
  Other persistence failures (SQLAlchemy errors) report the same STORE code
  with the driver message passed through verbatim
"""


class KardexError(Exception):
    """Base class for service errors."""


class NotFoundError(KardexError):
    """A referenced record does not exist."""


class ValidationError(KardexError, ValueError):
    """400-level input or business-rule problem."""


class SchemaEvolutionError(KardexError):
    """The database schema is older than the write path requires."""


class StoreError(KardexError):
    """Generic persistence failure."""


def describe_error(exc: BaseException) -> str:
    """
    Human-readable message for a failure.

    SQLAlchemy DBAPI errors carry the driver message on `.orig`; everything
    else uses str(exc), falling back to the class name.
    """
    orig = getattr(exc, "orig", None)
    if orig is not None and str(orig):
        return str(orig)
    message = str(exc)
    return message or exc.__class__.__name__

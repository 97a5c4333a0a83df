# Overview: Read and update the company-wide application settings row.

from __future__ import annotations

import logging
from typing import Optional

from flask import current_app
from sqlalchemy.exc import SQLAlchemyError

from ..extensions import db
from ..models import ApplicationSettings
from ..time_utils import utcnow


logger = logging.getLogger(__name__)

DEFAULT_COMPANY_ID = 1


def get_settings(company_id: int = DEFAULT_COMPANY_ID) -> Optional[ApplicationSettings]:
    return db.session.get(ApplicationSettings, company_id)


def get_or_create_settings(company_id: int = DEFAULT_COMPANY_ID) -> ApplicationSettings:
    """Load the settings row, creating it with defaults when missing. Does not commit."""
    settings = db.session.get(ApplicationSettings, company_id)
    if settings is None:
        settings = ApplicationSettings(
            company_id=company_id,
            currency_symbol="$",
            tax_percentage=19,
            allow_negative_stock=None,
        )
        db.session.add(settings)
        db.session.flush()
    return settings


def allow_negative_stock(company_id: int = DEFAULT_COMPANY_ID) -> bool:
    """
    Negative-stock policy for finalization.

    Unset (no row, or a NULL column) means Config.DEFAULT_ALLOW_NEGATIVE_STOCK.
    A failed read falls back to the same default: the policy lookup must
    never block posting on its own. The read runs in a savepoint so a failure
    does not poison the caller's transaction.
    """
    default = bool(current_app.config.get("DEFAULT_ALLOW_NEGATIVE_STOCK", True))
    try:
        with db.session.begin_nested():
            value = (
                db.session.query(ApplicationSettings.allow_negative_stock)
                .filter(ApplicationSettings.company_id == company_id)
                .scalar()
            )
    except SQLAlchemyError:
        logger.warning("could not read allow_negative_stock; using default=%s", default, exc_info=True)
        return default
    if value is None:
        return default
    return bool(value)


def update_settings(
    *,
    company_id: int = DEFAULT_COMPANY_ID,
    user_id: Optional[int] = None,
    **changes,
) -> ApplicationSettings:
    """Apply known column changes and commit."""
    settings = get_or_create_settings(company_id)
    for key, value in changes.items():
        if key in ("company_id", "last_modified_by", "last_modified_date"):
            continue
        if not hasattr(ApplicationSettings, key):
            raise ValueError(f"Unknown setting: {key}")
        setattr(settings, key, value)
    settings.last_modified_by = user_id
    settings.last_modified_date = utcnow()
    db.session.commit()
    return settings

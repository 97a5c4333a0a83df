# Overview: Health endpoint covering the database and the schema revision in use.

"""
System health.

- GET /health: database connectivity plus a schema check that reports
  optional columns the live database is still missing (the service keeps
  working without them, but the deployment is "degraded" until
  `flask db upgrade` runs).
"""

import time

from flask import Blueprint, current_app

from ..extensions import db
from ..models import Document, Kardex
from ..services.schema_compat import OPTIONAL_COLUMNS, live_columns
from ..time_utils import to_utc_z, utcnow

system_bp = Blueprint("system", __name__)


def check_database_health() -> dict:
    start_time = time.time()
    try:
        document_count = db.session.query(Document.id).count()
        kardex_count = db.session.query(Kardex.id).count()
        elapsed_ms = (time.time() - start_time) * 1000
        return {
            "status": "healthy",
            "latency_ms": round(elapsed_ms, 2),
            "details": {
                "documents": document_count,
                "kardex_entries": kardex_count,
            },
        }
    except Exception:
        elapsed_ms = (time.time() - start_time) * 1000
        current_app.logger.exception("Database health check failed")
        return {
            "status": "unhealthy",
            "latency_ms": round(elapsed_ms, 2),
            "error": "Database error",
        }


def check_schema_health() -> dict:
    try:
        missing = {}
        for table_name, optional in OPTIONAL_COLUMNS.items():
            absent = sorted(optional - live_columns(table_name))
            if absent:
                missing[table_name] = absent
    except Exception:
        current_app.logger.exception("Schema health check failed")
        return {"status": "unhealthy", "error": "Schema inspection failed"}

    if missing:
        return {
            "status": "degraded",
            "warning": "Optional columns missing; run the database migrations",
            "details": {"missing_columns": missing},
        }
    return {"status": "healthy"}


@system_bp.get("/health")
def health():
    """
    Returns:
    - 200: healthy or degraded
    - 503: database unreachable
    """
    start_time = time.time()

    database_health = check_database_health()
    schema_health = (
        check_schema_health()
        if database_health["status"] == "healthy"
        else {"status": "unknown"}
    )

    all_checks = [database_health, schema_health]
    if any(check["status"] == "unhealthy" for check in all_checks):
        overall_status, http_status = "unhealthy", 503
    elif any(check["status"] in ("degraded", "unknown") for check in all_checks):
        overall_status, http_status = "degraded", 200
    else:
        overall_status, http_status = "healthy", 200

    total_elapsed_ms = (time.time() - start_time) * 1000

    response = {
        "status": overall_status,
        "timestamp": to_utc_z(utcnow()),
        "total_latency_ms": round(total_elapsed_ms, 2),
        "checks": {
            "database": database_health,
            "schema": schema_health,
        },
    }
    return response, http_status

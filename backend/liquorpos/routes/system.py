# backend/liquorpos/routes/system.py
"""System health endpoint."""

import time
from flask import Blueprint, current_app, jsonify
from sqlalchemy.exc import SQLAlchemyError

from ..extensions import db
from ..migrations import MIGRATIONS
from ..models import Product, LedgerEntry, SchemaMigration

system_bp = Blueprint("system", __name__)


def check_database_health() -> dict:
    """
    Check database connectivity and schema version.

    Returns dict with status and details.
    """
    start_time = time.time()
    try:
        product_count = db.session.query(Product).count()
        entry_count = db.session.query(LedgerEntry).count()
        applied = {v for (v,) in db.session.query(SchemaMigration.version)}
        elapsed_ms = (time.time() - start_time) * 1000

        pending = [m.version for m in MIGRATIONS if m.version not in applied]
        return {
            "status": "healthy" if not pending else "degraded",
            "latency_ms": round(elapsed_ms, 2),
            "details": {
                "products": product_count,
                "ledger_entries": entry_count,
                "schema_version": max(applied) if applied else None,
                "pending_migrations": pending,
            },
        }
    except SQLAlchemyError:
        elapsed_ms = (time.time() - start_time) * 1000
        current_app.logger.exception("Database health check failed")
        return {
            "status": "unhealthy",
            "latency_ms": round(elapsed_ms, 2),
            "error": "Database error",
        }


@system_bp.get("/api/health")
def health():
    result = check_database_health()
    status = 200 if result["status"] == "healthy" else 503
    return jsonify(result), status

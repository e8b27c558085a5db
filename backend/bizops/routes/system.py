# backend/bizops/routes/system.py
"""
System health endpoint.

Reports database connectivity and the accounting backlog (sales whose
ledger posting failed and await reconciliation).
"""

import time

from flask import Blueprint, current_app, jsonify

from ..extensions import db
from ..models import SaleTransaction
from ..time_utils import to_utc_z, utcnow

system_bp = Blueprint("system", __name__)


def check_database_health() -> dict:
    """
    Check database connectivity with a cheap query.

    Returns dict with status and details.
    """
    start_time = time.time()
    try:
        failed_postings = (
            db.session.query(SaleTransaction)
            .filter(SaleTransaction.accounting_error.isnot(None))
            .count()
        )
        elapsed_ms = (time.time() - start_time) * 1000
        return {
            "status": "healthy",
            "response_time_ms": round(elapsed_ms, 2),
            "accounting_failures": failed_postings,
        }
    except Exception as e:
        current_app.logger.exception("Database health check failed")
        db.session.rollback()
        return {
            "status": "unhealthy",
            "error": str(e),
        }


@system_bp.get("/api/health")
def health():
    database = check_database_health()
    healthy = database["status"] == "healthy"
    return jsonify({
        "status": "ok" if healthy else "degraded",
        "timestamp": to_utc_z(utcnow()),
        "checks": {"database": database},
    }), 200 if healthy else 503

# backend/tradeledger/routes/system.py
"""
System health endpoint.

Reports database connectivity plus a few ledger counters useful when
debugging a deployment.
"""

import time
from flask import Blueprint, current_app
from sqlalchemy.exc import SQLAlchemyError

from ..extensions import db
from ..models import Party, PaymentRecord, Product, TradeDocument, Warehouse
from ..time_utils import utcnow

system_bp = Blueprint("system", __name__, url_prefix="/api")


def check_database_health() -> dict:
    """Count the core tables; any database error marks the check unhealthy."""
    start_time = time.time()
    try:
        details = {
            "warehouses": db.session.query(Warehouse).count(),
            "products": db.session.query(Product).count(),
            "parties": db.session.query(Party).count(),
            "documents": db.session.query(TradeDocument).count(),
            "payments": db.session.query(PaymentRecord).count(),
        }
        elapsed_ms = (time.time() - start_time) * 1000
        return {
            "status": "healthy",
            "latency_ms": round(elapsed_ms, 2),
            "details": details,
        }
    except SQLAlchemyError:
        elapsed_ms = (time.time() - start_time) * 1000
        current_app.logger.exception("Database health check failed")
        return {
            "status": "unhealthy",
            "latency_ms": round(elapsed_ms, 2),
            "error": "Database error",
        }


@system_bp.get("/health")
def health():
    """
    Returns:
    - 200: database reachable
    - 503: database unhealthy
    """
    database_health = check_database_health()
    http_status = 200 if database_health["status"] == "healthy" else 503
    return {
        "status": database_health["status"],
        "timestamp": utcnow().isoformat() + "Z",
        "checks": {"database": database_health},
    }, http_status

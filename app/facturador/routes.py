from flask import Blueprint, current_app
from sqlalchemy import text
from sqlalchemy.exc import SQLAlchemyError

from app.facturador.db import db_session
from app.facturador.errors import ServiceUnavailableError, ok

bp = Blueprint("routes", __name__)


@bp.get("/api/health")
def health():
    """Health check with a database round-trip."""
    try:
        db_session().execute(text("SELECT 1"))
    except SQLAlchemyError as e:
        current_app.logger.error("Health check DB failure: %s", e)
        raise ServiceUnavailableError("Base de datos no disponible")
    return ok(status="ok", mode="restaurant" if current_app.config.get("RESTAURANT_MODE") else "retail")


@bp.get("/healthz")
def healthz():
    """
    Fast health check for probes. No DB access, minimal overhead.
    """
    return "ok", 200

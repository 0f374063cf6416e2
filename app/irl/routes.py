from flask import Blueprint, current_app

bp = Blueprint("routes", __name__)


@bp.get("/health")
def health():
    """Liveness plus the result of the startup schema check."""
    missing = current_app.config.get("_schema_health_missing") or []
    return {"ok": True, "schemaOk": not missing, "schemaMissing": list(missing)}


@bp.get("/healthz")
def healthz():
    # Probe endpoint: no DB access.
    return "ok", 200

import logging
import os
from datetime import timedelta

from flask import Flask, g, request
from dotenv import load_dotenv
from sqlalchemy import inspect as sa_inspect

from app.irl.config import DEFAULT_SECRET_KEY, load_config
from app.irl.db import init_db, teardown_db_session
from app.irl.models import Base  # noqa: F401  (registers every table on Base.metadata)
from app.irl.audit import init_request_audit_log
from app.irl.errors import error_response, register_error_handlers
from app.irl.security import csrf_required, ensure_csrf_token, validate_csrf
from app.irl.routes import bp as routes_bp
from app.irl.auth import bp as auth_bp, load_current_user
from app.irl.modules.users.routes import bp as users_bp
from app.irl.modules.persons.routes import bp as persons_bp
from app.irl.modules.groups.routes import bp as groups_bp
from app.irl.modules.memberships.routes import bp as memberships_bp
from app.irl.modules.contact_information.routes import bp as contact_information_bp
from app.irl.modules.interests.routes import bp as interests_bp, person_bp as person_interests_bp
from app.irl.modules.claims.routes import bp as claims_bp
from app.irl.modules.masquerade.routes import bp as masquerade_bp
from app.irl.modules.audit_logs.routes import bp as audit_logs_bp
from app.irl.modules.system.routes import bp as system_bp, systems_bp
from app.irl.modules.group_invites.routes import bp as group_invites_bp

logger = logging.getLogger(__name__)

_HEALTH_PATHS = ("/health", "/healthz")

_BLUEPRINTS = (
    (routes_bp, None),
    (auth_bp, "/api/auth"),
    (users_bp, "/api/users"),
    (persons_bp, "/api/persons"),
    (person_interests_bp, "/api/persons"),
    (groups_bp, "/api/groups"),
    (memberships_bp, "/api/person-groups"),
    (contact_information_bp, "/api"),
    (interests_bp, "/api/interests"),
    (claims_bp, "/api/claims"),
    (masquerade_bp, "/api/masquerade"),
    (audit_logs_bp, "/api/audit-logs"),
    (system_bp, "/api/system"),
    (systems_bp, "/api/systems"),
    (group_invites_bp, "/api/group-invites"),
)

# Tables the running code expects; anything missing means migrations are behind.
_EXPECTED_TABLES = (
    "users",
    "people",
    "groups",
    "person_groups",
    "contact_information",
    "person_contact_information",
    "group_contact_information",
    "claims",
    "interests",
    "person_interests",
    "audit_events",
    "audit_logs",
    "systems",
    "system_contact_information",
    "group_invites",
    "email_change_requests",
)
_EXPECTED_COLUMNS = (("people", "interest_vector"),)


def _check_production_settings(app: Flask) -> None:
    """Refuse to boot a production app on SQLite or the default secret."""
    if not app.config.get("IS_PRODUCTION"):
        return
    db_url = str(app.config.get("DATABASE_URL") or "").strip()
    if not db_url:
        raise RuntimeError("DATABASE_URL is required in production.")
    if db_url.startswith("sqlite"):
        raise RuntimeError("DATABASE_URL must be Postgres in production (not sqlite).")
    if str(app.config.get("SECRET_KEY") or "") in ("", DEFAULT_SECRET_KEY):
        raise RuntimeError("SECRET_KEY must be set to a strong value in production.")


def _register_fork_hook(app: Flask) -> None:
    # gunicorn --preload forks after the engine exists; children need fresh connections.
    if not hasattr(os, "register_at_fork"):
        return

    def _after_fork_child() -> None:
        engine = app.extensions.get("sqlalchemy_engine")
        if engine is not None:
            engine.dispose()
            app.logger.info("Disposed DB engine after fork (pid=%s)", os.getpid())

    os.register_at_fork(after_in_child=_after_fork_child)


def missing_schema_objects(app: Flask) -> list[str]:
    insp = sa_inspect(app.extensions["sqlalchemy_engine"])
    missing = [f"{name} (table)" for name in _EXPECTED_TABLES if not insp.has_table(name)]
    for table, column in _EXPECTED_COLUMNS:
        if insp.has_table(table) and column not in {c["name"] for c in insp.get_columns(table)}:
            missing.append(f"{table}.{column}")
    return missing


def _run_schema_health_check(app: Flask) -> None:
    try:
        missing = missing_schema_objects(app)
    except Exception as e:
        app.logger.exception("Schema health check failed: %s", e)
        missing = ["(schema check failed)"]
    app.config["_schema_health_missing"] = missing
    if missing:
        app.logger.error("DB schema out of date; run `alembic upgrade head`. Missing: %s", ", ".join(missing))


def create_app() -> Flask:
    load_dotenv()
    app = Flask(__name__)
    app.config.from_mapping(load_config())
    app.config["PERMANENT_SESSION_LIFETIME"] = timedelta(days=app.config["SESSION_LIFETIME_DAYS"])
    app.config["SESSION_REFRESH_EACH_REQUEST"] = True

    _check_production_settings(app)

    @app.before_request
    def _csrf_guard():
        if request.path.startswith(_HEALTH_PATHS):
            return None
        ensure_csrf_token()
        if app.config.get("CSRF_ENABLED") and csrf_required(request) and not validate_csrf(request):
            return error_response(400, "CSRF token missing or invalid")
        return None

    @app.before_request
    def _load_user():
        if request.path.startswith(_HEALTH_PATHS):
            g.current_user = None
            g.original_user = None
            return None
        return load_current_user()

    init_db(app)
    _register_fork_hook(app)
    register_error_handlers(app)
    init_request_audit_log(app)

    for blueprint, prefix in _BLUEPRINTS:
        app.register_blueprint(blueprint, url_prefix=prefix)

    app.teardown_appcontext(teardown_db_session)
    _run_schema_health_check(app)

    logger.info("create_app() complete (env=%s)", app.config["ENV"])
    return app

from __future__ import annotations

from flask import Blueprint, request

from app.irl.db import db_session
from app.irl.rbac import require_system_admin
from app.irl.utils import paginated, parse_id, parse_pagination
from app.irl.modules.audit_logs import service as audit_logs_service

bp = Blueprint("audit_logs", __name__)


@bp.get("")
@require_system_admin
def list_audit_logs():
    s = db_session()
    page, limit = parse_pagination(default_limit=50, max_limit=100)
    raw_user_id = (request.args.get("userId") or "").strip()
    items, total = audit_logs_service.list_audit_logs(
        s,
        page,
        limit,
        user_id=parse_id(raw_user_id, "userId") if raw_user_id else None,
        method=(request.args.get("method") or "").strip() or None,
        path=(request.args.get("path") or "").strip() or None,
    )
    return paginated([audit_logs_service.audit_log_to_dict(log) for log in items], total, page, limit)


@bp.get("/events")
@require_system_admin
def list_audit_events():
    s = db_session()
    page, limit = parse_pagination(default_limit=50, max_limit=100)
    items, total = audit_logs_service.list_audit_events(
        s,
        page,
        limit,
        action=(request.args.get("action") or "").strip() or None,
        entity_type=(request.args.get("entityType") or "").strip() or None,
        entity_id=(request.args.get("entityId") or "").strip() or None,
    )
    return paginated([audit_logs_service.audit_event_to_dict(ev) for ev in items], total, page, limit)

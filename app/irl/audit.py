from __future__ import annotations

import json
from typing import Any

from flask import Flask, Response, current_app, g, request
from sqlalchemy.orm import Session

from app.irl.db import session_scope
from app.irl.models import AuditEvent, AuditLog, User

_SKIPPED_PREFIXES = ("/api/auth", "/health", "/healthz", "/static/")


def record_event(
    s: Session,
    *,
    actor: User | None,
    action: str,
    entity_type: str | None = None,
    entity_id: str | None = None,
    reason: str | None = None,
    metadata: dict[str, Any] | None = None,
    request_id: str | None = None,
) -> AuditEvent:
    """
    Append-only audit event helper.
    """
    rid = request_id or getattr(g, "request_id", None)
    original: User | None = getattr(g, "original_user", None)
    ev = AuditEvent(
        request_id=rid,
        actor_user_id=actor.id if actor else None,
        actor_user_email=actor.email if actor else None,
        original_user_id=original.id if original else None,
        action=action,
        entity_type=entity_type,
        entity_id=entity_id,
        reason=reason,
        metadata_json=json.dumps(metadata, sort_keys=True, default=str) if metadata else None,
    )
    s.add(ev)
    return ev


def client_ip() -> str | None:
    cf = request.headers.get("CF-Connecting-IP")
    if cf:
        return cf.strip()
    forwarded = request.headers.get("X-Forwarded-For")
    if forwarded:
        return forwarded.split(",")[0].strip()
    real = request.headers.get("X-Real-IP")
    if real:
        return real.strip()
    return request.remote_addr


def _write_request_log(response: Response) -> Response:
    if not current_app.config.get("AUDIT_LOG_ENABLED"):
        return response
    if not request.path.startswith("/api/") or request.path.startswith(_SKIPPED_PREFIXES):
        return response

    user: User | None = getattr(g, "current_user", None)
    original: User | None = getattr(g, "original_user", None)
    try:
        # Separate session: the request session may already be rolled back.
        with session_scope(current_app) as s:
            s.add(
                AuditLog(
                    user_id=user.id if user else None,
                    original_user_id=original.id if original else None,
                    method=request.method,
                    path=request.full_path.rstrip("?")[:512],
                    status_code=response.status_code,
                    ip_address=client_ip(),
                    user_agent=(request.headers.get("User-Agent") or "")[:512] or None,
                )
            )
    except Exception:
        current_app.logger.exception("Failed to write audit log (request_id=%s)", getattr(g, "request_id", None))
    return response


def init_request_audit_log(app: Flask) -> None:
    app.after_request(_write_request_log)

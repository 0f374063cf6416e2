from __future__ import annotations

import json
from typing import TYPE_CHECKING

from sqlalchemy import func, select

from app.irl.models import AuditEvent, AuditLog
from app.irl.modules.users.service import user_to_dict
from app.irl.utils import iso

if TYPE_CHECKING:
    from sqlalchemy.orm import Session


def audit_log_to_dict(log: AuditLog) -> dict:
    data = {
        "id": log.id,
        "userId": log.user_id,
        "originalUserId": log.original_user_id,
        "method": log.method,
        "path": log.path,
        "statusCode": log.status_code,
        "ipAddress": log.ip_address,
        "userAgent": log.user_agent,
        "createdAt": iso(log.created_at),
    }
    if log.user is not None:
        data["user"] = user_to_dict(log.user)
    return data


def audit_event_to_dict(ev: AuditEvent) -> dict:
    return {
        "id": ev.id,
        "requestId": ev.request_id,
        "actorUserId": ev.actor_user_id,
        "actorUserEmail": ev.actor_user_email,
        "originalUserId": ev.original_user_id,
        "action": ev.action,
        "entityType": ev.entity_type,
        "entityId": ev.entity_id,
        "reason": ev.reason,
        "metadata": json.loads(ev.metadata_json) if ev.metadata_json else None,
        "createdAt": iso(ev.created_at),
    }


def list_audit_logs(
    s: "Session",
    page: int,
    limit: int,
    *,
    user_id: int | None = None,
    method: str | None = None,
    path: str | None = None,
) -> tuple[list[AuditLog], int]:
    base = select(AuditLog)
    if user_id is not None:
        base = base.where(AuditLog.user_id == user_id)
    if method:
        base = base.where(AuditLog.method == method.upper())
    if path:
        base = base.where(AuditLog.path.contains(path))
    total = s.scalar(select(func.count()).select_from(base.subquery())) or 0
    items = s.execute(
        base.order_by(AuditLog.created_at.desc(), AuditLog.id.desc()).offset((page - 1) * limit).limit(limit)
    ).scalars().all()
    return list(items), total


def list_audit_events(
    s: "Session",
    page: int,
    limit: int,
    *,
    action: str | None = None,
    entity_type: str | None = None,
    entity_id: str | None = None,
) -> tuple[list[AuditEvent], int]:
    base = select(AuditEvent)
    if action:
        base = base.where(AuditEvent.action == action)
    if entity_type:
        base = base.where(AuditEvent.entity_type == entity_type)
    if entity_id:
        base = base.where(AuditEvent.entity_id == entity_id)
    total = s.scalar(select(func.count()).select_from(base.subquery())) or 0
    items = s.execute(
        base.order_by(AuditEvent.created_at.desc(), AuditEvent.id.desc()).offset((page - 1) * limit).limit(limit)
    ).scalars().all()
    return list(items), total

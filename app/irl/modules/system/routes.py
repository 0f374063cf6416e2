from __future__ import annotations

from flask import Blueprint, g

from app.irl.db import db_session
from app.irl.rbac import require_system_admin
from app.irl.utils import json_payload, ok, paginated, parse_id, parse_pagination
from app.irl.modules.system import service as system_service

# /api/system: the singleton settings row
bp = Blueprint("system", __name__)
# /api/systems: admin CRUD over the same table
systems_bp = Blueprint("systems", __name__)


@bp.get("")
def get_system():
    s = db_session()
    return ok(system_service.system_to_dict(system_service.get_system(s)))


@bp.post("")
@require_system_admin
def create_system():
    s = db_session()
    system = system_service.create_system(s, json_payload(), g.current_user)
    s.commit()
    return ok(system_service.system_to_dict(system), "System created successfully", status=201)


@bp.put("")
@require_system_admin
def replace_system():
    s = db_session()
    system, _created = system_service.upsert_system(s, json_payload(), g.current_user)
    s.commit()
    return ok(system_service.system_to_dict(system), "System updated successfully")


@bp.patch("")
@require_system_admin
def update_system():
    payload = json_payload()
    s = db_session()
    system = system_service.get_system(s)
    system_service.update_system(s, system, payload, g.current_user, replace=False)
    s.commit()
    return ok(system_service.system_to_dict(system), "System updated successfully")


@bp.delete("")
@require_system_admin
def delete_system():
    s = db_session()
    system = system_service.get_system(s)
    system_service.delete_system(s, system, g.current_user)
    s.commit()
    return ok(message="System deleted successfully")


@systems_bp.get("")
@require_system_admin
def list_systems():
    s = db_session()
    page, limit = parse_pagination()
    items, total = system_service.list_systems(s, page, limit)
    return paginated([system_service.system_to_dict(x) for x in items], total, page, limit)


@systems_bp.post("")
@require_system_admin
def create_system_entry():
    return create_system()


@systems_bp.get("/<system_id>")
@require_system_admin
def get_system_entry(system_id: str):
    s = db_session()
    system = system_service.get_system_by_id(s, parse_id(system_id, "id"))
    return ok(system_service.system_to_dict(system))


@systems_bp.put("/<system_id>")
@require_system_admin
def replace_system_entry(system_id: str):
    return _update_entry(system_id, replace=True)


@systems_bp.patch("/<system_id>")
@require_system_admin
def update_system_entry(system_id: str):
    return _update_entry(system_id, replace=False)


def _update_entry(system_id: str, *, replace: bool):
    sid = parse_id(system_id, "id")
    payload = json_payload()
    s = db_session()
    system = system_service.get_system_by_id(s, sid)
    system_service.update_system(s, system, payload, g.current_user, replace=replace)
    s.commit()
    return ok(system_service.system_to_dict(system), "System updated successfully")


@systems_bp.delete("/<system_id>")
@require_system_admin
def delete_system_entry(system_id: str):
    s = db_session()
    system = system_service.get_system_by_id(s, parse_id(system_id, "id"))
    system_service.delete_system(s, system, g.current_user)
    s.commit()
    return ok(message="System deleted successfully")

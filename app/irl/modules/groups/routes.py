from __future__ import annotations

from flask import Blueprint, g, request

from app.irl.db import db_session
from app.irl.rbac import current_identity, require_auth
from app.irl.utils import json_payload, ok, paginated, parse_pagination
from app.irl.modules.groups import service as groups_service
from app.irl.modules.memberships import service as memberships_service

bp = Blueprint("groups", __name__)


@bp.get("")
@require_auth
def list_groups():
    s = db_session()
    page, limit = parse_pagination()
    search = (request.args.get("search") or "").strip() or None
    items, total = groups_service.list_groups(s, current_identity(), page, limit, search)
    return paginated([groups_service.group_to_dict(grp) for grp in items], total, page, limit)


@bp.get("/<ref>")
@require_auth
def get_group(ref: str):
    s = db_session()
    group = groups_service.resolve_group(s, ref)
    groups_service.ensure_can_view(s, current_identity(), group)
    return ok(groups_service.group_to_dict(group))


@bp.post("")
@require_auth
def create_group():
    s = db_session()
    group = groups_service.create_group(s, json_payload(), current_identity(), g.current_user)
    s.commit()
    return ok(groups_service.group_to_dict(group), "Group created successfully", status=201)


@bp.put("/<ref>")
@require_auth
def replace_group(ref: str):
    return _update(ref, partial=False)


@bp.patch("/<ref>")
@require_auth
def patch_group(ref: str):
    return _update(ref, partial=True)


def _update(ref: str, *, partial: bool):
    s = db_session()
    group = groups_service.resolve_group(s, ref)
    groups_service.update_group(s, group, json_payload(), current_identity(), g.current_user, partial=partial)
    s.commit()
    return ok(groups_service.group_to_dict(group), "Group updated successfully")


@bp.delete("/<ref>")
@require_auth
def delete_group(ref: str):
    s = db_session()
    group = groups_service.resolve_group(s, ref)
    groups_service.delete_group(s, group, current_identity(), g.current_user)
    s.commit()
    return ok(message="Group deleted successfully")


@bp.get("/<ref>/members")
@require_auth
def group_members(ref: str):
    s = db_session()
    group = groups_service.resolve_group(s, ref)
    groups_service.ensure_can_view(s, current_identity(), group)
    members = memberships_service.active_members_of_group(s, group.id)
    return ok([memberships_service.membership_to_dict(m, include_relations=True) for m in members])

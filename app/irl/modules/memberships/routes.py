from __future__ import annotations

from flask import Blueprint, g, request

from app.irl.db import db_session
from app.irl.rbac import current_identity, require_auth
from app.irl.utils import json_payload, ok, paginated, parse_id, parse_pagination
from app.irl.modules.memberships import service as memberships_service

bp = Blueprint("memberships", __name__)


def _optional_filter(name: str) -> int | None:
    raw = request.args.get(name)
    if raw is None or raw == "":
        return None
    return parse_id(raw, name)


@bp.get("")
@require_auth
def list_memberships():
    s = db_session()
    page, limit = parse_pagination()
    items, total = memberships_service.list_memberships(
        s,
        current_identity(),
        page,
        limit,
        group_id=_optional_filter("groupId"),
        person_id=_optional_filter("personId"),
    )
    return paginated(
        [memberships_service.membership_to_dict(m, include_relations=True) for m in items], total, page, limit
    )


@bp.get("/<membership_id>")
@require_auth
def get_membership(membership_id: str):
    s = db_session()
    m = memberships_service.get_membership(s, parse_id(membership_id, "id"))
    memberships_service.ensure_can_view_membership(s, current_identity(), m)
    return ok(memberships_service.membership_to_dict(m, include_relations=True))


@bp.post("")
@require_auth
def create_membership():
    s = db_session()
    m = memberships_service.create_membership(s, json_payload(), current_identity(), g.current_user)
    s.commit()
    return ok(
        memberships_service.membership_to_dict(m, include_relations=True),
        "Person-group relationship created successfully",
        status=201,
    )


@bp.put("/<membership_id>")
@require_auth
def replace_membership(membership_id: str):
    return _update(membership_id, replace=True)


@bp.patch("/<membership_id>")
@require_auth
def patch_membership(membership_id: str):
    return _update(membership_id, replace=False)


def _update(membership_id: str, *, replace: bool):
    mid = parse_id(membership_id, "id")
    payload = json_payload()
    s = db_session()
    m = memberships_service.update_membership(s, mid, payload, current_identity(), g.current_user, replace=replace)
    s.commit()
    # Reload person/group in case the update moved the membership.
    s.refresh(m)
    return ok(
        memberships_service.membership_to_dict(m, include_relations=True),
        "Person-group relationship updated successfully",
    )


@bp.delete("/<membership_id>")
@require_auth
def delete_membership(membership_id: str):
    mid = parse_id(membership_id, "id")
    s = db_session()
    memberships_service.delete_membership(s, mid, current_identity(), g.current_user)
    s.commit()
    return ok(message="Person-group relationship deleted successfully")

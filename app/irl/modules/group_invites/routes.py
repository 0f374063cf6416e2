from __future__ import annotations

from flask import Blueprint, g, request

from app.irl.db import db_session
from app.irl.rbac import current_identity, require_auth
from app.irl.utils import json_payload, ok, paginated, parse_id, parse_pagination
from app.irl.modules.group_invites import service as invites_service

bp = Blueprint("group_invites", __name__)


@bp.get("")
@require_auth
def list_invites():
    s = db_session()
    page, limit = parse_pagination()
    raw_group = request.args.get("groupId")
    group_id = parse_id(raw_group, "groupId") if raw_group else None
    items, total = invites_service.list_invites(
        s, current_identity(), g.current_user, page, limit, group_id=group_id
    )
    return paginated([invites_service.invite_to_dict(i) for i in items], total, page, limit)


@bp.get("/<invite_id>")
@require_auth
def get_invite(invite_id: str):
    s = db_session()
    invite = invites_service.get_invite(s, parse_id(invite_id, "id"))
    invites_service.ensure_can_view(s, current_identity(), g.current_user, invite)
    return ok(invites_service.invite_to_dict(invite))


@bp.post("")
@require_auth
def create_invite():
    s = db_session()
    invite = invites_service.create_invite(s, json_payload(), current_identity(), g.current_user)
    s.commit()
    return ok(invites_service.invite_to_dict(invite), "Group invite created successfully", status=201)


@bp.put("/<invite_id>")
@require_auth
def replace_invite(invite_id: str):
    return _update(invite_id, replace=True)


@bp.patch("/<invite_id>")
@require_auth
def update_invite(invite_id: str):
    return _update(invite_id, replace=False)


def _update(invite_id: str, *, replace: bool):
    iid = parse_id(invite_id, "id")
    payload = json_payload()
    s = db_session()
    invite = invites_service.update_invite(s, iid, payload, current_identity(), g.current_user, replace=replace)
    s.commit()
    s.refresh(invite)
    return ok(invites_service.invite_to_dict(invite), "Group invite updated successfully")


@bp.delete("/<invite_id>")
@require_auth
def delete_invite(invite_id: str):
    s = db_session()
    invites_service.delete_invite(s, parse_id(invite_id, "id"), current_identity(), g.current_user)
    s.commit()
    return ok(message="Group invite deleted successfully")

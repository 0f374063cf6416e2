from __future__ import annotations

from flask import Blueprint, g, request

from app.irl.db import db_session
from app.irl.rbac import require_auth, require_system_admin
from app.irl.utils import json_payload, ok, paginated, parse_id, parse_pagination
from app.irl.modules.users import service as users_service

bp = Blueprint("users", __name__)


@bp.post("")
def register():
    s = db_session()
    user, is_first_user = users_service.register_user(s, json_payload(), getattr(g, "current_user", None))
    s.commit()
    message = "Account created successfully" if is_first_user else "User created successfully"
    return ok(users_service.user_to_dict(user), message, status=201)


@bp.get("/verify")
def verify():
    s = db_session()
    users_service.verify_email(s, (request.args.get("token") or "").strip() or None)
    s.commit()
    return ok(message="Email verified successfully")


@bp.get("/me")
@require_auth
def me():
    return ok(users_service.user_to_dict(g.current_user))


@bp.post("/me/password")
@require_auth
def me_password():
    s = db_session()
    users_service.change_password(s, g.current_user, json_payload())
    s.commit()
    return ok(message="Password updated successfully")


@bp.post("/me/email")
@require_auth
def me_email():
    s = db_session()
    users_service.request_email_change(s, g.current_user, json_payload())
    s.commit()
    return ok(message="Verification email sent to new address")


@bp.get("/verify-email-change")
def verify_email_change():
    s = db_session()
    user = users_service.confirm_email_change(s, (request.args.get("token") or "").strip() or None)
    s.commit()
    return ok(users_service.user_to_dict(user), "Email address updated successfully")


@bp.get("")
@require_system_admin
def list_users():
    s = db_session()
    page, limit = parse_pagination()
    items, total = users_service.list_users(s, page, limit)
    return paginated([users_service.user_to_dict(u) for u in items], total, page, limit)


@bp.get("/<user_id>")
@require_system_admin
def get_user(user_id: str):
    s = db_session()
    user = users_service.get_active_user(s, parse_id(user_id, "id"))
    return ok(users_service.user_to_dict(user))


@bp.patch("/<user_id>")
@require_system_admin
def update_user(user_id: str):
    s = db_session()
    user = users_service.get_active_user(s, parse_id(user_id, "id"))
    users_service.update_user(s, user, json_payload(), g.current_user)
    s.commit()
    return ok(users_service.user_to_dict(user), "User updated successfully")


@bp.delete("/<user_id>")
@require_system_admin
def delete_user(user_id: str):
    s = db_session()
    user = users_service.get_active_user(s, parse_id(user_id, "id"))
    users_service.delete_user(s, user, g.current_user)
    s.commit()
    return ok(message="User deleted successfully")

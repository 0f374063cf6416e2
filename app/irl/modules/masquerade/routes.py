from __future__ import annotations

from flask import Blueprint

from app.irl.db import db_session
from app.irl.utils import json_payload, ok
from app.irl.modules.masquerade import service as masquerade_service

bp = Blueprint("masquerade", __name__)


@bp.post("/start")
def start():
    s = db_session()
    target = masquerade_service.start(s, json_payload())
    s.commit()
    return ok({"email": target.email, "isSystemAdmin": bool(target.is_system_admin)})


@bp.post("/exit")
def exit_masquerade():
    s = db_session()
    masquerade_service.stop(s)
    s.commit()
    return ok({"success": True})


@bp.get("/status")
def status():
    return ok(masquerade_service.status())

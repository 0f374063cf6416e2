from __future__ import annotations

from flask import Blueprint, g

from app.irl.db import db_session
from app.irl.rbac import current_identity, require_auth
from app.irl.utils import json_payload, ok, paginated, parse_id, parse_pagination
from app.irl.modules.claims import service as claims_service

bp = Blueprint("claims", __name__)


@bp.get("")
@require_auth
def list_claims():
    s = db_session()
    page, limit = parse_pagination()
    items, total = claims_service.list_claims(s, current_identity(), page, limit)
    return paginated([claims_service.claim_to_dict(c) for c in items], total, page, limit)


@bp.get("/<claim_id>")
@require_auth
def get_claim(claim_id: str):
    s = db_session()
    claim = claims_service.get_claim(s, current_identity(), parse_id(claim_id, "id"))
    return ok(claims_service.claim_to_dict(claim))


@bp.post("")
@require_auth
def create_claim():
    s = db_session()
    claim = claims_service.create_claim(s, json_payload(), current_identity(), g.current_user)
    s.commit()
    return ok(claims_service.claim_to_dict(claim), "Claim created successfully", status=201)


@bp.patch("/<claim_id>")
@require_auth
def update_claim(claim_id: str):
    cid = parse_id(claim_id, "id")
    payload = json_payload()
    s = db_session()
    identity = current_identity()
    claim = claims_service.get_claim(s, identity, cid)
    claims_service.update_claim(s, claim, payload, identity, g.current_user)
    s.commit()
    return ok(claims_service.claim_to_dict(claim), "Claim updated successfully")


@bp.delete("/<claim_id>")
@require_auth
def delete_claim(claim_id: str):
    s = db_session()
    claim = claims_service.get_claim(s, current_identity(), parse_id(claim_id, "id"))
    claims_service.delete_claim(s, claim, g.current_user)
    s.commit()
    return ok(message="Claim deleted successfully")

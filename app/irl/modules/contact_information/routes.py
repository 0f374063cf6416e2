from __future__ import annotations

from flask import Blueprint, g

from app.irl.db import db_session
from app.irl.rbac import current_identity, require_auth
from app.irl.utils import json_payload, ok, parse_id
from app.irl.modules.contact_information import service as contact_service
from app.irl.modules.groups import service as groups_service
from app.irl.modules.persons import service as persons_service
from app.irl.modules.system import service as system_service

bp = Blueprint("contact_information", __name__)


@bp.get("/persons/<ref>/contact-information")
@require_auth
def list_person_contacts(ref: str):
    s = db_session()
    person = persons_service.resolve_person(s, ref)
    items = contact_service.list_for_person(s, current_identity(), person)
    return ok([contact_service.contact_to_dict(c) for c in items])


@bp.post("/persons/<ref>/contact-information")
@require_auth
def create_person_contact(ref: str):
    s = db_session()
    person = persons_service.resolve_person(s, ref)
    contact = contact_service.create_for_person(s, person, json_payload(), current_identity(), g.current_user)
    s.commit()
    return ok(contact_service.contact_to_dict(contact), "Contact information created successfully", status=201)


@bp.get("/groups/<ref>/contact-information")
@require_auth
def list_group_contacts(ref: str):
    s = db_session()
    identity = current_identity()
    group = groups_service.resolve_group(s, ref)
    groups_service.ensure_can_view(s, identity, group)
    items = contact_service.list_for_group(s, identity, group)
    return ok([contact_service.contact_to_dict(c) for c in items])


@bp.post("/groups/<ref>/contact-information")
@require_auth
def create_group_contact(ref: str):
    s = db_session()
    group = groups_service.resolve_group(s, ref)
    contact = contact_service.create_for_group(s, group, json_payload(), current_identity(), g.current_user)
    s.commit()
    return ok(contact_service.contact_to_dict(contact), "Contact information created successfully", status=201)


@bp.get("/system/contact-information")
@require_auth
def list_system_contacts():
    s = db_session()
    system = system_service.get_system(s)
    items = contact_service.list_for_system(s, current_identity(), system)
    return ok([contact_service.contact_to_dict(c) for c in items])


@bp.post("/system/contact-information")
@require_auth
def create_system_contact():
    s = db_session()
    system = system_service.get_system(s)
    contact = contact_service.create_for_system(s, system, json_payload(), current_identity(), g.current_user)
    s.commit()
    return ok(contact_service.contact_to_dict(contact), "Contact information created successfully", status=201)


@bp.patch("/contact-information/<contact_id>")
@require_auth
def update_contact(contact_id: str):
    cid = parse_id(contact_id, "id")
    payload = json_payload()
    s = db_session()
    contact = contact_service.get_contact(s, cid)
    contact_service.update_contact(s, contact, payload, current_identity(), g.current_user)
    s.commit()
    return ok(contact_service.contact_to_dict(contact), "Contact information updated successfully")


@bp.delete("/contact-information/<contact_id>")
@require_auth
def delete_contact(contact_id: str):
    s = db_session()
    contact = contact_service.get_contact(s, parse_id(contact_id, "id"))
    contact_service.delete_contact(s, contact, current_identity(), g.current_user)
    s.commit()
    return ok(message="Contact information deleted successfully")

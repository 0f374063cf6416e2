import pytest
from werkzeug.security import generate_password_hash

from app.irl import create_app
from app.irl.auth import reset_login_attempts
from app.irl.db import session_scope
from app.irl.models import AuditEvent, Base, User
from app.irl.modules.system.models import System

PASSWORD = "password1"


@pytest.fixture()
def client(tmp_path, monkeypatch):
    monkeypatch.setenv("SECRET_KEY", "test-secret")
    monkeypatch.setenv("DATABASE_URL", f"sqlite:///{tmp_path/'test.db'}")
    monkeypatch.setenv("ENV", "test")
    monkeypatch.setenv("CSRF_ENABLED", "0")
    reset_login_attempts()

    app = create_app()
    Base.metadata.create_all(bind=app.extensions["sqlalchemy_engine"])

    pw = generate_password_hash(PASSWORD)
    with session_scope(app) as s:
        s.add_all(
            [
                User(email="admin@example.com", password_hash=pw, is_system_admin=True),
                User(email="member@example.com", password_hash=pw),
            ]
        )

    return app.test_client()


def login(client, email: str) -> None:
    r = client.post("/api/auth/login", json={"email": email, "password": PASSWORD})
    assert r.status_code == 200, r.json


def test_singleton_lifecycle(client):
    r = client.get("/api/system")
    assert r.status_code == 404
    assert r.json["error"] == "System not found"

    login(client, "admin@example.com")
    r = client.post("/api/system", json={"name": ""})
    assert r.status_code == 400
    assert r.json["error"] == "Name is required"

    r = client.post("/api/system", json={"name": "Neighbours", "description": "Local directory"})
    assert r.status_code == 201
    assert r.json["message"] == "System created successfully"
    assert r.json["data"]["id"] == 1
    assert r.json["data"]["registrationOpen"] is True

    r = client.post("/api/system", json={"name": "Again"})
    assert r.status_code == 409
    assert r.json["error"] == "System already exists"

    r = client.patch("/api/system", json={"registrationOpen": False})
    assert r.status_code == 200
    assert r.json["data"]["name"] == "Neighbours"
    assert r.json["data"]["registrationOpen"] is False

    # PUT replaces: omitted description is cleared, registration reopens
    r = client.put("/api/system", json={"name": "Renamed"})
    assert r.status_code == 200
    assert r.json["message"] == "System updated successfully"
    assert r.json["data"]["description"] is None
    assert r.json["data"]["registrationOpen"] is True

    client.post("/api/auth/logout")
    r = client.get("/api/system")
    assert r.status_code == 200
    assert r.json["data"]["name"] == "Renamed"

    login(client, "admin@example.com")
    r = client.delete("/api/system")
    assert r.status_code == 200
    assert r.json["message"] == "System deleted successfully"
    assert client.get("/api/system").status_code == 404
    assert client.patch("/api/system", json={"name": "Gone"}).status_code == 404

    # PUT recreates the soft-deleted row
    r = client.put("/api/system", json={"name": "Back"})
    assert r.status_code == 200
    with session_scope(client.application) as s:
        assert s.query(System).count() == 1
        actions = {e.action for e in s.query(AuditEvent).all()}
    assert {"system.create", "system.update", "system.delete"} <= actions


def test_writes_require_system_admin(client):
    r = client.post("/api/system", json={"name": "Nope"})
    assert r.status_code == 401

    login(client, "member@example.com")
    r = client.post("/api/system", json={"name": "Nope"})
    assert r.status_code == 403
    assert r.json["error"] == "Forbidden: Only system administrators can access this resource"
    assert client.get("/api/systems").status_code == 403


def test_systems_collection(client):
    login(client, "admin@example.com")
    r = client.get("/api/systems")
    assert r.status_code == 200
    assert r.json["data"] == []

    r = client.post("/api/systems", json={"name": "Neighbours"})
    assert r.status_code == 201

    r = client.get("/api/systems")
    assert r.json["pagination"]["total"] == 1

    assert client.get("/api/systems/1").json["data"]["name"] == "Neighbours"
    assert client.get("/api/systems/2").status_code == 404
    assert client.get("/api/systems/abc").status_code == 400

    r = client.patch("/api/systems/1", json={"description": "Local"})
    assert r.status_code == 200
    assert r.json["data"]["description"] == "Local"

    r = client.put("/api/systems/1", json={"description": "No name"})
    assert r.status_code == 400

    assert client.delete("/api/systems/1").status_code == 200
    assert client.get("/api/systems").json["pagination"]["total"] == 0


def test_system_contact_information(client):
    login(client, "admin@example.com")
    contact = {"type": "EMAIL", "label": "Help", "value": "help@example.com", "privacy": "PUBLIC"}
    r = client.post("/api/system/contact-information", json=contact)
    assert r.status_code == 404

    client.post("/api/system", json={"name": "Neighbours"})
    r = client.post("/api/system/contact-information", json=contact)
    assert r.status_code == 201
    public_id = r.json["data"]["id"]
    r = client.post("/api/system/contact-information", json={**contact, "value": "ops@example.com", "privacy": "PRIVATE"})
    assert r.status_code == 201
    private_id = r.json["data"]["id"]

    r = client.get("/api/system/contact-information")
    assert {c["id"] for c in r.json["data"]} == {public_id, private_id}

    login(client, "member@example.com")
    r = client.get("/api/system/contact-information")
    assert [c["id"] for c in r.json["data"]] == [public_id]

    r = client.post("/api/system/contact-information", json=contact)
    assert r.status_code == 403
    assert r.json["error"] == "Forbidden: Only system administrators can modify system contact information"

    r = client.patch(f"/api/contact-information/{public_id}", json={"label": "Mine"})
    assert r.status_code == 403
    assert r.json["error"] == "Forbidden: Only system administrators can modify system contact information"

    login(client, "admin@example.com")
    assert client.delete(f"/api/contact-information/{public_id}").status_code == 200
    r = client.get("/api/system/contact-information")
    assert [c["id"] for c in r.json["data"]] == [private_id]

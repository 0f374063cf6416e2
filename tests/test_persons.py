import pytest
from werkzeug.security import generate_password_hash

from app.irl import create_app
from app.irl.auth import reset_login_attempts
from app.irl.db import session_scope
from app.irl.models import Base, User
from app.irl.modules.groups.models import Group
from app.irl.modules.memberships.models import PersonGroup
from app.irl.modules.persons.models import Person

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
        admin = User(email="admin@example.com", password_hash=pw, is_system_admin=True)
        alice = User(email="alice@example.com", password_hash=pw)
        bob = User(email="bob@example.com", password_hash=pw)
        s.add_all([admin, alice, bob])
        s.flush()
        p_alice = Person(user_id=alice.id, display_id="alice", first_name="Alice", last_name="Anders")
        p_bob = Person(user_id=bob.id, display_id="bob", first_name="Bob", last_name="Brown")
        public = Group(display_id="public", name="Public")
        private = Group(display_id="private", name="Private", publicly_visible=False)
        s.add_all([p_alice, p_bob, public, private])
        s.flush()
        s.add_all(
            [
                PersonGroup(person_id=p_bob.id, group_id=public.id, is_admin=True),
                PersonGroup(person_id=p_bob.id, group_id=private.id, is_admin=True),
            ]
        )

    return app.test_client()


def login(client, email: str) -> None:
    r = client.post("/api/auth/login", json={"email": email, "password": PASSWORD})
    assert r.status_code == 200, r.json


def test_list_and_search(client):
    login(client, "alice@example.com")
    r = client.get("/api/persons")
    assert r.status_code == 200
    assert r.json["pagination"]["total"] == 2

    r = client.get("/api/persons?search=brow")
    assert [p["displayId"] for p in r.json["data"]] == ["bob"]


def test_get_by_display_id_or_numeric_id(client):
    login(client, "alice@example.com")
    r = client.get("/api/persons/ALICE")
    assert r.status_code == 200
    pid = r.json["data"]["id"]
    assert r.json["data"]["firstName"] == "Alice"

    r = client.get(f"/api/persons/{pid}")
    assert r.status_code == 200
    assert r.json["data"]["displayId"] == "alice"

    r = client.get("/api/persons/nobody")
    assert r.status_code == 404
    assert r.json["error"] == "Person not found"


def test_create_person_for_self(client):
    login(client, "alice@example.com")
    r = client.post(
        "/api/persons",
        json={"displayId": "Alice-Work", "firstName": "Alice", "lastName": "A", "imageURL": "https://x.test/a.png"},
    )
    assert r.status_code == 201
    assert r.json["message"] == "Person created successfully"
    assert r.json["data"]["displayId"] == "alice-work"
    assert r.json["data"]["imageURL"] == "https://x.test/a.png"

    r = client.get("/api/auth/session")
    assert r.json["data"]["person"]["displayId"] == "alice"


def test_create_person_rules(client):
    login(client, "alice@example.com")
    with session_scope(client.application) as s:
        bob_id = s.query(User).filter(User.email == "bob@example.com").one().id

    r = client.post("/api/persons", json={"displayId": "x", "firstName": "X", "lastName": "Y", "userId": bob_id})
    assert r.status_code == 403
    assert r.json["error"] == "Forbidden: You can only create persons for yourself"

    r = client.post("/api/persons", json={"displayId": "bob", "firstName": "X", "lastName": "Y"})
    assert r.status_code == 409

    r = client.post("/api/persons", json={"displayId": "x", "firstName": "X", "lastName": "Y", "imageURL": "ftp://x"})
    assert r.status_code == 400
    assert r.json["error"] == "URL must use HTTP or HTTPS protocol"

    r = client.post("/api/persons", json={"displayId": "x"})
    assert r.status_code == 400
    assert "First name is required" in r.json["error"]

    login(client, "admin@example.com")
    r = client.post("/api/persons", json={"displayId": "x", "firstName": "X", "lastName": "Y", "userId": bob_id})
    assert r.status_code == 201
    assert r.json["data"]["userId"] == bob_id

    r = client.post("/api/persons", json={"displayId": "z", "firstName": "Z", "lastName": "Z", "userId": 9999})
    assert r.status_code == 400
    assert r.json["error"] == "Referenced user does not exist"


def test_update_and_delete_person(client):
    login(client, "bob@example.com")
    r = client.patch("/api/persons/alice", json={"firstName": "Mallory"})
    assert r.status_code == 403
    assert r.json["error"] == "Forbidden: You do not have permission to modify this person"
    assert client.delete("/api/persons/alice").status_code == 403

    login(client, "alice@example.com")
    r = client.patch("/api/persons/alice", json={"pronouns": "she/her"})
    assert r.status_code == 200
    assert r.json["data"]["pronouns"] == "she/her"
    assert r.json["data"]["lastName"] == "Anders"

    r = client.put("/api/persons/alice", json={"displayId": "alice", "firstName": "Alice", "lastName": "Anders"})
    assert r.status_code == 200
    assert r.json["data"]["pronouns"] is None

    r = client.delete("/api/persons/alice")
    assert r.status_code == 200
    assert r.json["message"] == "Person deleted successfully"
    assert client.get("/api/persons/alice").status_code == 404


def test_person_groups_visibility(client):
    login(client, "bob@example.com")
    r = client.get("/api/persons/bob/groups")
    assert {m["group"]["displayId"] for m in r.json["data"]} == {"public", "private"}

    login(client, "alice@example.com")
    r = client.get("/api/persons/bob/groups")
    assert [m["group"]["displayId"] for m in r.json["data"]] == ["public"]

    login(client, "admin@example.com")
    r = client.get("/api/persons/bob/groups")
    assert len(r.json["data"]) == 2

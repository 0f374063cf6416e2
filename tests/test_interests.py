import numpy as np
import pytest
from werkzeug.security import generate_password_hash

from app.irl import create_app
from app.irl.auth import reset_login_attempts
from app.irl.db import session_scope
from app.irl.models import Base, User
from app.irl.modules.interests import vectors
from app.irl.modules.interests.models import Interest
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
        s.add_all(
            [
                Person(user_id=alice.id, display_id="alice", first_name="Alice", last_name="A"),
                Person(user_id=bob.id, display_id="bob", first_name="Bob", last_name="B"),
                Person(user_id=None, display_id="carl", first_name="Carl", last_name="C"),
                Person(user_id=None, display_id="dana", first_name="Dana", last_name="D"),
            ]
        )
        s.add_all(
            [
                Interest(name="Hiking", category="Outdoors"),
                Interest(name="Climbing", category="Outdoors"),
                Interest(name="Chess", category="Games"),
            ]
        )

    return app.test_client()


def login(client, email: str) -> None:
    r = client.post("/api/auth/login", json={"email": email, "password": PASSWORD})
    assert r.status_code == 200, r.json


def interest_ids(client) -> dict[str, int]:
    with session_scope(client.application) as s:
        return {i.name: i.id for i in s.query(Interest).all()}


def set_interests(client, ref: str, levels: dict[int, float]):
    body = {"interests": [{"interestId": iid, "level": lvl} for iid, lvl in levels.items()]}
    return client.put(f"/api/persons/{ref}/interests", json=body)


def test_vector_helpers():
    vec = vectors.build_vector({2: 0.5, 3: 0.5}, [1, 2, 3])
    assert vec.tolist() == [0.0, 0.5, 0.5]
    unit = vectors.normalize(vec)
    assert np.isclose(np.linalg.norm(unit), 1.0)
    assert vectors.normalize(np.zeros(3)) is None

    a, b, c = object(), object(), object()
    ranked = vectors.rank_by_similarity([1.0, 0.0], [(a, [0.0, 1.0]), (b, [1.0, 0.0]), (c, [1.0])], limit=10)
    assert [p for p, _sim in ranked] == [b, a]
    assert ranked[0][1] == pytest.approx(1.0)
    assert ranked[1][1] == pytest.approx(0.0)


def test_list_interests(client):
    login(client, "alice@example.com")
    r = client.get("/api/interests")
    assert r.status_code == 200
    assert r.json["pagination"]["limit"] == 100
    assert [i["name"] for i in r.json["data"]] == ["Chess", "Climbing", "Hiking"]

    r = client.get("/api/interests?category=Outdoors")
    assert r.json["pagination"]["total"] == 2


def test_interest_admin_endpoints_require_system_admin(client):
    login(client, "alice@example.com")
    r = client.post("/api/interests", json={"name": "Go", "category": "Games"})
    assert r.status_code == 403
    assert r.json["error"] == "Forbidden: Only system administrators can manage interests"
    assert client.get("/api/interests/categories").status_code == 403


def test_interest_crud(client):
    login(client, "admin@example.com")
    r = client.post("/api/interests", json={"name": "Go", "category": "Games"})
    assert r.status_code == 201
    iid = r.json["data"]["id"]

    r = client.post("/api/interests", json={"name": "go", "category": "games"})
    assert r.status_code == 400
    assert r.json["error"] == "An interest with this name and category already exists"

    r = client.put(f"/api/interests/{iid}", json={"name": "Weiqi", "category": "Games"})
    assert r.status_code == 200
    assert r.json["data"]["name"] == "Weiqi"

    assert client.put("/api/interests/9999", json={"name": "X", "category": "Y"}).status_code == 404

    r = client.delete(f"/api/interests/{iid}")
    assert r.status_code == 200
    r = client.delete(f"/api/interests/{iid}")
    assert r.status_code == 400
    assert r.json["error"] == "Interest is already deleted"
    r = client.put(f"/api/interests/{iid}", json={"name": "Weiqi", "category": "Games"})
    assert r.status_code == 400
    assert r.json["error"] == "Cannot update a deleted interest"


def test_categories(client):
    login(client, "admin@example.com")
    r = client.get("/api/interests/categories")
    assert r.json["data"] == ["Games", "Outdoors"]

    r = client.put("/api/interests/categories/Outdoors", json={})
    assert r.status_code == 400
    assert r.json["error"] == "New category name is required"

    r = client.put("/api/interests/categories/Nope", json={"newName": "X"})
    assert r.status_code == 404

    r = client.put("/api/interests/categories/Outdoors", json={"newName": "Games"})
    assert r.status_code == 400
    assert r.json["error"] == "A category with the new name already exists"

    r = client.put("/api/interests/categories/Outdoors", json={"newName": "Nature"})
    assert r.status_code == 200
    assert r.json["message"] == "Category renamed successfully"

    r = client.delete("/api/interests/categories/Games")
    assert r.status_code == 200
    assert r.json["message"] == "Category and all its interests deleted successfully"
    assert client.get("/api/interests/categories").json["data"] == ["Nature"]


def test_person_interests(client):
    ids = interest_ids(client)
    login(client, "alice@example.com")

    r = set_interests(client, "alice", {ids["Hiking"]: 0.9, ids["Chess"]: 0.25})
    assert r.status_code == 200
    assert r.json["message"] == "Person interests updated successfully"
    assert [(pi["interest"]["name"], pi["level"]) for pi in r.json["data"]] == [("Chess", 0.25), ("Hiking", 0.9)]

    r = client.get("/api/persons/alice/interests")
    assert len(r.json["data"]) == 2

    # PUT replaces the whole set
    r = set_interests(client, "alice", {ids["Climbing"]: 1})
    assert [pi["interest"]["name"] for pi in r.json["data"]] == ["Climbing"]

    r = set_interests(client, "alice", {ids["Climbing"]: 1.5})
    assert r.status_code == 400

    r = set_interests(client, "alice", {9999: 0.5})
    assert r.status_code == 400
    assert r.json["error"] == "Invalid interest IDs: 9999"

    r = set_interests(client, "bob", {ids["Climbing"]: 0.5})
    assert r.status_code == 403
    assert r.json["error"] == "Forbidden: You do not have permission to modify this person's interests"
    r = client.get("/api/persons/bob/interests")
    assert r.status_code == 403


def test_vectors_and_recommendations(client):
    ids = interest_ids(client)
    login(client, "admin@example.com")
    set_interests(client, "alice", {ids["Hiking"]: 1.0, ids["Climbing"]: 0.8})
    set_interests(client, "bob", {ids["Hiking"]: 0.9, ids["Climbing"]: 0.7})
    set_interests(client, "carl", {ids["Chess"]: 1.0})

    with session_scope(client.application) as s:
        alice = s.query(Person).filter(Person.display_id == "alice").one()
        assert len(alice.interest_vector) == 3
        assert np.isclose(np.linalg.norm(alice.interest_vector), 1.0)
        dana = s.query(Person).filter(Person.display_id == "dana").one()
        assert dana.interest_vector is None

    r = client.get("/api/persons/alice/recommendations")
    assert r.status_code == 200
    assert [p["displayId"] for p in r.json["data"]] == ["bob", "carl"]
    assert r.json["data"][0]["similarity"] > 0.99
    assert r.json["data"][1]["similarity"] == pytest.approx(0.0)

    r = client.get("/api/persons/alice/recommendations?limit=1")
    assert len(r.json["data"]) == 1

    r = client.get("/api/persons/dana/recommendations")
    assert r.status_code == 400
    assert r.json["error"] == "Person has no interests defined"

    # Adding an interest rebuilds every stored vector to the new dimension
    client.post("/api/interests", json={"name": "Go", "category": "Games"})
    with session_scope(client.application) as s:
        alice = s.query(Person).filter(Person.display_id == "alice").one()
        assert len(alice.interest_vector) == 4

import pytest
from werkzeug.security import generate_password_hash

from app.irl import create_app
from app.irl.auth import reset_login_attempts
from app.irl.authorization import count_active_admins
from app.irl.db import session_scope
from app.irl.errors import InvariantViolation
from app.irl.models import AuditEvent, Base, User
from app.irl.modules.groups.models import Group
from app.irl.modules.memberships.models import PersonGroup
from app.irl.modules.memberships.service import delete_membership
from app.irl.modules.persons.models import Person
from app.irl.rbac import identity_for_user

PASSWORD = "password1"


@pytest.fixture()
def app(tmp_path, monkeypatch):
    monkeypatch.setenv("SECRET_KEY", "test-secret")
    monkeypatch.setenv("DATABASE_URL", f"sqlite:///{tmp_path/'test.db'}")
    monkeypatch.setenv("ENV", "test")
    monkeypatch.setenv("CSRF_ENABLED", "0")
    reset_login_attempts()

    app = create_app()
    Base.metadata.create_all(bind=app.extensions["sqlalchemy_engine"])
    return app


@pytest.fixture()
def ids(app):
    """
    hikers: alice (admin), bob (member)
    climbers: carol (admin)
    alice's user also owns a second person, alice-alt.
    """
    pw = generate_password_hash(PASSWORD)
    with session_scope(app) as s:
        admin = User(email="admin@example.com", password_hash=pw, is_system_admin=True)
        u1 = User(email="alice@example.com", password_hash=pw)
        u2 = User(email="bob@example.com", password_hash=pw)
        u3 = User(email="carol@example.com", password_hash=pw)
        s.add_all([admin, u1, u2, u3])
        s.flush()

        alice = Person(user_id=u1.id, display_id="alice", first_name="Alice", last_name="A")
        alice_alt = Person(user_id=u1.id, display_id="alice-alt", first_name="Alice", last_name="Alt")
        bob = Person(user_id=u2.id, display_id="bob", first_name="Bob", last_name="B")
        carol = Person(user_id=u3.id, display_id="carol", first_name="Carol", last_name="C")
        dave = Person(user_id=None, display_id="dave", first_name="Dave", last_name="D")
        hikers = Group(display_id="hikers", name="Hikers")
        climbers = Group(display_id="climbers", name="Climbers")
        s.add_all([alice, alice_alt, bob, carol, dave, hikers, climbers])
        s.flush()

        a = PersonGroup(person_id=alice.id, group_id=hikers.id, is_admin=True)
        b = PersonGroup(person_id=bob.id, group_id=hikers.id, is_admin=False)
        c = PersonGroup(person_id=carol.id, group_id=climbers.id, is_admin=True)
        s.add_all([a, b, c])
        s.flush()

        return {
            "alice": alice.id,
            "alice_alt": alice_alt.id,
            "bob": bob.id,
            "carol": carol.id,
            "dave": dave.id,
            "hikers": hikers.id,
            "climbers": climbers.id,
            "A": a.id,
            "B": b.id,
            "C": c.id,
        }


@pytest.fixture()
def client(app):
    return app.test_client()


def login(client, email: str) -> None:
    r = client.post("/api/auth/login", json={"email": email, "password": PASSWORD})
    assert r.status_code == 200, r.json


def admin_count(app, group_id: int) -> int:
    with session_scope(app) as s:
        return count_active_admins(s, group_id)


def test_anonymous_is_rejected(client, ids):
    r = client.post("/api/person-groups", json={"personId": ids["dave"], "groupId": ids["hikers"]})
    assert r.status_code == 401


def test_system_admin_manages_any_membership(client, ids, app):
    login(client, "admin@example.com")

    r = client.post("/api/person-groups", json={"personId": ids["dave"], "groupId": ids["climbers"]})
    assert r.status_code == 201
    assert r.json["message"] == "Person-group relationship created successfully"
    assert r.json["data"]["isAdmin"] is False
    assert r.json["data"]["person"]["displayId"] == "dave"
    new_id = r.json["data"]["id"]

    r = client.patch(f"/api/person-groups/{new_id}", json={"isAdmin": True})
    assert r.status_code == 200
    assert r.json["data"]["isAdmin"] is True

    r = client.put(f"/api/person-groups/{new_id}", json={"personId": ids["dave"], "groupId": ids["climbers"]})
    assert r.status_code == 200
    # PUT treats a missing isAdmin as false
    assert r.json["data"]["isAdmin"] is False

    r = client.delete(f"/api/person-groups/{new_id}")
    assert r.status_code == 200
    assert r.json["message"] == "Person-group relationship deleted successfully"
    assert client.get(f"/api/person-groups/{new_id}").status_code == 404

    with session_scope(app) as s:
        actions = [e.action for e in s.query(AuditEvent).order_by(AuditEvent.id).all()]
    assert "membership.create" in actions
    assert "membership.update" in actions
    assert "membership.delete" in actions


def test_non_admin_is_rejected(client, ids):
    login(client, "bob@example.com")  # member of hikers, not an admin

    r = client.post("/api/person-groups", json={"personId": ids["dave"], "groupId": ids["hikers"]})
    assert r.status_code == 403
    assert r.json["error"] == "Forbidden: Only group administrators can modify group memberships"

    r = client.patch(f"/api/person-groups/{ids['A']}", json={"isAdmin": False})
    assert r.status_code == 403

    r = client.delete(f"/api/person-groups/{ids['A']}")
    assert r.status_code == 403

    login(client, "carol@example.com")  # admin elsewhere
    r = client.put(
        f"/api/person-groups/{ids['B']}",
        json={"personId": ids["bob"], "groupId": ids["hikers"], "isAdmin": True},
    )
    assert r.status_code == 403


def test_group_admin_grants_and_revokes_for_others(client, ids):
    login(client, "alice@example.com")

    r = client.patch(f"/api/person-groups/{ids['B']}", json={"isAdmin": True})
    assert r.status_code == 200
    assert r.json["data"]["isAdmin"] is True

    r = client.patch(f"/api/person-groups/{ids['B']}", json={"isAdmin": False})
    assert r.status_code == 200
    assert r.json["data"]["isAdmin"] is False

    r = client.post("/api/person-groups", json={"personId": ids["dave"], "groupId": ids["hikers"], "isAdmin": True})
    assert r.status_code == 201
    assert r.json["data"]["isAdmin"] is True


def test_group_admin_cannot_change_own_admin_status(client, ids):
    login(client, "alice@example.com")

    # Self-grant on create is blocked
    r = client.post(
        "/api/person-groups", json={"personId": ids["alice_alt"], "groupId": ids["hikers"], "isAdmin": True}
    )
    assert r.status_code == 403
    assert "cannot modify your own admin status" in r.json["message"]

    r = client.post("/api/person-groups", json={"personId": ids["alice_alt"], "groupId": ids["hikers"]})
    assert r.status_code == 201
    own_id = r.json["data"]["id"]

    r = client.patch(f"/api/person-groups/{own_id}", json={"isAdmin": True})
    assert r.status_code == 403
    assert "cannot modify your own admin status" in r.json["message"]

    # Self-demotion is blocked before the last-admin check runs
    r = client.patch(f"/api/person-groups/{ids['A']}", json={"isAdmin": False})
    assert r.status_code == 403
    assert "cannot modify your own admin status" in r.json["message"]

    # Unchanged flag is not a self-change
    r = client.patch(f"/api/person-groups/{ids['A']}", json={"isAdmin": True})
    assert r.status_code == 200


def test_delete_last_admin_rejected(client, ids, app):
    login(client, "admin@example.com")

    r = client.delete(f"/api/person-groups/{ids['A']}")
    assert r.status_code == 400
    assert "Cannot remove the last administrator" in r.json["message"]
    assert admin_count(app, ids["hikers"]) == 1

    r = client.patch(f"/api/person-groups/{ids['B']}", json={"isAdmin": True})
    assert r.status_code == 200

    r = client.delete(f"/api/person-groups/{ids['A']}")
    assert r.status_code == 200
    assert admin_count(app, ids["hikers"]) == 1


def test_sole_member_admin_cannot_be_removed(client, ids):
    login(client, "admin@example.com")
    r = client.delete(f"/api/person-groups/{ids['C']}")
    assert r.status_code == 400
    assert r.json["error"] == "Cannot remove the last administrator of a group"


def test_demote_last_admin_rejected_via_patch_and_put(client, ids, app):
    login(client, "admin@example.com")

    r = client.patch(f"/api/person-groups/{ids['A']}", json={"isAdmin": False})
    assert r.status_code == 400
    assert "Cannot remove the last administrator" in r.json["message"]

    r = client.put(
        f"/api/person-groups/{ids['A']}",
        json={"personId": ids["alice"], "groupId": ids["hikers"], "isAdmin": False},
    )
    assert r.status_code == 400
    assert "Cannot remove the last administrator" in r.json["message"]

    # PUT without isAdmin demotes too
    r = client.put(f"/api/person-groups/{ids['A']}", json={"personId": ids["alice"], "groupId": ids["hikers"]})
    assert r.status_code == 400

    r = client.patch(f"/api/person-groups/{ids['B']}", json={"isAdmin": True})
    assert r.status_code == 200
    r = client.patch(f"/api/person-groups/{ids['A']}", json={"isAdmin": False})
    assert r.status_code == 200
    assert admin_count(app, ids["hikers"]) == 1


def test_moving_last_admin_to_another_group_rejected(client, ids):
    login(client, "admin@example.com")
    r = client.patch(f"/api/person-groups/{ids['A']}", json={"groupId": ids["climbers"]})
    assert r.status_code == 400
    assert "Cannot remove the last administrator" in r.json["message"]


def test_scenario_promote_then_remove_original_admin(client, ids, app):
    login(client, "bob@example.com")
    r = client.patch(f"/api/person-groups/{ids['B']}", json={"isAdmin": True})
    assert r.status_code == 403

    login(client, "admin@example.com")
    r = client.patch(f"/api/person-groups/{ids['B']}", json={"isAdmin": True})
    assert r.status_code == 200
    assert r.json["data"]["isAdmin"] is True

    r = client.delete(f"/api/person-groups/{ids['A']}")
    assert r.status_code == 200
    assert admin_count(app, ids["hikers"]) == 1


def test_admin_invariant_holds_across_operation_sequence(client, ids, app):
    login(client, "admin@example.com")
    ops = [
        ("delete", ids["A"], None),
        ("patch", ids["A"], {"isAdmin": False}),
        ("patch", ids["B"], {"isAdmin": True}),
        ("patch", ids["A"], {"isAdmin": False}),
        ("delete", ids["B"], None),
        ("patch", ids["B"], {"isAdmin": False}),
        ("post", None, {"personId": ids["dave"], "groupId": ids["hikers"], "isAdmin": True}),
        ("delete", ids["B"], None),
        ("delete", ids["A"], None),
    ]
    for verb, mid, body in ops:
        if verb == "post":
            r = client.post("/api/person-groups", json=body)
        elif verb == "patch":
            r = client.patch(f"/api/person-groups/{mid}", json=body)
        else:
            r = client.delete(f"/api/person-groups/{mid}")
        assert r.status_code in (200, 201, 400), (verb, mid, r.json)
        assert admin_count(app, ids["hikers"]) >= 1
        assert admin_count(app, ids["climbers"]) >= 1


def test_validation_then_existence_then_authorization(client, ids):
    login(client, "bob@example.com")

    r = client.post("/api/person-groups", json={"groupId": ids["hikers"]})
    assert r.status_code == 400
    assert r.json["error"] == "Person ID is required"

    r = client.post("/api/person-groups", json={"personId": "abc", "groupId": ids["hikers"]})
    assert r.status_code == 400

    r = client.post("/api/person-groups", json={"personId": ids["dave"], "groupId": ids["hikers"], "isAdmin": "yes"})
    assert r.status_code == 400

    # Missing referents are reported before the caller's rights are checked
    r = client.post("/api/person-groups", json={"personId": 9999, "groupId": ids["hikers"]})
    assert r.status_code == 404
    assert r.json["error"] == "Referenced person does not exist"

    r = client.post("/api/person-groups", json={"personId": ids["dave"], "groupId": 9999})
    assert r.status_code == 404
    assert r.json["error"] == "Referenced group does not exist"

    r = client.patch("/api/person-groups/9999", json={"isAdmin": True})
    assert r.status_code == 404
    assert r.json["error"] == "Person-group relationship not found"


def test_duplicate_and_reactivation(client, ids, app):
    login(client, "alice@example.com")

    r = client.post("/api/person-groups", json={"personId": ids["bob"], "groupId": ids["hikers"]})
    assert r.status_code == 409
    assert r.json["error"] == "Person is already a member of this group"

    r = client.delete(f"/api/person-groups/{ids['B']}")
    assert r.status_code == 200

    r = client.post("/api/person-groups", json={"personId": ids["bob"], "groupId": ids["hikers"]})
    assert r.status_code == 201
    assert r.json["data"]["id"] == ids["B"]

    with session_scope(app) as s:
        rows = s.query(PersonGroup).filter(PersonGroup.person_id == ids["bob"]).all()
    assert len(rows) == 1
    assert rows[0].deleted is False


def test_move_onto_soft_deleted_pair(client, ids, app):
    login(client, "admin@example.com")
    r = client.post("/api/person-groups", json={"personId": ids["bob"], "groupId": ids["climbers"]})
    assert r.status_code == 201
    stale_id = r.json["data"]["id"]
    assert client.delete(f"/api/person-groups/{stale_id}").status_code == 200

    r = client.patch(f"/api/person-groups/{ids['B']}", json={"groupId": ids["climbers"]})
    assert r.status_code == 200
    assert r.json["data"]["groupId"] == ids["climbers"]

    with session_scope(app) as s:
        assert s.get(PersonGroup, stale_id) is None


def test_list_and_get(client, ids):
    login(client, "bob@example.com")
    r = client.get(f"/api/person-groups?groupId={ids['hikers']}")
    assert r.status_code == 200
    assert r.json["pagination"]["total"] == 2
    assert {m["personId"] for m in r.json["data"]} == {ids["alice"], ids["bob"]}

    r = client.get(f"/api/person-groups?personId={ids['carol']}")
    assert r.status_code == 200
    assert [m["id"] for m in r.json["data"]] == [ids["C"]]

    r = client.get(f"/api/person-groups/{ids['A']}")
    assert r.status_code == 200
    assert r.json["data"]["isAdmin"] is True
    assert r.json["data"]["group"]["displayId"] == "hikers"


def test_update_responses_carry_person_and_group(client, ids):
    login(client, "admin@example.com")

    r = client.patch(f"/api/person-groups/{ids['B']}", json={"isAdmin": True})
    assert r.status_code == 200
    assert r.json["data"]["person"]["displayId"] == "bob"
    assert r.json["data"]["group"]["displayId"] == "hikers"

    r = client.put(
        f"/api/person-groups/{ids['B']}",
        json={"personId": ids["bob"], "groupId": ids["climbers"], "isAdmin": False},
    )
    assert r.status_code == 200
    assert r.json["data"]["person"]["displayId"] == "bob"
    assert r.json["data"]["group"]["displayId"] == "climbers"


def test_delete_rechecks_admins_after_concurrent_demotion(app, ids):
    with session_scope(app) as s:
        s.get(PersonGroup, ids["B"]).is_admin = True

    sm = app.extensions["sqlalchemy_sessionmaker"]
    a = sm()
    b = sm()
    try:
        actor = a.query(User).filter(User.email == "admin@example.com").one()
        stale = [a.get(PersonGroup, ids["A"]), a.get(PersonGroup, ids["B"])]
        assert all(m.is_admin for m in stale)

        b.get(PersonGroup, ids["B"]).is_admin = False
        b.commit()

        with pytest.raises(InvariantViolation):
            delete_membership(a, ids["A"], identity_for_user(actor), actor)
        a.rollback()
    finally:
        a.close()
        b.close()

    assert admin_count(app, ids["hikers"]) == 1
    with session_scope(app) as s:
        assert s.get(PersonGroup, ids["A"]).deleted is False

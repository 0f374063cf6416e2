from datetime import datetime, timedelta

import pytest

from app.irl import create_app
from app.irl.auth import reset_login_attempts
from app.irl.db import session_scope
from app.irl.models import Base, User
from app.irl.modules.users.models import EmailChangeRequest


@pytest.fixture()
def client(tmp_path, monkeypatch):
    monkeypatch.setenv("SECRET_KEY", "test-secret")
    monkeypatch.setenv("DATABASE_URL", f"sqlite:///{tmp_path/'test.db'}")
    monkeypatch.setenv("ENV", "test")
    monkeypatch.setenv("CSRF_ENABLED", "0")
    reset_login_attempts()

    app = create_app()
    Base.metadata.create_all(bind=app.extensions["sqlalchemy_engine"])
    return app.test_client()


def register(client, email: str, password: str = "password1", **extra):
    return client.post("/api/users", json={"email": email, "password": password, **extra})


def token_for(client, email: str) -> str | None:
    with session_scope(client.application) as s:
        return s.query(User).filter(User.email == email).one().verification_token


def test_first_user_becomes_verified_admin(client):
    r = register(client, "First@Example.com")
    assert r.status_code == 201
    assert r.json["message"] == "Account created successfully"
    assert r.json["data"]["email"] == "first@example.com"
    assert r.json["data"]["isSystemAdmin"] is True
    assert token_for(client, "first@example.com") is None

    r = client.post("/api/auth/login", json={"email": "first@example.com", "password": "password1"})
    assert r.status_code == 200


def test_later_users_need_verification(client):
    register(client, "first@example.com")
    r = register(client, "second@example.com", isSystemAdmin=True)
    assert r.status_code == 201
    assert r.json["message"] == "User created successfully"
    # Anonymous callers cannot grant admin
    assert r.json["data"]["isSystemAdmin"] is False

    r = client.post("/api/auth/login", json={"email": "second@example.com", "password": "password1"})
    assert r.status_code == 403

    assert client.get("/api/users/verify").status_code == 400
    r = client.get("/api/users/verify?token=nope")
    assert r.status_code == 404
    assert r.json["error"] == "Verification token invalid or expired"

    token = token_for(client, "second@example.com")
    r = client.get(f"/api/users/verify?token={token}")
    assert r.status_code == 200
    assert r.json["message"] == "Email verified successfully"

    r = client.post("/api/auth/login", json={"email": "second@example.com", "password": "password1"})
    assert r.status_code == 200


def test_registration_validation(client):
    r = register(client, "not-an-email")
    assert r.status_code == 400
    assert "Invalid email format" in r.json["error"]

    r = register(client, "short@example.com", password="short")
    assert r.status_code == 400
    assert "Password must be at least 8 characters" in r.json["error"]

    register(client, "dup@example.com")
    r = register(client, "DUP@example.com")
    assert r.status_code == 409
    assert r.json["error"] == "Email address is already in use"


def test_admin_can_grant_admin_on_registration(client):
    register(client, "admin@example.com")
    client.post("/api/auth/login", json={"email": "admin@example.com", "password": "password1"})
    r = register(client, "deputy@example.com", isSystemAdmin=True)
    assert r.status_code == 201
    assert r.json["data"]["isSystemAdmin"] is True


def test_me_and_password_change(client):
    register(client, "me@example.com")
    client.post("/api/auth/login", json={"email": "me@example.com", "password": "password1"})

    r = client.get("/api/users/me")
    assert r.json["data"]["email"] == "me@example.com"

    r = client.post("/api/users/me/password", json={"currentPassword": "wrong-one", "newPassword": "password2"})
    assert r.status_code == 401
    assert r.json["error"] == "Current password is incorrect"

    r = client.post("/api/users/me/password", json={"currentPassword": "password1", "newPassword": "password2"})
    assert r.status_code == 200
    assert r.json["message"] == "Password updated successfully"

    client.post("/api/auth/logout")
    r = client.post("/api/auth/login", json={"email": "me@example.com", "password": "password2"})
    assert r.status_code == 200


def test_admin_user_management(client):
    register(client, "admin@example.com")
    register(client, "member@example.com")
    with session_scope(client.application) as s:
        member = s.query(User).filter(User.email == "member@example.com").one()
        member.verification_token = None
        member_id = member.id

    client.post("/api/auth/login", json={"email": "member@example.com", "password": "password1"})
    r = client.get("/api/users")
    assert r.status_code == 403
    assert r.json["error"] == "Forbidden: Only system administrators can access this resource"

    client.post("/api/auth/login", json={"email": "admin@example.com", "password": "password1"})
    r = client.get("/api/users")
    assert r.status_code == 200
    assert r.json["pagination"]["total"] == 2

    r = client.patch(f"/api/users/{member_id}", json={"isSystemAdmin": True})
    assert r.status_code == 200
    assert r.json["data"]["isSystemAdmin"] is True

    r = client.patch(f"/api/users/{member_id}", json={"email": "moved@example.com"})
    assert r.status_code == 200
    assert token_for(client, "moved@example.com") is not None

    r = client.delete(f"/api/users/{member_id}")
    assert r.status_code == 200
    assert client.get(f"/api/users/{member_id}").status_code == 404


def change_token_for(client, email: str) -> str:
    with session_scope(client.application) as s:
        return s.query(EmailChangeRequest).filter(EmailChangeRequest.new_email == email).one().verification_token


def test_email_change_flow(client):
    register(client, "me@example.com")
    register(client, "other@example.com")
    client.post("/api/auth/login", json={"email": "me@example.com", "password": "password1"})

    r = client.post("/api/users/me/email", json={"newEmail": "new@example.com"})
    assert r.status_code == 400
    assert r.json["error"] == "Current password is required"

    r = client.post("/api/users/me/email", json={"currentPassword": "wrong-one", "newEmail": "new@example.com"})
    assert r.status_code == 401

    r = client.post("/api/users/me/email", json={"currentPassword": "password1", "newEmail": "ME@example.com"})
    assert r.status_code == 400
    assert r.json["error"] == "New email must be different from current email"

    r = client.post("/api/users/me/email", json={"currentPassword": "password1", "newEmail": "other@example.com"})
    assert r.status_code == 400
    assert r.json["error"] == "Email address is already in use"

    r = client.post("/api/users/me/email", json={"currentPassword": "password1", "newEmail": "first-try@example.com"})
    assert r.status_code == 200
    assert r.json["message"] == "Verification email sent to new address"
    stale = change_token_for(client, "first-try@example.com")

    r = client.post("/api/users/me/email", json={"currentPassword": "password1", "newEmail": "new@example.com"})
    assert r.status_code == 200
    token = change_token_for(client, "new@example.com")

    # A newer request replaces the pending one
    r = client.get(f"/api/users/verify-email-change?token={stale}")
    assert r.status_code == 404

    # Nothing changes until the token comes back
    assert client.get("/api/users/me").json["data"]["email"] == "me@example.com"

    assert client.get("/api/users/verify-email-change").status_code == 400
    r = client.get(f"/api/users/verify-email-change?token={token}")
    assert r.status_code == 200
    assert r.json["message"] == "Email address updated successfully"
    assert r.json["data"]["email"] == "new@example.com"

    r = client.get(f"/api/users/verify-email-change?token={token}")
    assert r.status_code == 404
    assert r.json["error"] == "Verification token invalid or expired"

    client.post("/api/auth/logout")
    r = client.post("/api/auth/login", json={"email": "new@example.com", "password": "password1"})
    assert r.status_code == 200


def test_email_change_token_expiry_and_race(client):
    register(client, "me@example.com")
    client.post("/api/auth/login", json={"email": "me@example.com", "password": "password1"})

    client.post("/api/users/me/email", json={"currentPassword": "password1", "newEmail": "later@example.com"})
    token = change_token_for(client, "later@example.com")
    with session_scope(client.application) as s:
        req = s.query(EmailChangeRequest).filter(EmailChangeRequest.verification_token == token).one()
        req.expires_at = datetime.utcnow() - timedelta(minutes=1)

    r = client.get(f"/api/users/verify-email-change?token={token}")
    assert r.status_code == 400
    assert r.json["error"] == "Verification token has expired"

    client.post("/api/users/me/email", json={"currentPassword": "password1", "newEmail": "taken@example.com"})
    token = change_token_for(client, "taken@example.com")
    client.post("/api/auth/logout")
    register(client, "taken@example.com")

    r = client.get(f"/api/users/verify-email-change?token={token}")
    assert r.status_code == 400
    assert r.json["error"] == "Email address is no longer available"


def test_closed_registration_only_admits_admin_created_accounts(client):
    register(client, "admin@example.com")
    client.post("/api/auth/login", json={"email": "admin@example.com", "password": "password1"})
    r = client.post("/api/system", json={"name": "Directory", "registrationOpen": False})
    assert r.status_code == 201

    r = register(client, "invited@example.com")
    assert r.status_code == 201

    client.post("/api/auth/logout")
    r = register(client, "stranger@example.com")
    assert r.status_code == 403
    assert r.json["error"] == "Registration is currently closed"

    client.post("/api/auth/login", json={"email": "admin@example.com", "password": "password1"})
    assert client.patch("/api/system", json={"registrationOpen": True}).status_code == 200
    client.post("/api/auth/logout")
    assert register(client, "stranger@example.com").status_code == 201

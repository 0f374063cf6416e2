import secrets

from flask import Request, session

CSRF_SESSION_KEY = "csrf_token"
CSRF_HEADER = "X-CSRF-Token"
UNSAFE_METHODS = frozenset({"POST", "PUT", "PATCH", "DELETE"})


def ensure_csrf_token() -> str:
    """Return the session's CSRF token, minting one on first use."""
    token = session.get(CSRF_SESSION_KEY)
    if not token:
        token = secrets.token_urlsafe(32)
        session[CSRF_SESSION_KEY] = token
    return token


def csrf_required(req: Request) -> bool:
    """Unsafe API calls need a token; auth endpoints manage the session themselves."""
    if req.method not in UNSAFE_METHODS:
        return False
    endpoint = req.endpoint or ""
    return bool(endpoint) and not endpoint.startswith("auth.")


def validate_csrf(req: Request) -> bool:
    sent = req.headers.get(CSRF_HEADER, "")
    expected = session.get(CSRF_SESSION_KEY, "")
    if not sent or not expected:
        return False
    return secrets.compare_digest(sent, expected)

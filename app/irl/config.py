import os
from dataclasses import dataclass

PRODUCTION_ENVS = ("prod", "production")
DEFAULT_SECRET_KEY = "change-me"


@dataclass(frozen=True)
class Settings:
    secret_key: str
    env: str
    database_url: str

    session_lifetime_days: int
    csrf_enabled: bool
    audit_log_enabled: bool

    @property
    def is_production(self) -> bool:
        return self.env.lower() in PRODUCTION_ENVS


def _env(name: str, default: str = "") -> str:
    return (os.environ.get(name) or default).strip()


def _env_flag(name: str, default: bool) -> bool:
    return _env(name, "1" if default else "0").lower() in ("1", "true", "yes", "on")


def _env_positive_int(name: str, default: int) -> int:
    raw = _env(name, str(default))
    if not raw.isdigit() or int(raw) < 1:
        raise RuntimeError(f"{name} must be a positive integer, got {raw!r}")
    return int(raw)


def load_settings() -> Settings:
    return Settings(
        secret_key=_env("SECRET_KEY", DEFAULT_SECRET_KEY),
        env=_env("ENV", "development"),
        database_url=_env("DATABASE_URL", "sqlite:///irl.db"),
        session_lifetime_days=_env_positive_int("SESSION_LIFETIME_DAYS", 60),
        csrf_enabled=_env_flag("CSRF_ENABLED", True),
        audit_log_enabled=_env_flag("AUDIT_LOG_ENABLED", True),
    )


def load_config() -> dict:
    """Flask config mapping built from the environment."""
    s = load_settings()
    return {
        "SECRET_KEY": s.secret_key,
        "ENV": s.env,
        "IS_PRODUCTION": s.is_production,
        "DATABASE_URL": s.database_url,
        "SESSION_LIFETIME_DAYS": s.session_lifetime_days,
        "CSRF_ENABLED": s.csrf_enabled,
        "AUDIT_LOG_ENABLED": s.audit_log_enabled,
        "SESSION_COOKIE_NAME": "irl_session",
        "SESSION_COOKIE_HTTPONLY": True,
        "SESSION_COOKIE_SAMESITE": "Strict" if s.is_production else "Lax",
        "SESSION_COOKIE_SECURE": s.is_production,
        # JSON bodies only
        "MAX_CONTENT_LENGTH": 1 * 1024 * 1024,
    }

import sys
from pathlib import Path
import os

from werkzeug.security import generate_password_hash

# Ensure repo root is on sys.path when running as a script (Windows-friendly).
ROOT = Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

from app.irl.models import Base, User
from scripts._db_utils import create_script_engine, script_session


def create_tables(database_url: str) -> None:
    """Create any missing tables. Local/dev convenience; production uses alembic."""
    engine = create_script_engine(database_url)
    try:
        Base.metadata.create_all(bind=engine)
    finally:
        engine.dispose()


def seed_only(*, database_url: str | None = None) -> None:
    """
    Seed the bootstrap system administrator in an idempotent way.
    Does NOT overwrite an existing admin user's password.
    """
    admin_email = (os.environ.get("ADMIN_EMAIL") or "admin@irl.local").strip().lower()
    admin_password = os.environ.get("ADMIN_PASSWORD") or "change-me"

    db_url = (database_url or os.environ.get("DATABASE_URL") or "sqlite:///irl.db").strip()

    # Direct engine/session so this can run in release without importing app.wsgi.
    with script_session(db_url) as s:
        user = s.query(User).filter(User.email == admin_email).one_or_none()
        if not user:
            user = User(
                email=admin_email,
                password_hash=generate_password_hash(admin_password),
                is_system_admin=True,
            )
            s.add(user)
        user.is_system_admin = True
        user.verification_token = None
        user.deleted = False

    print("Initialized database (seed_only).")
    print(f"Admin email: {admin_email}")
    print("Admin password: (from ADMIN_PASSWORD)")


def main() -> None:
    db_url = (os.environ.get("DATABASE_URL") or "sqlite:///irl.db").strip()
    if db_url.startswith("sqlite"):
        create_tables(db_url)
    seed_only(database_url=db_url)


if __name__ == "__main__":
    main()

#!/usr/bin/env python3
"""Promote an existing user to system administrator (idempotent).

Usage:
  python scripts/attach_admin_role.py --email someone@example.com
  python scripts/attach_admin_role.py --email someone@example.com --revoke
"""

import sys
import os
import argparse
from pathlib import Path

ROOT = Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

from app.irl.models import User
from scripts._db_utils import script_session


def main() -> None:
    parser = argparse.ArgumentParser()
    parser.add_argument("--email", required=True, help="User email to promote")
    parser.add_argument("--revoke", action="store_true", help="Remove system admin instead")
    args = parser.parse_args()

    db_url = (os.environ.get("DATABASE_URL") or "sqlite:///irl.db").strip()
    want_admin = not args.revoke
    with script_session(db_url) as s:
        user = s.query(User).filter(User.email.ilike(args.email.strip()), User.deleted.is_(False)).one_or_none()
        if not user:
            print(f"User not found: {args.email}")
            sys.exit(1)
        if bool(user.is_system_admin) == want_admin:
            print(f"No change needed for {args.email} (is_system_admin={want_admin})")
            return
        user.is_system_admin = want_admin
        print(f"Set is_system_admin={want_admin} for {args.email}")


if __name__ == "__main__":
    main()

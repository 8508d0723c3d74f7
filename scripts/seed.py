#!/usr/bin/env python3
"""
Bootstrap a fresh deployment with an admin user and a CDN.

Run after `alembic upgrade head`. The admin API key is printed once and
is not recoverable afterwards (rotate it via POST /api/v1/users/api-key).

Usage:
    ./scripts/seed.py --admin-email ops@example.com --cdn-name assets --bucket assets-bucket
    ./scripts/seed.py --admin-email ops@example.com --cdn-name media --bucket media \\
        --public-base https://media.example.com
"""

import argparse
import sys
from datetime import datetime

from sqlalchemy import select

from cdn_console.database import session_scope
from cdn_console.models.cdn import Cdn
from cdn_console.models.user import User, UserRole
from cdn_console.services.identity_service import create_user


def log(msg: str) -> None:
    """Print timestamped log message."""
    print(f"[{datetime.now().strftime('%H:%M:%S')}] {msg}", flush=True)


def main() -> int:
    parser = argparse.ArgumentParser(description="Seed an admin user and a CDN")
    parser.add_argument("--admin-email", required=True, help="Admin email address")
    parser.add_argument("--display-name", default=None, help="Admin display name")
    parser.add_argument("--cdn-name", required=True, help="CDN display name (unique)")
    parser.add_argument("--bucket", required=True, help="Object storage bucket")
    parser.add_argument("--prefix", default="", help="Key prefix inside the bucket")
    parser.add_argument(
        "--public-base",
        default=None,
        help="Public base URL for committed objects (omit for signed download URLs)",
    )
    args = parser.parse_args()

    email = args.admin_email.strip().lower()
    try:
        with session_scope() as db:
            if db.scalar(select(User).where(User.email == email)):
                log(f"ERROR: User {email} already exists")
                return 1
            if db.scalar(select(Cdn).where(Cdn.name == args.cdn_name)):
                log(f"ERROR: CDN '{args.cdn_name}' already exists")
                return 1

            admin, api_key = create_user(
                db,
                email=email,
                role=UserRole.ADMIN,
                display_name=args.display_name,
            )
            cdn = Cdn(
                name=args.cdn_name,
                bucket=args.bucket,
                prefix=args.prefix,
                public_base=args.public_base.rstrip("/") if args.public_base else None,
                owner_ids=[admin.id],
            )
            db.add(cdn)
            db.flush()
            admin.cdn_ids = [cdn.id]

            log(f"Created admin: {admin.email} (id={admin.id})")
            log(f"Created CDN: {cdn.name} (id={cdn.id}, bucket={cdn.bucket})")
    except Exception as e:
        log(f"ERROR: {e}")
        return 1

    log(f"Admin API key: {api_key}")
    log("Store this key securely. It will not be shown again.")
    return 0


if __name__ == "__main__":
    sys.exit(main())

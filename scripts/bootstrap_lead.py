#!/usr/bin/env python3
"""Bootstrap a team-lead account for initial setup.

Usage:
    LEAD_USERNAME=lead LEAD_EMAIL=lead@example.com LEAD_PASSWORD='Lead#2024' python scripts/bootstrap_lead.py

    python scripts/bootstrap_lead.py --username lead --email lead@example.com --password 'Lead#2024'

Existing accounts are reported, never modified: a member is not promoted.

Environment Variables:
    LEAD_USERNAME, LEAD_EMAIL, LEAD_PASSWORD: account to create
    DATABASE_URL: PostgreSQL connection string (memory store is used if unset)
"""
from __future__ import annotations

import argparse
import os
import secrets
import sys
from pathlib import Path
from typing import Optional

ROOT = Path(__file__).resolve().parent.parent
sys.path.insert(0, str(ROOT))

from assigna.api.schemas import validate_password_strength  # noqa: E402


def validate_password(password: str) -> Optional[str]:
    """Return the first rule the password breaks, or None if the API would accept it."""
    try:
        validate_password_strength(password)
    except ValueError as exc:
        return str(exc)
    return None


def bootstrap_lead(username: str, email: str, password: str, dry_run: bool = False) -> dict:
    # Import here so the env defaults below apply before settings load
    from assigna.service.runtime import get_runtime
    from assigna.service.tokens import Role

    runtime = get_runtime()
    existing = runtime.store.get_user_by_email(email) or runtime.store.get_user_by_username(
        username
    )
    if existing:
        status = "already_lead" if existing.is_lead else "exists_as_member"
        print(f"User {existing.username} already exists (id: {existing.id}, status: {status})")
        return {"user_id": existing.id, "email": existing.email, "status": status}

    if dry_run:
        print(f"[DRY RUN] Would create team lead: {username} <{email}>")
        return {"user_id": None, "email": email, "status": "dry_run"}

    user, pair = runtime.sessions.register(username, username, email, password, Role.LEAD.value)
    print(f"Created team lead: {user.username} (id: {user.id})")
    return {
        "user_id": user.id,
        "email": user.email,
        "status": "created",
        "token": pair.token,
    }


def main():
    parser = argparse.ArgumentParser(
        description="Bootstrap a team-lead account for Assigna",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog=__doc__,
    )
    parser.add_argument("--username", default=os.environ.get("LEAD_USERNAME"))
    parser.add_argument("--email", default=os.environ.get("LEAD_EMAIL"))
    parser.add_argument("--password", default=os.environ.get("LEAD_PASSWORD"))
    parser.add_argument(
        "--dry-run",
        action="store_true",
        help="Show what would be done without making changes",
    )
    args = parser.parse_args()

    for name in ("username", "email", "password"):
        if not getattr(args, name):
            print(f"Error: --{name} or LEAD_{name.upper()} environment variable required")
            sys.exit(1)

    problem = validate_password(args.password)
    if problem:
        print(f"Error: {problem}")
        sys.exit(1)

    if not os.environ.get("JWT_SECRET"):
        os.environ["JWT_SECRET"] = secrets.token_urlsafe(48)
    os.environ.setdefault("SHARED_FS_ROOT", "/tmp/assigna-bootstrap")
    if not os.environ.get("DATABASE_URL"):
        os.environ["USE_MEMORY_STORE"] = "true"
        print("Note: Using in-memory store (set DATABASE_URL for persistence)")

    from assigna.service.errors import ServiceError

    try:
        result = bootstrap_lead(args.username, args.email, args.password, args.dry_run)
    except ServiceError as e:
        print(f"Error: {e.message}")
        sys.exit(1)

    if result["status"] == "created":
        print("\nTeam lead created successfully!")
        print(f"  Email: {result['email']}")
        print(f"  User ID: {result['user_id']}")
    elif result["status"] == "exists_as_member":
        print("\nNo changes made - the existing account is a team member.")


if __name__ == "__main__":
    main()

#!/usr/bin/env python3
"""
Script to get a test access token for devpanel development.
Signs an admin bearer token with the JWT_SECRET from .env.
"""
import argparse
import sys
from datetime import timedelta
from pathlib import Path

# Add backend/src to path
backend_src = Path(__file__).parent.parent / "backend" / "src"
sys.path.insert(0, str(backend_src))

from dotenv import load_dotenv

load_dotenv(Path(__file__).parent.parent / ".env")

from portfolio_api.auth import create_access_token
from portfolio_api.config import load_settings

DEFAULT_USER_ID = "00000000-0000-4000-8000-000000000001"


def main(argv=None) -> int:
    parser = argparse.ArgumentParser(description="Print a signed bearer token for local testing.")
    parser.add_argument("--user-id", default=DEFAULT_USER_ID)
    parser.add_argument("--email", default="admin@localhost")
    parser.add_argument("--role", default="admin", choices=["admin", "user"])
    parser.add_argument("--hours", type=int, default=12)
    args = parser.parse_args(argv)

    settings = load_settings()
    if not settings.jwt_configured:
        print("❌ JWT_SECRET is not set in .env; the API rejects tokens until it is.")
        return 1

    token = create_access_token(
        settings,
        args.user_id,
        role=args.role,
        email=args.email,
        expires_in=timedelta(hours=args.hours),
    )
    print(f"\n📋 Your Access Token ({args.role}, valid {args.hours}h):\n")
    print(f"{token}\n")
    print("📌 Send it as 'Authorization: Bearer <token>' to /api/devpanel endpoints.\n")
    return 0


if __name__ == "__main__":
    sys.exit(main())

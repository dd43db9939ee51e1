#!/usr/bin/env python3
"""
Access Token Helper - Sign in and print a bearer token

Signs a user in against the identity provider with email/password and prints
the access token, ready to paste into an ``Authorization: Bearer`` header when
exercising the gateway by hand.

Usage:
    python scripts/get_token.py --email you@example.com

Environment variables:
    SUPABASE_URL: Identity provider base URL
    SUPABASE_ANON_KEY: Public (anon) API key
"""

import os
import sys
import getpass
import logging
import argparse

import httpx

logging.basicConfig(
    level=logging.INFO,
    format='%(asctime)s - %(levelname)s - %(message)s'
)
logger = logging.getLogger(__name__)


def sign_in(supabase_url: str, anon_key: str, email: str, password: str, timeout: float = 15.0) -> dict:
    """Exchange email/password for a session. Returns the session payload."""
    response = httpx.post(
        f"{supabase_url.rstrip('/')}/auth/v1/token",
        params={"grant_type": "password"},
        headers={"apikey": anon_key, "Content-Type": "application/json"},
        json={"email": email.strip(), "password": password.strip()},
        timeout=timeout,
    )
    if response.status_code == 400:
        raise PermissionError(response.json().get("error_description", "Invalid login credentials"))
    response.raise_for_status()
    return response.json()


def main():
    parser = argparse.ArgumentParser(
        description="Sign in to the identity provider and print an access token"
    )
    parser.add_argument(
        "--url",
        default=os.environ.get("SUPABASE_URL"),
        help="Identity provider base URL (default: $SUPABASE_URL)"
    )
    parser.add_argument(
        "--anon-key",
        default=os.environ.get("SUPABASE_ANON_KEY"),
        help="Public API key (default: $SUPABASE_ANON_KEY)"
    )
    parser.add_argument("--email", help="Account email (prompted if omitted)")
    parser.add_argument(
        "--token-only",
        action="store_true",
        help="Print only the token, nothing else"
    )

    args = parser.parse_args()

    if not args.url or not args.anon_key:
        parser.error("--url and --anon-key are required (or set SUPABASE_URL / SUPABASE_ANON_KEY)")

    email = args.email or input("Email: ")
    password = getpass.getpass("Password: ")

    try:
        session = sign_in(args.url, args.anon_key, email, password)
    except PermissionError as e:
        logger.error(f"Sign in failed: {e}")
        logger.info("Check your email and password, or sign up first if the account does not exist")
        sys.exit(1)
    except httpx.HTTPError as e:
        logger.error(f"Identity provider request failed: {e}")
        sys.exit(1)

    token = session.get("access_token")
    if not token:
        logger.error("No access token in the sign-in response")
        sys.exit(1)

    if args.token_only:
        print(token)
        return

    user = session.get("user") or {}
    logger.info(f"Signed in as {user.get('email', email)}")
    logger.info(f"Token expires in {session.get('expires_in', '?')}s")
    print()
    print(token)


if __name__ == "__main__":
    main()

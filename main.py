#!/usr/bin/env python3
"""
ApexGate -- admin command line.

Usage:
  python main.py tiers
  python main.py features guardian
  python main.py check wingman ifta_reports
  python main.py create-admin --email ops@example.com

create-admin prompts for the password (or reads APEXGATE_ADMIN_PASSWORD when
--password-env is given) so it never lands in shell history. It is the
bootstrap path for the first admin account: the HTTP API only lets existing
admins create users.
"""

import argparse
import getpass
import logging
import os
import sys
from typing import Optional

from auth.models import ROLE_ADMIN
from auth.service import AuthService
from auth.store import UserStore
from core.errors import ApexGateError
from core.tiers import (
    ALL_FEATURES,
    TIER_FEATURES,
    WILDCARD,
    get_available_features,
    has_feature_access,
    is_known_feature,
    is_known_tier,
    normalize_tier,
    sorted_features,
    tier_rank,
)

logger = logging.getLogger("apexgate.cli")

_PASSWORD_ENV = "APEXGATE_ADMIN_PASSWORD"


# ---------------------------------------------------------------------------
# Commands
# ---------------------------------------------------------------------------


def _cmd_tiers(args: argparse.Namespace) -> int:
    print(f"{'TIER':<22} {'RANK':>4}  FEATURES")
    for tier, features in TIER_FEATURES.items():
        count = "all" if WILDCARD in features else str(len(features))
        print(f"{tier:<22} {tier_rank(tier):>4}  {count}")
    return 0


def _cmd_features(args: argparse.Namespace) -> int:
    if not is_known_tier(args.tier):
        print(f"  [!] Unknown tier '{args.tier}'. Known tiers: {', '.join(TIER_FEATURES)}", file=sys.stderr)
        return 2
    for feature in sorted_features(get_available_features(args.tier)):
        print(feature)
    return 0


def _cmd_check(args: argparse.Namespace) -> int:
    """Exit 0 when the tier includes the feature, 1 when it does not, 2 on bad input."""
    if not is_known_tier(args.tier):
        print(f"  [!] Unknown tier '{args.tier}'.", file=sys.stderr)
        return 2
    if not is_known_feature(args.feature):
        print(f"  [!] Unknown feature '{args.feature}'. Known features: {', '.join(ALL_FEATURES)}", file=sys.stderr)
        return 2
    allowed = has_feature_access(args.tier, args.feature)
    print(f"{normalize_tier(args.tier)} -> {args.feature}: {'allowed' if allowed else 'denied'}")
    return 0 if allowed else 1


def _read_password(from_env: bool) -> Optional[str]:
    if from_env:
        return os.environ.get(_PASSWORD_ENV) or None
    first = getpass.getpass("Password: ")
    second = getpass.getpass("Confirm password: ")
    if first != second:
        print("  [!] Passwords do not match.", file=sys.stderr)
        return None
    return first


def _cmd_create_admin(args: argparse.Namespace) -> int:
    password = _read_password(args.password_env)
    if not password:
        print("  [!] No password supplied.", file=sys.stderr)
        return 2
    store = UserStore(db_url=args.db_url)
    try:
        user = AuthService(store).create_user(args.email, password, role=ROLE_ADMIN)
    except ApexGateError as exc:
        print(f"  [!] {exc.message}", file=sys.stderr)
        return 1
    finally:
        store.close()
    print(f"Created admin {user.email} (id {user.id}).")
    return 0


# ---------------------------------------------------------------------------
# Entry point
# ---------------------------------------------------------------------------


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="apexgate",
        description="Tier matrix inspection and admin bootstrap for ApexGate.",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  python main.py tiers
  python main.py features apex_command
  python main.py check dot_readiness_audit dot_audits
  APEXGATE_ADMIN_PASSWORD=... python main.py create-admin --email ops@example.com --password-env
        """,
    )
    sub = parser.add_subparsers(dest="command", metavar="COMMAND")

    p_tiers = sub.add_parser("tiers", help="List every tier with its rank and feature count")
    p_tiers.set_defaults(func=_cmd_tiers)

    p_features = sub.add_parser("features", help="List the features a tier includes")
    p_features.add_argument("tier")
    p_features.set_defaults(func=_cmd_features)

    p_check = sub.add_parser("check", help="Check whether a tier includes a feature")
    p_check.add_argument("tier")
    p_check.add_argument("feature")
    p_check.set_defaults(func=_cmd_check)

    p_admin = sub.add_parser("create-admin", help="Create an admin account")
    p_admin.add_argument("--email", required=True)
    p_admin.add_argument(
        "--password-env",
        action="store_true",
        help=f"Read the password from ${_PASSWORD_ENV} instead of prompting",
    )
    p_admin.add_argument(
        "--db-url",
        default=None,
        metavar="URL",
        help="Auth database URL (default: AUTH_DB_URL setting)",
    )
    p_admin.set_defaults(func=_cmd_create_admin)
    return parser


def main(argv: Optional[list[str]] = None) -> int:
    logging.basicConfig(level=logging.WARNING, format="%(levelname)-5s %(name)s %(message)s")
    parser = build_parser()
    args = parser.parse_args(argv)
    if not getattr(args, "func", None):
        parser.print_help()
        return 0
    return args.func(args)


if __name__ == "__main__":
    sys.exit(main())

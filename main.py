"""Command-line interface for the OfficeHub service."""

from __future__ import annotations
import argparse
import logging
import sys
from getpass import getpass
from pathlib import Path
from typing import Sequence

from officehub.config import Settings, load_settings
from officehub.database import PASSWORD_MIN_LENGTH, Database
from officehub.models import Company, Role
from officehub.results import AuthError

logger = logging.getLogger("officehub.main")

KNOWN_COMMANDS = {"serve", "init-db", "create-company", "create-user", "list-users"}


def _parse_args(argv: Sequence[str] | None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="OfficeHub service utilities")
    parser.add_argument(
        "--config",
        dest="config_path",
        default=None,
        help="Path to the YAML settings file (defaults to OFFICEHUB_CONFIG or config/officehub.yaml)",
    )
    subparsers = parser.add_subparsers(dest="command")

    parser.set_defaults(command="serve")

    subparsers.add_parser("init-db", help="Initialise the OfficeHub database")

    serve_parser = subparsers.add_parser("serve", help="Start the HTTP service")
    serve_parser.add_argument("--host", default="127.0.0.1", help="Bind address for the API")
    serve_parser.add_argument("--port", type=int, default=8000, help="Port for the API (default: 8000)")

    company_parser = subparsers.add_parser("create-company", help="Register a company")
    company_parser.add_argument("name", help="Display name of the company")
    company_parser.add_argument("code", help="Unique company code")

    user_parser = subparsers.add_parser("create-user", help="Create a verified user account")
    user_parser.add_argument("name", help="Display name for the user")
    user_parser.add_argument("email", help="Unique email address for login")
    user_parser.add_argument("--company", required=True, help="Code of the company the user belongs to")
    user_parser.add_argument("--admin", action="store_true", help="Grant the admin role")

    list_parser = subparsers.add_parser("list-users", help="List the users of a company")
    list_parser.add_argument("--company", required=True, help="Company code")

    args_list = list(argv) if argv is not None else sys.argv[1:]

    # Options placed before the sub-command belong to the top-level parser.
    leading: list[str] = []
    while args_list and args_list[0] == "--config" and len(args_list) > 1:
        leading.extend(args_list[:2])
        args_list = args_list[2:]

    if not args_list:
        args_list = ["serve"]
    else:
        first = args_list[0]
        if first in ("-h", "--help"):
            return parser.parse_args([*leading, *args_list])
        if first not in KNOWN_COMMANDS:
            if any(flag in args_list for flag in ("-h", "--help")):
                return parser.parse_args([*leading, *args_list])
            args_list = ["serve", *args_list]

    return parser.parse_args([*leading, *args_list])


def _open_database(settings: Settings) -> Database:
    database = Database(
        settings.database_path,
        policy=settings.workday.policy(),
        zone=settings.zone(),
    )
    database.initialize()
    logger.info("Database initialised at %s", settings.database_path)
    return database


def _serve(*, database: Database, settings: Settings, host: str, port: int) -> None:
    from officehub.api import create_app
    import uvicorn

    logger.info("Starting OfficeHub API on http://%s:%s", host, port)
    app = create_app(database=database, settings=settings)
    uvicorn.run(app, host=host, port=port, log_level="info")


def _require_company(database: Database, code: str) -> Company:
    company = database.get_company_by_code(code)
    if company is None:
        raise SystemExit(f"Unknown company code '{code}'.")
    return company


def _create_company(database: Database, name: str, code: str) -> int:
    try:
        company = database.create_company(name, code)
    except ValueError as exc:
        print(f"Failed to create company: {exc}", file=sys.stderr)
        return 1
    print(f"Created company {company.name} ({company.code}) with id {company.id}")
    return 0


def _create_user(database: Database, *, name: str, email: str, company_code: str, admin: bool) -> int:
    company = _require_company(database, company_code)
    password = _prompt_for_password()
    if password is None:
        print("Aborted creating user.", file=sys.stderr)
        return 1

    try:
        profile = database.create_user(
            name,
            email,
            password,
            company_id=company.id,
            role=Role.ADMIN if admin else Role.USER,
            email_verified=True,
        )
    except AuthError as exc:
        print(f"Failed to create user: {exc.message}", file=sys.stderr)
        return 1

    print(f"Created {profile.role.value} {profile.name} <{profile.email}> in {company.name}")
    return 0


def _list_users(database: Database, company_code: str) -> int:
    company = _require_company(database, company_code)
    profiles = database.list_profiles(company.id)
    if not profiles:
        print(f"No users are registered for {company.name}.")
        return 0

    print(f"{len(profiles)} user(s) found in {company.name}:")
    print(f"{'Role':<6}  {'Name':<24}  {'Email':<32}  Created")
    print("-" * 80)
    for profile in profiles:
        created = profile.created_at.strftime("%Y-%m-%d %H:%M:%S %Z")
        print(f"{profile.role.value:<6}  {profile.name:<24}  {profile.email:<32}  {created}")
    return 0


def _prompt_for_password() -> str | None:
    for _ in range(3):
        password = getpass(f"Password (min {PASSWORD_MIN_LENGTH} characters): ")
        if len(password) < PASSWORD_MIN_LENGTH:
            print("Password is too short. Please try again.")
            continue
        confirmation = getpass("Confirm password: ")
        if password != confirmation:
            print("Passwords do not match. Please try again.")
            continue
        return password
    return None


def main(argv: Sequence[str] | None = None) -> int:
    """Entry point for CLI usage."""

    logging.basicConfig(level=logging.INFO, format="%(asctime)s [%(levelname)s] %(name)s: %(message)s")

    args = _parse_args(argv)
    settings = load_settings(Path(args.config_path) if args.config_path else None)
    database = _open_database(settings)

    if args.command == "serve":
        _serve(database=database, settings=settings, host=args.host, port=args.port)
    elif args.command == "init-db":
        print("Database initialisation complete.")
    elif args.command == "create-company":
        return _create_company(database, args.name, args.code)
    elif args.command == "create-user":
        return _create_user(
            database,
            name=args.name,
            email=args.email,
            company_code=args.company,
            admin=args.admin,
        )
    elif args.command == "list-users":
        return _list_users(database, args.company)
    return 0


if __name__ == "__main__":
    raise SystemExit(main())

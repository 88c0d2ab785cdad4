import argparse
import getpass
import os
import sys
from pathlib import Path

ROOT = Path(__file__).resolve().parent.parent
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

from officehub.config import resolve_database_path
from officehub.database import PASSWORD_MIN_LENGTH, Database
from officehub.models import Role
from officehub.results import AuthError


def parse_args() -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Create an OfficeHub user")
    parser.add_argument("name", help="Display name for the user")
    parser.add_argument("email", help="Unique email address for login")
    parser.add_argument("--company", required=True, help="Code of the company the user belongs to")
    parser.add_argument("--admin", action="store_true", help="Grant the admin role")
    parser.add_argument(
        "--db",
        dest="db_path",
        default=None,
        help="Path to the SQLite database (defaults to OFFICEHUB_DB_PATH or data/officehub.sqlite3)",
    )
    return parser.parse_args()


def prompt_for_password() -> str:
    for _ in range(3):
        password = getpass.getpass("Password: ")
        confirm = getpass.getpass("Confirm password: ")
        if password != confirm:
            print("Passwords do not match. Try again.", file=sys.stderr)
            continue
        if len(password) < PASSWORD_MIN_LENGTH:
            print(f"Password must be at least {PASSWORD_MIN_LENGTH} characters long.", file=sys.stderr)
            continue
        return password
    raise SystemExit("Failed to set password after three attempts.")


def main() -> int:
    args = parse_args()

    db_env = args.db_path or os.getenv("OFFICEHUB_DB_PATH")
    database = Database(resolve_database_path(db_env))
    database.initialize()

    company = database.get_company_by_code(args.company)
    if company is None:
        print(f"Error: unknown company code '{args.company}'", file=sys.stderr)
        return 1

    password = prompt_for_password()
    try:
        profile = database.create_user(
            args.name,
            args.email,
            password,
            company_id=company.id,
            role=Role.ADMIN if args.admin else Role.USER,
            email_verified=True,
        )
    except AuthError as exc:
        print(f"Error: {exc.message}", file=sys.stderr)
        return 1

    print(f"Created {profile.role.value} {profile.name} <{profile.email}> in {company.name}")
    return 0


if __name__ == "__main__":
    raise SystemExit(main())

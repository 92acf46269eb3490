"""Command-line interface for the bug tracker service."""

from __future__ import annotations
import argparse
import logging
import sys
from getpass import getpass
from typing import Sequence

from bugtracker.config import Settings, load_settings
from bugtracker.database import Database
from bugtracker.errors import TrackerError
from bugtracker.models import Role
from bugtracker.validation import validate_registration

logger = logging.getLogger("bugtracker.main")

_KNOWN_COMMANDS = {"serve", "init-db", "create-user", "set-role", "list-users"}


def _parse_args(argv: Sequence[str] | None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Bug tracker service utilities")
    subparsers = parser.add_subparsers(dest="command")

    parser.set_defaults(command="serve")

    subparsers.add_parser("init-db", help="Initialise the tracker database")

    serve_parser = subparsers.add_parser("serve", help="Start the HTTP API")
    serve_parser.add_argument("--host", default="127.0.0.1", help="Bind address for the API")
    serve_parser.add_argument("--port", type=int, default=5000, help="Port for the API (default: 5000)")

    create_parser = subparsers.add_parser("create-user", help="Create a user account")
    create_parser.add_argument("name", help="Display name for the user")
    create_parser.add_argument("email", help="Unique email address for login")
    create_parser.add_argument("--admin", action="store_true", help="Grant the admin role")

    role_parser = subparsers.add_parser("set-role", help="Change the role of an existing user")
    role_parser.add_argument("email", help="Email address of the user")
    role_parser.add_argument("role", choices=[role.value for role in Role], help="New role")

    subparsers.add_parser("list-users", help="List registered users and their roles")

    args_list = list(argv) if argv is not None else sys.argv[1:]

    if not args_list:
        args_list = ["serve"]
    else:
        first = args_list[0]
        if first in ("-h", "--help"):
            return parser.parse_args(args_list)
        if first not in _KNOWN_COMMANDS:
            if any(flag in args_list for flag in ("-h", "--help")):
                return parser.parse_args(args_list)
            args_list = ["serve", *args_list]

    return parser.parse_args(args_list)


def _initialise_database(settings: Settings) -> Database:
    database = Database(settings.database_path)
    database.initialize()
    logger.info("Database initialised at %s", settings.database_path)
    return database


def _serve(*, settings: Settings, database: Database, host: str, port: int) -> None:
    from bugtracker.service import create_app
    import uvicorn

    logger.info("Starting bug tracker API on http://%s:%s", host, port)

    app = create_app(settings=settings, database=database)
    uvicorn.run(app, host=host, port=port, log_level=settings.log_level.lower())


def _prompt_for_password(min_length: int) -> str | None:
    for _ in range(3):
        password = getpass(f"Password (min {min_length} characters): ")
        if len(password) < min_length:
            print("Password is too short. Please try again.")
            continue
        confirmation = getpass("Confirm password: ")
        if password != confirmation:
            print("Passwords do not match. Please try again.")
            continue
        return password
    return None


def _create_user(database: Database, settings: Settings, name: str, email: str, *, admin: bool) -> int:
    password = _prompt_for_password(settings.password_min_length)
    if password is None:
        print("Aborted creating user.", file=sys.stderr)
        return 1

    role = Role.ADMIN if admin else Role.USER
    try:
        parsed = validate_registration(
            {"name": name, "email": email, "password": password},
            min_password_length=settings.password_min_length,
        )
        user = database.create_user(parsed.name, parsed.email, parsed.password, role=role)
    except TrackerError as exc:
        print(f"Failed to create user: {exc.message}", file=sys.stderr)
        return 1

    print(f"Created user #{user.id}: {user.name} <{user.email}> ({user.role.value})")
    return 0


def _set_role(database: Database, email: str, role_value: str) -> int:
    user = database.get_user_by_email(email)
    if user is None:
        print(f"No user is registered with {email}.", file=sys.stderr)
        return 1

    updated = database.set_user_role(user.id, Role(role_value))
    logger.info("Role of user %s changed to %s", updated.id, updated.role.value)
    print(f"User #{updated.id} <{updated.email}> now has role '{updated.role.value}'.")
    return 0


def _list_users(database: Database) -> int:
    users = database.list_users()
    if not users:
        print("No users are currently registered.")
        return 0

    print(f"{len(users)} user(s) found:")
    print(f"{'ID':>4}  {'Name':<24}  {'Email':<32}  {'Role':<6}  Created")
    print("-" * 88)
    for user in users:
        created = user.created_at.strftime("%Y-%m-%d %H:%M:%S %Z")
        print(f"{user.id:>4}  {user.name:<24}  {user.email:<32}  {user.role.value:<6}  {created}")
    return 0


def main(argv: Sequence[str] | None = None) -> int:
    """Entry point for CLI usage."""

    args = _parse_args(argv)

    try:
        # Only the API signs tokens; the maintenance commands work without a secret.
        settings = load_settings(require_secret=args.command == "serve")
    except ValueError as exc:
        print(f"Configuration error: {exc}", file=sys.stderr)
        return 2

    logging.basicConfig(level=settings.log_level, format="%(asctime)s [%(levelname)s] %(name)s: %(message)s")

    database = _initialise_database(settings)
    try:
        if args.command == "serve":
            _serve(settings=settings, database=database, host=args.host, port=args.port)
        elif args.command == "create-user":
            return _create_user(database, settings, args.name, args.email, admin=args.admin)
        elif args.command == "set-role":
            return _set_role(database, args.email, args.role)
        elif args.command == "list-users":
            return _list_users(database)
        elif args.command == "init-db":
            print("Database initialisation complete.")
    finally:
        database.close()
    return 0


if __name__ == "__main__":
    raise SystemExit(main())

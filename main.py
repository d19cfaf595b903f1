"""Command-line interface for the user store service."""

from __future__ import annotations
import argparse
import logging
import sys
from dataclasses import replace
from pathlib import Path
from typing import Sequence

try:
    import httpx
except ImportError as exc:  # pragma: no cover - exercised in environments missing deps
    raise SystemExit(
        "The 'httpx' package is required. Install the project with "
        "`pip install -e .` to install dependencies."
    ) from exc

from userstore.codec import CodecError, PersistenceError, SnapshotFile
from userstore.config import Settings, load_settings, resolve_store_path
from userstore.store import UserStore

logger = logging.getLogger("userstore.main")

_LOG_FORMAT = "%(asctime)s [%(levelname)s] %(message)s"


def _add_config_options(parser: argparse.ArgumentParser) -> None:
    parser.add_argument(
        "--config",
        default=None,
        help="Path to a YAML settings file (defaults to USERSTORE_CONFIG or config/userstore.yaml)",
    )
    parser.add_argument(
        "--store-path",
        default=None,
        help="Path to the JSON user store (defaults to USERSTORE_STORE_PATH or data/users.json)",
    )


def _parse_args(argv: Sequence[str] | None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="User store service utilities")
    subparsers = parser.add_subparsers(dest="command")

    parser.set_defaults(command="serve")

    init_parser = subparsers.add_parser("init-store", help="Create the user store file if missing")
    _add_config_options(init_parser)

    serve_parser = subparsers.add_parser("serve", help="Start the HTTP user store service")
    _add_config_options(serve_parser)
    serve_parser.add_argument("--host", default=None, help="Bind address for the API")
    serve_parser.add_argument(
        "--port",
        type=int,
        default=None,
        help="Port for the HTTP API (default: 3333)",
    )

    admin_parser = subparsers.add_parser(
        "admin", help="Launch the interactive administration console"
    )
    _add_config_options(admin_parser)
    admin_parser.add_argument(
        "--service-url",
        default=None,
        help="Base URL of a running user store service (default: derived from settings)",
    )

    args_list = list(argv) if argv is not None else sys.argv[1:]
    known_commands = {"serve", "admin", "init-store"}

    if not args_list:
        args_list = ["serve"]
    else:
        first = args_list[0]
        if first in ("-h", "--help"):
            return parser.parse_args(args_list)
        if first not in known_commands:
            if any(flag in args_list for flag in ("-h", "--help")):
                return parser.parse_args(args_list)
            args_list = ["serve", *args_list]

    return parser.parse_args(args_list)


def _resolve_settings(args: argparse.Namespace) -> Settings:
    config_path = Path(args.config).expanduser().resolve(strict=False) if args.config else None
    settings = load_settings(config_path)

    overrides = {}
    if args.store_path:
        overrides["store_path"] = resolve_store_path(args.store_path)
    if getattr(args, "host", None):
        overrides["host"] = args.host
    if getattr(args, "port", None) is not None:
        overrides["port"] = args.port
    return replace(settings, **overrides) if overrides else settings


def _initialise_store(settings: Settings) -> UserStore:
    store = UserStore(SnapshotFile(settings.store_path))
    try:
        store.initialize()
    except (CodecError, PersistenceError) as exc:
        raise SystemExit(f"Unable to load user store at {settings.store_path}: {exc}") from exc
    logger.info("User store initialised at %s", settings.store_path)
    return store


def _serve(*, store: UserStore, settings: Settings) -> None:
    from userstore.service import create_app
    import uvicorn

    logger.info("Starting user store API on http://%s:%s", settings.host, settings.port)

    app = create_app(store=store, settings=settings)
    uvicorn.run(
        app,
        host=settings.host,
        port=settings.port,
        log_level=settings.log_level.lower(),
    )


def _default_service_url(settings: Settings) -> str:
    host = settings.host
    if host in {"0.0.0.0", "::", ""}:
        host = "127.0.0.1"
    return f"http://{host}:{settings.port}"


def _run_admin_cli(client: httpx.Client) -> None:
    """Provide an interactive console that manages users through a running service."""

    print("User Store Administration Console")
    print("Press Ctrl+C at any time to exit.\n")

    try:
        while True:
            print("Select an option:")
            print("  1) List all users")
            print("  2) Add a new user")
            print("  3) Rename a user")
            print("  4) Delete a user")
            print("  5) Exit")

            choice = input("Enter choice [1-5]: ").strip()

            if choice == "1":
                _list_users(client)
            elif choice == "2":
                _add_user(client)
            elif choice == "3":
                _rename_user(client)
            elif choice == "4":
                _delete_user(client)
            elif choice == "5":
                print("Goodbye!")
                return
            else:
                print("Invalid selection. Please choose a number from the menu.\n")

            print()
    except KeyboardInterrupt:
        print("\nExiting administration console.")


def _extract_error_message(response: httpx.Response) -> str:
    try:
        payload = response.json()
    except ValueError:
        return response.text.strip() or "no details provided"
    if isinstance(payload, dict):
        for key in ("error", "detail", "status"):
            value = payload.get(key)
            if isinstance(value, str) and value.strip():
                return value.strip()
    return "no details provided"


def _send(
    client: httpx.Client,
    method: str,
    path: str,
    *,
    expected_status: int,
    **kwargs: object,
) -> httpx.Response | None:
    try:
        response = client.request(method, path, **kwargs)
    except httpx.HTTPError as exc:
        print(f"Failed to contact user store service: {exc}")
        return None

    if response.status_code != expected_status:
        print(f"Service responded with {response.status_code}: {_extract_error_message(response)}")
        return None
    return response


def _list_users(client: httpx.Client) -> None:
    response = _send(client, "GET", "/api/v1/users", expected_status=200)
    if response is None:
        return

    try:
        users = response.json()
    except ValueError:
        print("Service returned an unexpected response format.")
        return

    if not users:
        print("No users are currently registered.")
        return

    print(f"{len(users)} user(s) found:")
    print(f"{'ID':>4}  {'Name':<24}  {'Email':<32}  Created")
    print("-" * 80)
    for user_id in sorted(users, key=lambda value: int(value) if value.isdigit() else 0):
        user = users[user_id]
        created = str(user.get("created_at", ""))[:19].replace("T", " ")
        email = user.get("email") or "<no email>"
        print(f"{user_id:>4}  {user.get('display_name', ''):<24}  {email:<32}  {created}")


def _add_user(client: httpx.Client) -> None:
    print("\nCreate a new user (leave the name blank to cancel).")
    name = input("Display name: ").strip()
    if not name:
        print("User creation cancelled.")
        return

    email = input("Email address: ").strip()

    response = _send(
        client,
        "POST",
        "/api/v1/users",
        expected_status=201,
        json={"display_name": name, "email": email},
    )
    if response is None:
        return

    user_id = response.json().get("user_id")
    print(f"Created user #{user_id}: {name} <{email or 'no email set'}>")


def _rename_user(client: httpx.Client) -> None:
    user_id = input("User ID: ").strip()
    if not user_id:
        print("Rename cancelled.")
        return

    name = input("New display name: ").strip()
    if not name:
        print("Rename cancelled.")
        return

    response = _send(
        client,
        "PATCH",
        f"/api/v1/users/{user_id}",
        expected_status=204,
        json={"display_name": name},
    )
    if response is not None:
        print(f"Renamed user #{user_id} to {name}")


def _delete_user(client: httpx.Client) -> None:
    user_id = input("User ID: ").strip()
    if not user_id:
        print("Deletion cancelled.")
        return

    confirmation = input(f"Delete user #{user_id}? [y/N]: ").strip().lower()
    if confirmation not in {"y", "yes"}:
        print("Deletion cancelled.")
        return

    response = _send(client, "DELETE", f"/api/v1/users/{user_id}", expected_status=204)
    if response is not None:
        print(f"Deleted user #{user_id}")


def main(argv: Sequence[str] | None = None) -> None:
    """Entry point for CLI usage."""

    args = _parse_args(argv)
    try:
        settings = _resolve_settings(args)
    except ValueError as exc:
        raise SystemExit(f"Invalid configuration: {exc}") from exc

    logging.basicConfig(level=getattr(logging, settings.log_level), format=_LOG_FORMAT)

    if args.command == "admin":
        service_url = args.service_url or _default_service_url(settings)
        with httpx.Client(base_url=service_url.rstrip("/"), timeout=10.0) as client:
            _run_admin_cli(client)
        return

    store = _initialise_store(settings)

    if args.command == "serve":
        _serve(store=store, settings=settings)
    elif args.command == "init-store":
        count = len(store.list())
        print(f"User store ready at {settings.store_path} ({count} user(s)).")


if __name__ == "__main__":
    main()

"""Command-line interface for the AgencyCRM user service."""

from __future__ import annotations
import argparse
import logging
import sys
from typing import Sequence

try:
    import httpx
except ImportError as exc:  # pragma: no cover - exercised in environments missing deps
    raise SystemExit(
        "The 'httpx' package is required. Run `pip install -e .` to install dependencies."
    ) from exc

from agencycrm.config import Config, ConfigError, load_config
from agencycrm.models import CreateUserRequest
from agencycrm.repository import RepositoryError, SQLUserRepository, connect_repository
from agencycrm.service import EmailAlreadyExists, ServiceError, UserService

logger = logging.getLogger("agencycrm.main")

_DEFAULT_SERVICE_URL = "http://localhost:8080"


def _parse_args(argv: Sequence[str] | None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="AgencyCRM user service")
    subparsers = parser.add_subparsers(dest="command")

    parser.set_defaults(command="serve")

    init_parser = subparsers.add_parser("init-db", help="Create the users table")
    init_parser.add_argument(
        "--seed",
        action="store_true",
        help="Also insert the sample users (existing emails are skipped)",
    )

    serve_parser = subparsers.add_parser("serve", help="Start the HTTP service")
    serve_parser.add_argument(
        "--host",
        default=None,
        help="Bind address (default: host part of SERVER_ADDRESS)",
    )
    serve_parser.add_argument(
        "--port",
        type=int,
        default=None,
        help="Listen port (default: port part of SERVER_ADDRESS, 8080)",
    )

    subparsers.add_parser("list-users", help="Print the most recently created users")

    add_parser = subparsers.add_parser("add-user", help="Create a user")
    add_parser.add_argument("name", help="Display name for the user")
    add_parser.add_argument("email", help="Unique email address")

    health_parser = subparsers.add_parser("health", help="Probe a running service")
    health_parser.add_argument(
        "--url",
        default=_DEFAULT_SERVICE_URL,
        help=f"Base URL of the service (default: {_DEFAULT_SERVICE_URL})",
    )

    args_list = list(argv) if argv is not None else sys.argv[1:]
    known_commands = {"serve", "init-db", "list-users", "add-user", "health"}

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


def _open_repository(config: Config) -> SQLUserRepository:
    repository = connect_repository(config.db)
    repository.initialize()
    return repository


def _serve(*, config: Config, host: str | None, port: int | None) -> None:
    from agencycrm.server import create_app
    import uvicorn

    bind_host = host or config.server.host
    bind_port = port or config.server.port

    for label, path in (("Templates", config.templates_dir), ("Static", config.static_dir)):
        if not path.is_dir():
            logger.warning("%s directory does not exist: %s", label, path)

    service = UserService(_open_repository(config))
    app = create_app(service=service, config=config)

    logger.info("Starting server on %s:%s", bind_host, bind_port)
    uvicorn.run(
        app,
        host=bind_host,
        port=bind_port,
        log_level="info",
        timeout_keep_alive=config.server.read_timeout,
        timeout_graceful_shutdown=config.server.shutdown_grace,
    )
    logger.info("Server shutdown correctly")


def _init_db(config: Config, *, seed: bool) -> None:
    with _open_repository(config) as repository:
        if seed:
            created = repository.seed_sample_users()
            print(f"Inserted {created} sample user(s).")
    print("Database initialisation complete.")


def _list_users(service: UserService) -> None:
    users = service.get_users()
    if not users:
        print("No users are currently registered.")
        return

    print(f"{len(users)} user(s) found:")
    print(f"{'ID':>4}  {'Name':<24}  {'Email':<32}  Created")
    print("-" * 80)
    for user in users:
        created = user.created_at.strftime("%Y-%m-%d %H:%M:%S %Z")
        print(f"{user.id:>4}  {user.name:<24}  {user.email:<32}  {created}")


def _add_user(service: UserService, name: str, email: str) -> int:
    request = CreateUserRequest(name=name, email=email)
    if request.missing_fields():
        print("Name and email are required.")
        return 1

    try:
        user_id = service.create_user(request)
    except EmailAlreadyExists:
        print(f"A user with email {request.email} already exists.")
        return 1
    except ServiceError as exc:
        print(f"Failed to create user: {exc}")
        return 1

    print(f"Created user #{user_id}: {request.name} <{request.email}>")
    return 0


def _check_health(base_url: str) -> int:
    endpoint = base_url.rstrip("/") + "/health"

    try:
        response = httpx.get(endpoint, timeout=5.0)
    except httpx.HTTPError as exc:
        print(f"Failed to contact service: {exc}")
        return 1

    if response.status_code != 200:
        print(f"Service responded with {response.status_code}: {response.text.strip()}")
        return 1

    try:
        payload = response.json()
    except ValueError:
        print("Service returned an unexpected response format.")
        return 1

    print(f"Service is {payload.get('status', 'unknown')} (server time {payload.get('time', '?')})")
    return 0


def main(argv: Sequence[str] | None = None) -> int:
    """Entry point for CLI usage."""

    logging.basicConfig(level=logging.INFO, format="%(asctime)s [%(levelname)s] %(message)s")

    args = _parse_args(argv)

    if args.command == "health":
        return _check_health(args.url)

    try:
        config = load_config()
    except ConfigError as exc:
        logger.error("Failed to load the configuration: %s", exc)
        return 1

    try:
        if args.command == "serve":
            _serve(config=config, host=args.host, port=args.port)
        elif args.command == "init-db":
            _init_db(config, seed=args.seed)
        elif args.command == "list-users":
            with _open_repository(config) as repository:
                _list_users(UserService(repository))
        elif args.command == "add-user":
            with _open_repository(config) as repository:
                return _add_user(UserService(repository), args.name, args.email)
    except (RepositoryError, ServiceError) as exc:
        logger.error("Database error: %s", exc)
        return 1

    return 0


if __name__ == "__main__":
    sys.exit(main())

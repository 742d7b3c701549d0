"""
E-Prometna Field Client Entry Point.

Bootstraps the entire dependency graph via constructor injection,
initialises the local SQLite schema, restores any persisted session and
runs one command.  Every subsystem is wired here; no module-level
globals.

Usage::

    python main.py register <one-time-code>
    python main.py register-account <email>
    python main.py login <email>
    python main.py logout
    python main.py status
    python main.py scan <qr-payload>
"""

from __future__ import annotations

import argparse
import asyncio
import atexit
import getpass
import json
import sys
from typing import Optional, Sequence

from eprometna.auth import SessionContext
from eprometna.config import get_config
from eprometna.database import DatabaseManager
from eprometna.errors import EPrometnaError
from eprometna.jwt_auth import require_registered_device
from eprometna.logger import StructuredLogger, get_logger
from eprometna.models.auth_models import Session
from eprometna.models.enums import ScannerState
from eprometna.models.scan_models import PermissionResponse
from eprometna.schema import initialize_schema
from eprometna.services import ServiceContainer, create_services


class _TerminalPermission:
    """A terminal has no camera prompt; scanning is always permitted."""

    async def request(self) -> PermissionResponse:
        return PermissionResponse(granted=True)


def _build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="eprometna",
        description="E-Prometna field client: device session and QR scan resolution.",
    )
    commands = parser.add_subparsers(dest="command", required=True)

    register = commands.add_parser("register", help="Register this device with a one-time code.")
    register.add_argument("code")

    register_account = commands.add_parser(
        "register-account", help="Register this device for an existing account.",
    )
    register_account.add_argument("email")

    login = commands.add_parser("login", help="Sign in on a registered device.")
    login.add_argument("email")

    commands.add_parser("logout", help="Sign out and wipe stored credentials.")
    commands.add_parser("status", help="Show registration and session state.")

    scan = commands.add_parser("scan", help="Resolve a decoded QR payload.")
    scan.add_argument("payload")
    return parser


def _emit(payload: dict[str, object]) -> None:
    sys.stdout.write(json.dumps(payload, ensure_ascii=False, indent=2) + "\n")


def _user_payload(session: Session) -> Optional[dict[str, object]]:
    if session.user_data is None:
        return None
    return session.user_data.model_dump(by_alias=True, exclude_none=True)


async def _run(args: argparse.Namespace, services: ServiceContainer) -> int:
    """Execute one CLI command; return the process exit code."""
    session_manager = services["session_manager"]
    scan_resolver = services["scan_resolver"]

    try:
        if args.command == "register":
            session = await session_manager.register_device(args.code)
            _emit({"registered": True, "user": _user_payload(session)})
        elif args.command == "register-account":
            password = getpass.getpass("Password: ")
            session = await session_manager.register_with_credentials(args.email, password)
            _emit({"registered": True, "user": _user_payload(session)})
        elif args.command == "login":
            password = getpass.getpass("Password: ")
            await session_manager.login(args.email, password)
            _emit({"signedIn": True, "role": session_manager.get_user_role()})
        elif args.command == "logout":
            await session_manager.logout()
            _emit({"signedOut": True})
        elif args.command == "status":
            session = session_manager.session
            _emit({
                "deviceRegistered": session_manager.is_device_registered(),
                "role": session_manager.get_user_role(),
                "hasAccessToken": session.access_token is not None,
                "status": session.status.model_dump(exclude_none=True),
            })
        elif args.command == "scan":
            @require_registered_device(session_manager)
            async def _scan(payload: str) -> int:
                await scan_resolver.request_permission()
                outcome = await scan_resolver.handle_scan(payload)
                _emit(outcome.model_dump(mode="json", by_alias=True, exclude_none=True))
                return 0 if outcome.stage is ScannerState.RESULTS else 1

            return await _scan(args.payload)
    except EPrometnaError as exc:
        _emit({"error": exc.message})
        return 1
    finally:
        await services["api_client"].aclose()
    return 0


def main(argv: Optional[Sequence[str]] = None) -> int:
    """Application entry point: wire dependencies and run one command."""
    args = _build_parser().parse_args(argv)

    logger: StructuredLogger = get_logger("main")
    config = get_config()

    db = DatabaseManager(
        sqlite_path=config.LOCAL_DB_PATH,
        logger=StructuredLogger(name="database"),
    )
    # close() is idempotent; atexit covers exits that skip the finally.
    atexit.register(db.close)

    initialize_schema(db.sqlite, StructuredLogger(name="schema"))

    services = create_services(
        db=db,
        config=config,
        context=SessionContext(),
        permission_source=_TerminalPermission(),
    )
    services["session_manager"].restore_session()

    try:
        return asyncio.run(_run(args, services))
    finally:
        db.close()
        logger.info("E-Prometna client shut down.")


if __name__ == "__main__":
    try:
        sys.exit(main())
    except KeyboardInterrupt:
        sys.exit(130)

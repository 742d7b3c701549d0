"""Shared fixtures: temporary database, credential store, fake backend."""

from __future__ import annotations

import io
import uuid
from collections.abc import Callable, Iterator
from pathlib import Path
from typing import Any, Optional, Union

import httpx
import jwt
import pytest

from eprometna import config as config_module
from eprometna.api_client import ApiClient
from eprometna.auth import SessionContext
from eprometna.config import AppConfig
from eprometna.credential_store import CredentialStore
from eprometna.database import DatabaseManager
from eprometna.logger import StructuredLogger
from eprometna.models.device import DeviceInfo
from eprometna.models.enums import CredentialKey
from eprometna.schema import initialize_schema
from eprometna.services.auth_gateway import AuthGateway
from eprometna.services.record_gateway import RecordGateway
from eprometna.services.scan_resolver import ScanResolver
from eprometna.services.session_manager import SessionManager

BASE_URL = "https://api.test"


@pytest.fixture(autouse=True, scope="session")
def _test_config(tmp_path_factory: pytest.TempPathFactory) -> Iterator[AppConfig]:
    """Pin the config singleton so nothing writes logs into the repo."""
    root = tmp_path_factory.mktemp("config")
    cfg = AppConfig(
        API_BASE_URL=BASE_URL,
        LOCAL_DB_PATH=root / "local.db",
        CREDENTIAL_SALT_PATH=root / "salt",
        CREDENTIAL_KDF_ITERATIONS=1_000,
        LOG_FILE=str(root / "eprometna.log"),
    )
    previous = config_module._config_instance
    config_module._config_instance = cfg
    yield cfg
    config_module._config_instance = previous


@pytest.fixture()
def logger(tmp_path: Path) -> StructuredLogger:
    return StructuredLogger(
        name=f"tests.{uuid.uuid4().hex[:8]}",
        stream=io.StringIO(),
        log_file=str(tmp_path / "test.log"),
    )


@pytest.fixture()
def db(tmp_path: Path, logger: StructuredLogger) -> Iterator[DatabaseManager]:
    manager = DatabaseManager(sqlite_path=tmp_path / "local.db", logger=logger)
    initialize_schema(manager.sqlite, logger)
    yield manager
    manager.close()


@pytest.fixture()
def store(db: DatabaseManager, logger: StructuredLogger, tmp_path: Path) -> CredentialStore:
    return CredentialStore(
        db=db,
        logger=logger,
        salt_path=tmp_path / "store_salt",
        kdf_iterations=1_000,
    )


# ---------------------------------------------------------------------------
# Tokens and device metadata
# ---------------------------------------------------------------------------

@pytest.fixture()
def make_token() -> Callable[..., str]:
    """Mint an HS256 JWT carrying *claims*."""

    def _make(**claims: Any) -> str:
        return jwt.encode(claims, "test-signing-key", algorithm="HS256")

    return _make


class FakeDeviceInfo:
    """Fixed device snapshot that counts how often it was captured."""

    def __init__(self) -> None:
        self.captures = 0

    def capture(self) -> DeviceInfo:
        self.captures += 1
        return DeviceInfo(
            platform="android",
            brand="Samsung",
            model_name="SM-A546B",
            device_id="device-123",
            os_name="Android",
            os_version="14",
            app_version="1.0.0",
            build_version="42",
        )


@pytest.fixture()
def device_info() -> FakeDeviceInfo:
    return FakeDeviceInfo()


# ---------------------------------------------------------------------------
# Fake backend
# ---------------------------------------------------------------------------

RouteResult = Union[httpx.Response, Exception, Callable[[httpx.Request], Any]]


class FakeBackend:
    """Route table for ``httpx.MockTransport``.

    Each ``(method, path)`` holds a queue of results; the last result
    repeats once the queue is drained.  Unrouted requests get a 599 so a
    test never mistakes them for a real status.
    """

    def __init__(self) -> None:
        self.routes: dict[tuple[str, str], list[RouteResult]] = {}
        self.requests: list[httpx.Request] = []

    def add(
        self,
        method: str,
        path: str,
        status: int = 200,
        json: Optional[Any] = None,
        content: Optional[bytes] = None,
    ) -> None:
        if content is not None:
            response = httpx.Response(status, content=content)
        elif json is not None:
            response = httpx.Response(status, json=json)
        else:
            response = httpx.Response(status)
        self.routes.setdefault((method, path), []).append(response)

    def fail(self, method: str, path: str, exc: Exception) -> None:
        self.routes.setdefault((method, path), []).append(exc)

    def add_handler(self, method: str, path: str, handler: Callable[[httpx.Request], Any]) -> None:
        self.routes.setdefault((method, path), []).append(handler)

    def calls(self, method: str, path: str) -> list[httpx.Request]:
        return [r for r in self.requests if r.method == method and r.url.path == path]

    async def __call__(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        queue = self.routes.get((request.method, request.url.path))
        if not queue:
            return httpx.Response(599, json={"message": "unrouted"})
        result = queue.pop(0) if len(queue) > 1 else queue[0]
        if isinstance(result, Exception):
            raise result
        if callable(result):
            return await result(request)
        return result


@pytest.fixture()
def backend() -> FakeBackend:
    return FakeBackend()


@pytest.fixture()
def api(backend: FakeBackend, store: CredentialStore, logger: StructuredLogger) -> ApiClient:
    http = httpx.AsyncClient(transport=httpx.MockTransport(backend), base_url=BASE_URL)
    return ApiClient(
        http=http,
        token_provider=lambda: store.get(CredentialKey.ACCESS_TOKEN),
        logger=logger,
    )


# ---------------------------------------------------------------------------
# Services
# ---------------------------------------------------------------------------

@pytest.fixture()
def auth_gateway(api: ApiClient, device_info: FakeDeviceInfo, logger: StructuredLogger) -> AuthGateway:
    return AuthGateway(api=api, device_info=device_info, logger=logger)


@pytest.fixture()
def record_gateway(api: ApiClient, logger: StructuredLogger) -> RecordGateway:
    return RecordGateway(api=api, logger=logger)


@pytest.fixture()
def context() -> SessionContext:
    return SessionContext()


@pytest.fixture()
def session_manager(
    context: SessionContext,
    store: CredentialStore,
    auth_gateway: AuthGateway,
    logger: StructuredLogger,
) -> SessionManager:
    return SessionManager(context=context, store=store, gateway=auth_gateway, logger=logger)


@pytest.fixture()
def resolver(record_gateway: RecordGateway, logger: StructuredLogger) -> ScanResolver:
    return ScanResolver(gateway=record_gateway, logger=logger)

"""
Core Services Package.

Gateways talk to the backend; the Session Manager and Scan Resolver are
the two state machines the UI layer drives.

The ``create_services()`` factory wires the credential store, HTTP
client, gateways and state machines together, returning a typed dict
that the application layer can consume without knowing the internal
dependency graph.
"""

from __future__ import annotations

from typing import Optional, TypedDict

import httpx

from eprometna.api_client import ApiClient
from eprometna.auth import SessionContext
from eprometna.config import AppConfig
from eprometna.credential_store import CredentialStore
from eprometna.database import DatabaseManager
from eprometna.device_info import DeviceInfoProvider, DeviceInfoSource
from eprometna.logger import get_logger
from eprometna.models.enums import CredentialKey
from eprometna.services.auth_gateway import AuthGateway
from eprometna.services.record_gateway import RecordGateway
from eprometna.services.scan_resolver import CameraPermissionSource, ScanResolver
from eprometna.services.session_manager import SessionManager


class ServiceContainer(TypedDict):
    """Typed container for all core services."""

    credential_store: CredentialStore
    api_client: ApiClient
    auth_gateway: AuthGateway
    record_gateway: RecordGateway
    session_manager: SessionManager
    scan_resolver: ScanResolver


def create_services(
    db: DatabaseManager,
    config: AppConfig,
    context: SessionContext,
    permission_source: Optional[CameraPermissionSource] = None,
    device_info: Optional[DeviceInfoSource] = None,
    http: Optional[httpx.AsyncClient] = None,
) -> ServiceContainer:
    """Wire all services together.

    Parameters
    ----------
    db:
        Initialised database manager with the schema applied.
    config:
        Application configuration.
    context:
        The process ``SessionContext``.
    permission_source:
        Camera permission collaborator handed to the ``ScanResolver``.
    device_info:
        Overrides the host-derived ``DeviceInfoProvider``.
    http:
        Overrides the ``httpx.AsyncClient`` built from ``config``.

    Returns
    -------
    ServiceContainer
    """
    credential_store = CredentialStore(
        db=db,
        logger=get_logger("credential_store"),
        salt_path=config.CREDENTIAL_SALT_PATH,
        kdf_iterations=config.CREDENTIAL_KDF_ITERATIONS,
    )

    def _access_token() -> Optional[str]:
        return credential_store.get(CredentialKey.ACCESS_TOKEN)

    if http is None:
        api_client = ApiClient.create(
            base_url=config.API_BASE_URL,
            timeout_s=config.HTTP_TIMEOUT_S,
            token_provider=_access_token,
            logger=get_logger("api"),
        )
    else:
        api_client = ApiClient(
            http=http, token_provider=_access_token, logger=get_logger("api"),
        )

    auth_gateway = AuthGateway(
        api=api_client,
        device_info=device_info or DeviceInfoProvider(
            app_version=config.APP_VERSION,
            build_version=config.BUILD_VERSION,
        ),
        logger=get_logger("auth_gateway"),
    )
    record_gateway = RecordGateway(api=api_client, logger=get_logger("record_gateway"))

    session_manager = SessionManager(
        context=context,
        store=credential_store,
        gateway=auth_gateway,
        logger=get_logger("session"),
    )
    scan_resolver = ScanResolver(
        gateway=record_gateway,
        logger=get_logger("scanner"),
        permission_source=permission_source,
    )

    return ServiceContainer(
        credential_store=credential_store,
        api_client=api_client,
        auth_gateway=auth_gateway,
        record_gateway=record_gateway,
        session_manager=session_manager,
        scan_resolver=scan_resolver,
    )

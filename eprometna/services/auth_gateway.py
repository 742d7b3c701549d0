"""
Authentication Gateway.

Performs the network side of the device lifecycle: registration with a
one-time code, registration with email/password, password login, and
device logout.  Every operation captures a fresh ``DeviceInfo``
snapshot, issues exactly one request, and normalises every failure into
a single :class:`~eprometna.errors.AuthError`.
"""

from __future__ import annotations

from typing import Any, Optional, TypeVar

from pydantic import ValidationError as PydanticValidationError

from eprometna.api_client import ApiClient
from eprometna.device_info import DeviceInfoSource
from eprometna.errors import AuthError, DomainError, ProtocolError, TransportError
from eprometna.logger import StructuredLogger
from eprometna.models.auth_models import LoginTokens, RegistrationTokens
from eprometna.models.enums import AuthErrorCode

T = TypeVar("T", LoginTokens, RegistrationTokens)

_MISSING_TOKENS: str = "Invalid response from server: missing tokens"


class AuthGateway:
    """Network operations for registering, signing in and signing out.

    Parameters
    ----------
    api:
        Shared ``ApiClient``.
    device_info:
        Source of ``DeviceInfo`` snapshots.
    logger:
        Structured JSON logger.  Tokens are never logged, only their
        presence.
    """

    def __init__(
        self,
        api: ApiClient,
        device_info: DeviceInfoSource,
        logger: StructuredLogger,
    ) -> None:
        self._api: ApiClient = api
        self._device_info: DeviceInfoSource = device_info
        self._logger: StructuredLogger = logger

    # ==================================================================
    # Registration
    # ==================================================================

    async def register_device(self, code: str) -> RegistrationTokens:
        """Register this device with a one-time code issued out of band.

        Raises
        ------
        AuthError
            On transport failure, server rejection, or a response that
            lacks any of the three tokens.
        """
        device = self._device_info.capture()
        payload = {
            "Code": code,
            "DeviceInfo": device.police_registration_payload(),
        }
        body = await self._call(
            "/auth/police/register", payload, fallback="Registration failed",
        )
        tokens = self._parse_tokens(RegistrationTokens, body)
        self._logger.info(
            "Device registered with one-time code.",
            extra={"event": "DEVICE_REGISTERED", "device_id": device.device_id},
        )
        return tokens

    async def register_with_credentials(
        self, email: str, password: str,
    ) -> RegistrationTokens:
        """Register this device for an existing account by email/password."""
        device = self._device_info.capture()
        payload = {
            "email": email,
            "password": password,
            "deviceInfo": device.full_payload(),
        }
        body = await self._call(
            "/auth/user/register", payload, fallback="Registration failed",
        )
        tokens = self._parse_tokens(RegistrationTokens, body)
        self._logger.info(
            "Device registered for %s.", email,
            extra={"event": "DEVICE_REGISTERED", "device_id": device.device_id},
        )
        return tokens

    # ==================================================================
    # Login / logout
    # ==================================================================

    async def login(self, email: str, password: str) -> LoginTokens:
        """Exchange email/password for a fresh access/refresh pair."""
        # Captured for the audit log only; the login body carries no device info.
        device = self._device_info.capture()
        body = await self._call(
            "/auth/login",
            {"email": email, "password": password},
            fallback="Login failed",
        )
        tokens = self._parse_tokens(LoginTokens, body)
        self._logger.info(
            "Login accepted for %s.", email,
            extra={"event": "LOGIN", "device_id": device.device_id},
        )
        return tokens

    async def logout_device(self) -> None:
        """Tell the backend this device signed out.  Never raises.

        Local sign-out must always succeed, so every failure of the
        remote call is logged and absorbed.
        """
        # Captured for the audit log only; the request has no body.
        device = self._device_info.capture()
        try:
            await self._api.post("/auth/logout-device")
        except Exception as exc:
            self._logger.warning(
                "Remote device logout failed: %s", exc,
                extra={"event": "LOGOUT_REMOTE_FAILED", "device_id": device.device_id},
            )
            return
        self._logger.info(
            "Remote device logout acknowledged.",
            extra={"event": "LOGOUT_REMOTE", "device_id": device.device_id},
        )

    # ==================================================================
    # Helpers
    # ==================================================================

    async def _call(
        self, path: str, payload: dict[str, Any], fallback: str,
    ) -> Optional[dict[str, Any]]:
        """POST *payload* to an unauthenticated auth endpoint."""
        try:
            return await self._api.post(path, payload, authenticated=False)
        except TransportError as exc:
            raise AuthError(AuthErrorCode.NETWORK_ERROR, fallback) from exc
        except DomainError as exc:
            raise AuthError(
                AuthErrorCode.SERVER_REJECTED, exc.server_message or fallback,
            ) from exc
        except ProtocolError as exc:
            raise AuthError(AuthErrorCode.INVALID_RESPONSE, exc.message) from exc

    def _parse_tokens(self, model: type[T], body: Optional[dict[str, Any]]) -> T:
        """Validate that every token *model* requires is present and non-empty."""
        body = body or {}
        present = {
            field: bool(body.get(info.alias or field))
            for field, info in model.model_fields.items()
        }
        self._logger.debug("Tokens received: %s", present)
        if not all(present.values()):
            raise AuthError(AuthErrorCode.INVALID_RESPONSE, _MISSING_TOKENS)
        try:
            return model.model_validate(body)
        except PydanticValidationError as exc:
            raise AuthError(AuthErrorCode.INVALID_RESPONSE, _MISSING_TOKENS) from exc

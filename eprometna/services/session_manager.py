"""
Session Manager.

Single orchestrator for the device/session lifecycle: registration (by
one-time code or by email/password), password login, logout, restoring
persisted credentials at start-up, and the authentication-status
queries the routing layer asks.

Sits between the UI layer and the gateway / credential-store layer so
that screens stay thin form handlers.  Every failure reaches the caller
as an :class:`~eprometna.errors.AuthError` whose message has already
been recorded in the session status for re-render.
"""

from __future__ import annotations

import asyncio
import sqlite3
from collections.abc import Awaitable
from typing import Optional

from pydantic import ValidationError as PydanticValidationError

from eprometna.auth import SessionContext
from eprometna.credential_store import CredentialStore
from eprometna.errors import (
    AuthError,
    CredentialStoreError,
    DeviceNotRegisteredError,
    SessionBusyError,
)
from eprometna.jwt_auth import decode_claims
from eprometna.logger import StructuredLogger
from eprometna.models.auth_models import LoginTokens, RegistrationTokens, Session
from eprometna.models.enums import AuthErrorCode, CredentialKey, UserRole
from eprometna.models.user import UserRecord
from eprometna.services.auth_gateway import AuthGateway

# Failures of the local persistence layer.
_STORAGE_ERRORS: tuple[type[Exception], ...] = (
    sqlite3.Error,
    OSError,
    CredentialStoreError,
)


class SessionManager:
    """Device/session lifecycle state machine.

    The session status moves ``idle -> loading -> idle | error`` for each
    registration or login.  A second registration/login while one is
    ``loading`` is rejected with :class:`SessionBusyError` and leaves the
    in-flight operation untouched.

    Parameters
    ----------
    context:
        The process ``SessionContext``.
    store:
        Encrypted ``CredentialStore``; the device token stored there is
        the single source of truth for "is this device registered".
    gateway:
        ``AuthGateway`` performing the network calls.
    logger:
        Structured JSON logger for audit-grade logging.
    """

    def __init__(
        self,
        context: SessionContext,
        store: CredentialStore,
        gateway: AuthGateway,
        logger: StructuredLogger,
    ) -> None:
        self._context: SessionContext = context
        self._store: CredentialStore = store
        self._gateway: AuthGateway = gateway
        self._logger: StructuredLogger = logger

    @property
    def session(self) -> Session:
        """Immutable snapshot of the current session."""
        return self._context.snapshot()

    # ==================================================================
    # Registration
    # ==================================================================

    async def register_device(self, code: str) -> Session:
        """Register this device with a one-time code.

        On success all three tokens and the derived user record are
        persisted in one transaction, then the in-memory session is
        populated.  On failure nothing is persisted, the session fields
        keep their prior values, and the recorded error is re-raised.

        Raises
        ------
        SessionBusyError
            A registration or login is already in flight.
        AuthError
            The gateway or the credential store failed.
        """
        self._begin()
        return await self._register(
            self._gateway.register_device(code),
            fallback="Registration failed",
        )

    async def register_with_credentials(self, email: str, password: str) -> Session:
        """Register this device for an existing account by email/password."""
        self._begin()
        return await self._register(
            self._gateway.register_with_credentials(email, password),
            fallback="Registration failed",
        )

    async def _register(
        self, call: Awaitable[RegistrationTokens], fallback: str,
    ) -> Session:
        try:
            tokens = await call
            user = decode_claims(tokens.device_token)
            if user is None:
                self._logger.warning(
                    "Device token carries no decodable identity; "
                    "continuing without a user record.",
                )
            self._persist(
                {
                    CredentialKey.DEVICE_TOKEN: tokens.device_token,
                    CredentialKey.ACCESS_TOKEN: tokens.access_token,
                    CredentialKey.REFRESH_TOKEN: tokens.refresh_token,
                    CredentialKey.USER_DATA: self._serialize_user(user),
                },
            )
        except asyncio.CancelledError:
            self._abandon("REGISTER_CANCELLED")
            raise
        except Exception as exc:
            raise self._fail(exc, fallback, event="REGISTER_FAILED")

        self._context.populate(
            device_token=tokens.device_token,
            access_token=tokens.access_token,
            refresh_token=tokens.refresh_token,
            user=user,
        )
        self._context.mark_idle()
        self._logger.info(
            "Device registration complete for %s.",
            user.full_name if user else "unknown user",
            extra={"event": "REGISTER", "user_id": user.id if user else "unknown"},
        )
        return self.session

    # ==================================================================
    # Login
    # ==================================================================

    async def login(self, email: str, password: str) -> Session:
        """Sign in on an already registered device.

        The device token must already be in the credential store; this is
        checked before any network call.  The stored device token is
        reused and the new access/refresh pair persisted.

        Raises
        ------
        SessionBusyError
            A registration or login is already in flight.
        DeviceNotRegisteredError
            No device token is stored.  No request is sent.
        AuthError
            The gateway or the credential store failed.
        """
        self._begin()
        try:
            device_token = self._store.get(CredentialKey.DEVICE_TOKEN)
            if not device_token:
                raise DeviceNotRegisteredError()

            tokens: LoginTokens = await self._gateway.login(email, password)
            user = decode_claims(device_token)
            self._persist(
                {
                    CredentialKey.ACCESS_TOKEN: tokens.access_token,
                    CredentialKey.REFRESH_TOKEN: tokens.refresh_token,
                    CredentialKey.USER_DATA: self._serialize_user(user),
                },
            )
        except asyncio.CancelledError:
            self._abandon("LOGIN_CANCELLED")
            raise
        except Exception as exc:
            raise self._fail(exc, "Login failed", event="LOGIN_FAILED")

        self._context.populate(
            device_token=device_token,
            access_token=tokens.access_token,
            refresh_token=tokens.refresh_token,
            user=user,
        )
        self._context.mark_idle()
        self._logger.info(
            "User signed in: %s", email,
            extra={"event": "LOGIN", "user_id": user.id if user else "unknown"},
        )
        return self.session

    # ==================================================================
    # Logout
    # ==================================================================

    async def logout(self) -> None:
        """Sign out remotely (best effort) and always clear local state.

        The remote call never raises.  The in-memory session is cleared
        even if clearing the credential store fails; a storage failure
        then propagates.
        """
        user = self._context.user
        try:
            await self._gateway.logout_device()
        finally:
            self._context.clear()
            self._store.clear()

        self._logger.info(
            "Device signed out.",
            extra={"event": "LOGOUT", "user_id": user.id if user else "unknown"},
        )

    # ==================================================================
    # Persisted-credential refresh
    # ==================================================================

    def restore_session(self) -> bool:
        """Load the persisted credentials into the in-memory session.

        Called once at process start.  The user record comes from the
        stored blob, falling back to the device token claims when the
        blob is missing or unreadable.

        An unreadable store (for example after the hostname or OS user
        changed, so the entries no longer verify) is logged and treated as
        "nothing to restore"; ``logout()`` can still wipe it.

        Returns
        -------
        bool
            ``True`` when a device token was found and loaded.
        """
        try:
            device_token = self._store.get(CredentialKey.DEVICE_TOKEN)
            if not device_token:
                self._logger.debug("No persisted device token; nothing to restore.")
                return False

            user = self._deserialize_user(self._store.get(CredentialKey.USER_DATA))
            access_token = self._store.get(CredentialKey.ACCESS_TOKEN)
            refresh_token = self._store.get(CredentialKey.REFRESH_TOKEN)
        except _STORAGE_ERRORS as exc:
            self._logger.error(
                "Persisted credentials are unreadable: %s", exc,
                extra={"event": "SESSION_RESTORE_FAILED"},
            )
            return False

        if user is None:
            user = decode_claims(device_token)

        self._context.populate(
            device_token=device_token,
            access_token=access_token,
            refresh_token=refresh_token,
            user=user,
        )
        self._context.mark_idle()
        self._logger.info(
            "Persisted session restored.",
            extra={"event": "SESSION_RESTORED", "user_id": user.id if user else "unknown"},
        )
        return True

    # ==================================================================
    # Queries
    # ==================================================================

    def is_authenticated(self) -> bool:
        """``True`` iff the credential store holds a non-empty device token.

        Reads the store, not the in-memory session.  A storage failure
        is logged and reported as ``False``.
        """
        return self._has_device_token()

    def is_device_registered(self) -> bool:
        """Same predicate as :meth:`is_authenticated`, named for the
        registration flow."""
        return self._has_device_token()

    def get_user_role(self) -> Optional[UserRole]:
        """Role of the signed-in officer, or ``None`` when unknown."""
        user = self._context.user
        if user is None or not user.role:
            return None
        try:
            return UserRole(user.role.lower())
        except ValueError:
            self._logger.debug("Unrecognised user role %r.", user.role)
            return None

    # ==================================================================
    # Helpers
    # ==================================================================

    def _has_device_token(self) -> bool:
        try:
            token = self._store.get(CredentialKey.DEVICE_TOKEN)
        except _STORAGE_ERRORS as exc:
            self._logger.error("Could not read the device token: %s", exc)
            return False
        return bool(token)

    def _begin(self) -> None:
        if self._context.is_loading:
            self._logger.warning(
                "Rejected sign-in while another is in flight.",
                extra={"event": "SESSION_BUSY"},
            )
            raise SessionBusyError()
        self._context.mark_loading()

    def _persist(self, entries: dict[CredentialKey, Optional[str]]) -> None:
        try:
            self._store.write_many(entries)
        except _STORAGE_ERRORS as exc:
            raise AuthError(
                AuthErrorCode.STORAGE_ERROR,
                "Could not save credentials on this device.",
            ) from exc

    def _fail(self, exc: Exception, fallback: str, event: str) -> Exception:
        """Record *exc* in the session status and return the error to raise."""
        if isinstance(exc, AuthError):
            error: Exception = exc
            message = exc.message
        elif isinstance(exc, _STORAGE_ERRORS):
            message = "Could not read credentials on this device."
            error = AuthError(AuthErrorCode.STORAGE_ERROR, message)
            error.__cause__ = exc
        else:
            message = fallback
            error = exc
        self._context.mark_error(message)
        self._logger.warning(
            "%s: %s", fallback, message,
            extra={"event": event},
        )
        return error

    def _abandon(self, event: str) -> None:
        """Release the ``loading`` status of a cancelled operation.

        Nothing was persisted (cancellation can only land on the network
        await), so the session fields keep their prior values.
        """
        self._context.mark_idle()
        self._logger.warning(
            "Sign-in cancelled before completion.",
            extra={"event": event},
        )

    @staticmethod
    def _serialize_user(user: Optional[UserRecord]) -> Optional[str]:
        if user is None:
            return None
        return user.model_dump_json(by_alias=True, exclude_none=True)

    def _deserialize_user(self, blob: Optional[str]) -> Optional[UserRecord]:
        if not blob:
            return None
        try:
            return UserRecord.model_validate_json(blob)
        except PydanticValidationError as exc:
            self._logger.warning("Stored user record is unreadable: %s", exc)
            return None

"""
Error Taxonomy.

Every failure the core surfaces to the UI layer is one of the exceptions
below.  Low-level sources (``httpx`` transport errors, HTTP status codes,
malformed bodies) are translated into ``TransportError``,
``DomainError`` or ``ProtocolError`` by ``ApiClient``; the gateways then
normalise those into a single ``AuthError`` or ``ScanError`` whose
``message`` is safe to show to the officer.
"""

from __future__ import annotations

from typing import Optional

from eprometna.models.enums import AuthErrorCode, ScanErrorCode


class EPrometnaError(RuntimeError):
    """Base class for all errors raised by the core."""

    def __init__(self, message: str) -> None:
        super().__init__(message)
        self.message: str = message


# ---------------------------------------------------------------------------
# Transport-level categories (raised by ApiClient)
# ---------------------------------------------------------------------------

class TransportError(EPrometnaError):
    """The backend could not be reached (DNS, refused connection, timeout)."""


class ProtocolError(EPrometnaError):
    """A well-formed response lacked fields the contract requires."""


class DomainError(EPrometnaError):
    """The backend answered with an HTTP error status.

    ``server_message`` holds the ``message`` field of the error body when
    the server supplied one; ``message`` falls back to a generic
    description otherwise.
    """

    def __init__(
        self,
        status_code: int,
        message: str,
        server_message: Optional[str] = None,
    ) -> None:
        super().__init__(message)
        self.status_code: int = status_code
        self.server_message: Optional[str] = server_message


class ValidationError(EPrometnaError):
    """Caller-supplied input was rejected before any network call."""


# ---------------------------------------------------------------------------
# Normalised categories (raised by gateways and managers)
# ---------------------------------------------------------------------------

class AuthError(EPrometnaError):
    """Normalised failure of a registration, login or session operation."""

    def __init__(self, code: AuthErrorCode, message: str) -> None:
        super().__init__(message)
        self.code: AuthErrorCode = code


class DeviceNotRegisteredError(AuthError):
    """Login attempted on a device that holds no device token."""

    def __init__(
        self,
        message: str = "Device not registered. Please register first.",
    ) -> None:
        super().__init__(AuthErrorCode.DEVICE_NOT_REGISTERED, message)


class SessionBusyError(AuthError):
    """A registration or login is already in flight for this session."""

    def __init__(
        self,
        message: str = "Another sign-in is already in progress.",
    ) -> None:
        super().__init__(AuthErrorCode.SESSION_BUSY, message)


class ScanError(EPrometnaError):
    """Normalised failure of a QR scan resolution."""

    def __init__(self, code: ScanErrorCode, message: str) -> None:
        super().__init__(message)
        self.code: ScanErrorCode = code


class CredentialStoreError(EPrometnaError):
    """A persisted credential failed its integrity check on read."""

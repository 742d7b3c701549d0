"""
Shared Enumerations for E-Prometna Models.

All string enumerations for type-safe field constraints.
StrEnum values compare equal to their string equivalents,
so code like ``if role == "police"`` continues to work.
"""

from __future__ import annotations
from enum import StrEnum


class UserRole(StrEnum):
    """Roles carried in device-token claims and user records."""

    POLICE = "police"
    USER = "user"
    ADMIN = "admin"


class SessionPhase(StrEnum):
    """Lifecycle states of the in-memory session."""

    IDLE = "idle"
    LOADING = "loading"
    ERROR = "error"


class ScannerState(StrEnum):
    """Stages of the scan-resolution state machine.

    ``AWAITING_PERMISSION`` is the initial stage.  ``RESULTS`` and
    ``ERROR`` are not terminal: ``ScanResolver.reset()`` returns both to
    ``SCANNING``.
    """

    AWAITING_PERMISSION = "awaiting-permission"
    SCANNING = "scanning"
    PROCESSING = "processing"
    RESULTS = "results"
    ERROR = "error"


class CredentialKey(StrEnum):
    """The four fixed entries of the secure credential store."""

    DEVICE_TOKEN = "deviceToken"
    ACCESS_TOKEN = "accessToken"
    REFRESH_TOKEN = "refreshToken"
    USER_DATA = "userData"


class AuthErrorCode(StrEnum):
    """Exhaustive enumeration of authentication error categories."""

    NETWORK_ERROR = "network_error"
    SERVER_REJECTED = "server_rejected"
    INVALID_RESPONSE = "invalid_response"
    DEVICE_NOT_REGISTERED = "device_not_registered"
    SESSION_BUSY = "session_busy"
    STORAGE_ERROR = "storage_error"


class ScanErrorCode(StrEnum):
    """Exhaustive enumeration of scan-resolution error categories."""

    PERMISSION_DENIED = "permission_denied"
    INVALID_CODE = "invalid_code"
    CODE_USED = "code_used"
    CODE_EXPIRED = "code_expired"
    NOT_PERMITTED = "not_permitted"
    INVALID_DATA = "invalid_data"
    SCAN_FAILED = "scan_failed"
    FETCH_FAILED = "fetch_failed"

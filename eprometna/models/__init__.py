"""
Data Models Package.

Re-exports all Pydantic models:
    from eprometna.models import UserRecord, DeviceInfo, Session
    from eprometna.models import ScannerState, ScannedDataResult, ScanSession
"""

from __future__ import annotations

from eprometna.models.enums import (
    AuthErrorCode,
    CredentialKey,
    ScanErrorCode,
    ScannerState,
    SessionPhase,
    UserRole,
)
from eprometna.models.user import UserRecord
from eprometna.models.device import DeviceInfo
from eprometna.models.auth_models import (
    LoginTokens,
    RegistrationTokens,
    Session,
    SessionStatus,
)
from eprometna.models.scan_models import (
    PermissionResponse,
    RecordLinkage,
    ScannedDataResult,
    ScanSession,
    VehicleRecord,
    VehicleSummary,
)

__all__ = [
    "AuthErrorCode",
    "CredentialKey",
    "ScanErrorCode",
    "ScannerState",
    "SessionPhase",
    "UserRole",
    "UserRecord",
    "DeviceInfo",
    "LoginTokens",
    "RegistrationTokens",
    "Session",
    "SessionStatus",
    "PermissionResponse",
    "RecordLinkage",
    "ScannedDataResult",
    "ScanSession",
    "VehicleRecord",
    "VehicleSummary",
]

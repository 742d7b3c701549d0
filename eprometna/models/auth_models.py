"""
Authentication Pipeline Models.

Pydantic models for the token bundles returned by the auth endpoints and
for the session snapshot handed to the UI layer.
"""

from __future__ import annotations

from typing import Optional

from pydantic import BaseModel
from pydantic.alias_generators import to_camel

from eprometna.models.enums import SessionPhase
from eprometna.models.user import UserRecord


# ---------------------------------------------------------------------------
# Token bundles
# ---------------------------------------------------------------------------

class LoginTokens(BaseModel):
    """Access/refresh pair returned by a password login."""

    access_token: str
    refresh_token: str

    model_config = {
        "alias_generator": to_camel,
        "populate_by_name": True,
        "frozen": True,
    }


class RegistrationTokens(LoginTokens):
    """Full credential set issued when a device is registered."""

    device_token: str


# ---------------------------------------------------------------------------
# Session snapshot
# ---------------------------------------------------------------------------

class SessionStatus(BaseModel):
    """Status of the in-memory session.

    ``message`` is set only in the ``ERROR`` phase.
    """

    phase: SessionPhase = SessionPhase.IDLE
    message: Optional[str] = None

    model_config = {"frozen": True}

    @classmethod
    def idle(cls) -> "SessionStatus":
        return cls(phase=SessionPhase.IDLE)

    @classmethod
    def loading(cls) -> "SessionStatus":
        return cls(phase=SessionPhase.LOADING)

    @classmethod
    def error(cls, message: str) -> "SessionStatus":
        return cls(phase=SessionPhase.ERROR, message=message)


class Session(BaseModel):
    """Read-only view of the process session.

    Attributes
    ----------
    device_token:
        Long-lived credential identifying this registered device.
    access_token / refresh_token:
        Short-lived credential pair for authenticated API calls.
    user_data:
        Officer identity decoded from the device token claims.
    status:
        Current ``SessionStatus``.
    """

    device_token: Optional[str] = None
    access_token: Optional[str] = None
    refresh_token: Optional[str] = None
    user_data: Optional[UserRecord] = None
    status: SessionStatus = SessionStatus()

    model_config = {"frozen": True}

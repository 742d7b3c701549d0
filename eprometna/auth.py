"""
In-Memory Session State.

Provides an injectable ``SessionContext`` that holds the credentials,
officer identity and status of the single session a running process
owns.  Only ``SessionManager`` mutates it; everything else reads
immutable ``Session`` snapshots.

Usage::

    from eprometna.auth import SessionContext

    context = SessionContext()
    context.mark_loading()
    context.populate(device_token=..., access_token=..., refresh_token=..., user=...)
    snapshot = context.snapshot()
"""

from __future__ import annotations

from typing import Optional

from eprometna.models.auth_models import Session, SessionStatus
from eprometna.models.enums import SessionPhase
from eprometna.models.user import UserRecord


class SessionContext:
    """Injectable holder for the process session.

    Each instance maintains its own state, eliminating module-level
    globals.  Construct one at process start and hand it to the
    ``SessionManager``.  No lock is taken: the core runs on one asyncio
    event loop and every mutation completes between two suspension
    points.
    """

    def __init__(self) -> None:
        self._device_token: Optional[str] = None
        self._access_token: Optional[str] = None
        self._refresh_token: Optional[str] = None
        self._user: Optional[UserRecord] = None
        self._status: SessionStatus = SessionStatus.idle()

    # ------------------------------------------------------------------
    # Status transitions
    # ------------------------------------------------------------------

    def mark_loading(self) -> None:
        self._status = SessionStatus.loading()

    def mark_idle(self) -> None:
        self._status = SessionStatus.idle()

    def mark_error(self, message: str) -> None:
        """Record *message* for re-render; credential fields are untouched."""
        self._status = SessionStatus.error(message)

    # ------------------------------------------------------------------
    # Credential fields
    # ------------------------------------------------------------------

    def populate(
        self,
        device_token: Optional[str],
        access_token: Optional[str],
        refresh_token: Optional[str],
        user: Optional[UserRecord],
    ) -> None:
        """Replace every credential field at once.

        Raises:
            ValueError: If an access or refresh token is supplied without
                a device token.
        """
        if (access_token or refresh_token) and not device_token:
            raise ValueError(
                "An access/refresh token requires a device token."
            )
        self._device_token = device_token
        self._access_token = access_token
        self._refresh_token = refresh_token
        self._user = user

    def clear(self) -> None:
        """Remove all credentials and reset the status to idle."""
        self._device_token = None
        self._access_token = None
        self._refresh_token = None
        self._user = None
        self._status = SessionStatus.idle()

    # ------------------------------------------------------------------
    # Read access
    # ------------------------------------------------------------------

    @property
    def status(self) -> SessionStatus:
        return self._status

    @property
    def is_loading(self) -> bool:
        """``True`` while a registration or login is in flight."""
        return self._status.phase is SessionPhase.LOADING

    @property
    def device_token(self) -> Optional[str]:
        return self._device_token

    @property
    def access_token(self) -> Optional[str]:
        return self._access_token

    @property
    def user(self) -> Optional[UserRecord]:
        return self._user

    def snapshot(self) -> Session:
        """Return an immutable ``Session`` view of the current state."""
        return Session(
            device_token=self._device_token,
            access_token=self._access_token,
            refresh_token=self._refresh_token,
            user_data=self._user,
            status=self._status,
        )

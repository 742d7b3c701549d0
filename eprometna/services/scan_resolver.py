"""
Scan Resolver.

State machine behind the QR scanner screen::

    awaiting-permission --granted--> scanning --payload--> processing
            |                           ^                    |     |
            +--denied--> error <--------|--------------------+     v
                           |            +------- reset() ------ results
                           +------------ reset() ----+

The camera widget feeds decoded payloads into :meth:`ScanResolver.handle_scan`;
the resolver validates the payload, redeems the single-use code,
fetches both records and exposes the outcome as a ``ScanSession``
snapshot.  No state is terminal: ``reset()`` returns ``results`` and
``error`` to ``scanning`` for the next vehicle.
"""

from __future__ import annotations

import asyncio
import re
from typing import Optional, Protocol

from eprometna.errors import ScanError, ValidationError
from eprometna.logger import StructuredLogger
from eprometna.models.enums import ScanErrorCode, ScannerState
from eprometna.models.scan_models import (
    PermissionResponse,
    ScannedDataResult,
    ScanSession,
)
from eprometna.services.record_gateway import RecordGateway

# Canonical UUID, versions 1-5, RFC 4122 variant.
SCAN_CODE_RE: re.Pattern[str] = re.compile(
    r"^[0-9a-f]{8}-[0-9a-f]{4}-[1-5][0-9a-f]{3}-[89ab][0-9a-f]{3}-[0-9a-f]{12}$",
    re.IGNORECASE,
)

PERMISSION_DENIED_MESSAGE: str = "Camera permission is required to scan QR codes"
INVALID_CODE_MESSAGE: str = "Scanned QR code is not a valid E-Prometna code"
INVALID_DATA_MESSAGE: str = "Invalid data in QR code"


class CameraPermissionSource(Protocol):
    """Camera collaborator able to prompt the officer for access."""

    async def request(self) -> PermissionResponse: ...


def is_valid_scan_code(payload: str) -> bool:
    """``True`` when *payload* (trimmed) has the fixed scan-code shape."""
    return bool(SCAN_CODE_RE.match(payload.strip()))


def validate_scan_code(payload: str) -> str:
    """Return the trimmed scan code in *payload*.

    Raises
    ------
    ValidationError
        If the payload does not have the scan-code shape.
    """
    code = payload.strip()
    if not SCAN_CODE_RE.match(code):
        raise ValidationError(INVALID_CODE_MESSAGE)
    return code


class ScanResolver:
    """Reusable scan-resolution state machine.

    Parameters
    ----------
    gateway:
        ``RecordGateway`` used for the code exchange and record fetches.
    logger:
        A ``StructuredLogger`` instance for structured JSON log output.
    permission_source:
        Optional camera permission collaborator used by
        :meth:`request_permission`.
    """

    def __init__(
        self,
        gateway: RecordGateway,
        logger: StructuredLogger,
        permission_source: Optional[CameraPermissionSource] = None,
    ) -> None:
        self._gateway: RecordGateway = gateway
        self._logger: StructuredLogger = logger
        self._permission_source: Optional[CameraPermissionSource] = permission_source
        self._session: ScanSession = ScanSession()

    @property
    def state(self) -> ScannerState:
        return self._session.stage

    @property
    def current(self) -> ScanSession:
        """Snapshot of the current scan attempt."""
        return self._session

    # ==================================================================
    # Permission
    # ==================================================================

    async def request_permission(self) -> ScanSession:
        """Prompt for camera access through the permission collaborator.

        Only acts in ``awaiting-permission``.  Granted moves to
        ``scanning``; denied moves straight to ``error``.
        """
        if self._session.stage is not ScannerState.AWAITING_PERMISSION:
            return self._session
        if self._permission_source is None:
            raise RuntimeError("No camera permission source configured.")

        response = await self._permission_source.request()
        if response.granted:
            self._enter_scanning()
        else:
            self._enter_error(ScanError(ScanErrorCode.PERMISSION_DENIED, PERMISSION_DENIED_MESSAGE))
        return self._session

    def apply_permission(self, response: PermissionResponse) -> ScanSession:
        """Apply an already known permission state (e.g. on screen mount).

        Granted moves to ``scanning``.  A denial that can no longer be
        re-prompted moves to ``error``; one that can stays in
        ``awaiting-permission``.
        """
        if self._session.stage is not ScannerState.AWAITING_PERMISSION:
            return self._session
        if response.granted:
            self._enter_scanning()
        elif not response.can_ask_again:
            self._enter_error(ScanError(ScanErrorCode.PERMISSION_DENIED, PERMISSION_DENIED_MESSAGE))
        return self._session

    # ==================================================================
    # Scanning
    # ==================================================================

    async def handle_scan(self, payload: str) -> ScanSession:
        """Resolve one decoded QR payload.

        Ignored (the current snapshot is returned unchanged) unless the
        resolver is ``scanning``.  Accepting a payload leaves ``scanning``
        until the next reset, so a camera re-reading the same code across
        frames triggers a single resolution.
        """
        if self._session.stage is not ScannerState.SCANNING:
            self._logger.debug(
                "Ignoring payload while %s.", self._session.stage,
            )
            return self._session

        self._session = ScanSession(raw_code=payload, stage=ScannerState.PROCESSING)
        try:
            result = await self._resolve(payload)
        except asyncio.CancelledError:
            self._logger.warning(
                "Scan resolution cancelled; back to scanning.",
                extra={"event": "SCAN_CANCELLED"},
            )
            self._enter_scanning()
            raise
        except ValidationError as exc:
            self._enter_error(ScanError(ScanErrorCode.INVALID_CODE, exc.message))
            return self._session
        except ScanError as exc:
            self._enter_error(exc)
            return self._session
        except Exception:
            self._logger.error("Unexpected error while resolving a scan.", exc_info=True)
            self._enter_error(ScanError(ScanErrorCode.SCAN_FAILED, "Error processing QR code"))
            return self._session

        self._session = self._session.model_copy(
            update={"stage": ScannerState.RESULTS, "result": result},
        )
        self._logger.info(
            "Scan resolved: vehicle %s.",
            result.vehicle.registration or "N/A",
            extra={"event": "SCAN_RESOLVED"},
        )
        return self._session

    def reset(self) -> ScanSession:
        """Return from ``results`` or ``error`` to ``scanning``.

        Clears the accepted code, error and result.  A no-op in any other
        stage.
        """
        if self._session.stage in (ScannerState.RESULTS, ScannerState.ERROR):
            self._enter_scanning()
        return self._session

    # ==================================================================
    # Processing pipeline
    # ==================================================================

    async def _resolve(self, payload: str) -> ScannedDataResult:
        code = validate_scan_code(payload)

        linkage = await self._gateway.exchange_code(code)
        if not linkage.vehicle_uuid or not linkage.driver_uuid:
            raise ScanError(ScanErrorCode.INVALID_DATA, INVALID_DATA_MESSAGE)

        vehicle = await self._gateway.fetch_vehicle(linkage.vehicle_uuid)
        driver = await self._gateway.fetch_driver(linkage.driver_uuid)
        return ScannedDataResult(linkage=linkage, vehicle=vehicle, driver=driver)

    def _enter_scanning(self) -> None:
        self._session = ScanSession(stage=ScannerState.SCANNING)

    def _enter_error(self, exc: ScanError) -> None:
        self._session = self._session.model_copy(
            update={
                "stage": ScannerState.ERROR,
                "error": exc.message,
                "error_code": exc.code,
                "result": None,
            },
        )
        self._logger.warning(
            "Scan failed (%s): %s", exc.code, exc.message,
            extra={"event": "SCAN_FAILED", "error_code": str(exc.code)},
        )

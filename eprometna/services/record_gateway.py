"""
Record Fetch Gateway.

Network side of a QR scan: the destructive single-use code exchange and
the two record fetches it unlocks.  Failures are normalised into
:class:`~eprometna.errors.ScanError` with a user-facing message.
"""

from __future__ import annotations

from typing import Any, Optional
from urllib.parse import quote

from pydantic import ValidationError as PydanticValidationError

from eprometna.api_client import ApiClient
from eprometna.errors import DomainError, EPrometnaError, ScanError
from eprometna.logger import StructuredLogger
from eprometna.models.enums import ScanErrorCode
from eprometna.models.scan_models import RecordLinkage, VehicleRecord
from eprometna.models.user import UserRecord


# HTTP status -> (code, message) for the code exchange.
EXCHANGE_ERROR_MAP: dict[int, tuple[ScanErrorCode, str]] = {
    404: (
        ScanErrorCode.CODE_USED,
        "QR code is invalid or has already been used",
    ),
    410: (
        ScanErrorCode.CODE_EXPIRED,
        "QR code has expired (5 minutes)",
    ),
    401: (
        ScanErrorCode.NOT_PERMITTED,
        "You are not permitted to scan QR codes",
    ),
}


class RecordGateway:
    """Exchange scanned codes and fetch vehicle/driver records.

    Parameters
    ----------
    api:
        Shared ``ApiClient``.  All calls here are authenticated.
    logger:
        A ``StructuredLogger`` instance for structured JSON log output.
    """

    def __init__(self, api: ApiClient, logger: StructuredLogger) -> None:
        self._api: ApiClient = api
        self._logger: StructuredLogger = logger

    async def exchange_code(self, code: str) -> RecordLinkage:
        """Redeem *code* for its record identifiers.

        The backend deletes the code as part of this call, so a second
        exchange of the same code fails server-side.  Identifier presence
        is NOT checked here; the caller decides how to report it.

        Raises
        ------
        ScanError
            ``CODE_USED`` (404), ``CODE_EXPIRED`` (410),
            ``NOT_PERMITTED`` (401), or ``SCAN_FAILED`` for anything else.
        """
        try:
            body = await self._api.put(f"/tempdata/{quote(code, safe='')}")
        except DomainError as exc:
            mapped = EXCHANGE_ERROR_MAP.get(exc.status_code)
            if mapped is not None:
                raise ScanError(*mapped) from exc
            raise ScanError(
                ScanErrorCode.SCAN_FAILED, f"Error scanning QR code: {exc.message}",
            ) from exc
        except EPrometnaError as exc:
            raise ScanError(
                ScanErrorCode.SCAN_FAILED, f"Error scanning QR code: {exc.message}",
            ) from exc

        try:
            linkage = RecordLinkage.model_validate(body or {})
        except PydanticValidationError as exc:
            raise ScanError(ScanErrorCode.INVALID_DATA, "Invalid data in QR code") from exc

        self._logger.debug(
            "Code exchanged (vehicle id present: %s, driver id present: %s).",
            bool(linkage.vehicle_uuid),
            bool(linkage.driver_uuid),
        )
        return linkage

    async def fetch_vehicle(self, vehicle_uuid: str) -> VehicleRecord:
        """Fetch the vehicle record for *vehicle_uuid*."""
        body = await self._fetch("vehicle", f"/vehicle/{quote(vehicle_uuid, safe='')}")
        return self._parse("vehicle", VehicleRecord, body)

    async def fetch_driver(self, driver_uuid: str) -> UserRecord:
        """Fetch the driver's user record for *driver_uuid*."""
        body = await self._fetch("driver", f"/user/{quote(driver_uuid, safe='')}")
        return self._parse("driver", UserRecord, body)

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    async def _fetch(self, kind: str, path: str) -> Optional[dict[str, Any]]:
        try:
            return await self._api.get(path)
        except EPrometnaError as exc:
            raise ScanError(
                ScanErrorCode.FETCH_FAILED,
                f"Failed to fetch {kind} record: {exc.message}",
            ) from exc

    @staticmethod
    def _parse(kind: str, model: type, body: Optional[dict[str, Any]]) -> Any:
        if not body:
            raise ScanError(
                ScanErrorCode.FETCH_FAILED,
                f"Failed to fetch {kind} record: empty response",
            )
        try:
            return model.model_validate(body)
        except PydanticValidationError as exc:
            raise ScanError(
                ScanErrorCode.FETCH_FAILED,
                f"Failed to fetch {kind} record: malformed response",
            ) from exc

"""
Scan Resolution Models.

Pydantic models for the records retrieved through a QR scan and for the
per-attempt ``ScanSession`` snapshot exposed by ``ScanResolver``.
"""

from __future__ import annotations

from typing import Optional

from pydantic import BaseModel, Field
from pydantic.alias_generators import to_camel

from eprometna.models.enums import ScanErrorCode, ScannerState
from eprometna.models.user import UserRecord


_CAMEL_CONFIG = {
    "alias_generator": to_camel,
    "populate_by_name": True,
}


class RecordLinkage(BaseModel):
    """Identifiers returned by the single-use code exchange.

    Both fields are optional at parse time so the resolver can report a
    missing identifier as invalid QR data rather than a parse failure.
    """

    vehicle_uuid: Optional[str] = None
    driver_uuid: Optional[str] = None

    model_config = {**_CAMEL_CONFIG, "frozen": True}


class VehicleSummary(BaseModel):
    """Technical summary of a registered vehicle.  All fields optional."""

    vehicle_category: Optional[str] = None
    mark: Optional[str] = None
    model: Optional[str] = None
    vehicle_type: Optional[str] = None
    homologation_type: Optional[str] = None
    trade_name: Optional[str] = None
    chassis_number: Optional[str] = None
    body_shape: Optional[str] = None
    vehicle_use: Optional[str] = None
    date_first_registration: Optional[str] = None
    first_registration_in_croatia: Optional[str] = None
    colour_of_vehicle: Optional[str] = None
    engine_capacity: Optional[str] = None
    engine_power: Optional[str] = None
    fuel_or_power_source: Optional[str] = None
    number_of_seats: Optional[str] = None

    model_config = {**_CAMEL_CONFIG, "extra": "allow", "protected_namespaces": ()}


class VehicleRecord(BaseModel):
    """Vehicle details as returned by ``GET /vehicle/{uuid}``."""

    uuid: Optional[str] = None
    registration: Optional[str] = None
    owner: Optional[UserRecord] = None
    drivers: list[UserRecord] = Field(default_factory=list)
    past_owners: list[UserRecord] = Field(default_factory=list)
    summary: Optional[VehicleSummary] = None

    model_config = {**_CAMEL_CONFIG, "extra": "allow"}


class ScannedDataResult(BaseModel):
    """Combined outcome of one successful scan.

    Built only after the exchange and both record fetches succeed;
    frozen once constructed.
    """

    linkage: RecordLinkage
    vehicle: VehicleRecord
    driver: UserRecord

    model_config = {"frozen": True}


class PermissionResponse(BaseModel):
    """Answer of the camera permission collaborator."""

    granted: bool
    can_ask_again: bool = True

    model_config = {"frozen": True}


class ScanSession(BaseModel):
    """Snapshot of one scan attempt.

    Attributes
    ----------
    raw_code:
        The payload accepted for processing (empty before any scan).
    stage:
        Current ``ScannerState``.
    error / error_code:
        User-facing message and category, set only in the ``ERROR`` stage.
    result:
        The assembled result, set only in the ``RESULTS`` stage.
    """

    raw_code: str = ""
    stage: ScannerState = ScannerState.AWAITING_PERMISSION
    error: Optional[str] = None
    error_code: Optional[ScanErrorCode] = None
    result: Optional[ScannedDataResult] = None

    model_config = {"frozen": True}

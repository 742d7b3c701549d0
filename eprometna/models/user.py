"""
User Model.

Pydantic model for a person known to the backend: the officer whose
identity is embedded in the device token, and the driver returned by a
QR scan.  The backend speaks camelCase; attributes are snake_case.
"""

from __future__ import annotations

from typing import Optional

from pydantic import BaseModel
from pydantic.alias_generators import to_camel


class UserRecord(BaseModel):
    """Represents a user account.

    Every field is optional: driver records from the backend may omit
    ``id``, while ``decode_claims`` only yields records that carry one.
    Fields the backend adds beyond the ones declared here are preserved
    (``extra="allow"``) so a record round-trips through the credential
    store without loss.
    """

    id: Optional[str] = None
    uuid: Optional[str] = None
    first_name: Optional[str] = None
    last_name: Optional[str] = None
    role: Optional[str] = None
    email: Optional[str] = None
    oib: Optional[str] = None
    residence: Optional[str] = None
    birth_date: Optional[str] = None

    model_config = {
        "alias_generator": to_camel,
        "populate_by_name": True,
        "extra": "allow",
        "from_attributes": True,
    }

    @property
    def full_name(self) -> str:
        """First and last name joined, skipping absent parts."""
        return " ".join(part for part in (self.first_name, self.last_name) if part)

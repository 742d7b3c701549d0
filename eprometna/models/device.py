"""
Device Metadata Model.

Immutable snapshot of the physical device, sent to the backend at
registration time.
"""

from __future__ import annotations

from pydantic import BaseModel


class DeviceInfo(BaseModel):
    """Platform, model and build metadata captured at call time.

    Never cached: ``DeviceInfoProvider.capture()`` builds a fresh
    instance for every gateway call.
    """

    platform: str
    brand: str
    model_name: str
    device_id: str
    os_name: str
    os_version: str
    app_version: str
    build_version: str

    model_config = {"frozen": True, "protected_namespaces": ()}

    def police_registration_payload(self) -> dict[str, str]:
        """Subset sent with a one-time-code registration (PascalCase keys)."""
        return {
            "Platform": self.platform,
            "Brand": self.brand,
            "ModelName": self.model_name,
            "DeviceID": self.device_id,
        }

    def full_payload(self) -> dict[str, str]:
        """All eight fields, camelCase, as sent with credential registration."""
        return {
            "platform": self.platform,
            "brand": self.brand,
            "modelName": self.model_name,
            "deviceId": self.device_id,
            "osName": self.os_name,
            "osVersion": self.os_version,
            "appVersion": self.app_version,
            "buildVersion": self.build_version,
        }

"""
Device Info Provider.

Collects the platform/model/version metadata the backend records when a
device registers.  The gateways depend only on the ``DeviceInfoSource``
protocol, so hosts with richer hardware APIs can plug in their own
provider.
"""

from __future__ import annotations

import hashlib
import platform
import socket
import uuid
from typing import Protocol

from eprometna.models.device import DeviceInfo


class DeviceInfoSource(Protocol):
    """Anything able to produce a fresh ``DeviceInfo`` snapshot."""

    def capture(self) -> DeviceInfo: ...


class DeviceInfoProvider:
    """Builds ``DeviceInfo`` from the running interpreter's host.

    ``device_id`` is a stable SHA-256 fingerprint of the hostname and the
    primary hardware address, truncated to 32 hex characters, so the same
    machine reports the same identifier across restarts without storing
    anything.
    """

    def __init__(self, app_version: str, build_version: str) -> None:
        self._app_version: str = app_version
        self._build_version: str = build_version

    def capture(self) -> DeviceInfo:
        uname = platform.uname()
        return DeviceInfo(
            platform=(uname.system or "unknown").lower(),
            brand=self._brand(),
            model_name=uname.machine or "unknown",
            device_id=self._device_id(),
            os_name=uname.system or "unknown",
            os_version=uname.release or "unknown",
            app_version=self._app_version,
            build_version=self._build_version,
        )

    @staticmethod
    def _brand() -> str:
        # Only macOS reports a single vendor; elsewhere the processor
        # string is the closest stand-in for a hardware brand.
        if platform.system() == "Darwin":
            return "Apple"
        return platform.processor() or "generic"

    @staticmethod
    def _device_id() -> str:
        fingerprint = f"{socket.gethostname()}:{uuid.getnode():012x}"
        return hashlib.sha256(fingerprint.encode("utf-8")).hexdigest()[:32]

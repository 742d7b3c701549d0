"""
Application Configuration.

Pydantic Settings model for the E-Prometna field client core.
All configuration is loaded from environment variables and .env files.
Inject an AppConfig instance via dependency injection where needed.
"""

from __future__ import annotations

import logging
import threading
from pathlib import Path
from typing import Optional

from pydantic import Field
from pydantic import model_validator
from pydantic_settings import BaseSettings


class AppConfig(BaseSettings):
    """Central configuration loaded from environment variables and defaults."""

    # --- Backend API ---
    API_BASE_URL: str = ""
    HTTP_TIMEOUT_S: float = Field(default=15.0, gt=0)

    # --- Local persistence ---
    LOCAL_DB_PATH: Path = Path("eprometna_local.db")
    CREDENTIAL_SALT_PATH: Path = Field(
        default_factory=lambda: Path.home() / ".eprometna_store_salt",
    )
    CREDENTIAL_KDF_ITERATIONS: int = Field(default=600_000, ge=1)

    # --- Device metadata reported at registration ---
    APP_VERSION: str = "1.0.0"
    BUILD_VERSION: str = "1"

    # --- Logging ---
    LOG_LEVEL: str = "INFO"
    LOG_FILE: str = "eprometna.log"
    LOG_MAX_BYTES: int = 5_242_880  # 5 MB
    LOG_BACKUP_COUNT: int = 3

    model_config = {"env_file": ".env", "env_file_encoding": "utf-8", "extra": "ignore"}

    @model_validator(mode="after")
    def _warn_missing_env(self) -> "AppConfig":
        """Emit a startup warning when critical configuration is empty."""
        _log = logging.getLogger("eprometna.config")

        if not Path(".env").exists():
            _log.warning(
                "No .env file found; all configuration loaded from "
                "environment variables or defaults."
            )

        if not self.API_BASE_URL:
            _log.warning(
                "API_BASE_URL is empty; every backend call will fail "
                "until it is configured."
            )

        return self


# ---------------------------------------------------------------------------
# Module-level singleton factory
# ---------------------------------------------------------------------------

_config_instance: Optional[AppConfig] = None
_config_lock: threading.Lock = threading.Lock()


def get_config() -> AppConfig:
    """Return a cached ``AppConfig`` singleton.

    On first call, creates an ``AppConfig`` instance (reading from ``.env``).
    Subsequent calls return the same instance.  Uses a check-lock-check
    pattern so the fast path stays lock-free.

    Prefer direct constructor injection of ``AppConfig`` in new code.
    """
    global _config_instance
    if _config_instance is None:
        with _config_lock:
            if _config_instance is None:
                _config_instance = AppConfig()
    return _config_instance

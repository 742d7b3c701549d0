"""
Encrypted Credential Store.

Persists the four device secrets (device token, access token, refresh
token, cached user record) in the local SQLite ``secure_store`` table so
that a registered device stays registered across process restarts.

Security model
--------------
- The encryption key is derived at runtime from machine-specific
  characteristics (hostname + OS username) via PBKDF2-HMAC-SHA256 with
  a per-machine random salt.  The key is **never** persisted to disk.
- Each value is encrypted independently with AES-256-GCM, providing both
  confidentiality and integrity (authenticated encryption).  The entry
  key is bound to its ciphertext as associated data, so a row copied
  under a different key fails verification.
- Logout deletes the rows entirely.

Storage layout (one row per ``CredentialKey``)::

    secure_store
    ├── key              TEXT PRIMARY KEY
    ├── encrypted_value  BLOB
    ├── nonce            BLOB
    ├── tag              BLOB
    └── updated_at       TIMESTAMP
"""

from __future__ import annotations

import getpass
import os
import socket
import stat
from collections.abc import Mapping
from pathlib import Path
from typing import Optional

from Crypto.Cipher import AES
from Crypto.Hash import SHA256
from Crypto.Protocol.KDF import PBKDF2

from eprometna.database import DatabaseManager
from eprometna.errors import CredentialStoreError
from eprometna.logger import StructuredLogger
from eprometna.models.enums import CredentialKey


class CredentialStore:
    """Keyed, encrypted persistence for the device credential set.

    ``get`` on a missing key returns ``None``.  Storage-layer failures
    (``sqlite3.Error``, ``OSError`` while creating the salt file) and
    integrity failures (``CredentialStoreError``) propagate to the
    caller; nothing is silently dropped.

    Parameters
    ----------
    db:
        An initialised ``DatabaseManager`` whose schema contains the
        ``secure_store`` table.
    logger:
        A ``StructuredLogger`` instance for structured JSON log output.
    salt_path:
        Location of the per-machine random salt file.
    kdf_iterations:
        PBKDF2 iteration count.
    """

    _KEY_LENGTH: int = 32  # 256 bits
    _SALT_LENGTH: int = 32

    def __init__(
        self,
        db: DatabaseManager,
        logger: StructuredLogger,
        salt_path: Path,
        kdf_iterations: int = 600_000,
    ) -> None:
        self._db: DatabaseManager = db
        self._logger: StructuredLogger = logger
        self._salt_path: Path = salt_path
        self._kdf_iterations: int = kdf_iterations
        self._key: Optional[bytes] = None

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    def put(self, key: CredentialKey, value: str) -> None:
        """Encrypt *value* and upsert it under *key*."""
        key = self._validate_key(key)
        ciphertext, nonce, tag = self._encrypt(key, value)
        with self._db.write_lock:
            self._db.sqlite.execute(
                """
                INSERT INTO secure_store (key, encrypted_value, nonce, tag)
                VALUES (?, ?, ?, ?)
                ON CONFLICT(key) DO UPDATE SET
                    encrypted_value = excluded.encrypted_value,
                    nonce           = excluded.nonce,
                    tag             = excluded.tag,
                    updated_at      = CURRENT_TIMESTAMP
                """,
                (str(key), ciphertext, nonce, tag),
            )
            self._db.commit()
        self._logger.debug("Stored credential entry '%s'.", key)

    def get(self, key: CredentialKey) -> Optional[str]:
        """Return the decrypted value stored under *key*, or ``None``.

        Raises
        ------
        CredentialStoreError
            If the stored row fails GCM verification (tampered data or
            machine identity changed).
        """
        key = self._validate_key(key)
        row = self._db.sqlite.execute(
            "SELECT encrypted_value, nonce, tag FROM secure_store WHERE key = ?",
            (str(key),),
        ).fetchone()
        if row is None:
            return None

        cipher = AES.new(self._derive_key(), AES.MODE_GCM, nonce=row["nonce"])
        cipher.update(str(key).encode("utf-8"))
        try:
            plaintext: bytes = cipher.decrypt_and_verify(row["encrypted_value"], row["tag"])
        except ValueError as exc:
            self._logger.warning(
                "Credential entry '%s' failed integrity verification.", key,
            )
            raise CredentialStoreError(
                f"Stored credential '{key}' could not be verified."
            ) from exc
        return plaintext.decode("utf-8")

    def delete(self, key: CredentialKey) -> None:
        """Remove *key*.  Deleting a missing key is a no-op."""
        key = self._validate_key(key)
        with self._db.write_lock:
            self._db.sqlite.execute(
                "DELETE FROM secure_store WHERE key = ?", (str(key),),
            )
            self._db.commit()
        self._logger.debug("Deleted credential entry '%s'.", key)

    def write_many(self, entries: Mapping[CredentialKey, Optional[str]]) -> None:
        """Apply several puts and deletes in one SQLite transaction.

        A ``None`` value deletes the entry.  Either every change is
        committed or, on any error, none is.
        """
        validated = {self._validate_key(key): value for key, value in entries.items()}
        # Encrypt up front so a crypto failure cannot leave a half-written batch.
        encrypted = {
            key: self._encrypt(key, value)
            for key, value in validated.items()
            if value is not None
        }
        with self._db.batch_write():
            for key, value in validated.items():
                if value is None:
                    self.delete(key)
                else:
                    ciphertext, nonce, tag = encrypted[key]
                    self._db.sqlite.execute(
                        """
                        INSERT INTO secure_store (key, encrypted_value, nonce, tag)
                        VALUES (?, ?, ?, ?)
                        ON CONFLICT(key) DO UPDATE SET
                            encrypted_value = excluded.encrypted_value,
                            nonce           = excluded.nonce,
                            tag             = excluded.tag,
                            updated_at      = CURRENT_TIMESTAMP
                        """,
                        (str(key), ciphertext, nonce, tag),
                    )
        self._logger.debug(
            "Committed %d credential entries.", len(validated),
        )

    def clear(self) -> None:
        """Delete every credential entry in one transaction."""
        self.write_many({key: None for key in CredentialKey})
        self._logger.info("Credential store cleared.")

    # ------------------------------------------------------------------
    # Private helpers
    # ------------------------------------------------------------------

    @staticmethod
    def _validate_key(key: CredentialKey | str) -> CredentialKey:
        try:
            return CredentialKey(key)
        except ValueError:
            raise ValueError(f"Unknown credential key: {key!r}") from None

    def _encrypt(self, key: CredentialKey, value: str) -> tuple[bytes, bytes, bytes]:
        cipher = AES.new(self._derive_key(), AES.MODE_GCM)
        cipher.update(str(key).encode("utf-8"))
        ciphertext, tag = cipher.encrypt_and_digest(value.encode("utf-8"))
        return ciphertext, cipher.nonce, tag

    def _derive_key(self) -> bytes:
        """Derive (once per instance) the AES-256 key from machine identity.

        The key is deterministic for a given (hostname, OS username,
        salt) triple and is never stored on disk.  If the machine identity
        changes, previously stored entries become unverifiable and
        ``get`` raises ``CredentialStoreError``.
        """
        if self._key is None:
            password: str = f"{socket.gethostname()}:{getpass.getuser()}"
            self._key = PBKDF2(
                password=password,
                salt=self._get_or_create_salt(),
                dkLen=self._KEY_LENGTH,
                count=self._kdf_iterations,
                hmac_hash_module=SHA256,
            )
        return self._key

    def _get_or_create_salt(self) -> bytes:
        """Return the per-machine random salt, creating it on first run.

        Raises
        ------
        OSError
            If the salt file cannot be read or written.
        """
        if self._salt_path.exists():
            data: bytes = self._salt_path.read_bytes()
            if len(data) == self._SALT_LENGTH:
                return data
            self._logger.warning(
                "Salt file has unexpected length (%d); regenerating.",
                len(data),
            )
        salt: bytes = os.urandom(self._SALT_LENGTH)
        self._salt_path.parent.mkdir(parents=True, exist_ok=True)
        self._salt_path.write_bytes(salt)
        # Owner-only; NTFS ignores everything but the read-only bit.
        self._salt_path.chmod(stat.S_IRUSR | stat.S_IWUSR)

        self._logger.info("Per-machine store salt created at %s.", self._salt_path)
        return salt

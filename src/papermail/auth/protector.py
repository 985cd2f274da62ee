"""Purpose-bound encryption at rest for OAuth tokens.

Tokens are encrypted with AES-256-GCM under a key derived from a master key
held in the OS keychain. The purpose string ("access-token",
"refresh-token", ...) is the HKDF salt for that derivation and is also bound
as GCM associated data, so a ciphertext produced for one purpose cannot be
opened under another.

Features:
- Versioned key ring stored via the ``keyring`` library
- Key rotation that keeps old versions readable
- Compact URL-safe ciphertext strings suitable for a text column

Fail-secure: any corruption, tampering, purpose mismatch or missing key
version surfaces as ``TokenDecryptionError``; nothing is returned silently.

Usage:
    >>> protector = KeyringTokenProtector(service_name="papermail")
    >>> protector.initialize()
    >>> sealed = protector.protect("refresh-token", "secret")
    >>> protector.unprotect("refresh-token", sealed)
    'secret'
"""

from __future__ import annotations

import base64
import binascii
import json
import logging
import secrets
import threading
from dataclasses import dataclass, field
from typing import Any, Dict, Optional, Protocol

import keyring
from cryptography.exceptions import InvalidTag
from cryptography.hazmat.primitives import hashes
from cryptography.hazmat.primitives.ciphers.aead import AESGCM
from cryptography.hazmat.primitives.kdf.hkdf import HKDF

from ..exceptions import (
    KeyNotFoundError,
    KeyRotationError,
    TokenDecryptionError,
    TokenProtectionError,
)

logger = logging.getLogger(__name__)

# Constants
KEY_SIZE_BYTES = 32  # 256 bits for AES-256
NONCE_SIZE_BYTES = 12  # 96 bits for GCM
ALGORITHM = "AES-256-GCM"
HKDF_INFO = b"papermail.token-protector.v1"

ACCESS_TOKEN_PURPOSE = "access-token"
REFRESH_TOKEN_PURPOSE = "refresh-token"


class DataProtector(Protocol):
    """Encryption-at-rest capability supplied by the host environment."""

    def protect(self, purpose: str, plaintext: str) -> str:
        ...

    def unprotect(self, purpose: str, ciphertext: str) -> str:
        ...


@dataclass
class EncryptedToken:
    """Container for an encrypted token with the metadata needed to open it.

    Attributes:
        ciphertext: AES-GCM output (ciphertext plus 128-bit tag)
        nonce: Random 96-bit nonce used for this ciphertext
        key_version: Key ring version the ciphertext was sealed with
        algorithm: Encryption algorithm identifier
    """

    ciphertext: bytes
    nonce: bytes
    key_version: int
    algorithm: str = ALGORITHM

    def to_dict(self) -> Dict[str, Any]:
        return {
            "v": self.key_version,
            "alg": self.algorithm,
            "n": _b64encode(self.nonce),
            "c": _b64encode(self.ciphertext),
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "EncryptedToken":
        return cls(
            ciphertext=_b64decode(data["c"]),
            nonce=_b64decode(data["n"]),
            key_version=int(data["v"]),
            algorithm=data.get("alg", ALGORITHM),
        )

    def to_token(self) -> str:
        """Serialize to a single URL-safe string."""
        raw = json.dumps(self.to_dict(), separators=(",", ":")).encode("utf-8")
        return _b64encode(raw)

    @classmethod
    def from_token(cls, token: str) -> "EncryptedToken":
        """Parse a string produced by :meth:`to_token`.

        Raises:
            TokenDecryptionError: If the string is not a well-formed envelope
        """
        try:
            return cls.from_dict(json.loads(_b64decode(token).decode("utf-8")))
        except (ValueError, KeyError, TypeError, binascii.Error, UnicodeDecodeError) as exc:
            raise TokenDecryptionError("Malformed protected token") from exc


@dataclass
class KeyringTokenProtector:
    """Protects token strings under named purposes using a keychain key ring.

    Example:
        >>> protector = KeyringTokenProtector()
        >>> protector.initialize()
        >>> sealed = protector.protect("access-token", "abc")
        >>> assert protector.unprotect("access-token", sealed) == "abc"

    Attributes:
        service_name: Keychain service identifier
        key_id: Prefix for key ring entries in the keychain
        keyring_module: Object exposing get/set/delete_password (injectable)
    """

    service_name: str = "papermail"
    key_id: str = "token_protection_key"
    keyring_module: Any = keyring
    _key_version: int = field(default=0, init=False)
    _keys: Dict[int, bytes] = field(default_factory=dict, init=False, repr=False)
    _lock: Any = field(default_factory=threading.RLock, init=False, repr=False)

    def initialize(self, *, force_new: bool = False) -> None:
        """Load the current key ring version or create the first key.

        Serialized per instance, so concurrent first use creates one key.

        Args:
            force_new: If True, add a new key version even if one exists

        Raises:
            TokenProtectionError: If the keychain cannot be read or written
        """
        with self._lock:
            try:
                if force_new:
                    self._store_new_key(self._read_current_version() + 1)
                    return

                current = self._read_current_version()
                if current:
                    self._key_version = current
                    self._get_key(current)
                    logger.info(f"Loaded token protection key (version {current})")
                else:
                    self._store_new_key(1)
            except TokenProtectionError:
                raise
            except Exception as e:
                raise TokenProtectionError(f"Failed to initialize token protection: {e}") from e

    def protect(self, purpose: str, plaintext: str) -> str:
        """Encrypt ``plaintext`` for ``purpose``.

        Returns:
            Opaque URL-safe ciphertext string
        """
        _require_purpose(purpose)
        if not self._key_version:
            self.initialize()
        version = self._key_version
        try:
            aesgcm = AESGCM(self._derive(self._get_key(version), purpose))
            nonce = secrets.token_bytes(NONCE_SIZE_BYTES)
            sealed = aesgcm.encrypt(nonce, plaintext.encode("utf-8"), purpose.encode("utf-8"))
        except TokenProtectionError:
            raise
        except Exception as e:
            raise TokenProtectionError(f"Encryption failed: {e}") from e
        return EncryptedToken(ciphertext=sealed, nonce=nonce, key_version=version).to_token()

    def unprotect(self, purpose: str, ciphertext: str) -> str:
        """Decrypt a ciphertext produced by :meth:`protect` for ``purpose``.

        Raises:
            TokenDecryptionError: Wrong purpose, unknown key version,
                corrupted or tampered data
        """
        _require_purpose(purpose)
        envelope = EncryptedToken.from_token(ciphertext)
        if envelope.algorithm != ALGORITHM:
            raise TokenDecryptionError(f"Unsupported algorithm {envelope.algorithm}")
        try:
            master = self._get_key(envelope.key_version)
        except KeyNotFoundError as exc:
            raise TokenDecryptionError(
                f"Key version {envelope.key_version} is not in the key ring"
            ) from exc
        try:
            aesgcm = AESGCM(self._derive(master, purpose))
            plaintext = aesgcm.decrypt(envelope.nonce, envelope.ciphertext, purpose.encode("utf-8"))
        except (InvalidTag, ValueError) as exc:
            raise TokenDecryptionError("Decryption failed") from exc
        return plaintext.decode("utf-8")

    def for_purpose(self, purpose: str) -> "PurposeProtector":
        _require_purpose(purpose)
        return PurposeProtector(self, purpose)

    def rotate_key(self) -> int:
        """Add a new key version; earlier versions stay readable.

        Returns:
            New key version number

        Raises:
            KeyRotationError: If rotation fails
        """
        with self._lock:
            try:
                if not self._key_version:
                    self.initialize()
                old_version = self._key_version
                self._store_new_key(old_version + 1)
                logger.info(f"Rotated token key from version {old_version} to {self._key_version}")
                return self._key_version
            except Exception as e:
                raise KeyRotationError(f"Key rotation failed: {e}") from e

    @property
    def key_version(self) -> int:
        """Get current key version (0 when uninitialized)."""
        return self._key_version

    def is_initialized(self) -> bool:
        try:
            return self._read_current_version() > 0
        except Exception:
            return False

    # ------------------------------------------------------------------
    # Internal helpers
    # ------------------------------------------------------------------

    def _read_current_version(self) -> int:
        raw = self.keyring_module.get_password(self.service_name, f"{self.key_id}_version")
        return int(raw) if raw else 0

    def _store_new_key(self, version: int) -> None:
        key = secrets.token_bytes(KEY_SIZE_BYTES)
        self.keyring_module.set_password(
            self.service_name,
            f"{self.key_id}_v{version}",
            base64.b64encode(key).decode("ascii"),
        )
        self.keyring_module.set_password(
            self.service_name, f"{self.key_id}_version", str(version)
        )
        self._keys[version] = key
        self._key_version = version
        logger.info(f"Generated new token protection key (version {version})")

    def _get_key(self, version: int) -> bytes:
        cached = self._keys.get(version)
        if cached:
            return cached
        key_b64 = self.keyring_module.get_password(self.service_name, f"{self.key_id}_v{version}")
        if not key_b64:
            raise KeyNotFoundError(
                f"Key version {version} not found in keychain for service '{self.service_name}'"
            )
        key = base64.b64decode(key_b64)
        self._keys[version] = key
        return key

    @staticmethod
    def _derive(master: bytes, purpose: str) -> bytes:
        hkdf = HKDF(
            algorithm=hashes.SHA256(),
            length=KEY_SIZE_BYTES,
            salt=purpose.encode("utf-8"),
            info=HKDF_INFO,
        )
        return hkdf.derive(master)


@dataclass(frozen=True)
class PurposeProtector:
    """A protector bound to a single purpose."""

    protector: DataProtector
    purpose: str

    def protect(self, plaintext: str) -> str:
        return self.protector.protect(self.purpose, plaintext)

    def unprotect(self, ciphertext: str) -> str:
        return self.protector.unprotect(self.purpose, ciphertext)


def _require_purpose(purpose: str) -> None:
    if not purpose or not purpose.strip():
        raise ValueError("purpose is required")


def _b64encode(data: bytes) -> str:
    return base64.urlsafe_b64encode(data).rstrip(b"=").decode("ascii")


def _b64decode(data: str) -> bytes:
    padding = -len(data) % 4
    return base64.urlsafe_b64decode(data + "=" * padding)


__all__ = [
    "ACCESS_TOKEN_PURPOSE",
    "DataProtector",
    "EncryptedToken",
    "KeyringTokenProtector",
    "PurposeProtector",
    "REFRESH_TOKEN_PURPOSE",
]

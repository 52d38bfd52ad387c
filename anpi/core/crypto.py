"""Bot token encryption - AES-256-GCM.

Workspace bot tokens are stored encrypted. The payload keeps the
ciphertext, the 12-byte IV and the 16-byte authentication tag as separate
base64 fields. Decryption fails closed: any malformed or tampered payload
raises DecryptionError before plaintext is produced.

Encryption draws a random IV, so only decrypt() is a pure function.
"""

import base64
import binascii
import os
from dataclasses import dataclass
from typing import Any

from cryptography.exceptions import InvalidTag
from cryptography.hazmat.primitives.ciphers.aead import AESGCM

from anpi.errors import DecryptionError, EncryptionKeyError

KEY_LENGTH = 32
IV_LENGTH = 12
TAG_LENGTH = 16


@dataclass(frozen=True)
class EncryptedPayload:
    """An encrypted value as stored in Firestore.

    Attributes:
        ciphertext: Base64 ciphertext (without the tag)
        iv: Base64 12-byte initialization vector
        auth_tag: Base64 16-byte GCM authentication tag
    """
    ciphertext: str
    iv: str
    auth_tag: str

    def to_dict(self) -> dict[str, str]:
        return {"ciphertext": self.ciphertext, "iv": self.iv, "auth_tag": self.auth_tag}

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "EncryptedPayload":
        """Build a payload from a stored dict (accepts authTag as well)."""
        try:
            return cls(
                ciphertext=str(data["ciphertext"]),
                iv=str(data["iv"]),
                auth_tag=str(data.get("auth_tag", data.get("authTag")) or ""),
            )
        except KeyError as e:
            raise DecryptionError(f"Encrypted payload is missing field {e}") from e


def _b64decode(value: str, name: str) -> bytes:
    try:
        return base64.b64decode(value, validate=True)
    except (binascii.Error, ValueError) as e:
        raise DecryptionError(f"Invalid base64 in {name}") from e


def generate_key() -> str:
    """Generate a new random key, base64-encoded."""
    return base64.b64encode(AESGCM.generate_key(bit_length=256)).decode("ascii")


class TokenCipher:
    """AES-256-GCM cipher bound to one key.

    The key is validated once at construction; a wrong length raises
    EncryptionKeyError.
    """

    def __init__(self, key: bytes):
        if len(key) != KEY_LENGTH:
            raise EncryptionKeyError(
                f"Encryption key must be {KEY_LENGTH} bytes, got {len(key)}"
            )
        self._aesgcm = AESGCM(key)

    @classmethod
    def from_base64(cls, encoded_key: str) -> "TokenCipher":
        """Create a cipher from a base64-encoded key.

        Raises:
            EncryptionKeyError: If the key is not valid base64 or not 32 bytes
        """
        try:
            key = base64.b64decode(encoded_key.strip(), validate=True)
        except (binascii.Error, ValueError) as e:
            raise EncryptionKeyError("Encryption key is not valid base64") from e
        return cls(key)

    def encrypt(self, plaintext: str) -> EncryptedPayload:
        """Encrypt a UTF-8 string with a fresh random IV."""
        iv = os.urandom(IV_LENGTH)
        sealed = self._aesgcm.encrypt(iv, plaintext.encode("utf-8"), None)
        ciphertext, tag = sealed[:-TAG_LENGTH], sealed[-TAG_LENGTH:]

        return EncryptedPayload(
            ciphertext=base64.b64encode(ciphertext).decode("ascii"),
            iv=base64.b64encode(iv).decode("ascii"),
            auth_tag=base64.b64encode(tag).decode("ascii"),
        )

    def decrypt(self, payload: EncryptedPayload) -> str:
        """Decrypt a payload back to its UTF-8 string.

        Raises:
            DecryptionError: On bad base64, bad IV or tag length, tag
                mismatch, or non-UTF-8 plaintext
        """
        ciphertext = _b64decode(payload.ciphertext, "ciphertext")
        iv = _b64decode(payload.iv, "iv")
        tag = _b64decode(payload.auth_tag, "auth_tag")

        if len(iv) != IV_LENGTH:
            raise DecryptionError(f"IV must be {IV_LENGTH} bytes, got {len(iv)}")
        if len(tag) != TAG_LENGTH:
            raise DecryptionError(f"Auth tag must be {TAG_LENGTH} bytes, got {len(tag)}")

        try:
            plaintext = self._aesgcm.decrypt(iv, ciphertext + tag, None)
        except InvalidTag as e:
            raise DecryptionError("Authentication tag mismatch (wrong key or tampered data)") from e

        try:
            return plaintext.decode("utf-8")
        except UnicodeDecodeError as e:
            raise DecryptionError("Decrypted value is not valid UTF-8") from e

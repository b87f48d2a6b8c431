"""
Symmetric encryption of secrets at rest (the ACME account key).
"""

from typing import Protocol

from cryptography.fernet import Fernet, InvalidToken


class Box(Protocol):
    def seal(self, plaintext: bytes) -> bytes: ...

    def open(self, ciphertext: bytes) -> bytes: ...


def new_key_string() -> str:
    """Generate a key suitable for ``--seal-key``."""
    return Fernet.generate_key().decode("ascii")


class FernetBox:
    """``Box`` backed by Fernet (AES-128-CBC with HMAC-SHA256)."""

    def __init__(self, key: bytes) -> None:
        self._fernet = Fernet(key)

    @classmethod
    def from_key_string(cls, key: str) -> "FernetBox":
        """
        Create a box from a base64url key string.

        Raises:
            ValueError: If the key is empty or malformed.
        """
        if not key:
            raise ValueError("A seal key is required")
        try:
            return cls(key.strip().encode("ascii"))
        except (ValueError, UnicodeEncodeError) as e:
            raise ValueError(f"Invalid seal key: {e}") from e

    def seal(self, plaintext: bytes) -> bytes:
        return self._fernet.encrypt(plaintext)

    def open(self, ciphertext: bytes) -> bytes:
        """
        Decrypt and authenticate ``ciphertext``.

        Raises:
            ValueError: If the ciphertext was not sealed with this key or was altered.
        """
        try:
            return self._fernet.decrypt(ciphertext)
        except InvalidToken:
            raise ValueError("Unable to open sealed value: wrong key or corrupted data") from None

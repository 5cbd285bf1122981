"""At-rest encryption for stored TOTP secrets.

ENCRYPTION_KEY may hold several comma-separated Fernet keys. The first one
encrypts; all of them are tried when decrypting, so keys can be rotated
without re-enrolling anyone.
"""

from __future__ import annotations

from cryptography.fernet import Fernet, InvalidToken, MultiFernet

from warden.config import get_settings

_box: MultiFernet | None = None


class EncryptionKeyMissing(RuntimeError):
    pass


def _keys(raw: str) -> list[Fernet]:
    return [Fernet(part.strip().encode()) for part in raw.split(",") if part.strip()]


def _get_box() -> MultiFernet:
    global _box
    if _box is None:
        keys = _keys(get_settings().encryption_key)
        if not keys:
            raise EncryptionKeyMissing(
                "ENCRYPTION_KEY not set. Generate one with: "
                "python -c 'from cryptography.fernet import Fernet; "
                "print(Fernet.generate_key().decode())'"
            )
        _box = MultiFernet(keys)
    return _box


def encrypt_value(plaintext: str) -> str:
    return _get_box().encrypt(plaintext.encode()).decode()


def decrypt_value(ciphertext: str) -> str:
    """Raises InvalidToken when no configured key can open the value."""
    return _get_box().decrypt(ciphertext.encode()).decode()


def rotation_pending() -> bool:
    """True while an older key is still listed behind the primary one."""
    return len(_keys(get_settings().encryption_key)) > 1


def rotate_value(ciphertext: str) -> str:
    """Re-encrypt under the current primary key."""
    return _get_box().rotate(ciphertext.encode()).decode()


def reset_fernet() -> None:
    """Drop the cached keys (for tests and after rotation)."""
    global _box
    _box = None


__all__ = [
    "EncryptionKeyMissing",
    "InvalidToken",
    "decrypt_value",
    "encrypt_value",
    "reset_fernet",
    "rotate_value",
    "rotation_pending",
]

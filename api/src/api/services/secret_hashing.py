"""Password-hashing collaborator backed by bcrypt."""

from __future__ import annotations

import asyncio
from typing import Protocol

import bcrypt

# bcrypt ignores everything past 72 bytes; refuse rather than silently truncate.
MAX_SECRET_BYTES = 72


class SecretHasher(Protocol):
    async def hash(self, secret: str) -> tuple[str, str]: ...

    async def compare(self, secret: str, hashed: str) -> bool: ...


def _encode(secret: str) -> bytes:
    encoded = secret.encode()
    if len(encoded) > MAX_SECRET_BYTES:
        raise ValueError(f"Secret exceeds {MAX_SECRET_BYTES} bytes")
    return encoded


class BcryptSecretHasher:
    """Hashing runs in a worker thread so the event loop stays responsive."""

    def __init__(self, rounds: int = 12):
        self.rounds = rounds

    async def hash(self, secret: str) -> tuple[str, str]:
        encoded = _encode(secret)
        salt = bcrypt.gensalt(rounds=self.rounds)
        hashed = await asyncio.to_thread(bcrypt.hashpw, encoded, salt)
        return hashed.decode(), salt.decode()

    async def compare(self, secret: str, hashed: str) -> bool:
        try:
            encoded = _encode(secret)
        except ValueError:
            return False
        # checkpw compares in constant time.
        return await asyncio.to_thread(bcrypt.checkpw, encoded, hashed.encode())

# SPDX-License-Identifier: LGPL-2.1-only
# Copyright (c) 2026 Akshat Kotpalliwar (alias IntegerAlex)

"""
Snapvault Key Management - Issue and look up per-backup data keys.

Data keys never travel with the blobs they protect. The orchestrator asks a
key manager for a fresh key at backup time, records only the key id on the
backup result, and looks the key up again at restore time.

Two implementations are provided:
- MemoryKeyManager: process-local, keys are lost on restart
- SqliteKeyManager: durable, keys stored wrapped with a master key
"""

import asyncio
import os
from datetime import datetime, UTC
from pathlib import Path
from typing import Dict, Protocol, Tuple

import aiosqlite
import structlog
from cryptography.exceptions import InvalidTag
from cryptography.hazmat.primitives.ciphers.aead import AESGCM
from ulid import ULID

from snapvault.exceptions import KeyManagementError

logger = structlog.get_logger()

DATA_KEY_SIZE = 32

# Associated data binding a wrapped key to its id
_WRAP_CONTEXT = b"snapvault-key:"


class KeyManager(Protocol):
    """Protocol for data key issuance and lookup."""

    async def issue_key(self) -> Tuple[str, bytes]:
        """
        Create a new data key.

        Returns:
            Tuple of (key_id, 32-byte key)
        """
        ...

    async def lookup_key(self, key_id: str) -> bytes:
        """
        Return the data key for key_id.

        Raises:
            KeyManagementError: If the key is unknown
        """
        ...

    async def delete_key(self, key_id: str) -> bool:
        """
        Destroy a data key. Idempotent.

        Returns:
            True if a key was destroyed
        """
        ...


def _new_key_id() -> str:
    return f"key-{ULID()}"


class MemoryKeyManager:
    """Keeps data keys in process memory."""

    def __init__(self) -> None:
        self._keys: Dict[str, bytes] = {}
        self._lock = asyncio.Lock()

    async def issue_key(self) -> Tuple[str, bytes]:
        key_id = _new_key_id()
        key = AESGCM.generate_key(bit_length=256)
        async with self._lock:
            self._keys[key_id] = key
        logger.debug("data_key_issued", key_id=key_id, store="memory")
        return key_id, key

    async def lookup_key(self, key_id: str) -> bytes:
        async with self._lock:
            key = self._keys.get(key_id)
        if key is None:
            raise KeyManagementError(
                f"Data key not found: {key_id}",
                details={"key_id": key_id},
            )
        return key

    async def delete_key(self, key_id: str) -> bool:
        async with self._lock:
            removed = self._keys.pop(key_id, None) is not None
        logger.debug("data_key_deleted", key_id=key_id, store="memory", existed=removed)
        return removed


class SqliteKeyManager:
    """
    Stores data keys in SQLite, wrapped with AES-256-GCM under a master key.

    The master key itself is never written to disk by this class.
    """

    def __init__(self, db_path: Path, master_key: bytes) -> None:
        if len(master_key) != DATA_KEY_SIZE:
            raise KeyManagementError(
                "Master key must be 32 bytes",
                details={"key_size": len(master_key)},
            )
        self.db_path = db_path
        self._kek = AESGCM(master_key)

    async def init_db(self) -> None:
        """
        Create the key table if it doesn't exist. Idempotent.
        """
        try:
            self.db_path.parent.mkdir(parents=True, exist_ok=True)
            async with aiosqlite.connect(self.db_path) as db:
                await db.execute("""
                    CREATE TABLE IF NOT EXISTS data_keys (
                        key_id TEXT PRIMARY KEY,
                        nonce BLOB NOT NULL,
                        wrapped_key BLOB NOT NULL,
                        created_at TEXT NOT NULL
                    )
                """)
                await db.commit()
        except Exception as e:
            raise KeyManagementError(
                f"Failed to initialize key store: {e}",
                details={"db_path": str(self.db_path)},
            )

    async def issue_key(self) -> Tuple[str, bytes]:
        key_id = _new_key_id()
        key = AESGCM.generate_key(bit_length=256)
        nonce = os.urandom(12)
        wrapped = self._kek.encrypt(nonce, key, _WRAP_CONTEXT + key_id.encode())

        try:
            async with aiosqlite.connect(self.db_path) as db:
                await db.execute(
                    """
                    INSERT INTO data_keys (key_id, nonce, wrapped_key, created_at)
                    VALUES (?, ?, ?, ?)
                    """,
                    (key_id, nonce, wrapped, datetime.now(UTC).isoformat()),
                )
                await db.commit()
        except Exception as e:
            raise KeyManagementError(
                f"Failed to store data key: {e}",
                details={"key_id": key_id},
            )

        logger.debug("data_key_issued", key_id=key_id, store="sqlite")
        return key_id, key

    async def lookup_key(self, key_id: str) -> bytes:
        try:
            async with aiosqlite.connect(self.db_path) as db:
                async with db.execute(
                    "SELECT nonce, wrapped_key FROM data_keys WHERE key_id = ?",
                    (key_id,),
                ) as cursor:
                    row = await cursor.fetchone()
        except Exception as e:
            raise KeyManagementError(
                f"Failed to read data key: {e}",
                details={"key_id": key_id},
            )

        if row is None:
            raise KeyManagementError(
                f"Data key not found: {key_id}",
                details={"key_id": key_id},
            )

        nonce, wrapped = row
        try:
            return self._kek.decrypt(nonce, wrapped, _WRAP_CONTEXT + key_id.encode())
        except InvalidTag:
            raise KeyManagementError(
                "Data key could not be unwrapped; wrong master key?",
                details={"key_id": key_id},
            )

    async def delete_key(self, key_id: str) -> bool:
        try:
            async with aiosqlite.connect(self.db_path) as db:
                cursor = await db.execute("DELETE FROM data_keys WHERE key_id = ?", (key_id,))
                await db.commit()
                removed = cursor.rowcount > 0
        except Exception as e:
            raise KeyManagementError(
                f"Failed to delete data key: {e}",
                details={"key_id": key_id},
            )

        logger.debug("data_key_deleted", key_id=key_id, store="sqlite", existed=removed)
        return removed

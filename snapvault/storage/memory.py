# SPDX-License-Identifier: LGPL-2.1-only
# Copyright (c) 2026 Akshat Kotpalliwar (alias IntegerAlex)

"""
In-memory Storage Gateway - Process-local blobs, for tests and dry runs.

Each operation completes without awaiting, so no lock is needed.
"""

from collections import deque
from typing import Deque, Dict

from snapvault.exceptions import StorageFailure

# Most recent deletions kept in MemoryStorageGateway.deleted
DELETED_LOG_SIZE = 1000


class MemoryStorageGateway:
    """
    Keeps blobs in a dict.

    Gateways returned by named() are shared by the whole process: every
    service state that resolves memory://<name> sees the same blobs, and
    they live until the process exits. Construct an instance directly for
    an isolated store.

    deleted records the most recent DELETED_LOG_SIZE deleted keys, oldest
    first.
    """

    _named: Dict[str, "MemoryStorageGateway"] = {}

    def __init__(self) -> None:
        self.blobs: Dict[str, bytes] = {}
        self.deleted: Deque[str] = deque(maxlen=DELETED_LOG_SIZE)

    @classmethod
    def named(cls, name: str) -> "MemoryStorageGateway":
        if name not in cls._named:
            cls._named[name] = cls()
        return cls._named[name]

    async def store(self, key: str, data: bytes) -> None:
        self.blobs[key] = bytes(data)

    async def retrieve(self, key: str) -> bytes:
        if key not in self.blobs:
            raise StorageFailure(
                f"Backup blob not found: {key}",
                details={"key": key},
            )
        return self.blobs[key]

    async def delete(self, key: str) -> None:
        self.blobs.pop(key, None)
        self.deleted.append(key)

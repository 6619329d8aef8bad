# SPDX-License-Identifier: LGPL-2.1-only
# Copyright (c) 2026 Akshat Kotpalliwar (alias IntegerAlex)

"""
Test fixtures for snapvault tests.

Provides fake capture collaborators, an in-memory storage gateway and
initialized service state.
"""

import os
import tempfile
from pathlib import Path
from typing import Any, Dict, Generator, List, Tuple

import pytest
import pytest_asyncio

# Set test environment variables
os.environ["SNAPVAULT_ADMIN_API_KEY"] = "test-api-key-12345"

AUTH_HEADERS = {"Authorization": "Bearer test-api-key-12345"}


class FakeDatabase:
    """Stands in for an asyncpg connection: fetch() returns canned rows."""

    def __init__(self, rows: List[Dict[str, Any]] | None = None, error: Exception | None = None):
        self.rows = rows if rows is not None else []
        self.error = error
        self.calls: List[Tuple[str, tuple]] = []
        self.closed = False

    async def fetch(self, query: str, *args: Any) -> List[Dict[str, Any]]:
        self.calls.append((query, args))
        if self.error:
            raise self.error
        return list(self.rows)

    async def close(self) -> None:
        self.closed = True


class FakeKVClient:
    """
    Stands in for a redis.asyncio client with decode_responses=False.

    Data is {key: (type, value)} with str keys; values come back as bytes.
    """

    def __init__(self, data: Dict[str, Tuple[str, Any]] | None = None):
        self.data = data or {}
        self.closed = False

    @staticmethod
    def _b(value: Any) -> Any:
        return value.encode() if isinstance(value, str) else value

    async def scan_iter(self, match: str = "*", count: int = 1000):
        for key in sorted(self.data):
            yield key.encode()

    async def type(self, key: bytes) -> bytes:
        return self.data[key.decode()][0].encode()

    async def get(self, key: bytes) -> bytes:
        return self._b(self.data[key.decode()][1])

    async def hgetall(self, key: bytes) -> Dict[bytes, bytes]:
        return {self._b(k): self._b(v) for k, v in self.data[key.decode()][1].items()}

    async def lrange(self, key: bytes, start: int, end: int) -> List[bytes]:
        return [self._b(v) for v in self.data[key.decode()][1]]

    async def smembers(self, key: bytes) -> set:
        return {self._b(v) for v in self.data[key.decode()][1]}

    async def zrange(self, key: bytes, start: int, end: int, withscores: bool = False):
        return [(self._b(m), s) for m, s in self.data[key.decode()][1]]

    async def aclose(self) -> None:
        self.closed = True


class RecordingApplyHandler:
    """Apply collaborator that records every call."""

    def __init__(self, error: Exception | None = None):
        self.calls: List[Tuple[bytes, str, bool]] = []
        self.error = error

    async def apply(self, payload: bytes, target: str, *, overwrite: bool = False) -> None:
        self.calls.append((payload, target, overwrite))
        if self.error:
            raise self.error


SCHEMA_ROWS = [
    {
        "table_name": "orders",
        "column_name": "id",
        "data_type": "integer",
        "is_nullable": "NO",
        "column_default": "nextval('orders_id_seq'::regclass)",
    },
    {
        "table_name": "orders",
        "column_name": "status",
        "data_type": "text",
        "is_nullable": "YES",
        "column_default": None,
    },
]


@pytest.fixture
def temp_dir() -> Generator[Path, None, None]:
    """Create a temporary directory for tests."""
    with tempfile.TemporaryDirectory() as tmpdir:
        yield Path(tmpdir)


@pytest.fixture
def fake_database() -> FakeDatabase:
    return FakeDatabase(rows=SCHEMA_ROWS)


@pytest.fixture
def fake_kv_client() -> FakeKVClient:
    return FakeKVClient(
        {
            "session:1": ("string", "alice"),
            "shop:42": ("hash", {"plan": "pro", "orders": "17"}),
            "queue:jobs": ("list", ["a", "b"]),
            "tags": ("set", ["y", "x"]),
            "leaderboard": ("zset", [("bob", 2.0), ("eve", 5.5)]),
            "stream:events": ("stream", None),
        }
    )


@pytest.fixture
def apply_handler() -> RecordingApplyHandler:
    return RecordingApplyHandler()


@pytest.fixture
def memory_gateway():
    """A fresh, unshared in-memory gateway."""
    from snapvault.storage.memory import MemoryStorageGateway

    return MemoryStorageGateway()


@pytest.fixture
def test_settings(temp_dir: Path):
    """Settings pointing file captures at temp_dir."""
    from snapvault.config import ServiceSettings

    (temp_dir / "app.toml").write_text('[server]\nport = 8080\n')
    return ServiceSettings(
        files_allowlist=["app.toml", "missing.ini"],
        files_base_dir=temp_dir,
        secret_env_names=["DATABASE_URL", "STRIPE_KEY"],
        storage_timeout_seconds=5.0,
    )


@pytest_asyncio.fixture
async def service_state(test_settings, memory_gateway, fake_database, fake_kv_client, apply_handler):
    """Initialized service state with fake collaborators and one gateway."""
    from snapvault.core import initialize_service_state, shutdown_service_state

    state = await initialize_service_state(
        test_settings,
        gateway_factory=lambda destination: memory_gateway,
        database=fake_database,
        kv_client=fake_kv_client,
        environ={"DATABASE_URL": "postgresql://app:hunter2@db/app"},
        apply_handler=apply_handler,
    )
    yield state
    await shutdown_service_state(state)


def make_config(config_id: str = "db-test", backup_type: str = "database", **kwargs):
    """Create a BackupConfig stored in the test memory gateway."""
    from snapvault.builder import create_backup_config

    kwargs.setdefault("retention_days", 30)
    return create_backup_config(
        config_id,
        backup_type,
        kwargs.pop("destination", "memory://test/backups/"),
        **kwargs,
    )

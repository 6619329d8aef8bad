# SPDX-License-Identifier: LGPL-2.1-only
# Copyright (c) 2026 Akshat Kotpalliwar (alias IntegerAlex)

"""
Snapvault Registry - Backup configs and run results.

The registry is the only place configs, backup results and restore results
live. Orchestrators write through it; everything else reads copies.

Two backends share one interface:
- MemoryRegistry: dicts guarded by an asyncio.Lock (transient)
- SqliteRegistry: aiosqlite tables (survives restarts)
"""

import asyncio
from dataclasses import asdict, dataclass, replace
from datetime import datetime, UTC
from pathlib import Path
from typing import Any, Dict, List, Protocol

import aiosqlite
import structlog

from snapvault.config import (
    BackupConfig,
    BackupStatus,
    CompressionCodec,
    TransformFlags,
)
from snapvault.exceptions import RegistryError

logger = structlog.get_logger()


def _iso(value: datetime | None) -> str | None:
    return value.isoformat() if value else None


def _parse_iso(value: str | None) -> datetime | None:
    return datetime.fromisoformat(value) if value else None


@dataclass
class BackupResult:
    """Record of one backup run."""

    id: str  # backup-<ULID>
    config_id: str
    status: BackupStatus
    start_time: datetime
    end_time: datetime | None = None

    # Size of the stored blob
    size_bytes: int = 0

    # SHA-256 of the raw capture (content anchor), set on success only
    checksum_hex: str = ""

    error: str | None = None

    # SHA-256 of the stored blob, checked before any reverse transform
    stored_checksum_hex: str = ""

    # Transforms applied to the stored blob, copied from the config at run time
    transform: TransformFlags = TransformFlags.NONE
    compression_codec: CompressionCodec = CompressionCodec.GZIP
    key_id: str | None = None

    destination: str = ""
    storage_key: str | None = None

    # Size of the raw capture
    original_size_bytes: int = 0

    @property
    def is_terminal(self) -> bool:
        return self.status != BackupStatus.IN_PROGRESS

    def mark_success(
        self,
        *,
        size_bytes: int,
        checksum_hex: str,
        stored_checksum_hex: str,
    ) -> None:
        # All fields change before any await can observe the record
        self.size_bytes = size_bytes
        self.checksum_hex = checksum_hex
        self.stored_checksum_hex = stored_checksum_hex
        self.end_time = datetime.now(UTC)
        self.status = BackupStatus.SUCCESS

    def mark_failed(self, error: str) -> None:
        self.checksum_hex = ""
        self.error = error
        self.end_time = datetime.now(UTC)
        self.status = BackupStatus.FAILED

    def to_dict(self) -> Dict[str, Any]:
        data = asdict(self)
        data["status"] = self.status.value
        data["transform"] = self.transform.value
        data["compression_codec"] = self.compression_codec.value
        data["start_time"] = _iso(self.start_time)
        data["end_time"] = _iso(self.end_time)
        return data


@dataclass
class RestoreResult:
    """Record of one restore run."""

    id: str  # restore-<ULID>
    backup_id: str
    status: BackupStatus
    start_time: datetime
    end_time: datetime | None = None
    error: str | None = None
    target: str = ""
    dry_run: bool = False

    # Size of the payload after reverse transform
    size_bytes: int = 0

    @property
    def is_terminal(self) -> bool:
        return self.status != BackupStatus.IN_PROGRESS

    def mark_success(self, *, size_bytes: int) -> None:
        self.size_bytes = size_bytes
        self.end_time = datetime.now(UTC)
        self.status = BackupStatus.SUCCESS

    def mark_failed(self, error: str) -> None:
        self.error = error
        self.end_time = datetime.now(UTC)
        self.status = BackupStatus.FAILED

    def to_dict(self) -> Dict[str, Any]:
        data = asdict(self)
        data["status"] = self.status.value
        data["start_time"] = _iso(self.start_time)
        data["end_time"] = _iso(self.end_time)
        return data


class Registry(Protocol):
    """Protocol shared by registry backends."""

    async def init(self) -> None: ...

    async def put_config(self, config: BackupConfig) -> None: ...

    async def delete_config(self, config_id: str) -> bool: ...

    async def get_config(self, config_id: str) -> BackupConfig | None: ...

    async def list_configs(self) -> List[BackupConfig]: ...

    async def put_backup(self, result: BackupResult) -> None: ...

    async def get_backup(self, backup_id: str) -> BackupResult | None: ...

    async def list_backups(self) -> List[BackupResult]: ...

    async def delete_backup(self, backup_id: str) -> bool: ...

    async def put_restore(self, result: RestoreResult) -> None: ...

    async def get_restore(self, restore_id: str) -> RestoreResult | None: ...

    async def list_restores(self) -> List[RestoreResult]: ...


class MemoryRegistry:
    """
    In-process registry.

    Every mutation takes the lock; stored and returned records are copies,
    so callers never share a mutable record with the registry.
    """

    def __init__(self) -> None:
        self._configs: Dict[str, BackupConfig] = {}
        self._backups: Dict[str, BackupResult] = {}
        self._restores: Dict[str, RestoreResult] = {}
        self._lock = asyncio.Lock()

    async def init(self) -> None:
        return None

    async def put_config(self, config: BackupConfig) -> None:
        async with self._lock:
            self._configs[config.id] = config

    async def delete_config(self, config_id: str) -> bool:
        async with self._lock:
            return self._configs.pop(config_id, None) is not None

    async def get_config(self, config_id: str) -> BackupConfig | None:
        async with self._lock:
            return self._configs.get(config_id)

    async def list_configs(self) -> List[BackupConfig]:
        async with self._lock:
            return list(self._configs.values())

    async def put_backup(self, result: BackupResult) -> None:
        async with self._lock:
            self._backups[result.id] = replace(result)

    async def get_backup(self, backup_id: str) -> BackupResult | None:
        async with self._lock:
            result = self._backups.get(backup_id)
            return replace(result) if result else None

    async def list_backups(self) -> List[BackupResult]:
        async with self._lock:
            return [replace(r) for r in self._backups.values()]

    async def delete_backup(self, backup_id: str) -> bool:
        async with self._lock:
            return self._backups.pop(backup_id, None) is not None

    async def put_restore(self, result: RestoreResult) -> None:
        async with self._lock:
            self._restores[result.id] = replace(result)

    async def get_restore(self, restore_id: str) -> RestoreResult | None:
        async with self._lock:
            result = self._restores.get(restore_id)
            return replace(result) if result else None

    async def list_restores(self) -> List[RestoreResult]:
        async with self._lock:
            return [replace(r) for r in self._restores.values()]


_BACKUP_COLUMNS = (
    "id, config_id, status, start_time, end_time, size_bytes, checksum_hex, error, "
    "stored_checksum_hex, transform, compression_codec, key_id, destination, "
    "storage_key, original_size_bytes"
)

_RESTORE_COLUMNS = (
    "id, backup_id, status, start_time, end_time, error, target, dry_run, size_bytes"
)

_CONFIG_COLUMNS = (
    "id, name, type, schedule, retention_days, encryption_enabled, "
    "compression_enabled, compression_codec, destination"
)


class SqliteRegistry:
    """
    Durable registry backed by SQLite.

    Writes are serialized through a lock so concurrent runs never interleave
    their upserts.
    """

    def __init__(self, db_path: Path) -> None:
        self.db_path = Path(db_path)
        self._lock = asyncio.Lock()

    async def init(self) -> None:
        """
        Create tables if they don't exist. Idempotent.
        """
        try:
            self.db_path.parent.mkdir(parents=True, exist_ok=True)
            async with aiosqlite.connect(self.db_path) as db:
                await db.execute("""
                    CREATE TABLE IF NOT EXISTS backup_configs (
                        id TEXT PRIMARY KEY,
                        name TEXT NOT NULL,
                        type TEXT NOT NULL,
                        schedule TEXT NOT NULL,
                        retention_days INTEGER NOT NULL,
                        encryption_enabled INTEGER NOT NULL,
                        compression_enabled INTEGER NOT NULL,
                        compression_codec TEXT NOT NULL,
                        destination TEXT NOT NULL
                    )
                """)

                await db.execute("""
                    CREATE TABLE IF NOT EXISTS backup_results (
                        id TEXT PRIMARY KEY,
                        config_id TEXT NOT NULL,
                        status TEXT NOT NULL,
                        start_time TEXT NOT NULL,
                        end_time TEXT,
                        size_bytes INTEGER NOT NULL DEFAULT 0,
                        checksum_hex TEXT NOT NULL DEFAULT '',
                        error TEXT,
                        stored_checksum_hex TEXT NOT NULL DEFAULT '',
                        transform TEXT NOT NULL,
                        compression_codec TEXT NOT NULL,
                        key_id TEXT,
                        destination TEXT NOT NULL,
                        storage_key TEXT,
                        original_size_bytes INTEGER NOT NULL DEFAULT 0
                    )
                """)

                await db.execute("""
                    CREATE TABLE IF NOT EXISTS restore_results (
                        id TEXT PRIMARY KEY,
                        backup_id TEXT NOT NULL,
                        status TEXT NOT NULL,
                        start_time TEXT NOT NULL,
                        end_time TEXT,
                        error TEXT,
                        target TEXT NOT NULL DEFAULT '',
                        dry_run INTEGER NOT NULL DEFAULT 0,
                        size_bytes INTEGER NOT NULL DEFAULT 0
                    )
                """)

                await db.execute("""
                    CREATE INDEX IF NOT EXISTS idx_backup_results_start_time
                    ON backup_results(start_time)
                """)

                await db.commit()

            logger.info("registry_db_initialized", db_path=str(self.db_path))

        except Exception as e:
            raise RegistryError(
                f"Failed to initialize registry database: {e}",
                details={"db_path": str(self.db_path)},
            )

    async def _write(self, query: str, params: tuple) -> int:
        async with self._lock:
            try:
                async with aiosqlite.connect(self.db_path) as db:
                    cursor = await db.execute(query, params)
                    await db.commit()
                    return cursor.rowcount
            except Exception as e:
                raise RegistryError(
                    f"Registry write failed: {e}",
                    details={"db_path": str(self.db_path)},
                )

    async def _read(self, query: str, params: tuple = ()) -> List[tuple]:
        try:
            async with aiosqlite.connect(self.db_path) as db:
                async with db.execute(query, params) as cursor:
                    return list(await cursor.fetchall())
        except Exception as e:
            raise RegistryError(
                f"Registry read failed: {e}",
                details={"db_path": str(self.db_path)},
            )

    # Configs

    async def put_config(self, config: BackupConfig) -> None:
        await self._write(
            f"INSERT OR REPLACE INTO backup_configs ({_CONFIG_COLUMNS}) "
            "VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?)",
            (
                config.id,
                config.name,
                config.type.value,
                config.schedule,
                config.retention_days,
                int(config.encryption_enabled),
                int(config.compression_enabled),
                config.compression_codec.value,
                config.destination,
            ),
        )

    async def delete_config(self, config_id: str) -> bool:
        return await self._write("DELETE FROM backup_configs WHERE id = ?", (config_id,)) > 0

    async def get_config(self, config_id: str) -> BackupConfig | None:
        rows = await self._read(
            f"SELECT {_CONFIG_COLUMNS} FROM backup_configs WHERE id = ?", (config_id,)
        )
        return _row_to_config(rows[0]) if rows else None

    async def list_configs(self) -> List[BackupConfig]:
        rows = await self._read(f"SELECT {_CONFIG_COLUMNS} FROM backup_configs ORDER BY id")
        return [_row_to_config(row) for row in rows]

    # Backup results

    async def put_backup(self, result: BackupResult) -> None:
        await self._write(
            f"INSERT OR REPLACE INTO backup_results ({_BACKUP_COLUMNS}) "
            "VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)",
            (
                result.id,
                result.config_id,
                result.status.value,
                _iso(result.start_time),
                _iso(result.end_time),
                result.size_bytes,
                result.checksum_hex,
                result.error,
                result.stored_checksum_hex,
                result.transform.value,
                result.compression_codec.value,
                result.key_id,
                result.destination,
                result.storage_key,
                result.original_size_bytes,
            ),
        )

    async def get_backup(self, backup_id: str) -> BackupResult | None:
        rows = await self._read(
            f"SELECT {_BACKUP_COLUMNS} FROM backup_results WHERE id = ?", (backup_id,)
        )
        return _row_to_backup(rows[0]) if rows else None

    async def list_backups(self) -> List[BackupResult]:
        rows = await self._read(
            f"SELECT {_BACKUP_COLUMNS} FROM backup_results ORDER BY start_time"
        )
        return [_row_to_backup(row) for row in rows]

    async def delete_backup(self, backup_id: str) -> bool:
        return await self._write("DELETE FROM backup_results WHERE id = ?", (backup_id,)) > 0

    # Restore results

    async def put_restore(self, result: RestoreResult) -> None:
        await self._write(
            f"INSERT OR REPLACE INTO restore_results ({_RESTORE_COLUMNS}) "
            "VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?)",
            (
                result.id,
                result.backup_id,
                result.status.value,
                _iso(result.start_time),
                _iso(result.end_time),
                result.error,
                result.target,
                int(result.dry_run),
                result.size_bytes,
            ),
        )

    async def get_restore(self, restore_id: str) -> RestoreResult | None:
        rows = await self._read(
            f"SELECT {_RESTORE_COLUMNS} FROM restore_results WHERE id = ?", (restore_id,)
        )
        return _row_to_restore(rows[0]) if rows else None

    async def list_restores(self) -> List[RestoreResult]:
        rows = await self._read(
            f"SELECT {_RESTORE_COLUMNS} FROM restore_results ORDER BY start_time"
        )
        return [_row_to_restore(row) for row in rows]


def _row_to_config(row: tuple) -> BackupConfig:
    return BackupConfig(
        id=row[0],
        name=row[1],
        type=row[2],
        schedule=row[3],
        retention_days=row[4],
        encryption_enabled=bool(row[5]),
        compression_enabled=bool(row[6]),
        compression_codec=row[7],
        destination=row[8],
    )


def _row_to_backup(row: tuple) -> BackupResult:
    return BackupResult(
        id=row[0],
        config_id=row[1],
        status=BackupStatus(row[2]),
        start_time=_parse_iso(row[3]),
        end_time=_parse_iso(row[4]),
        size_bytes=row[5],
        checksum_hex=row[6],
        error=row[7],
        stored_checksum_hex=row[8],
        transform=TransformFlags(row[9]),
        compression_codec=CompressionCodec(row[10]),
        key_id=row[11],
        destination=row[12],
        storage_key=row[13],
        original_size_bytes=row[14],
    )


def _row_to_restore(row: tuple) -> RestoreResult:
    return RestoreResult(
        id=row[0],
        backup_id=row[1],
        status=BackupStatus(row[2]),
        start_time=_parse_iso(row[3]),
        end_time=_parse_iso(row[4]),
        error=row[5],
        target=row[6],
        dry_run=bool(row[7]),
        size_bytes=row[8],
    )

# SPDX-License-Identifier: LGPL-2.1-only
# Copyright (c) 2026 Akshat Kotpalliwar (alias IntegerAlex)

"""
Retention sweeper tests.
"""

import asyncio
from datetime import datetime, timedelta, UTC

import pytest

from snapvault.backup import retention_window_days, run_periodic_sweep
from snapvault.config import BackupStatus, RetentionMode
from snapvault.core import (
    add_config,
    execute_backup,
    get_backup_status,
    list_backups,
    remove_config,
    sweep,
)
from snapvault.exceptions import KeyManagementError, StorageFailure
from snapvault.registry import BackupResult

from conftest import make_config


async def _backdate(state, backup_id: str, days: int) -> BackupResult:
    record = await get_backup_status(state, backup_id)
    record.start_time = datetime.now(UTC) - timedelta(days=days)
    record.end_time = record.start_time + timedelta(seconds=5)
    await state["registry"].put_backup(record)
    return record


@pytest.mark.asyncio
async def test_expired_backup_is_removed_from_storage_and_registry(service_state, memory_gateway):
    await add_config(service_state, make_config("db", "database", retention_days=30))
    old = await execute_backup(service_state, "db")
    fresh = await execute_backup(service_state, "db")
    await _backdate(service_state, old.id, 31)

    report = await sweep(service_state)

    assert report.swept == [old.id]
    assert report.retained == 1
    assert [b.id for b in await list_backups(service_state)] == [fresh.id]
    assert old.storage_key in memory_gateway.deleted
    assert old.storage_key not in memory_gateway.blobs
    assert fresh.storage_key in memory_gateway.blobs


@pytest.mark.asyncio
async def test_each_config_uses_its_own_window(service_state):
    await add_config(service_state, make_config("short", "secrets", retention_days=7))
    await add_config(service_state, make_config("long", "secrets", retention_days=90))
    short = await execute_backup(service_state, "short")
    long = await execute_backup(service_state, "long")
    await _backdate(service_state, short.id, 10)
    await _backdate(service_state, long.id, 10)

    report = await sweep(service_state)

    assert report.swept == [short.id]
    assert await get_backup_status(service_state, long.id) is not None


@pytest.mark.asyncio
async def test_removed_config_falls_back_to_default_window(service_state):
    await add_config(service_state, make_config("gone", "secrets", retention_days=365))
    backup = await execute_backup(service_state, "gone")
    await _backdate(service_state, backup.id, 31)
    assert await remove_config(service_state, "gone") is True

    report = await sweep(service_state)

    assert report.swept == [backup.id]


@pytest.mark.asyncio
async def test_global_mode_ignores_config_windows(service_state):
    service_state["settings"] = service_state["settings"].with_updates(
        retention_mode=RetentionMode.GLOBAL,
        default_retention_days=5,
    )
    await add_config(service_state, make_config("long", "secrets", retention_days=365))
    backup = await execute_backup(service_state, "long")
    await _backdate(service_state, backup.id, 6)

    report = await sweep(service_state)

    assert report.swept == [backup.id]


def test_retention_window_selection(test_settings):
    config = make_config("db", retention_days=7)

    assert retention_window_days(test_settings, config) == 7
    assert retention_window_days(test_settings, None) == 30
    assert retention_window_days(
        test_settings.with_updates(retention_mode="global", default_retention_days=3), config
    ) == 3


@pytest.mark.asyncio
async def test_in_progress_backups_are_never_swept(service_state):
    stuck = BackupResult(
        id="backup-stuck",
        config_id="db",
        status=BackupStatus.IN_PROGRESS,
        start_time=datetime.now(UTC) - timedelta(days=400),
    )
    await service_state["registry"].put_backup(stuck)

    report = await sweep(service_state)

    assert report.swept == []
    assert report.skipped_in_progress == 1
    assert await get_backup_status(service_state, "backup-stuck") is not None


@pytest.mark.asyncio
async def test_failed_backups_without_blob_are_swept(service_state, fake_database):
    from snapvault.exceptions import CaptureFailure

    fake_database.error = ConnectionError("down")
    await add_config(service_state, make_config("db", "database"))
    with pytest.raises(CaptureFailure):
        await execute_backup(service_state, "db")
    (failed,) = await list_backups(service_state)
    await _backdate(service_state, failed.id, 60)

    report = await sweep(service_state)

    assert report.swept == [failed.id]


@pytest.mark.asyncio
async def test_delete_failure_keeps_record_and_raises(service_state, memory_gateway):
    await add_config(service_state, make_config("db", "database"))
    stuck = await execute_backup(service_state, "db")
    other = await execute_backup(service_state, "db")
    await _backdate(service_state, stuck.id, 40)
    await _backdate(service_state, other.id, 40)

    original_delete = memory_gateway.delete

    async def flaky_delete(key):
        if key == stuck.storage_key:
            raise OSError("permission denied")
        await original_delete(key)

    memory_gateway.delete = flaky_delete

    with pytest.raises(StorageFailure) as exc_info:
        await sweep(service_state)

    assert exc_info.value.details == {"failed": [stuck.id], "swept": [other.id]}
    assert await get_backup_status(service_state, stuck.id) is not None
    assert await get_backup_status(service_state, other.id) is None

    # A later pass retries the kept record
    memory_gateway.delete = original_delete
    report = await sweep(service_state)
    assert report.swept == [stuck.id]


@pytest.mark.asyncio
async def test_periodic_sweep_stops_when_event_is_set(service_state):
    await add_config(service_state, make_config("db", "database"))
    backup = await execute_backup(service_state, "db")
    await _backdate(service_state, backup.id, 45)

    stop_event = asyncio.Event()
    task = asyncio.create_task(run_periodic_sweep(service_state, 60, stop_event))
    await asyncio.sleep(0.05)
    stop_event.set()
    await asyncio.wait_for(task, timeout=1)

    assert await list_backups(service_state) == []


@pytest.mark.asyncio
async def test_periodic_sweep_survives_failed_pass(service_state, memory_gateway):
    await add_config(service_state, make_config("db", "database"))
    backup = await execute_backup(service_state, "db")
    await _backdate(service_state, backup.id, 45)

    async def broken_delete(key):
        raise OSError("bucket unavailable")

    memory_gateway.delete = broken_delete

    stop_event = asyncio.Event()
    task = asyncio.create_task(run_periodic_sweep(service_state, 0.01, stop_event))
    await asyncio.sleep(0.05)
    stop_event.set()
    await asyncio.wait_for(task, timeout=1)

    assert task.exception() is None
    assert await get_backup_status(service_state, backup.id) is not None


@pytest.mark.asyncio
async def test_sweep_destroys_data_key_of_expired_backup(service_state):
    await add_config(service_state, make_config("secrets", "secrets", encryption=True))
    old = await execute_backup(service_state, "secrets")
    fresh = await execute_backup(service_state, "secrets")
    await _backdate(service_state, old.id, 31)

    report = await sweep(service_state)

    assert report.swept == [old.id]
    key_manager = service_state["key_manager"]
    with pytest.raises(KeyManagementError):
        await key_manager.lookup_key(old.key_id)
    assert len(await key_manager.lookup_key(fresh.key_id)) == 32


@pytest.mark.asyncio
async def test_key_delete_failure_keeps_record_for_retry(service_state):
    await add_config(service_state, make_config("secrets", "secrets", encryption=True))
    backup = await execute_backup(service_state, "secrets")
    await _backdate(service_state, backup.id, 31)

    key_manager = service_state["key_manager"]
    original_delete_key = key_manager.delete_key

    async def broken_delete_key(key_id):
        raise KeyManagementError("key store locked", details={"key_id": key_id})

    key_manager.delete_key = broken_delete_key

    with pytest.raises(StorageFailure) as exc_info:
        await sweep(service_state)

    assert exc_info.value.details["failed"] == [backup.id]
    assert await get_backup_status(service_state, backup.id) is not None

    key_manager.delete_key = original_delete_key
    report = await sweep(service_state)
    assert report.swept == [backup.id]


@pytest.mark.asyncio
async def test_cancelled_backup_is_swept_once_expired(service_state, fake_database):
    started = asyncio.Event()

    async def hanging_fetch(query, *args):
        started.set()
        await asyncio.Event().wait()

    fake_database.fetch = hanging_fetch
    await add_config(service_state, make_config("db", "database"))

    task = asyncio.create_task(execute_backup(service_state, "db"))
    await started.wait()
    task.cancel()
    with pytest.raises(asyncio.CancelledError):
        await task

    (cancelled,) = await list_backups(service_state)
    await _backdate(service_state, cancelled.id, 45)

    report = await sweep(service_state)

    assert report.swept == [cancelled.id]
    assert report.skipped_in_progress == 0

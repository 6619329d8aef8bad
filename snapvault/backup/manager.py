# SPDX-License-Identifier: LGPL-2.1-only
# Copyright (c) 2026 Akshat Kotpalliwar (alias IntegerAlex)

"""
Snapvault Backup Orchestrator - Capture, digest, transform and store.

One call to execute_backup() produces exactly one BackupResult:
1. in_progress is registered before any byte is captured
2. the raw capture is digested before any transform
3. compression runs before encryption
4. the stored blob is digested again
5. the blob is stored and the result moves to success

Any failure moves the result to failed and the error is re-raised.
"""

import asyncio
from datetime import datetime, UTC

import structlog
from ulid import ULID

from snapvault.capture import create_capture_adapter
from snapvault.config import BackupConfig, BackupStatus
from snapvault.core import ServiceState, config_lock, resolve_gateway, storage_call
from snapvault.exceptions import (
    CaptureFailure,
    ConfigNotFound,
    SnapVaultError,
    StorageFailure,
    TransformFailure,
)
from snapvault.pipeline import apply_transform, compute_checksum
from snapvault.registry import BackupResult
from snapvault.storage import build_storage_key

logger = structlog.get_logger()

# Error class for unexpected exceptions, by pipeline stage
_STAGE_ERRORS = {
    "capture": CaptureFailure,
    "transform": TransformFailure,
    "store": StorageFailure,
}


def new_backup_id() -> str:
    return f"backup-{ULID()}"


async def execute_backup(state: ServiceState, config_id: str) -> BackupResult:
    """
    Run one backup of a registered config.

    Args:
        state: Service state
        config_id: Id of a registered BackupConfig

    Returns:
        The terminal (success) BackupResult

    Raises:
        ConfigNotFound: If config_id is not registered (no result is created)
        UnsupportedBackupType: If no capture adapter exists for the config type
        CaptureFailure / TransformFailure / StorageFailure: On pipeline failure
    """
    config = await state["registry"].get_config(config_id)
    if config is None:
        raise ConfigNotFound(
            f"Backup configuration not found: {config_id}",
            details={"config_id": config_id},
        )

    if state["settings"].single_flight:
        async with config_lock(state, config_id):
            return await _run_backup(state, config)

    return await _run_backup(state, config)


async def _run_backup(state: ServiceState, config: BackupConfig) -> BackupResult:
    registry = state["registry"]
    flags = config.transform
    codec = config.compression_codec

    result = BackupResult(
        id=new_backup_id(),
        config_id=config.id,
        status=BackupStatus.IN_PROGRESS,
        start_time=datetime.now(UTC),
        transform=flags,
        compression_codec=codec,
        destination=config.destination,
    )
    await registry.put_backup(result)

    logger.info(
        "backup_started",
        backup_id=result.id,
        config_id=config.id,
        type=config.type.value,
        transform=flags.value,
    )

    stage = "capture"
    try:
        adapter = create_capture_adapter(
            config.type,
            state["settings"],
            database=state["database"],
            kv_client=state["kv_client"],
            environ=state["environ"],
        )
        payload = await adapter.capture()
        checksum_hex = compute_checksum(payload)

        stage = "transform"
        key = None
        if flags.encrypted:
            result.key_id, key = await state["key_manager"].issue_key()
        blob = await apply_transform(payload, flags, codec, key)
        stored_checksum_hex = compute_checksum(blob)

        stage = "store"
        storage_key = build_storage_key(config.destination, result.id, flags, codec)
        gateway = resolve_gateway(state, config.destination)
        await storage_call(state, gateway.store(storage_key, blob), action="store", key=storage_key)

        result.storage_key = storage_key
        result.original_size_bytes = len(payload)
        result.mark_success(
            size_bytes=len(blob),
            checksum_hex=checksum_hex,
            stored_checksum_hex=stored_checksum_hex,
        )

    except asyncio.CancelledError:
        await _record_failure(state, result, stage, "Backup cancelled")
        raise

    except Exception as e:
        error = e if isinstance(e, SnapVaultError) else _STAGE_ERRORS[stage](
            f"Backup {stage} failed: {e}",
            details={"backup_id": result.id, "config_id": config.id},
        )

        await _record_failure(state, result, stage, str(error))

        if error is e:
            raise
        raise error from e

    await registry.put_backup(result)

    state["total_backups"] += 1
    state["last_backup_at"] = result.end_time

    logger.info(
        "backup_completed",
        backup_id=result.id,
        config_id=config.id,
        size_bytes=result.size_bytes,
        original_size_bytes=result.original_size_bytes,
        storage_key=result.storage_key,
        duration=(result.end_time - result.start_time).total_seconds(),
    )

    return result


async def _record_failure(
    state: ServiceState,
    result: BackupResult,
    stage: str,
    message: str,
) -> None:
    """Move a run to failed and destroy the data key of its unstored blob."""
    if result.key_id:
        try:
            await state["key_manager"].delete_key(result.key_id)
        except SnapVaultError as e:
            logger.warning("data_key_delete_failed", key_id=result.key_id, error=str(e))

    result.mark_failed(message)
    await state["registry"].put_backup(result)

    state["total_backups"] += 1
    state["failed_backups"] += 1
    state["last_error"] = message

    logger.error(
        "backup_failed",
        backup_id=result.id,
        config_id=result.config_id,
        stage=stage,
        error=message,
    )

# SPDX-License-Identifier: LGPL-2.1-only
# Copyright (c) 2026 Akshat Kotpalliwar (alias IntegerAlex)

"""
Snapvault Restore Orchestrator - Retrieve, verify, reverse and apply.

Verification happens twice and both checks run before apply:
- the retrieved blob against the digest recorded at store time
- the reversed payload against the digest of the original capture

Transforms are reversed using the flags recorded on the BackupResult.
"""

import asyncio
from datetime import datetime, UTC
from pathlib import Path
from typing import Protocol

import aiofiles
import structlog
from ulid import ULID

from snapvault.config import BackupStatus, RestoreConfig
from snapvault.core import ServiceState, resolve_gateway, storage_call
from snapvault.exceptions import (
    ApplyFailure,
    BackupNotFound,
    ChecksumMismatch,
    KeyManagementError,
    SnapVaultError,
    StorageFailure,
    TransformFailure,
)
from snapvault.pipeline import reverse_transform, verify_checksum
from snapvault.registry import RestoreResult

logger = structlog.get_logger()

_STAGE_ERRORS = {
    "retrieve": StorageFailure,
    "verify": ChecksumMismatch,
    "transform": TransformFailure,
    "apply": ApplyFailure,
}


class ApplyHandler(Protocol):
    """Collaborator that writes a restored payload back to its target."""

    async def apply(self, payload: bytes, target: str, *, overwrite: bool = False) -> None:
        """
        Apply a verified payload.

        Raises:
            ApplyFailure: If the payload cannot be applied
        """
        ...


class FileApplyHandler:
    """
    Writes restored payloads to files under a base directory.

    The target is a path relative to base_dir; an existing file is only
    replaced when overwrite is set.
    """

    def __init__(self, base_dir: Path) -> None:
        self.base_dir = Path(base_dir)

    async def apply(self, payload: bytes, target: str, *, overwrite: bool = False) -> None:
        relative = Path(target)
        if not target or relative.is_absolute() or ".." in relative.parts:
            raise ApplyFailure(
                f"Invalid restore target: {target!r}",
                details={"target": target},
            )

        path = self.base_dir / relative
        if path.exists() and not overwrite:
            raise ApplyFailure(
                f"Restore target already exists: {path}",
                details={"target": target, "overwrite": overwrite},
            )

        try:
            path.parent.mkdir(parents=True, exist_ok=True)
            async with aiofiles.open(path, "wb") as f:
                await f.write(payload)
        except OSError as e:
            raise ApplyFailure(
                f"Failed to write restore target: {e}",
                details={"target": target},
            )

        logger.debug("restore_applied_to_file", path=str(path), size=len(payload))


def new_restore_id() -> str:
    return f"restore-{ULID()}"


async def execute_restore(state: ServiceState, restore_config: RestoreConfig) -> RestoreResult:
    """
    Restore one successful backup.

    Args:
        state: Service state
        restore_config: Backup id, target, dry_run and overwrite

    Returns:
        The terminal (success) RestoreResult

    Raises:
        BackupNotFound: If the backup is unknown or not successful
            (no restore result is created)
        StorageFailure: If the blob cannot be retrieved
        ChecksumMismatch: If either digest check fails
        TransformFailure: If decryption or decompression fails
        ApplyFailure: If the apply collaborator fails
    """
    registry = state["registry"]
    backup_id = restore_config.backup_id

    backup = await registry.get_backup(backup_id)
    if backup is None:
        raise BackupNotFound(
            f"Backup not found: {backup_id}",
            details={"backup_id": backup_id},
        )
    if backup.status != BackupStatus.SUCCESS or not backup.storage_key:
        raise BackupNotFound(
            f"Backup {backup_id} has no restorable blob (status: {backup.status.value})",
            details={"backup_id": backup_id, "status": backup.status.value},
        )

    result = RestoreResult(
        id=new_restore_id(),
        backup_id=backup_id,
        status=BackupStatus.IN_PROGRESS,
        start_time=datetime.now(UTC),
        target=restore_config.target,
        dry_run=restore_config.dry_run,
    )
    await registry.put_restore(result)

    logger.info(
        "restore_started",
        restore_id=result.id,
        backup_id=backup_id,
        dry_run=restore_config.dry_run,
        transform=backup.transform.value,
    )

    stage = "retrieve"
    try:
        gateway = resolve_gateway(state, backup.destination)
        blob = await storage_call(
            state,
            gateway.retrieve(backup.storage_key),
            action="retrieve",
            key=backup.storage_key,
        )

        stage = "verify"
        verify_checksum(blob, backup.stored_checksum_hex, "blob")

        stage = "transform"
        key = None
        if backup.transform.encrypted:
            if not backup.key_id:
                raise KeyManagementError(
                    f"Backup {backup_id} is encrypted but records no key id",
                    details={"backup_id": backup_id},
                )
            key = await state["key_manager"].lookup_key(backup.key_id)
        payload = await reverse_transform(blob, backup.transform, backup.compression_codec, key)

        stage = "verify"
        verify_checksum(payload, backup.checksum_hex, "content")

        if restore_config.dry_run:
            logger.info("restore_dry_run_verified", restore_id=result.id, backup_id=backup_id)
        else:
            stage = "apply"
            handler = state["apply_handler"]
            if handler is None:
                raise ApplyFailure(
                    "No apply handler configured for restores",
                    details={"backup_id": backup_id},
                )
            await handler.apply(payload, restore_config.target, overwrite=restore_config.overwrite)

        result.mark_success(size_bytes=len(payload))

    except asyncio.CancelledError:
        await _record_failure(state, result, stage, "Restore cancelled")
        raise

    except Exception as e:
        error = e if isinstance(e, SnapVaultError) else _STAGE_ERRORS[stage](
            f"Restore {stage} failed: {e}",
            details={"restore_id": result.id, "backup_id": backup_id},
        )

        await _record_failure(state, result, stage, str(error))

        if error is e:
            raise
        raise error from e

    await registry.put_restore(result)
    state["total_restores"] += 1

    logger.info(
        "restore_completed",
        restore_id=result.id,
        backup_id=backup_id,
        size_bytes=result.size_bytes,
        dry_run=result.dry_run,
        duration=(result.end_time - result.start_time).total_seconds(),
    )

    return result


async def _record_failure(
    state: ServiceState,
    result: RestoreResult,
    stage: str,
    message: str,
) -> None:
    result.mark_failed(message)
    await state["registry"].put_restore(result)

    state["total_restores"] += 1
    state["failed_restores"] += 1
    state["last_error"] = message

    logger.error(
        "restore_failed",
        restore_id=result.id,
        backup_id=result.backup_id,
        stage=stage,
        error=message,
    )

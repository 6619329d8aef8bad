# SPDX-License-Identifier: LGPL-2.1-only
# Copyright (c) 2026 Akshat Kotpalliwar (alias IntegerAlex)

"""
Snapvault Retention Sweeper - Remove backups past their retention window.

The window of each backup comes from its config's retention_days. Backups
whose config has been removed use settings.default_retention_days, as does
every backup in global mode. In-progress backups are never touched.
"""

import asyncio
from dataclasses import dataclass, field
from datetime import datetime, timedelta, UTC
from typing import Dict, List

import structlog

from snapvault.config import BackupConfig, RetentionMode, ServiceSettings
from snapvault.core import ServiceState, resolve_gateway, storage_call
from snapvault.exceptions import SnapVaultError, StorageFailure
from snapvault.registry import BackupResult

logger = structlog.get_logger()


@dataclass
class SweepReport:
    """Outcome of one retention pass."""

    swept: List[str] = field(default_factory=list)
    failed: List[str] = field(default_factory=list)
    retained: int = 0
    skipped_in_progress: int = 0
    duration_seconds: float = 0.0


def retention_window_days(
    settings: ServiceSettings,
    config: BackupConfig | None,
) -> int:
    """Retention window applying to a backup of config (None if removed)."""
    if settings.retention_mode == RetentionMode.GLOBAL or config is None:
        return settings.default_retention_days
    return config.retention_days


def is_expired(backup: BackupResult, window_days: int, now: datetime) -> bool:
    return backup.start_time < now - timedelta(days=window_days)


async def sweep(state: ServiceState) -> SweepReport:
    """
    Delete expired backups from storage, then from the registry.

    The data key of an encrypted backup is destroyed with its blob. A backup
    whose blob or key cannot be deleted stays registered so a later pass
    can retry it.

    Args:
        state: Service state

    Returns:
        SweepReport

    Raises:
        StorageFailure: After the pass, if any blob or data key could not be deleted
    """
    registry = state["registry"]
    settings = state["settings"]
    start = datetime.now(UTC)
    report = SweepReport()

    configs: Dict[str, BackupConfig] = {c.id: c for c in await registry.list_configs()}
    backups = await registry.list_backups()

    logger.info(
        "retention_sweep_started",
        backups=len(backups),
        mode=settings.retention_mode.value,
    )

    for backup in backups:
        if not backup.is_terminal:
            report.skipped_in_progress += 1
            continue

        window = retention_window_days(settings, configs.get(backup.config_id))
        if not is_expired(backup, window, start):
            report.retained += 1
            continue

        if backup.storage_key:
            try:
                gateway = resolve_gateway(state, backup.destination)
                await storage_call(
                    state,
                    gateway.delete(backup.storage_key),
                    action="delete",
                    key=backup.storage_key,
                )
            except SnapVaultError as e:
                report.failed.append(backup.id)
                logger.error(
                    "retention_delete_failed",
                    backup_id=backup.id,
                    storage_key=backup.storage_key,
                    error=str(e),
                )
                continue

        # The blob is gone, so its data key has nothing left to decrypt
        if backup.key_id:
            try:
                await state["key_manager"].delete_key(backup.key_id)
            except SnapVaultError as e:
                report.failed.append(backup.id)
                logger.error(
                    "retention_key_delete_failed",
                    backup_id=backup.id,
                    key_id=backup.key_id,
                    error=str(e),
                )
                continue

        await registry.delete_backup(backup.id)
        report.swept.append(backup.id)

        logger.debug(
            "retention_backup_swept",
            backup_id=backup.id,
            config_id=backup.config_id,
            window_days=window,
        )

    report.duration_seconds = (datetime.now(UTC) - start).total_seconds()

    logger.info(
        "retention_sweep_completed",
        swept=len(report.swept),
        failed=len(report.failed),
        retained=report.retained,
        duration=report.duration_seconds,
    )

    if report.failed:
        raise StorageFailure(
            f"Retention sweep could not delete {len(report.failed)} backup(s)",
            details={"failed": report.failed, "swept": report.swept},
        )

    return report


async def run_periodic_sweep(
    state: ServiceState,
    interval_seconds: float,
    stop_event: asyncio.Event,
) -> None:
    """
    Sweep every interval_seconds until stop_event is set.

    Failed passes are logged and the loop keeps running.
    """
    logger.info("retention_loop_started", interval_seconds=interval_seconds)

    while not stop_event.is_set():
        try:
            await sweep(state)
        except SnapVaultError as e:
            logger.error("retention_sweep_failed", error=str(e))

        try:
            await asyncio.wait_for(stop_event.wait(), timeout=interval_seconds)
        except asyncio.TimeoutError:
            pass

    logger.info("retention_loop_stopped")

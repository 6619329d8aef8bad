# SPDX-License-Identifier: LGPL-2.1-only
# Copyright (c) 2026 Akshat Kotpalliwar (alias IntegerAlex)

"""
Snapvault FastAPI Integration - Admin API and lifecycle for FastAPI apps.

This module provides:
- Lifespan management (startup/shutdown)
- Protected admin endpoints for configs, runs and results
- Cron-scheduled backups (APScheduler) and the background retention sweep
- Health checks
"""

import asyncio
import os
from contextlib import asynccontextmanager
from dataclasses import asdict
from datetime import datetime, UTC
from typing import Any, Awaitable, TypeVar

import structlog
from fastapi import Depends, FastAPI, HTTPException
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from pydantic import BaseModel, Field

from snapvault.backup.retention import run_periodic_sweep
from snapvault.config import BackupConfig, CompressionCodec, RestoreConfig, ServiceSettings
from snapvault.core import (
    ServiceState,
    add_config,
    execute_backup,
    execute_restore,
    get_backup_status,
    get_metrics,
    get_restore_status,
    initialize_service_state,
    list_backups,
    list_configs,
    list_restores,
    remove_config,
    shutdown_service_state,
    sweep,
)
from snapvault.exceptions import (
    BackupNotFound,
    ChecksumMismatch,
    ConfigNotFound,
    ConfigurationError,
    SnapVaultError,
    StorageFailure,
    UnsupportedBackupType,
)

logger = structlog.get_logger()

T = TypeVar("T")

# Security
security = HTTPBearer(auto_error=False)

# Crontab equivalents of the macros accepted by BackupConfig
_CRON_MACROS = {
    "@yearly": "0 0 1 1 *",
    "@annually": "0 0 1 1 *",
    "@monthly": "0 0 1 * *",
    "@weekly": "0 0 * * 0",
    "@daily": "0 0 * * *",
    "@midnight": "0 0 * * *",
    "@hourly": "0 * * * *",
}


class BackupConfigIn(BaseModel):
    """Request body for registering a backup config."""

    id: str
    name: str | None = None
    type: str
    destination: str
    schedule: str = "0 2 * * *"
    retention_days: int = Field(default=30, ge=0)
    encryption_enabled: bool = False
    compression_enabled: bool = False
    compression_codec: CompressionCodec = CompressionCodec.GZIP


class RestoreIn(BaseModel):
    """Request body for a restore run."""

    backup_id: str
    target: str = ""
    dry_run: bool = False
    overwrite: bool = False


def _status_for(error: SnapVaultError) -> int:
    if isinstance(error, (ConfigNotFound, BackupNotFound)):
        return 404
    if isinstance(error, ChecksumMismatch):
        return 409
    if isinstance(error, (ConfigurationError, UnsupportedBackupType)):
        return 422
    if isinstance(error, StorageFailure):
        return 502
    return 500


async def _guarded(operation: Awaitable[T]) -> T:
    """Await an operation, mapping taxonomy errors to HTTP errors."""
    try:
        return await operation
    except SnapVaultError as e:
        status_code = _status_for(e)
        logger.warning(
            "admin_request_failed",
            error_type=type(e).__name__,
            status_code=status_code,
            error=e.message,
        )
        raise HTTPException(
            status_code=status_code,
            detail={
                "error": type(e).__name__,
                "message": e.message,
                "details": e.details,
            },
        ) from e


async def _build_and_add(state: ServiceState, values: dict) -> BackupConfig:
    return await add_config(state, BackupConfig(**values))


def _config_to_dict(config: BackupConfig) -> dict:
    data = asdict(config)
    data["type"] = config.type.value
    data["compression_codec"] = config.compression_codec.value
    return data


async def verify_api_key(
    credentials: HTTPAuthorizationCredentials | None = Depends(security),
) -> bool:
    """
    Verify API key from Authorization header.

    The API key is read from the SNAPVAULT_ADMIN_API_KEY environment variable.
    Requests must include: Authorization: Bearer <api_key>

    Raises:
        HTTPException: If API key is missing or invalid
    """
    api_key = os.getenv("SNAPVAULT_ADMIN_API_KEY")

    if not api_key:
        raise HTTPException(
            status_code=500,
            detail="SNAPVAULT_ADMIN_API_KEY environment variable not set",
        )

    if not credentials:
        raise HTTPException(
            status_code=401,
            detail="Authorization header required",
        )

    if credentials.credentials != api_key:
        raise HTTPException(
            status_code=403,
            detail="Invalid API key",
        )

    return True


def register_snapvault_routes(
    app: FastAPI,
    state: ServiceState,
    prefix: str = "/admin/backups",
    scheduler: Any = None,
) -> None:
    """
    Register snapvault admin endpoints on a FastAPI app.

    All endpoints require Bearer token authentication.

    Args:
        app: FastAPI application
        state: Runtime state
        prefix: URL prefix for endpoints (default: /admin/backups)
        scheduler: Running APScheduler scheduler; configs added or removed
            through the API are (un)scheduled on it
    """

    @app.get(f"{prefix}/configs", dependencies=[Depends(verify_api_key)])
    async def get_configs() -> list:
        """List registered backup configs."""
        return [_config_to_dict(c) for c in await list_configs(state)]

    @app.post(f"{prefix}/configs", status_code=201, dependencies=[Depends(verify_api_key)])
    async def create_config(body: BackupConfigIn) -> dict:
        """
        Register a backup config, replacing any config with the same id.
        """
        values = body.model_dump()
        values["name"] = values["name"] or values["id"]
        config = await _guarded(_build_and_add(state, values))
        if scheduler is not None:
            schedule_backup_job(scheduler, state, config)
        return _config_to_dict(config)

    @app.delete(f"{prefix}/configs/{{config_id}}", dependencies=[Depends(verify_api_key)])
    async def delete_config(config_id: str) -> dict:
        """
        Remove a backup config. Recorded results are kept.
        """
        removed = await remove_config(state, config_id)
        if scheduler is not None:
            unschedule_backup_job(scheduler, config_id)
        return {"config_id": config_id, "removed": removed}

    @app.post(f"{prefix}/run/{{config_id}}", dependencies=[Depends(verify_api_key)])
    async def run_backup(config_id: str) -> dict:
        """
        Run one backup of a registered config now.
        """
        result = await _guarded(execute_backup(state, config_id))
        return result.to_dict()

    @app.post(f"{prefix}/restore", dependencies=[Depends(verify_api_key)])
    async def run_restore(body: RestoreIn) -> dict:
        """
        Restore a successful backup.

        With dry_run the backup is retrieved and verified but not applied.
        """
        restore_config = RestoreConfig(
            backup_id=body.backup_id,
            target=body.target,
            dry_run=body.dry_run,
            overwrite=body.overwrite,
        )
        result = await _guarded(execute_restore(state, restore_config))
        return result.to_dict()

    @app.post(f"{prefix}/sweep", dependencies=[Depends(verify_api_key)])
    async def run_sweep() -> dict:
        """
        Run one retention pass now.
        """
        report = await _guarded(sweep(state))
        return asdict(report)

    @app.get(f"{prefix}/results", dependencies=[Depends(verify_api_key)])
    async def get_results(config_id: str | None = None) -> list:
        """
        List backup results, oldest first.

        Args:
            config_id: Only results of this config
        """
        return [r.to_dict() for r in await list_backups(state, config_id)]

    @app.get(f"{prefix}/results/{{backup_id}}", dependencies=[Depends(verify_api_key)])
    async def get_result(backup_id: str) -> dict:
        result = await get_backup_status(state, backup_id)
        if result is None:
            raise HTTPException(status_code=404, detail=f"Backup not found: {backup_id}")
        return result.to_dict()

    @app.get(f"{prefix}/restores", dependencies=[Depends(verify_api_key)])
    async def get_restores() -> list:
        return [r.to_dict() for r in await list_restores(state)]

    @app.get(f"{prefix}/restores/{{restore_id}}", dependencies=[Depends(verify_api_key)])
    async def get_restore(restore_id: str) -> dict:
        result = await get_restore_status(state, restore_id)
        if result is None:
            raise HTTPException(status_code=404, detail=f"Restore not found: {restore_id}")
        return result.to_dict()

    @app.get(f"{prefix}/health", dependencies=[Depends(verify_api_key)])
    async def health_check() -> dict:
        """
        Health check endpoint.

        Verifies the registry and every S3 destination in use.
        """
        registry_ok = True
        registry_error = None
        metrics = None
        try:
            metrics = await get_metrics(state)
        except SnapVaultError as e:
            registry_ok = False
            registry_error = str(e)

        storage: dict = {}
        for name, gateway in list(state["gateways"].items()):
            ping = getattr(gateway, "ping", None)
            if ping is None:
                storage[name] = {"reachable": True, "error": None}
                continue
            try:
                await asyncio.wait_for(ping(), timeout=state["settings"].storage_timeout_seconds)
                storage[name] = {"reachable": True, "error": None}
            except Exception as e:
                storage[name] = {"reachable": False, "error": str(e)}

        storage_ok = all(s["reachable"] for s in storage.values())

        status = "healthy"
        if not registry_ok or not storage_ok:
            status = "degraded"
        if not registry_ok and storage and not storage_ok:
            status = "unhealthy"

        return {
            "status": status,
            "registry_accessible": registry_ok,
            "registry_error": registry_error,
            "storage": storage,
            "metrics": (
                {
                    **asdict(metrics),
                    "last_backup_at": (
                        metrics.last_backup_at.isoformat() if metrics.last_backup_at else None
                    ),
                }
                if metrics
                else None
            ),
            "timestamp": datetime.now(UTC).isoformat(),
        }


def _job_id(config_id: str) -> str:
    return f"snapvault_backup:{config_id}"


def schedule_backup_job(scheduler: Any, state: ServiceState, config: BackupConfig) -> bool:
    """
    Schedule a config's backups on its cron expression.

    Returns:
        False if the expression cannot be scheduled (the config stays registered)
    """
    from apscheduler.triggers.cron import CronTrigger

    expression = _CRON_MACROS.get(config.schedule.strip(), config.schedule)
    try:
        trigger = CronTrigger.from_crontab(expression, timezone=UTC)
    except ValueError as e:
        logger.warning("backup_schedule_invalid", config_id=config.id, schedule=config.schedule, error=str(e))
        return False

    config_id = config.id

    async def scheduled_backup():
        """Run one scheduled backup."""
        logger.info("scheduled_backup_starting", config_id=config_id)
        try:
            result = await execute_backup(state, config_id)
            logger.info("scheduled_backup_completed", config_id=config_id, backup_id=result.id)
        except SnapVaultError as e:
            logger.error("scheduled_backup_failed", config_id=config_id, error=str(e))

    scheduler.add_job(
        scheduled_backup,
        trigger=trigger,
        id=_job_id(config_id),
        replace_existing=True,
    )
    return True


def unschedule_backup_job(scheduler: Any, config_id: str) -> None:
    from apscheduler.jobstores.base import JobLookupError

    try:
        scheduler.remove_job(_job_id(config_id))
    except JobLookupError:
        pass


async def _start_background_tasks(app: FastAPI, state: ServiceState, schedule_backups: bool):
    """Start the retention loop and, if requested, the backup scheduler."""
    stop_event = asyncio.Event()
    app.state.snapvault_sweep_stop = stop_event
    app.state.snapvault_sweep_task = asyncio.create_task(
        run_periodic_sweep(state, state["settings"].sweep_interval_seconds, stop_event)
    )

    scheduler = None
    if schedule_backups:
        from apscheduler.schedulers.asyncio import AsyncIOScheduler

        scheduler = AsyncIOScheduler(timezone=UTC)
        for config in await list_configs(state):
            schedule_backup_job(scheduler, state, config)
        scheduler.start()

        logger.info("scheduler_started", jobs=len(scheduler.get_jobs()))

    app.state.snapvault_scheduler = scheduler
    return scheduler


async def _stop_background_tasks(app: FastAPI) -> None:
    scheduler = getattr(app.state, "snapvault_scheduler", None)
    if scheduler is not None:
        scheduler.shutdown(wait=False)

    stop_event = getattr(app.state, "snapvault_sweep_stop", None)
    task = getattr(app.state, "snapvault_sweep_task", None)
    if stop_event is not None:
        stop_event.set()
    if task is not None:
        await task


def setup_snapvault_plugin(
    app: FastAPI,
    settings: ServiceSettings,
    prefix: str = "/admin/backups",
    *,
    schedule_backups: bool = True,
    **collaborators: Any,
) -> None:
    """
    Set up snapvault with startup/shutdown events.

    This is the main entry point for integrating snapvault with a FastAPI app.
    It sets up:
    - Startup/shutdown lifecycle events
    - Admin endpoints
    - The retention sweep loop and scheduled backups

    Args:
        app: FastAPI application
        settings: Service settings
        prefix: URL prefix for admin endpoints
        schedule_backups: Run registered configs on their cron schedules
        **collaborators: Passed to initialize_service_state (database,
            kv_client, apply_handler, ...)
    """
    app.state.snapvault_settings = settings
    app.state.snapvault_state = None

    @app.on_event("startup")
    async def startup():
        """Initialize snapvault on app startup."""
        logger.info("snapvault_plugin_starting")

        state = await initialize_service_state(settings, **collaborators)
        app.state.snapvault_state = state

        scheduler = await _start_background_tasks(app, state, schedule_backups)
        register_snapvault_routes(app, state, prefix, scheduler)

        logger.info("snapvault_plugin_started")

    @app.on_event("shutdown")
    async def shutdown():
        """Cleanup snapvault on app shutdown."""
        logger.info("snapvault_plugin_stopping")

        await _stop_background_tasks(app)
        state = app.state.snapvault_state
        if state:
            await shutdown_service_state(state)

        logger.info("snapvault_plugin_stopped")


@asynccontextmanager
async def snapvault_lifespan(
    app: FastAPI,
    settings: ServiceSettings,
    prefix: str = "/admin/backups",
    *,
    schedule_backups: bool = True,
    **collaborators: Any,
):
    """
    Lifespan context manager for FastAPI.

    Use this instead of setup_snapvault_plugin if you prefer the
    lifespan pattern:

        app = FastAPI(lifespan=lambda app: snapvault_lifespan(app, settings))
    """
    logger.info("snapvault_lifespan_starting")

    state = await initialize_service_state(settings, **collaborators)
    app.state.snapvault_state = state
    app.state.snapvault_settings = settings

    scheduler = await _start_background_tasks(app, state, schedule_backups)
    register_snapvault_routes(app, state, prefix, scheduler)

    logger.info("snapvault_lifespan_started")

    try:
        yield
    finally:
        logger.info("snapvault_lifespan_stopping")
        await _stop_background_tasks(app)
        await shutdown_service_state(state)
        logger.info("snapvault_lifespan_stopped")


def get_snapvault_state(app: FastAPI) -> ServiceState:
    """
    Get snapvault state from a FastAPI app.

    Useful for accessing state in custom endpoints.

    Raises:
        RuntimeError: If snapvault is not initialized
    """
    state = getattr(app.state, "snapvault_state", None)
    if not state:
        raise RuntimeError("Snapvault not initialized. Call setup_snapvault_plugin first.")
    return state

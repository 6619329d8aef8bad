# SPDX-License-Identifier: LGPL-2.1-only
# Copyright (c) 2026 Akshat Kotpalliwar (alias IntegerAlex)

"""
Snapvault Core - Service state and the exposed backup/restore surface.

Every operation is a module-level async function taking the ServiceState
produced by initialize_service_state(). The state owns the registry, the key
manager, the storage gateways and the capture collaborators.
"""

import asyncio
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Awaitable, Callable, Dict, List, Mapping, TypedDict, TypeVar

import structlog

from snapvault.config import (
    BackupConfig,
    KeyStoreBackend,
    RegistryBackend,
    RestoreConfig,
    ServiceSettings,
)
from snapvault.exceptions import SnapVaultError, StorageFailure
from snapvault.pipeline.keys import KeyManager
from snapvault.registry import BackupResult, Registry, RestoreResult
from snapvault.storage import StorageGateway, create_storage_gateway, parse_destination

logger = structlog.get_logger()

T = TypeVar("T")


class ServiceState(TypedDict):
    """Runtime state for backup and restore operations."""

    settings: ServiceSettings
    registry: Registry
    key_manager: KeyManager
    gateway_factory: Callable[[str], StorageGateway]
    gateways: Dict[str, StorageGateway]  # keyed by scheme://root
    database: Any  # fetch()-capable connection for database captures
    kv_client: Any  # redis asyncio client for kv-store captures
    environ: Mapping[str, str] | None  # environment for secrets captures
    apply_handler: Any  # ApplyHandler used by non-dry-run restores
    config_locks: Dict[str, asyncio.Lock]
    last_backup_at: datetime | None
    total_backups: int
    failed_backups: int
    total_restores: int
    failed_restores: int
    last_error: str | None


@dataclass
class ServiceMetrics:
    """Counters for backup and restore runs since startup."""

    total_backups: int
    failed_backups: int
    total_restores: int
    failed_restores: int
    last_backup_at: datetime | None
    last_error: str | None
    config_count: int
    stored_backups: int


async def initialize_service_state(
    settings: ServiceSettings,
    *,
    registry: Registry | None = None,
    key_manager: KeyManager | None = None,
    gateway_factory: Callable[[str], StorageGateway] | None = None,
    database: Any = None,
    kv_client: Any = None,
    environ: Mapping[str, str] | None = None,
    apply_handler: Any = None,
) -> ServiceState:
    """
    Initialize runtime state for backup operations.

    Collaborators not passed in are created from settings: the registry and
    key manager from their configured backends, gateways from destination URIs.

    Args:
        settings: Service settings
        registry: Registry to use instead of the configured backend
        key_manager: Key manager to use instead of the configured backend
        gateway_factory: Callable mapping a destination URI to a gateway
        database: Connection used by database captures
        kv_client: Client used by kv-store captures
        environ: Environment mapping used by secrets captures
        apply_handler: Collaborator receiving restored payloads

    Returns:
        Initialized ServiceState dictionary
    """
    if registry is None:
        registry = _create_registry(settings)
    await registry.init()

    if key_manager is None:
        key_manager = await _create_key_manager(settings)

    if gateway_factory is None:

        def gateway_factory(destination: str) -> StorageGateway:
            return create_storage_gateway(
                destination,
                region=settings.s3_region,
                endpoint_url=settings.s3_endpoint_url,
            )

    state = ServiceState(
        settings=settings,
        registry=registry,
        key_manager=key_manager,
        gateway_factory=gateway_factory,
        gateways={},
        database=database,
        kv_client=kv_client,
        environ=environ,
        apply_handler=apply_handler,
        config_locks={},
        last_backup_at=None,
        total_backups=0,
        failed_backups=0,
        total_restores=0,
        failed_restores=0,
        last_error=None,
    )

    if settings.register_defaults:
        from snapvault.env import default_backup_configs

        for config in default_backup_configs():
            if await registry.get_config(config.id) is None:
                await registry.put_config(config)

    logger.info(
        "service_state_initialized",
        registry_backend=settings.registry_backend.value,
        key_store_backend=settings.key_store_backend.value,
        retention_mode=settings.retention_mode.value,
    )

    return state


def _create_registry(settings: ServiceSettings) -> Registry:
    from snapvault.registry import MemoryRegistry, SqliteRegistry

    if settings.registry_backend == RegistryBackend.SQLITE:
        return SqliteRegistry(settings.registry_path)
    return MemoryRegistry()


async def _create_key_manager(settings: ServiceSettings) -> KeyManager:
    from snapvault.pipeline.keys import MemoryKeyManager, SqliteKeyManager

    if settings.key_store_backend == KeyStoreBackend.SQLITE:
        manager = SqliteKeyManager(settings.key_store_path, settings.master_key)
        await manager.init_db()
        return manager
    return MemoryKeyManager()


async def shutdown_service_state(state: ServiceState) -> None:
    """Close capture collaborators held by the state."""
    for name in ("database", "kv_client"):
        collaborator = state[name]
        if collaborator is None:
            continue
        close = getattr(collaborator, "aclose", None) or getattr(collaborator, "close", None)
        if close is None:
            continue
        try:
            outcome = close()
            if asyncio.iscoroutine(outcome):
                await outcome
        except Exception as e:
            logger.warning("collaborator_close_failed", collaborator=name, error=str(e))

    state["gateways"].clear()
    logger.info("service_state_shutdown_complete")


def resolve_gateway(state: ServiceState, destination: str) -> StorageGateway:
    """
    Return the gateway serving a destination, creating it on first use.

    Gateways are cached per scheme and root, so every prefix of one bucket
    shares a gateway.
    """
    dest = parse_destination(destination)
    cache_key = f"{dest.scheme}://{dest.root}"

    gateway = state["gateways"].get(cache_key)
    if gateway is None:
        gateway = state["gateway_factory"](destination)
        state["gateways"][cache_key] = gateway
    return gateway


async def storage_call(
    state: ServiceState,
    operation: Awaitable[T],
    *,
    action: str,
    key: str,
) -> T:
    """
    Await a gateway call under the storage timeout.

    Timeouts and errors outside the taxonomy become StorageFailure.
    """
    timeout = state["settings"].storage_timeout_seconds
    try:
        return await asyncio.wait_for(operation, timeout=timeout)
    except asyncio.TimeoutError:
        raise StorageFailure(
            f"Storage {action} timed out after {timeout}s",
            details={"action": action, "key": key},
        )
    except SnapVaultError:
        raise
    except Exception as e:
        raise StorageFailure(
            f"Storage {action} failed: {e}",
            details={"action": action, "key": key},
        )


def config_lock(state: ServiceState, config_id: str) -> asyncio.Lock:
    """Per-config lock used when single-flight backups are enabled."""
    lock = state["config_locks"].get(config_id)
    if lock is None:
        lock = asyncio.Lock()
        state["config_locks"][config_id] = lock
    return lock


# Exposed surface


async def add_config(state: ServiceState, config: BackupConfig) -> BackupConfig:
    """Register a backup config, replacing any config with the same id."""
    await state["registry"].put_config(config)
    logger.info("config_added", config_id=config.id, type=config.type.value)
    return config


async def remove_config(state: ServiceState, config_id: str) -> bool:
    """
    Remove a backup config. Idempotent.

    Results already recorded for the config are kept.

    Returns:
        True if a config was removed
    """
    removed = await state["registry"].delete_config(config_id)
    state["config_locks"].pop(config_id, None)
    logger.info("config_removed", config_id=config_id, existed=removed)
    return removed


async def get_config(state: ServiceState, config_id: str) -> BackupConfig | None:
    return await state["registry"].get_config(config_id)


async def list_configs(state: ServiceState) -> List[BackupConfig]:
    return await state["registry"].list_configs()


async def execute_backup(state: ServiceState, config_id: str) -> BackupResult:
    """Run one backup of a registered config. See snapvault.backup.manager."""
    from snapvault.backup.manager import execute_backup as _execute_backup

    return await _execute_backup(state, config_id)


async def execute_restore(state: ServiceState, restore_config: RestoreConfig) -> RestoreResult:
    """Restore one successful backup. See snapvault.backup.restore."""
    from snapvault.backup.restore import execute_restore as _execute_restore

    return await _execute_restore(state, restore_config)


async def get_backup_status(state: ServiceState, backup_id: str) -> BackupResult | None:
    """Return a copy of a backup result, or None for an unknown id."""
    return await state["registry"].get_backup(backup_id)


async def get_restore_status(state: ServiceState, restore_id: str) -> RestoreResult | None:
    """Return a copy of a restore result, or None for an unknown id."""
    return await state["registry"].get_restore(restore_id)


async def list_backups(state: ServiceState, config_id: str | None = None) -> List[BackupResult]:
    backups = await state["registry"].list_backups()
    if config_id is not None:
        backups = [b for b in backups if b.config_id == config_id]
    return sorted(backups, key=lambda b: b.start_time)


async def list_restores(state: ServiceState) -> List[RestoreResult]:
    restores = await state["registry"].list_restores()
    return sorted(restores, key=lambda r: r.start_time)


async def sweep(state: ServiceState):
    """Remove expired backups. See snapvault.backup.retention."""
    from snapvault.backup.retention import sweep as _sweep

    return await _sweep(state)


async def get_metrics(state: ServiceState) -> ServiceMetrics:
    """Get current backup/restore counters."""
    configs = await state["registry"].list_configs()
    backups = await state["registry"].list_backups()

    return ServiceMetrics(
        total_backups=state["total_backups"],
        failed_backups=state["failed_backups"],
        total_restores=state["total_restores"],
        failed_restores=state["failed_restores"],
        last_backup_at=state["last_backup_at"],
        last_error=state["last_error"],
        config_count=len(configs),
        stored_backups=sum(1 for b in backups if b.storage_key),
    )

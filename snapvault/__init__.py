# SPDX-License-Identifier: LGPL-2.1-only
# Copyright (c) 2026 Akshat Kotpalliwar (alias IntegerAlex)

"""
Snapvault - Async backup/restore pipeline.

Snapshots database schema metadata, key-value stores, configuration files
and redacted secret manifests; digests, compresses and encrypts them; stores
them on S3 or local disk; and restores them with two-stage verification.
"""

__version__ = "0.1.0"

# Configuration creation (user-facing API)
from snapvault.builder import create_backup_config, create_settings
from snapvault.config import BackupConfig, RestoreConfig, ServiceSettings

# Core functions
from snapvault.core import (
    initialize_service_state,
    shutdown_service_state,
    add_config,
    remove_config,
    list_configs,
    execute_backup,
    execute_restore,
    get_backup_status,
    get_restore_status,
    list_backups,
    list_restores,
    sweep,
    get_metrics,
)

# Environment-based configuration and stock jobs
from snapvault.env import create_settings_from_env, default_backup_configs

__all__ = [
    # Version
    "__version__",
    # Configuration
    "create_backup_config",
    "create_settings",
    "create_settings_from_env",
    "default_backup_configs",
    "BackupConfig",
    "RestoreConfig",
    "ServiceSettings",
    # Core orchestration functions
    "initialize_service_state",
    "shutdown_service_state",
    "add_config",
    "remove_config",
    "list_configs",
    "execute_backup",
    "execute_restore",
    "get_backup_status",
    "get_restore_status",
    "list_backups",
    "list_restores",
    "sweep",
    "get_metrics",
]

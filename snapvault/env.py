# SPDX-License-Identifier: LGPL-2.1-only
# Copyright (c) 2026 Akshat Kotpalliwar (alias IntegerAlex)

"""
Environment-based configuration helpers and the stock backup jobs.

These helpers are small wrappers around create_settings() and
create_backup_config(). They make it easy to:

- Build ServiceSettings from SNAPVAULT_* environment variables
- Register the four stock backup jobs
"""

from __future__ import annotations

import base64
import binascii
import os
from pathlib import Path
from typing import List

from snapvault.builder import create_backup_config, create_settings
from snapvault.config import (
    BackupConfig,
    KeyStoreBackend,
    RegistryBackend,
    RetentionMode,
    ServiceSettings,
)
from snapvault.errors import (
    explain_invalid_backend_env,
    explain_invalid_master_key_env,
    explain_invalid_number_env,
    explain_invalid_retention_days_env,
    explain_invalid_retention_mode_env,
    explain_missing_master_key_for_sqlite,
)
from snapvault.exceptions import ConfigurationError

DEFAULT_BACKUP_ROOT = "s3://snapvault-backups/"

_TRUE_VALUES = {"1", "true", "yes", "on"}


def _parse_bool(value: str | None) -> bool:
    return bool(value) and value.strip().lower() in _TRUE_VALUES


def _parse_list(value: str | None) -> List[str] | None:
    if value is None:
        return None
    return [item.strip() for item in value.split(",") if item.strip()]


def _parse_retention_days(value: str | None) -> int:
    if not value:
        return 30
    try:
        days = int(value)
    except (TypeError, ValueError) as exc:
        raise ConfigurationError(explain_invalid_retention_days_env(value)) from exc
    if days < 0:
        raise ConfigurationError(explain_invalid_retention_days_env(value))
    return days


def _parse_retention_mode(value: str | None) -> RetentionMode:
    if not value:
        return RetentionMode.PER_CONFIG
    try:
        return RetentionMode(value.lower())
    except ValueError as exc:
        raise ConfigurationError(explain_invalid_retention_mode_env(value)) from exc


def _parse_backend(name: str, value: str | None, enum_type):
    if not value:
        return enum_type("memory")
    try:
        return enum_type(value.lower())
    except ValueError as exc:
        raise ConfigurationError(explain_invalid_backend_env(name, value)) from exc


def _parse_positive_number(name: str, value: str | None, default: float) -> float:
    if not value:
        return default
    try:
        number = float(value)
    except ValueError as exc:
        raise ConfigurationError(explain_invalid_number_env(name, value)) from exc
    if number <= 0:
        raise ConfigurationError(explain_invalid_number_env(name, value))
    return number


def _parse_master_key(value: str | None) -> bytes | None:
    if not value:
        return None
    try:
        key = base64.urlsafe_b64decode(value.encode("ascii"))
    except (binascii.Error, ValueError) as exc:
        raise ConfigurationError(explain_invalid_master_key_env()) from exc
    if len(key) != 32:
        raise ConfigurationError(explain_invalid_master_key_env(len(key)))
    return key


def create_settings_from_env() -> ServiceSettings:
    """
    Create ServiceSettings from environment variables.

    Optional environment variables:
        - SNAPVAULT_REGISTRY: 'memory' | 'sqlite' (default: memory)
        - SNAPVAULT_REGISTRY_PATH: SQLite registry file
        - SNAPVAULT_KEY_STORE: 'memory' | 'sqlite' (default: memory)
        - SNAPVAULT_KEY_STORE_PATH: SQLite key store file
        - SNAPVAULT_MASTER_KEY: urlsafe base64 of 32 bytes (required for sqlite key store)
        - SNAPVAULT_RETENTION_MODE: 'per_config' | 'global' (default: per_config)
        - SNAPVAULT_DEFAULT_RETENTION_DAYS: Non-negative integer (default: 30)
        - SNAPVAULT_FILES_ALLOWLIST: Comma-separated relative paths
        - SNAPVAULT_FILES_BASE_DIR: Directory the allow-list is relative to
        - SNAPVAULT_SECRET_ENV_NAMES: Comma-separated variable names
        - SNAPVAULT_DATABASE_SCHEMA: Schema captured by database backups
        - AWS_REGION: AWS region (default: us-east-1)
        - SNAPVAULT_S3_ENDPOINT_URL: Custom S3 endpoint
        - SNAPVAULT_STORAGE_TIMEOUT: Seconds per storage call (default: 300)
        - SNAPVAULT_SWEEP_INTERVAL: Seconds between retention sweeps (default: 3600)
        - SNAPVAULT_SINGLE_FLIGHT: Serialize backups per config
        - SNAPVAULT_REGISTER_DEFAULTS: Register the stock backup jobs
    """
    registry_backend = _parse_backend(
        "SNAPVAULT_REGISTRY", os.getenv("SNAPVAULT_REGISTRY"), RegistryBackend
    )
    key_store_backend = _parse_backend(
        "SNAPVAULT_KEY_STORE", os.getenv("SNAPVAULT_KEY_STORE"), KeyStoreBackend
    )
    master_key = _parse_master_key(os.getenv("SNAPVAULT_MASTER_KEY"))

    if key_store_backend == KeyStoreBackend.SQLITE and master_key is None:
        raise ConfigurationError(explain_missing_master_key_for_sqlite())

    # Applied after create_settings(), which treats a path as a backend choice
    paths = {}
    registry_path = os.getenv("SNAPVAULT_REGISTRY_PATH")
    if registry_path:
        paths["registry_path"] = Path(registry_path)
    key_store_path = os.getenv("SNAPVAULT_KEY_STORE_PATH")
    if key_store_path:
        paths["key_store_path"] = Path(key_store_path)

    kwargs = {}

    allowlist = _parse_list(os.getenv("SNAPVAULT_FILES_ALLOWLIST"))
    if allowlist is not None:
        kwargs["files_allowlist"] = allowlist
    base_dir = os.getenv("SNAPVAULT_FILES_BASE_DIR")
    if base_dir:
        kwargs["files_base_dir"] = Path(base_dir)

    secret_names = _parse_list(os.getenv("SNAPVAULT_SECRET_ENV_NAMES"))
    if secret_names is not None:
        kwargs["secret_env_names"] = secret_names

    schema = os.getenv("SNAPVAULT_DATABASE_SCHEMA")
    if schema:
        kwargs["database_schema"] = schema

    settings = create_settings(
        retention_mode=_parse_retention_mode(os.getenv("SNAPVAULT_RETENTION_MODE")),
        default_retention_days=_parse_retention_days(
            os.getenv("SNAPVAULT_DEFAULT_RETENTION_DAYS")
        ),
        master_key=master_key,
        s3_region=os.getenv("AWS_REGION", "us-east-1"),
        s3_endpoint_url=os.getenv("SNAPVAULT_S3_ENDPOINT_URL") or None,
        storage_timeout_seconds=_parse_positive_number(
            "SNAPVAULT_STORAGE_TIMEOUT", os.getenv("SNAPVAULT_STORAGE_TIMEOUT"), 300.0
        ),
        sweep_interval_seconds=int(
            _parse_positive_number(
                "SNAPVAULT_SWEEP_INTERVAL", os.getenv("SNAPVAULT_SWEEP_INTERVAL"), 3600
            )
        ),
        single_flight=_parse_bool(os.getenv("SNAPVAULT_SINGLE_FLIGHT")),
        register_defaults=_parse_bool(os.getenv("SNAPVAULT_REGISTER_DEFAULTS")),
        **kwargs,
    )

    # Paths alone don't select a backend; the explicit backend names do
    return settings.with_updates(
        registry_backend=registry_backend,
        key_store_backend=key_store_backend,
        **paths,
    )


def default_backup_configs(root: str | None = None) -> List[BackupConfig]:
    """
    The stock backup jobs.

    - db-daily: database schema at 02:00, kept 30 days, compressed + encrypted
    - redis-hourly: key-value store every hour, kept 7 days, compressed
    - files-weekly: config files Sunday 03:00, kept 90 days, compressed + encrypted
    - secrets-daily: secret manifest at 01:00, kept 365 days, encrypted

    Args:
        root: Destination root (default: SNAPVAULT_BACKUP_ROOT or
            s3://snapvault-backups/); each job stores under its own prefix
    """
    root = root or os.getenv("SNAPVAULT_BACKUP_ROOT") or DEFAULT_BACKUP_ROOT
    if not root.endswith("/"):
        root += "/"

    return [
        create_backup_config(
            "db-daily",
            "database",
            f"{root}database/",
            name="Daily Database Backup",
            schedule="0 2 * * *",
            retention_days=30,
            encryption=True,
            compression=True,
        ),
        create_backup_config(
            "redis-hourly",
            "kv-store",
            f"{root}redis/",
            name="Hourly Redis Backup",
            schedule="0 * * * *",
            retention_days=7,
            compression=True,
        ),
        create_backup_config(
            "files-weekly",
            "files",
            f"{root}files/",
            name="Weekly Files Backup",
            schedule="0 3 * * 0",
            retention_days=90,
            encryption=True,
            compression=True,
        ),
        create_backup_config(
            "secrets-daily",
            "secrets",
            f"{root}secrets/",
            name="Daily Secrets Backup",
            schedule="0 1 * * *",
            retention_days=365,
            encryption=True,
        ),
    ]

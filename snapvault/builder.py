# SPDX-License-Identifier: LGPL-2.1-only
# Copyright (c) 2026 Akshat Kotpalliwar (alias IntegerAlex)

"""
Snapvault Builder - Functional builder pattern for backup configs.

Each function takes a config dict and returns a new dict with the
modification applied (immutable updates). build_backup_config() validates
the dict into a frozen BackupConfig.
"""

from pathlib import Path
from typing import Any, Callable, Dict

from snapvault.config import (
    BackupConfig,
    BackupType,
    CompressionCodec,
    RetentionMode,
    ServiceSettings,
)
from snapvault.exceptions import ConfigurationError


# Type alias for builder functions
ConfigDict = Dict[str, Any]
BuilderFunc = Callable[[ConfigDict], ConfigDict]


def create_empty_backup_config() -> ConfigDict:
    """
    Create an initial backup config dictionary.

    Returns:
        Dict with default values for all BackupConfig fields
    """
    return {
        "id": "",
        "name": "",
        "type": None,
        "destination": "",
        "schedule": "0 2 * * *",
        "retention_days": 30,
        "encryption_enabled": False,
        "compression_enabled": False,
        "compression_codec": CompressionCodec.GZIP,
    }


def with_identity(config: ConfigDict, config_id: str, name: str | None = None) -> ConfigDict:
    """
    Set the config id and display name (name defaults to the id).
    """
    return {**config, "id": config_id, "name": name or config_id}


def with_type(config: ConfigDict, backup_type: BackupType | str) -> ConfigDict:
    """
    Set the resource type captured by the job.

    Args:
        config: Current configuration dictionary
        backup_type: 'database', 'kv-store', 'files' or 'secrets'

    Returns:
        New configuration dictionary with type set
    """
    return {**config, "type": BackupType(backup_type)}


def with_schedule(config: ConfigDict, schedule: str) -> ConfigDict:
    """
    Set the cron schedule, e.g. '0 2 * * *' for 02:00 daily.
    """
    return {**config, "schedule": schedule}


def retain_for_days(config: ConfigDict, days: int) -> ConfigDict:
    """
    Set how long backups of this job are kept.

    Args:
        config: Current configuration dictionary
        days: Retention window in days

    Returns:
        New configuration dictionary with retention set
    """
    if days < 0:
        raise ValueError(f"retention days must be >= 0, got {days}")
    return {**config, "retention_days": days}


def encrypted(config: ConfigDict) -> ConfigDict:
    """Enable AES-256-GCM encryption of stored blobs."""
    return {**config, "encryption_enabled": True}


def compressed(
    config: ConfigDict,
    codec: CompressionCodec | str = CompressionCodec.GZIP,
) -> ConfigDict:
    """
    Enable compression of stored blobs.

    Args:
        config: Current configuration dictionary
        codec: 'gzip' (default) or 'zstd'

    Returns:
        New configuration dictionary with compression enabled
    """
    return {
        **config,
        "compression_enabled": True,
        "compression_codec": CompressionCodec(codec),
    }


def to_destination(config: ConfigDict, destination: str) -> ConfigDict:
    """
    Set where blobs are stored.

    Args:
        config: Current configuration dictionary
        destination: s3://bucket/prefix/, file:///path/, a path, or memory://name/

    Returns:
        New configuration dictionary with destination set
    """
    return {**config, "destination": destination}


def build_backup_config(config_dict: ConfigDict) -> BackupConfig:
    """
    Validate and build an immutable BackupConfig.

    Raises:
        ConfigurationError: If validation fails
    """
    if not config_dict.get("id"):
        raise ConfigurationError("id is required")
    if config_dict.get("type") is None:
        raise ConfigurationError("type is required", details={"config_id": config_dict["id"]})

    return BackupConfig(**config_dict)


def pipe(*funcs: BuilderFunc) -> BuilderFunc:
    """
    Compose multiple builder functions into a single function.

        config = pipe(
            lambda c: with_identity(c, "db-daily"),
            lambda c: with_type(c, "database"),
            compressed,
        )(create_empty_backup_config())
    """

    def composed(config: ConfigDict) -> ConfigDict:
        result = config
        for func in funcs:
            result = func(result)
        return result

    return composed


def build_from_steps(*steps: BuilderFunc) -> BackupConfig:
    """
    Build a BackupConfig by applying builder functions to the defaults.

    Example:
        config = build_from_steps(
            lambda c: with_identity(c, "redis-hourly"),
            lambda c: with_type(c, "kv-store"),
            lambda c: to_destination(c, "s3://backups/redis/"),
            encrypted,
        )
    """
    return build_backup_config(pipe(*steps)(create_empty_backup_config()))


def create_backup_config(
    config_id: str,
    backup_type: BackupType | str,
    destination: str,
    *,
    name: str | None = None,
    schedule: str = "0 2 * * *",
    retention_days: int = 30,
    encryption: bool = False,
    compression: bool = False,
    codec: CompressionCodec | str = CompressionCodec.GZIP,
) -> BackupConfig:
    """
    Create a backup config from simple parameters.

    This is the recommended user-facing API for defining backup jobs.

    Args:
        config_id: Unique job id
        backup_type: 'database', 'kv-store', 'files' or 'secrets'
        destination: Where blobs are stored
        name: Display name (default: config_id)
        schedule: Cron expression for the external scheduler
        retention_days: Retention window in days (default: 30)
        encryption: Encrypt stored blobs
        compression: Compress stored blobs
        codec: Compression codec when compression is enabled

    Returns:
        Validated, immutable BackupConfig

    Example:
        config = create_backup_config(
            "db-daily",
            "database",
            "s3://company-backups/database/",
            retention_days=30,
            encryption=True,
            compression=True,
        )
    """
    config_dict = pipe(
        lambda c: with_identity(c, config_id, name),
        lambda c: with_type(c, backup_type),
        lambda c: with_schedule(c, schedule),
        lambda c: retain_for_days(c, retention_days),
        lambda c: to_destination(c, destination),
    )(create_empty_backup_config())

    if encryption:
        config_dict = encrypted(config_dict)
    if compression:
        config_dict = compressed(config_dict, codec)

    return build_backup_config(config_dict)


def create_settings(
    *,
    registry_path: str | Path | None = None,
    key_store_path: str | Path | None = None,
    master_key: bytes | None = None,
    retention_mode: RetentionMode | str = RetentionMode.PER_CONFIG,
    default_retention_days: int = 30,
    **kwargs: Any,
) -> ServiceSettings:
    """
    Create service settings from simple parameters.

    Passing registry_path selects the sqlite registry; passing
    key_store_path selects the sqlite key store (which needs master_key).
    Any other ServiceSettings field can be passed as a keyword.

    Example:
        settings = create_settings(
            registry_path="/var/lib/snapvault/registry.db",
            key_store_path="/var/lib/snapvault/keys.db",
            master_key=master_key,
        )
    """
    values: Dict[str, Any] = {
        "retention_mode": RetentionMode(retention_mode),
        "default_retention_days": default_retention_days,
        "master_key": master_key,
    }

    if registry_path:
        values["registry_backend"] = "sqlite"
        values["registry_path"] = Path(registry_path)

    if key_store_path:
        values["key_store_backend"] = "sqlite"
        values["key_store_path"] = Path(key_store_path)

    values.update(kwargs)
    return ServiceSettings(**values)

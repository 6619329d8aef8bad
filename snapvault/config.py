# SPDX-License-Identifier: LGPL-2.1-only
# Copyright (c) 2026 Akshat Kotpalliwar (alias IntegerAlex)

"""
Snapvault Configuration - Immutable configuration data structures.

BackupConfig describes one recurring backup job; ServiceSettings describes
the runtime that executes them. Both are frozen after creation and validate
every field up front, reporting all problems in a single error.
"""

from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import List
from urllib.parse import urlparse
import re


class BackupType(str, Enum):
    """Resource type captured by a backup job."""

    DATABASE = "database"
    KV_STORE = "kv-store"
    FILES = "files"
    SECRETS = "secrets"


class BackupStatus(str, Enum):
    """Lifecycle of a backup or restore run. SUCCESS and FAILED are terminal."""

    IN_PROGRESS = "in_progress"
    SUCCESS = "success"
    FAILED = "failed"


class CompressionCodec(str, Enum):
    """Compression codec applied when compression is enabled."""

    GZIP = "gzip"  # deflate stream
    ZSTD = "zstd"


class TransformFlags(str, Enum):
    """Which reversible transforms were applied to a stored blob."""

    NONE = "none"
    COMPRESSED = "compressed"
    ENCRYPTED = "encrypted"
    BOTH = "both"

    @classmethod
    def from_toggles(cls, compressed: bool, encrypted: bool) -> "TransformFlags":
        if compressed and encrypted:
            return cls.BOTH
        if compressed:
            return cls.COMPRESSED
        if encrypted:
            return cls.ENCRYPTED
        return cls.NONE

    @property
    def compressed(self) -> bool:
        return self in (TransformFlags.COMPRESSED, TransformFlags.BOTH)

    @property
    def encrypted(self) -> bool:
        return self in (TransformFlags.ENCRYPTED, TransformFlags.BOTH)


class RetentionMode(str, Enum):
    """How the retention sweeper picks the cutoff for each backup."""

    PER_CONFIG = "per_config"  # retention_days of the originating config
    GLOBAL = "global"  # one window for every backup


class RegistryBackend(str, Enum):
    """Where configs and run results are kept."""

    MEMORY = "memory"
    SQLITE = "sqlite"


class KeyStoreBackend(str, Enum):
    """Where encryption data keys are kept."""

    MEMORY = "memory"
    SQLITE = "sqlite"


DESTINATION_SCHEMES = {"s3", "file", "memory", ""}

DEFAULT_FILES_ALLOWLIST = [
    "pyproject.toml",
    "requirements.txt",
    "setup.cfg",
    "alembic.ini",
    "logging.ini",
    "docker-compose.yml",
]

DEFAULT_SECRET_ENV_NAMES = [
    "DATABASE_URL",
    "REDIS_URL",
    "AWS_ACCESS_KEY_ID",
    "AWS_SECRET_ACCESS_KEY",
    "SNAPVAULT_ADMIN_API_KEY",
    "SNAPVAULT_MASTER_KEY",
    "SENDGRID_API_KEY",
    "TWILIO_ACCOUNT_SID",
    "TWILIO_AUTH_TOKEN",
]

_CRON_MACROS = {
    "@yearly",
    "@annually",
    "@monthly",
    "@weekly",
    "@daily",
    "@midnight",
    "@hourly",
}
_CRON_FIELD = re.compile(r"^[0-9A-Za-z*/,\-?LW#]+$")


def _validate_schedule(schedule: str) -> bool:
    """
    Validate the shape of a cron expression.

    Only the shape is checked (five fields or a macro); interpretation
    belongs to whatever scheduler drives the job.
    """
    if not schedule or not isinstance(schedule, str):
        return False
    schedule = schedule.strip()
    if schedule in _CRON_MACROS:
        return True
    fields = schedule.split()
    if len(fields) != 5:
        return False
    return all(_CRON_FIELD.match(f) for f in fields)


def _validate_destination(destination: str) -> bool:
    """Validate a destination URI (s3://bucket/prefix, file:///path, memory://name, or a path)."""
    if not destination or not isinstance(destination, str):
        return False
    parsed = urlparse(destination)
    if parsed.scheme not in DESTINATION_SCHEMES:
        return False
    if parsed.scheme in ("s3", "memory") and not parsed.netloc:
        return False
    if parsed.scheme == "file" and not parsed.path:
        return False
    return True


@dataclass(frozen=True)
class BackupConfig:
    """
    Identity and policy for a recurring backup job.

    Deleting a config only stops future scheduling; results already
    recorded for it are kept.
    """

    id: str
    name: str
    type: BackupType
    destination: str

    # Cron expression, interpreted by an external scheduler
    schedule: str = "0 2 * * *"

    # Backups older than this are removed by the retention sweeper
    retention_days: int = 30

    encryption_enabled: bool = False
    compression_enabled: bool = False
    compression_codec: CompressionCodec = CompressionCodec.GZIP

    def __post_init__(self) -> None:
        """Validate configuration after creation."""
        errors: List[str] = []

        if not isinstance(self.id, str) or not self.id.strip():
            errors.append("id must be a non-empty string")

        if not isinstance(self.name, str) or not self.name.strip():
            errors.append("name must be a non-empty string")

        # Accept raw strings for enum fields
        try:
            object.__setattr__(self, "type", BackupType(self.type))
        except ValueError:
            errors.append(f"Invalid backup type: {self.type}")

        try:
            object.__setattr__(
                self, "compression_codec", CompressionCodec(self.compression_codec)
            )
        except ValueError:
            errors.append(f"Invalid compression codec: {self.compression_codec}")

        if not _validate_schedule(self.schedule):
            errors.append(f"Invalid schedule: {self.schedule!r}, expected a cron expression")

        if (
            isinstance(self.retention_days, bool)
            or not isinstance(self.retention_days, int)
            or self.retention_days < 0
        ):
            errors.append(
                f"retention_days must be a non-negative integer, got {self.retention_days!r}"
            )

        if not _validate_destination(self.destination):
            errors.append(f"Invalid destination: {self.destination!r}")

        if errors:
            from snapvault.exceptions import ConfigurationError

            raise ConfigurationError(
                "Backup configuration validation failed",
                details={"errors": errors},
            )

    @property
    def transform(self) -> TransformFlags:
        """Transform variant this config produces."""
        return TransformFlags.from_toggles(
            self.compression_enabled, self.encryption_enabled
        )

    def with_updates(self, **kwargs) -> "BackupConfig":
        """
        Create a new config with updated values.

        Since the config is frozen, this creates a new instance.
        """
        from dataclasses import asdict

        current = asdict(self)
        current.update(kwargs)
        return BackupConfig(**current)


@dataclass(frozen=True)
class RestoreConfig:
    """Input for one restore run. Not persisted."""

    backup_id: str

    # Destination descriptor handed to the apply collaborator
    target: str = ""

    # Verify only; the apply collaborator is never called
    dry_run: bool = False

    # Passed through to the apply collaborator
    overwrite: bool = False


@dataclass(frozen=True)
class ServiceSettings:
    """
    Immutable runtime settings for the backup service.

    Frozen so that concurrently running backups always observe the same
    settings.
    """

    registry_backend: RegistryBackend = RegistryBackend.MEMORY
    registry_path: Path = field(default_factory=lambda: Path("./snapvault_data/registry.db"))

    key_store_backend: KeyStoreBackend = KeyStoreBackend.MEMORY
    key_store_path: Path = field(default_factory=lambda: Path("./snapvault_data/keys.db"))

    # 32-byte key encrypting stored data keys (required for the sqlite key store)
    master_key: bytes | None = None

    # Config files captured by "files" backups, relative to files_base_dir
    files_allowlist: List[str] = field(default_factory=lambda: list(DEFAULT_FILES_ALLOWLIST))
    files_base_dir: Path = field(default_factory=lambda: Path("."))

    # Environment variables recorded (as presence markers) by "secrets" backups
    secret_env_names: List[str] = field(default_factory=lambda: list(DEFAULT_SECRET_ENV_NAMES))

    # Schema whose column metadata "database" backups capture
    database_schema: str = "public"

    retention_mode: RetentionMode = RetentionMode.PER_CONFIG

    # Window used in global mode, and for backups whose config was removed
    default_retention_days: int = 30

    # AWS region and optional custom endpoint for s3:// destinations
    s3_region: str = "us-east-1"
    s3_endpoint_url: str | None = None

    # Upper bound on any single storage gateway call
    storage_timeout_seconds: float = 300.0

    # Interval of the background retention sweep
    sweep_interval_seconds: int = 3600

    # At most one concurrent backup per config id
    single_flight: bool = False

    # Register the stock backup jobs on startup
    register_defaults: bool = False

    def __post_init__(self) -> None:
        """Validate settings after creation."""
        errors: List[str] = []

        try:
            object.__setattr__(self, "registry_backend", RegistryBackend(self.registry_backend))
        except ValueError:
            errors.append(f"Invalid registry backend: {self.registry_backend}")

        try:
            object.__setattr__(self, "key_store_backend", KeyStoreBackend(self.key_store_backend))
        except ValueError:
            errors.append(f"Invalid key store backend: {self.key_store_backend}")

        try:
            object.__setattr__(self, "retention_mode", RetentionMode(self.retention_mode))
        except ValueError:
            errors.append(f"Invalid retention mode: {self.retention_mode}")

        if self.master_key is not None and len(self.master_key) != 32:
            errors.append(f"master_key must be 32 bytes, got {len(self.master_key)}")

        if self.key_store_backend == KeyStoreBackend.SQLITE and self.master_key is None:
            errors.append("master_key required when key_store_backend is sqlite")

        if self.default_retention_days < 0:
            errors.append(
                f"default_retention_days must be >= 0, got {self.default_retention_days}"
            )

        if self.storage_timeout_seconds <= 0:
            errors.append(
                f"storage_timeout_seconds must be > 0, got {self.storage_timeout_seconds}"
            )

        if self.sweep_interval_seconds < 1:
            errors.append(
                f"sweep_interval_seconds must be >= 1, got {self.sweep_interval_seconds}"
            )

        if not self.database_schema:
            errors.append("database_schema must not be empty")

        if errors:
            from snapvault.exceptions import ConfigurationError

            raise ConfigurationError(
                "Service settings validation failed",
                details={"errors": errors},
            )

    def with_updates(self, **kwargs) -> "ServiceSettings":
        """Create new settings with updated values."""
        from dataclasses import replace

        return replace(self, **kwargs)

# SPDX-License-Identifier: LGPL-2.1-only
# Copyright (c) 2026 Akshat Kotpalliwar (alias IntegerAlex)

"""
Capture Adapters - Produce the raw snapshot for one resource type.
"""

import json
from typing import Any, Mapping, Protocol

from snapvault.config import BackupType, ServiceSettings
from snapvault.exceptions import CaptureFailure, UnsupportedBackupType


class CaptureAdapter(Protocol):
    """Protocol for snapshot producers."""

    async def capture(self) -> bytes:
        """
        Produce the raw snapshot payload.

        Raises:
            CaptureFailure: If the snapshot cannot be produced
        """
        ...


def serialize_snapshot(snapshot: Any) -> bytes:
    """Encode a snapshot as pretty-printed UTF-8 JSON."""
    return json.dumps(snapshot, indent=2, default=str).encode("utf-8")


def create_capture_adapter(
    backup_type: BackupType | str,
    settings: ServiceSettings,
    *,
    database: Any = None,
    kv_client: Any = None,
    environ: Mapping[str, str] | None = None,
) -> CaptureAdapter:
    """
    Create the capture adapter for a backup type.

    Args:
        backup_type: Resource type to capture
        settings: Service settings (allow-lists, schema)
        database: Read-only query collaborator for "database" backups
        kv_client: Key-value client for "kv-store" backups
        environ: Environment mapping for "secrets" backups (default: os.environ)

    Returns:
        A CaptureAdapter

    Raises:
        UnsupportedBackupType: If no adapter exists for backup_type
        CaptureFailure: If the adapter's collaborator is not configured
    """
    try:
        backup_type = BackupType(backup_type)
    except ValueError:
        raise UnsupportedBackupType(
            f"Unsupported backup type: {backup_type}",
            details={"type": str(backup_type)},
        )

    if backup_type == BackupType.DATABASE:
        from snapvault.capture.database import DatabaseCaptureAdapter

        if database is None:
            raise CaptureFailure("No database connection configured for database backups")
        return DatabaseCaptureAdapter(database, schema=settings.database_schema)

    elif backup_type == BackupType.KV_STORE:
        from snapvault.capture.kv import KVStoreCaptureAdapter

        if kv_client is None:
            raise CaptureFailure("No key-value client configured for kv-store backups")
        return KVStoreCaptureAdapter(kv_client)

    elif backup_type == BackupType.FILES:
        from snapvault.capture.files import FileCaptureAdapter

        return FileCaptureAdapter(settings.files_allowlist, base_dir=settings.files_base_dir)

    elif backup_type == BackupType.SECRETS:
        from snapvault.capture.secrets import SecretManifestCaptureAdapter

        return SecretManifestCaptureAdapter(settings.secret_env_names, environ=environ)

    raise UnsupportedBackupType(f"Unsupported backup type: {backup_type}")


__all__ = [
    "CaptureAdapter",
    "serialize_snapshot",
    "create_capture_adapter",
]

# SPDX-License-Identifier: LGPL-2.1-only
# Copyright (c) 2026 Akshat Kotpalliwar (alias IntegerAlex)

"""
Snapvault Exceptions - Error taxonomy for the backup/restore pipeline.

Every failure of a backup or restore run is recorded on the owning result
record and then re-raised as one of these exceptions.
"""


class SnapVaultError(Exception):
    """Base exception for all snapvault errors."""

    def __init__(self, message: str, details: dict | None = None):
        self.message = message
        self.details = details or {}
        super().__init__(message)

    def __str__(self) -> str:
        if self.details:
            return f"{self.message} | Details: {self.details}"
        return self.message


class ConfigurationError(SnapVaultError):
    """Raised when configuration is invalid."""

    pass


class ConfigNotFound(SnapVaultError):
    """Raised when a backup config id is not registered."""

    pass


class UnsupportedBackupType(SnapVaultError):
    """Raised when no capture adapter exists for a backup type."""

    pass


class BackupNotFound(SnapVaultError):
    """Raised when a backup id does not resolve to a restorable backup."""

    pass


class ChecksumMismatch(SnapVaultError):
    """Raised when a retrieved blob or payload fails digest verification."""

    pass


class CaptureFailure(SnapVaultError):
    """Raised when a capture adapter cannot produce a snapshot."""

    pass


class TransformFailure(SnapVaultError):
    """Raised when compression, encryption or their inverses fail."""

    pass


class KeyManagementError(TransformFailure):
    """Raised when a data key cannot be issued or looked up."""

    pass


class StorageFailure(SnapVaultError):
    """Raised when the storage gateway fails to store, retrieve or delete."""

    pass


class ApplyFailure(SnapVaultError):
    """Raised when the apply collaborator fails during a restore."""

    pass


class RegistryError(SnapVaultError):
    """Raised when registry operations fail."""

    pass

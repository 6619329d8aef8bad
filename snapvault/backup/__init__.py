# SPDX-License-Identifier: LGPL-2.1-only
# Copyright (c) 2026 Akshat Kotpalliwar (alias IntegerAlex)

"""
Backup Engine - Backup, restore and retention orchestration.
"""

from snapvault.backup.manager import (
    execute_backup,
    new_backup_id,
)

from snapvault.backup.restore import (
    execute_restore,
    new_restore_id,
    ApplyHandler,
    FileApplyHandler,
)

from snapvault.backup.retention import (
    sweep,
    run_periodic_sweep,
    retention_window_days,
    SweepReport,
)

__all__ = [
    # Backup
    "execute_backup",
    "new_backup_id",
    # Restore
    "execute_restore",
    "new_restore_id",
    "ApplyHandler",
    "FileApplyHandler",
    # Retention
    "sweep",
    "run_periodic_sweep",
    "retention_window_days",
    "SweepReport",
]

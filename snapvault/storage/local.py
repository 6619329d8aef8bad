# SPDX-License-Identifier: LGPL-2.1-only
# Copyright (c) 2026 Akshat Kotpalliwar (alias IntegerAlex)

"""
Local Storage Gateway - Blobs as files under a base directory.

Files are written atomically (write to temp, then rename) so a crashed
backup never leaves a partial blob under the final key.
"""

import os
from pathlib import Path

import aiofiles
import structlog

from snapvault.exceptions import StorageFailure

logger = structlog.get_logger()


class LocalStorageGateway:
    """Stores blobs in a directory tree."""

    def __init__(self, base_dir: Path) -> None:
        self.base_dir = Path(base_dir)

    def _path_for(self, key: str) -> Path:
        # Security: keys must stay inside base_dir
        if not key or key.startswith("/") or ".." in Path(key).parts:
            raise StorageFailure(
                f"Unsafe storage key: {key}",
                details={"key": key, "base_dir": str(self.base_dir)},
            )
        return self.base_dir / key

    async def store(self, key: str, data: bytes) -> None:
        path = self._path_for(key)
        temp_path = path.with_name(path.name + ".tmp")

        try:
            path.parent.mkdir(parents=True, exist_ok=True)

            async with aiofiles.open(temp_path, "wb") as f:
                await f.write(data)

            # Atomic on POSIX filesystems
            os.replace(temp_path, path)

        except Exception as e:
            raise StorageFailure(
                f"Failed to write backup blob: {e}",
                details={"key": key, "path": str(path)},
            )

        logger.debug("blob_stored", backend="local", path=str(path), size=len(data))

    async def retrieve(self, key: str) -> bytes:
        path = self._path_for(key)
        try:
            async with aiofiles.open(path, "rb") as f:
                return await f.read()
        except FileNotFoundError:
            raise StorageFailure(
                f"Backup blob not found: {path}",
                details={"key": key, "path": str(path)},
            )
        except Exception as e:
            raise StorageFailure(
                f"Failed to read backup blob: {e}",
                details={"key": key, "path": str(path)},
            )

    async def delete(self, key: str) -> None:
        path = self._path_for(key)
        try:
            path.unlink(missing_ok=True)
        except Exception as e:
            raise StorageFailure(
                f"Failed to delete backup blob: {e}",
                details={"key": key, "path": str(path)},
            )

        # Remove directories left empty below base_dir
        parent = path.parent
        while parent != self.base_dir and self.base_dir in parent.parents:
            if not parent.is_dir() or any(parent.iterdir()):
                break
            parent.rmdir()
            logger.debug("empty_blob_dir_removed", path=str(parent))
            parent = parent.parent

        logger.debug("blob_deleted", backend="local", path=str(path))

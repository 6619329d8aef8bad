# SPDX-License-Identifier: LGPL-2.1-only
# Copyright (c) 2026 Akshat Kotpalliwar (alias IntegerAlex)

"""
Files Capture - Snapshot an allow-list of configuration files.

Missing or unreadable files are skipped with a warning; the snapshot then
simply lacks them.
"""

from pathlib import Path
from typing import Dict, List

import aiofiles
import structlog

from snapvault.capture import serialize_snapshot

logger = structlog.get_logger()


class FileCaptureAdapter:
    """Captures the text of a fixed list of files."""

    def __init__(self, paths: List[str], base_dir: Path = Path(".")) -> None:
        self.paths = list(paths)
        self.base_dir = Path(base_dir)

    async def capture(self) -> bytes:
        archive: Dict[str, str] = {}

        for relative in self.paths:
            path = self.base_dir / relative
            try:
                async with aiofiles.open(path, "r", encoding="utf-8") as f:
                    archive[relative] = await f.read()
            except (OSError, UnicodeDecodeError) as e:
                logger.warning("capture_file_skipped", path=str(path), error=str(e))

        logger.info(
            "files_captured",
            captured=len(archive),
            skipped=len(self.paths) - len(archive),
        )

        return serialize_snapshot(archive)

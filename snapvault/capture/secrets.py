# SPDX-License-Identifier: LGPL-2.1-only
# Copyright (c) 2026 Akshat Kotpalliwar (alias IntegerAlex)

"""
Secrets Capture - Record which secret-bearing variables are set.

Only a redaction marker is captured for a present variable, null for an
absent one. Secret values never enter the payload.
"""

import os
from typing import Dict, List, Mapping

import structlog

from snapvault.capture import serialize_snapshot

logger = structlog.get_logger()

REDACTION_MARKER = "[REDACTED]"


class SecretManifestCaptureAdapter:
    """Captures presence markers for known secret variables."""

    def __init__(self, names: List[str], environ: Mapping[str, str] | None = None) -> None:
        self.names = list(names)
        self.environ = environ

    async def capture(self) -> bytes:
        environ = os.environ if self.environ is None else self.environ

        manifest: Dict[str, str | None] = {
            name: REDACTION_MARKER if environ.get(name) else None
            for name in self.names
        }

        logger.info(
            "secrets_captured",
            present=sum(1 for v in manifest.values() if v),
            total=len(manifest),
        )

        return serialize_snapshot(manifest)

# SPDX-License-Identifier: LGPL-2.1-only
# Copyright (c) 2026 Akshat Kotpalliwar (alias IntegerAlex)

"""
Database Capture - Snapshot relational schema metadata.

The adapter only needs an object with an async fetch(query, *args) method
returning mapping-like rows, which an asyncpg connection or pool provides.
"""

from typing import Any, Dict, List
from urllib.parse import urlparse

import structlog

from snapvault.capture import serialize_snapshot
from snapvault.exceptions import CaptureFailure

logger = structlog.get_logger()

SCHEMA_METADATA_QUERY = """
    SELECT
        table_name,
        column_name,
        data_type,
        is_nullable,
        column_default
    FROM information_schema.columns
    WHERE table_schema = $1
    ORDER BY table_name, ordinal_position
"""


class DatabaseCaptureAdapter:
    """Captures column metadata of one schema."""

    def __init__(self, connection: Any, schema: str = "public") -> None:
        self.connection = connection
        self.schema = schema

    async def capture(self) -> bytes:
        try:
            rows = await self.connection.fetch(SCHEMA_METADATA_QUERY, self.schema)
        except Exception as e:
            raise CaptureFailure(
                f"Schema metadata query failed: {e}",
                details={"schema": self.schema},
            )

        snapshot: List[Dict[str, Any]] = [dict(row) for row in rows]

        logger.info(
            "database_captured",
            schema=self.schema,
            columns=len(snapshot),
            tables=len({row.get("table_name") for row in snapshot}),
        )

        return serialize_snapshot(snapshot)


async def connect_database(connection_url: str) -> Any:
    """
    Open an asyncpg connection for database captures.

    Args:
        connection_url: PostgreSQL connection URL

    Returns:
        asyncpg connection
    """
    import asyncpg

    try:
        return await asyncpg.connect(connection_url)
    except Exception as e:
        raise CaptureFailure(
            f"Failed to connect to database: {e}",
            details={"connection_url": _mask_password(connection_url)},
        )


def _mask_password(url: str) -> str:
    """Mask the password in a connection URL."""
    parsed = urlparse(url)
    if parsed.password:
        return url.replace(f":{parsed.password}@", ":****@")
    return url

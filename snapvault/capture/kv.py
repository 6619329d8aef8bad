# SPDX-License-Identifier: LGPL-2.1-only
# Copyright (c) 2026 Akshat Kotpalliwar (alias IntegerAlex)

"""
Key-Value Capture - Dump every key of a Redis-compatible store.

Each key is recorded as {"type": ..., "value": ...}. Sorted sets keep their
scores as [member, score] pairs. Keys of other types are recorded with a
null value so the manifest still lists them.
"""

from typing import Any, Dict

import structlog

from snapvault.capture import serialize_snapshot
from snapvault.exceptions import CaptureFailure

logger = structlog.get_logger()


def _text(value: Any) -> Any:
    """Decode bytes returned by clients created with decode_responses=False."""
    if isinstance(value, bytes):
        return value.decode("utf-8", errors="backslashreplace")
    if isinstance(value, dict):
        return {_text(k): _text(v) for k, v in value.items()}
    if isinstance(value, (list, tuple, set)):
        items = [_text(v) for v in value]
        return sorted(items, key=str) if isinstance(value, set) else items
    return value


class KVStoreCaptureAdapter:
    """Captures type and value of every key."""

    def __init__(self, client: Any, match: str = "*", scan_count: int = 1000) -> None:
        self.client = client
        self.match = match
        self.scan_count = scan_count

    async def capture(self) -> bytes:
        snapshot: Dict[str, Dict[str, Any]] = {}

        try:
            async for raw_key in self.client.scan_iter(match=self.match, count=self.scan_count):
                key = _text(raw_key)
                key_type = _text(await self.client.type(raw_key))
                snapshot[key] = {
                    "type": key_type,
                    "value": await self._read_value(raw_key, key_type),
                }
        except CaptureFailure:
            raise
        except Exception as e:
            raise CaptureFailure(
                f"Key-value dump failed: {e}",
                details={"keys_captured": len(snapshot)},
            )

        logger.info("kv_store_captured", keys=len(snapshot))

        return serialize_snapshot(snapshot)

    async def _read_value(self, key: Any, key_type: str) -> Any:
        if key_type == "string":
            return _text(await self.client.get(key))
        if key_type == "hash":
            return _text(await self.client.hgetall(key))
        if key_type == "list":
            return _text(await self.client.lrange(key, 0, -1))
        if key_type == "set":
            return _text(set(await self.client.smembers(key)))
        if key_type == "zset":
            pairs = await self.client.zrange(key, 0, -1, withscores=True)
            return [[_text(member), score] for member, score in pairs]

        logger.debug("kv_key_type_skipped", key=_text(key), type=key_type)
        return None


def create_kv_client(redis_url: str) -> Any:
    """
    Create a redis asyncio client for kv-store captures.

    Args:
        redis_url: Redis connection URL

    Returns:
        redis.asyncio.Redis client
    """
    import redis.asyncio as aioredis

    return aioredis.Redis.from_url(redis_url, decode_responses=False)

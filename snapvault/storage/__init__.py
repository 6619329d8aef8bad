# SPDX-License-Identifier: LGPL-2.1-only
# Copyright (c) 2026 Akshat Kotpalliwar (alias IntegerAlex)

"""
Storage Gateway - Persist, retrieve and delete named blobs at a destination.

A destination URI selects the gateway:
- s3://bucket/prefix/    -> S3StorageGateway (aiobotocore)
- file:///var/backups/   -> LocalStorageGateway (aiofiles)
- /var/backups/          -> LocalStorageGateway
- memory://name/prefix/  -> MemoryStorageGateway (process-local)
"""

from dataclasses import dataclass
from typing import Protocol
from urllib.parse import urlparse

from snapvault.config import CompressionCodec, TransformFlags
from snapvault.exceptions import ConfigurationError


class StorageGateway(Protocol):
    """Protocol for blob storage backends."""

    async def store(self, key: str, data: bytes) -> None:
        """Persist data under key, replacing any existing blob."""
        ...

    async def retrieve(self, key: str) -> bytes:
        """Return the blob stored under key."""
        ...

    async def delete(self, key: str) -> None:
        """Delete the blob stored under key. Deleting a missing key is not an error."""
        ...


@dataclass(frozen=True)
class Destination:
    """A parsed destination URI."""

    scheme: str  # s3, file or memory
    root: str  # bucket, base directory or store name
    prefix: str  # key prefix inside root


def parse_destination(destination: str) -> Destination:
    """
    Parse a destination URI.

    Args:
        destination: Destination URI or filesystem path

    Returns:
        Parsed Destination
    """
    parsed = urlparse(destination)

    if parsed.scheme == "s3":
        if not parsed.netloc:
            raise ConfigurationError(f"S3 destination has no bucket: {destination}")
        return Destination("s3", parsed.netloc, _normalize_prefix(parsed.path))

    if parsed.scheme == "memory":
        if not parsed.netloc:
            raise ConfigurationError(f"Memory destination has no name: {destination}")
        return Destination("memory", parsed.netloc, _normalize_prefix(parsed.path))

    if parsed.scheme == "file":
        return Destination("file", parsed.path.rstrip("/") or "/", "")

    if parsed.scheme == "":
        return Destination("file", destination.rstrip("/") or "/", "")

    raise ConfigurationError(f"Unsupported destination scheme: {parsed.scheme}")


def _normalize_prefix(path: str) -> str:
    prefix = path.lstrip("/")
    if prefix and not prefix.endswith("/"):
        prefix += "/"
    return prefix


def blob_suffix(flags: TransformFlags, codec: CompressionCodec) -> str:
    """
    File suffix describing a blob's transforms, e.g. ".json.gz.enc".
    """
    flags = TransformFlags(flags)
    suffix = ".json"
    if flags.compressed:
        suffix += ".gz" if CompressionCodec(codec) == CompressionCodec.GZIP else ".zst"
    if flags.encrypted:
        suffix += ".enc"
    return suffix


def build_storage_key(
    destination: str,
    backup_id: str,
    flags: TransformFlags = TransformFlags.NONE,
    codec: CompressionCodec = CompressionCodec.GZIP,
) -> str:
    """
    Derive the storage key for a backup.

    Args:
        destination: Destination URI of the originating config
        backup_id: Backup id
        flags: Transforms applied to the blob
        codec: Compression codec

    Returns:
        Key relative to the gateway root
    """
    dest = parse_destination(destination)
    return f"{dest.prefix}{backup_id}{blob_suffix(flags, codec)}"


def create_storage_gateway(
    destination: str,
    *,
    region: str = "us-east-1",
    endpoint_url: str | None = None,
) -> StorageGateway:
    """
    Create the gateway serving a destination.

    Args:
        destination: Destination URI
        region: AWS region for S3 destinations
        endpoint_url: Custom S3 endpoint (MinIO, LocalStack)

    Returns:
        A StorageGateway bound to the destination root
    """
    dest = parse_destination(destination)

    if dest.scheme == "s3":
        from snapvault.storage.s3 import S3StorageGateway

        return S3StorageGateway(dest.root, region=region, endpoint_url=endpoint_url)

    if dest.scheme == "memory":
        from snapvault.storage.memory import MemoryStorageGateway

        return MemoryStorageGateway.named(dest.root)

    from pathlib import Path

    from snapvault.storage.local import LocalStorageGateway

    return LocalStorageGateway(Path(dest.root))


__all__ = [
    "StorageGateway",
    "Destination",
    "parse_destination",
    "blob_suffix",
    "build_storage_key",
    "create_storage_gateway",
]

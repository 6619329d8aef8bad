# SPDX-License-Identifier: LGPL-2.1-only
# Copyright (c) 2026 Akshat Kotpalliwar (alias IntegerAlex)

"""
Tests for destination parsing and storage gateways.
"""

from pathlib import Path
from unittest.mock import AsyncMock, MagicMock

import pytest
from botocore.exceptions import ClientError

from snapvault.config import CompressionCodec, TransformFlags
from snapvault.exceptions import ConfigurationError, StorageFailure
from snapvault.storage import (
    Destination,
    build_storage_key,
    create_storage_gateway,
    parse_destination,
)
from snapvault.storage.local import LocalStorageGateway
from snapvault.storage.memory import DELETED_LOG_SIZE, MemoryStorageGateway
from snapvault.storage.s3 import S3StorageGateway


# ============================================================================
# Destinations and keys
# ============================================================================

@pytest.mark.parametrize(
    "uri, expected",
    [
        ("s3://company-backups/database/", Destination("s3", "company-backups", "database/")),
        ("s3://company-backups/database", Destination("s3", "company-backups", "database/")),
        ("s3://company-backups", Destination("s3", "company-backups", "")),
        ("file:///var/backups/", Destination("file", "/var/backups", "")),
        ("/var/backups", Destination("file", "/var/backups", "")),
        ("memory://scratch/x/", Destination("memory", "scratch", "x/")),
    ],
)
def test_parse_destination(uri, expected):
    assert parse_destination(uri) == expected


def test_parse_destination_rejects_unknown_scheme():
    with pytest.raises(ConfigurationError):
        parse_destination("ftp://host/dir")


def test_storage_key_suffix_reflects_transforms():
    dest = "s3://company-backups/redis/"

    assert build_storage_key(dest, "backup-1") == "redis/backup-1.json"
    assert build_storage_key(dest, "backup-1", TransformFlags.COMPRESSED) == (
        "redis/backup-1.json.gz"
    )
    assert build_storage_key(
        dest, "backup-1", TransformFlags.BOTH, CompressionCodec.ZSTD
    ) == "redis/backup-1.json.zst.enc"
    assert build_storage_key("/var/backups", "backup-1", TransformFlags.ENCRYPTED) == (
        "backup-1.json.enc"
    )


def test_gateway_factory_dispatches_on_scheme(temp_dir: Path):
    assert isinstance(create_storage_gateway("s3://bucket/prefix/"), S3StorageGateway)
    assert isinstance(create_storage_gateway(str(temp_dir)), LocalStorageGateway)
    assert isinstance(create_storage_gateway("memory://shared/"), MemoryStorageGateway)


def test_memory_destinations_with_same_name_share_blobs():
    assert create_storage_gateway("memory://shared-name/a/") is create_storage_gateway(
        "memory://shared-name/b/"
    )


@pytest.mark.asyncio
async def test_memory_gateway_deleted_log_is_bounded():
    gateway = MemoryStorageGateway()

    for i in range(DELETED_LOG_SIZE + 5):
        await gateway.delete(f"backup-{i}.json")

    assert len(gateway.deleted) == DELETED_LOG_SIZE
    assert gateway.deleted[0] == "backup-5.json"
    assert gateway.deleted[-1] == f"backup-{DELETED_LOG_SIZE + 4}.json"


# ============================================================================
# Local filesystem
# ============================================================================

@pytest.mark.asyncio
async def test_local_gateway_store_retrieve_delete(temp_dir: Path):
    gateway = LocalStorageGateway(temp_dir)

    await gateway.store("database/backup-1.json.gz", b"blob")
    assert (temp_dir / "database" / "backup-1.json.gz").read_bytes() == b"blob"
    assert await gateway.retrieve("database/backup-1.json.gz") == b"blob"

    await gateway.delete("database/backup-1.json.gz")
    assert not (temp_dir / "database").exists()

    # Deleting again is not an error
    await gateway.delete("database/backup-1.json.gz")


@pytest.mark.asyncio
async def test_local_gateway_store_replaces_existing_blob(temp_dir: Path):
    gateway = LocalStorageGateway(temp_dir)

    await gateway.store("backup-1.json", b"old")
    await gateway.store("backup-1.json", b"new")

    assert await gateway.retrieve("backup-1.json") == b"new"
    assert sorted(p.name for p in temp_dir.iterdir()) == ["backup-1.json"]


@pytest.mark.asyncio
async def test_local_gateway_missing_blob(temp_dir: Path):
    with pytest.raises(StorageFailure, match="not found"):
        await LocalStorageGateway(temp_dir).retrieve("backup-404.json")


@pytest.mark.asyncio
@pytest.mark.parametrize("key", ["../escape.json", "/etc/passwd", ""])
async def test_local_gateway_rejects_unsafe_keys(temp_dir: Path, key: str):
    with pytest.raises(StorageFailure):
        await LocalStorageGateway(temp_dir / "root").store(key, b"x")


# ============================================================================
# S3
# ============================================================================

def _mock_session(client: AsyncMock) -> MagicMock:
    """aiobotocore-like session whose create_client() is an async context manager."""
    context = MagicMock()
    context.__aenter__ = AsyncMock(return_value=client)
    context.__aexit__ = AsyncMock(return_value=False)

    session = MagicMock()
    session.create_client.return_value = context
    return session


def _body(data: bytes) -> MagicMock:
    stream = MagicMock()
    stream.read = AsyncMock(return_value=data)
    body = MagicMock()
    body.__aenter__ = AsyncMock(return_value=stream)
    body.__aexit__ = AsyncMock(return_value=False)
    return body


@pytest.mark.asyncio
async def test_s3_gateway_round_trip():
    client = AsyncMock()
    client.get_object.return_value = {"Body": _body(b"blob")}
    session = _mock_session(client)
    gateway = S3StorageGateway("company-backups", region="eu-west-1", session=session)

    await gateway.store("db/backup-1.json", b"blob")
    assert await gateway.retrieve("db/backup-1.json") == b"blob"
    await gateway.delete("db/backup-1.json")

    client.put_object.assert_awaited_once_with(
        Bucket="company-backups", Key="db/backup-1.json", Body=b"blob"
    )
    client.delete_object.assert_awaited_once_with(
        Bucket="company-backups", Key="db/backup-1.json"
    )
    session.create_client.assert_called_with("s3", region_name="eu-west-1", endpoint_url=None)


@pytest.mark.asyncio
async def test_s3_gateway_missing_key_is_storage_failure():
    client = AsyncMock()
    client.get_object.side_effect = ClientError(
        {"Error": {"Code": "NoSuchKey", "Message": "missing"}}, "GetObject"
    )
    gateway = S3StorageGateway("company-backups", session=_mock_session(client))

    with pytest.raises(StorageFailure, match="not found"):
        await gateway.retrieve("db/backup-404.json")


@pytest.mark.asyncio
async def test_s3_gateway_upload_error_is_storage_failure():
    client = AsyncMock()
    client.put_object.side_effect = ClientError(
        {"Error": {"Code": "AccessDenied", "Message": "denied"}}, "PutObject"
    )
    gateway = S3StorageGateway("company-backups", session=_mock_session(client))

    with pytest.raises(StorageFailure) as exc_info:
        await gateway.store("db/backup-1.json", b"blob")

    assert exc_info.value.details == {"bucket": "company-backups", "key": "db/backup-1.json"}

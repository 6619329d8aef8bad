# SPDX-License-Identifier: LGPL-2.1-only
# Copyright (c) 2026 Akshat Kotpalliwar (alias IntegerAlex)

"""
Tests for the integrity, transform and key management stages.
"""

import gzip
import os
from pathlib import Path

import pytest

from snapvault.config import CompressionCodec, TransformFlags
from snapvault.exceptions import ChecksumMismatch, KeyManagementError, TransformFailure
from snapvault.pipeline import (
    MemoryKeyManager,
    SqliteKeyManager,
    apply_transform,
    compress_payload,
    compute_checksum,
    decompress_payload,
    decrypt_payload,
    encrypt_payload,
    reverse_transform,
    verify_checksum,
)

PAYLOAD = b'{"orders": [1, 2, 3], "status": "shipped"}' * 40


# ============================================================================
# Integrity
# ============================================================================

def test_checksum_is_deterministic_sha256_hex():
    digest = compute_checksum(PAYLOAD)

    assert digest == compute_checksum(PAYLOAD)
    assert len(digest) == 64
    assert digest == digest.lower()
    int(digest, 16)


def test_checksum_differs_for_different_payloads():
    assert compute_checksum(b"a") != compute_checksum(b"b")
    assert compute_checksum(b"") == (
        "e3b0c44298fc1c149afbf4c8996fb92427ae41e4649b934ca495991b7852b855"
    )


def test_verify_checksum_reports_stage_and_digests():
    with pytest.raises(ChecksumMismatch) as exc_info:
        verify_checksum(b"tampered", compute_checksum(b"original"), "blob")

    details = exc_info.value.details
    assert details["stage"] == "blob"
    assert details["actual"] == compute_checksum(b"tampered")


def test_verify_checksum_rejects_missing_digest():
    with pytest.raises(ChecksumMismatch):
        verify_checksum(PAYLOAD, "", "content")


# ============================================================================
# Compression
# ============================================================================

@pytest.mark.asyncio
async def test_gzip_output_is_a_standard_deflate_stream():
    compressed = await compress_payload(PAYLOAD, CompressionCodec.GZIP)

    assert len(compressed) < len(PAYLOAD)
    assert gzip.decompress(compressed) == PAYLOAD


@pytest.mark.asyncio
async def test_zstd_round_trip_of_large_payload_offloaded_to_pool():
    large = os.urandom(512) * 4096  # 2 MiB, above the offload threshold

    compressed = await compress_payload(large, CompressionCodec.ZSTD)
    assert await decompress_payload(compressed, CompressionCodec.ZSTD) == large


@pytest.mark.asyncio
async def test_decompressing_garbage_raises_transform_failure():
    with pytest.raises(TransformFailure):
        await decompress_payload(b"not compressed at all", CompressionCodec.GZIP)


# ============================================================================
# Encryption
# ============================================================================

def test_encrypted_blob_layout_is_nonce_ciphertext_tag():
    key = os.urandom(32)
    blob = encrypt_payload(PAYLOAD, key)

    assert len(blob) == 12 + len(PAYLOAD) + 16
    assert PAYLOAD not in blob
    assert decrypt_payload(blob, key) == PAYLOAD


def test_encryption_uses_fresh_nonce_per_call():
    key = os.urandom(32)
    assert encrypt_payload(PAYLOAD, key)[:12] != encrypt_payload(PAYLOAD, key)[:12]


def test_tampered_ciphertext_fails_authentication():
    key = os.urandom(32)
    blob = bytearray(encrypt_payload(PAYLOAD, key))
    blob[20] ^= 0xFF

    with pytest.raises(TransformFailure):
        decrypt_payload(bytes(blob), key)


def test_wrong_key_fails_authentication():
    blob = encrypt_payload(PAYLOAD, os.urandom(32))

    with pytest.raises(TransformFailure):
        decrypt_payload(blob, os.urandom(32))


def test_short_key_is_rejected():
    with pytest.raises(TransformFailure):
        encrypt_payload(PAYLOAD, b"short")


# ============================================================================
# Transform ordering
# ============================================================================

@pytest.mark.asyncio
@pytest.mark.parametrize("flags", list(TransformFlags))
async def test_reverse_transform_restores_payload_for_every_flag_variant(flags):
    key = os.urandom(32)

    blob = await apply_transform(PAYLOAD, flags, CompressionCodec.GZIP, key)
    assert await reverse_transform(blob, flags, CompressionCodec.GZIP, key) == PAYLOAD

    if flags == TransformFlags.NONE:
        assert blob == PAYLOAD
    if flags.encrypted:
        assert PAYLOAD not in blob


@pytest.mark.asyncio
async def test_compression_happens_before_encryption():
    key = os.urandom(32)
    blob = await apply_transform(PAYLOAD, TransformFlags.BOTH, CompressionCodec.GZIP, key)

    # Decrypting alone yields the compressed stream
    assert gzip.decompress(decrypt_payload(blob, key)) == PAYLOAD


@pytest.mark.asyncio
async def test_encryption_without_key_fails():
    with pytest.raises(TransformFailure):
        await apply_transform(PAYLOAD, TransformFlags.ENCRYPTED)


# ============================================================================
# Key management
# ============================================================================

@pytest.mark.asyncio
async def test_memory_key_manager_issues_distinct_keys():
    manager = MemoryKeyManager()

    key_id_1, key_1 = await manager.issue_key()
    key_id_2, key_2 = await manager.issue_key()

    assert key_id_1.startswith("key-")
    assert key_id_1 != key_id_2
    assert len(key_1) == 32 and key_1 != key_2
    assert await manager.lookup_key(key_id_1) == key_1


@pytest.mark.asyncio
async def test_memory_key_manager_unknown_key():
    with pytest.raises(KeyManagementError):
        await MemoryKeyManager().lookup_key("key-missing")


@pytest.mark.asyncio
async def test_memory_key_manager_delete_key_is_idempotent():
    manager = MemoryKeyManager()
    key_id, _ = await manager.issue_key()

    assert await manager.delete_key(key_id) is True
    assert await manager.delete_key(key_id) is False
    with pytest.raises(KeyManagementError):
        await manager.lookup_key(key_id)


@pytest.mark.asyncio
async def test_sqlite_key_manager_survives_restart(temp_dir: Path):
    master_key = os.urandom(32)
    db_path = temp_dir / "keys.db"

    first = SqliteKeyManager(db_path, master_key)
    await first.init_db()
    key_id, key = await first.issue_key()

    second = SqliteKeyManager(db_path, master_key)
    await second.init_db()
    assert await second.lookup_key(key_id) == key


@pytest.mark.asyncio
async def test_sqlite_key_manager_stores_keys_wrapped(temp_dir: Path):
    import aiosqlite

    db_path = temp_dir / "keys.db"
    manager = SqliteKeyManager(db_path, os.urandom(32))
    await manager.init_db()
    key_id, key = await manager.issue_key()

    async with aiosqlite.connect(db_path) as db:
        async with db.execute("SELECT wrapped_key FROM data_keys") as cursor:
            (wrapped,) = await cursor.fetchone()

    assert key not in wrapped


@pytest.mark.asyncio
async def test_sqlite_key_manager_wrong_master_key(temp_dir: Path):
    db_path = temp_dir / "keys.db"
    manager = SqliteKeyManager(db_path, os.urandom(32))
    await manager.init_db()
    key_id, _ = await manager.issue_key()

    with pytest.raises(KeyManagementError):
        await SqliteKeyManager(db_path, os.urandom(32)).lookup_key(key_id)


@pytest.mark.asyncio
async def test_key_management_error_is_a_transform_failure(temp_dir: Path):
    manager = SqliteKeyManager(temp_dir / "keys.db", os.urandom(32))
    await manager.init_db()

    with pytest.raises(TransformFailure):
        await manager.lookup_key("key-missing")


@pytest.mark.asyncio
async def test_sqlite_key_manager_delete_key(temp_dir: Path):
    master_key = os.urandom(32)
    db_path = temp_dir / "keys.db"
    manager = SqliteKeyManager(db_path, master_key)
    await manager.init_db()
    doomed, _ = await manager.issue_key()
    kept, kept_key = await manager.issue_key()

    assert await manager.delete_key(doomed) is True
    assert await manager.delete_key(doomed) is False

    reopened = SqliteKeyManager(db_path, master_key)
    await reopened.init_db()
    with pytest.raises(KeyManagementError):
        await reopened.lookup_key(doomed)
    assert await reopened.lookup_key(kept) == kept_key

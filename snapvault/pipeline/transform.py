# SPDX-License-Identifier: LGPL-2.1-only
# Copyright (c) 2026 Akshat Kotpalliwar (alias IntegerAlex)

"""
Snapvault Transform - Reversible compression and encryption stages.

Backups are transformed in a fixed order:
1. Compress (gzip deflate stream, or zstd)
2. Encrypt (AES-256-GCM with a per-backup data key)

Restores reverse it: decrypt, then decompress.

Encrypted blobs are laid out as nonce (12 bytes) || ciphertext || tag (16 bytes).
The data key is never part of the blob; it is issued and looked up through
a key manager (see snapvault.pipeline.keys).
"""

import asyncio
import gzip
import os
from concurrent.futures import ThreadPoolExecutor

import structlog
import zstandard as zstd
from cryptography.exceptions import InvalidTag
from cryptography.hazmat.primitives.ciphers.aead import AESGCM

from snapvault.config import CompressionCodec, TransformFlags
from snapvault.exceptions import TransformFailure

logger = structlog.get_logger()

# Thread pool for CPU-bound compression of large payloads
_executor = ThreadPoolExecutor(max_workers=4)

# Payloads larger than this are compressed off the event loop
OFFLOAD_THRESHOLD = 1024 * 1024

DEFAULT_GZIP_LEVEL = 6
DEFAULT_ZSTD_LEVEL = 19

# Associated data authenticated with every encrypted blob
ASSOCIATED_DATA = b"snapvault-backup"

NONCE_SIZE = 12
TAG_SIZE = 16
KEY_SIZE = 32


async def compress_payload(
    data: bytes,
    codec: CompressionCodec = CompressionCodec.GZIP,
) -> bytes:
    """
    Compress a payload.

    Args:
        data: Raw payload
        codec: Compression codec

    Returns:
        Compressed bytes
    """
    try:
        compressed = await _run(_compress_sync, data, CompressionCodec(codec))
    except Exception as e:
        raise TransformFailure(
            f"Compression failed: {e}",
            details={"codec": str(codec), "original_size": len(data)},
        )

    ratio = len(data) / len(compressed) if compressed else 0
    logger.debug(
        "compression_complete",
        codec=CompressionCodec(codec).value,
        original_size=len(data),
        compressed_size=len(compressed),
        compression_ratio=f"{ratio:.2f}x",
    )
    return compressed


async def decompress_payload(
    data: bytes,
    codec: CompressionCodec = CompressionCodec.GZIP,
) -> bytes:
    """
    Decompress a payload produced by compress_payload().

    Args:
        data: Compressed bytes
        codec: Codec the payload was compressed with

    Returns:
        Decompressed bytes
    """
    try:
        return await _run(_decompress_sync, data, CompressionCodec(codec))
    except Exception as e:
        raise TransformFailure(
            f"Decompression failed: {e}",
            details={"codec": str(codec), "compressed_size": len(data)},
        )


def encrypt_payload(data: bytes, key: bytes) -> bytes:
    """
    Encrypt a payload with AES-256-GCM.

    A fresh nonce is generated per call.

    Args:
        data: Plaintext payload
        key: 32-byte data key

    Returns:
        nonce || ciphertext || tag
    """
    if len(key) != KEY_SIZE:
        raise TransformFailure(
            "Encryption failed: data key must be 32 bytes",
            details={"key_size": len(key)},
        )

    nonce = os.urandom(NONCE_SIZE)
    try:
        # AESGCM appends the tag to the ciphertext
        sealed = AESGCM(key).encrypt(nonce, data, ASSOCIATED_DATA)
    except Exception as e:
        raise TransformFailure(f"Encryption failed: {e}")

    return nonce + sealed


def decrypt_payload(blob: bytes, key: bytes) -> bytes:
    """
    Decrypt a blob produced by encrypt_payload().

    Args:
        blob: nonce || ciphertext || tag
        key: 32-byte data key

    Returns:
        Plaintext payload

    Raises:
        TransformFailure: If the blob is truncated, the key is wrong, or the
            blob was tampered with
    """
    if len(blob) < NONCE_SIZE + TAG_SIZE:
        raise TransformFailure(
            "Decryption failed: blob too short",
            details={"blob_size": len(blob)},
        )
    if len(key) != KEY_SIZE:
        raise TransformFailure(
            "Decryption failed: data key must be 32 bytes",
            details={"key_size": len(key)},
        )

    nonce, sealed = blob[:NONCE_SIZE], blob[NONCE_SIZE:]
    try:
        return AESGCM(key).decrypt(nonce, sealed, ASSOCIATED_DATA)
    except InvalidTag:
        raise TransformFailure("Decryption failed: authentication tag mismatch")


async def apply_transform(
    data: bytes,
    flags: TransformFlags,
    codec: CompressionCodec = CompressionCodec.GZIP,
    key: bytes | None = None,
) -> bytes:
    """
    Apply the forward transform: compress, then encrypt.

    Args:
        data: Raw capture payload
        flags: Which stages to apply
        codec: Compression codec
        key: Data key, required when flags include encryption

    Returns:
        Blob ready for storage
    """
    flags = TransformFlags(flags)
    result = data

    if flags.compressed:
        result = await compress_payload(result, codec)

    if flags.encrypted:
        if key is None:
            raise TransformFailure("Encryption requested but no data key was provided")
        result = encrypt_payload(result, key)

    return result


async def reverse_transform(
    blob: bytes,
    flags: TransformFlags,
    codec: CompressionCodec = CompressionCodec.GZIP,
    key: bytes | None = None,
) -> bytes:
    """
    Reverse apply_transform(): decrypt, then decompress.

    Args:
        blob: Stored blob
        flags: Stages that were applied at backup time
        codec: Compression codec used at backup time
        key: Data key, required when flags include encryption

    Returns:
        Original capture payload
    """
    flags = TransformFlags(flags)
    result = blob

    if flags.encrypted:
        if key is None:
            raise TransformFailure("Blob is encrypted but no data key was provided")
        result = decrypt_payload(result, key)

    if flags.compressed:
        result = await decompress_payload(result, codec)

    return result


async def _run(func, data: bytes, codec: CompressionCodec) -> bytes:
    """Run a codec function, in the thread pool for large data."""
    if len(data) > OFFLOAD_THRESHOLD:
        loop = asyncio.get_running_loop()
        return await loop.run_in_executor(_executor, func, data, codec)
    return func(data, codec)


def _compress_sync(data: bytes, codec: CompressionCodec) -> bytes:
    """Synchronous compression."""
    if codec == CompressionCodec.ZSTD:
        return zstd.ZstdCompressor(level=DEFAULT_ZSTD_LEVEL).compress(data)
    # mtime=0 keeps the output deterministic
    return gzip.compress(data, compresslevel=DEFAULT_GZIP_LEVEL, mtime=0)


def _decompress_sync(data: bytes, codec: CompressionCodec) -> bytes:
    """Synchronous decompression."""
    if codec == CompressionCodec.ZSTD:
        return zstd.ZstdDecompressor().decompress(data)
    return gzip.decompress(data)

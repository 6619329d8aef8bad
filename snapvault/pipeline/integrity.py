# SPDX-License-Identifier: LGPL-2.1-only
# Copyright (c) 2026 Akshat Kotpalliwar (alias IntegerAlex)

"""
Snapvault Integrity - SHA-256 digests for payloads and stored blobs.
"""

import hashlib

from snapvault.exceptions import ChecksumMismatch


def compute_checksum(data: bytes) -> str:
    """
    Calculate the SHA-256 digest of a payload.

    Args:
        data: Data to hash

    Returns:
        Lowercase hex-encoded digest (64 characters)
    """
    return hashlib.sha256(data).hexdigest()


def verify_checksum(data: bytes, expected_hex: str, stage: str) -> str:
    """
    Verify data against an expected digest.

    Args:
        data: Data to hash
        expected_hex: Digest recorded at backup time
        stage: Which digest is being checked ("blob" or "content")

    Returns:
        The actual digest

    Raises:
        ChecksumMismatch: If the digests differ or no digest was recorded
    """
    actual_hex = compute_checksum(data)

    if not expected_hex or actual_hex != expected_hex.lower():
        raise ChecksumMismatch(
            f"Backup {stage} checksum verification failed",
            details={"stage": stage, "expected": expected_hex, "actual": actual_hex},
        )

    return actual_hex

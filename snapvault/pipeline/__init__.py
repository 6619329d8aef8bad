# SPDX-License-Identifier: LGPL-2.1-only
# Copyright (c) 2026 Akshat Kotpalliwar (alias IntegerAlex)

"""
Pipeline Stages - Integrity digests, reversible transforms and key management.
"""

from snapvault.pipeline.integrity import (
    compute_checksum,
    verify_checksum,
)

from snapvault.pipeline.transform import (
    compress_payload,
    decompress_payload,
    encrypt_payload,
    decrypt_payload,
    apply_transform,
    reverse_transform,
)

from snapvault.pipeline.keys import (
    KeyManager,
    MemoryKeyManager,
    SqliteKeyManager,
)

__all__ = [
    # Integrity
    "compute_checksum",
    "verify_checksum",
    # Transform
    "compress_payload",
    "decompress_payload",
    "encrypt_payload",
    "decrypt_payload",
    "apply_transform",
    "reverse_transform",
    # Keys
    "KeyManager",
    "MemoryKeyManager",
    "SqliteKeyManager",
]

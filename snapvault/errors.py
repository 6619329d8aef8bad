# SPDX-License-Identifier: LGPL-2.1-only
# Copyright (c) 2026 Akshat Kotpalliwar (alias IntegerAlex)

"""
Human-friendly error message helpers for snapvault.

These helpers centralize wording for common configuration errors so that
all modules present consistent, actionable messages.
"""


def explain_invalid_master_key_env(decoded_length: int | None = None) -> str:
    """
    Explain that SNAPVAULT_MASTER_KEY is not a usable key.

    The value itself is never echoed. decoded_length is None when the value
    is not valid base64.
    """

    if decoded_length is None:
        problem = "it is not valid urlsafe base64"
    else:
        problem = f"it decodes to {decoded_length} bytes"

    return (
        f"Invalid SNAPVAULT_MASTER_KEY value: {problem}. "
        "It must be 32 random bytes encoded as urlsafe base64, e.g. the output of "
        "base64.urlsafe_b64encode(os.urandom(32))."
    )


def explain_invalid_retention_days_env(value: str | None) -> str:
    """
    Explain that SNAPVAULT_DEFAULT_RETENTION_DAYS is invalid.
    """

    return (
        f"Invalid SNAPVAULT_DEFAULT_RETENTION_DAYS value: {value!r}. "
        "It must be a non-negative integer number of days."
    )


def explain_invalid_retention_mode_env(value: str | None) -> str:
    """
    Explain that SNAPVAULT_RETENTION_MODE is invalid.
    """

    return (
        f"Invalid SNAPVAULT_RETENTION_MODE value: {value!r}. "
        "Expected 'per_config' or 'global'."
    )


def explain_invalid_backend_env(name: str, value: str | None) -> str:
    """
    Explain that a registry or key store backend env is invalid.
    """

    return (
        f"Invalid {name} value: {value!r}. "
        "Expected 'memory' or 'sqlite'."
    )


def explain_invalid_number_env(name: str, value: str | None) -> str:
    """
    Explain that a numeric env value could not be parsed.
    """

    return (
        f"Invalid {name} value: {value!r}. "
        "It must be a positive number."
    )


def explain_missing_master_key_for_sqlite() -> str:
    """
    Explain that the sqlite key store needs a master key.
    """

    return (
        "SNAPVAULT_KEY_STORE=sqlite requires SNAPVAULT_MASTER_KEY. "
        "Data keys are stored wrapped with the master key and cannot be kept in clear."
    )

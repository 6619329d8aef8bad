# SPDX-License-Identifier: LGPL-2.1-only
# Copyright (c) 2026 Akshat Kotpalliwar (alias IntegerAlex)

"""
Framework Integrations - FastAPI admin API and lifecycle.
"""

from snapvault.integrations.fastapi import (
    setup_snapvault_plugin,
    snapvault_lifespan,
    register_snapvault_routes,
    verify_api_key,
)

__all__ = [
    "setup_snapvault_plugin",
    "snapvault_lifespan",
    "register_snapvault_routes",
    "verify_api_key",
]

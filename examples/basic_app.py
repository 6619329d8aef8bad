# SPDX-License-Identifier: LGPL-2.1-only
# Copyright (c) 2026 Akshat Kotpalliwar (alias IntegerAlex)

"""
Example FastAPI Application with Snapvault Integration.

This example shows how to add scheduled backups, restores and retention to
a FastAPI application, with the stock backup jobs plus one custom job.

Run with:
    uvicorn examples.basic_app:app --reload

Environment variables:
    AWS_ACCESS_KEY_ID: AWS access key
    AWS_SECRET_ACCESS_KEY: AWS secret key
    DATABASE_URL: PostgreSQL connection URL (database backups)
    REDIS_URL: Redis connection URL (kv-store backups)
    SNAPVAULT_ADMIN_API_KEY: API key for admin endpoints
    SNAPVAULT_MASTER_KEY: Master key for the sqlite key store
"""

import os
from contextlib import asynccontextmanager
from pathlib import Path

from fastapi import FastAPI

from snapvault.backup import FileApplyHandler
from snapvault.builder import (
    build_from_steps,
    compressed,
    encrypted,
    retain_for_days,
    to_destination,
    with_identity,
    with_schedule,
    with_type,
)
from snapvault.capture.database import connect_database
from snapvault.capture.kv import create_kv_client
from snapvault.core import add_config
from snapvault.env import create_settings_from_env
from snapvault.integrations.fastapi import (
    get_snapvault_state,
    schedule_backup_job,
    snapvault_lifespan,
)

# Settings come from SNAPVAULT_* variables; register the stock jobs too
settings = create_settings_from_env().with_updates(register_defaults=True)

# A custom job built with the functional builder
audit_config = build_from_steps(
    lambda c: with_identity(c, "files-audit", "Nightly Config Audit"),
    lambda c: with_type(c, "files"),
    lambda c: with_schedule(c, "30 4 * * *"),
    lambda c: retain_for_days(c, 14),
    lambda c: to_destination(c, os.getenv("SNAPVAULT_AUDIT_DIR", "./snapvault_data/audit/")),
    lambda c: compressed(c, "zstd"),
    encrypted,
)


@asynccontextmanager
async def lifespan(app: FastAPI):
    collaborators = {
        "apply_handler": FileApplyHandler(Path(os.getenv("SNAPVAULT_RESTORE_DIR", "./restored"))),
    }

    database_url = os.getenv("DATABASE_URL")
    if database_url:
        collaborators["database"] = await connect_database(database_url)

    redis_url = os.getenv("REDIS_URL")
    if redis_url:
        collaborators["kv_client"] = create_kv_client(redis_url)

    async with snapvault_lifespan(app, settings, **collaborators):
        state = get_snapvault_state(app)
        await add_config(state, audit_config)
        schedule_backup_job(app.state.snapvault_scheduler, state, audit_config)
        yield


app = FastAPI(
    title="My App with Snapvault",
    description="Example application demonstrating scheduled backups",
    version="1.0.0",
    lifespan=lifespan,
)


@app.get("/")
async def root():
    """Root endpoint."""
    return {
        "message": "Welcome to My App with Snapvault",
        "docs": "/docs",
        "snapvault_admin": "/admin/backups/health",
    }


# ============================================================================
# Snapvault Admin Endpoints (registered by the lifespan)
# ============================================================================
#
# GET    /admin/backups/health           - Registry and storage health
# GET    /admin/backups/configs          - List backup jobs
# POST   /admin/backups/configs          - Register a backup job
# DELETE /admin/backups/configs/{id}     - Remove a backup job
# POST   /admin/backups/run/{config_id}  - Run a backup now
# POST   /admin/backups/restore          - Restore (or dry-run verify) a backup
# POST   /admin/backups/sweep            - Run a retention pass now
# GET    /admin/backups/results          - Backup results
# GET    /admin/backups/results/{id}     - One backup result
# GET    /admin/backups/restores         - Restore results
# GET    /admin/backups/restores/{id}    - One restore result
#
# All admin endpoints require: Authorization: Bearer <SNAPVAULT_ADMIN_API_KEY>


if __name__ == "__main__":
    import uvicorn

    uvicorn.run(app, host="0.0.0.0", port=8000)

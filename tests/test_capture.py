# SPDX-License-Identifier: LGPL-2.1-only
# Copyright (c) 2026 Akshat Kotpalliwar (alias IntegerAlex)

"""
Tests for capture adapters.
"""

import json
from pathlib import Path

import pytest

from snapvault.capture import create_capture_adapter, serialize_snapshot
from snapvault.capture.database import DatabaseCaptureAdapter, SCHEMA_METADATA_QUERY, _mask_password
from snapvault.capture.files import FileCaptureAdapter
from snapvault.capture.kv import KVStoreCaptureAdapter
from snapvault.capture.secrets import REDACTION_MARKER, SecretManifestCaptureAdapter
from snapvault.config import ServiceSettings
from snapvault.exceptions import CaptureFailure, UnsupportedBackupType

from conftest import SCHEMA_ROWS, FakeDatabase


def test_snapshots_are_pretty_printed_utf8_json():
    payload = serialize_snapshot({"café": [1, 2]})

    assert payload.decode("utf-8").startswith("{\n  ")
    assert json.loads(payload) == {"café": [1, 2]}


# ============================================================================
# Database
# ============================================================================

@pytest.mark.asyncio
async def test_database_capture_queries_schema_metadata(fake_database: FakeDatabase):
    adapter = DatabaseCaptureAdapter(fake_database, schema="shop")

    snapshot = json.loads(await adapter.capture())

    assert snapshot == SCHEMA_ROWS
    assert fake_database.calls == [(SCHEMA_METADATA_QUERY, ("shop",))]


@pytest.mark.asyncio
async def test_database_capture_failure_is_wrapped():
    adapter = DatabaseCaptureAdapter(FakeDatabase(error=ConnectionError("connection reset")))

    with pytest.raises(CaptureFailure) as exc_info:
        await adapter.capture()

    assert exc_info.value.details == {"schema": "public"}


def test_connection_url_password_is_masked():
    assert _mask_password("postgresql://app:hunter2@db:5432/app") == (
        "postgresql://app:****@db:5432/app"
    )


# ============================================================================
# Key-value store
# ============================================================================

@pytest.mark.asyncio
async def test_kv_capture_records_type_and_value_per_key(fake_kv_client):
    snapshot = json.loads(await KVStoreCaptureAdapter(fake_kv_client).capture())

    assert snapshot["session:1"] == {"type": "string", "value": "alice"}
    assert snapshot["shop:42"] == {"type": "hash", "value": {"plan": "pro", "orders": "17"}}
    assert snapshot["queue:jobs"] == {"type": "list", "value": ["a", "b"]}
    assert snapshot["tags"] == {"type": "set", "value": ["x", "y"]}
    assert snapshot["leaderboard"] == {
        "type": "zset",
        "value": [["bob", 2.0], ["eve", 5.5]],
    }


@pytest.mark.asyncio
async def test_kv_capture_keeps_unknown_types_with_null_value(fake_kv_client):
    snapshot = json.loads(await KVStoreCaptureAdapter(fake_kv_client).capture())

    assert snapshot["stream:events"] == {"type": "stream", "value": None}


@pytest.mark.asyncio
async def test_kv_capture_failure_is_wrapped(fake_kv_client):
    async def broken_type(key):
        raise ConnectionError("server went away")

    fake_kv_client.type = broken_type

    with pytest.raises(CaptureFailure):
        await KVStoreCaptureAdapter(fake_kv_client).capture()


# ============================================================================
# Files
# ============================================================================

@pytest.mark.asyncio
async def test_file_capture_skips_missing_files(temp_dir: Path):
    (temp_dir / "app.toml").write_text("port = 8080\n")
    (temp_dir / "conf").mkdir()
    (temp_dir / "conf" / "logging.ini").write_text("[loggers]\n")

    adapter = FileCaptureAdapter(["app.toml", "conf/logging.ini", "missing.ini"], base_dir=temp_dir)
    snapshot = json.loads(await adapter.capture())

    assert snapshot == {
        "app.toml": "port = 8080\n",
        "conf/logging.ini": "[loggers]\n",
    }


@pytest.mark.asyncio
async def test_file_capture_skips_binary_files(temp_dir: Path):
    (temp_dir / "blob.bin").write_bytes(b"\xff\xfe\x00\x81")

    snapshot = json.loads(await FileCaptureAdapter(["blob.bin"], base_dir=temp_dir).capture())

    assert snapshot == {}


# ============================================================================
# Secrets
# ============================================================================

@pytest.mark.asyncio
async def test_secret_manifest_never_contains_values():
    environ = {"DATABASE_URL": "postgresql://app:hunter2@db/app", "EMPTY": ""}
    adapter = SecretManifestCaptureAdapter(["DATABASE_URL", "STRIPE_KEY", "EMPTY"], environ=environ)

    payload = await adapter.capture()

    assert b"hunter2" not in payload
    assert json.loads(payload) == {
        "DATABASE_URL": REDACTION_MARKER,
        "STRIPE_KEY": None,
        "EMPTY": None,
    }


@pytest.mark.asyncio
async def test_secret_manifest_reads_process_environment(monkeypatch):
    monkeypatch.setenv("SNAPVAULT_TEST_SECRET", "s3cr3t")

    payload = await SecretManifestCaptureAdapter(["SNAPVAULT_TEST_SECRET"]).capture()

    assert json.loads(payload) == {"SNAPVAULT_TEST_SECRET": REDACTION_MARKER}


# ============================================================================
# Dispatch
# ============================================================================

def test_dispatch_selects_adapter_by_type(fake_database, fake_kv_client):
    settings = ServiceSettings(database_schema="shop")

    assert isinstance(
        create_capture_adapter("database", settings, database=fake_database),
        DatabaseCaptureAdapter,
    )
    assert isinstance(
        create_capture_adapter("kv-store", settings, kv_client=fake_kv_client),
        KVStoreCaptureAdapter,
    )
    assert isinstance(create_capture_adapter("files", settings), FileCaptureAdapter)
    assert isinstance(create_capture_adapter("secrets", settings), SecretManifestCaptureAdapter)


def test_dispatch_rejects_unknown_type():
    with pytest.raises(UnsupportedBackupType):
        create_capture_adapter("mainframe", ServiceSettings())


def test_dispatch_requires_collaborator():
    with pytest.raises(CaptureFailure):
        create_capture_adapter("database", ServiceSettings())

    with pytest.raises(CaptureFailure):
        create_capture_adapter("kv-store", ServiceSettings())

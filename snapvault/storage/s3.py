# SPDX-License-Identifier: LGPL-2.1-only
# Copyright (c) 2026 Akshat Kotpalliwar (alias IntegerAlex)

"""
S3 Storage Gateway - Blobs as objects in an S3 bucket.

A client is created per call from a shared aiobotocore session, so the
gateway holds no open connections between runs.
"""

from typing import Any

import structlog
from aiobotocore.session import get_session
from botocore.exceptions import ClientError

from snapvault.exceptions import StorageFailure

logger = structlog.get_logger()


class S3StorageGateway:
    """Stores blobs in one S3 bucket."""

    def __init__(
        self,
        bucket: str,
        *,
        region: str = "us-east-1",
        endpoint_url: str | None = None,
        session: Any = None,
    ) -> None:
        self.bucket = bucket
        self.region = region
        self.endpoint_url = endpoint_url
        self._session = session or get_session()

    def _client(self) -> Any:
        return self._session.create_client(
            "s3",
            region_name=self.region,
            endpoint_url=self.endpoint_url,
        )

    async def store(self, key: str, data: bytes) -> None:
        try:
            async with self._client() as s3_client:
                await s3_client.put_object(Bucket=self.bucket, Key=key, Body=data)
        except Exception as e:
            raise StorageFailure(
                f"Failed to upload backup blob: {e}",
                details={"bucket": self.bucket, "key": key},
            )

        logger.debug("blob_stored", backend="s3", bucket=self.bucket, key=key, size=len(data))

    async def retrieve(self, key: str) -> bytes:
        try:
            async with self._client() as s3_client:
                response = await s3_client.get_object(Bucket=self.bucket, Key=key)
                async with response["Body"] as stream:
                    return await stream.read()
        except ClientError as e:
            code = e.response.get("Error", {}).get("Code")
            if code in ("NoSuchKey", "404"):
                raise StorageFailure(
                    f"Backup blob not found: s3://{self.bucket}/{key}",
                    details={"bucket": self.bucket, "key": key},
                )
            raise StorageFailure(
                f"Failed to download backup blob: {e}",
                details={"bucket": self.bucket, "key": key},
            )
        except Exception as e:
            raise StorageFailure(
                f"Failed to download backup blob: {e}",
                details={"bucket": self.bucket, "key": key},
            )

    async def delete(self, key: str) -> None:
        try:
            async with self._client() as s3_client:
                await s3_client.delete_object(Bucket=self.bucket, Key=key)
        except Exception as e:
            raise StorageFailure(
                f"Failed to delete backup blob: {e}",
                details={"bucket": self.bucket, "key": key},
            )

        logger.debug("blob_deleted", backend="s3", bucket=self.bucket, key=key)

    async def ping(self) -> None:
        """Check that the bucket is reachable."""
        async with self._client() as s3_client:
            await s3_client.head_bucket(Bucket=self.bucket)

"""
S3 object store for case artifacts.

Every object that belongs to a case lives under the cases/<case_id>/ prefix,
which is what lets the purge worker remove a case's artifacts with one
prefix listing.

boto3 is imported lazily, the client is created on first use, and every
call carries the bounded connect/read timeouts from settings.

Usage:
    from escrow.adapters.storage import get_object_store

    store = get_object_store()
    store.put_object(f"{case.storage_prefix}archive/case.zip", data, "application/zip")
    deleted = store.delete_prefix(case.storage_prefix)
"""

from __future__ import annotations

import logging
import re
import time

from django.conf import settings

from escrow.exceptions import StorageError

logger = logging.getLogger(__name__)

# S3 DeleteObjects accepts at most 1000 keys per request
DELETE_BATCH_SIZE = 1000

# Only a single case directory may be bulk-deleted
CASE_PREFIX_RE = re.compile(r"^cases/[^/]+/$")


class CaseObjectStore:
    """
    Thin wrapper over the S3 client for case objects.

    Raises StorageError with a sanitized message on any S3 failure.
    """

    def __init__(self, bucket_name: str | None = None) -> None:
        self.bucket_name = bucket_name or getattr(settings, "CASE_STORAGE_BUCKET", "")
        self._s3_client = None

    @property
    def s3_client(self):
        """Get or create the S3 client."""
        if self._s3_client is None:
            import boto3
            from botocore.config import Config

            config = Config(
                connect_timeout=getattr(settings, "STORAGE_CONNECT_TIMEOUT_SECONDS", 5),
                read_timeout=getattr(settings, "STORAGE_READ_TIMEOUT_SECONDS", 30),
                retries={"max_attempts": 3, "mode": "standard"},
            )
            self._s3_client = boto3.client(
                "s3",
                region_name=getattr(settings, "AWS_S3_REGION_NAME", None),
                config=config,
            )
        return self._s3_client

    def _fail(self, operation: str, key: str, error: Exception) -> StorageError:
        logger.error(
            f"Object store {operation} failed",
            extra={
                "operation": operation,
                "key": key,
                "bucket": self.bucket_name,
                "error_type": type(error).__name__,
            },
        )
        return StorageError(
            f"Object store {operation} failed",
            details={"key": key},
        )

    def put_object(self, key: str, data: bytes, content_type: str) -> None:
        """Write (or overwrite) one object."""
        start_time = time.time()
        try:
            self.s3_client.put_object(
                Bucket=self.bucket_name,
                Key=key,
                Body=data,
                ContentType=content_type,
            )
        except Exception as e:
            raise self._fail("put", key, e) from e

        logger.info(
            "Stored object",
            extra={
                "key": key,
                "size_bytes": len(data),
                "duration_ms": (time.time() - start_time) * 1000,
            },
        )

    def get_object(self, key: str) -> bytes | None:
        """
        Read one object.

        Returns:
            The object bytes, or None if the key does not exist
        """
        try:
            response = self.s3_client.get_object(Bucket=self.bucket_name, Key=key)
            return response["Body"].read()
        except Exception as e:
            code = getattr(e, "response", {}).get("Error", {}).get("Code")
            if code in ("NoSuchKey", "404"):
                return None
            raise self._fail("get", key, e) from e

    def list_keys(self, prefix: str) -> list[str]:
        """List every key under prefix."""
        keys: list[str] = []
        try:
            paginator = self.s3_client.get_paginator("list_objects_v2")
            for page in paginator.paginate(Bucket=self.bucket_name, Prefix=prefix):
                keys.extend(obj["Key"] for obj in page.get("Contents", []))
        except Exception as e:
            raise self._fail("list", prefix, e) from e
        return keys

    def delete_prefix(self, prefix: str) -> int:
        """
        Delete every object under prefix.

        Returns:
            Number of objects deleted

        Raises:
            StorageError: If listing fails or S3 reports any per-key error.
                Objects already deleted stay deleted, so a retry only has
                the remainder left to remove.
        """
        if not CASE_PREFIX_RE.match(prefix):
            raise StorageError(
                "Refusing to delete outside a case prefix",
                details={"prefix": prefix},
            )

        keys = self.list_keys(prefix)
        deleted = 0
        for start in range(0, len(keys), DELETE_BATCH_SIZE):
            batch = keys[start : start + DELETE_BATCH_SIZE]
            try:
                response = self.s3_client.delete_objects(
                    Bucket=self.bucket_name,
                    Delete={"Objects": [{"Key": k} for k in batch], "Quiet": True},
                )
            except Exception as e:
                raise self._fail("delete", prefix, e) from e

            errors = response.get("Errors") or []
            if errors:
                logger.error(
                    "Object store reported delete errors",
                    extra={"prefix": prefix, "error_count": len(errors)},
                )
                raise StorageError(
                    "Object store delete failed",
                    details={"prefix": prefix, "failed": len(errors)},
                )
            deleted += len(batch)

        logger.info("Deleted case objects", extra={"prefix": prefix, "count": deleted})
        return deleted


_object_store: CaseObjectStore | None = None


def get_object_store() -> CaseObjectStore:
    """Return the process-wide object store."""
    global _object_store
    if _object_store is None:
        _object_store = CaseObjectStore()
    return _object_store


def set_object_store(store) -> None:
    """Replace the object store (tests pass a fake, None resets)."""
    global _object_store
    _object_store = store

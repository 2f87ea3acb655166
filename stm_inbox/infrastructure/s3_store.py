from __future__ import annotations

import asyncio
import logging

from botocore.exceptions import BotoCoreError, ClientError

from stm_inbox.domain.entities import S3ObjectProps
from stm_inbox.domain.failures import DoNotRetryError, RetryError
from stm_inbox.domain.interfaces import IObjectStore

log = logging.getLogger(__name__)


class S3ObjectStore(IObjectStore):
    """
    Concrete IObjectStore over a boto3 S3 client (injected).

    boto3 is blocking, so every call runs in a worker thread and independent
    operations can overlap on the event loop.
    """

    def __init__(self, client) -> None:
        self._client = client

    async def get_bytes(self, bucket: str, key: str) -> bytes:
        def _get() -> bytes:
            resp = self._client.get_object(Bucket=bucket, Key=key)
            return resp["Body"].read()

        try:
            payload = await asyncio.to_thread(_get)
        except ClientError as exc:
            if exc.response.get("Error", {}).get("Code") in ("NoSuchKey", "404"):
                log.error("S3 object %s/%s does not exist", bucket, key)
                raise DoNotRetryError(key, "no such object") from exc
            log.error("Failed to get S3 object %s/%s: %s", bucket, key, exc)
            raise RetryError(key, f"S3 get failed: {exc}") from exc
        except BotoCoreError as exc:
            log.error("Failed to get S3 object %s/%s: %s", bucket, key, exc)
            raise RetryError(key, f"S3 get failed: {exc}") from exc

        if not payload:
            log.error("Zero-sized S3 object %s/%s", bucket, key)
            raise DoNotRetryError(key, "zero-sized object")

        log.info("Fetched %s, %d bytes", key, len(payload))
        return payload

    async def put_bytes(self, bucket: str, key: str, payload: bytes) -> None:
        try:
            await asyncio.to_thread(self._client.put_object, Bucket=bucket, Key=key, Body=payload)
        except (BotoCoreError, ClientError) as exc:
            log.error("Failed to save %s/%s: %s", bucket, key, exc)
            raise RetryError(key, f"S3 put failed: {exc}") from exc
        log.info("Saved %s, %d bytes", key, len(payload))

    async def copy(self, src_bucket: str, src_key: str, dst_bucket: str, dst_key: str) -> None:
        try:
            await asyncio.to_thread(
                self._client.copy_object,
                CopySource={"Bucket": src_bucket, "Key": src_key},
                Bucket=dst_bucket,
                Key=dst_key,
            )
        except (BotoCoreError, ClientError) as exc:
            log.error("Failed to copy %s/%s to %s/%s: %s", src_bucket, src_key, dst_bucket, dst_key, exc)
            raise RetryError(src_key, f"S3 copy failed: {exc}") from exc
        log.info("Copied %s to %s", src_key, dst_key)

    async def delete(self, bucket: str, key: str) -> None:
        try:
            await asyncio.to_thread(self._client.delete_object, Bucket=bucket, Key=key)
        except (BotoCoreError, ClientError) as exc:
            log.error("Failed to delete %s/%s: %s", bucket, key, exc)
            raise RetryError(key, f"S3 delete failed: {exc}") from exc
        log.info("Deleted %s", key)

    async def list_objects(self, bucket: str, prefix: str) -> list[S3ObjectProps]:
        def _list() -> list[S3ObjectProps]:
            paginator = self._client.get_paginator("list_objects_v2")
            objects: list[S3ObjectProps] = []
            for page in paginator.paginate(Bucket=bucket, Prefix=prefix):
                for obj in page.get("Contents", []):
                    objects.append(S3ObjectProps(
                        key           = obj["Key"],
                        last_modified = obj.get("LastModified"),
                        size          = obj.get("Size", 0),
                    ))
            return objects

        try:
            objects = await asyncio.to_thread(_list)
        except (BotoCoreError, ClientError) as exc:
            log.error("Failed to list %s/%s: %s", bucket, prefix, exc)
            raise RetryError(prefix, f"S3 list failed: {exc}") from exc

        log.info("Listed %d objects under %s/%s", len(objects), bucket, prefix)
        return objects

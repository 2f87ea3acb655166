import io
from datetime import datetime, timezone
from unittest.mock import MagicMock

import pytest
from botocore.exceptions import ClientError, EndpointConnectionError

from stm_inbox.domain.failures import DoNotRetryError, RetryError
from stm_inbox.infrastructure.s3_store import S3ObjectStore


def client_error(code: str, op: str = "GetObject") -> ClientError:
    return ClientError({"Error": {"Code": code, "Message": code}}, op)


@pytest.fixture
def client():
    return MagicMock()


async def test_get_bytes(client):
    client.get_object.return_value = {"Body": io.BytesIO(b"report")}

    assert await S3ObjectStore(client).get_bytes("b", "k") == b"report"
    client.get_object.assert_called_once_with(Bucket="b", Key="k")


async def test_empty_object_is_not_retried(client):
    client.get_object.return_value = {"Body": io.BytesIO(b"")}
    with pytest.raises(DoNotRetryError):
        await S3ObjectStore(client).get_bytes("b", "k")


async def test_missing_object_is_not_retried(client):
    client.get_object.side_effect = client_error("NoSuchKey")
    with pytest.raises(DoNotRetryError):
        await S3ObjectStore(client).get_bytes("b", "k")


async def test_other_errors_are_retried(client):
    client.get_object.side_effect = client_error("SlowDown")
    with pytest.raises(RetryError):
        await S3ObjectStore(client).get_bytes("b", "k")

    client.put_object.side_effect = EndpointConnectionError(endpoint_url="https://s3.amazonaws.com")
    with pytest.raises(RetryError):
        await S3ObjectStore(client).put_bytes("b", "k", b"x")


async def test_copy_and_delete(client):
    store = S3ObjectStore(client)
    await store.copy("inbox", "queue/1_o.gzip", "reports", "reports/o/p/report.gz")
    await store.delete("inbox", "queue/1_o.gzip")

    client.copy_object.assert_called_once_with(
        CopySource={"Bucket": "inbox", "Key": "queue/1_o.gzip"},
        Bucket="reports",
        Key="reports/o/p/report.gz",
    )
    client.delete_object.assert_called_once_with(Bucket="inbox", Key="queue/1_o.gzip")


async def test_failed_copy_is_retried(client):
    client.copy_object.side_effect = client_error("InternalError", "CopyObject")
    with pytest.raises(RetryError):
        await S3ObjectStore(client).copy("inbox", "k", "reports", "k2")


async def test_list_objects_follows_pages(client):
    modified = datetime(2021, 7, 1, tzinfo=timezone.utc)
    client.get_paginator.return_value.paginate.return_value = [
        {"Contents": [{"Key": "reports/o/p1/report.gz", "LastModified": modified, "Size": 10}]},
        {"Contents": [{"Key": "reports/o/p2/report.gz", "LastModified": modified, "Size": 20}]},
        {},
    ]

    objects = await S3ObjectStore(client).list_objects("reports", "reports/o/")

    assert [o.key for o in objects] == ["reports/o/p1/report.gz", "reports/o/p2/report.gz"]
    assert objects[1].size == 20
    client.get_paginator.assert_called_once_with("list_objects_v2")
    client.get_paginator.return_value.paginate.assert_called_once_with(Bucket="reports", Prefix="reports/o/")

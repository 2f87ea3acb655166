"""
handlers.py — AWS Lambda entry points
--------------------------------------
Two functions, one per Lambda:

  submission_handler  API Gateway → verify signature → inbox bucket
  router_handler      S3 event on the inbox → ledger + member storage

Like main.py these only wire dependencies and translate events. Resources
are created on the first invocation and reused while the Lambda stays warm.
"""

from __future__ import annotations

import asyncio
import base64
import binascii
import logging
from dataclasses import asdict
from typing import Any
from urllib.parse import unquote_plus

import boto3

from stm_inbox.application.inbox_router import InboxRouter
from stm_inbox.application.relocator import ReportRelocator
from stm_inbox.application.submission import ERROR_500_MSG, SubmissionService
from stm_inbox.domain.entities import SubmissionResult
from stm_inbox.domain.failures import RetryError
from stm_inbox.infrastructure.postgres_storage import PostgresCommitLedger, PostgresOwnershipStore
from stm_inbox.infrastructure.s3_store import S3ObjectStore
from stm_inbox.infrastructure.settings import AppContext, Settings

log = logging.getLogger(__name__)
logging.getLogger().setLevel(logging.INFO)

_submission_service: SubmissionService | None = None
_router: InboxRouter | None = None


def _get_submission_service() -> SubmissionService:
    global _submission_service
    if _submission_service is None:
        settings = Settings.from_env(inbox_only=True)
        store = S3ObjectStore(boto3.client("s3", region_name=settings.aws_region))
        _submission_service = SubmissionService(store, settings.inbox_bucket, settings.inbox_prefix)
    return _submission_service


def _get_router() -> InboxRouter:
    global _router
    if _router is None:
        ctx = AppContext.build(Settings.from_env())
        store = S3ObjectStore(ctx.s3_client)
        ledger = PostgresCommitLedger(ctx.pg_conn)
        _router = InboxRouter(
            store     = store,
            ledger    = ledger,
            ownership = PostgresOwnershipStore(ctx.pg_conn),
            relocator = ReportRelocator(
                store         = store,
                inbox_bucket  = ctx.settings.inbox_bucket,
                report_bucket = ctx.settings.reports_bucket,
                report_prefix = ctx.settings.reports_prefix,
            ),
            inbox_bucket = ctx.settings.inbox_bucket,
        )
    return _router


def _proxy_response(result: SubmissionResult) -> dict[str, Any]:
    return {
        "isBase64Encoded": False,
        "statusCode":      result.status_code,
        "headers":         {"Content-Type": "text/plain"},
        "body":            result.message or "",
    }


def _read_body(event: dict[str, Any]) -> bytes | None:
    body = event.get("body")
    if body is None:
        return None
    if event.get("isBase64Encoded"):
        try:
            return base64.b64decode(body)
        except (binascii.Error, ValueError) as exc:
            log.error("Failed to decode the body from base64: %s", exc)
            return None
    return body.encode("utf-8")


def submission_handler(event: dict[str, Any], context: Any = None,
                       service: SubmissionService | None = None) -> dict[str, Any]:
    """API Gateway proxy integration for report submissions."""
    headers = {k.lower(): v for k, v in (event.get("headers") or {}).items()}
    log.info("Submission from IP: %s", headers.get("x-forwarded-for"))

    service = service or _get_submission_service()
    try:
        result = asyncio.run(service.accept(
            _read_body(event),
            headers.get("stackmuncher_key"),
            headers.get("stackmuncher_sig"),
        ))
    except RetryError as exc:
        log.error("Failed to store the report: %s", exc.reason)
        result = SubmissionResult(500, ERROR_500_MSG)

    return _proxy_response(result)


def parse_s3_event(event: dict[str, Any]) -> tuple[str, int | None]:
    """The URL-decoded key and size of the only object in an S3 notification."""
    records = event.get("Records") or []
    if len(records) != 1:
        raise ValueError(f"Expected exactly 1 S3 record, got {len(records)}")

    s3_object = (records[0].get("s3") or {}).get("object") or {}
    key = s3_object.get("key")
    if not key:
        raise ValueError("No object key in the S3 record")

    # S3 event keys are URL-encoded with spaces as `+`
    return unquote_plus(key), s3_object.get("size")


def router_handler(event: dict[str, Any], context: Any = None,
                   router: InboxRouter | None = None) -> dict[str, Any]:
    """S3 ObjectCreated trigger on the inbox bucket. RetryError propagates so Lambda retries."""
    s3_key, size = parse_s3_event(event)

    router = router or _get_router()
    outcome = asyncio.run(router.route(s3_key, size))

    log.info("Routing of %s finished: %s", s3_key, outcome.status)
    return asdict(outcome)

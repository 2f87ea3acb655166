from __future__ import annotations

import logging
from datetime import datetime, timezone

from stm_inbox.application.signature import verify
from stm_inbox.domain.entities import SubmissionResult
from stm_inbox.domain.identifiers import validate_owner_id
from stm_inbox.domain.interfaces import IObjectStore
from stm_inbox.domain.storage_keys import inbox_key

log = logging.getLogger(__name__)

# a generic message for failures the user can't do much about
ERROR_500_MSG = ("stackmuncher.com failed to process the report. If the error persists, "
                 "can you log an issue at https://github.com/stackmuncher/stm_inbox/issues?")


class SubmissionService:
    """
    Accepts a signed report from the analysis app and drops it into the
    inbox bucket as fast as possible for the router to pick up.
    """

    def __init__(self, store: IObjectStore, inbox_bucket: str, inbox_prefix: str) -> None:
        self._store        = store
        self._inbox_bucket = inbox_bucket
        self._inbox_prefix = inbox_prefix

    async def accept(self, body: bytes | None, pub_key: str | None, signature: str | None) -> SubmissionResult:
        if not pub_key or not signature:
            log.error("Missing a header. Key: %s, Sig: %s", pub_key, signature)
            return SubmissionResult(500, "stackmuncher.com failed to process the report: missing required HTTP headers.")

        if not body:
            log.error("Empty body")
            return SubmissionResult(500, "stackmuncher.com: no report found in the request.")

        log.info("Report for pub key: %s, %d bytes", pub_key, len(body))

        if not validate_owner_id(pub_key):
            return SubmissionResult(403, "Invalid public key length. Expecting 32 bytes as base58.")

        if not verify(body, signature, pub_key):
            return SubmissionResult(500, "Invalid StackMuncher signature.")

        # the key is a valid base58 string by now, safe to use in the object name as-is
        s3_key = inbox_key(self._inbox_prefix, int(datetime.now(tz=timezone.utc).timestamp()), pub_key)
        await self._store.put_bytes(self._inbox_bucket, s3_key, body)

        log.info("Report stored as %s", s3_key)
        return SubmissionResult(200, None, s3_key)

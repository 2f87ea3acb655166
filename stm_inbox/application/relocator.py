from __future__ import annotations

import asyncio
import logging

from stm_inbox.domain.entities import RelocationResult
from stm_inbox.domain.failures import RetryError
from stm_inbox.domain.interfaces import IObjectStore
from stm_inbox.domain.storage_keys import history_report_key, latest_report_key

log = logging.getLogger(__name__)


class ReportRelocator:
    """
    Moves an accepted submission from the inbox bucket into the member's
    permanent storage: one immutable history entry named after the last
    commit, plus the `report.gz` pointer to the latest report.

    The inbox original is deleted only after both copies succeed, so a crash
    in between is safe to retry.
    """

    def __init__(self, store: IObjectStore, inbox_bucket: str, report_bucket: str, report_prefix: str) -> None:
        self._store         = store
        self._inbox_bucket  = inbox_bucket
        self._report_bucket = report_bucket
        self._report_prefix = report_prefix

    async def relocate(
        self,
        inbox_key: str,
        owner_id: str,
        project_id: str,
        last_commit_ts: int,
        sha1: str,
        out_of_order: bool = False,
    ) -> RelocationResult:
        history_key = history_report_key(self._report_prefix, owner_id, project_id, last_commit_ts, sha1)
        latest_key  = None if out_of_order else latest_report_key(self._report_prefix, owner_id, project_id)

        copies = [self._store.copy(self._inbox_bucket, inbox_key, self._report_bucket, history_key)]
        if latest_key:
            copies.append(self._store.copy(self._inbox_bucket, inbox_key, self._report_bucket, latest_key))
        else:
            log.info("Out of order report - keeping the existing latest for %s/%s", owner_id, project_id)

        results = await asyncio.gather(*copies, return_exceptions=True)
        failures = [r for r in results if isinstance(r, BaseException)]
        if failures:
            for exc in failures:
                log.error("Copy of %s failed: %s", inbox_key, exc)
            raise RetryError(inbox_key, "failed to copy the report out of the inbox")

        log.info("Copied %s to %s%s", inbox_key, history_key, f" and {latest_key}" if latest_key else "")

        # a RetryError here leaves the copies in place; redoing them is harmless
        await self._store.delete(self._inbox_bucket, inbox_key)

        return RelocationResult(history_key=history_key, latest_key=latest_key)

from __future__ import annotations

import asyncio
import logging
import time
import uuid
from typing import Callable
from uuid import UUID

from stm_inbox.application.dev_profile import DevProfileMerger
from stm_inbox.application.gh_login import GhLoginValidator
from stm_inbox.application.report_codec import gzip_json
from stm_inbox.domain.entities import DevJob, GhLink
from stm_inbox.domain.failures import DoNotRetryError, PipelineError, RetryError
from stm_inbox.domain.interfaces import IDevJobQueue, IObjectStore, ISearchIndex
from stm_inbox.domain.storage_keys import dev_profile_key

log = logging.getLogger(__name__)

MAX_NUMBER_OF_ACTIVE_DEV_JOBS     = 20   # limited by how many S3 requests can be handled at a time
MAX_NUMBER_OF_DEV_JOBS_TO_QUEUE_UP = 100  # limited by the load PG and ES can take
MIN_CYCLE_DURATION_SECS           = 10.0
MAX_CONSECUTIVE_ERRORS            = 10


class DevQueueFlow:
    """
    Polls the DB-based dev queue and regenerates the merged profile of every
    developer with new submissions.

    All dependencies are injected:
      - IDevJobQueue      → which devs need a new profile
      - DevProfileMerger  → how to build one
      - IObjectStore      → where the profile is kept
      - ISearchIndex      → where it is published
      - GhLoginValidator  → which GitHub login the dev proved to own (optional)

    Jobs from one claim are processed with at most `max_active` in flight.
    A new job starts as soon as a running one completes. Consecutive failures
    are counted; the flow gives up once they reach MAX_CONSECUTIVE_ERRORS and
    relies on the process supervisor to restart it.
    """

    def __init__(
        self,
        queue: IDevJobQueue,
        merger: DevProfileMerger,
        store: IObjectStore,
        index: ISearchIndex,
        profile_bucket: str,
        profile_prefix: str,
        es_idx: str,
        refresh_credentials: Callable[[], object] = lambda: None,
        max_active: int = MAX_NUMBER_OF_ACTIVE_DEV_JOBS,
        jobs_max: int = MAX_NUMBER_OF_DEV_JOBS_TO_QUEUE_UP,
        min_cycle_secs: float = MIN_CYCLE_DURATION_SECS,
        gh_validator: GhLoginValidator | None = None,
    ) -> None:
        self._queue          = queue
        self._merger         = merger
        self._store          = store
        self._index          = index
        self._profile_bucket = profile_bucket
        self._profile_prefix = profile_prefix
        self._es_idx         = es_idx
        self._refresh_credentials = refresh_credentials
        self._max_active     = max_active
        self._jobs_max       = jobs_max
        self._min_cycle_secs = min_cycle_secs
        self._gh_validator   = gh_validator

    async def run(self, max_cycles: int | None = None) -> bool:
        """
        Loop until too many consecutive errors (returns False) or until
        `max_cycles` cycles have run (returns True).
        """
        log.info("Merging dev reports already stored in S3 and storing the results in S3 + ES.")

        err_counter   = 0
        log_sleep_msg = True
        cycle         = 0

        while max_cycles is None or cycle < max_cycles:
            cycle += 1

            # terminate if it keeps failing
            if err_counter >= MAX_CONSECUTIVE_ERRORS:
                log.error("Too many errors. Exiting.")
                return False

            started = time.monotonic()
            self._refresh_credentials()

            # tags the jobs claimed in this cycle so only they get marked later
            in_flight_id = uuid.uuid4()

            try:
                jobs = self._queue.claim(in_flight_id, self._jobs_max)
            except RetryError as exc:
                err_counter += 1
                log.error("Attempt %d: %s", err_counter, exc)
                continue

            if not jobs:
                await self._wait_for_next_cycle(started, log_sleep_msg)
                log_sleep_msg = False
                continue

            err_counter = await self.process_devs(jobs, in_flight_id)

            # the job selection query is expensive, don't hammer the DB when there is little to do
            if len(jobs) < self._max_active:
                await self._wait_for_next_cycle(started, True)
            log_sleep_msg = True

        return err_counter < MAX_CONSECUTIVE_ERRORS

    async def process_devs(self, jobs: list[DevJob], in_flight_id: UUID) -> int:
        """Process a claimed batch and return the consecutive error count."""
        err_counter = 0
        semaphore   = asyncio.Semaphore(self._max_active)

        async def _guarded(idx: int, job: DevJob) -> tuple[str, GhLink | None, PipelineError | None]:
            async with semaphore:
                log.info("Starting job %d for %s", idx, job.owner_id)
                try:
                    return job.owner_id, await self.process_dev(job), None
                except PipelineError as exc:
                    return job.owner_id, None, exc
                except Exception as exc:
                    # a single failing job never stops the batch
                    log.exception("Unexpected failure for %s", job.owner_id)
                    return job.owner_id, None, RetryError(job.owner_id, f"unexpected error: {exc!r}")

        for next_done in asyncio.as_completed([_guarded(i, j) for i, j in enumerate(jobs)]):
            owner_id, gh_link, failure = await next_done

            if failure is None:
                err_counter = 0
                self._mark(self._queue.mark_completed, owner_id, in_flight_id, gh_link.gh_login, gh_link.gist_id)
            elif isinstance(failure, DoNotRetryError):
                err_counter += 1
                log.error("Giving up on %s: %s", owner_id, failure.reason)
                self._mark(self._queue.mark_failed, owner_id, in_flight_id)
            else:
                # stays in flight until the queue requeues it
                err_counter += 1
                log.warning("Will retry %s later: %s", owner_id, failure.reason)

        log.info("All dev jobs processed")
        return err_counter

    async def process_dev(self, job: DevJob) -> GhLink:
        """
        Merge all stored reports of one dev, then save the profile in S3 and
        in ES. Returns the GitHub link the merge used.
        Raises RetryError or DoNotRetryError.
        """
        owner_id = job.owner_id
        if self._gh_validator is not None:
            gh_link = await self._gh_validator.resolve(job)
        else:
            gh_link = GhLink(job.gh_login, job.gh_login_gist_validation)

        result = await self._merger.merge(owner_id, gh_link.gh_login)

        if result.merged == 0 and result.skipped == 0:
            # they may have been deleted since the job was scheduled
            log.info("Found no reports for dev %s", owner_id)
            raise DoNotRetryError(owner_id, "no reports")

        payload = gzip_json(result.profile.to_json())

        await self._store.put_bytes(self._profile_bucket, dev_profile_key(self._profile_prefix, owner_id), payload)
        await self._index.put_document(self._es_idx, owner_id, payload)

        log.info("Profile for %s: %d merged, %d skipped", owner_id, result.merged, result.skipped)
        return gh_link

    @staticmethod
    def _mark(mark: Callable[..., None], owner_id: str, in_flight_id: UUID, *args) -> None:
        try:
            mark(owner_id, in_flight_id, *args)
        except RetryError as exc:
            # the job stays in flight and gets requeued by the DB
            log.error("Failed to update the job for %s: %s", owner_id, exc.reason)

    async def _wait_for_next_cycle(self, started: float, log_sleep_msg: bool) -> None:
        """Sleep for whatever is left of the minimum cycle duration."""
        remaining = self._min_cycle_secs - (time.monotonic() - started)
        if remaining <= 0:
            return
        if log_sleep_msg:
            log.info("%dms sleep delay between cycles", int(remaining * 1000))
        await asyncio.sleep(remaining)

from __future__ import annotations

import logging
from email.utils import parseaddr

from stm_inbox.application.project_resolver import ProjectIdentityResolver
from stm_inbox.application.relocator import ReportRelocator
from stm_inbox.application.report_codec import decode_report
from stm_inbox.domain.entities import Report, RoutingOutcome
from stm_inbox.domain.failures import DoNotRetryError
from stm_inbox.domain.identifiers import is_valid_sha1, validate_owner_id
from stm_inbox.domain.interfaces import ICommitLedger, IObjectStore, IOwnershipStore
from stm_inbox.domain.storage_keys import inbox_owner_hint

log = logging.getLogger(__name__)


class InboxRouter:
    """
    The top-level use case for a new submission sitting in the inbox bucket:
    work out which project it belongs to, record its commits and move it into
    the member's permanent storage.

    Malformed submissions are rejected and left in the inbox. Infrastructure
    failures propagate as RetryError so the trigger can redeliver the event.
    """

    def __init__(
        self,
        store: IObjectStore,
        ledger: ICommitLedger,
        ownership: IOwnershipStore,
        relocator: ReportRelocator,
        inbox_bucket: str,
    ) -> None:
        self._store        = store
        self._ledger       = ledger
        self._ownership    = ownership
        self._relocator    = relocator
        self._resolver     = ProjectIdentityResolver(ledger)
        self._inbox_bucket = inbox_bucket

    async def route(self, s3_key: str, object_size: int | None = None) -> RoutingOutcome:
        # required to ID the transaction in the log
        log.info("S3 key: %s", s3_key)
        try:
            return await self._route(s3_key, object_size)
        except DoNotRetryError as exc:
            log.error("Rejected %s: %s", s3_key, exc.reason)
            return RoutingOutcome(s3_key=s3_key, status="rejected", reason=exc.reason)

    async def _route(self, s3_key: str, object_size: int | None) -> RoutingOutcome:
        owner_id = inbox_owner_hint(s3_key)
        if not validate_owner_id(owner_id):
            raise DoNotRetryError(s3_key, "invalid owner id in the key")
        log.info("OwnerID: %s", owner_id)

        if object_size == 0:
            raise DoNotRetryError(s3_key, "zero-sized object")

        report = decode_report(s3_key, await self._store.get_bytes(self._inbox_bucket, s3_key))

        if len(report.projects_included) != 1:
            log.error("Wrong number of projects in the report: %d", len(report.projects_included))
            raise DoNotRetryError(s3_key, "wrong number of projects")

        sha1 = report.last_contributor_commit_sha1
        if not is_valid_sha1(sha1):
            log.error("Invalid latest report commit: %s", sha1)
            raise DoNotRetryError(s3_key, "invalid latest commit sha1")

        commits = report.projects_included[0].commits
        if commits is None:
            log.info("No commit details found.")
            raise DoNotRetryError(s3_key, "no commit details")

        resolution = self._resolver.resolve(owner_id, list(commits))
        project_id = resolution.project_id

        # the ledger already includes the commits of this report
        report_ts  = report.last_contributor_commit_date_epoch or 0
        project_ts = self._ledger.get_latest_project_commit(owner_id, project_id)
        out_of_order = report_ts < project_ts
        if out_of_order:
            log.warning("Out of order report for %s/%s. Latest commit ts in PG: %d, report: %d",
                        owner_id, project_id, project_ts, report_ts)
        else:
            # before the relocation, so a failure here can still be retried from the inbox
            self._update_ownership(owner_id, report)

        relocation = await self._relocator.relocate(s3_key, owner_id, project_id, report_ts, sha1, out_of_order)

        return RoutingOutcome(
            s3_key      = s3_key,
            status      = "out_of_order" if out_of_order else "accepted",
            owner_id    = owner_id,
            project_id  = project_id,
            history_key = relocation.history_key,
            latest_key  = relocation.latest_key,
        )

    def _update_ownership(self, owner_id: str, report: Report) -> None:
        self._ownership.queue_up_for_update(owner_id, report.gh_validation_id)

        primary_email = email_address(report.primary_email)
        if primary_email:
            self._ownership.add_email(owner_id, primary_email, True)

        seen = {primary_email}
        for git_id in report.contributor_git_ids:
            email = email_address(git_id)
            if email and email not in seen:
                seen.add(email)
                self._ownership.add_email(owner_id, email, False)


def email_address(git_id: str | None) -> str | None:
    """
    The address part of a git identity: `Max <max@example.com>` and
    `max@example.com` both give `max@example.com`. None if there is none.
    """
    if not git_id:
        return None
    _, address = parseaddr(git_id)
    address = address.strip()
    if "@" not in address or address.startswith("@") or address.endswith("@"):
        return None
    return address

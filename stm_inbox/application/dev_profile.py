from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, replace
from datetime import datetime, timezone

from stm_inbox.application.report_codec import decode_report
from stm_inbox.domain.entities import DeveloperProfile, MergeResult, Report
from stm_inbox.domain.failures import PipelineError
from stm_inbox.domain.interfaces import IObjectStore
from stm_inbox.domain.storage_keys import (
    build_dev_s3_key,
    is_combined_project_report,
    parse_last_modified,
    split_key_into_parts,
)

log = logging.getLogger(__name__)


@dataclass(frozen=True)
class _Candidate:
    last_modified: int
    key:           str
    bucket:        str
    is_gh:         bool


class DevProfileMerger:
    """
    Builds a developer profile from scratch out of every per-project report
    stored for the owner, plus the GitHub reports for their login when a
    GitHub bucket is configured.

    Reports are folded oldest first by S3 last-modified time, so the most
    recent report's privacy and contact details win.
    """

    def __init__(
        self,
        store: IObjectStore,
        private_bucket: str,
        private_prefix: str,
        gh_bucket: str | None = None,
        gh_prefix: str | None = None,
    ) -> None:
        self._store          = store
        self._private_bucket = private_bucket
        self._private_prefix = private_prefix
        self._gh_bucket      = gh_bucket
        self._gh_prefix      = gh_prefix

    async def list_candidates(self, owner_id: str, gh_login: str | None = None) -> list[_Candidate]:
        """
        Stored combined project reports for the owner, oldest first.
        Raises DoNotRetryError for an invalid owner id and RetryError if
        listing fails.
        """
        # (bucket, prefix, folder owner, listing prefix, from GH)
        listings = [(self._private_bucket, self._private_prefix, owner_id,
                     build_dev_s3_key(self._private_prefix, owner_id), False)]
        if self._gh_bucket and self._gh_prefix and gh_login:
            listings.append((self._gh_bucket, self._gh_prefix, gh_login,
                             f"{self._gh_prefix}/{gh_login}/", True))

        results = await asyncio.gather(*[
            self._store.list_objects(bucket, list_prefix) for bucket, _, _, list_prefix, _ in listings
        ])

        candidates: list[_Candidate] = []
        for (bucket, prefix, owner, _, is_gh), objects in zip(listings, results):
            for obj in objects:
                if not is_combined_project_report(obj.key, prefix, owner):
                    log.debug("Skipping %s", obj.key)
                    continue

                last_modified = parse_last_modified(obj.last_modified)
                if last_modified is None:
                    continue

                log.info("%s report for merging", obj.key)
                candidates.append(_Candidate(last_modified, obj.key, bucket, is_gh))

        # the latest comes last and overwrites privacy settings of the earlier reports
        candidates.sort(key=lambda c: (c.last_modified, c.key))
        return candidates

    async def merge(self, owner_id: str, gh_login: str | None = None) -> MergeResult:
        candidates = await self.list_candidates(owner_id, gh_login)
        return await self.merge_candidates(owner_id, candidates)

    async def merge_candidates(self, owner_id: str, candidates: list[_Candidate]) -> MergeResult:
        log.info(
            "Merging dev reports into a profile for %s. Private: %d, GH: %d",
            owner_id,
            sum(1 for c in candidates if not c.is_gh),
            sum(1 for c in candidates if c.is_gh),
        )

        # gather keeps the order of the candidates
        reports = await asyncio.gather(*[self._load(c) for c in candidates])

        combined: Report | None = None
        merged = skipped = 0
        for candidate, report in zip(candidates, reports):
            if report is None:
                skipped += 1
                continue

            report = report.abridge()
            if candidate.is_gh:
                # gh user and repo name uniquely identify the project
                report = replace(report, owner_id=owner_id, project_id=None)
                log.info("GH report: %s/%s, epoch: %s",
                         report.github_user_name, report.github_repo_name,
                         report.last_contributor_commit_date_epoch)
            else:
                report = replace(
                    report,
                    owner_id         = owner_id,
                    project_id       = split_key_into_parts(candidate.key)[1],
                    github_user_name = None,
                    github_repo_name = None,
                )
                log.info("Private report: %s, epoch: %s",
                         report.project_id, report.last_contributor_commit_date_epoch)

            combined = Report.merge(combined, report)
            merged += 1

        if skipped:
            log.warning("Skipped %d unreadable reports for %s", skipped, owner_id)

        profile = DeveloperProfile(
            owner_id   = owner_id,
            updated_at = datetime.now(tz=timezone.utc).isoformat(),
            report     = combined,
        )
        return MergeResult(profile=profile, merged=merged, skipped=skipped)

    async def _load(self, candidate: _Candidate) -> Report | None:
        try:
            payload = await self._store.get_bytes(candidate.bucket, candidate.key)
            return decode_report(candidate.key, payload)
        except PipelineError as exc:
            log.error("Cannot load S3 report %s: %s", candidate.key, exc.reason)
            return None

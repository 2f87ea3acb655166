from __future__ import annotations

import logging

from stm_inbox.domain.entities import Resolution
from stm_inbox.domain.failures import DoNotRetryError
from stm_inbox.domain.identifiers import new_project_id, parse_commit
from stm_inbox.domain.interfaces import ICommitLedger

log = logging.getLogger(__name__)

# caps the cost of the ledger lookup, not configurable
LOOKUP_CAP = 50


class ProjectIdentityResolver:
    """
    Decides which project a newly arrived report belongs to by matching its
    recent commits against the commit ledger.

    A ledger row only confirms a project if both the short hash AND the
    commit timestamp match. Short hashes recur across unrelated histories.
    """

    def __init__(self, ledger: ICommitLedger) -> None:
        self._ledger = ledger

    @staticmethod
    def parse_commits(owner_id: str, recent_commits: list[str]) -> dict[str, int]:
        """Any malformed entry aborts the whole report."""
        commits: dict[str, int] = {}
        for commit in recent_commits:
            try:
                commit_hash, commit_ts = parse_commit(commit)
            except DoNotRetryError as exc:
                log.error("%s for %s: %s", exc.reason.capitalize(), owner_id, commit)
                raise
            commits[commit_hash] = commit_ts
        return commits

    def resolve(self, owner_id: str, recent_commits: list[str]) -> Resolution:
        """
        Return the existing project id, or a freshly minted one if nothing
        matched, and add every commit of the report to the ledger.

        Raises DoNotRetryError for malformed commits or when the commits
        match more than one project. Nothing is written in either case.
        """
        commits = self.parse_commits(owner_id, recent_commits)
        # rejected rather than minting a project: nothing could ever match it
        # again, so every such report would become yet another project
        if not commits:
            raise DoNotRetryError(owner_id, "no commits to match the project by")

        lookup = list(commits)[:LOOKUP_CAP]
        ownerships = self._ledger.find_matching_commits(lookup)
        log.info("Found %d matching commits in PG", len(ownerships))

        project_ids = sorted({
            o.project_id
            for o in ownerships
            if commits.get(o.commit_hash) == o.commit_ts
        })
        log.info("Found matching projects: %s", ",".join(project_ids))

        if len(project_ids) > 1:
            log.error("Project ID conflict resolution is not implemented. Owner: %s, projects: %s",
                      owner_id, ",".join(project_ids))
            raise DoNotRetryError(owner_id, "commits match multiple projects")

        is_new = not project_ids
        project_id = new_project_id() if is_new else project_ids[0]
        log.info("ProjectID: %s (new: %s)", project_id, is_new)

        # the full list, not just the lookup sample, to improve future matching
        self._ledger.add_commits(owner_id, project_id, list(commits), list(commits.values()))

        return Resolution(project_id=project_id, is_new=is_new, commits=commits)

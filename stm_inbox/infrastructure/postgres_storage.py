from __future__ import annotations

import logging
from contextlib import contextmanager
from typing import Iterator
from uuid import UUID

import psycopg2
from psycopg2.extras import RealDictCursor

from stm_inbox.domain.entities import CommitRecord, DevJob
from stm_inbox.domain.failures import RetryError
from stm_inbox.domain.interfaces import ICommitLedger, IDevJobQueue, IOwnershipStore

log = logging.getLogger(__name__)


class _PostgresStore:
    """
    Shared plumbing for the stored-procedure adapters.

    Receives an already-connected psycopg2 connection (injected). Opening and
    closing it is the job of the composition root.
    """

    def __init__(self, conn) -> None:
        self._conn = conn

    @contextmanager
    def _cursor(self, subject: str, commit: bool = False) -> Iterator:
        """
        A dict cursor that commits on success when asked to. Any DB error
        rolls the transaction back and surfaces as RetryError.
        """
        try:
            with self._conn.cursor(cursor_factory=RealDictCursor) as cur:
                yield cur
            if commit:
                self._conn.commit()
        except psycopg2.Error as exc:
            log.error("PG call failed for %s: %s", subject, exc)
            self._conn.rollback()
            raise RetryError(subject, f"postgres error: {exc}") from exc


class PostgresCommitLedger(_PostgresStore, ICommitLedger):
    """Concrete ICommitLedger over `t_commit_ownership`."""

    def find_matching_commits(self, commit_hashes: list[str]) -> list[CommitRecord]:
        if not commit_hashes:
            log.warning("find_matching_commits called with no commits")
            return []

        with self._cursor(commit_hashes[0]) as cur:
            cur.execute(
                "SELECT * FROM stm_find_projects_by_commits(%s::varchar[])",
                (list(commit_hashes),),
            )
            rows = cur.fetchall()

        records = [
            CommitRecord(
                owner_id    = row["owner_id"],
                project_id  = row["project_id"],
                commit_hash = row["commit_hash"],
                commit_ts   = int(row["commit_ts"]),
            )
            for row in rows
        ]
        return records

    def add_commits(self, owner_id: str, project_id: str, commit_hashes: list[str], commit_ts: list[int]) -> None:
        if len(commit_hashes) != len(commit_ts):
            raise ValueError(
                f"{len(commit_hashes)} commit hashes do not match {len(commit_ts)} timestamps"
            )
        if not commit_hashes:
            log.warning("add_commits called with no commits for %s/%s", owner_id, project_id)
            return

        with self._cursor(owner_id, commit=True) as cur:
            cur.execute(
                "SELECT stm_add_commits(%s, %s, %s::varchar[], %s::bigint[])",
                (owner_id, project_id, list(commit_hashes), list(commit_ts)),
            )
        log.info("Added %d commits to %s/%s", len(commit_hashes), owner_id, project_id)

    def get_latest_project_commit(self, owner_id: str, project_id: str) -> int:
        with self._cursor(owner_id) as cur:
            cur.execute(
                "SELECT stm_get_latest_project_commit(%s, %s) AS commit_ts",
                (owner_id, project_id),
            )
            row = cur.fetchone()

        # no commits on record yet
        if not row or row["commit_ts"] is None:
            return 0
        return int(row["commit_ts"])


class PostgresOwnershipStore(_PostgresStore, IOwnershipStore):

    def add_email(self, owner_id: str, email: str, is_primary: bool) -> None:
        with self._cursor(owner_id, commit=True) as cur:
            cur.execute("SELECT stm_add_email(%s, %s, %s)", (owner_id, email, is_primary))
        log.info("Email %s added for %s, primary: %s", email, owner_id, is_primary)

    def queue_up_for_update(self, owner_id: str, login_hint: str | None) -> None:
        with self._cursor(owner_id, commit=True) as cur:
            cur.execute("SELECT stm_queue_up_dev_report(%s, %s)", (owner_id, login_hint))
        log.info("Dev %s queued up for a profile update", owner_id)


class PostgresDevJobQueue(_PostgresStore, IDevJobQueue):
    """
    `t_dev` used as a job queue. Claimed rows are locked with
    FOR UPDATE SKIP LOCKED inside `stm_get_dev_jobs`, so several flows can
    poll the same table.
    """

    def claim(self, in_flight_id: UUID, jobs_max: int) -> list[DevJob]:
        with self._cursor(str(in_flight_id), commit=True) as cur:
            cur.execute("SELECT * FROM stm_get_dev_jobs(%s::uuid, %s)", (str(in_flight_id), jobs_max))
            rows = cur.fetchall()

        jobs = [DevJob.from_row(dict(row)) for row in rows]
        log.info("Claimed %d dev jobs as %s", len(jobs), in_flight_id)
        return jobs

    def mark_completed(
        self,
        owner_id: str,
        in_flight_id: UUID,
        gh_login: str | None = None,
        gist_id: str | None = None,
    ) -> None:
        with self._cursor(owner_id, commit=True) as cur:
            cur.execute(
                "SELECT stm_complete_dev_job(%s, %s::uuid, %s, %s)",
                (owner_id, str(in_flight_id), gh_login, gist_id),
            )
        if gh_login:
            log.info("Dev %s linked to GitHub login %s", owner_id, gh_login)

    def mark_failed(self, owner_id: str, in_flight_id: UUID) -> None:
        with self._cursor(owner_id, commit=True) as cur:
            cur.execute("SELECT stm_give_up_on_dev(%s, %s::uuid)", (owner_id, str(in_flight_id)))
        log.warning("Gave up on dev %s", owner_id)

"""
Domain Layer — Interfaces (Abstract Contracts)
-----------------------------------------------
What the infrastructure must provide. The application layer depends on these
and never on psycopg2, boto3 or httpx directly, so every use case can be
tested with in-memory fakes.

Postgres-backed contracts are synchronous, the way psycopg2 is. Object
storage and search contracts are async so independent calls can overlap.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from uuid import UUID

from stm_inbox.domain.entities import CommitRecord, DevJob, Gist, S3ObjectProps


class ICommitLedger(ABC):
    """The single source of truth for project identity."""

    @abstractmethod
    def find_matching_commits(self, commit_hashes: list[str]) -> list[CommitRecord]:
        """All ledger rows for any of the hashes, across all owners and projects."""
        ...

    @abstractmethod
    def add_commits(self, owner_id: str, project_id: str, commit_hashes: list[str], commit_ts: list[int]) -> None:
        """Record commits for a project. Already known (owner, hash) pairs are left as-is."""
        ...

    @abstractmethod
    def get_latest_project_commit(self, owner_id: str, project_id: str) -> int:
        """The newest commit timestamp known for the project, 0 if none."""
        ...


class IOwnershipStore(ABC):
    """Upserts that tie an owner to emails and to the dev-report queue."""

    @abstractmethod
    def add_email(self, owner_id: str, email: str, is_primary: bool) -> None:
        ...

    @abstractmethod
    def queue_up_for_update(self, owner_id: str, login_hint: str | None) -> None:
        """Flag the developer for a profile re-merge."""
        ...


class IDevJobQueue(ABC):
    """DB-based queue of developers waiting for a merged profile."""

    @abstractmethod
    def claim(self, in_flight_id: UUID, jobs_max: int) -> list[DevJob]:
        """Tag up to `jobs_max` stale devs with `in_flight_id` and return them."""
        ...

    @abstractmethod
    def mark_completed(
        self,
        owner_id: str,
        in_flight_id: UUID,
        gh_login: str | None = None,
        gist_id: str | None = None,
    ) -> None:
        """Mark the profile as fresh and record the validated GitHub login, if any."""
        ...

    @abstractmethod
    def mark_failed(self, owner_id: str, in_flight_id: UUID) -> None:
        """Give up on the dev until a new submission arrives."""
        ...


class IObjectStore(ABC):
    """Minimal S3 surface used by the pipeline."""

    @abstractmethod
    async def get_bytes(self, bucket: str, key: str) -> bytes:
        """Object contents. An empty or missing object is an error."""
        ...

    @abstractmethod
    async def put_bytes(self, bucket: str, key: str, payload: bytes) -> None:
        ...

    @abstractmethod
    async def copy(self, src_bucket: str, src_key: str, dst_bucket: str, dst_key: str) -> None:
        ...

    @abstractmethod
    async def delete(self, bucket: str, key: str) -> None:
        ...

    @abstractmethod
    async def list_objects(self, bucket: str, prefix: str) -> list[S3ObjectProps]:
        """Every object under the prefix, following pagination."""
        ...


class ISearchIndex(ABC):

    @abstractmethod
    async def put_document(self, idx: str, doc_id: str, gz_json: bytes) -> None:
        """Store a gzip-compressed JSON document under `doc_id`."""
        ...


class IGistFetcher(ABC):

    @abstractmethod
    async def fetch_gist(self, gist_id: str) -> Gist | None:
        """
        The gist, or None if it does not exist or cannot be understood.
        Raises RetryError if GitHub cannot be reached.
        """
        ...

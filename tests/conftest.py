"""
tests/conftest.py — in-memory fakes of the domain interfaces plus shared
fixtures. Nothing here touches AWS, Postgres or the network.
"""

from __future__ import annotations

import gzip
import json
from datetime import datetime, timedelta, timezone
from uuid import UUID

import base58
import pytest
from cryptography.hazmat.primitives.asymmetric.ed25519 import Ed25519PrivateKey
from cryptography.hazmat.primitives.serialization import Encoding, PublicFormat

from stm_inbox.domain.entities import CommitRecord, DevJob, GhLink, Gist, S3ObjectProps
from stm_inbox.domain.failures import DoNotRetryError, RetryError
from stm_inbox.domain.interfaces import (
    ICommitLedger,
    IDevJobQueue,
    IGistFetcher,
    IObjectStore,
    IOwnershipStore,
    ISearchIndex,
)

INBOX_BUCKET   = "stm-inbox"
REPORTS_BUCKET = "stm-reports"
GH_BUCKET      = "stm-gh-reports"
BASE_TIME      = datetime(2021, 7, 1, tzinfo=timezone.utc)


# ---------------------------------------------------------------------------
# Fakes
# ---------------------------------------------------------------------------

class FakeLedger(ICommitLedger):
    """t_commit_ownership as a dict keyed by (owner, hash)."""

    def __init__(self, rows: list[CommitRecord] | None = None) -> None:
        self.rows: dict[tuple[str, str], CommitRecord] = {}
        self.lookups: list[list[str]] = []
        self.add_calls = 0
        for row in rows or []:
            self.rows[(row.owner_id, row.commit_hash)] = row

    def find_matching_commits(self, commit_hashes):
        self.lookups.append(list(commit_hashes))
        wanted = set(commit_hashes)
        return [r for r in self.rows.values() if r.commit_hash in wanted]

    def add_commits(self, owner_id, project_id, commit_hashes, commit_ts):
        self.add_calls += 1
        for commit_hash, ts in zip(commit_hashes, commit_ts):
            self.rows.setdefault((owner_id, commit_hash), CommitRecord(owner_id, project_id, commit_hash, ts))

    def get_latest_project_commit(self, owner_id, project_id):
        return max(
            (r.commit_ts for r in self.rows.values() if r.owner_id == owner_id and r.project_id == project_id),
            default=0,
        )

    def project_rows(self, owner_id: str, project_id: str) -> list[CommitRecord]:
        return [r for r in self.rows.values() if r.owner_id == owner_id and r.project_id == project_id]


class FakeOwnership(IOwnershipStore):

    def __init__(self) -> None:
        self.emails: list[tuple[str, str, bool]] = []
        self.queued: list[tuple[str, str | None]] = []

    def add_email(self, owner_id, email, is_primary):
        self.emails.append((owner_id, email, is_primary))

    def queue_up_for_update(self, owner_id, login_hint):
        self.queued.append((owner_id, login_hint))


class FakeObjectStore(IObjectStore):
    """A dict of (bucket, key) → bytes with switchable failures."""

    def __init__(self) -> None:
        self.objects: dict[tuple[str, str], bytes] = {}
        self.modified: dict[tuple[str, str], datetime] = {}
        self.deleted: list[tuple[str, str]] = []
        self.fail_copy_to: set[str] = set()
        self.fail_get: set[str] = set()
        self.fail_delete = False
        self.fail_list = False
        self._clock = BASE_TIME

    def add(self, bucket: str, key: str, payload: bytes, modified: datetime | None = None) -> None:
        self.objects[(bucket, key)] = payload
        if modified is None:
            self._clock += timedelta(seconds=1)
            modified = self._clock
        self.modified[(bucket, key)] = modified

    def keys(self, bucket: str) -> list[str]:
        return sorted(k for b, k in self.objects if b == bucket)

    async def get_bytes(self, bucket, key):
        if key in self.fail_get:
            raise RetryError(key, "S3 get failed")
        try:
            return self.objects[(bucket, key)]
        except KeyError:
            raise DoNotRetryError(key, "no such object") from None

    async def put_bytes(self, bucket, key, payload):
        self.add(bucket, key, payload)

    async def copy(self, src_bucket, src_key, dst_bucket, dst_key):
        if dst_key in self.fail_copy_to:
            raise RetryError(src_key, "S3 copy failed")
        self.add(dst_bucket, dst_key, self.objects[(src_bucket, src_key)])

    async def delete(self, bucket, key):
        if self.fail_delete:
            raise RetryError(key, "S3 delete failed")
        self.objects.pop((bucket, key), None)
        self.deleted.append((bucket, key))

    async def list_objects(self, bucket, prefix):
        if self.fail_list:
            raise RetryError(prefix, "S3 list failed")
        return [
            S3ObjectProps(key=k, last_modified=self.modified[(b, k)], size=len(v))
            for (b, k), v in sorted(self.objects.items())
            if b == bucket and k.startswith(prefix)
        ]


class FakeJobQueue(IDevJobQueue):
    """Hands out one batch per claim, then nothing."""

    def __init__(self, batches: list[list[DevJob]] | None = None, claim_error: bool = False) -> None:
        self.batches = list(batches or [])
        self.claim_error = claim_error
        self.claims: list[UUID] = []
        self.completed: list[tuple[str, UUID]] = []
        self.failed: list[tuple[str, UUID]] = []
        self.gh_links: dict[str, GhLink] = {}

    def claim(self, in_flight_id, jobs_max):
        self.claims.append(in_flight_id)
        if self.claim_error:
            raise RetryError(str(in_flight_id), "postgres error")
        return self.batches.pop(0)[:jobs_max] if self.batches else []

    def mark_completed(self, owner_id, in_flight_id, gh_login=None, gist_id=None):
        self.completed.append((owner_id, in_flight_id))
        self.gh_links[owner_id] = GhLink(gh_login, gist_id)

    def mark_failed(self, owner_id, in_flight_id):
        self.failed.append((owner_id, in_flight_id))


class FakeIndex(ISearchIndex):

    def __init__(self, fail: bool = False) -> None:
        self.docs: dict[tuple[str, str], bytes] = {}
        self.fail = fail

    async def put_document(self, idx, doc_id, gz_json):
        if self.fail:
            raise RetryError(doc_id, "ES responded with 503")
        self.docs[(idx, doc_id)] = gz_json


class FakeGistFetcher(IGistFetcher):
    """Gists by id. Unknown ids are treated as deleted."""

    def __init__(self, gists: dict[str, Gist] | None = None, fail: bool = False) -> None:
        self.gists = dict(gists or {})
        self.fail = fail
        self.fetched: list[str] = []

    async def fetch_gist(self, gist_id):
        self.fetched.append(gist_id)
        if self.fail:
            raise RetryError(gist_id, "GitHub API unavailable")
        return self.gists.get(gist_id)


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------

def make_owner() -> tuple[str, Ed25519PrivateKey]:
    """A fresh member key pair. The owner id is the base58 public key."""
    private_key = Ed25519PrivateKey.generate()
    raw = private_key.public_key().public_bytes(Encoding.Raw, PublicFormat.Raw)
    return base58.b58encode(raw).decode("ascii"), private_key


def sign(private_key: Ed25519PrivateKey, payload: bytes) -> str:
    return base58.b58encode(private_key.sign(payload)).decode("ascii")


def report_doc(
    commits: list[str] | None,
    last_epoch: int = 1_627_380_297,
    sha1: str = "e29d17e6" + "a" * 32,
    **extra,
) -> dict:
    """A minimal single-project report as submitted by the analysis app."""
    doc = {
        "timestamp": "2021-07-27T10:05:00Z",
        "last_contributor_commit_sha1": sha1,
        "last_contributor_commit_date_epoch": last_epoch,
        "first_contributor_commit_date_epoch": 1_600_000_000,
        "contributor_git_ids": ["Max <max@example.com>", "max@example.com"],
        "tech": [{"language": "Rust", "files": 3, "code_lines": 120, "total_lines": 150}],
        "projects_included": [{"commits": commits}],
    }
    doc.update(extra)
    return doc


def gz(doc: dict) -> bytes:
    return gzip.compress(json.dumps(doc).encode("utf-8"))


# ---------------------------------------------------------------------------
# Fixtures
# ---------------------------------------------------------------------------

@pytest.fixture
def owner():
    return make_owner()


@pytest.fixture
def owner_id(owner) -> str:
    return owner[0]


@pytest.fixture
def store() -> FakeObjectStore:
    return FakeObjectStore()


@pytest.fixture
def ledger() -> FakeLedger:
    return FakeLedger()


@pytest.fixture
def ownership() -> FakeOwnership:
    return FakeOwnership()

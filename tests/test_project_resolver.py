import pytest

from stm_inbox.application.project_resolver import LOOKUP_CAP, ProjectIdentityResolver
from stm_inbox.domain.entities import CommitRecord
from stm_inbox.domain.failures import DoNotRetryError

from conftest import FakeLedger

OWNER = "owner-1"


def commits(n: int, start: int = 0) -> list[str]:
    return [f"{i:08x}_{1_600_000_000 + i}" for i in range(start, start + n)]


def test_unknown_commits_mint_a_new_project():
    ledger = FakeLedger()
    resolution = ProjectIdentityResolver(ledger).resolve(OWNER, commits(3))

    assert resolution.is_new
    assert resolution.project_id
    assert len(ledger.project_rows(OWNER, resolution.project_id)) == 3


def test_matching_commits_reuse_the_project():
    ledger = FakeLedger([CommitRecord(OWNER, "p1", "00000001", 1_600_000_001)])
    resolution = ProjectIdentityResolver(ledger).resolve(OWNER, commits(3))

    assert not resolution.is_new
    assert resolution.project_id == "p1"
    assert len(ledger.project_rows(OWNER, "p1")) == 3


def test_hash_match_with_a_different_timestamp_is_not_a_match():
    # same short hash in an unrelated history
    ledger = FakeLedger([CommitRecord("someone-else", "p9", "00000001", 42)])
    resolution = ProjectIdentityResolver(ledger).resolve(OWNER, commits(3))

    assert resolution.is_new
    assert resolution.project_id != "p9"


def test_matches_in_two_projects_abort_without_writing():
    ledger = FakeLedger([
        CommitRecord(OWNER, "p1", "00000000", 1_600_000_000),
        CommitRecord("other", "p2", "00000001", 1_600_000_001),
    ])

    with pytest.raises(DoNotRetryError) as exc_info:
        ProjectIdentityResolver(ledger).resolve(OWNER, commits(3))

    assert exc_info.value.reason == "commits match multiple projects"
    assert ledger.add_calls == 0
    assert len(ledger.rows) == 2


def test_lookup_is_capped_but_every_commit_is_recorded():
    ledger = FakeLedger()
    resolution = ProjectIdentityResolver(ledger).resolve(OWNER, commits(LOOKUP_CAP + 25))

    assert len(ledger.lookups) == 1
    assert len(ledger.lookups[0]) == LOOKUP_CAP
    assert len(ledger.project_rows(OWNER, resolution.project_id)) == LOOKUP_CAP + 25


def test_a_match_beyond_the_cap_is_not_seen():
    # only the ledger row for commit #60 exists, past the lookup sample
    ledger = FakeLedger([CommitRecord(OWNER, "p1", f"{60:08x}", 1_600_000_060)])
    resolution = ProjectIdentityResolver(ledger).resolve(OWNER, commits(LOOKUP_CAP + 25))

    assert resolution.is_new


def test_malformed_commit_aborts_before_any_ledger_call():
    ledger = FakeLedger()

    with pytest.raises(DoNotRetryError):
        ProjectIdentityResolver(ledger).resolve(OWNER, commits(2) + ["nothex!!_123"])

    assert ledger.lookups == []
    assert ledger.add_calls == 0


def test_empty_commit_list_cannot_be_resolved():
    with pytest.raises(DoNotRetryError):
        ProjectIdentityResolver(FakeLedger()).resolve(OWNER, [])


def test_known_commits_keep_their_original_project():
    ledger = FakeLedger([CommitRecord(OWNER, "p1", "00000000", 1_600_000_000)])
    ProjectIdentityResolver(ledger).resolve(OWNER, commits(2))
    ProjectIdentityResolver(ledger).resolve(OWNER, commits(3))

    assert {r.project_id for r in ledger.rows.values()} == {"p1"}
    assert len(ledger.rows) == 3

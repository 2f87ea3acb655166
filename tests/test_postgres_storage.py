from unittest.mock import MagicMock
from uuid import UUID

import psycopg2
import pytest

from stm_inbox.domain.entities import CommitRecord, DevJob
from stm_inbox.domain.failures import RetryError
from stm_inbox.infrastructure.postgres_storage import (
    PostgresCommitLedger,
    PostgresDevJobQueue,
    PostgresOwnershipStore,
)

JOB_ID = UUID("e2b89194-35b1-4d3a-b5e7-fbf2304f84c7")


@pytest.fixture
def cursor():
    return MagicMock()


@pytest.fixture
def conn(cursor):
    conn = MagicMock()
    conn.cursor.return_value.__enter__.return_value = cursor
    return conn


class TestCommitLedger:

    def test_find_matching_commits(self, conn, cursor):
        cursor.fetchall.return_value = [
            {"owner_id": "o1", "project_id": "p1", "commit_hash": "a1b2c3d4", "commit_ts": 1000},
        ]

        rows = PostgresCommitLedger(conn).find_matching_commits(["a1b2c3d4", "b1b2c3d4"])

        assert rows == [CommitRecord("o1", "p1", "a1b2c3d4", 1000)]
        sql, params = cursor.execute.call_args.args
        assert "stm_find_projects_by_commits" in sql
        assert params == (["a1b2c3d4", "b1b2c3d4"],)

    def test_no_hashes_means_no_query(self, conn, cursor):
        assert PostgresCommitLedger(conn).find_matching_commits([]) == []
        cursor.execute.assert_not_called()

    def test_add_commits_commits_the_transaction(self, conn, cursor):
        PostgresCommitLedger(conn).add_commits("o1", "p1", ["a1b2c3d4"], [1000])

        sql, params = cursor.execute.call_args.args
        assert "stm_add_commits" in sql
        assert params == ("o1", "p1", ["a1b2c3d4"], [1000])
        conn.commit.assert_called_once()

    def test_add_commits_rejects_mismatched_lengths(self, conn, cursor):
        with pytest.raises(ValueError):
            PostgresCommitLedger(conn).add_commits("o1", "p1", ["a1b2c3d4"], [])
        cursor.execute.assert_not_called()

    def test_add_no_commits_is_a_no_op(self, conn, cursor):
        PostgresCommitLedger(conn).add_commits("o1", "p1", [], [])
        cursor.execute.assert_not_called()

    @pytest.mark.parametrize("row, expected", [
        ({"commit_ts": 1627380297}, 1627380297),
        ({"commit_ts": None}, 0),
        (None, 0),
    ])
    def test_latest_project_commit(self, conn, cursor, row, expected):
        cursor.fetchone.return_value = row
        assert PostgresCommitLedger(conn).get_latest_project_commit("o1", "p1") == expected

    def test_db_error_is_rolled_back_and_retryable(self, conn, cursor):
        cursor.execute.side_effect = psycopg2.OperationalError("server closed the connection")

        with pytest.raises(RetryError):
            PostgresCommitLedger(conn).add_commits("o1", "p1", ["a1b2c3d4"], [1000])

        conn.rollback.assert_called_once()
        conn.commit.assert_not_called()


class TestOwnershipStore:

    def test_add_email(self, conn, cursor):
        PostgresOwnershipStore(conn).add_email("o1", "max@example.com", True)

        sql, params = cursor.execute.call_args.args
        assert "stm_add_email" in sql
        assert params == ("o1", "max@example.com", True)
        conn.commit.assert_called_once()

    def test_queue_up_for_update(self, conn, cursor):
        PostgresOwnershipStore(conn).queue_up_for_update("o1", None)

        sql, params = cursor.execute.call_args.args
        assert "stm_queue_up_dev_report" in sql
        assert params == ("o1", None)

    def test_failure_is_retryable(self, conn, cursor):
        cursor.execute.side_effect = psycopg2.InterfaceError("connection already closed")
        with pytest.raises(RetryError):
            PostgresOwnershipStore(conn).queue_up_for_update("o1", None)


class TestDevJobQueue:

    def test_claim_returns_jobs(self, conn, cursor):
        cursor.fetchall.return_value = [
            {"owner_id": "o1", "report_fail_counter": 1, "gh_login": "rimutaka", "extra_column": "x"},
        ]

        jobs = PostgresDevJobQueue(conn).claim(JOB_ID, 100)

        assert jobs == [DevJob(owner_id="o1", report_fail_counter=1, gh_login="rimutaka")]
        sql, params = cursor.execute.call_args.args
        assert "stm_get_dev_jobs" in sql
        assert params == (str(JOB_ID), 100)
        conn.commit.assert_called_once()

    def test_mark_completed_and_failed(self, conn, cursor):
        queue = PostgresDevJobQueue(conn)
        queue.mark_completed("o1", JOB_ID)
        queue.mark_failed("o2", JOB_ID)

        calls = [c.args for c in cursor.execute.call_args_list]
        assert "stm_complete_dev_job" in calls[0][0] and calls[0][1] == ("o1", str(JOB_ID), None, None)
        assert "stm_give_up_on_dev" in calls[1][0] and calls[1][1] == ("o2", str(JOB_ID))

    def test_mark_completed_records_the_github_login(self, conn, cursor):
        PostgresDevJobQueue(conn).mark_completed("o1", JOB_ID, "rimutaka", "fb8fc0f87ee78231f064131022c8154a")

        sql, params = cursor.execute.call_args.args
        assert sql == "SELECT stm_complete_dev_job(%s, %s::uuid, %s, %s)"
        assert params == ("o1", str(JOB_ID), "rimutaka", "fb8fc0f87ee78231f064131022c8154a")
        conn.commit.assert_called_once()

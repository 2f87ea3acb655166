"""
S3 key layout shared by the router and the profile merger.

  <inbox-prefix>/<epoch>_<owner_id>.gzip                   new submission
  <reports-prefix>/<owner_id>/<project_id>/<ts>_<sha1>.gz  archived report
  <reports-prefix>/<owner_id>/<project_id>/report.gz       latest report
  <reports-prefix>/<owner_id>/profile.gz                   merged dev profile
"""

from __future__ import annotations

import logging
from datetime import datetime
from email.utils import parsedate_to_datetime

from stm_inbox.domain.failures import DoNotRetryError
from stm_inbox.domain.identifiers import validate_owner_id

log = logging.getLogger(__name__)

REPORT_FILE_EXT           = ".gz"
INBOX_FILE_EXT            = ".gzip"
COMBINED_REPORT_FILE_NAME = "report" + REPORT_FILE_EXT
DEV_PROFILE_FILE_NAME     = "profile" + REPORT_FILE_EXT


def inbox_key(inbox_prefix: str, submitted_at: int, owner_id: str) -> str:
    return f"{inbox_prefix}/{submitted_at}_{owner_id}{INBOX_FILE_EXT}"


def inbox_owner_hint(s3_key: str) -> str | None:
    """
    Extract the owner id from a key like
    `queue/1621680890_7prBWD7pzYk2czeXZeXzjxjDQbnuka2RLShdW5AxWuk7.gzip`.
    The value is an untrusted hint and must be validated by the caller.
    """
    file_name = s3_key.rsplit("/", 1)[-1]
    if "_" not in file_name:
        return None
    return file_name.rsplit("_", 1)[-1].split(".", 1)[0] or None


def history_report_key(prefix: str, owner_id: str, project_id: str, commit_ts: int, sha1: str) -> str:
    return f"{prefix}/{owner_id}/{project_id}/{commit_ts}_{sha1}{REPORT_FILE_EXT}"


def latest_report_key(prefix: str, owner_id: str, project_id: str) -> str:
    return f"{prefix}/{owner_id}/{project_id}/{COMBINED_REPORT_FILE_NAME}"


def build_dev_s3_key(prefix: str, owner_id: str) -> str:
    """
    `<prefix>/<owner_id>/` with the trailing slash, because `reports/abc`
    would also match `reports/abcd/`.
    """
    if not validate_owner_id(owner_id):
        raise DoNotRetryError(owner_id, "invalid owner id")
    return f"{prefix}/{owner_id}/"


def dev_profile_key(prefix: str, owner_id: str) -> str:
    return build_dev_s3_key(prefix, owner_id) + DEV_PROFILE_FILE_NAME


def is_combined_project_report(s3_key: str, prefix: str, owner: str) -> bool:
    """True only for `<prefix>/<owner>/<project>/report.gz`."""
    head = f"{prefix}/{owner}/"
    tail = "/" + COMBINED_REPORT_FILE_NAME
    if not s3_key.startswith(head) or not s3_key.endswith(tail):
        return False

    project = s3_key[len(head):-len(tail)]
    return bool(project) and "/" not in project


def split_key_into_parts(s3_key: str) -> tuple[str, str]:
    """
    Return (owner, project) by reading the key from the end, e.g.
    `reports/9PdH.../NeYatzas1FrogKLDe2nBG8/report.gz` -> ("9PdH...", "NeYatzas1FrogKLDe2nBG8").
    Only works on full keys that include the object name.
    """
    parts = s3_key.split("/")
    if len(parts) < 4:
        raise ValueError(f"Invalid S3 key: {s3_key}")
    return parts[-3], parts[-2]


def parse_last_modified(value: datetime | str | None) -> int | None:
    """
    Convert the S3 last-modified value into an epoch timestamp.
    boto3 returns datetimes; raw headers come as RFC 3339 or RFC 2822 strings.
    """
    if value is None:
        log.error("last_modified is missing")
        return None

    if isinstance(value, datetime):
        return int(value.timestamp())

    try:
        return int(datetime.fromisoformat(value.replace("Z", "+00:00")).timestamp())
    except ValueError:
        pass

    try:
        return int(parsedate_to_datetime(value).timestamp())
    except (TypeError, ValueError) as exc:
        log.error("Invalid date in last_modified: %s / %s", value, exc)
        return None

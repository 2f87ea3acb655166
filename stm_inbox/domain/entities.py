from __future__ import annotations

import json
from dataclasses import asdict, dataclass, field, replace
from datetime import datetime
from typing import Any
from uuid import UUID


@dataclass(frozen=True)
class CommitRecord:
    """
    One row of the commit ledger: a short commit hash seen in a report
    and the project it was attributed to. Never updated in place.
    """
    owner_id:    str
    project_id:  str
    commit_hash: str
    commit_ts:   int


@dataclass(frozen=True)
class Tech:
    """Per-language totals."""
    language:    str
    files:       int = 0
    code_lines:  int = 0
    total_lines: int = 0

    def __add__(self, other: Tech) -> Tech:
        return Tech(
            language    = self.language,
            files       = self.files + other.files,
            code_lines  = self.code_lines + other.code_lines,
            total_lines = self.total_lines + other.total_lines,
        )


@dataclass(frozen=True)
class ProjectSummary:
    """
    Overview of a single project inside a report.
    `commits` holds the recent commits as `<8-hex-hash>_<epoch>` strings.
    """
    project_id:       str | None = None
    github_user_name: str | None = None
    github_repo_name: str | None = None
    last_contributor_commit_date_epoch: int | None = None
    commits: tuple[str, ...] | None = None
    tech:    tuple[Tech, ...] = ()

    def identity(self) -> str:
        if self.project_id:
            return self.project_id
        if self.github_user_name or self.github_repo_name:
            return f"{self.github_user_name}/{self.github_repo_name}"
        return ""


@dataclass(frozen=True)
class Report:
    """
    A code-analysis report, either for one project as submitted by a member
    or combined across all projects of a developer.

    Field names follow the JSON produced by the analysis app. Unknown keys
    are ignored when parsing.
    """
    timestamp:         str | None = None
    owner_id:          str | None = None
    project_id:        str | None = None
    github_user_name:  str | None = None
    github_repo_name:  str | None = None
    last_contributor_commit_sha1:        str | None = None
    last_contributor_commit_date_epoch:  int | None = None
    first_contributor_commit_date_epoch: int | None = None
    # privacy / contact details, the most recent report always wins
    public_name:      str | None = None
    public_contact:   str | None = None
    primary_email:    str | None = None
    gh_validation_id: str | None = None
    contributor_git_ids: tuple[str, ...] = ()
    tech:                tuple[Tech, ...] = ()
    projects_included:   tuple[ProjectSummary, ...] = ()

    # ------------------------------------------------------------------
    # Serialization
    # ------------------------------------------------------------------

    @classmethod
    def from_json(cls, data: bytes | str) -> Report:
        """Raises ValueError if the payload is not a valid report."""
        doc = json.loads(data)
        if not isinstance(doc, dict):
            raise ValueError("report must be a JSON object")
        return cls.from_dict(doc)

    @classmethod
    def from_dict(cls, doc: dict[str, Any]) -> Report:
        try:
            return cls(
                timestamp        = _opt_str(doc.get("timestamp")),
                owner_id         = _opt_str(doc.get("owner_id")),
                project_id       = _opt_str(doc.get("project_id")),
                github_user_name = _opt_str(doc.get("github_user_name")),
                github_repo_name = _opt_str(doc.get("github_repo_name")),
                last_contributor_commit_sha1        = _opt_str(doc.get("last_contributor_commit_sha1")),
                last_contributor_commit_date_epoch  = _opt_int(doc.get("last_contributor_commit_date_epoch")),
                first_contributor_commit_date_epoch = _opt_int(doc.get("first_contributor_commit_date_epoch")),
                public_name      = _opt_str(doc.get("public_name")),
                public_contact   = _opt_str(doc.get("public_contact")),
                primary_email    = _opt_str(doc.get("primary_email")),
                gh_validation_id = _opt_str(doc.get("gh_validation_id")),
                contributor_git_ids = tuple(_opt_str(v) for v in doc.get("contributor_git_ids") or ()),
                tech              = tuple(_parse_tech(t) for t in doc.get("tech") or ()),
                projects_included = tuple(_parse_project(p) for p in doc.get("projects_included") or ()),
            )
        except (KeyError, TypeError, AttributeError) as exc:
            raise ValueError(f"malformed report: {exc}") from exc

    def to_dict(self) -> dict[str, Any]:
        return _lists(asdict(self))

    def to_json(self) -> bytes:
        """Deterministic: the same report always serializes to the same bytes."""
        return json.dumps(self.to_dict(), sort_keys=True, separators=(",", ":")).encode("utf-8")

    # ------------------------------------------------------------------
    # Merging
    # ------------------------------------------------------------------

    def abridge(self) -> Report:
        """Drop the bulky per-project commit lists before merging."""
        return replace(
            self,
            projects_included=tuple(replace(p, commits=None) for p in self.projects_included),
        )

    @classmethod
    def merge(cls, combined: Report | None, other: Report) -> Report:
        """
        Fold `other` into `combined`. The order matters: `other` is treated
        as the more recent report, so its privacy and contact details replace
        the earlier ones. Totals are summed and projects are kept once per
        identity, the later summary replacing the earlier one.

        The result is developer-level and carries no project identity of its
        own. The identity of `other` moves into its project summaries.
        """
        base = combined if combined is not None else cls()

        # newest commit decides the last commit details
        if other.last_contributor_commit_date_epoch is not None and (
            base.last_contributor_commit_date_epoch is None
            or other.last_contributor_commit_date_epoch >= base.last_contributor_commit_date_epoch
        ):
            last_epoch = other.last_contributor_commit_date_epoch
            last_sha1  = other.last_contributor_commit_sha1
        else:
            last_epoch = base.last_contributor_commit_date_epoch
            last_sha1  = base.last_contributor_commit_sha1

        firsts = [
            v for v in (base.first_contributor_commit_date_epoch, other.first_contributor_commit_date_epoch)
            if v is not None
        ]

        tech: dict[str, Tech] = {t.language: t for t in base.tech}
        for t in other.tech:
            tech[t.language] = tech[t.language] + t if t.language in tech else t

        git_ids = list(base.contributor_git_ids)
        git_ids += [g for g in other.contributor_git_ids if g not in git_ids]

        projects: dict[str, ProjectSummary] = {p.identity(): p for p in base.projects_included}
        for p in other._stamped_projects():
            projects[p.identity()] = p

        return cls(
            timestamp        = other.timestamp,
            owner_id         = other.owner_id,
            project_id       = None,
            github_user_name = None,
            github_repo_name = None,
            last_contributor_commit_sha1        = last_sha1,
            last_contributor_commit_date_epoch  = last_epoch,
            first_contributor_commit_date_epoch = min(firsts) if firsts else None,
            public_name      = other.public_name,
            public_contact   = other.public_contact,
            primary_email    = other.primary_email,
            gh_validation_id = other.gh_validation_id,
            contributor_git_ids = tuple(git_ids),
            tech                = tuple(tech[k] for k in sorted(tech)),
            projects_included   = tuple(projects.values()),
        )

    def _stamped_projects(self) -> tuple[ProjectSummary, ...]:
        if not (self.project_id or self.github_user_name or self.github_repo_name):
            return self.projects_included
        return tuple(
            replace(
                p,
                project_id       = self.project_id,
                github_user_name = self.github_user_name,
                github_repo_name = self.github_repo_name,
            )
            for p in self.projects_included
        )


@dataclass(frozen=True)
class DeveloperProfile:
    """
    The merge output for one developer. Rebuilt from scratch on every merge
    cycle and never patched.
    """
    owner_id:   str
    updated_at: str
    report:     Report | None = None

    def to_json(self) -> bytes:
        doc = {
            "owner_id":   self.owner_id,
            "updated_at": self.updated_at,
            "report":     self.report.to_dict() if self.report else None,
        }
        return json.dumps(doc, sort_keys=True, separators=(",", ":")).encode("utf-8")


@dataclass(frozen=True)
class MergeResult:
    """A merged profile plus how many stored reports went in or were skipped."""
    profile: DeveloperProfile
    merged:  int
    skipped: int


@dataclass(frozen=True)
class Resolution:
    project_id: str
    is_new:     bool
    commits:    dict[str, int] = field(default_factory=dict)


@dataclass(frozen=True)
class RelocationResult:
    history_key: str
    latest_key:  str | None


@dataclass(frozen=True)
class RoutingOutcome:
    """What the inbox router did with one submission."""
    s3_key:      str
    status:      str          # accepted | out_of_order | rejected
    owner_id:    str | None = None
    project_id:  str | None = None
    history_key: str | None = None
    latest_key:  str | None = None
    reason:      str | None = None


@dataclass(frozen=True)
class SubmissionResult:
    status_code: int
    message:     str | None = None
    s3_key:      str | None = None


@dataclass(frozen=True)
class S3ObjectProps:
    """Some of the object properties returned by S3 ListObjectsV2."""
    key:           str
    last_modified: datetime | str | None
    size:          int = 0


@dataclass(frozen=True)
class DevJob:
    """A row of `t_dev`, the queue of developers waiting for a merged profile."""
    owner_id:                 str
    report_ts:                datetime | None = None
    report_in_flight_id:      UUID | None = None
    report_in_flight_ts:      datetime | None = None
    report_fail_counter:      int = 0
    last_submission_ts:       datetime | None = None
    gh_login:                 str | None = None
    gh_login_gist_validation: str | None = None
    gh_login_validation_ts:   datetime | None = None
    gh_login_gist_latest:     str | None = None

    @classmethod
    def from_row(cls, row: dict[str, Any]) -> DevJob:
        return cls(**{k: row.get(k) for k in cls.__dataclass_fields__ if k in row})


@dataclass(frozen=True)
class Gist:
    """The parts of a GitHub gist used to prove who owns a GitHub login."""
    gist_id:     str
    owner_login: str
    content:     str


@dataclass(frozen=True)
class GhLink:
    """GitHub login of a dev and the gist it was validated from."""
    gh_login: str | None = None
    gist_id:  str | None = None


# ---------------------------------------------------------------------------
# Anti-corruption helpers
# ---------------------------------------------------------------------------

def _opt_str(value: Any) -> str | None:
    if value is None:
        return None
    if not isinstance(value, str):
        raise TypeError(f"expected a string, got {type(value).__name__}")
    return value


def _opt_int(value: Any) -> int | None:
    if value is None:
        return None
    if isinstance(value, bool) or not isinstance(value, int):
        raise TypeError(f"expected an integer, got {type(value).__name__}")
    return value


def _parse_tech(doc: dict[str, Any]) -> Tech:
    language = _opt_str(doc["language"])
    if language is None:
        raise TypeError("tech without a language")
    return Tech(
        language    = language,
        files       = _opt_int(doc.get("files")) or 0,
        code_lines  = _opt_int(doc.get("code_lines")) or 0,
        total_lines = _opt_int(doc.get("total_lines")) or 0,
    )


def _parse_project(doc: dict[str, Any]) -> ProjectSummary:
    commits = doc.get("commits")
    return ProjectSummary(
        project_id       = _opt_str(doc.get("project_id")),
        github_user_name = _opt_str(doc.get("github_user_name")),
        github_repo_name = _opt_str(doc.get("github_repo_name")),
        last_contributor_commit_date_epoch = _opt_int(doc.get("last_contributor_commit_date_epoch")),
        commits = tuple(_opt_str(c) for c in commits) if commits is not None else None,
        tech    = tuple(_parse_tech(t) for t in doc.get("tech") or ()),
    )


def _lists(value: Any) -> Any:
    """asdict() keeps tuples as tuples; JSON wants lists."""
    if isinstance(value, dict):
        return {k: _lists(v) for k, v in value.items()}
    if isinstance(value, (list, tuple)):
        return [_lists(v) for v in value]
    return value

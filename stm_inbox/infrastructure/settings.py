from __future__ import annotations

import logging
import os
from dataclasses import dataclass, field
from typing import Mapping

import boto3
import psycopg2

log = logging.getLogger(__name__)

DEFAULT_REGION          = "us-east-1"
DEFAULT_REPORTS_PREFIX  = "reports"
DEFAULT_ES_IDX_DEV      = "dev"
CREDENTIALS_REFRESH_SECS = 120


class ConfigError(Exception):
    """A required environment variable is missing or empty."""

    def __init__(self, name: str) -> None:
        super().__init__(f"Missing {name} env var")
        self.name = name


def _clean(value: str | None) -> str | None:
    # bucket names and prefixes are joined with "/" later
    if value is None:
        return None
    value = value.strip().strip("/")
    return value or None


@dataclass(frozen=True)
class Settings:
    """Runtime configuration. Read once at start up and never changed."""
    aws_region:          str
    inbox_bucket:        str
    inbox_prefix:        str
    reports_bucket:      str
    reports_prefix:      str
    pg_con_string:       str = field(repr=False)
    es_url:              str | None = None
    es_idx_dev:          str = DEFAULT_ES_IDX_DEV
    gh_reports_bucket:   str | None = None
    gh_reports_prefix:   str | None = None

    @classmethod
    def from_env(cls, env: Mapping[str, str] | None = None, inbox_only: bool = False) -> Settings:
        """
        `inbox_only` is for the submission endpoint, which only writes to the
        inbox and has no use for PG or the member reports bucket.
        """
        env = os.environ if env is None else env

        def required(name: str) -> str:
            value = _clean(env.get(name))
            if not value:
                log.error("Missing %s env var", name)
                raise ConfigError(name)
            return value

        pg_con_string = (env.get("STM_INBOX_PG_CON_STRING") or "").strip()
        if not pg_con_string and not inbox_only:
            log.error("Missing STM_INBOX_PG_CON_STRING env var")
            raise ConfigError("STM_INBOX_PG_CON_STRING")

        settings = cls(
            aws_region        = _clean(env.get("STM_INBOX_S3_REGION")) or DEFAULT_REGION,
            inbox_bucket      = required("STM_INBOX_S3_BUCKET"),
            inbox_prefix      = required("STM_INBOX_S3_PREFIX"),
            reports_bucket    = (_clean(env.get("STM_MEMBER_REPORTS_S3_BUCKET")) or "") if inbox_only
                                else required("STM_MEMBER_REPORTS_S3_BUCKET"),
            reports_prefix    = _clean(env.get("STM_MEMBER_REPORTS_S3_PREFIX")) or DEFAULT_REPORTS_PREFIX,
            pg_con_string     = pg_con_string,
            es_url            = (env.get("STM_ES_URL") or "").strip().rstrip("/") or None,
            es_idx_dev        = _clean(env.get("STM_ES_IDX_DEV")) or DEFAULT_ES_IDX_DEV,
            gh_reports_bucket = _clean(env.get("STM_GH_REPORTS_S3_BUCKET")),
            gh_reports_prefix = _clean(env.get("STM_GH_REPORTS_S3_PREFIX")),
        )
        log.info("Config: inbox %s/%s, reports %s/%s, region %s",
                 settings.inbox_bucket, settings.inbox_prefix,
                 settings.reports_bucket, settings.reports_prefix, settings.aws_region)
        return settings


class AppContext:
    """
    Long-lived resources shared by every flow: settings, the boto3 session
    and S3 client, the PG connection and the current AWS credentials.

    Built once by the composition root and passed around by reference.
    """

    def __init__(self, settings: Settings, session, s3_client, pg_conn) -> None:
        self.settings    = settings
        self.session     = session
        self.s3_client   = s3_client
        self.pg_conn     = pg_conn
        self.credentials = None
        self._source     = None

    @classmethod
    def build(cls, settings: Settings) -> AppContext:
        session = boto3.Session(region_name=settings.aws_region)
        s3_client = session.client("s3")
        pg_conn = psycopg2.connect(settings.pg_con_string)
        log.info("Connected to PG")

        ctx = cls(settings, session, s3_client, pg_conn)
        ctx.refresh_credentials()
        return ctx

    def refresh_credentials(self):
        """
        Renew the frozen credentials when there are none yet or the current
        ones expire within CREDENTIALS_REFRESH_SECS. Returns the credentials.
        """
        refresh_needed = getattr(self._source, "refresh_needed", None)
        if self.credentials is not None and not (refresh_needed and refresh_needed(CREDENTIALS_REFRESH_SECS)):
            return self.credentials

        self._source = self.session.get_credentials()
        if self._source is None:
            log.warning("No AWS credentials found")
            self.credentials = None
            return None

        self.credentials = self._source.get_frozen_credentials()
        log.info("AWS credentials refreshed")
        return self.credentials

    def close(self) -> None:
        self.pg_conn.close()

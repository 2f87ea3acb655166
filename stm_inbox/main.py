"""
main.py — Dependency Wiring (Composition Root)
------------------------------------------------
Entry point for the long-running flows. It reads the settings, builds the
shared AppContext, wires the concrete adapters into the flow and runs it.
There is no business logic here.

    python -m stm_inbox.main --flow dev_queue [-l debug]

Dependency graph:
                      main.py
                         │
                    DevQueueFlow
         ┌─────────────┬─┴──────────┬──────────────────┬───────────────────┐
         ▼             ▼            ▼                  ▼                   ▼
  PostgresDevJobQueue  DevProfileMerger  S3ObjectStore  ElasticSearchIndex  GhLoginValidator
                         │                                                 │
                   S3ObjectStore                                    GitHubGistClient
"""

from __future__ import annotations

import argparse
import asyncio
import enum
import logging
import sys

import httpx

from stm_inbox.application.dev_profile import DevProfileMerger
from stm_inbox.application.dev_queue import DevQueueFlow
from stm_inbox.application.gh_login import GhLoginValidator
from stm_inbox.infrastructure.elastic_client import ElasticSearchIndex
from stm_inbox.infrastructure.github_gist import GitHubGistClient
from stm_inbox.infrastructure.postgres_storage import PostgresDevJobQueue
from stm_inbox.infrastructure.s3_store import S3ObjectStore
from stm_inbox.infrastructure.settings import AppContext, ConfigError, Settings

log = logging.getLogger(__name__)


class Flow(enum.Enum):
    DEV_QUEUE = "dev_queue"
    HELP      = "help"

    def __str__(self) -> str:
        return self.value


def parse_args(argv: list[str] | None = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(
        prog        = "stm_inbox",
        description = "Background flows that turn stored reports into developer profiles",
    )
    parser.add_argument(
        "--flow",
        type    = Flow,
        choices = list(Flow),
        default = Flow.HELP,
        help    = "Flow to run (default: help)",
    )
    parser.add_argument(
        "-l", "--log-level",
        default = "info",
        choices = ["debug", "info", "warning", "error"],
        help    = "Logging level (default: info)",
    )
    args = parser.parse_args(argv)
    args.print_help = parser.print_help
    return args


async def run_dev_queue(ctx: AppContext) -> bool:
    """Wires the dev queue flow and runs it until it gives up."""
    settings = ctx.settings
    client = httpx.AsyncClient()

    try:
        store = S3ObjectStore(ctx.s3_client)
        merger = DevProfileMerger(
            store          = store,
            private_bucket = settings.reports_bucket,
            private_prefix = settings.reports_prefix,
            gh_bucket      = settings.gh_reports_bucket,
            gh_prefix      = settings.gh_reports_prefix,
        )
        flow = DevQueueFlow(
            queue          = PostgresDevJobQueue(ctx.pg_conn),
            merger         = merger,
            store          = store,
            index          = ElasticSearchIndex(
                es_url      = settings.es_url,
                client      = client,
                credentials = lambda: ctx.credentials,
            ),
            profile_bucket = settings.reports_bucket,
            profile_prefix = settings.reports_prefix,
            es_idx         = settings.es_idx_dev,
            refresh_credentials = ctx.refresh_credentials,
            gh_validator   = GhLoginValidator(GitHubGistClient(client)),
        )
        return await flow.run()
    finally:
        await client.aclose()


def main(argv: list[str] | None = None) -> int:
    args = parse_args(argv)

    logging.basicConfig(
        level   = getattr(logging, args.log_level.upper()),
        format  = "%(asctime)s [%(levelname)s] %(name)s — %(message)s",
        datefmt = "%H:%M:%S",
    )

    if args.flow is Flow.HELP:
        args.print_help()
        return 0

    try:
        settings = Settings.from_env()
    except ConfigError as exc:
        log.error("%s", exc)
        return 1

    if not settings.es_url:
        log.error("Missing STM_ES_URL env var")
        return 1

    ctx = AppContext.build(settings)
    try:
        ok = asyncio.run(run_dev_queue(ctx))
    finally:
        ctx.close()

    if not ok:
        log.error("❌ Dev queue flow stopped after too many errors")
        return 1
    return 0


if __name__ == "__main__":
    sys.exit(main())

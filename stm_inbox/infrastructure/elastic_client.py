from __future__ import annotations

import asyncio
import logging
from typing import Callable
from urllib.parse import urlsplit

import httpx
from botocore.auth import SigV4Auth
from botocore.awsrequest import AWSRequest

from stm_inbox.domain.failures import RetryError
from stm_inbox.domain.interfaces import ISearchIndex

log = logging.getLogger(__name__)

MAX_RETRIES        = 3
MAX_LOGGED_BODY    = 3000
ES_SERVICE_NAME    = "es"
DEFAULT_ES_REGION  = "us-east-1"


def region_from_es_url(es_url: str) -> str:
    """
    AWS-hosted domains look like `search-name-id.<region>.es.amazonaws.com`.
    Anything else falls back to the default region.
    """
    host = urlsplit(es_url).hostname or ""
    parts = host.split(".")
    if len(parts) >= 5 and parts[-3] == ES_SERVICE_NAME and parts[-2] == "amazonaws":
        return parts[-4]
    return DEFAULT_ES_REGION


class ElasticSearchIndex(ISearchIndex):
    """
    Concrete ISearchIndex for an AWS-hosted ElasticSearch domain.

    Receives an httpx.AsyncClient (injected) and a callable returning the
    current frozen AWS credentials. The callable is read on every request
    so refreshed credentials are picked up without rebuilding the client.
    No credentials means the request goes out unsigned.
    """

    def __init__(
        self,
        es_url: str,
        client: httpx.AsyncClient,
        credentials: Callable[[], object] = lambda: None,
    ) -> None:
        self._es_url      = es_url.rstrip("/")
        self._client      = client
        self._credentials = credentials
        self._region      = region_from_es_url(es_url)

    def _sign(self, url: str, body: bytes, headers: dict[str, str]) -> dict[str, str]:
        creds = self._credentials()
        if creds is None:
            return headers

        request = AWSRequest(method="PUT", url=url, data=body, headers=headers)
        SigV4Auth(creds, ES_SERVICE_NAME, self._region).add_auth(request)
        return dict(request.headers.items())

    async def put_document(self, idx: str, doc_id: str, gz_json: bytes) -> None:
        url = f"{self._es_url}/{idx}/_doc/{doc_id}"
        headers = self._sign(url, gz_json, {
            "Content-Type":     "application/json",
            "Content-Encoding": "gzip",
        })

        for attempt in range(MAX_RETRIES):
            try:
                response = await self._client.put(url, content=gz_json, headers=headers, timeout=30.0)
            except httpx.RequestError as exc:
                wait = 2 ** attempt   # 1s, 2s, 4s
                log.warning("ES request attempt %d/%d for %s: %s, retrying in %ds",
                            attempt + 1, MAX_RETRIES, doc_id, exc, wait)
                await asyncio.sleep(wait)
                continue

            if response.is_success:
                log.info("ES doc %s/%s saved, status %d", idx, doc_id, response.status_code)
                return

            log.error("ES PUT for %s failed with %d: %s",
                      doc_id, response.status_code, response.content[:MAX_LOGGED_BODY].decode("utf-8", "replace"))
            raise RetryError(doc_id, f"ES responded with {response.status_code}")

        raise RetryError(doc_id, f"exhausted {MAX_RETRIES} ES retries")

from __future__ import annotations

import asyncio
import logging

import httpx

from stm_inbox.domain.entities import Gist
from stm_inbox.domain.failures import RetryError
from stm_inbox.domain.interfaces import IGistFetcher

log = logging.getLogger(__name__)

GITHUB_GISTS_URL = "https://api.github.com/gists/"
MAX_RETRIES      = 3
MAX_LOGGED_BODY  = 3000


class GitHubGistClient(IGistFetcher):
    """
    Reads gists through the GitHub REST API. Members prove they own a GitHub
    login by putting a signature into a gist under that login.

    The httpx.AsyncClient is injected so the caller controls its lifecycle.
    """

    def __init__(self, client: httpx.AsyncClient) -> None:
        self._client = client
        self._headers = {
            "Accept":     "application/vnd.github.v3+json",
            "User-Agent": "StackMuncher App",
        }

    @staticmethod
    def _parse_gist(gist_id: str, doc: dict) -> Gist | None:
        """
        Anti-corruption layer for the GetGist response. Only the owner login
        and the content of the one and only file are kept:

            {"owner": {"login": "rimutaka"},
             "files": {"stm.txt": {"content": "MDQ6R2lzdGZi..."}}}
        """
        try:
            files = doc["files"]
            if len(files) != 1:
                log.error("Expected exactly one file in gist %s, got %d", gist_id, len(files))
                return None
            [file] = files.values()
            content = file["content"]
            login = doc["owner"]["login"]
        except (KeyError, TypeError, AttributeError) as exc:
            log.error("Invalid GH API response for gist %s: %s", gist_id, exc)
            return None

        if not isinstance(content, str) or not isinstance(login, str):
            log.error("Invalid GH API response for gist %s: unexpected types", gist_id)
            return None

        return Gist(gist_id=gist_id, owner_login=login, content=content)

    async def fetch_gist(self, gist_id: str) -> Gist | None:
        log.info("Getting GitHub validation from Gist #%s", gist_id)
        url = f"{GITHUB_GISTS_URL}{gist_id}"

        for attempt in range(MAX_RETRIES):
            try:
                response = await self._client.get(url, headers=self._headers, timeout=30.0)
            except httpx.RequestError as exc:
                wait = 2 ** attempt
                log.warning("GH API request attempt %d/%d failed: %s, retrying in %ds",
                            attempt + 1, MAX_RETRIES, exc, wait)
                await asyncio.sleep(wait)
                continue

            log.info("GH API response status: %d", response.status_code)

            if response.status_code >= 500:
                wait = 2 ** attempt
                log.warning("GH API attempt %d/%d: status %d, retrying in %ds",
                            attempt + 1, MAX_RETRIES, response.status_code, wait)
                await asyncio.sleep(wait)
                continue

            # a deleted gist, a typo in the id and the like
            if not response.is_success:
                log.error("Status %d: %s", response.status_code, response.text[:MAX_LOGGED_BODY])
                return None

            try:
                doc = response.json()
            except ValueError as exc:
                log.error("Failed to convert GH API response to JSON with %s: %s",
                          exc, response.text[:MAX_LOGGED_BODY])
                return None

            if not isinstance(doc, dict):
                log.error("GH API response is not a JSON object")
                return None

            return self._parse_gist(gist_id, doc)

        raise RetryError(gist_id, f"GitHub API unavailable after {MAX_RETRIES} attempts")

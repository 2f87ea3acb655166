from __future__ import annotations

import logging
import re

from stm_inbox.application.signature import verify
from stm_inbox.domain.entities import DevJob, GhLink
from stm_inbox.domain.interfaces import IGistFetcher

log = logging.getLogger(__name__)

# the well-known string members sign and upload to a gist
GH_VERIFICATION_STRING_TO_SIGN = b"stackmuncher"
GH_LOGIN_INVALID_RE = re.compile(r"[^\w\-]")
MAX_GH_LOGIN_LEN    = 150
MAX_GIST_CONTENT_LEN = 300


def validate_gh_login_format(gh_login: str | None) -> bool:
    """False for an empty or overlong login or one with unexpected characters."""
    if not gh_login or len(gh_login) > MAX_GH_LOGIN_LEN or GH_LOGIN_INVALID_RE.search(gh_login):
        log.error("Invalid GitHub Login format: %s", gh_login)
        return False
    return True


class GhLoginValidator:
    """
    Links a member to a GitHub login. The member signs "stackmuncher" with
    their key and puts the base58 signature into a gist. A valid signature
    proves the gist owner holds the member key.
    """

    def __init__(self, fetcher: IGistFetcher) -> None:
        self._fetcher = fetcher

    async def get_validated_login(self, gist_id: str, owner_id: str) -> str | None:
        """The GitHub login that owns the gist, or None if it fails validation."""
        gist = await self._fetcher.fetch_gist(gist_id)
        if gist is None:
            return None
        log.info("Gist owner: %s", gist.owner_login)

        if not validate_gh_login_format(gist.owner_login):
            return None

        # remove possible wrappers and white space around it
        content = gist.content
        for wrapper in ('"', "'", "`"):
            content = content.replace(wrapper, "")
        content = content.strip()

        if len(content) > MAX_GIST_CONTENT_LEN:
            log.error("Gist contents is too long: %d", len(content))
            return None

        if not verify(GH_VERIFICATION_STRING_TO_SIGN, content, owner_id):
            log.error("Invalid signature in Gist %s: %s", gist_id, content)
            return None

        return gist.owner_login

    async def resolve(self, job: DevJob) -> GhLink:
        """
        The GitHub link to use for this job. The gist is only fetched when
        the member submitted a different gist id since the last validation.
        An empty gist id unlinks GitHub.
        """
        if job.gh_login_gist_latest == job.gh_login_gist_validation:
            return GhLink(job.gh_login, job.gh_login_gist_validation)

        if not job.gh_login_gist_latest:
            log.info("Removing gh_login for %s", job.owner_id)
            return GhLink()

        gh_login = await self.get_validated_login(job.gh_login_gist_latest, job.owner_id)
        return GhLink(gh_login, job.gh_login_gist_latest)

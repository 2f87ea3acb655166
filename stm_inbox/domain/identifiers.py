from __future__ import annotations

import logging
import re
import uuid

import base58

from stm_inbox.domain.failures import DoNotRetryError

log = logging.getLogger(__name__)

OWNER_ID_BYTES = 32

# a valid commit looks like this: 7474684a_1595904770
SHORT_HASH_RE = re.compile(r"^[0-9a-f]{8}$")
FULL_SHA1_RE  = re.compile(r"^[0-9a-f]{40}$")
EPOCH_RE      = re.compile(r"^(0|-?[1-9][0-9]*)$")


def decode_b58(value: str) -> bytes | None:
    """Decode a base58 string, returning None instead of raising."""
    try:
        return base58.b58decode(value)
    except ValueError as exc:
        log.warning("Cannot decode %.60s from base58: %s", value, exc)
        return None


def validate_owner_id(owner_id: str | None) -> bool:
    """
    True if the owner id decodes from base58 into exactly 32 bytes.
    The owner id doubles as the member's ed25519 public key.
    """
    if not owner_id:
        log.warning("Empty owner_id")
        return False

    decoded = decode_b58(owner_id)
    if decoded is None:
        return False

    if len(decoded) != OWNER_ID_BYTES:
        log.warning("Invalid owner_id: %s. Decoded to %d bytes", owner_id, len(decoded))
        return False

    return True


def new_project_id() -> str:
    """A fresh random 16-byte project id, base58-encoded."""
    return base58.b58encode(uuid.uuid4().bytes).decode("ascii")


def is_valid_sha1(value: str | None) -> bool:
    return bool(value) and FULL_SHA1_RE.match(value) is not None


def parse_commit(commit: str) -> tuple[str, int]:
    """
    Split `<8-hex-hash>_<epoch>` into its parts.

    Anything else is either a bug in the client or data corruption, so the
    whole report it came from must be discarded.
    """
    parts = commit.split("_")
    if len(parts) != 2 or not SHORT_HASH_RE.match(parts[0]):
        raise DoNotRetryError(commit, "invalid commit")

    if not EPOCH_RE.match(parts[1]):
        raise DoNotRetryError(commit, "invalid commit date")

    return parts[0], int(parts[1])


def encode_commit(commit_hash: str, commit_ts: int) -> str:
    return f"{commit_hash}_{commit_ts}"

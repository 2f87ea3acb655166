from __future__ import annotations

import gzip
import logging
import zlib

from stm_inbox.domain.entities import Report
from stm_inbox.domain.failures import DoNotRetryError

log = logging.getLogger(__name__)

GZIP_MAGIC = b"\x1f\x8b"


def decode_report(s3_key: str, payload: bytes) -> Report:
    """Gunzip if needed and parse. Corrupt data is never worth a retry."""
    try:
        if payload[:2] == GZIP_MAGIC:
            payload = gzip.decompress(payload)
            log.info("Unzipped %s to %d bytes", s3_key, len(payload))
        return Report.from_json(payload)
    except (OSError, EOFError, zlib.error, ValueError, UnicodeDecodeError) as exc:
        log.error("Cannot load report %s: %s", s3_key, exc)
        raise DoNotRetryError(s3_key, "corrupt report") from exc


def gzip_json(payload: bytes) -> bytes:
    # mtime=0 keeps the output identical for identical input
    return gzip.compress(payload, mtime=0)

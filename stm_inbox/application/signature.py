from __future__ import annotations

import logging

from cryptography.exceptions import InvalidSignature
from cryptography.hazmat.primitives.asymmetric.ed25519 import Ed25519PublicKey

from stm_inbox.domain.identifiers import OWNER_ID_BYTES, decode_b58

log = logging.getLogger(__name__)


def verify(payload: bytes, signature: str, owner_pub_key: str) -> bool:
    """
    Check that `payload` was signed by the owner of `owner_pub_key`.

    Both the key and the signature are base58 strings. The owner id is the
    raw 32-byte ed25519 public key. Any decoding problem is a rejection.
    """
    pub_key = decode_b58(owner_pub_key)
    if pub_key is None or len(pub_key) != OWNER_ID_BYTES:
        log.error("Invalid public key: %.60s", owner_pub_key)
        return False

    sig = decode_b58(signature)
    if sig is None:
        log.error("Failed to decode the signature from base58")
        return False

    try:
        Ed25519PublicKey.from_public_bytes(pub_key).verify(sig, payload)
    except InvalidSignature:
        log.error("Invalid signature for %s", owner_pub_key)
        return False
    except ValueError as exc:
        log.error("Unusable public key %s: %s", owner_pub_key, exc)
        return False

    log.info("Signature OK")
    return True

"""Request fingerprints used as cache and single-flight keys."""

import hashlib
import json

ANY_PROVIDER = "*"


def normalize_provider(provider: str | None) -> str:
    """Normalize a provider hint; no hint maps to the wildcard."""
    if provider is None or not provider.strip():
        return ANY_PROVIDER
    return provider.strip().lower()


def normalize_payload(payload: bytes) -> bytes:
    """
    Canonicalize a payload.

    JSON documents are re-serialized with sorted keys and compact
    separators so that key order and whitespace do not change the
    fingerprint. Anything else is used byte-for-byte.
    """
    try:
        document = json.loads(payload)
    except (UnicodeDecodeError, ValueError):
        return bytes(payload)
    return json.dumps(
        document, sort_keys=True, separators=(",", ":"), ensure_ascii=False
    ).encode("utf-8")


def compute_fingerprint(provider: str | None, payload: bytes) -> str:
    """
    Compute the fingerprint of a provider + payload pair.

    Args:
        provider: Optional provider hint.
        payload: Raw request payload.

    Returns:
        Hex SHA-256 digest. Identical normalized input always yields the
        same digest.
    """
    digest = hashlib.sha256()
    digest.update(normalize_provider(provider).encode("utf-8"))
    digest.update(b"\x00")
    digest.update(normalize_payload(payload))
    return digest.hexdigest()

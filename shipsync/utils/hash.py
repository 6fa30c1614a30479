"""Hashing and signing helpers for shipsync."""

import hashlib
import hmac


def compute_sha256(data: bytes) -> str:
    """
    Compute SHA-256 hash of data.

    Args:
        data: Raw bytes to hash

    Returns:
        Hexadecimal SHA-256 hash string
    """
    return hashlib.sha256(data).hexdigest()


def sign(secret: str, body: bytes) -> str:
    """
    Sign a request body with HMAC-SHA256.

    Args:
        secret: Signing key
        body: Exact bytes sent on the wire

    Returns:
        Hexadecimal signature
    """
    return hmac.new(secret.encode("utf-8"), body, hashlib.sha256).hexdigest()


def verify_signature(secret: str, body: bytes, signature: str | None) -> bool:
    """Check a hex HMAC-SHA256 signature in constant time."""
    if not signature:
        return False
    return hmac.compare_digest(sign(secret, body), signature)

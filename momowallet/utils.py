"""
Utility functions for the SMS ingestion API.
"""

import hashlib
import hmac
import logging
import re

logger = logging.getLogger(__name__)

_WHITESPACE = re.compile(r"\s+")


def verify_hmac_signature(body: bytes, signature: str, secret: str) -> bool:
    """
    Verify HMAC-SHA256 signature.

    Args:
        body: Raw request body bytes
        signature: Hex-encoded signature from X-Signature header
        secret: WEBHOOK_SECRET

    Returns:
        True if signature is valid, False otherwise
    """
    logger.debug(f"Body length: {len(body)} bytes, signature: {signature[:8]}...")

    expected_signature = hmac.new(
        secret.encode("utf-8"),
        body,
        hashlib.sha256
    ).hexdigest()

    if not signature.isascii():
        return False

    # Constant-time comparison
    is_valid = hmac.compare_digest(expected_signature, signature)
    logger.info(f"HMAC signature verification: {'valid' if is_valid else 'invalid'}")

    return is_valid


def normalize_body(body: str) -> str:
    """Collapse runs of whitespace and trim, so resent copies compare equal."""
    return _WHITESPACE.sub(" ", body).strip()


def content_fingerprint(sender: str, body: str) -> str:
    """
    Stable identity for a message that carries no transaction reference.

    sha256 over the lowercased sender and the whitespace-normalized body.
    """
    payload = f"{sender.strip().lower()}\n{normalize_body(body)}"
    return hashlib.sha256(payload.encode("utf-8")).hexdigest()

"""Slack request signature verification.

Slack signs every request with the app's signing secret:
    X-Slack-Signature: v0=hex(HMAC-SHA256(secret, "v0:{timestamp}:{body}"))
Requests older than the replay window are rejected.
"""

import hashlib
import hmac
import time
from typing import Optional


SIGNATURE_VERSION = "v0"
DEFAULT_TOLERANCE_SECONDS = 300


class InvalidSignatureError(Exception):
    """Raised when a Slack request signature does not verify."""


def compute_signature(secret: str, timestamp: str, body: bytes) -> str:
    """Compute the v0 signature Slack would send for a request body."""
    base = f"{SIGNATURE_VERSION}:{timestamp}:".encode("utf-8") + body
    digest = hmac.new(secret.encode("utf-8"), base, hashlib.sha256).hexdigest()
    return f"{SIGNATURE_VERSION}={digest}"


def verify_slack_signature(
    secret: str,
    timestamp: Optional[str],
    body: bytes,
    signature: Optional[str],
    now: Optional[float] = None,
    tolerance_seconds: int = DEFAULT_TOLERANCE_SECONDS,
) -> None:
    """Verify a Slack request signature.

    Args:
        secret: The app's signing secret.
        timestamp: Value of the X-Slack-Request-Timestamp header.
        body: Raw request body.
        signature: Value of the X-Slack-Signature header.
        now: Current Unix time; defaults to time.time().
        tolerance_seconds: Maximum accepted request age.

    Raises:
        InvalidSignatureError: If a header is missing, the timestamp is
                               stale or the signature does not match.
    """
    if not timestamp or not signature:
        raise InvalidSignatureError("Missing Slack signature headers")

    try:
        request_time = int(timestamp)
    except ValueError as e:
        raise InvalidSignatureError("Invalid Slack request timestamp") from e

    current = time.time() if now is None else now
    if abs(current - request_time) > tolerance_seconds:
        raise InvalidSignatureError("Stale Slack request timestamp")

    expected = compute_signature(secret, timestamp, body)
    if not hmac.compare_digest(expected, signature):
        raise InvalidSignatureError("Slack signature mismatch")

"""HMAC signing for ledger-to-site webhooks.

Shared by the server-side notifier and the client-side receiver so both
ends compute the signature the same way: HMAC-SHA256 over
``"{timestamp}.{body}"``.
"""

import hashlib
import hmac

SIGNATURE_HEADER = "X-Ledger-Signature"
TIMESTAMP_HEADER = "X-Ledger-Timestamp"
_SCHEME = "sha256="


def sign_payload(secret: str, timestamp: int, body: bytes) -> str:
    """Compute the signature header value for a webhook body.

    Args:
        secret: Tenant webhook secret.
        timestamp: Unix seconds sent in the timestamp header.
        body: Raw request body.

    Returns:
        Header value of the form ``sha256=<hex>``.
    """
    message = str(timestamp).encode("ascii") + b"." + body
    digest = hmac.new(secret.encode("utf-8"), message, hashlib.sha256).hexdigest()
    return f"{_SCHEME}{digest}"


def verify_signature(secret: str, timestamp: int, body: bytes, signature: str) -> bool:
    """Constant-time check of a received signature header."""
    expected = sign_payload(secret, timestamp, body)
    return hmac.compare_digest(expected, signature)

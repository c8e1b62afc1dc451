"""Credential helpers for tenant API keys and admin tokens.

Tenant API keys are random tokens stored only as SHA-256 hashes. Admin
requests carry an HS256 JWT signed with ADMIN_TOKEN_SECRET.
"""

import hashlib
import secrets
from datetime import UTC, datetime, timedelta
from typing import Any

import jwt

from credit_ledger.core.config import settings

_API_KEY_PREFIX = "rk_"  # nosec B105
_ADMIN_ROLE = "admin"


def generate_api_key() -> str:
    """Generate a new plaintext tenant API key."""
    return f"{_API_KEY_PREFIX}{secrets.token_urlsafe(32)}"


def hash_api_key(api_key: str) -> str:
    """Hash an API key for storage and lookup.

    Args:
        api_key: Plaintext key as sent in the X-API-Key header.

    Returns:
        Hex SHA-256 digest (64 chars).
    """
    return hashlib.sha256(api_key.encode("utf-8")).hexdigest()


def generate_webhook_secret() -> str:
    """Generate a shared secret for signing outbound tenant webhooks."""
    return secrets.token_hex(32)


def mask_secret(value: str | None, *, visible: int = 4) -> str | None:
    """Mask all but the last few characters of a secret for display.

    Keeps a recognizable prefix (``sk_test_``, ``pk_live_``, ``whsec_``)
    so admins can tell keys apart.

    Args:
        value: Secret to mask. None or empty passes through.
        visible: Number of trailing characters left visible.

    Returns:
        Masked string, or the input when there is nothing to mask.
    """
    if not value:
        return value
    prefix = ""
    for known in ("sk_test_", "sk_live_", "pk_test_", "pk_live_", "whsec_"):
        if value.startswith(known):
            prefix = known
            break
    tail = value[-visible:] if len(value) - len(prefix) > visible else ""
    return f"{prefix}{'*' * 8}{tail}"


def create_admin_token(
    subject: str,
    *,
    expires_delta: timedelta = timedelta(hours=1),
    secret: str | None = None,
) -> str:
    """Create a signed admin JWT.

    Args:
        subject: Admin identifier written to the ``sub`` claim.
        expires_delta: Lifetime of the token.
        secret: Signing secret. Defaults to ADMIN_TOKEN_SECRET.

    Returns:
        Encoded JWT string.
    """
    now = datetime.now(UTC)
    payload = {
        "sub": subject,
        "role": _ADMIN_ROLE,
        "aud": settings.admin_token_audience,
        "iss": settings.admin_token_issuer,
        "iat": now,
        "exp": now + expires_delta,
    }
    signing_key = secret or settings.admin_token_secret.get_secret_value()
    return jwt.encode(payload, signing_key, algorithm="HS256")


def decode_admin_token(token: str) -> dict[str, Any]:
    """Decode and verify an admin JWT.

    Args:
        token: Encoded JWT from the Authorization header.

    Returns:
        Verified claims.

    Raises:
        jwt.InvalidTokenError: Bad signature, expired, or wrong aud/iss.
    """
    secret = settings.admin_token_secret.get_secret_value()
    if not secret:
        raise jwt.InvalidTokenError("Admin tokens are disabled")
    return jwt.decode(
        token,
        secret,
        algorithms=["HS256"],
        audience=settings.admin_token_audience,
        issuer=settings.admin_token_issuer,
    )


def is_admin_claims(claims: dict[str, Any]) -> bool:
    """Check that verified claims carry the admin role."""
    return claims.get("role") == _ADMIN_ROLE

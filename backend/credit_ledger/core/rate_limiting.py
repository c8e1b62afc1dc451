"""Rate limiting configuration using slowapi.

Security: Limits deduct and checkout traffic per tenant so one site
cannot starve the others. Requests with an X-API-Key header are keyed
on a hash prefix of the key; everything else falls back to IP keying.

Usage in routers:
    from credit_ledger.core.rate_limiting import limiter

    @router.post("/{user_id}/deduct")
    @limiter.limit(lambda: settings.rate_limit_deduct)
    async def deduct_credits(request: Request, ...):
        ...
"""

from fastapi import Request, Response
from slowapi import Limiter
from slowapi.errors import RateLimitExceeded
from slowapi.util import get_remote_address
from starlette.responses import JSONResponse

from credit_ledger.core.config import settings
from credit_ledger.core.security import hash_api_key

API_KEY_HEADER = "X-API-Key"


def _rate_limit_key_func(request: Request) -> str:
    """Get rate limit key from request.

    Key format:
    - API key present: "tenant:{first 16 hex of sha256(key)}"
    - No API key: "anon:{ip}"

    No tenant lookup happens here; an invalid key still gets its own
    bucket and is rejected by the auth dependency afterwards.

    Args:
        request: The incoming request.

    Returns:
        Rate limit key string.
    """
    api_key = request.headers.get(API_KEY_HEADER)
    if api_key:
        return f"tenant:{hash_api_key(api_key)[:16]}"
    return f"anon:{get_remote_address(request)}"


# In-memory storage (single instance). For multi-instance deployments,
# configure Redis storage via RATELIMIT_STORAGE_URL.
limiter = Limiter(
    key_func=_rate_limit_key_func,
    enabled=settings.rate_limit_enabled,
)


def rate_limit_exceeded_handler(
    _request: Request,
    exc: RateLimitExceeded,
) -> Response:
    """Handle rate limit exceeded errors.

    Returns 429 Too Many Requests with the standard error envelope.

    Args:
        request: The incoming request.
        exc: The rate limit exception.

    Returns:
        JSONResponse with 429 status and retry-after header.
    """
    # exc.detail looks like "10 per 1 minute"; fall back to 60 seconds
    try:
        retry_after = str(exc.detail.split()[-1])
        int(retry_after.rstrip("s"))
    except (ValueError, AttributeError, IndexError):
        retry_after = "60"

    return JSONResponse(
        status_code=429,
        content={
            "error": {
                "code": "RATE_LIMITED",
                "message": f"Rate limit exceeded: {exc.detail}",
            }
        },
        headers={"Retry-After": retry_after},
    )

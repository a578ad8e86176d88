"""Rate limiting keyed by client IP, with one shared bucket per operation."""

from collections.abc import Callable

from slowapi import Limiter
from starlette.requests import Request

# operation -> limit
RATE_LIMITS: dict[str, str] = {
    "auth": "5/minute",
    "email_verification": "3/5minutes",
    "refresh_token": "10/minute",
    "password_change": "3/hour",
}


def get_real_ip(request: Request) -> str:
    """Client IP from X-Forwarded-For (first hop) or the socket peer."""
    forwarded = request.headers.get("x-forwarded-for")
    if forwarded:
        return forwarded.split(",")[0].strip()
    return request.client.host if request.client else "127.0.0.1"


limiter = Limiter(key_func=get_real_ip)


def rate_limited(operation: str) -> Callable:
    """Decorate an endpoint with the shared limit registered for ``operation``.

    Endpoints decorated with the same operation draw from the same bucket, so
    register and login together get five attempts per minute per IP.
    """
    if operation not in RATE_LIMITS:
        raise KeyError(f"No rate limit registered for operation {operation!r}")
    return limiter.shared_limit(RATE_LIMITS[operation], scope=operation)

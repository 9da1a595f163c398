from starlette.requests import Request
from slowapi import Limiter
from slowapi.util import get_remote_address

import os


def get_real_ip(request: Request) -> str:
    """Extract the real client IP, respecting TRUSTED_PROXY_COUNT.

    When TRUSTED_PROXY_COUNT is 0 (default), X-Forwarded-For is ignored and the
    direct connection IP is used. When > 0, the IP at position
    len(ips) - trusted_proxy_count is taken so clients cannot spoof it.
    """
    trusted_proxy_count = int(os.getenv("TRUSTED_PROXY_COUNT", "0"))
    if trusted_proxy_count > 0:
        forwarded = request.headers.get("X-Forwarded-For", "")
        if forwarded:
            ips = [ip.strip() for ip in forwarded.split(",")]
            index = max(0, len(ips) - trusted_proxy_count)
            return ips[index]
    return get_remote_address(request)


def _get_storage_uri() -> str | None:
    """Share limiter counters through Redis when a non-local REDIS_URL is configured.

    Imported lazily to avoid a circular import with app.config.
    """
    from app.config import settings

    if settings.REDIS_URL and "localhost" not in settings.REDIS_URL:
        return settings.REDIS_URL
    return None


_is_dev = os.getenv("APP_ENV", "development") == "development"

limiter = Limiter(
    key_func=get_real_ip,
    storage_uri=_get_storage_uri(),
    default_limits=["200/minute" if _is_dev else "60/minute"],
)

# Per-endpoint limits for sensitive operations
AUTH_RATE_LIMIT = "30/minute" if _is_dev else "5/minute"
# Money-moving endpoints: checkout, payout, dispute resolution
LEDGER_RATE_LIMIT = "20/minute" if _is_dev else "5/minute"
# List/search endpoints, against scraping
LIST_RATE_LIMIT = "100/minute" if _is_dev else "30/minute"

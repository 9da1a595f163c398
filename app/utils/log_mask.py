"""PII masking for log events.

Emails and bearer tokens must never reach INFO-level logs, which are shipped
to the log aggregator and to Sentry breadcrumbs.
"""


def mask_email(email: str | None) -> str:
    """Mask an email address for logging: 'user@domain.com' -> 'u***@domain.com'."""
    if not email or "@" not in email:
        return "***"
    local, domain = email.rsplit("@", 1)
    if len(local) <= 1:
        return f"{local}***@{domain}"
    return f"{local[0]}***@{domain}"


def mask_token(token: str | None) -> str:
    """Keep only the last 4 characters of a secret: 'abcdef123456' -> '***3456'."""
    if not token or len(token) <= 4:
        return "***"
    return f"***{token[-4:]}"


def mask_endpoint(endpoint: str | None) -> str:
    """Push endpoints embed a per-device secret in the path; keep scheme and host only."""
    if not endpoint:
        return "***"
    scheme, sep, rest = endpoint.partition("://")
    if not sep:
        return "***"
    host = rest.split("/", 1)[0]
    return f"{scheme}://{host}/***"

from __future__ import annotations


def redact_token(token: str | None) -> str:
    """Return a log-safe prefix/suffix of a token."""
    if not token:
        return "NO_TOKEN"
    if len(token) < 10:
        return "***"
    return f"{token[:6]}...{token[-4:]}"

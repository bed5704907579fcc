"""Helpers that keep bearer tokens out of logs and error messages."""

from collections.abc import Mapping

# Request headers included in the per-request log summary
SUMMARY_HEADERS = ("authorization", "content-type", "user-agent", "x-request-id")


def mask_secret(value: str) -> str:
    """Show only a short prefix/suffix of a secret, e.g. ``sk-a****wxyz``."""
    if not value or not value.strip():
        return value
    if len(value) <= 8:
        return "****"
    return f"{value[:4]}****{value[-4:]}"


def scrub(text: str, secret: str) -> str:
    """Replace every occurrence of ``secret`` in ``text`` with its masked form."""
    if not secret or not text:
        return text
    return text.replace(secret, mask_secret(secret))


def header_summary(headers: Mapping[str, str]) -> str:
    """Build a ``key=value`` summary of selected headers with credentials masked."""
    lowered = {k.lower(): v for k, v in headers.items()}
    pairs = []
    for key in SUMMARY_HEADERS:
        if key not in lowered:
            continue
        value = lowered[key]
        if "authorization" in key or "token" in key:
            value = mask_secret(value)
        pairs.append(f"{key}={value}")
    return ", ".join(pairs)

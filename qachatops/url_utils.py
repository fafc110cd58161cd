"""Shared URL utilities."""

from __future__ import annotations

from urllib.parse import urlparse


def ensure_scheme(url: str) -> str:
    """Prefix ``https://`` when the URL carries no http(s) scheme."""
    url = url.strip()
    if url.lower().startswith(("http://", "https://")):
        return url
    return f"https://{url}"


def is_http_url(url: str) -> bool:
    """True for absolute http(s) URLs with a host."""
    parsed = urlparse(url.strip())
    return parsed.scheme in ("http", "https") and bool(parsed.netloc)

"""URL helpers: href normalization, seed checks and cache busting."""

from __future__ import annotations

import re
import time
from urllib.parse import urljoin, urlsplit, urlunsplit

CACHE_BUST_PARAM = "_"

_SCHEME_RE = re.compile(r"^[A-Za-z][A-Za-z0-9+.\-]*$")
_BAD_PERCENT_RE = re.compile(r"%(?![0-9A-Fa-f]{2})")
_CONTROL_RE = re.compile(r"[\x00-\x1f\x7f]")
_STRIPPED_CHARS = str.maketrans("", "", "\t\n\r")

# Schemes whose URLs must carry a host to be usable.
_NETWORK_SCHEMES = {"http", "https", "ftp", "ws", "wss"}


class NormalizationError(ValueError):
    """Raised when an href cannot be resolved to an absolute URL."""


def normalize(base: str, href: str) -> str:
    """Resolve *href* against *base* and return the absolute URL.

    Absolute hrefs pass through; scheme-relative, path-relative and
    fragment-only hrefs are resolved against *base*. Malformed input raises
    :class:`NormalizationError`; callers skip the link and carry on.
    """
    candidate = (href or "").strip().translate(_STRIPPED_CHARS)
    if not candidate:
        raise NormalizationError("Empty href")
    if _CONTROL_RE.search(candidate):
        raise NormalizationError(f"Control characters in href {href!r}")
    if _BAD_PERCENT_RE.search(candidate):
        raise NormalizationError(f"Malformed percent-escape in href {href!r}")
    candidate = candidate.replace(" ", "%20")

    try:
        parts = urlsplit(urljoin(base, candidate))
        parts.port  # raises ValueError for a non-numeric or out-of-range port
    except ValueError as exc:
        raise NormalizationError(f"Unparsable href {href!r}: {exc}") from exc

    if not parts.scheme or not _SCHEME_RE.match(parts.scheme):
        raise NormalizationError(f"No valid scheme in {href!r} (base {base!r})")

    scheme = parts.scheme.lower()
    if scheme in _NETWORK_SCHEMES:
        if not parts.hostname:
            raise NormalizationError(f"No host in {href!r}")
        netloc = parts.netloc if "@" in parts.netloc else parts.netloc.lower()
        parts = parts._replace(scheme=scheme, netloc=netloc, path=parts.path or "/")
    return urlunsplit(parts)


def is_http_url(url: str) -> bool:
    """Check that *url* is an absolute http(s) URL with a host."""
    try:
        parts = urlsplit(url)
        parts.port
    except ValueError:
        return False
    return parts.scheme.lower() in ("http", "https") and bool(parts.hostname)


def append_cache_buster(url: str, now_ms: int | None = None) -> str:
    """Append a uniqueness token to defeat caching between us and the origin."""
    if now_ms is None:
        now_ms = time.time_ns() // 1_000_000
    parts = urlsplit(url)
    token = f"{CACHE_BUST_PARAM}={now_ms}"
    query = f"{parts.query}&{token}" if parts.query else token
    return urlunsplit(parts._replace(query=query))


def cache_buster_value(url: str) -> str | None:
    """Return the value of the last cache-buster parameter in *url*, if any."""
    for param in reversed(urlsplit(url).query.split("&")):
        name, sep, value = param.partition("=")
        if name == CACHE_BUST_PARAM and sep:
            return value
    return None


def strip_cache_buster(url: str, value: str | None = None) -> str:
    """Remove the token added by :func:`append_cache_buster`, if still present.

    With *value*, only a parameter carrying exactly that token is removed, so a
    caller's own ``_`` parameter survives a redirect that dropped ours.
    """
    parts = urlsplit(url)
    if not parts.query:
        return url
    params = parts.query.split("&")
    for i in range(len(params) - 1, -1, -1):
        name, _, token = params[i].partition("=")
        if name == CACHE_BUST_PARAM and (value is None or token == value):
            del params[i]
            return urlunsplit(parts._replace(query="&".join(params)))
    return url

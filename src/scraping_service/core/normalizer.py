"""URL normalization for cache and result de-duplication.

:func:`normalize_url` turns a URL into the stable key stored in the
``normalized_url`` columns of ``scrape_results`` and ``scrape_cache``.  Two
URLs that differ only by scheme, a leading ``www.`` label or one trailing
slash map to the same key; query strings and fragments are dropped.

The function is total: input that cannot be parsed as a URL with a host
still produces a deterministic key via a literal-prefix fallback.
"""

from __future__ import annotations

import re
from urllib.parse import urlsplit

_SCHEME_PREFIX_RE = re.compile(r"^https?://")
_WWW_PREFIX = "www."


def _fallback_normalize(url: str) -> str:
    """Strip a literal ``http(s)://`` and ``www.`` prefix and one trailing slash."""
    key = _SCHEME_PREFIX_RE.sub("", url.lower(), count=1)
    key = key.removeprefix(_WWW_PREFIX)
    return key.removesuffix("/")


def normalize_url(url: str) -> str:
    """Return the cache key for *url*.

    Examples::

        >>> normalize_url("https://www.Example.com/About/")
        'example.com/about'
        >>> normalize_url("http://example.com/about?ref=x#team")
        'example.com/about'

    Args:
        url: Any string; normally an absolute ``http(s)`` URL.

    Returns:
        ``host + path`` lower-cased, without ``www.``, scheme, port, query,
        fragment or a trailing slash.  Never raises.
    """
    try:
        parts = urlsplit(url.strip())
        host = parts.hostname
    except ValueError:
        host = None

    if not host:
        return _fallback_normalize(url.strip())

    host = host.removeprefix(_WWW_PREFIX)
    path = parts.path.removesuffix("/")
    return f"{host}{path}".lower()

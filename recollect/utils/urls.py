"""URL normalization used for duplicate detection and result grouping."""

from urllib.parse import parse_qsl, urlencode, urlsplit, urlunsplit

_HTTP_SCHEMES = ("http", "https")


def _split(url: str):
    parts = urlsplit(url)
    if not parts.scheme or (parts.scheme in _HTTP_SCHEMES and not parts.netloc):
        raise ValueError(f"not an absolute URL: {url!r}")
    return parts


def _path(parts) -> str:
    # an http(s) URL without a path addresses "/"
    if parts.scheme.lower() in _HTTP_SCHEMES:
        return parts.path or "/"
    return parts.path


def canonical_url(url: str) -> str:
    """Drop the fragment and sort query parameters by key (stable for equal keys).

    Unparsable input is returned unchanged.
    """
    try:
        parts = _split(url)
    except ValueError:
        return url
    pairs = parse_qsl(parts.query, keep_blank_values=True)
    query = urlencode(sorted(pairs, key=lambda kv: kv[0]))
    return urlunsplit((parts.scheme.lower(), parts.netloc.lower(), _path(parts), query, ""))


def strip_fragment(url: str) -> str:
    """Remove the `#fragment` part only; the query keeps its order."""
    try:
        parts = _split(url)
    except ValueError:
        return url.split("#", 1)[0]
    return urlunsplit((parts.scheme.lower(), parts.netloc.lower(), _path(parts), parts.query, ""))


def is_http_url(url: str) -> bool:
    try:
        parts = _split(url)
    except ValueError:
        return False
    return parts.scheme.lower() in _HTTP_SCHEMES and bool(parts.netloc)


def hostname_of(url: str) -> str:
    try:
        return urlsplit(url).hostname or ""
    except ValueError:
        return ""

"""
Same-origin proxy paths for upstream media.

``rewrite`` turns an absolute media URL into a local path such as
``/img/abc.jpg``; ``resolve`` turns that path back into the upstream URL when
the bytes are fetched. Both are pure functions.
"""

import html
from typing import Optional
from urllib.parse import quote, urlsplit

# Upstream media host -> local path prefix
MEDIA_HOSTS = {
    "i.redd.it": "/img",
    "v.redd.it": "/vid",
    "preview.redd.it": "/preview/pre",
    "external-preview.redd.it": "/preview/external-pre",
    "a.thumbs.redditmedia.com": "/thumb/a",
    "b.thumbs.redditmedia.com": "/thumb/b",
    "emoji.redditmedia.com": "/emoji",
    "styles.redditmedia.com": "/style",
    "www.redditstatic.com": "/static",
}

_HOSTS_BY_PREFIX = sorted(
    ((prefix, host) for host, prefix in MEDIA_HOSTS.items()),
    key=lambda item: len(item[0]),
    reverse=True,
)

# Reserved characters left alone so existing percent-escapes survive
_SAFE_PATH_CHARS = "/%:@!$&'()*+,;=-._~"


def is_proxy_path(url: str) -> bool:
    """True if ``url`` is already a local media proxy path."""
    if not url.startswith("/") or url.startswith("//"):
        return False
    return any(url.startswith(prefix + "/") for prefix, _ in _HOSTS_BY_PREFIX)


def rewrite(url: str) -> str:
    """
    Rewrite an upstream media URL to a same-origin proxy path.

    Args:
        url: Absolute (or scheme-relative) URL as found in an API payload

    Returns:
        Proxy path for known media hosts, otherwise ``url`` unchanged
    """
    if not url or is_proxy_path(url):
        return url

    candidate = html.unescape(url) if "&amp;" in url else url
    parts = urlsplit(candidate)
    if parts.scheme not in ("http", "https", "") or not parts.netloc:
        return url

    prefix = MEDIA_HOSTS.get((parts.hostname or "").lower())
    if prefix is None:
        return url

    path = quote(parts.path, safe=_SAFE_PATH_CHARS).lstrip("/")
    rewritten = f"{prefix}/{path}"
    if parts.query:
        rewritten += f"?{parts.query}"
    return rewritten


def resolve(path: str) -> Optional[str]:
    """
    Reconstruct the upstream URL behind a proxy path.

    Args:
        path: Path produced by ``rewrite`` (query string included)

    Returns:
        The https URL on the original media host, or None if the path is not
        a media proxy path
    """
    parts = urlsplit(path)
    if parts.scheme or parts.netloc:
        return None

    for prefix, host in _HOSTS_BY_PREFIX:
        if not parts.path.startswith(prefix + "/"):
            continue
        rest = parts.path[len(prefix) + 1:]
        if not rest or ".." in rest.split("/"):
            return None
        url = f"https://{host}/{rest}"
        if parts.query:
            url += f"?{parts.query}"
        return url

    return None

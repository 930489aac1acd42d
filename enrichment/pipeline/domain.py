from __future__ import annotations

import re
from urllib.parse import urlparse, urlunparse

_SCHEME_RE = re.compile(r"^[a-z][a-z0-9+.\-]*://", re.IGNORECASE)
_TLD_RE = re.compile(r"\.(com|org|net|co|io|ai|app|dev|ca|us|uk|de)(\.[a-z]{2})?$", re.IGNORECASE)


def _strip_www(host: str) -> str:
    # Repeated until stable so "www.www.x.com" and "www..x.com" both reduce to "x.com"
    while True:
        stripped = host.strip(".")
        if stripped.startswith("www."):
            stripped = stripped[4:]
        if stripped == host:
            return host
        host = stripped


def normalize_domain(raw: str) -> str:
    """Reduce a user-supplied domain or URL to a bare lowercase hostname.

    Strips protocol, credentials, port, path, query, fragment and a leading
    ``www.``. Never raises; malformed input is trimmed best-effort.
    """
    s = (raw or "").strip().lower()
    if not s:
        return ""
    candidate = s if _SCHEME_RE.match(s) else f"http://{s}"
    try:
        host = urlparse(candidate).hostname or ""
    except ValueError:
        host = ""
    if not host:
        # Best-effort: cut at the first path/query/fragment separator
        host = re.split(r"[/?#]", _SCHEME_RE.sub("", s), maxsplit=1)[0]
        host = host.rsplit("@", 1)[-1].split(":", 1)[0]
    return _strip_www(host.strip(".").strip())


def looks_like_domain(domain: str) -> bool:
    return bool(re.fullmatch(r"[a-z0-9](?:[a-z0-9\-]{0,61}[a-z0-9])?(?:\.[a-z0-9](?:[a-z0-9\-]{0,61}[a-z0-9])?)+", domain or ""))


def normalize_url(u: str, keep_trailing_slash: bool = False) -> str:
    """Canonicalize a URL: lowercase www-less host, drop query/fragment.

    Trailing slashes are trimmed except for the root path.
    """
    try:
        p = urlparse(u)
    except ValueError:
        return u
    if not p.scheme:
        return u
    netloc = _strip_www((p.netloc or "").lower())
    path = p.path or "/"
    if (not keep_trailing_slash) and path.endswith("/") and path != "/":
        path = path.rstrip("/") or "/"
    return urlunparse(p._replace(netloc=netloc, path=path, params="", query="", fragment=""))


def same_host(url: str, domain: str) -> bool:
    """www-insensitive host comparison between a URL and a normalized domain."""
    try:
        host = urlparse(url).hostname or ""
    except ValueError:
        return False
    return _strip_www(host.lower()) == normalize_domain(domain)


def company_name_from_domain(domain: str) -> str:
    label = _TLD_RE.sub("", normalize_domain(domain))
    parts = [p for p in re.split(r"[-._]", label) if p]
    return " ".join(p.capitalize() for p in parts)


def safe_filename(value: str, max_len: int = 80) -> str:
    s = re.sub(r"^https?://", "", value or "")
    s = re.sub(r"[^A-Za-z0-9._-]+", "_", s).strip("_")
    return s[:max_len] or "root"

"""
URL normalization and same-site checks for the crawler.
"""

from __future__ import annotations

from urllib.parse import urljoin, urlsplit, urlunsplit

import tldextract

# Bundled public-suffix snapshot only; never fetch the list at runtime.
_EXTRACT = tldextract.TLDExtract(suffix_list_urls=())

_DEFAULT_PORTS = {"http": 80, "https": 443}


def normalize_url(url: str, base: str | None = None) -> str | None:
    """
    Return the canonical form of ``url`` or None when it is not crawlable.

    Relative URLs are resolved against ``base``. Scheme and host are
    lower-cased, default ports and fragments are dropped and a trailing
    slash is stripped from the path. Only http(s) URLs are accepted.
    """

    raw = (url or "").strip()
    if not raw:
        return None
    if base:
        raw = urljoin(base, raw)

    try:
        parts = urlsplit(raw)
        port = parts.port
    except ValueError:
        return None

    scheme = parts.scheme.lower()
    if scheme not in _DEFAULT_PORTS or not parts.hostname:
        return None

    host = parts.hostname.lower()
    netloc = host if port is None or port == _DEFAULT_PORTS[scheme] else f"{host}:{port}"
    path = parts.path.rstrip("/")
    return urlunsplit((scheme, netloc, path, parts.query, ""))


def ensure_scheme(url: str) -> str:
    """Prefix bare hostnames such as ``www.example.com`` with https://."""
    stripped = (url or "").strip()
    if stripped and "://" not in stripped:
        return f"https://{stripped}"
    return stripped


def registrable_domain(url: str) -> str:
    """
    Registrable domain of ``url`` (``shop.example.co.uk`` -> ``example.co.uk``).

    Hosts without a public suffix (localhost, IP addresses) are returned as-is.
    """

    host = (urlsplit(url).hostname or "").lower()
    extracted = _EXTRACT(host)
    if extracted.domain and extracted.suffix:
        return f"{extracted.domain}.{extracted.suffix}"
    return host


def same_site(url: str, root_domain: str) -> bool:
    return registrable_domain(url) == root_domain

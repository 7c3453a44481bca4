"""Host helpers shared by the URL analyzer and the malicious URL database."""

from __future__ import annotations

from urllib.parse import urlparse

import tldextract

# Bundled public suffix snapshot only; lookups must never touch the network.
_extract = tldextract.TLDExtract(suffix_list_urls=())


def extract_hostname(value: str) -> str:
    """Return the lowercased hostname of a URL or bare host (no port, no www)."""
    host = canonicalize_domain(value)
    return _strip_port(host)


def canonicalize_domain(value: str) -> str:
    """
    Normalize a domain/URL to a canonical host key.

    - Lowercase
    - Strip leading "www."
    - Preserve port (if present)
    - Ignore path/query/fragment

    Raises ValueError for hosts urllib cannot parse (e.g. broken IPv6 literals).
    """
    raw = (value or "").strip()
    if not raw:
        return ""

    candidate = raw if "://" in raw else f"https://{raw}"
    parsed = urlparse(candidate)
    host = (parsed.hostname or raw.split("/")[0]).strip().lower().strip(".")
    if not host:
        return ""

    if host.startswith("www.") and len(host) > 4:
        host = host[4:]

    port = parsed.port
    if port:
        host = f"{host}:{port}"

    return host


def _strip_port(host: str) -> str:
    if not host:
        return ""
    if host.count(":") == 1:
        return host.split(":", 1)[0]
    return host


def split_domain(value: str) -> tuple[str, str, str]:
    """Return (subdomain, domain label, public suffix) for a host or URL."""
    host = extract_hostname(value)
    if not host:
        return "", "", ""
    extracted = _extract(host)
    return extracted.subdomain.lower(), extracted.domain.lower(), extracted.suffix.lower()


def registered_domain(value: str) -> str:
    """Return the registrable domain (eTLD+1) of a host or URL, or the host itself."""
    host = extract_hostname(value)
    if not host:
        return ""
    extracted = _extract(host)
    if extracted.domain and extracted.suffix:
        return f"{extracted.domain}.{extracted.suffix}".lower()
    return host.lower()


def domain_matches(host: str, domains: set[str] | frozenset[str]) -> bool:
    """Check if a host is one of `domains` or a subdomain of one of them."""
    if not host or not domains:
        return False
    host = host.lower().strip(".")
    if host in domains:
        return True
    return any(host.endswith(f".{domain}") for domain in domains)


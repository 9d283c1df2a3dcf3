"""
Host header parsing: normalizing hostnames and extracting the subdomain label
relative to the configured serving and alias domains.
"""
import re
from typing import Iterable
from urllib.parse import urlparse

DEFAULT_EXCLUDED_SUBDOMAINS = ("www", "mail", "ftp", "cpanel", "webmail")

_LABEL = r"([a-z0-9](?:[a-z0-9-]*[a-z0-9])?)"


def strip_port(host: str) -> str:
    return host.split(":", 1)[0] if host else ""


def strip_www(host: str) -> str:
    return re.sub(r"^www\.", "", host, flags=re.IGNORECASE)


def normalize_host(host: str) -> str:
    """Lowercase host without port or leading "www." (for www-insensitive comparisons)."""
    return strip_www(strip_port(host).strip().lower())


def url_host(url: str) -> str:
    """Host part of an absolute URL, normalized like normalize_host."""
    return normalize_host(urlparse(url).hostname or "")


def valid_domains(site_url: str, aliased_domains: Iterable[str] = ()) -> list[str]:
    """Main serving domain first, then aliases in configured order, without duplicates."""
    domains: list[str] = []
    main = strip_www(urlparse(site_url).hostname or "")
    if main:
        domains.append(main)
    for alias in aliased_domains:
        alias = strip_www((alias or "").strip().lower())
        if alias and alias not in domains:
            domains.append(alias)
    return domains


def detect_subdomain(host: str, domains: Iterable[str],
                     excluded: Iterable[str] = DEFAULT_EXCLUDED_SUBDOMAINS) -> str | None:
    """
    Return the lowercased subdomain label of host, or None.

    The first domain (in the given order) whose pattern matches decides the label.
    A bare domain or its www. variant has no subdomain. Excluded labels return None.
    """
    host = strip_port(host).strip().lower()
    if not host:
        return None

    for domain in domains:
        if not domain:
            continue
        # The bare domain itself carries no subdomain; try the next candidate
        if host == domain or host == "www." + domain:
            continue

        match = re.match(rf"^{_LABEL}\.{re.escape(domain)}$", host, flags=re.IGNORECASE)
        if match:
            label = match.group(1).lower()
            if label in set(excluded):
                return None
            return label

    return None

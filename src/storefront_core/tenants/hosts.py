"""Host header parsing for tenant resolution."""
from __future__ import annotations

import re
from typing import Optional

SLUG_RE = re.compile(r"^[a-z0-9](?:[a-z0-9-]{1,61}[a-z0-9])$")

# subdomains that belong to the platform, never to a storefront
RESERVED_SLUGS = frozenset({"www", "api", "admin", "app", "mail", "static", "cdn", "status"})

_HOSTNAME_RE = re.compile(r"^(?=.{1,253}$)([a-z0-9]([a-z0-9-]{0,61}[a-z0-9])?)(\.[a-z0-9]([a-z0-9-]{0,61}[a-z0-9])?)*$")


def is_valid_slug(slug: str) -> bool:
    return bool(SLUG_RE.match(slug)) and slug not in RESERVED_SLUGS


def normalize_host(host: Optional[str]) -> Optional[str]:
    """Lower-case, drop port and trailing dot. Returns None for empty or malformed hosts."""
    if not host:
        return None
    host = host.strip().lower()
    if host.startswith("["):
        # IPv6 literal; never a storefront host
        return None
    host = host.split(":", 1)[0].rstrip(".")
    if not host or not _HOSTNAME_RE.match(host):
        return None
    return host


def is_platform_host(host: str, base_domain: str) -> bool:
    return host == base_domain or host.endswith("." + base_domain)


def is_custom_domain(host: str, base_domain: str) -> bool:
    return not is_platform_host(host, base_domain)


def extract_slug(host: str, base_domain: str) -> Optional[str]:
    """
    Slug from a platform subdomain: ``acme.<base>`` and ``www.acme.<base>`` both
    give ``acme``. The bare base domain and reserved labels give None.
    """
    if not host.endswith("." + base_domain):
        return None
    label = host[: -len(base_domain) - 1].rsplit(".", 1)[-1]
    return label if is_valid_slug(label) else None


def is_valid_custom_domain(domain: str, base_domain: str) -> bool:
    host = normalize_host(domain)
    return host is not None and host == domain and "." in host and is_custom_domain(host, base_domain)

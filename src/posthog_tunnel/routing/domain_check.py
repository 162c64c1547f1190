"""Hostname matching against blocked-domain sets."""

from __future__ import annotations

from collections.abc import Collection, Mapping
from urllib.parse import urlsplit


def is_domain_blocked(hostname: str, domain_set: Collection[str]) -> bool:
    """Return True if ``hostname`` or any dot-delimited parent is in the set.

    ``sub.example.com`` matches ``example.com``; ``example.com`` does not
    match ``ample.com`` because only label boundaries are tried.
    """
    if not domain_set:
        return False
    if hostname in domain_set:
        return True

    dot = hostname.find(".")
    while dot != -1:
        if hostname[dot + 1:] in domain_set:
            return True
        dot = hostname.find(".", dot + 1)

    return False


def get_request_host(headers: Mapping[str, str]) -> str | None:
    """Extract the requesting page's hostname from Referer, then Origin."""
    source = headers.get("referer") or headers.get("origin")
    if not source:
        return None

    try:
        hostname = urlsplit(source).hostname
    except ValueError:
        return None
    return hostname or None


def normalize_domain(domain: str) -> str:
    return domain.strip().lower()

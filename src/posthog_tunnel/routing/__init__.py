"""Proxy path: identifier extraction, domain matching, decisions, forwarding."""

from .decision import Allow, Decision, Deny, decide
from .domain_check import get_request_host, is_domain_blocked
from .extraction import extract_from_body, extract_from_url, extract_identifier
from .forwarder import forward_request
from .proxy import create_proxy_router

__all__ = [
    "Allow",
    "Decision",
    "Deny",
    "create_proxy_router",
    "decide",
    "extract_from_body",
    "extract_from_url",
    "extract_identifier",
    "forward_request",
    "get_request_host",
    "is_domain_blocked",
]

"""Allow/deny decision for a proxied request.

Evaluation order, first denial wins:
  1. Host matches a globally blocked domain.
  2. No identifier -> allow.
  3. Identifier not listed -> allow.
  4. Host matches one of the identifier's blocked domains.
  5. Identifier listed -> deny. Listing is a full block; per-identifier
     domains only make the reason more specific.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Union

from ..blocklist.models import BlocklistIndex
from .domain_check import is_domain_blocked


@dataclass(frozen=True, slots=True)
class Allow:
    pass


@dataclass(frozen=True, slots=True)
class Deny:
    reason: str


Decision = Union[Allow, Deny]

ALLOW = Allow()


def decide(index: BlocklistIndex, identifier: str | None, hostname: str | None) -> Decision:
    if hostname and is_domain_blocked(hostname, index.global_domain_set):
        return Deny(f"domain blocked globally: {hostname}")

    if not identifier:
        return ALLOW

    if identifier not in index.identifier_map:
        return ALLOW

    per_identifier = index.per_identifier_domain_sets.get(identifier, frozenset())
    if hostname and is_domain_blocked(hostname, per_identifier):
        return Deny(f"domain blocked for identifier {identifier}: {hostname}")

    return Deny(f"identifier blocked: {identifier}")

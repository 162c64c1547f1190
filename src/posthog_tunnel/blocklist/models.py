"""Blocklist document model and its derived lookup index.

``BlocklistData`` is the persisted source of truth. ``BlocklistIndex`` is a
disposable, immutable view built from it; it is rebuilt wholesale after every
mutation and never patched in place.
"""

from __future__ import annotations

from collections.abc import Iterable, Mapping
from dataclasses import dataclass, field
from types import MappingProxyType
from typing import Any

from ..errors import BlocklistLoadError


def _dedupe(values: Iterable[str]) -> list[str]:
    """Collapse duplicates, keeping first-seen order."""
    return list(dict.fromkeys(values))


@dataclass
class BlockedIdentifierEntry:
    """One blocked project identifier and its per-identifier domains."""

    identifier: str
    label: str
    blocked_domains: list[str] = field(default_factory=list)

    def add_domain(self, domain: str) -> bool:
        """Append ``domain`` unless present. Returns True if it was added."""
        if domain in self.blocked_domains:
            return False
        self.blocked_domains.append(domain)
        return True

    def to_dict(self) -> dict[str, Any]:
        return {
            "identifier": self.identifier,
            "label": self.label,
            "blockedDomains": list(self.blocked_domains),
        }

    @classmethod
    def from_dict(cls, raw: Mapping[str, Any]) -> BlockedIdentifierEntry:
        # "apiKey" is the key name written by earlier tunnel releases.
        identifier = raw.get("identifier", raw.get("apiKey"))
        if not isinstance(identifier, str) or not identifier:
            raise BlocklistLoadError(f"Entry without identifier: {dict(raw)!r}")
        label = raw.get("label") or ""
        domains = raw.get("blockedDomains") or []
        if not isinstance(label, str) or not isinstance(domains, list):
            raise BlocklistLoadError(f"Malformed entry for {identifier}")
        return cls(
            identifier=identifier,
            label=label,
            blocked_domains=_dedupe(str(d) for d in domains),
        )


@dataclass
class BlocklistData:
    """The persisted blocklist document."""

    entries: list[BlockedIdentifierEntry] = field(default_factory=list)
    global_blocked_domains: list[str] = field(default_factory=list)

    def find(self, identifier: str) -> BlockedIdentifierEntry | None:
        for entry in self.entries:
            if entry.identifier == identifier:
                return entry
        return None

    def to_dict(self) -> dict[str, Any]:
        return {
            "entries": [entry.to_dict() for entry in self.entries],
            "globalBlockedDomains": list(self.global_blocked_domains),
        }

    @classmethod
    def from_dict(cls, raw: Any) -> BlocklistData:
        if not isinstance(raw, dict):
            raise BlocklistLoadError("Blocklist document must be a JSON object")

        raw_entries = raw.get("entries", raw.get("apiKeys")) or []
        raw_domains = raw.get("globalBlockedDomains") or []
        if not isinstance(raw_entries, list) or not isinstance(raw_domains, list):
            raise BlocklistLoadError("Blocklist document has malformed lists")

        entries: dict[str, BlockedIdentifierEntry] = {}
        for item in raw_entries:
            if not isinstance(item, dict):
                raise BlocklistLoadError(f"Malformed entry: {item!r}")
            entry = BlockedIdentifierEntry.from_dict(item)
            # Later duplicates of an identifier are dropped.
            entries.setdefault(entry.identifier, entry)

        return cls(
            entries=list(entries.values()),
            global_blocked_domains=_dedupe(str(d) for d in raw_domains),
        )


@dataclass(frozen=True, slots=True)
class BlocklistIndex:
    """Read-only lookup tables derived from a ``BlocklistData``.

    Attributes:
        identifier_map: identifier -> entry (the same objects held by the
            document, not copies).
        global_domain_set: globally blocked domains.
        per_identifier_domain_sets: identifier -> its blocked domains.
    """

    identifier_map: Mapping[str, BlockedIdentifierEntry]
    global_domain_set: frozenset[str]
    per_identifier_domain_sets: Mapping[str, frozenset[str]]


def build_index(data: BlocklistData) -> BlocklistIndex:
    """Build a fresh index from ``data``. Call after every mutation."""
    identifier_map: dict[str, BlockedIdentifierEntry] = {}
    per_identifier: dict[str, frozenset[str]] = {}

    for entry in data.entries:
        identifier_map[entry.identifier] = entry
        per_identifier[entry.identifier] = frozenset(entry.blocked_domains)

    return BlocklistIndex(
        identifier_map=MappingProxyType(identifier_map),
        global_domain_set=frozenset(data.global_blocked_domains),
        per_identifier_domain_sets=MappingProxyType(per_identifier),
    )


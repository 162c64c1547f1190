"""Blocklist document, lookup index, and the process-owned store."""

from .models import BlockedIdentifierEntry, BlocklistData, BlocklistIndex, build_index
from .store import BlocklistStore, load_blocklist, save_blocklist

__all__ = [
    "BlockedIdentifierEntry",
    "BlocklistData",
    "BlocklistIndex",
    "BlocklistStore",
    "build_index",
    "load_blocklist",
    "save_blocklist",
]

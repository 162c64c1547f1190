"""Process-owned blocklist store.

``BlocklistStore`` owns the blocklist document, its lookup index, and the
file it is persisted to. One instance is built per app (``create_app``) and
shared by reference with the proxy routes and the admin routes.

Concurrency model:
  - Readers call ``store.index`` once per request and work on that object.
    Indexes are immutable, so a reader sees either the old or the new index,
    never a partial one.
  - Writers go through ``_mutate`` which holds an ``asyncio.Lock`` across
    the in-memory change, the file write, and the index swap. The mutation's
    HTTP response is only produced after all three finish.

Persistence failure policy: the document is restored from a snapshot taken
before the change and the error is raised as ``PersistenceError``. Memory
and disk never disagree after a failed write.
"""

from __future__ import annotations

import asyncio
import copy
import json
import os
import tempfile
from collections.abc import Callable
from pathlib import Path
from typing import TypeVar

from ..errors import BlocklistLoadError, NotFoundError, PersistenceError
from ..observability.logging import get_logger
from ..observability.metrics import BLOCKLIST_MUTATIONS_TOTAL
from .models import BlockedIdentifierEntry, BlocklistData, BlocklistIndex, build_index

logger = get_logger(__name__)

T = TypeVar("T")


# ── File I/O ───────────────────────────────────────────────────────


def load_blocklist(path: str | Path) -> BlocklistData:
    """Read the blocklist document. A missing file is an empty blocklist."""
    path = Path(path)
    if not path.exists():
        return BlocklistData()

    try:
        raw = json.loads(path.read_text(encoding="utf-8"))
    except json.JSONDecodeError as e:
        raise BlocklistLoadError(f"{path}: invalid JSON ({e})") from e
    return BlocklistData.from_dict(raw)


def save_blocklist(path: str | Path, data: BlocklistData) -> None:
    """Atomically write the document as indented JSON.

    The temp file lives in the destination directory so ``os.replace`` is
    atomic on POSIX.
    """
    path = Path(path)
    path.parent.mkdir(parents=True, exist_ok=True)
    content = json.dumps(data.to_dict(), indent=2, ensure_ascii=False) + "\n"

    tmp_path = ""
    try:
        with tempfile.NamedTemporaryFile(
            mode="w",
            encoding="utf-8",
            delete=False,
            dir=path.parent,
            prefix=".tmp-",
        ) as f:
            tmp_path = f.name
            f.write(content)
        os.replace(tmp_path, path)
        tmp_path = ""
    finally:
        if tmp_path and os.path.exists(tmp_path):
            os.unlink(tmp_path)


# ── Store ──────────────────────────────────────────────────────────


class BlocklistStore:
    """Blocklist document + derived index + persistence target."""

    def __init__(self, path: str | Path, data: BlocklistData | None = None) -> None:
        self.path = Path(path)
        self._data = data if data is not None else BlocklistData()
        self._index = build_index(self._data)
        self._lock = asyncio.Lock()

    @classmethod
    def open(cls, path: str | Path) -> BlocklistStore:
        """Load the store from ``path`` (missing file -> empty store)."""
        return cls(path, load_blocklist(path))

    @property
    def index(self) -> BlocklistIndex:
        return self._index

    @property
    def data(self) -> BlocklistData:
        return self._data

    # ── Reads ──────────────────────────────────────────────────────

    def list_entries(self) -> list[BlockedIdentifierEntry]:
        return list(self._data.entries)

    def list_global_domains(self) -> list[str]:
        return list(self._data.global_blocked_domains)

    def get_entry(self, identifier: str) -> BlockedIdentifierEntry:
        entry = self._data.find(identifier)
        if entry is None:
            raise NotFoundError("Identifier", identifier)
        return entry

    def list_identifier_domains(self, identifier: str) -> list[str]:
        return list(self.get_entry(identifier).blocked_domains)

    # ── Mutations ──────────────────────────────────────────────────

    async def upsert_identifier(self, identifier: str, label: str) -> BlockedIdentifierEntry:
        """Create an entry, or relabel it if the identifier is already listed."""

        def apply(data: BlocklistData) -> tuple[bool, BlockedIdentifierEntry]:
            entry = data.find(identifier)
            if entry is None:
                entry = BlockedIdentifierEntry(identifier=identifier, label=label)
                data.entries.append(entry)
                return True, entry
            if entry.label == label:
                return False, entry
            entry.label = label
            return True, entry

        return await self._mutate("upsert_identifier", apply)

    async def remove_identifier(self, identifier: str) -> None:
        def apply(data: BlocklistData) -> tuple[bool, None]:
            entry = data.find(identifier)
            if entry is None:
                raise NotFoundError("Identifier", identifier)
            data.entries.remove(entry)
            return True, None

        await self._mutate("remove_identifier", apply)

    async def add_global_domain(self, domain: str) -> bool:
        """Add a globally blocked domain. Returns False if already listed."""

        def apply(data: BlocklistData) -> tuple[bool, bool]:
            if domain in data.global_blocked_domains:
                return False, False
            data.global_blocked_domains.append(domain)
            return True, True

        return await self._mutate("add_global_domain", apply)

    async def remove_global_domain(self, domain: str) -> None:
        def apply(data: BlocklistData) -> tuple[bool, None]:
            if domain not in data.global_blocked_domains:
                raise NotFoundError("Domain", domain)
            data.global_blocked_domains.remove(domain)
            return True, None

        await self._mutate("remove_global_domain", apply)

    async def add_identifier_domain(self, identifier: str, domain: str) -> BlockedIdentifierEntry:
        def apply(data: BlocklistData) -> tuple[bool, BlockedIdentifierEntry]:
            entry = data.find(identifier)
            if entry is None:
                raise NotFoundError("Identifier", identifier)
            return entry.add_domain(domain), entry

        return await self._mutate("add_identifier_domain", apply)

    async def remove_identifier_domain(self, identifier: str, domain: str) -> None:
        def apply(data: BlocklistData) -> tuple[bool, None]:
            entry = data.find(identifier)
            if entry is None:
                raise NotFoundError("Identifier", identifier)
            if domain not in entry.blocked_domains:
                raise NotFoundError("Domain", domain)
            entry.blocked_domains.remove(domain)
            return True, None

        await self._mutate("remove_identifier_domain", apply)

    async def _mutate(
        self,
        operation: str,
        apply: Callable[[BlocklistData], tuple[bool, T]],
    ) -> T:
        """Run ``apply`` then persist and swap in a rebuilt index.

        ``apply`` mutates the document in place and reports whether anything
        changed; unchanged documents are neither written nor re-indexed.
        """
        async with self._lock:
            snapshot = copy.deepcopy(self._data)
            changed, result = apply(self._data)
            if not changed:
                return result

            try:
                await asyncio.to_thread(save_blocklist, self.path, self._data)
            except OSError as e:
                self._data = snapshot
                self._index = build_index(self._data)
                logger.error(
                    "blocklist_persist_failed",
                    operation=operation,
                    path=str(self.path),
                    error=str(e),
                )
                raise PersistenceError(e) from e

            self._index = build_index(self._data)

        BLOCKLIST_MUTATIONS_TOTAL.labels(operation=operation).inc()
        logger.info(
            "blocklist_mutated",
            operation=operation,
            entries=len(self._data.entries),
            global_domains=len(self._data.global_blocked_domains),
        )
        return result

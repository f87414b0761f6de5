"""Per-entry locked caches for crumbs and static job metadata."""

from __future__ import annotations

import asyncio
from collections.abc import Awaitable, Callable, Hashable, Mapping
from dataclasses import dataclass, field
from typing import Any, Generic, TypeVar

K = TypeVar("K", bound=Hashable)


@dataclass(frozen=True, slots=True)
class Crumb:
    """Anti-forgery token and the header it travels in."""

    field: str
    value: str


@dataclass(frozen=True, slots=True)
class CrumbKey:
    address: str
    identity_path: str
    auth_key: str


@dataclass(frozen=True, slots=True)
class CrumbEntry:
    # crumb is None when the remote does not issue crumbs at all.
    crumb: Crumb | None


@dataclass(slots=True)
class _KeyedLocks(Generic[K]):
    _locks: dict[K, asyncio.Lock] = field(default_factory=dict)
    _loop: asyncio.AbstractEventLoop | None = None

    def get(self, key: K) -> asyncio.Lock:
        loop = asyncio.get_running_loop()
        if loop is not self._loop:
            # Locks created on a previous event loop cannot be awaited on this one.
            self._locks.clear()
            self._loop = loop
        lock = self._locks.get(key)
        if lock is None:
            lock = self._locks[key] = asyncio.Lock()
        return lock


@dataclass(slots=True)
class CrumbCache:
    """Crumbs keyed by server address, local identity and remote user."""

    _entries: dict[CrumbKey, CrumbEntry] = field(default_factory=dict)
    _locks: _KeyedLocks[CrumbKey] = field(default_factory=_KeyedLocks)

    def lock(self, key: CrumbKey) -> asyncio.Lock:
        """Guard for read-modify-write of one entry."""

        return self._locks.get(key)

    def get(self, key: CrumbKey) -> CrumbEntry | None:
        return self._entries.get(key)

    def store(self, key: CrumbKey, crumb: Crumb | None) -> None:
        self._entries[key] = CrumbEntry(crumb)

    def invalidate(self, key: CrumbKey) -> None:
        self._entries.pop(key, None)

    def __len__(self) -> int:
        return len(self._entries)


JobInfoLoader = Callable[[], Awaitable[Any]]


@dataclass(slots=True)
class JobInfoCache:
    """Static job identity (names, URL) keyed by resolved job URL.

    Never holds build status; queue and build state are always fetched live.
    """

    _entries: dict[str, Mapping[str, Any]] = field(default_factory=dict)
    _locks: _KeyedLocks[str] = field(default_factory=_KeyedLocks)

    async def get_or_load(self, job_url: str, loader: JobInfoLoader) -> Mapping[str, Any]:
        async with self._locks.get(job_url):
            cached = self._entries.get(job_url)
            if cached is not None:
                return cached
            loaded = await loader()
            value: Mapping[str, Any] = dict(loaded) if isinstance(loaded, Mapping) else {}
            self._entries[job_url] = value
            return value


__all__ = ["Crumb", "CrumbCache", "CrumbEntry", "CrumbKey", "JobInfoCache"]

"""
Offline cache for the client's app shell.

Models the installable shell's cache: a named, versioned store that keeps
only the app-shell documents, serves them cache-first, and drops every other
version on activation.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Protocol

if TYPE_CHECKING:
    from collections.abc import Awaitable, Callable, Iterable

logger = logging.getLogger(__name__)

DEFAULT_CACHE_VERSION = "decentralized-game-room-v1"
APP_SHELL_PATHS = ("/", "/index.html", "/sw.js")


@dataclass(frozen=True)
class CachedResponse:
    status: int
    body: bytes
    headers: dict[str, str] = field(default_factory=dict)

    @property
    def ok(self) -> bool:
        return self.status == 200


class OfflineCache(Protocol):
    def match(self, key: str) -> CachedResponse | None: ...

    def put(self, key: str, response: CachedResponse) -> None: ...

    def delete(self, key: str) -> bool: ...


class MemoryOfflineCache:
    """In-memory ``OfflineCache`` keeping one dict per cache version."""

    def __init__(self, version: str = DEFAULT_CACHE_VERSION, app_shell: Iterable[str] = APP_SHELL_PATHS) -> None:
        self._version = version
        self._app_shell = frozenset(app_shell)
        self._stores: dict[str, dict[str, CachedResponse]] = {version: {}}

    @property
    def version(self) -> str:
        return self._version

    def versions(self) -> list[str]:
        return sorted(self._stores)

    def is_app_shell(self, key: str) -> bool:
        return key in self._app_shell

    def match(self, key: str) -> CachedResponse | None:
        return self._current.get(key)

    def put(self, key: str, response: CachedResponse) -> None:
        if not self.is_app_shell(key):
            logger.debug("not caching %s: outside the app shell", key)
            return
        self._current[key] = response

    def delete(self, key: str) -> bool:
        return self._current.pop(key, None) is not None

    def open_version(self, version: str) -> dict[str, CachedResponse]:
        """Return the store for ``version``, creating it if needed."""
        return self._stores.setdefault(version, {})

    async def install(self, fetch: Callable[[str], Awaitable[CachedResponse]]) -> None:
        """Precache every app-shell path; a failed fetch leaves the cache partial."""
        for key in sorted(self._app_shell):
            try:
                response = await fetch(key)
            except OSError as e:
                logger.warning("could not precache %s: %s", key, e)
                continue
            if response.ok:
                self.put(key, response)

    def activate(self) -> list[str]:
        """Delete every cache version except the current one; return the deleted names."""
        stale = [name for name in self._stores if name != self._version]
        for name in stale:
            logger.info("deleting old cache %s", name)
            del self._stores[name]
        return stale

    def clear(self) -> None:
        """Drop every cache version, the current one included."""
        self._stores = {self._version: {}}

    async def fetch(
        self,
        method: str,
        key: str,
        network: Callable[[str], Awaitable[CachedResponse]],
    ) -> CachedResponse | None:
        """
        Answer a request the way the shell's fetch handler does.

        Returns None for non-GET requests, which are not intercepted. App-shell
        paths are served cache-first and successful network responses are
        stored; anything else goes network-first with the cache as fallback.
        """
        if method.upper() != "GET":
            return None

        if self.is_app_shell(key):
            cached = self.match(key)
            if cached is not None:
                return cached
            try:
                response = await network(key)
            except OSError as e:
                logger.info("network fetch for %s failed: %s", key, e)
                return self.match(key)
            if response.ok:
                self.put(key, response)
            return response

        try:
            return await network(key)
        except OSError:
            return self.match(key)

    @property
    def _current(self) -> dict[str, CachedResponse]:
        return self.open_version(self._version)

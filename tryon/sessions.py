"""In-memory registry of per-user try-on controllers."""

from __future__ import annotations

import asyncio
import time
from dataclasses import dataclass
from typing import Callable, Optional

from logger import info_domain
from tryon.controller import TryOnController
from tryon.services.generation_base import GenerationClient


@dataclass(slots=True)
class _Entry:
    controller: TryOnController
    last_seen: float


class SessionRegistry:
    """Map a session key (browser cookie, chat id) to its controller.

    Sessions idle for longer than ``ttl_seconds`` are dropped on the next
    access; a loading session is never dropped.
    """

    def __init__(
        self,
        client: GenerationClient,
        *,
        ttl_seconds: int = 1800,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self._client = client
        self._ttl = max(int(ttl_seconds), 1)
        self._clock = clock
        self._entries: dict[str, _Entry] = {}

    def __len__(self) -> int:
        return len(self._entries)

    def __contains__(self, key: object) -> bool:
        return key in self._entries

    @property
    def client(self) -> GenerationClient:
        return self._client

    def get(self, key: str) -> TryOnController:
        """Return the controller for ``key``, creating it when absent."""

        now = self._clock()
        self.prune(now)
        entry = self._entries.get(key)
        if entry is None:
            entry = _Entry(TryOnController(self._client, session_id=key), now)
            self._entries[key] = entry
        entry.last_seen = now
        return entry.controller

    def peek(self, key: str) -> Optional[TryOnController]:
        entry = self._entries.get(key)
        return entry.controller if entry is not None else None

    def discard(self, key: str) -> None:
        entry = self._entries.pop(key, None)
        if entry is not None:
            entry.controller.dispose()

    def prune(self, now: Optional[float] = None) -> int:
        """Drop expired sessions and return how many were removed."""

        current = self._clock() if now is None else now
        expired = [
            key
            for key, entry in self._entries.items()
            if current - entry.last_seen > self._ttl and not entry.controller.state.is_loading
        ]
        for key in expired:
            self.discard(key)
        if expired:
            info_domain("tryon.sessions", "Expired sessions dropped", stage="SESSION_EXPIRED", count=len(expired))
        return len(expired)

    async def close(self) -> None:
        """Drop every session and wait for cancelled requests to unwind."""

        pending = [
            entry.controller.task
            for entry in self._entries.values()
            if entry.controller.task is not None and not entry.controller.task.done()
        ]
        for key in list(self._entries):
            self.discard(key)
        if pending:
            await asyncio.gather(*pending, return_exceptions=True)


__all__ = ["SessionRegistry"]

"""Process-wide synchronisation state shared by the loop and the services."""
from __future__ import annotations

import logging
import time
from contextlib import asynccontextmanager
from dataclasses import dataclass, field
from typing import AsyncIterator, Callable, Optional

from stocksync.snapshot import Snapshot

logger = logging.getLogger(__name__)

DEFAULT_DEBOUNCE_SECONDS = 2.0


@dataclass
class SyncState:
    """Baseline snapshot, timestamps and the manual-mutation flag."""

    debounce_seconds: float = DEFAULT_DEBOUNCE_SECONDS
    clock: Callable[[], float] = field(default=time.time, repr=False)
    snapshot: Optional[Snapshot] = None
    last_sync_at: Optional[float] = None
    last_broadcast_at: Optional[float] = None
    cycles: int = 0
    _mutations: int = field(default=0, repr=False)

    @property
    def serialized(self) -> Optional[str]:
        return self.snapshot.serialize() if self.snapshot is not None else None

    @property
    def mutation_in_progress(self) -> bool:
        return self._mutations > 0

    def within_debounce(self, now: Optional[float] = None) -> bool:
        if self.last_broadcast_at is None:
            return False
        current = self.clock() if now is None else now
        return current - self.last_broadcast_at < self.debounce_seconds

    def mark_synced(self) -> float:
        self.last_sync_at = self.clock()
        return self.last_sync_at

    def mark_broadcast(self) -> float:
        self.last_broadcast_at = self.clock()
        return self.last_broadcast_at

    def store(self, snapshot: Snapshot) -> None:
        self.snapshot = snapshot

    @asynccontextmanager
    async def manual_mutation(self, description: str = "mutation") -> AsyncIterator["SyncState"]:
        """Hold the manual-mutation flag for the duration of the block.

        The debounce anchor is stamped on exit, successful or not, so the next
        reconciliation does not re-broadcast the change it just made.
        """

        self._mutations += 1
        logger.debug("Manual %s started", description)
        try:
            yield self
        finally:
            self._mutations -= 1
            self.mark_broadcast()
            logger.debug("Manual %s finished", description)


__all__ = ["DEFAULT_DEBOUNCE_SECONDS", "SyncState"]

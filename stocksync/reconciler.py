"""Periodic poll-diff-broadcast loop keeping the snapshot current."""
from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, field
from typing import Any, Dict, Iterable, List, Optional

from stocksync import broadcast
from stocksync.broadcast import Broadcaster, UpdateAction
from stocksync.errors import RemoteUnavailable
from stocksync.mapper import RowMapper
from stocksync.models import InventoryRecord
from stocksync.remote import RemoteGateway
from stocksync.snapshot import Snapshot, diff_snapshots
from stocksync.state import SyncState

logger = logging.getLogger(__name__)

DEFAULT_POLL_INTERVAL = 30.0

SKIPPED = "skipped"
BASELINE = "baseline"
NO_CHANGES = "no_changes"
DEBOUNCED = "debounced"
CHANGED = "changed"
ERROR = "error"


@dataclass
class CycleResult:
    status: str
    changes: List[Dict[str, Any]] = field(default_factory=list)
    failed_sources: List[str] = field(default_factory=list)
    error: Optional[str] = None


class ReconciliationLoop:
    """Fetch every source, diff against the baseline and broadcast changes."""

    def __init__(
        self,
        gateway: RemoteGateway,
        mapper: RowMapper,
        broadcaster: Broadcaster,
        state: SyncState,
        sources: Iterable[str],
        *,
        interval: float = DEFAULT_POLL_INTERVAL,
        carry_forward_on_failure: bool = False,
    ) -> None:
        self._gateway = gateway
        self._mapper = mapper
        self._broadcaster = broadcaster
        self._state = state
        self._sources = list(sources)
        self.interval = max(1.0, float(interval))
        self.carry_forward_on_failure = carry_forward_on_failure
        self._task: Optional[asyncio.Task] = None
        self._wake: Optional[asyncio.Event] = None
        self._stopping = False

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------
    def start(self) -> asyncio.Task:
        if self._task is not None and not self._task.done():
            return self._task
        self._stopping = False
        self._wake = asyncio.Event()
        self._task = asyncio.get_running_loop().create_task(self.run_forever())
        return self._task

    async def stop(self) -> None:
        self._stopping = True
        if self._wake is not None:
            self._wake.set()
        if self._task is not None:
            await self._task
            self._task = None

    def trigger(self) -> None:
        """Run the next cycle now instead of waiting for the interval."""

        if self._wake is not None:
            self._wake.set()

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    async def run_forever(self) -> None:
        if self._wake is None:
            self._wake = asyncio.Event()
        logger.info(
            "Reconciliation loop started (interval %.0fs, sources: %s)", self.interval, ", ".join(self._sources)
        )
        while not self._stopping:
            await self.run_once()
            if self._stopping:
                break
            try:
                await asyncio.wait_for(self._wake.wait(), timeout=self.interval)
            except asyncio.TimeoutError:
                pass
            self._wake.clear()
        logger.info("Reconciliation loop stopped after %d cycle(s)", self._state.cycles)

    # ------------------------------------------------------------------
    # One cycle
    # ------------------------------------------------------------------
    async def run_once(self) -> CycleResult:
        if self._state.mutation_in_progress:
            logger.debug("Manual mutation in progress; skipping reconciliation")
            return CycleResult(SKIPPED)

        self._state.cycles += 1
        await self._broadcaster.publish(broadcast.sync_start())
        try:
            result = await self._reconcile()
        except Exception as exc:
            logger.exception("Reconciliation cycle %d failed", self._state.cycles)
            await self._broadcaster.publish(broadcast.sync_error(exc))
            return CycleResult(ERROR, error=str(exc))
        await self._broadcaster.publish(broadcast.sync_success(len(result.changes)))
        return result

    async def _reconcile(self) -> CycleResult:
        per_source, failed = await self._fetch_all()
        snapshot = Snapshot.merge(per_source)

        if self._state.mutation_in_progress:
            logger.debug("Manual mutation started during fetch; discarding cycle")
            await self._broadcaster.publish(broadcast.sync_status(SKIPPED))
            return CycleResult(SKIPPED, failed_sources=failed)

        if self._state.snapshot is None:
            self._state.store(snapshot)
            self._state.mark_synced()
            logger.info("Stored initial snapshot with %d record(s)", len(snapshot))
            return CycleResult(BASELINE, failed_sources=failed)

        if snapshot.serialize() == self._state.serialized:
            self._state.mark_synced()
            await self._broadcaster.publish(broadcast.sync_status(NO_CHANGES))
            return CycleResult(NO_CHANGES, failed_sources=failed)

        if self._state.within_debounce():
            logger.debug("Changes detected inside the debounce window; deferring broadcast")
            await self._broadcaster.publish(broadcast.sync_status(DEBOUNCED))
            return CycleResult(DEBOUNCED, failed_sources=failed)

        changes = [delta.to_dict() for delta in diff_snapshots(self._state.snapshot, snapshot)]
        await self._broadcaster.publish(
            broadcast.inventory_update(UpdateAction.REFRESH, {"items": snapshot.items(), "changes": changes})
        )
        await self._broadcaster.publish(broadcast.recent_changes(changes))
        self._state.store(snapshot)
        self._state.mark_synced()
        self._state.mark_broadcast()
        logger.info("Broadcast %d change(s) from %d record(s)", len(changes), len(snapshot))
        return CycleResult(CHANGED, changes=changes, failed_sources=failed)

    async def _fetch_all(self):
        per_source: Dict[str, List[InventoryRecord]] = {}
        failed: List[str] = []
        for source in self._sources:
            try:
                values = await self._gateway.read_sheet(source)
            except RemoteUnavailable as exc:
                failed.append(source)
                if self.carry_forward_on_failure and self._state.snapshot is not None:
                    logger.warning("Fetch of %s failed (%s); keeping previous rows", source, exc)
                    per_source[source] = self._state.snapshot.for_source(source)
                else:
                    logger.warning("Fetch of %s failed (%s); treating as empty", source, exc)
                    per_source[source] = []
                continue
            per_source[source] = self._mapper.to_records(source, values)
        return per_source, failed


__all__ = [
    "BASELINE",
    "CHANGED",
    "CycleResult",
    "DEBOUNCED",
    "DEFAULT_POLL_INTERVAL",
    "ERROR",
    "NO_CHANGES",
    "ReconciliationLoop",
    "SKIPPED",
]

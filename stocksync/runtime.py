"""Wire the synchronisation services around one shared state."""
from __future__ import annotations

import logging
from dataclasses import dataclass
from pathlib import Path
from typing import Optional

from stocksync.broadcast import Broadcaster
from stocksync.changelog import ChangeLog
from stocksync.conflicts import ConflictLog
from stocksync.drift import DriftResolver
from stocksync.inventory import InventoryService
from stocksync.mapper import RowMapper
from stocksync.reconciler import ReconciliationLoop
from stocksync.remote import RemoteGateway
from stocksync.schema import SourceSchema
from stocksync.sessions import EditSessionManager
from stocksync.sheets_client import GoogleSheetsStore, build_store
from stocksync.state import SyncState

logger = logging.getLogger(__name__)


@dataclass
class Runtime:
    gateway: RemoteGateway
    mapper: RowMapper
    state: SyncState
    changelog: ChangeLog
    conflicts: ConflictLog
    broadcaster: Broadcaster
    sessions: EditSessionManager
    resolver: DriftResolver
    inventory: InventoryService
    loop: ReconciliationLoop

    def close(self) -> None:
        self.gateway.close()


def build_runtime(settings, *, store: Optional[GoogleSheetsStore] = None) -> Runtime:
    """Build every service from a :class:`settings.SyncSettings` instance."""

    if store is None:
        store = build_store(settings.targets(), settings.credential_path)
    sources = settings.source_keys()
    gateway = RemoteGateway(store, timeout=settings.remote_timeout_seconds)
    mapper = RowMapper(SourceSchema.with_overrides(settings.header_aliases))
    state = SyncState(debounce_seconds=settings.debounce_seconds)
    changelog = ChangeLog(
        Path(settings.resolved_change_log_path()),
        max_entries=settings.change_log_max_entries,
        dedupe_window=settings.dedupe_window_seconds,
    )
    conflicts = ConflictLog()
    broadcaster = Broadcaster()
    sessions = EditSessionManager(
        gateway,
        mapper,
        changelog,
        broadcaster,
        state,
        ttl_seconds=settings.session_ttl_seconds or None,
        conflicts=conflicts,
    )
    resolver = DriftResolver(
        gateway, mapper, changelog, allow_partial_match=settings.allow_partial_match, conflicts=conflicts
    )
    inventory = InventoryService(
        gateway,
        mapper,
        resolver,
        changelog,
        broadcaster,
        state,
        sources,
        warehouse_labels=settings.warehouse_labels(),
    )
    loop = ReconciliationLoop(
        gateway,
        mapper,
        broadcaster,
        state,
        sources,
        interval=settings.poll_interval_seconds,
        carry_forward_on_failure=settings.carry_forward_on_failure,
    )
    logger.debug("Runtime built for sources: %s", ", ".join(sources))
    return Runtime(gateway, mapper, state, changelog, conflicts, broadcaster, sessions, resolver, inventory, loop)


__all__ = ["Runtime", "build_runtime"]

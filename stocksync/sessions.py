"""Edit sessions and commit-time conflict detection.

A session records the remote content of a row at the moment a user starts
editing it.  At commit time the row is read again; any business field that
moved since the baseline is a conflict unless the commit is forced.
"""
from __future__ import annotations

import logging
import time
from typing import Callable, Dict, List, Mapping, Optional, Tuple

from stocksync import broadcast
from stocksync.broadcast import Broadcaster, UpdateAction
from stocksync.changelog import ChangeLog, entries_to_dicts
from stocksync.conflicts import ConflictLog
from stocksync.errors import EditConflict, EditLocked, RowNotFound, SessionNotFound, ValidationError
from stocksync.mapper import RowMapper, is_blank_row
from stocksync.models import (
    ChangeAction,
    CommitResult,
    EditSession,
    FieldChange,
    FieldDiff,
    diff_fields,
    parse_quantity,
    split_row_id,
    utc_now_iso,
)
from stocksync.remote import RemoteGateway
from stocksync.schema import BUSINESS_FIELDS, SheetLayout
from stocksync.state import SyncState

logger = logging.getLogger(__name__)

RECENT_CHANGES_LIMIT = 10


class EditSessionManager:
    def __init__(
        self,
        gateway: RemoteGateway,
        mapper: RowMapper,
        changelog: ChangeLog,
        broadcaster: Broadcaster,
        state: SyncState,
        *,
        ttl_seconds: Optional[float] = None,
        clock: Callable[[], float] = time.time,
        conflicts: Optional[ConflictLog] = None,
    ) -> None:
        self._gateway = gateway
        self._mapper = mapper
        self._changelog = changelog
        self._broadcaster = broadcaster
        self._state = state
        self._ttl = ttl_seconds if ttl_seconds and ttl_seconds > 0 else None
        self._clock = clock
        self._conflicts = conflicts if conflicts is not None else ConflictLog()
        self._sessions: Dict[str, EditSession] = {}

    # ------------------------------------------------------------------
    # Session lifecycle
    # ------------------------------------------------------------------
    async def begin_edit(self, user: str, row_id: str) -> Dict[str, str]:
        """Open (or replace) ``user``'s session on ``row_id``.

        Returns the baseline business fields read fresh from the remote store.
        """

        self._expire()
        holder = self.holder(row_id)
        if holder is not None and holder != user:
            raise EditLocked(row_id, holder)

        source, row_number = _parse_row_id(row_id)
        layout, row = await self._read_row(source, row_number, row_id)
        baseline_fields = layout.business_values(row)
        self._sessions[user] = EditSession(
            user=user,
            row_id=row_id,
            baseline=layout.business_cells(row),
            baseline_fields=baseline_fields,
            started_at=self._clock(),
        )
        logger.info("%s started editing %s", user, row_id)
        await self._broadcaster.publish(broadcast.user_activity(user, "start_edit", row_id))
        return dict(baseline_fields)

    async def end_edit(self, user: str, row_id: str) -> None:
        self._expire()
        session = self._sessions.get(user)
        if session is None or session.row_id != row_id:
            raise SessionNotFound(user, row_id)
        del self._sessions[user]
        logger.info("%s stopped editing %s", user, row_id)
        await self._broadcaster.publish(broadcast.user_activity(user, "end_edit", row_id))

    def holder(self, row_id: str) -> Optional[str]:
        for user, session in self._sessions.items():
            if session.row_id == row_id:
                return user
        return None

    def session_for(self, user: str) -> Optional[EditSession]:
        self._expire()
        return self._sessions.get(user)

    def sessions(self) -> List[Dict[str, object]]:
        """Active sessions with their age in seconds."""

        self._expire()
        now = self._clock()
        return [session.to_dict(now) for session in self._sessions.values()]

    def _expire(self) -> None:
        if self._ttl is None:
            return
        now = self._clock()
        for user, session in list(self._sessions.items()):
            if session.duration(now) >= self._ttl:
                logger.info("Edit session of %s on %s expired after %.0fs", user, session.row_id, self._ttl)
                del self._sessions[user]

    # ------------------------------------------------------------------
    # Commit
    # ------------------------------------------------------------------
    async def commit(
        self,
        user: str,
        row_id: str,
        new_fields: Mapping[str, object],
        *,
        force: bool = False,
    ) -> CommitResult:
        """Write ``new_fields`` over the current remote row.

        Raises :class:`EditConflict` when the row changed since ``begin_edit``
        and ``force`` is not set.
        """

        if not isinstance(new_fields, Mapping):
            raise ValidationError("new_fields must be a mapping of field names to values")
        updates = {
            name: "" if value is None else str(value)
            for name, value in new_fields.items()
            if name in BUSINESS_FIELDS
        }

        self._expire()
        source, row_number = _parse_row_id(row_id)
        async with self._state.manual_mutation(f"commit of {row_id}"):
            layout, row = await self._read_row(source, row_number, row_id)
            current_fields = layout.business_values(row)
            session = self._sessions.get(user)
            if session is not None and session.row_id != row_id:
                session = None

            if session is not None and not force:
                diff = [
                    FieldDiff(name, session.baseline_fields.get(name, ""), current_fields.get(name, ""))
                    for name in BUSINESS_FIELDS
                    if session.baseline_fields.get(name, "") != current_fields.get(name, "")
                ]
                if diff:
                    attempted = {**current_fields, **updates}
                    self._record_conflict(user, row_id, diff, current_fields, attempted)
                    raise EditConflict(row_id, diff, current=current_fields, attempted=attempted)

            version = parse_quantity(layout.cell(row, "version")) + 1
            modified_at = utc_now_iso()
            written = layout.build_row(
                {**updates, "last_modified": modified_at, "modified_by": user, "version": str(version)},
                base=row,
            )
            await self._gateway.write_range(
                source, f"A{row_number}:{layout.last_column}{row_number}", [written]
            )

            original = session.baseline_fields if session is not None else current_fields
            written_fields = layout.business_values(written)
            changes = diff_fields(original, written_fields)
            result = CommitResult(
                row_id=row_id,
                fields=written_fields,
                changes=changes,
                version=version,
                modified_at=modified_at,
                modified_by=user,
                forced=force,
            )
            if changes:
                self._changelog.record(
                    user,
                    ChangeAction.UPDATE,
                    row_id,
                    changes=changes,
                    metadata={"version": result.version, "modified_at": result.modified_at, "forced": force},
                )
            self._sessions.pop(user, None)
            logger.info("%s committed %s (version %d, %d field(s) changed)", user, row_id, result.version, len(changes))

        await self._broadcaster.publish(broadcast.inventory_update(UpdateAction.UPDATE, result.to_dict()))
        await self._broadcaster.publish(
            broadcast.recent_changes(entries_to_dicts(self._changelog.recent(RECENT_CHANGES_LIMIT)))
        )
        return result

    def _record_conflict(
        self,
        user: str,
        row_id: str,
        diff: List[FieldDiff],
        current: Mapping[str, str],
        attempted: Mapping[str, str],
    ) -> None:
        logger.warning("Conflict on %s for %s: %s", row_id, user, ", ".join(item.field for item in diff))
        self._changelog.record(
            user,
            ChangeAction.CONFLICT_DETECTED,
            row_id,
            changes={item.field: FieldChange(old=item.baseline, new=item.current) for item in diff},
            metadata={"attempted": dict(attempted), "current": dict(current)},
        )
        self._conflicts.record(
            row_id,
            {item.field: (item.baseline, item.current) for item in diff},
            source="commit",
            context={"user": user},
        )

    async def _read_row(self, source: str, row_number: int, row_id: str) -> Tuple[SheetLayout, List[str]]:
        values = await self._gateway.read_sheet(source)
        if row_number < 2 or row_number > len(values) or is_blank_row(values[row_number - 1]):
            raise RowNotFound(row_id)
        return self._mapper.layout(values), list(values[row_number - 1])


def _parse_row_id(row_id: str) -> Tuple[str, int]:
    try:
        return split_row_id(row_id)
    except ValueError as exc:
        raise ValidationError(str(exc)) from exc


__all__ = ["EditSessionManager", "RECENT_CHANGES_LIMIT"]

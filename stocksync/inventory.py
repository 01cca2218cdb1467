"""Manual inventory mutations: add, delete, relocate and bulk send-out.

Every mutation runs under the manual-mutation flag of :class:`SyncState` so
the reconciliation loop neither reads a half-applied sheet nor re-broadcasts
the change right after it was announced here.

Relocation has no cross-sheet transaction.  Rows are always appended to the
destination before the source row is reduced or deleted, so a failure in
between leaves the stock over-counted, never lost.
"""
from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any, Dict, Iterable, List, Mapping, Optional, Sequence

from stocksync import broadcast
from stocksync.broadcast import Broadcaster, UpdateAction
from stocksync.changelog import ChangeLog, entries_to_dicts
from stocksync.drift import DriftResolver, ResolvedRow
from stocksync.errors import RemoteUnavailable, StockSyncError, ValidationError
from stocksync.mapper import RowMapper
from stocksync.models import (
    ChangeAction,
    FieldChange,
    InventoryRecord,
    MoveRequest,
    parse_quantity,
    split_row_id,
    utc_now_iso,
)
from stocksync.remote import RemoteGateway
from stocksync.schema import BUSINESS_FIELDS, DEFAULT_MATCH_FIELDS, SheetLayout
from stocksync.sessions import RECENT_CHANGES_LIMIT
from stocksync.state import SyncState

logger = logging.getLogger(__name__)


@dataclass
class _PlannedMove:
    request: MoveRequest
    resolved: ResolvedRow
    quantity: int

    @property
    def available(self) -> int:
        return self.resolved.record.quantity

    @property
    def residual(self) -> int:
        return self.available - self.quantity


class InventoryService:
    def __init__(
        self,
        gateway: RemoteGateway,
        mapper: RowMapper,
        resolver: DriftResolver,
        changelog: ChangeLog,
        broadcaster: Broadcaster,
        state: SyncState,
        sources: Iterable[str],
        *,
        warehouse_labels: Optional[Mapping[str, str]] = None,
    ) -> None:
        self._gateway = gateway
        self._mapper = mapper
        self._resolver = resolver
        self._changelog = changelog
        self._broadcaster = broadcaster
        self._state = state
        self._sources = list(sources)
        self._labels = dict(warehouse_labels or {})

    @property
    def sources(self) -> List[str]:
        return list(self._sources)

    # ------------------------------------------------------------------
    # Single-row mutations
    # ------------------------------------------------------------------
    async def add_item(self, user: str, source: str, fields: Mapping[str, object]) -> InventoryRecord:
        self._require_source(source)
        values = _business_only(fields)
        if not any(value.strip() for value in values.values()):
            raise ValidationError("At least one inventory field is required")

        async with self._state.manual_mutation(f"add to {source}"):
            layout = await self._destination_layout(source)
            row = layout.build_row(
                {**values, "last_modified": utc_now_iso(), "modified_by": user, "version": "1"}
            )
            row_number = await self._append(source, row)
            record = self._mapper.to_record(source, row_number, row, layout)
            self._changelog.record(
                user,
                ChangeAction.ADD,
                record.id,
                changes={name: FieldChange("", value) for name, value in values.items() if value},
                metadata={"source": source},
            )
            logger.info("%s added %s", user, record.id)

        await self._announce(UpdateAction.ADD, record.to_dict())
        return record

    async def delete_item(
        self,
        user: str,
        item_id: str,
        match_fields: Optional[Mapping[str, object]] = None,
    ) -> InventoryRecord:
        """Delete the row behind ``item_id``, following it if it drifted."""

        source, row_number = self._parse_item_id(item_id)
        async with self._state.manual_mutation(f"delete of {item_id}"):
            expected = self._match_fields(item_id, match_fields)
            resolved = await self._resolver.resolve(source, row_number, expected, user=user)
            await self._delete_row(resolved)
            record = resolved.record
            self._changelog.record(
                user,
                ChangeAction.DELETE,
                item_id,
                changes={name: FieldChange(value, "") for name, value in record.fields.items() if value},
                metadata={"row_number": resolved.row_number, "strategy": resolved.strategy},
            )
            logger.info("%s deleted %s (sheet row %d)", user, item_id, resolved.row_number)

        await self._announce(
            UpdateAction.DELETE, {"id": item_id, "row_number": resolved.row_number, "item": record.to_dict()}
        )
        return record

    # ------------------------------------------------------------------
    # Bulk workflows
    # ------------------------------------------------------------------
    async def relocate(
        self,
        user: str,
        items: Sequence[MoveRequest],
        destination: str,
        notes: str = "",
    ) -> List[Dict[str, Any]]:
        """Move quantity from each item's row into a new row of ``destination``."""

        self._require_source(destination)
        requests = self._validate_requests(items)
        for request in requests:
            if self._parse_item_id(request.item_id)[0] == destination:
                raise ValidationError(f"{request.item_id} is already in {destination}")

        results: List[Dict[str, Any]] = []
        payload = {"destination": destination, "notes": notes, "items": results}
        try:
            async with self._state.manual_mutation(f"relocation to {destination}"):
                plan = await self._plan(user, requests)
                layout = await self._destination_layout(destination)
                for move in plan:
                    results.append(await self._relocate_one(user, move, destination, layout, notes))
        except StockSyncError:
            await self._announce_partial(UpdateAction.RELOCATE, payload)
            raise

        await self._announce(UpdateAction.RELOCATE, payload)
        return results

    async def bulk_send_out(
        self,
        user: str,
        items: Sequence[MoveRequest],
        recipient: str,
        notes: str = "",
    ) -> List[Dict[str, Any]]:
        """Take quantity out of stock for ``recipient``; empty rows are deleted."""

        if not (recipient or "").strip():
            raise ValidationError("recipient is required")
        requests = self._validate_requests(items)

        results: List[Dict[str, Any]] = []
        payload = {"recipient": recipient, "notes": notes, "items": results}
        try:
            async with self._state.manual_mutation(f"send-out to {recipient}"):
                plan = await self._plan(user, requests)
                for move in plan:
                    await self._adjust_source(user, move)
                    metadata = {
                        "recipient": recipient,
                        "quantity": move.quantity,
                        "source_quantity_before": move.available,
                        "source_quantity_after": move.residual,
                        "notes": notes,
                    }
                    self._changelog.record(
                        user,
                        ChangeAction.SEND_OUT,
                        move.request.item_id,
                        changes={"quantity": FieldChange(str(move.available), str(move.residual))},
                        metadata=metadata,
                    )
                    results.append({"id": move.request.item_id, **metadata})
                logger.info("%s sent out %d item(s) to %s", user, len(results), recipient)
        except StockSyncError:
            await self._announce_partial(UpdateAction.BULK_SEND_OUT, payload)
            raise

        await self._announce(UpdateAction.BULK_SEND_OUT, payload)
        return results

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------
    async def _relocate_one(
        self, user: str, move: _PlannedMove, destination: str, layout: SheetLayout, notes: str
    ) -> Dict[str, Any]:
        record = move.resolved.record
        values = {name: record.value(name) for name in BUSINESS_FIELDS}
        values["quantity"] = str(move.quantity)
        values["warehouse"] = self._labels.get(destination, destination)
        if notes:
            values["notes"] = notes
        row = layout.build_row({**values, "last_modified": utc_now_iso(), "modified_by": user, "version": "1"})
        destination_row = await self._append(destination, row)

        metadata: Dict[str, Any] = {
            "destination": destination,
            "destination_id": f"{destination}_{destination_row}",
            "moved_quantity": move.quantity,
            "source_quantity_before": move.available,
            "source_quantity_after": move.residual,
            "notes": notes,
        }
        try:
            await self._adjust_source(user, move)
        except RemoteUnavailable:
            logger.error(
                "Relocation of %s appended to %s but the source row was not adjusted",
                move.request.item_id,
                metadata["destination_id"],
            )
            self._changelog.record(
                user,
                ChangeAction.RELOCATE,
                move.request.item_id,
                changes={"quantity": FieldChange(str(move.available), str(move.available))},
                metadata={**metadata, "source_quantity_after": move.available, "incomplete": True},
            )
            raise

        self._changelog.record(
            user,
            ChangeAction.RELOCATE,
            move.request.item_id,
            changes={"quantity": FieldChange(str(move.available), str(move.residual))},
            metadata=metadata,
        )
        logger.info(
            "%s relocated %d of %s to %s", user, move.quantity, move.request.item_id, metadata["destination_id"]
        )
        return {"id": move.request.item_id, **metadata}

    async def _plan(self, user: str, requests: Sequence[MoveRequest]) -> List[_PlannedMove]:
        """Resolve and validate every request before anything is written.

        Moves are ordered bottom-up per source so deleting one row never
        shifts a row that is still to be processed.
        """

        plan: List[_PlannedMove] = []
        for request in requests:
            source, row_number = self._parse_item_id(request.item_id)
            expected = self._match_fields(request.item_id, request.match_fields)
            resolved = await self._resolver.resolve(source, row_number, expected, user=user)
            available = resolved.record.quantity
            quantity = available if request.quantity is None else request.quantity
            if quantity <= 0 or quantity > available:
                raise ValidationError(
                    f"Invalid quantity {quantity} for {request.item_id} (available: {available})"
                )
            plan.append(_PlannedMove(request, resolved, quantity))

        seen = set()
        for move in plan:
            key = (move.resolved.source, move.resolved.row_number)
            if key in seen:
                raise ValidationError(f"{move.request.item_id} resolves to a row that is already being moved")
            seen.add(key)
        plan.sort(key=lambda move: (move.resolved.source, -move.resolved.row_number))
        return plan

    async def _adjust_source(self, user: str, move: _PlannedMove) -> None:
        resolved = move.resolved
        if move.residual <= 0:
            await self._delete_row(resolved)
            return
        layout = resolved.layout
        version = parse_quantity(layout.cell(resolved.values, "version")) + 1
        row = layout.build_row(
            {
                "quantity": str(move.residual),
                "last_modified": utc_now_iso(),
                "modified_by": user,
                "version": str(version),
            },
            base=resolved.values,
        )
        number = resolved.row_number
        await self._gateway.write_range(resolved.source, f"A{number}:{layout.last_column}{number}", [row])

    async def _delete_row(self, resolved: ResolvedRow) -> None:
        metadata = await self._gateway.get_metadata(resolved.source)
        await self._gateway.delete_rows(
            resolved.source, int(metadata["sheet_id"]), resolved.row_number - 1, resolved.row_number
        )

    async def _destination_layout(self, source: str) -> SheetLayout:
        values = await self._gateway.read_range(source, "A1:ZZ1")
        if not values or not any(cell.strip() for cell in values[0]):
            headers = self._mapper.schema.default_headers()
            await self._gateway.write_range(source, "A1", [headers])
            logger.info("Wrote default header row to empty source %s", source)
            values = [headers]
        return self._mapper.layout(values)

    async def _append(self, source: str, row: List[str]) -> int:
        row_number = await self._gateway.append_rows(source, [row])
        if row_number is None:
            values = await self._gateway.read_sheet(source)
            row_number = len(values)
        return row_number

    async def _announce(self, action: UpdateAction, data: Any) -> None:
        await self._broadcaster.publish(broadcast.inventory_update(action, data))
        await self._broadcaster.publish(
            broadcast.recent_changes(entries_to_dicts(self._changelog.recent(RECENT_CHANGES_LIMIT)))
        )

    async def _announce_partial(self, action: UpdateAction, payload: Dict[str, Any]) -> None:
        """Announce the moves that were applied before a bulk workflow failed."""

        if not payload["items"]:
            return
        logger.warning("%s stopped after %d applied item(s)", action.value, len(payload["items"]))
        await self._announce(action, {**payload, "incomplete": True})

    def _validate_requests(self, items: Sequence[MoveRequest]) -> List[MoveRequest]:
        if not items:
            raise ValidationError("At least one item is required")
        requests: List[MoveRequest] = []
        for item in items:
            if not isinstance(item, MoveRequest):
                raise ValidationError(f"Unsupported item: {item!r}")
            quantity = item.quantity
            if quantity is not None and (isinstance(quantity, bool) or not isinstance(quantity, int)):
                raise ValidationError(f"Quantity for {item.item_id} must be an integer")
            source, _ = self._parse_item_id(item.item_id)
            self._require_source(source)
            requests.append(item)
        return requests

    def _match_fields(
        self, item_id: str, match_fields: Optional[Mapping[str, object]]
    ) -> Optional[Mapping[str, object]]:
        """Fall back to the identifying fields last seen for ``item_id``."""

        if match_fields or self._state.snapshot is None:
            return match_fields
        record = self._state.snapshot.get(item_id)
        if record is None:
            return match_fields
        return {name: record.value(name) for name in DEFAULT_MATCH_FIELDS if record.value(name)}

    def _require_source(self, source: str) -> None:
        if source not in self._sources:
            raise ValidationError(f"Unknown source: {source!r}")

    @staticmethod
    def _parse_item_id(item_id: str):
        try:
            return split_row_id(item_id)
        except ValueError as exc:
            raise ValidationError(str(exc)) from exc


def _business_only(fields: Mapping[str, object]) -> Dict[str, str]:
    if not isinstance(fields, Mapping):
        raise ValidationError("fields must be a mapping")
    return {
        name: "" if fields.get(name) is None else str(fields.get(name))
        for name in BUSINESS_FIELDS
        if name in fields
    }


__all__ = ["InventoryService"]

"""Typed change feed and in-process publish/subscribe fan-out."""
from __future__ import annotations

import inspect
import logging
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Awaitable, Callable, Dict, List, Mapping, Optional, Sequence, Union

from stocksync.models import utc_now_iso

logger = logging.getLogger(__name__)


class EventKind(str, Enum):
    INVENTORY_UPDATE = "inventory_update"
    RECENT_CHANGES = "recent_changes"
    SYNC_START = "sync_start"
    SYNC_SUCCESS = "sync_success"
    SYNC_ERROR = "sync_error"
    SYNC_STATUS = "sync_status"
    USER_ACTIVITY = "user_activity"


class UpdateAction(str, Enum):
    ADD = "ADD"
    UPDATE = "UPDATE"
    DELETE = "DELETE"
    REFRESH = "REFRESH"
    RELOCATE = "RELOCATE"
    BULK_SEND_OUT = "BULK_SEND_OUT"


@dataclass(frozen=True)
class Event:
    kind: EventKind
    payload: Mapping[str, Any] = field(default_factory=dict)

    @property
    def action(self) -> Optional[str]:
        return self.payload.get("action")

    def to_dict(self) -> Dict[str, Any]:
        return {"type": self.kind.value, **dict(self.payload)}


Subscriber = Callable[[Event], Union[None, Awaitable[None]]]


class Broadcaster:
    """Deliver events to every subscriber in subscription order.

    Subscribers may be plain callables or coroutine functions.  A failing
    subscriber is logged and skipped so it cannot starve the others.
    """

    def __init__(self) -> None:
        self._subscribers: List[Subscriber] = []

    def subscribe(self, callback: Subscriber) -> Callable[[], None]:
        self._subscribers.append(callback)

        def _unsubscribe() -> None:
            self.unsubscribe(callback)

        return _unsubscribe

    def unsubscribe(self, callback: Subscriber) -> None:
        try:
            self._subscribers.remove(callback)
        except ValueError:
            logger.debug("Subscriber %r was not registered", callback)

    @property
    def subscriber_count(self) -> int:
        return len(self._subscribers)

    async def publish(self, event: Event) -> None:
        for callback in list(self._subscribers):
            try:
                result = callback(event)
                if inspect.isawaitable(result):
                    await result
            except Exception:  # pragma: no cover - subscriber callback guard
                logger.exception("Subscriber %r failed handling %s", callback, event.kind.value)


# ----------------------------------------------------------------------
# Event builders
# ----------------------------------------------------------------------
def inventory_update(action: UpdateAction, data: Any) -> Event:
    return Event(
        EventKind.INVENTORY_UPDATE,
        {"action": UpdateAction(action).value, "data": data, "timestamp": utc_now_iso()},
    )


def recent_changes(changes: Sequence[Mapping[str, Any]]) -> Event:
    return Event(EventKind.RECENT_CHANGES, {"changes": [dict(change) for change in changes], "timestamp": utc_now_iso()})


def sync_start() -> Event:
    return Event(EventKind.SYNC_START, {})


def sync_success(changes_count: int) -> Event:
    return Event(EventKind.SYNC_SUCCESS, {"changesCount": changes_count, "timestamp": utc_now_iso()})


def sync_error(error: Union[str, BaseException]) -> Event:
    return Event(EventKind.SYNC_ERROR, {"error": str(error), "timestamp": utc_now_iso()})


def sync_status(status: str) -> Event:
    return Event(EventKind.SYNC_STATUS, {"status": status, "timestamp": utc_now_iso()})


def user_activity(user: str, action: str, row_id: str) -> Event:
    return Event(
        EventKind.USER_ACTIVITY,
        {"user": user, "action": action, "rowId": row_id, "timestamp": utc_now_iso()},
    )


def log_event(event: Event) -> None:
    """Subscriber writing every event to the ``stocksync.events`` logger."""

    events_logger = logging.getLogger("stocksync.events")
    if event.kind is EventKind.SYNC_ERROR:
        events_logger.warning("%s: %s", event.kind.value, event.payload.get("error"))
    elif event.kind is EventKind.INVENTORY_UPDATE:
        events_logger.info("%s %s", event.kind.value, event.action)
    elif event.kind is EventKind.SYNC_SUCCESS:
        events_logger.info("%s changes=%s", event.kind.value, event.payload.get("changesCount"))
    else:
        events_logger.debug("%s %s", event.kind.value, dict(event.payload))


__all__ = [
    "Broadcaster",
    "Event",
    "EventKind",
    "Subscriber",
    "UpdateAction",
    "inventory_update",
    "log_event",
    "recent_changes",
    "sync_error",
    "sync_start",
    "sync_status",
    "sync_success",
    "user_activity",
]

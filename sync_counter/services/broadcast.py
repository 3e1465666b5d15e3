"""In-process fan-out of counter change events to live stream connections.

One ``BroadcastHub`` is owned by the application (``app.state.broadcast_hub``)
and handed to every stream handler and mutation route through a dependency.
All mutation of the connection set happens on the event loop thread, so no
lock is needed; ``publish`` iterates a snapshot so a connection removed
mid-broadcast cannot disturb the loop.
"""

from __future__ import annotations

import asyncio
import itertools
import json
import logging
import time
from enum import Enum
from typing import Any, Dict, List, Optional

logger = logging.getLogger(__name__)

_connection_ids = itertools.count(1)


class SyncEventType(str, Enum):
    INITIAL = "initial"
    COUNTER_CREATED = "counter_created"
    COUNTER_UPDATED = "counter_updated"
    COUNTER_DELETED = "counter_deleted"
    COUNTER_INCREMENTED = "counter_incremented"
    COUNTER_DECREMENTED = "counter_decremented"


def build_event(
    event_type: SyncEventType,
    counter: Optional[Dict[str, Any]] = None,
    counters: Optional[List[Dict[str, Any]]] = None,
) -> Dict[str, Any]:
    """Shape a SyncEvent: ``counters`` only for initial, ``counter`` otherwise."""
    event: Dict[str, Any] = {"type": event_type.value}
    if event_type is SyncEventType.INITIAL:
        event["counters"] = counters or []
    else:
        event["counter"] = counter
    event["timestamp"] = int(time.time() * 1000)
    return event


class ConnectionClosed(Exception):
    """Raised when writing to a connection that has already been closed."""


class StreamConnection:
    """Write side of one live connection: a bounded queue of serialized events.

    ``send`` never blocks. A full buffer means the reader is not keeping up;
    the caller treats that like any other write failure.
    """

    _CLOSED = object()

    def __init__(self, maxsize: int = 256):
        self.id = f"conn-{next(_connection_ids)}"
        self._queue: asyncio.Queue = asyncio.Queue(maxsize=maxsize)
        self._closed = False

    @property
    def closed(self) -> bool:
        return self._closed

    @property
    def pending(self) -> int:
        """Messages written but not yet received."""
        return self._queue.qsize()

    def send(self, message: str) -> None:
        if self._closed:
            raise ConnectionClosed(self.id)
        self._queue.put_nowait(message)

    async def receive(self) -> Optional[str]:
        """Next message in write order, or None once the connection is closed."""
        if self._closed:
            return None
        item = await self._queue.get()
        if item is self._CLOSED:
            return None
        return item

    def close(self) -> None:
        if self._closed:
            return
        self._closed = True
        # drop undelivered messages and wake a pending receive()
        while not self._queue.empty():
            self._queue.get_nowait()
        self._queue.put_nowait(self._CLOSED)

    def __repr__(self) -> str:
        return f"<StreamConnection {self.id} closed={self._closed}>"


class BroadcastHub:
    """Registry of live connections plus fan-out publish."""

    def __init__(self):
        # dict keeps registration order and makes re-registration harmless
        self._connections: Dict[StreamConnection, None] = {}

    @property
    def subscriber_count(self) -> int:
        return len(self._connections)

    @property
    def connections(self) -> List[StreamConnection]:
        return list(self._connections)

    def subscribe(self, connection: StreamConnection) -> None:
        self._connections[connection] = None
        logger.info("Stream %s subscribed (%s live)", connection.id, len(self._connections))

    def unsubscribe(self, connection: StreamConnection) -> None:
        """Safe to call on a connection that is not (or no longer) registered."""
        if self._connections.pop(connection, False) is not False:
            logger.info("Stream %s unsubscribed (%s live)", connection.id, len(self._connections))

    def publish(self, event: Dict[str, Any]) -> int:
        """Write ``event`` to every registered connection.

        A failing connection is logged, closed and dropped; delivery to the
        rest continues. Returns the number of successful deliveries.
        """
        message = json.dumps(event)
        delivered = 0
        for connection in list(self._connections):
            try:
                connection.send(message)
            except Exception as exc:
                logger.warning(
                    "Broadcast of %s to %s failed: %r", event.get("type"), connection.id, exc,
                )
                self.unsubscribe(connection)
                connection.close()
                continue
            delivered += 1
        return delivered

    def close_all(self) -> None:
        """Close every connection (application shutdown)."""
        for connection in list(self._connections):
            self.unsubscribe(connection)
            connection.close()

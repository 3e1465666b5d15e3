"""Per-connection live update stream: CONNECTING -> OPEN -> CLOSED."""

from __future__ import annotations

import asyncio
import json
import logging
from enum import Enum
from typing import Any, AsyncIterator, Callable, Dict, List, Optional

from fastapi.concurrency import run_in_threadpool

from sync_counter.services.broadcast import (
    BroadcastHub,
    StreamConnection,
    SyncEventType,
    build_event,
)

logger = logging.getLogger(__name__)


class StreamState(str, Enum):
    CONNECTING = "connecting"
    OPEN = "open"
    CLOSED = "closed"


class LiveUpdateStream:
    """Registers one connection with the hub and relays what the hub publishes.

    ``snapshot`` is called at open time, in the threadpool, to build the
    ``initial`` event; it must read the store fresh, not from a cache.
    """

    def __init__(
        self,
        hub: BroadcastHub,
        snapshot: Callable[[], List[Dict[str, Any]]],
        queue_size: int = 256,
    ):
        self.hub = hub
        self.snapshot = snapshot
        self.connection = StreamConnection(maxsize=queue_size)
        self.state = StreamState.CONNECTING
        self._initial: Optional[str] = None

    async def open(self) -> None:
        if self.state is not StreamState.CONNECTING:
            return
        # Subscribe before reading the store so nothing published during the
        # read is missed. Those events wait in the buffer and go out after
        # ``initial``; they carry whole counters, so a copy the snapshot
        # already reflects is harmless.
        self.hub.subscribe(self.connection)
        self.state = StreamState.OPEN
        try:
            counters = await run_in_threadpool(self.snapshot)
            self._initial = json.dumps(build_event(SyncEventType.INITIAL, counters=counters))
        except Exception:
            logger.exception("Could not read initial snapshot on %s", self.connection.id)
            self.close()
            return
        logger.info("Stream %s open with %s counters", self.connection.id, len(counters))

    def close(self) -> None:
        """Idempotent: a second close signal is a no-op."""
        if self.state is StreamState.CLOSED:
            return
        self.state = StreamState.CLOSED
        self.hub.unsubscribe(self.connection)
        self.connection.close()
        logger.info("Stream %s closed", self.connection.id)

    async def messages(self) -> AsyncIterator[str]:
        """Yield serialized events verbatim until the stream closes."""
        try:
            await self.open()
            if self._initial is not None and self.state is StreamState.OPEN:
                initial, self._initial = self._initial, None
                yield initial
            while self.state is StreamState.OPEN:
                message = await self.connection.receive()
                if message is None:
                    break
                yield message
        except asyncio.CancelledError:
            logger.info("Stream %s disconnected by client", self.connection.id)
            raise
        finally:
            self.close()

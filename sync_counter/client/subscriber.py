"""Client side of the live update stream."""

from __future__ import annotations

import asyncio
import json
import logging
from dataclasses import dataclass
from typing import Any, AsyncIterator, Callable, Dict, List, Optional

import httpx

from sync_counter.client.connectivity import ConnectivityMonitor

logger = logging.getLogger(__name__)

CounterCallback = Callable[[Dict[str, Any]], None]
SnapshotCallback = Callable[[List[Dict[str, Any]]], None]


@dataclass
class StreamCallbacks:
    on_initial: Optional[SnapshotCallback] = None
    on_created: Optional[CounterCallback] = None
    on_updated: Optional[CounterCallback] = None
    on_deleted: Optional[CounterCallback] = None
    on_incremented: Optional[CounterCallback] = None
    on_decremented: Optional[CounterCallback] = None


# event type -> (callback attribute, payload field)
DISPATCH = {
    "initial": ("on_initial", "counters"),
    "counter_created": ("on_created", "counter"),
    "counter_updated": ("on_updated", "counter"),
    "counter_deleted": ("on_deleted", "counter"),
    "counter_incremented": ("on_incremented", "counter"),
    "counter_decremented": ("on_decremented", "counter"),
}


class CallbackCell:
    """Mutable holder for the current callback set, read at dispatch time.

    Swapping callbacks never touches the open connection.
    """

    def __init__(self, callbacks: Optional[StreamCallbacks] = None):
        self.current = callbacks or StreamCallbacks()

    def set(self, callbacks: StreamCallbacks) -> None:
        self.current = callbacks


async def iter_sse_data(lines: AsyncIterator[str]) -> AsyncIterator[str]:
    """Yield the data of each event-stream message; comments and pings are skipped."""
    data: List[str] = []
    event_name = None
    async for line in lines:
        if line == "":
            if data and event_name in (None, "message"):
                yield "\n".join(data)
            data = []
            event_name = None
            continue
        if line.startswith(":"):
            continue
        name, _, value = line.partition(":")
        if value.startswith(" "):
            value = value[1:]
        if name == "data":
            data.append(value)
        elif name == "event":
            event_name = value
    if data and event_name in (None, "message"):
        yield "\n".join(data)


class StreamSubscriber:
    """Holds at most one live connection and turns its messages into callbacks.

    No automatic retry: after a transport error the handle is discarded and
    the owner calls ``connect`` again (e.g. on the next online transition).
    """

    def __init__(
        self,
        http: httpx.AsyncClient,
        path: str,
        monitor: ConnectivityMonitor,
        callbacks: Optional[StreamCallbacks] = None,
    ):
        self.http = http
        self.path = path
        self.monitor = monitor
        self.callbacks = CallbackCell(callbacks)
        self._task: Optional[asyncio.Task] = None
        self._active = False

    @property
    def is_connected(self) -> bool:
        return self._task is not None and not self._task.done()

    def set_callbacks(self, callbacks: StreamCallbacks) -> None:
        self.callbacks.set(callbacks)

    def connect(self) -> bool:
        """Open the stream unless one is already open or we are offline."""
        if self._task is not None:
            return False
        if not self.monitor.is_online:
            logger.debug("Offline, not opening live stream")
            return False
        self._active = True
        self._task = asyncio.get_running_loop().create_task(self._run())
        return True

    async def close(self) -> None:
        """Tear down the connection; no callback fires after this returns."""
        self._active = False
        task, self._task = self._task, None
        if task is not None and not task.done():
            task.cancel()
            try:
                await task
            except asyncio.CancelledError:
                pass
        logger.info("Live stream closed")

    async def _run(self) -> None:
        task = asyncio.current_task()
        try:
            async with self.http.stream(
                "GET", self.path, headers={"Accept": "text/event-stream"}, timeout=None,
            ) as response:
                response.raise_for_status()
                logger.info("Live stream connected")
                async for data in iter_sse_data(response.aiter_lines()):
                    if not self._active:
                        break
                    self.handle_message(data)
        except httpx.HTTPError as e:
            logger.warning("Live stream error: %r", e)
        finally:
            if self._task is task:
                self._task = None

    def handle_message(self, raw: str) -> None:
        if not self._active:
            return
        try:
            event = json.loads(raw)
        except ValueError:
            event = None
        event_type = event.get("type") if isinstance(event, dict) else None
        if not isinstance(event_type, str):
            logger.warning("Dropping unparseable stream message: %.200s", raw)
            return

        route = DISPATCH.get(event_type)
        if route is None:
            logger.debug("Ignoring stream event of type %s", event_type)
            return
        attr, field_name = route
        callback = getattr(self.callbacks.current, attr)
        payload = event.get(field_name)
        if callback is None or payload is None:
            return
        try:
            callback(payload)
        except Exception:
            logger.exception("Stream callback %s failed", attr)

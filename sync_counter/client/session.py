"""Client runtime that ties the pieces together.

    state  <- optimistic edits, stream events, resyncs
    api    <- direct mutations while online
    queue  <- mutations that could not be sent
    stream <- opened on start and after every online transition

A mutation is applied to ``state`` first, then sent. When the client is
offline, or earlier changes are still queued, it goes straight to the
queue so the server sees changes in the order they were made.
"""

from __future__ import annotations

import logging
from typing import Any, Awaitable, Callable, Dict, List, Optional

import httpx

from sync_counter.client.api import CounterStoreClient
from sync_counter.client.connectivity import ConnectivityMonitor
from sync_counter.client.exceptions import (
    CounterNotFoundError,
    InvalidInputError,
    SyncCounterError,
    TransientNetworkError,
)
from sync_counter.client.queue import OfflineActionQueue, PendingChange, ReplayResult
from sync_counter.client.state import CounterState
from sync_counter.client.subscriber import StreamCallbacks, StreamSubscriber
from sync_counter.core.config import settings
from sync_counter.services.counter_store import normalize_user_name, today_key

logger = logging.getLogger(__name__)


class SyncCounterClient:
    def __init__(
        self,
        base_url: str | None = None,
        username: str | None = None,
        queue_url: str | None = None,
        queue_session_factory=None,
        transport: httpx.AsyncBaseTransport | None = None,
        online: bool = True,
    ):
        self.username = normalize_user_name(username or settings.CLIENT_USERNAME)
        self.api = CounterStoreClient(base_url, transport=transport)
        self.state = CounterState()
        self.monitor = ConnectivityMonitor(online=online, probe=self.api.health)
        self.queue = OfflineActionQueue(
            self.api,
            url=queue_url,
            session_factory=queue_session_factory,
            on_dropped=self._on_dropped,
            on_synced=self.resync,
            on_failed=self._on_replay_failed,
        )
        self.subscriber = StreamSubscriber(
            self.api.http, self.api.url("/sync"), self.monitor, self._stream_callbacks(),
        )
        self.dropped: List[PendingChange] = []
        self.monitor.on_online(self._handle_online)

    # -----------------------------------------------------------------------
    # Lifecycle
    # -----------------------------------------------------------------------

    async def start(self, probe: bool = True) -> None:
        if self.monitor.is_online:
            await self._handle_online()
        if probe:
            self.monitor.start()

    async def stop(self) -> None:
        await self.subscriber.close()
        await self.monitor.stop()
        await self.api.close()

    async def __aenter__(self) -> "SyncCounterClient":
        await self.start()
        return self

    async def __aexit__(self, *exc) -> None:
        await self.stop()

    @property
    def pending_count(self) -> int:
        return self.queue.count_pending()

    def counters(self) -> List[Dict[str, Any]]:
        return self.state.all()

    async def _handle_online(self) -> None:
        if self.queue.count_pending() > 0:
            await self.queue.replay()
        self.subscriber.connect()

    async def replay(self) -> ReplayResult:
        """Manual replay trigger."""
        return await self.queue.replay()

    async def resync(self) -> None:
        """Reload the server's canonical view into local state."""
        try:
            counters = await self.api.list()
        except SyncCounterError as e:
            logger.warning("Resync failed: %s", e)
            return
        self.state.apply_initial(counters, has_pending=self.queue.count_pending() > 0)
        logger.info("Resynced %s counters", len(counters))

    def _on_dropped(self, change: PendingChange, error: Exception) -> None:
        self.dropped.append(change)
        if isinstance(error, CounterNotFoundError):
            self.state.remove(change.counter_id)

    def _on_replay_failed(self, change: PendingChange, error: Exception) -> None:
        # go offline so the next successful probe runs another replay
        self.monitor.report_failure()

    # -----------------------------------------------------------------------
    # Stream wiring
    # -----------------------------------------------------------------------

    def _stream_callbacks(self) -> StreamCallbacks:
        return StreamCallbacks(
            on_initial=self._on_initial,
            on_created=self.state.upsert,
            on_updated=self.state.upsert,
            on_deleted=lambda counter: self.state.remove(counter["id"]),
            on_incremented=self.state.upsert,
            on_decremented=self.state.upsert,
        )

    def _on_initial(self, counters: List[Dict[str, Any]]) -> None:
        self.state.apply_initial(counters, has_pending=self.queue.count_pending() > 0)

    # -----------------------------------------------------------------------
    # Mutations
    # -----------------------------------------------------------------------

    async def increment(self, counter_id: str, day: str | None = None) -> Dict[str, Any]:
        return await self.adjust(counter_id, 1, day)

    async def decrement(self, counter_id: str, day: str | None = None) -> Dict[str, Any]:
        return await self.adjust(counter_id, -1, day)

    async def adjust(self, counter_id: str, delta: int, day: str | None = None) -> Dict[str, Any]:
        # pin the day now so a late replay still lands on the day it happened
        day = day or today_key()
        counter = self.state.apply_local_delta(counter_id, delta, self.username, day)
        if counter is None:
            raise CounterNotFoundError(f"Counter {counter_id} not found", 404)

        async def send() -> Dict[str, Any]:
            if delta == 1:
                return await self.api.increment(counter_id, self.username, day)
            if delta == -1:
                return await self.api.decrement(counter_id, self.username, day)
            return await self.api.adjust(counter_id, delta, self.username, day)

        return await self._submit(
            counter, send, lambda: self.queue.enqueue_delta(counter_id, delta, self.username, day),
        )

    async def create(self, name: str, value: int = 0, daily_goal: int = 0) -> Dict[str, Any]:
        if not name or not name.strip():
            raise InvalidInputError("Counter name is required", 400)
        counter = self.state.add_local({"name": name, "value": value, "dailyGoal": daily_goal})
        fields = {
            "id": counter["id"],
            "name": counter["name"],
            "value": counter["value"],
            "dailyGoal": counter["dailyGoal"],
        }
        return await self._submit(
            counter, lambda: self.api.create(fields), lambda: self.queue.enqueue_create(fields),
        )

    async def update(
        self, counter_id: str, name: str | None = None, value: int | None = None,
        daily_goal: int | None = None,
    ) -> Dict[str, Any]:
        if name is not None and not name.strip():
            raise InvalidInputError("Counter name is required", 400)
        counter = self.state.update_local(counter_id, {"name": name, "value": value, "dailyGoal": daily_goal})
        if counter is None:
            raise CounterNotFoundError(f"Counter {counter_id} not found", 404)
        fields = {"name": counter["name"], "value": counter["value"], "dailyGoal": counter["dailyGoal"]}
        return await self._submit(
            counter,
            lambda: self.api.update(counter_id, fields),
            lambda: self.queue.enqueue_update(counter_id, fields),
        )

    async def reset(self, counter_id: str) -> Dict[str, Any]:
        return await self.update(counter_id, value=0)

    async def delete(self, counter_id: str) -> Optional[Dict[str, Any]]:
        counter = self.state.remove(counter_id)
        if counter is None:
            raise CounterNotFoundError(f"Counter {counter_id} not found", 404)

        if self._must_queue():
            self.queue.enqueue_delete(counter_id)
            return counter
        try:
            deleted = await self.api.delete(counter_id)
        except TransientNetworkError as e:
            logger.info("Delete of %s queued: %s", counter_id, e)
            self.queue.enqueue_delete(counter_id)
            self.monitor.report_failure()
            return counter
        self.monitor.report_success()
        return deleted

    def _must_queue(self) -> bool:
        return self.monitor.is_offline or self.queue.count_pending() > 0

    async def _submit(
        self,
        counter: Dict[str, Any],
        send: Callable[[], Awaitable[Dict[str, Any]]],
        enqueue: Callable[[], Optional[PendingChange]],
    ) -> Dict[str, Any]:
        """Send a mutation, or queue it. Returns the best known copy of the counter."""
        if self._must_queue():
            enqueue()
            return counter
        try:
            result = await send()
        except TransientNetworkError as e:
            logger.info("Mutation on %s queued: %s", counter["id"], e)
            enqueue()
            self.monitor.report_failure()
            return counter
        self.monitor.report_success()
        return self.state.upsert(result)

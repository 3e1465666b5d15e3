"""Online/offline tracking for the client runtime."""

from __future__ import annotations

import asyncio
import logging
from typing import Awaitable, Callable, List, Optional

from sync_counter.core.config import settings

logger = logging.getLogger(__name__)

OnlineHandler = Callable[[], Awaitable[None]]
StateListener = Callable[[bool], None]
Probe = Callable[[], Awaitable[bool]]


class ConnectivityMonitor:
    """Current connectivity, readable synchronously.

    Inputs are transport signals (``set_online`` / the probe loop) and
    feedback from mutation attempts (``report_success`` / ``report_failure``).
    Each offline -> online transition runs the online handlers once; while a
    previous run is still in flight further transitions do not start another.
    """

    def __init__(
        self,
        online: bool = True,
        probe: Optional[Probe] = None,
        probe_interval: float | None = None,
    ):
        self._online = online
        self._probe = probe
        self.probe_interval = probe_interval or settings.CLIENT_PROBE_INTERVAL
        self._online_handlers: List[OnlineHandler] = []
        self._listeners: List[StateListener] = []
        self._online_task: Optional[asyncio.Task] = None
        self._probe_task: Optional[asyncio.Task] = None

    @property
    def is_online(self) -> bool:
        return self._online

    @property
    def is_offline(self) -> bool:
        return not self._online

    def on_online(self, handler: OnlineHandler) -> None:
        self._online_handlers.append(handler)

    def add_listener(self, listener: StateListener) -> None:
        self._listeners.append(listener)

    def set_online(self, online: bool) -> None:
        if online == self._online:
            return
        self._online = online
        logger.info("Connectivity changed: %s", "online" if online else "offline")
        for listener in list(self._listeners):
            try:
                listener(online)
            except Exception:
                logger.exception("Connectivity listener failed")
        if online:
            self._trigger_online()

    def report_success(self) -> None:
        self.set_online(True)

    def report_failure(self) -> None:
        self.set_online(False)

    def _trigger_online(self) -> None:
        if self._online_task is not None and not self._online_task.done():
            logger.debug("Online handling already in flight, not starting another")
            return
        self._online_task = asyncio.get_running_loop().create_task(self._run_online_handlers())

    async def _run_online_handlers(self) -> None:
        for handler in list(self._online_handlers):
            try:
                await handler()
            except Exception:
                logger.exception("Online handler failed")

    async def wait_idle(self) -> None:
        """Wait for any in-flight online handling to finish."""
        if self._online_task is not None:
            await asyncio.shield(self._online_task)

    # -----------------------------------------------------------------------
    # Probe loop
    # -----------------------------------------------------------------------

    def start(self) -> None:
        if self._probe is None or (self._probe_task is not None and not self._probe_task.done()):
            return
        self._probe_task = asyncio.get_running_loop().create_task(self._probe_loop())

    async def stop(self) -> None:
        for task in (self._probe_task, self._online_task):
            if task is not None and not task.done():
                task.cancel()
                try:
                    await task
                except asyncio.CancelledError:
                    pass
        self._probe_task = None

    async def check(self) -> bool:
        """Run the probe once and apply the result."""
        if self._probe is None:
            return self._online
        try:
            reachable = await self._probe()
        except Exception:
            logger.exception("Connectivity probe failed")
            reachable = False
        self.set_online(reachable)
        return reachable

    async def _probe_loop(self) -> None:
        while True:
            await self.check()
            await asyncio.sleep(self.probe_interval)

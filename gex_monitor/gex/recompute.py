"""
Recompute Coordinator

Serializes GEX recompute requests from independent triggers (timer, quote
updates) into single-flight execution: one run in flight, at most one queued.
"""

import asyncio
from typing import Awaitable, Callable, Dict, Optional

from gex_monitor.utils import get_logger

logger = get_logger(__name__)


class RecomputeCoordinator:
    """Single-flight runner with at-most-one-pending coalescing"""

    def __init__(self, recompute: Callable[[], Awaitable[None]], name: str = 'gex'):
        """
        Args:
            recompute: Coroutine function performing one full recompute
            name: Label used in log messages
        """
        self._recompute = recompute
        self.name = name

        self._task: Optional[asyncio.Task] = None
        self._pending = False
        self._closed = False
        self._loop: Optional[asyncio.AbstractEventLoop] = None

        self.stats: Dict[str, int] = {
            'requested': 0,
            'runs': 0,
            'coalesced': 0,
            'dropped': 0,
            'failures': 0
        }

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    @property
    def pending(self) -> bool:
        return self._pending

    def bind_loop(self, loop: Optional[asyncio.AbstractEventLoop] = None):
        """Remember the event loop used by request_threadsafe"""
        self._loop = loop or asyncio.get_running_loop()

    def request(self, source: str = 'manual') -> bool:
        """
        Ask for a recompute. Must be called from the event loop thread.

        Returns:
            True if a run was started or queued, False if the request was dropped
            because a follow-up run is already pending (or the coordinator is closed)
        """
        if self._closed:
            logger.debug(f"[{self.name}] Closed, ignoring request from {source}")
            return False

        self.stats['requested'] += 1

        if not self.running:
            self._loop = asyncio.get_running_loop()
            self._task = self._loop.create_task(self._drain())
            logger.debug(f"[{self.name}] Recompute started by {source}")
            return True

        if self._pending:
            self.stats['dropped'] += 1
            logger.debug(f"[{self.name}] Recompute already queued, dropping request from {source}")
            return False

        self._pending = True
        self.stats['coalesced'] += 1
        logger.debug(f"[{self.name}] Run in flight, queued follow-up for {source}")
        return True

    def request_threadsafe(self, source: str = 'quote'):
        """Ask for a recompute from any thread"""
        if self._loop is None:
            raise RuntimeError(f"[{self.name}] Coordinator is not bound to an event loop")
        if self._loop.is_closed():
            logger.debug(f"[{self.name}] Event loop closed, ignoring request from {source}")
            return
        self._loop.call_soon_threadsafe(self.request, source)

    async def _drain(self):
        """Run until no follow-up is pending"""
        while True:
            self._pending = False
            self.stats['runs'] += 1

            try:
                await self._recompute()
            except Exception as e:
                self.stats['failures'] += 1
                logger.error(f"[{self.name}] Recompute failed: {e}", exc_info=True)

            if not self._pending or self._closed:
                break

    async def wait_idle(self):
        """Wait until no run is in flight or queued"""
        while self.running:
            await asyncio.wait({self._task})

    async def close(self):
        """Stop admitting requests and let the in-flight run finish"""
        self._closed = True
        self._pending = False
        await self.wait_idle()
        logger.debug(f"[{self.name}] Coordinator closed - stats: {self.stats}")

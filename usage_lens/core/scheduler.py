"""
Refresh scheduling.

Owns the periodic refresh and the debounced refresh that follows file
changes. Bursts of change notifications collapse into a single refresh once
the files have been quiet for the debounce window.
"""

import asyncio
import logging
from typing import Any, Awaitable, Callable, Optional

logger = logging.getLogger(__name__)

DEFAULT_INTERVAL = 30.0
DEFAULT_DEBOUNCE = 1.5


class RefreshScheduler:
    """Runs ``refresh`` on a fixed interval and after quiet periods.

    A refresh requested while another is running is coalesced into one
    follow-up run. An exception inside a refresh is logged and never stops
    the scheduler.

    Args:
        refresh: Coroutine function performing the refresh
        interval: Seconds between periodic refreshes
        debounce: Quiet period after the last ``notify`` before refreshing
        on_tick: Called with each refresh's return value
    """

    def __init__(
        self,
        refresh: Callable[[], Awaitable[Any]],
        interval: float = DEFAULT_INTERVAL,
        debounce: float = DEFAULT_DEBOUNCE,
        on_tick: Optional[Callable[[Any], None]] = None,
    ):
        if interval <= 0:
            raise ValueError("interval must be > 0")
        if debounce < 0:
            raise ValueError("debounce must not be negative")
        self._refresh = refresh
        self.interval = interval
        self.debounce = debounce
        self._on_tick = on_tick
        self._ticker: Optional[asyncio.Task] = None
        self._debouncer: Optional[asyncio.Task] = None
        self._busy = False
        self._pending = False
        self.runs = 0

    @property
    def running(self) -> bool:
        return self._ticker is not None and not self._ticker.done()

    def start(self) -> None:
        """Start the periodic ticker. Must be called inside a running loop."""
        if self.running:
            return
        self._ticker = asyncio.ensure_future(self._tick_forever())

    async def stop(self) -> None:
        """Cancel the ticker and any pending debounced refresh."""
        tasks = [t for t in (self._ticker, self._debouncer) if t is not None and not t.done()]
        for task in tasks:
            task.cancel()
        for task in tasks:
            try:
                await task
            except asyncio.CancelledError:
                pass
        self._ticker = None
        self._debouncer = None

    def notify(self) -> None:
        """Signal a change; restarts the quiet window."""
        if self._debouncer is not None and not self._debouncer.done():
            self._debouncer.cancel()
        self._debouncer = asyncio.ensure_future(self._debounced())

    async def _debounced(self) -> None:
        await asyncio.sleep(self.debounce)
        # A later notify cancels the wait, never a refresh already started
        await asyncio.shield(self.run_once())

    async def _tick_forever(self) -> None:
        while True:
            await asyncio.sleep(self.interval)
            await self.run_once()

    async def run_once(self) -> None:
        """Refresh now, or queue one follow-up if a refresh is running."""
        if self._busy:
            logger.debug("Refresh already running; coalesced")
            self._pending = True
            return
        self._busy = True
        try:
            while True:
                self._pending = False
                try:
                    result = await self._refresh()
                except Exception:
                    logger.exception("Scheduled refresh failed")
                else:
                    self.runs += 1
                    if self._on_tick is not None:
                        self._on_tick(result)
                if not self._pending:
                    break
        finally:
            self._busy = False

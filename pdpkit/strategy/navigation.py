"""
Navigation debouncing.

Pages often fire several navigation events in quick succession (redirects,
history pushes, SPA route changes). Events for a tab are coalesced: the
callback runs once, with the last URL, after the tab has been quiet for
`debounce_ms`.
"""

import asyncio
from collections.abc import Awaitable, Callable

from pdpkit.utils.config import get_settings
from pdpkit.utils.logging import get_logger

logger = get_logger(__name__)

NavigationCallback = Callable[[int, str], Awaitable[None]]


class NavigationDebouncer:
    """Per-tab trailing-edge debounce of navigation events."""

    def __init__(self, callback: NavigationCallback, debounce_ms: int | None = None):
        self._callback = callback
        ms = get_settings().navigation.debounce_ms if debounce_ms is None else debounce_ms
        self.delay = max(0, ms) / 1000
        self._pending: dict[int, asyncio.Task[None]] = {}
        self._latest: dict[int, str] = {}

    def notify(self, tab_id: int, url: str) -> None:
        """Record a navigation; restarts the quiet period for the tab."""
        self._latest[tab_id] = url
        previous = self._pending.get(tab_id)
        if previous is not None and not previous.done():
            previous.cancel()
            logger.debug("Navigation coalesced", tab_id=tab_id, url=url)
        self._pending[tab_id] = asyncio.get_running_loop().create_task(self._fire(tab_id))

    async def _fire(self, tab_id: int) -> None:
        await asyncio.sleep(self.delay)
        url = self._latest.pop(tab_id, None)
        self._pending.pop(tab_id, None)
        if url is None:
            return
        try:
            await self._callback(tab_id, url)
        except Exception as e:
            logger.error("Navigation handler failed", tab_id=tab_id, url=url, error=str(e))

    def cancel(self, tab_id: int) -> None:
        """Drop a pending navigation (tab closed)."""
        task = self._pending.pop(tab_id, None)
        self._latest.pop(tab_id, None)
        if task is not None and not task.done():
            task.cancel()

    def pending(self, tab_id: int) -> bool:
        task = self._pending.get(tab_id)
        return task is not None and not task.done()

    async def drain(self) -> None:
        """Wait for every pending navigation to fire."""
        tasks = [t for t in self._pending.values() if not t.done()]
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)

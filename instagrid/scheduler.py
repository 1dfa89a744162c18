"""Trailing-edge debounce timers keyed per slot.

Repeated :meth:`DebounceScheduler.schedule` calls for the same key within
the delay collapse into one callback fired ``delay`` after the last call.
Keys are independent of each other.
"""

from __future__ import annotations

import asyncio
import logging
from typing import Callable, Dict, Optional

from . import config

logger = logging.getLogger(__name__)


class DebounceScheduler:
    """Coalesce bursts of calls per key into a single trailing callback."""

    def __init__(
        self,
        delay_ms: int = config.CROP_DEBOUNCE_MS,
        loop: Optional[asyncio.AbstractEventLoop] = None,
    ) -> None:
        if delay_ms < 0:
            raise ValueError("delay_ms must not be negative")
        self.delay_ms = delay_ms
        self._loop = loop
        self._handles: Dict[str, asyncio.TimerHandle] = {}

    def schedule(self, key: str, callback: Callable[[], None]) -> None:
        """(Re)start the timer for ``key``; ``callback`` runs when it fires."""
        self.cancel(key)
        loop = self._loop or asyncio.get_running_loop()

        def _fire() -> None:
            self._handles.pop(key, None)
            try:
                callback()
            except Exception:
                logger.exception("Debounced callback for %s failed", key)

        self._handles[key] = loop.call_later(self.delay_ms / 1000, _fire)

    def cancel(self, key: str) -> bool:
        """Drop the pending timer for ``key``.  Returns whether one existed."""
        handle = self._handles.pop(key, None)
        if handle is None:
            return False
        handle.cancel()
        return True

    def cancel_all(self) -> None:
        for handle in self._handles.values():
            handle.cancel()
        self._handles.clear()

    def is_pending(self, key: str) -> bool:
        return key in self._handles

    def __len__(self) -> int:
        return len(self._handles)


__all__ = ["DebounceScheduler"]

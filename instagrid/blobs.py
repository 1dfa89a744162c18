"""Thread-safe registry of temporary ``blob:`` handles for source bytes.

Each loaded slot registers its original file bytes and receives an opaque
handle, much like an object URL.  Handles must be revoked when the slot is
removed or the store is torn down; :meth:`BlobRegistry.active_count` lets
tests assert nothing is left dangling.

The module exposes factory and context-manager helpers so callers can swap
the registry in tests without relying on import order.
"""

from __future__ import annotations

import logging
import uuid
from collections import OrderedDict
from contextlib import contextmanager
from threading import RLock
from typing import Callable, Iterator, Optional, Tuple

logger = logging.getLogger(__name__)

BLOB_SCHEME = "blob:instagrid/"


class BlobRegistry:
    """Map opaque handles to ``(media_type, bytes)`` until revoked."""

    def __init__(self) -> None:
        self._blobs: "OrderedDict[str, Tuple[str, bytes]]" = OrderedDict()
        self._lock = RLock()

    def create_url(self, data: bytes, media_type: str = "application/octet-stream") -> str:
        """Register ``data`` and return its handle."""
        url = f"{BLOB_SCHEME}{uuid.uuid4().hex}"
        with self._lock:
            self._blobs[url] = (media_type, data)
        return url

    def revoke(self, url: Optional[str]) -> bool:
        """Release ``url``.  Returns ``False`` if it was not registered."""
        if not url:
            return False
        with self._lock:
            released = self._blobs.pop(url, None) is not None
        if not released:
            logger.debug("Ignoring revoke of unknown blob handle %s", url)
        return released

    def active_count(self) -> int:
        with self._lock:
            return len(self._blobs)

    def clear(self) -> None:
        """Release every handle."""
        with self._lock:
            self._blobs.clear()


_registry_factory: Callable[[], BlobRegistry] = BlobRegistry
_registry_instance: Optional[BlobRegistry] = None
_registry_lock = RLock()


def configure_registry(factory: Callable[[], BlobRegistry], *, reset: bool = True) -> None:
    """Configure the factory used to lazily supply the shared registry."""

    if not callable(factory):
        raise TypeError("factory must be callable")

    global _registry_factory, _registry_instance
    with _registry_lock:
        _registry_factory = factory
        if reset:
            _registry_instance = None


def get_registry() -> BlobRegistry:
    """Return the lazily constructed shared registry."""

    global _registry_instance
    with _registry_lock:
        if _registry_instance is None:
            _registry_instance = _registry_factory()
        return _registry_instance


@contextmanager
def override_registry(registry: BlobRegistry) -> Iterator[BlobRegistry]:
    """Temporarily replace the shared registry within a ``with`` block."""

    global _registry_factory, _registry_instance
    with _registry_lock:
        previous_factory = _registry_factory
        previous_instance = _registry_instance
        _registry_factory = lambda: registry  # noqa: E731
        _registry_instance = registry
    try:
        yield registry
    finally:
        with _registry_lock:
            _registry_factory = previous_factory
            _registry_instance = previous_instance


__all__ = [
    "BLOB_SCHEME",
    "BlobRegistry",
    "configure_registry",
    "get_registry",
    "override_registry",
]

import logging
import threading
from typing import Any, Callable, Dict, List, Optional

logger = logging.getLogger(__name__)

Callback = Callable[[Any], None]


class SubscriptionRegistry:
    """Synchronous callback registry keyed by event name."""

    def __init__(self) -> None:
        self._callbacks: Dict[str, List[Callback]] = {}
        self._lock = threading.Lock()

    def register(self, name: str, callback: Callback) -> None:
        if not name:
            raise ValueError("Event name must be a non-empty string.")
        if not callable(callback):
            raise ValueError("callback must be callable.")
        with self._lock:
            self._callbacks.setdefault(name, []).append(callback)

    def unregister(self, name: str, callback: Optional[Callback] = None) -> None:
        """Remove one callback, or every callback for the name when none is given."""
        with self._lock:
            if callback is None:
                self._callbacks.pop(name, None)
                return
            callbacks = self._callbacks.get(name, [])
            if callback in callbacks:
                callbacks.remove(callback)
            if not callbacks:
                self._callbacks.pop(name, None)

    def has_listeners(self, name: str) -> bool:
        with self._lock:
            return bool(self._callbacks.get(name))

    def dispatch(self, name: str, payload: Any) -> int:
        """Run every callback for the name; a failing callback is logged and skipped."""
        with self._lock:
            callbacks = list(self._callbacks.get(name, []))
        for callback in callbacks:
            try:
                callback(payload)
            except Exception:
                logger.exception(f"Listener {callback!r} for '{name}' failed.")
        if callbacks:
            logger.debug(f"Dispatched '{name}' to {len(callbacks)} listener(s).")
        return len(callbacks)

"""
Lifecycle event sink.

A small listener registry the engine emits process and task events to.
Listener failures are logged and never reach the emitting process.
"""

import asyncio
import logging
import threading
from typing import Any, Callable, Dict, List

log = logging.getLogger(__name__)

WILDCARD = "*"


class EventEmitter:
    """Dispatches named events to registered listeners."""

    def __init__(self):
        self._listeners: Dict[str, List[Callable]] = {}
        self._lock = threading.RLock()

    def on(self, event_name: str, listener: Callable):
        """Register a listener; ``"*"`` receives every event as ``(name, payload)``."""
        with self._lock:
            self._listeners.setdefault(event_name, []).append(listener)
        log.debug(f"Registered listener for event: {event_name}")

    def off(self, event_name: str, listener: Callable) -> bool:
        with self._lock:
            listeners = self._listeners.get(event_name, [])
            if listener in listeners:
                listeners.remove(listener)
                return True
            return False

    def listeners(self, event_name: str) -> List[Callable]:
        with self._lock:
            return list(self._listeners.get(event_name, []))

    def emit(self, event_name: str, payload: Dict[str, Any]):
        """
        Call every listener of ``event_name`` synchronously.

        Coroutine listeners are scheduled on the running loop when there is
        one and dropped with a warning otherwise.
        """
        for listener, args in self._targets(event_name, payload):
            try:
                result = listener(*args)
                if asyncio.iscoroutine(result):
                    self._schedule(result, event_name)
            except Exception as e:
                log.error(f"Listener for event '{event_name}' failed: {str(e)}")

    async def emit_async(self, event_name: str, payload: Dict[str, Any]):
        """Call every listener of ``event_name``, awaiting coroutine listeners."""
        for listener, args in self._targets(event_name, payload):
            try:
                if asyncio.iscoroutinefunction(listener):
                    await listener(*args)
                else:
                    result = listener(*args)
                    if asyncio.iscoroutine(result):
                        await result
            except Exception as e:
                log.error(f"Listener for event '{event_name}' failed: {str(e)}")

    def _targets(self, event_name: str, payload: Dict[str, Any]):
        with self._lock:
            named = list(self._listeners.get(event_name, []))
            wildcard = list(self._listeners.get(WILDCARD, []))
        targets = [(listener, (payload,)) for listener in named]
        targets.extend((listener, (event_name, payload)) for listener in wildcard)
        return targets

    @staticmethod
    def _schedule(coro, event_name: str):
        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            coro.close()
            log.warning(f"Async listener for '{event_name}' dropped: no running event loop")
            return
        loop.create_task(coro)

"""
Handler Registry.

Resolves a task's event name to the ordered list of callables that should
run for it. Components register handlers explicitly at startup; ordering
between components follows their declared dependencies.
"""

import logging
import re
import threading
from dataclasses import dataclass, field
from typing import Callable, Dict, Iterable, List, Optional, Tuple

from .exceptions import ProcessEngineError
from .graph import DependencyGraph

log = logging.getLogger(__name__)


@dataclass
class HandlerEntry:
    event_name: str
    handler: Callable
    plugin: Optional[str] = None


@dataclass
class PluginInfo:
    name: str
    depends_on: Tuple[str, ...] = field(default_factory=tuple)


def matches_event(pattern: str, event_name: str) -> bool:
    """
    Match an event name against a registration pattern.

    ``**`` matches anything, ``*`` matches a run of characters without ``:``.
    """
    if pattern == event_name or pattern == "**":
        return True
    if "*" not in pattern:
        return False
    regex = ""
    index = 0
    while index < len(pattern):
        if pattern.startswith("**", index):
            regex += ".*"
            index += 2
        elif pattern[index] == "*":
            regex += "[^:]*"
            index += 1
        else:
            regex += re.escape(pattern[index])
            index += 1
    return re.fullmatch(regex, event_name) is not None


class HandlerRegistry:
    """
    Explicit handler registration with dependency-ordered lookup.

    Handlers registered under a plugin run in plugin dependency order
    (dependencies first); handlers without a plugin run last. Within one
    plugin, registration order is kept.
    """

    def __init__(self):
        self._entries: List[HandlerEntry] = []
        self._plugins: Dict[str, PluginInfo] = {}
        self._order: Optional[List[str]] = None
        self._lock = threading.RLock()

    def register_plugin(self, name: str, depends_on: Iterable[str] = ()):
        """Declare a handler group and the groups whose handlers must run before it."""
        with self._lock:
            self._plugins[name] = PluginInfo(name=name, depends_on=tuple(depends_on))
            self._order = None
        log.debug(f"Registered plugin: {name}")

    def register(self, event_name: str, handler: Callable, plugin: Optional[str] = None):
        """Register ``handler`` for ``event_name`` (which may be a glob pattern)."""
        if not callable(handler):
            raise ValueError("Handler must be callable")
        with self._lock:
            if plugin is not None and plugin not in self._plugins:
                self._plugins[plugin] = PluginInfo(name=plugin)
                self._order = None
            self._entries.append(HandlerEntry(event_name=event_name, handler=handler, plugin=plugin))
        log.debug(f"Registered handler {getattr(handler, '__name__', handler)!r} for event: {event_name}")

    def handler(self, event_name: str, plugin: Optional[str] = None):
        """Decorator form of :meth:`register`."""
        def wrap(func):
            self.register(event_name, func, plugin=plugin)
            return func
        return wrap

    def unregister(self, event_name: str, handler: Callable) -> bool:
        with self._lock:
            for entry in self._entries:
                if entry.event_name == event_name and entry.handler is handler:
                    self._entries.remove(entry)
                    return True
            return False

    def lookup(self, event_name: str) -> List[Callable]:
        """Ordered handlers whose registration pattern matches ``event_name``."""
        with self._lock:
            order = self.get_initialization_order()
            rank = {name: position for position, name in enumerate(order)}
            matching = [
                (position, entry) for position, entry in enumerate(self._entries)
                if matches_event(entry.event_name, event_name)
            ]

        def sort_key(item):
            position, entry = item
            plugin_rank = rank.get(entry.plugin, len(rank)) if entry.plugin else len(rank)
            return plugin_rank, position

        return [entry.handler for _, entry in sorted(matching, key=sort_key)]

    def get_initialization_order(self) -> List[str]:
        """Plugin names sorted so that dependencies come first."""
        with self._lock:
            if self._order is None:
                self._order = self._compute_order()
            return list(self._order)

    def _compute_order(self) -> List[str]:
        graph = DependencyGraph()
        for name in self._plugins:
            graph.add_vertex(name)
        for plugin in self._plugins.values():
            for dependency in plugin.depends_on:
                if dependency not in self._plugins:
                    raise ProcessEngineError(
                        f'Plugin "{plugin.name}" requires dependency "{dependency}" which is not registered'
                    )
                graph.add_edge(dependency, plugin.name)
        return graph.topological_sort()

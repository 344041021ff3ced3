"""
Listener Registry
=================

Minimal synchronous publish/subscribe used by the engine, executor, and
escalation queue. Listeners run in registration order, in the caller's
thread, before ``emit`` returns.
"""

from typing import Any, Callable, Optional

Listener = Callable[..., Any]


class Emitter:
    """Topic-keyed listener registry."""

    def __init__(self):
        self._listeners: dict[str, list[Listener]] = {}

    def on(self, topic: str, listener: Listener) -> Listener:
        """Subscribe ``listener`` to ``topic``. Returns the listener."""
        self._listeners.setdefault(topic, []).append(listener)
        return listener

    def off(self, topic: str, listener: Listener) -> None:
        """Unsubscribe one registration of ``listener``. Unknown listeners are ignored."""
        listeners = self._listeners.get(topic)
        if not listeners:
            return
        try:
            listeners.remove(listener)
        except ValueError:
            return
        if not listeners:
            del self._listeners[topic]

    def emit(self, topic: str, *args: Any) -> bool:
        """Call every listener of ``topic``. Returns True if any were called."""
        # Copy so listeners may unsubscribe while being notified
        listeners = list(self._listeners.get(topic, ()))
        for listener in listeners:
            listener(*args)
        return bool(listeners)

    def remove_all_listeners(self, topic: Optional[str] = None) -> None:
        if topic is None:
            self._listeners.clear()
        else:
            self._listeners.pop(topic, None)

    def listener_count(self, topic: str) -> int:
        return len(self._listeners.get(topic, ()))

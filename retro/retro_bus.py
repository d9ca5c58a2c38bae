"""
In-memory reference collaborators: an async EventBus and a CommandBus.

Hosts normally supply their own services; these keep the engine usable on
its own (CLI, tests) and document the contracts the engine relies on.
"""
import inspect
import logging
import re
import time
from collections import deque
from typing import Any, Callable, Dict, List

logger = logging.getLogger("retro.bus")

Handler = Callable[..., Any]


def _pattern_to_regex(pattern: str) -> re.Pattern:
    return re.compile("^" + re.escape(pattern).replace(r"\*", ".*") + "$")


class EventBus:
    """Publish/subscribe bus. `emit` awaits handlers in subscription order."""

    def __init__(self, max_log_size: int = 100):
        self.listeners: Dict[str, List[Handler]] = {}
        self.pattern_listeners: Dict[str, List[Handler]] = {}
        self._event_log = deque(maxlen=max_log_size)

    def on(self, event_name: str, handler: Handler) -> Callable[[], None]:
        """Subscribe; `*` in the name matches any run of characters. Returns an unsubscribe callable."""
        table = self.pattern_listeners if '*' in event_name else self.listeners
        table.setdefault(event_name, []).append(handler)
        return lambda: self.off(event_name, handler)

    def once(self, event_name: str, handler: Handler) -> Callable[[], None]:
        async def _wrapper(payload=None):
            self.off(event_name, _wrapper)
            result = handler(payload)
            if inspect.isawaitable(result):
                result = await result
            return result
        return self.on(event_name, _wrapper)

    def off(self, event_name: str, handler: Handler):
        for table in (self.listeners, self.pattern_listeners):
            handlers = table.get(event_name)
            if handlers and handler in handlers:
                handlers.remove(handler)
                if not handlers:
                    del table[event_name]

    def _matching(self, event_name: str) -> List[Handler]:
        handlers = list(self.listeners.get(event_name, ()))
        for pattern, callbacks in list(self.pattern_listeners.items()):
            if _pattern_to_regex(pattern).match(event_name):
                handlers.extend(callbacks)
        return handlers

    async def emit(self, event_name: str, payload: Any = None) -> dict:
        """Deliver an event to every matching handler. Handler errors are logged, not raised."""
        if payload is None:
            payload = {}
        elif not isinstance(payload, dict):
            payload = {'data': payload}
        event = {'name': event_name, 'payload': payload, 'timestamp': time.time()}
        self._event_log.append(event)
        logger.debug("emit %s %r", event_name, payload)

        for handler in self._matching(event_name):
            try:
                result = handler(payload)
                if inspect.isawaitable(result):
                    await result
            except Exception:
                logger.exception("Error in listener for %r", event_name)
        return event

    async def request(self, event_name: str, payload: Any = None) -> Any:
        """Ask handlers for a value; the first non-None answer wins."""
        for handler in self._matching(event_name):
            result = handler(payload)
            if inspect.isawaitable(result):
                result = await result
            if result is not None:
                return result
        return None

    def listener_count(self, event_name: str) -> int:
        return len(self._matching(event_name))

    def get_event_log(self) -> List[dict]:
        return list(self._event_log)

    def clear(self):
        self.listeners.clear()
        self.pattern_listeners.clear()
        self._event_log.clear()


class CommandBus:
    """Named command registry. `execute` never raises; it reports success or error."""

    def __init__(self):
        self.handlers: Dict[str, Handler] = {}

    def register(self, command: str, handler: Handler):
        self.handlers[command] = handler

    def unregister(self, command: str):
        self.handlers.pop(command, None)

    def has_command(self, command: str) -> bool:
        return command in self.handlers

    def get_commands(self) -> List[str]:
        return list(self.handlers)

    async def execute(self, command: str, payload: Any = None) -> dict:
        handler = self.handlers.get(command)
        if handler is None:
            logger.warning("Unknown command: %s", command)
            return {'success': False, 'error': f"Unknown command: {command}"}
        try:
            result = handler(payload if payload is not None else {})
            if inspect.isawaitable(result):
                result = await result
            return {'success': True, 'data': result}
        except Exception as e:
            logger.error("Error executing %s: %s", command, e)
            return {'success': False, 'error': str(e)}


__all__ = ["EventBus", "CommandBus"]

"""
Adapters between the evaluator and the host's services.

The EventBridge owns the engine's `on` subscriptions; the CollaboratorBridge
turns statements into dispatcher commands and filesystem calls. Hosts may
hand in synchronous or asynchronous collaborators; every call is awaited
when it returns an awaitable.
"""
import asyncio
import inspect
import logging
from collections.abc import Mapping
from typing import Any, Awaitable, Callable, List, Optional, Set

from retro.retro_datatypes import EventSubscription

logger = logging.getLogger("retro.bridge")

HandlerRunner = Callable[[tuple, Any], Awaitable[Any]]


async def resolve_awaitable(value: Any) -> Any:
    if inspect.isawaitable(value):
        return await value
    return value


def _node_type(node: Any) -> Optional[str]:
    if isinstance(node, Mapping):
        return node.get('type')
    return getattr(node, 'type', None)


def _window_id(window: Any) -> Any:
    if isinstance(window, Mapping):
        return window.get('id')
    return getattr(window, 'id', window)


class EventBridge:
    """Subscribes `on` bodies to the host bus and publishes script events."""

    def __init__(self, bus):
        self.bus = bus
        self.subscriptions: List[EventSubscription] = []
        self._pending: Set[asyncio.Future] = set()

    def subscribe(self, event_name: str, body: tuple, runner: HandlerRunner,
                  script_id: Optional[str] = None) -> EventSubscription:
        def _handler(payload=None):
            # Buses that do not await handlers still get the body scheduled.
            task = asyncio.ensure_future(runner(body, payload))
            self._pending.add(task)
            task.add_done_callback(self._pending.discard)
            return task

        unsubscribe = self.bus.on(event_name, _handler)
        subscription = EventSubscription(event_name, body, unsubscribe, script_id)
        self.subscriptions.append(subscription)
        logger.debug("subscribed %s for %s", event_name, script_id)
        return subscription

    async def emit(self, event_name: str, payload: Any = None) -> Any:
        return await resolve_awaitable(self.bus.emit(event_name, payload))

    async def request(self, event_name: str, payload: Any = None) -> Any:
        request = getattr(self.bus, 'request', None)
        if request is None:
            return None
        return await resolve_awaitable(request(event_name, payload))

    def unsubscribe_all(self) -> int:
        count = len(self.subscriptions)
        for subscription in self.subscriptions:
            subscription.unsubscribe()
        self.subscriptions.clear()
        return count


class CollaboratorBridge:
    """Forwards window, app and file statements to the command dispatcher and filesystem."""

    def __init__(self, dispatcher, fs, events: EventBridge):
        self.dispatcher = dispatcher
        self.fs = fs
        self.events = events

    # --- Command dispatch ---

    async def command(self, name: str, payload: Any) -> Any:
        logger.debug("dispatch %s %r", name, payload)
        return await resolve_awaitable(self.dispatcher.execute(name, payload))

    async def launch(self, app_id: Any, params: dict) -> Any:
        return await self.command('app:launch', {'appId': app_id, 'params': params})

    async def close(self, target: Any = None) -> Any:
        if target is None:
            windows = await self.events.request('query:windows')
            if not windows:
                return None
            target = _window_id(windows[-1])
        return await self.command('window:close', {'windowId': target})

    async def window(self, action: str, target: Any) -> Any:
        return await self.command(f'window:{action}', {'windowId': target})

    async def dispatch(self, name: str, args: List[str]) -> Any:
        return await self.command(name, {'args': list(args)})

    # --- Filesystem ---

    async def read_file(self, path: str) -> Any:
        return await resolve_awaitable(self.fs.read_file(path))

    async def write_file(self, path: str, content: str) -> Any:
        return await resolve_awaitable(self.fs.write_file(path, content))

    async def create_directory(self, path: str) -> Any:
        return await resolve_awaitable(self.fs.create_directory(path))

    async def get_node(self, path: str) -> Any:
        return await resolve_awaitable(self.fs.get_node(path))

    async def delete(self, path: str) -> Any:
        node = await self.get_node(path)
        if _node_type(node) == 'directory':
            return await resolve_awaitable(self.fs.delete_directory(path))
        return await resolve_awaitable(self.fs.delete_file(path))

"""
Transport bindings for the actor protocol.

A channel delivers plain JSON data. Listeners registered with `on_message`
are called as `handler(message, reply)` where `reply` is an async callable
that sends back to whichever endpoint delivered the message.

Bindings:

- `DirectChannel.pair()`: two in-process endpoints.
- `BroadcastHub`: host-mediated broadcast; every other endpoint sees a
  message unless it is addressed with `send_to`.
- `Window` / `Frame` / `WindowChannel`: postMessage between documents,
  with `source` and `origin` on every inbound event.
"""
import asyncio
import inspect
import json
import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Dict, List, Optional, Set, Union

from tagflow.tagflow_datatypes import TransportError

logger = logging.getLogger(__name__)

Reply = Callable[[Any], Awaitable[None]]
Handler = Callable[[Any, Reply], Any]


def clone_message(message: Any) -> Any:
    """Structured clone: only JSON data crosses a channel."""
    return json.loads(json.dumps(message))


class Channel(ABC):

    def __init__(self):
        self._handlers: List[Handler] = []
        self.active_tasks: Set[asyncio.Task] = set()

    @abstractmethod
    async def send(self, message: Any) -> None:
        raise NotImplementedError

    def on_message(self, handler: Handler) -> Callable[[], None]:
        """Register a listener; returns a function that removes it."""
        self._handlers.append(handler)

        def unsubscribe():
            if handler in self._handlers:
                self._handlers.remove(handler)
        return unsubscribe

    def _register_task(self, task: asyncio.Task):
        self.active_tasks.add(task)
        task.add_done_callback(self._task_done)

    def _task_done(self, task: asyncio.Task):
        self.active_tasks.discard(task)
        if task.cancelled():
            return
        error = task.exception()
        if error is not None:
            logger.error("Message listener failed: %s", error, exc_info=error)

    def _deliver(self, message: Any, reply: Reply) -> None:
        for handler in list(self._handlers):
            result = handler(message, reply)
            if inspect.isawaitable(result):
                self._register_task(asyncio.ensure_future(result))

    async def drain(self) -> None:
        """Wait until every listener task started so far has finished."""
        while self.active_tasks:
            await asyncio.gather(*list(self.active_tasks), return_exceptions=True)

    def cancel_tasks(self) -> int:
        count = len(self.active_tasks)
        for task in list(self.active_tasks):
            task.cancel()
        self.active_tasks.clear()
        return count


# ===================================================================
# In-process
# ===================================================================

class DirectChannel(Channel):

    def __init__(self):
        super().__init__()
        self.peer: Optional['DirectChannel'] = None

    @classmethod
    def pair(cls):
        a, b = cls(), cls()
        a.peer, b.peer = b, a
        return a, b

    async def send(self, message: Any) -> None:
        if self.peer is None:
            raise TransportError("Channel is not connected")
        data = clone_message(message)
        # Replies to a delivered message travel back from the peer to this end
        asyncio.get_running_loop().call_soon(self.peer._deliver, data, self.peer.send)


# ===================================================================
# Host-mediated broadcast
# ===================================================================

class BroadcastHub:
    """Relays messages between named endpoints."""

    def __init__(self):
        self.endpoints: Dict[str, 'HubChannel'] = {}

    def connect(self, name: str) -> 'HubChannel':
        if name in self.endpoints:
            raise TransportError(f"Endpoint {name} is already connected")
        channel = HubChannel(self, name)
        self.endpoints[name] = channel
        return channel

    def disconnect(self, name: str) -> None:
        self.endpoints.pop(name, None)

    def _reply_to(self, sender: str, via: str) -> Reply:
        async def reply(message):
            self.deliver(via, sender, message)
        return reply

    def deliver(self, sender: str, target: Optional[str], message: Any) -> None:
        data = clone_message(message)
        if target is not None:
            channel = self.endpoints.get(target)
            if channel is None:
                raise TransportError(f"No endpoint named {target}")
            targets = [channel]
        else:
            targets = [c for n, c in self.endpoints.items() if n != sender]
        loop = asyncio.get_running_loop()
        for channel in targets:
            loop.call_soon(channel._deliver, data, self._reply_to(sender, channel.name))


class HubChannel(Channel):

    def __init__(self, hub: BroadcastHub, name: str):
        super().__init__()
        self.hub = hub
        self.name = name

    async def send(self, message: Any) -> None:
        self.hub.deliver(self.name, None, message)

    async def send_to(self, target: str, message: Any) -> None:
        self.hub.deliver(self.name, target, message)


# ===================================================================
# postMessage
# ===================================================================

@dataclass
class MessageEvent:
    data: Any
    origin: str
    source: Optional['Window']


class Window:
    """A document's message endpoint."""

    def __init__(self, origin: str = "null", parent: Optional['Window'] = None):
        self.origin = origin
        # A top-level window is its own parent
        self.parent = parent or self
        self._listeners: List[Callable[[MessageEvent], Any]] = []

    def add_event_listener(self, listener: Callable[[MessageEvent], Any]) -> None:
        self._listeners.append(listener)

    def remove_event_listener(self, listener: Callable[[MessageEvent], Any]) -> None:
        if listener in self._listeners:
            self._listeners.remove(listener)

    def post_message(self, data: Any, target_origin: str = "*", source: Optional['Window'] = None) -> None:
        if target_origin not in ("*", self.origin):
            logger.debug("Dropped message for origin %s at %s", target_origin, self.origin)
            return
        event = MessageEvent(clone_message(data), source.origin if source is not None else "null", source)
        loop = asyncio.get_running_loop()
        for listener in list(self._listeners):
            loop.call_soon(listener, event)


class Frame:
    """An embedded document; `content_window` is None until it is attached."""

    def __init__(self, content_window: Optional[Window] = None):
        self.content_window = content_window


class WindowChannel(Channel):
    """
    Listens on `window`; sends to `target` (a Window, or a Frame whose
    content window is looked up at send time).
    """

    def __init__(self, window: Window, target: Union[Window, Frame, None] = None, target_origin: str = "*"):
        super().__init__()
        self.window = window
        self.target = target
        self.target_origin = target_origin
        window.add_event_listener(self._on_event)

    def close(self) -> None:
        self.window.remove_event_listener(self._on_event)

    def _target_window(self) -> Window:
        target = self.target.content_window if isinstance(self.target, Frame) else self.target
        if target is None:
            raise TransportError("No content window")
        return target

    async def send(self, message: Any) -> None:
        self._target_window().post_message(message, self.target_origin, source=self.window)

    def _on_event(self, event: MessageEvent) -> None:
        async def reply(message):
            if event.source is None:
                raise TransportError("Message has no source window to reply to")
            event.source.post_message(message, event.origin, source=self.window)
        self._deliver(event.data, reply)

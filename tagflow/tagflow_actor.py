"""
The actor RPC protocol.

    caller                                   callee
    RemoteActor.call(request) ── {id, handlerId?, type: "request", request} ──▶ Actor
                              ◀── {requestId, type: "success", result} ───────
                              ◀── {requestId, type: "error", error} ──────────
    RemoteActor.wait_loaded() ◀── {type: "loaded"} ────────────────────────── Actor.loaded()

Each request id settles at most once. There are no retries and no remote
cancellation; a caller re-issues with a fresh id.
"""
import asyncio
import inspect
import logging
import uuid
from typing import Any, Callable, Dict, Optional

from tagflow.tagflow_channels import Channel, Reply
from tagflow.tagflow_datatypes import (
    RemoteError, TransportError, ValueNotFound, stringify_error,
)
from tagflow.tagflow_tree import prepare_for_serialization

logger = logging.getLogger(__name__)

REQUEST = "request"
SUCCESS = "success"
ERROR = "error"
LOADED = "loaded"


def new_request_id() -> str:
    return uuid.uuid4().hex


def request_message(request_id: str, request: Dict[str, Any], handler_id: Optional[str] = None) -> Dict[str, Any]:
    message = {"id": request_id, "type": REQUEST, "request": request}
    if handler_id is not None:
        message["handlerId"] = handler_id
    return message


def success_response(request_id: str, result: Any) -> Dict[str, Any]:
    return {"requestId": request_id, "type": SUCCESS, "result": result}


def error_response(request_id: str, error: Any) -> Dict[str, Any]:
    return {"requestId": request_id, "type": ERROR, "error": error}


def loaded_message() -> Dict[str, Any]:
    return {"type": LOADED}


# ===================================================================
# Callee side
# ===================================================================

class ActorLogic:
    """Action handlers keyed by request type, plus the error cast."""

    def __init__(self, handlers: Dict[str, Callable[[Dict[str, Any]], Any]],
                 cast_error: Callable[[BaseException], Any] = stringify_error):
        self.handlers = handlers
        self.cast_error = cast_error

    async def handle(self, request: Dict[str, Any]) -> Any:
        kind = request.get("type") if isinstance(request, dict) else None
        handler = self.handlers.get(kind)
        if handler is None:
            raise ValueNotFound(kind, f"Unknown message type: {kind}")
        result = handler(request)
        if inspect.isawaitable(result):
            result = await result
        return result


class Actor:
    """Serves requests arriving on a channel.

    Requests addressed to another `handlerId` are ignored, which lets
    several actors share one channel.
    """

    def __init__(self, actor_id: str, logic: ActorLogic, channel: Channel):
        self.actor_id = actor_id
        self.logic = logic
        self.channel = channel
        self._unsubscribe: Optional[Callable[[], None]] = None

    def start(self) -> None:
        if self._unsubscribe is None:
            self._unsubscribe = self.channel.on_message(self.handle_message)

    def stop(self) -> None:
        if self._unsubscribe is not None:
            self._unsubscribe()
            self._unsubscribe = None

    async def loaded(self) -> None:
        await self.channel.send(loaded_message())

    async def handle_message(self, message: Any, reply: Reply) -> None:
        if not isinstance(message, dict) or message.get("type") != REQUEST:
            return
        handler_id = message.get("handlerId")
        if handler_id is not None and handler_id != self.actor_id:
            logger.debug("Actor %s ignored request for %s", self.actor_id, handler_id)
            return
        request_id = message.get("id")
        try:
            result = await self.logic.handle(message.get("request"))
        except Exception as e:
            logger.debug("Actor %s request %s failed: %s", self.actor_id, request_id, e)
            await reply(error_response(request_id, self.logic.cast_error(e)))
            return
        if result is None:
            return
        await reply(success_response(request_id, prepare_for_serialization(result)))


# ===================================================================
# Caller side
# ===================================================================

class RemoteActor:
    """Sends requests over a channel and settles them from the responses."""

    def __init__(self, channel: Channel, cast_error: Callable[[BaseException], Any] = stringify_error,
                 handler_id: Optional[str] = None):
        self.channel = channel
        self.cast_error = cast_error
        self.handler_id = handler_id
        self.pending: Dict[str, asyncio.Future] = {}
        self._loaded = asyncio.Event()
        self._unsubscribe: Optional[Callable[[], None]] = None

    def start(self) -> None:
        if self._unsubscribe is None:
            self._unsubscribe = self.channel.on_message(self._on_message)

    def stop(self) -> None:
        if self._unsubscribe is not None:
            self._unsubscribe()
            self._unsubscribe = None

    def _on_message(self, message: Any, reply: Reply) -> None:
        self.handle_message(message)

    def handle_message(self, message: Any) -> None:
        kind = message.get("type") if isinstance(message, dict) else None
        if kind == REQUEST:
            return
        if kind == LOADED:
            self._loaded.set()
            return
        if kind not in (SUCCESS, ERROR):
            raise TransportError(f"Malformed message type: {kind!r}")
        future = self.pending.pop(message.get("requestId"), None)
        if future is None:
            logger.debug("Unmatched response for request %s", message.get("requestId"))
            return
        if future.done():
            return
        if kind == SUCCESS:
            future.set_result(message.get("result"))
        else:
            future.set_exception(RemoteError(message.get("error")))

    async def call(self, request: Dict[str, Any], request_id: Optional[str] = None) -> Any:
        request_id = request_id or new_request_id()
        if request_id in self.pending:
            raise TransportError(f"Duplicate request id: {request_id}")
        future = asyncio.get_running_loop().create_future()
        self.pending[request_id] = future
        try:
            try:
                await self.channel.send(request_message(request_id, request, self.handler_id))
            except TransportError as e:
                # Unreachable endpoint: settle through the normal error path
                self.handle_message(error_response(request_id, self.cast_error(e)))
            return await future
        finally:
            self.pending.pop(request_id, None)

    async def notify(self, request: Dict[str, Any]) -> None:
        """Send a request without waiting for (or expecting) a response."""
        await self.channel.send(request_message(new_request_id(), request, self.handler_id))

    def is_loaded(self) -> bool:
        return self._loaded.is_set()

    async def wait_loaded(self, timeout: Optional[float] = None) -> None:
        await asyncio.wait_for(self._loaded.wait(), timeout)

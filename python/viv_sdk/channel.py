"""
Location: python/viv_sdk/channel.py

Summary:
    Fan-out layer between the decoding pipeline and consumers. Delivers
    events to push-style subscribers and, independently, to a pull-style
    async iterator.

Usage:
    Owned by StreamSession. Subscribers register per event kind (or the
    "chunk" catch-all); the iterator drains an unbounded queue.

    The queue is never bounded and no flow-control signal is sent
    upstream: a very fast producer paired with a slow consumer grows the
    queue without limit.

Example:
    channel = EventChannel()
    channel.subscribe("content", lambda text: print(text, end=""))
    async for event in channel:
        ...
"""

import asyncio
import inspect
import logging
from collections import defaultdict, deque
from typing import Any, Callable, Optional, Union

from .errors import APIError
from .types import EventKind, StreamEvent, StreamState


logger = logging.getLogger(__name__)

Handler = Callable[..., Any]

CHUNK = "chunk"

# Kinds whose handlers are called without arguments
_SIGNAL_KINDS = frozenset({EventKind.CONNECT, EventKind.END, EventKind.ABORT})

_KIND_ALIASES = {
    "functionCall": EventKind.FUNCTION_CALL,
    "functionCallResult": EventKind.FUNCTION_CALL_RESULT,
    "finish": EventKind.END,
}


def _handler_key(kind: Union[str, EventKind]) -> str:
    if isinstance(kind, EventKind):
        return kind.value
    if kind == CHUNK:
        return CHUNK
    if kind in _KIND_ALIASES:
        return _KIND_ALIASES[kind].value
    return EventKind(kind).value


class EventChannel:
    """
    Typed event channel with a dispatch table and a pull queue.

    State machine: OPEN -> FINISHED | FAILED | ABORTED. Terminal states
    are final. Queued events are always drained before the terminal state
    is observed by the iterator: FINISHED and ABORTED end the iteration,
    FAILED raises the stored error once.

    At most one waiter future is pending at any time. Concurrent
    consumers share it and take events from the same queue.
    """

    def __init__(self):
        self._handlers: dict[str, list[Handler]] = defaultdict(list)
        self._queue: deque[StreamEvent] = deque()
        self._state = StreamState.OPEN
        self._error: Optional[APIError] = None
        self._error_raised = False
        self._waiter: Optional[asyncio.Future] = None
        self._tasks: set[asyncio.Task] = set()

    @property
    def state(self) -> StreamState:
        return self._state

    @property
    def closed(self) -> bool:
        return self._state != StreamState.OPEN

    @property
    def error(self) -> Optional[APIError]:
        return self._error

    def __len__(self) -> int:
        """Number of events queued but not yet pulled."""
        return len(self._queue)

    def subscribe(self, kind: Union[str, EventKind], handler: Handler) -> None:
        """
        Register a handler for an event kind.

        Handler arguments per kind:

            chunk                 (kind, data) for every queued event
                                  except connect, e.g. ("end", "finish")
            connect, end, abort   no arguments
            content, reasoning,   the text delta (str)
            system, unknown
            function_call         FunctionCallData
            function_call_result  FunctionCallResultData
            usage                 UsageData
            error                 ErrorData

        Args:
            kind: Event kind, its camelCase alias, or "chunk"
            handler: Callable, may return an awaitable

        Raises:
            ValueError: If kind is not a known event kind
        """
        self._handlers[_handler_key(kind)].append(handler)

    def unsubscribe(self, kind: Union[str, EventKind], handler: Handler) -> None:
        handlers = self._handlers.get(_handler_key(kind), [])
        if handler in handlers:
            handlers.remove(handler)

    def publish(self, event: StreamEvent) -> bool:
        """
        Deliver an event to subscribers and queue it for the iterator.

        Returns:
            False if the channel is already terminal and the event was dropped
        """
        if self.closed:
            return False
        self._queue.append(event)
        if event.kind != EventKind.CONNECT:
            self._dispatch(CHUNK, event.kind.value, event.data)
        self._notify_kind(event)
        self._wake()
        return True

    def notify(self, event: StreamEvent) -> None:
        """Deliver an event to subscribers only, without queueing it."""
        self._notify_kind(event)

    def finish(self) -> bool:
        return self._transition(StreamState.FINISHED)

    def fail(self, error: APIError) -> bool:
        if self.closed:
            return False
        self._error = error
        return self._transition(StreamState.FAILED)

    def abort(self) -> bool:
        return self._transition(StreamState.ABORTED)

    def __aiter__(self) -> "EventChannel":
        return self

    async def __anext__(self) -> StreamEvent:
        return await self.next_event()

    async def next_event(self) -> StreamEvent:
        """
        Return the next queued event, waiting if none is available.

        Raises:
            StopAsyncIteration: Once the queue is empty and the channel
                                finished or was aborted
            APIError: Once, when the queue is empty and the channel failed
        """
        while True:
            if self._queue:
                return self._queue.popleft()
            if self._state == StreamState.FAILED and not self._error_raised:
                self._error_raised = True
                raise self._error
            if self.closed:
                raise StopAsyncIteration
            if self._waiter is None or self._waiter.done():
                self._waiter = asyncio.get_running_loop().create_future()
            # shield so one consumer being cancelled does not wake the others
            await asyncio.shield(self._waiter)

    def _transition(self, state: StreamState) -> bool:
        if self.closed:
            return False
        logger.debug("Stream channel %s -> %s", self._state.value, state.value)
        self._state = state
        self._wake()
        return True

    def _wake(self) -> None:
        waiter, self._waiter = self._waiter, None
        if waiter is not None and not waiter.done():
            waiter.set_result(None)

    def _notify_kind(self, event: StreamEvent) -> None:
        if event.kind in _SIGNAL_KINDS:
            self._dispatch(event.kind.value)
        else:
            self._dispatch(event.kind.value, event.data)

    def _dispatch(self, key: str, *args: Any) -> None:
        for handler in list(self._handlers.get(key, ())):
            try:
                result = handler(*args)
            except Exception:
                logger.exception("Stream handler %r for %r failed", handler, key)
                continue
            if inspect.isawaitable(result):
                task = asyncio.ensure_future(result)
                self._tasks.add(task)
                task.add_done_callback(self._handler_done)

    def _handler_done(self, task: asyncio.Task) -> None:
        self._tasks.discard(task)
        if task.cancelled():
            return
        exc = task.exception()
        if exc is not None:
            logger.error("Async stream handler failed", exc_info=exc)

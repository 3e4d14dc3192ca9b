"""
Location: python/viv_sdk/session.py

Summary:
    StreamSession ties the decoder, classifier and event channel together
    for one logical streaming request, which may span several retried
    connections.

Usage:
    Returned by VivClient.stream(). Consumers either subscribe with on()
    or iterate with ``async for``; both see the same events in the same
    order. The retry controller drives the session through feed(),
    end_of_stream(), reset_connection() and fail().

Example:
    session = await client.stream(messages=[{"role": "user", "content": "Hi"}])
    session.on("reasoning", lambda delta: print("thinking:", delta))
    async for event in session:
        if event.kind == EventKind.CONTENT:
            print(event.data, end="")
"""

import asyncio
import logging
from typing import Any, Coroutine, Iterable, Optional, Union

from .channel import EventChannel, Handler
from .classifier import DECODE_ERROR_CODE, RecordClassifier
from .decoder import BLANK_LINE, CANONICAL_TAGS, ProtocolDecoder
from .errors import APIError, DecodeError, StreamCancelledError, create_api_error
from .transport import decoder_options
from .types import ClientConfig, ErrorData, EventKind, StreamEvent, StreamState


logger = logging.getLogger(__name__)

_CONNECT_TRIGGERS = frozenset({EventKind.CONTENT, EventKind.REASONING})


class StreamSession:
    """
    One streaming completion, from request to terminal state.

    The session reaches exactly one terminal state (finished, failed or
    aborted). After that no events are queued and cancel() is a no-op.

    Attributes:
        max_decode_errors: Malformed records tolerated before failing
    """

    def __init__(
        self,
        *,
        delimiter: str = BLANK_LINE,
        tags: Iterable[str] = CANONICAL_TAGS,
        max_decode_errors: int = 16,
    ):
        self.max_decode_errors = max_decode_errors
        self._decoder = ProtocolDecoder(delimiter, tags)
        self._classifier = RecordClassifier()
        self._channel = EventChannel()
        self._signal = asyncio.Event()
        self._connected = False
        self._decode_errors = 0
        self._task: Optional[asyncio.Task] = None

    @classmethod
    def from_config(cls, config: ClientConfig) -> "StreamSession":
        delimiter, tags = decoder_options(config)
        return cls(
            delimiter=delimiter,
            tags=tags,
            max_decode_errors=config.max_decode_errors,
        )

    @property
    def state(self) -> StreamState:
        return self._channel.state

    @property
    def finished(self) -> bool:
        """True once the session reached any terminal state."""
        return self._channel.closed

    @property
    def connected(self) -> bool:
        """True once the first content or reasoning event arrived."""
        return self._connected

    @property
    def signal(self) -> asyncio.Event:
        """Abort signal, set when the session is cancelled."""
        return self._signal

    @property
    def error(self) -> Optional[APIError]:
        return self._channel.error

    def on(self, kind: Union[str, EventKind], handler: Handler) -> "StreamSession":
        """Subscribe a handler; see EventChannel.subscribe for signatures."""
        self._channel.subscribe(kind, handler)
        return self

    subscribe = on

    def off(self, kind: Union[str, EventKind], handler: Handler) -> "StreamSession":
        self._channel.unsubscribe(kind, handler)
        return self

    unsubscribe = off

    def __aiter__(self) -> EventChannel:
        return self._channel

    async def next_event(self) -> StreamEvent:
        return await self._channel.next_event()

    async def text(self) -> str:
        """Consume the stream and return the concatenated content deltas."""
        parts = []
        async for event in self._channel:
            if event.kind == EventKind.CONTENT:
                parts.append(event.data)
        return "".join(parts)

    def feed(self, data: Union[bytes, str]) -> int:
        """
        Decode a chunk from the transport and publish its events.

        Returns:
            Number of events published

        Raises:
            StreamCancelledError: If the session was cancelled
        """
        if self._signal.is_set():
            raise StreamCancelledError("Stream was cancelled")
        published = 0
        for record in self._decoder.feed(data):
            if self._stopped:
                break
            published += self._dispatch(self._classifier.classify(record))
        return published

    def end_of_stream(self) -> None:
        """Flush the trailing record and finish if no terminal state was reached."""
        if self._stopped:
            return
        record = self._decoder.flush()
        if record is not None:
            self._dispatch(self._classifier.classify(record))
        self._channel.finish()

    def reset_connection(self) -> None:
        """Drop bytes left over from a failed connection."""
        self._decoder.reset()

    def fail(self, error: APIError) -> bool:
        """
        Move to the failed state and notify error subscribers once.

        Returns:
            False if the session was already terminal
        """
        if not self._channel.fail(error):
            return False
        logger.debug("Stream session failed: %r", error)
        self._channel.notify(
            StreamEvent(
                kind=EventKind.ERROR,
                data=ErrorData(
                    code=error.error_kind or "api_error",
                    message=error.message,
                    status=error.status,
                    retryable=error.retryable,
                ),
            )
        )
        return True

    def cancel(self) -> bool:
        """
        Abort the session. Idempotent.

        Sets the abort signal, stops the driver task and ends iteration
        once already queued events are consumed.

        Returns:
            True if this call aborted the session
        """
        if self.finished:
            return False
        self._signal.set()
        self._channel.abort()
        self._channel.notify(StreamEvent(kind=EventKind.ABORT))
        task = self._task
        if task is not None and not task.done():
            task.cancel()
        return True

    abort = cancel

    def start(self, driver: Coroutine[Any, Any, None]) -> asyncio.Task:
        """Run the coroutine that feeds this session as a background task."""
        if self._task is not None:
            raise RuntimeError("Stream session already started")
        self._task = asyncio.ensure_future(driver)
        self._task.add_done_callback(self._driver_done)
        return self._task

    async def wait_closed(self) -> None:
        """Wait for the driver task to exit."""
        if self._task is None:
            return
        try:
            await asyncio.shield(self._task)
        except asyncio.CancelledError:
            if not self._task.cancelled():
                raise

    async def __aenter__(self) -> "StreamSession":
        return self

    async def __aexit__(self, *args) -> None:
        self.cancel()

    @property
    def _stopped(self) -> bool:
        return self.finished or self._signal.is_set()

    def _dispatch(self, event: StreamEvent) -> int:
        published = 0
        if event.kind in _CONNECT_TRIGGERS and not self._connected:
            self._connected = True
            published += self._channel.publish(StreamEvent(kind=EventKind.CONNECT))

        logger.debug("Stream event %s", event.kind.value)
        published += self._channel.publish(event)

        if event.kind == EventKind.END:
            self._channel.finish()
        elif event.kind == EventKind.ERROR and event.data.code == DECODE_ERROR_CODE:
            self._record_decode_error(event.data.message)
        return published

    def _record_decode_error(self, message: str) -> None:
        self._decode_errors += 1
        logger.warning("Malformed stream record: %s", message)
        if self._decode_errors > self.max_decode_errors:
            cause = DecodeError(message)
            error = APIError(
                f"Too many malformed stream records ({self._decode_errors})"
            )
            error.__cause__ = cause
            self.fail(error)

    def _driver_done(self, task: asyncio.Task) -> None:
        if task.cancelled():
            return
        exc = task.exception()
        if exc is not None and not self.finished:
            self.fail(create_api_error(exc))

"""
Location: python/viv_sdk/retry.py

Summary:
    Retry policy for stream and request attempts: exponential backoff with
    jitter, bounded by a retry ceiling, applied to failures classified as
    retryable by errors.classify_failure.

Usage:
    RetryController.run() drives a StreamSession from a request function
    that performs one connection attempt. RetryController.call() applies
    the same policy to non-streaming requests.

Example:
    controller = RetryController(max_retries=3, base_delay=1.0)
    session.start(controller.run(lambda: open_byte_stream(...), session))
"""

import asyncio
import logging
import random
from dataclasses import dataclass
from typing import Any, AsyncIterator, Awaitable, Callable, Optional, TypeVar, TYPE_CHECKING

from .errors import (
    ErrorKind,
    ExhaustedRetriesError,
    StreamCancelledError,
    TransportError,
    create_api_error,
)

if TYPE_CHECKING:
    from .session import StreamSession
    from .types import ClientConfig


logger = logging.getLogger(__name__)

T = TypeVar("T")

RequestFn = Callable[[], AsyncIterator[bytes]]

MAX_RETRY_DELAY = 30.0
RATE_LIMIT_MIN_DELAY = 5.0
TIMEOUT_FACTOR = 1.5
MAX_JITTER = 1.0


def calculate_retry_delay(
    base_delay: float,
    attempt: int,
    error_kind: Optional[ErrorKind] = None,
    jitter: bool = True,
    max_delay: float = MAX_RETRY_DELAY,
) -> float:
    """
    Calculate the backoff delay before the next attempt.

    delay = min(max_delay, base_delay * 2**attempt, scaled by 1.5 for
    timeouts and floored at 5s for rate limits, plus up to 1s of jitter)

    Args:
        base_delay: Starting delay in seconds
        attempt: Retry attempt (0-based)
        error_kind: Classified kind of the failure
        jitter: Whether to add uniform random jitter in [0, 1) seconds
        max_delay: Ceiling in seconds

    Returns:
        Delay in seconds
    """
    delay = base_delay * (2 ** attempt)

    if error_kind == "timeout":
        delay *= TIMEOUT_FACTOR
    elif error_kind == "rate_limit":
        delay = max(delay, RATE_LIMIT_MIN_DELAY)

    if jitter:
        delay += random.uniform(0, MAX_JITTER)

    return min(delay, max_delay)


@dataclass
class RetryState:
    """Retry bookkeeping for one session, owned by the controller."""

    attempt: int = 0
    error_kind: Optional[ErrorKind] = None

    def reset(self) -> None:
        self.attempt = 0
        self.error_kind = None


async def _aclose(stream: Any) -> None:
    aclose = getattr(stream, "aclose", None)
    if aclose is not None:
        await aclose()


class RetryController:
    """
    Bounded retry with exponential backoff and jitter.

    The attempt counter starts at 0, grows with each retryable failure and
    resets when a fresh connection delivers its first chunk. A retry
    re-issues the whole request; events already delivered before a
    mid-stream failure are not deduplicated.

    Attributes:
        max_retries: Retry ceiling
        base_delay: Starting backoff delay in seconds
        max_delay: Ceiling of any single delay in seconds
        read_timeout: Idle window between chunks in seconds, None to disable
    """

    def __init__(
        self,
        max_retries: int = 3,
        base_delay: float = 1.0,
        max_delay: float = MAX_RETRY_DELAY,
        read_timeout: Optional[float] = None,
        sleep: Optional[Callable[[float], Awaitable[Any]]] = None,
    ):
        if max_retries < 0:
            raise ValueError("max_retries must be a non-negative integer")
        self.max_retries = max_retries
        self.base_delay = base_delay
        self.max_delay = max_delay
        self.read_timeout = read_timeout
        self._sleep = sleep or asyncio.sleep

    @classmethod
    def from_config(cls, config: "ClientConfig") -> "RetryController":
        return cls(
            max_retries=config.max_retries,
            base_delay=config.retry_delay,
            max_delay=config.max_retry_delay,
            read_timeout=config.read_timeout,
        )

    def delay_for(self, attempt: int, error_kind: Optional[ErrorKind]) -> float:
        return calculate_retry_delay(
            self.base_delay, attempt, error_kind, max_delay=self.max_delay
        )

    async def run(self, request_fn: RequestFn, session: "StreamSession") -> None:
        """
        Drive a session until it reaches a terminal state.

        Never raises for request failures: a fatal failure, or a retryable
        one past the ceiling, is delivered through session.fail().

        Args:
            request_fn: Performs one connection attempt, yielding raw bytes
            session: Session receiving the bytes
        """
        state = RetryState()
        while not session.finished:
            try:
                await self._consume(request_fn, session, state)
                session.end_of_stream()
                return
            except (asyncio.CancelledError, StreamCancelledError):
                if session.signal.is_set():
                    logger.debug("Stream cancelled by consumer")
                    return
                raise
            except Exception as exc:
                if session.finished:
                    return
                error = create_api_error(exc)
                state.error_kind = error.error_kind
                if not error.retryable:
                    session.fail(error)
                    return
                if state.attempt >= self.max_retries:
                    session.fail(ExhaustedRetriesError(error, state.attempt + 1))
                    return

                delay = self.delay_for(state.attempt, error.error_kind)
                logger.warning(
                    "Stream request failed with %s, retrying in %.2fs (attempt %d/%d)",
                    error.error_kind or "unknown error",
                    delay,
                    state.attempt + 1,
                    self.max_retries,
                )
                state.attempt += 1
                session.reset_connection()
                await self._sleep(delay)

    async def _consume(
        self,
        request_fn: RequestFn,
        session: "StreamSession",
        state: RetryState,
    ) -> None:
        stream = request_fn()
        connected = False
        try:
            while not session.finished:
                try:
                    chunk = await self._next_chunk(stream)
                except StopAsyncIteration:
                    break
                if not connected:
                    connected = True
                    if state.attempt:
                        logger.info("Stream reconnected after %d retries", state.attempt)
                    state.reset()
                session.feed(chunk)
        finally:
            await _aclose(stream)

    async def _next_chunk(self, stream: AsyncIterator[bytes]) -> bytes:
        if self.read_timeout is None:
            return await stream.__anext__()
        try:
            return await asyncio.wait_for(stream.__anext__(), self.read_timeout)
        except asyncio.TimeoutError as exc:
            raise TransportError(
                f"Stream read timed out after {self.read_timeout}s",
                error_kind="timeout",
                retryable=True,
            ) from exc

    async def call(self, fn: Callable[[], Awaitable[T]]) -> T:
        """
        Run a non-streaming request with the same retry policy.

        Raises:
            APIError: The classified failure when it is not retryable
            ExhaustedRetriesError: When the retry ceiling is reached
        """
        attempt = 0
        while True:
            try:
                return await fn()
            except asyncio.CancelledError:
                raise
            except Exception as exc:
                error = create_api_error(exc)
                if not error.retryable:
                    if error is exc:
                        raise
                    raise error from exc
                if attempt >= self.max_retries:
                    raise ExhaustedRetriesError(error, attempt + 1) from exc

                delay = self.delay_for(attempt, error.error_kind)
                logger.warning(
                    "Request failed with %s, retrying in %.2fs (attempt %d/%d)",
                    error.error_kind or "unknown error",
                    delay,
                    attempt + 1,
                    self.max_retries,
                )
                attempt += 1
                await self._sleep(delay)


async def run_with_retry(
    fn: Callable[[], Awaitable[T]],
    max_retries: int = 3,
    base_delay: float = 1.0,
    max_delay: float = MAX_RETRY_DELAY,
) -> T:
    """Run fn under the default retry policy; see RetryController.call."""
    controller = RetryController(max_retries, base_delay, max_delay)
    return await controller.call(fn)

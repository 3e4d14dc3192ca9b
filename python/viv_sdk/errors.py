"""
Location: python/viv_sdk/errors.py

Summary:
    Exception hierarchy for the viv-sdk and the failure classifier that
    decides whether a failed request may be retried.

Usage:
    APIError (and its subclasses) is the only exception a stream consumer
    sees. DecodeError and ProtocolError are raised and handled inside the
    pipeline; StreamCancelledError marks a run that ended via cancel().

Example:
    from viv_sdk.errors import APIError

    try:
        async for event in stream:
            ...
    except APIError as exc:
        print(exc.status, exc.error_kind, exc.retryable)
"""

import asyncio
import re
from typing import Literal, NamedTuple, Optional

import httpx


ErrorKind = Literal["server_error", "rate_limit", "timeout", "network_error"]

_STATUS_PATTERN = re.compile(r"status (\d{3})")

_TIMEOUT_MARKERS = ("timeout", "timed out")
_NETWORK_MARKERS = (
    "network error",
    "connection error",
    "connection reset",
    "connection refused",
    "failed to fetch",
    "network request failed",
    "load failed",
)


class VivError(Exception):
    """Base class for all viv-sdk errors."""
    pass


class APIError(VivError):
    """
    A request failure surfaced to the caller.

    Attributes:
        message: Description of the failure
        status: HTTP status code, if the failure came from a response
        error_kind: Classified kind ("server_error", "rate_limit",
                    "timeout", "network_error") or None when fatal
        retryable: Whether the failure was classified as retryable
        body: Response body text, if any
    """

    def __init__(
        self,
        message: str,
        status: Optional[int] = None,
        error_kind: Optional[ErrorKind] = None,
        retryable: bool = False,
        body: Optional[str] = None,
    ):
        super().__init__(message)
        self.message = message
        self.status = status
        self.error_kind = error_kind
        self.retryable = retryable
        self.body = body

    def __repr__(self) -> str:
        return (
            f"{type(self).__name__}({self.message!r}, status={self.status}, "
            f"error_kind={self.error_kind!r}, retryable={self.retryable})"
        )


class TransportError(APIError):
    """Network, timeout or non-2xx HTTP failure of a single attempt."""
    pass


class ExhaustedRetriesError(APIError):
    """
    Raised once the retry ceiling is reached on a retryable failure.

    Attributes:
        attempts: Number of attempts made, including the first one
        last_error: The final retryable failure
    """

    def __init__(self, last_error: APIError, attempts: int):
        super().__init__(
            f"Retries exhausted after {attempts} attempts: {last_error.message}",
            status=last_error.status,
            error_kind=last_error.error_kind,
            retryable=True,
            body=last_error.body,
        )
        self.attempts = attempts
        self.last_error = last_error


class DecodeError(VivError):
    """A record payload could not be parsed under its kind's schema."""
    pass


class ProtocolError(VivError):
    """A segment did not match the record grammar or used an unknown tag."""
    pass


class StreamCancelledError(VivError):
    """The stream was cancelled by the consumer."""
    pass


class FailureClassification(NamedTuple):
    retryable: bool
    kind: Optional[ErrorKind] = None


def classify_status(status: int) -> FailureClassification:
    """Classify an HTTP status code. 2xx codes are not failures."""
    if 500 <= status <= 599:
        return FailureClassification(True, "server_error")
    if status == 429:
        return FailureClassification(True, "rate_limit")
    return FailureClassification(False)


def classify_failure(error: Optional[BaseException]) -> FailureClassification:
    """
    Decide whether a failure may be retried.

    Rules are checked in order and the first match wins: cancellation,
    HTTP status, timeouts, network-level failures. Anything else is fatal.

    Args:
        error: The exception raised by a request attempt

    Returns:
        FailureClassification with the retryable flag and error kind
    """
    if error is None:
        return FailureClassification(False)

    if isinstance(error, (asyncio.CancelledError, StreamCancelledError)):
        return FailureClassification(False)

    if isinstance(error, APIError) and error.status is not None:
        return classify_status(error.status)
    if isinstance(error, httpx.HTTPStatusError):
        return classify_status(error.response.status_code)

    message = str(error).lower()
    if isinstance(error, APIError) and error.status is None:
        match = _STATUS_PATTERN.search(message)
        if match:
            return classify_status(int(match.group(1)))
    name = type(error).__name__

    if isinstance(error, (httpx.TimeoutException, asyncio.TimeoutError, TimeoutError)):
        return FailureClassification(True, "timeout")
    if name == "TimeoutError" or any(m in message for m in _TIMEOUT_MARKERS):
        return FailureClassification(True, "timeout")

    if isinstance(error, (httpx.NetworkError, httpx.RemoteProtocolError, ConnectionError)):
        return FailureClassification(True, "network_error")
    if name == "NetworkError" or any(m in message for m in _NETWORK_MARKERS):
        return FailureClassification(True, "network_error")

    if isinstance(error, APIError) and error.error_kind is not None:
        return FailureClassification(error.retryable, error.error_kind)

    return FailureClassification(False)


def create_api_error(
    error: BaseException,
    status: Optional[int] = None,
    body: Optional[str] = None,
) -> APIError:
    """
    Wrap an arbitrary exception into an APIError carrying its classification.

    APIError instances are returned unchanged.
    """
    if isinstance(error, APIError):
        return error

    if status is not None:
        message = f"API request failed with status {status}"
        if body:
            message = f"{message}: {body}"
        classification = classify_status(status)
    else:
        message = str(error) or type(error).__name__
        classification = classify_failure(error)

    return TransportError(
        message,
        status=status,
        error_kind=classification.kind,
        retryable=classification.retryable,
        body=body,
    )

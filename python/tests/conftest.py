"""
Shared pytest fixtures for viv-sdk tests.

This module provides common fixtures used across all test files,
including sample wire streams and scripted connection attempts for
driving the retry controller without a network.
"""

import asyncio
import json
from unittest.mock import AsyncMock

import pytest

from viv_sdk.errors import TransportError


def _record(tag, payload):
    return f"{tag}:{json.dumps(payload, ensure_ascii=False)}\n\n".encode("utf-8")


async def byte_source(chunks, error=None, hang=False):
    """Async byte iterator standing in for one HTTP connection."""
    for chunk in chunks:
        yield chunk
    if error is not None:
        raise error
    if hang:
        await asyncio.Event().wait()


class ScriptedRequests:
    """
    Request function returning a pre-scripted connection per call.

    Each attempt is a (chunks, error) tuple; error is raised after the
    chunks are yielded.
    """

    def __init__(self, attempts):
        self.attempts = list(attempts)
        self.calls = 0

    def __call__(self):
        chunks, error = self.attempts[self.calls]
        self.calls += 1
        return byte_source(chunks, error)


@pytest.fixture
def sample_stream():
    """Minimal stream: one content delta, one reasoning delta, finish."""
    return b'c:"Hello"\n\ng:"thinking"\n\np:"finish"\n\n'


@pytest.fixture
def full_stream():
    """Stream exercising every canonical tag, with non-ASCII content."""
    return b"".join([
        _record("g", "Looking up the weather"),
        _record("f", {
            "tool_call_id": "call_1",
            "name": "get_weather",
            "arguments": '{"city": "Paris"}',
            "status": "started",
        }),
        _record("r", {
            "tool_call_id": "call_1",
            "name": "get_weather",
            "result": "18°C, cloudy",
            "status": "completed",
            "ai_note": "cached",
        }),
        _record("c", "Il fait 18°C à Paris "),
        _record("c", "☁️"),
        _record("u", {
            "prompt_tokens": 12,
            "completion_tokens": 7,
            "total_tokens": 19,
            "completion_tokens_details": {"reasoning_tokens": 3},
        }),
        b'p:"finish"\n\n',
    ])


@pytest.fixture
def server_error():
    """A classified HTTP 503 failure."""
    return TransportError(
        "API request failed with status 503: overloaded",
        status=503,
        error_kind="server_error",
        retryable=True,
    )


@pytest.fixture
def scripted():
    """Factory for ScriptedRequests."""
    return ScriptedRequests


@pytest.fixture
def source():
    """Factory for a single async byte iterator."""
    return byte_source


@pytest.fixture
def no_sleep():
    """Sleep replacement so backoff delays do not slow tests down."""
    return AsyncMock(return_value=None)

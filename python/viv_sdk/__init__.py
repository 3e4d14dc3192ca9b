"""
Location: python/viv_sdk/__init__.py

Summary:
    Main package initialization for viv-sdk. Exports all public classes
    and functions for convenient importing.

Usage:
    from viv_sdk import VivClient, ClientConfig, EventKind

    # Or import specific modules
    from viv_sdk.decoder import ProtocolDecoder
    from viv_sdk.retry import RetryController, calculate_retry_delay

Version: 0.1.0 (vivgrid stream protocol, blank-line framing)
"""

from .client import VivClient
from .types import (
    ClientConfig,
    ChatMessage,
    CompletionRequest,
    CompletionResponse,
    ErrorData,
    EventKind,
    FunctionCallData,
    FunctionCallResultData,
    Record,
    StreamEvent,
    StreamState,
    UsageData,
)
from .errors import (
    VivError,
    APIError,
    TransportError,
    ExhaustedRetriesError,
    DecodeError,
    ProtocolError,
    StreamCancelledError,
    classify_failure,
)
from .decoder import ProtocolDecoder
from .classifier import RecordClassifier
from .channel import EventChannel
from .session import StreamSession
from .retry import RetryController, calculate_retry_delay, run_with_retry

__version__ = "0.1.0"

__all__ = [
    # Main client
    "VivClient",
    # Types
    "ClientConfig",
    "ChatMessage",
    "CompletionRequest",
    "CompletionResponse",
    "ErrorData",
    "EventKind",
    "FunctionCallData",
    "FunctionCallResultData",
    "Record",
    "StreamEvent",
    "StreamState",
    "UsageData",
    # Exceptions
    "VivError",
    "APIError",
    "TransportError",
    "ExhaustedRetriesError",
    "DecodeError",
    "ProtocolError",
    "StreamCancelledError",
    "classify_failure",
    # Stream pipeline
    "ProtocolDecoder",
    "RecordClassifier",
    "EventChannel",
    "StreamSession",
    # Retry policy
    "RetryController",
    "calculate_retry_delay",
    "run_with_retry",
]

"""
Location: python/viv_sdk/types.py

Summary:
    Pydantic models for the viv-sdk. Defines the stream protocol data
    structures (Record, StreamEvent and the per-kind payloads), the
    request/response models for chat completions, and ClientConfig,
    the single place where client defaults live.

Usage:
    These models are imported by decoder.py, classifier.py, channel.py,
    session.py and client.py. Payload models accept the snake_case field
    names used on the wire.

Example:
    from viv_sdk.types import ClientConfig, EventKind

    config = ClientConfig(api_key="sk-...", max_retries=5)
    if event.kind == EventKind.CONTENT:
        print(event.data, end="")
"""

import os
from enum import Enum
from typing import Any, Literal, Optional, Union

from pydantic import BaseModel, ConfigDict, Field


DEFAULT_BASE_URL = "https://api.vivgrid.com/v1"


class EventKind(str, Enum):
    """Semantic kind of a classified stream event."""

    CONNECT = "connect"
    CONTENT = "content"
    REASONING = "reasoning"
    FUNCTION_CALL = "function_call"
    FUNCTION_CALL_RESULT = "function_call_result"
    USAGE = "usage"
    END = "end"
    SYSTEM = "system"
    ERROR = "error"
    ABORT = "abort"
    UNKNOWN = "unknown"


class StreamState(str, Enum):
    """Lifecycle state of a stream session."""

    OPEN = "open"
    FINISHED = "finished"
    FAILED = "failed"
    ABORTED = "aborted"


class Record(BaseModel):
    """
    One decoded protocol unit before semantic interpretation.

    Attributes:
        tag: Single-character prefix discriminator
        raw: Remainder of the segment after "<tag>:"
    """
    tag: str = Field(min_length=1, max_length=1)
    raw: str

    model_config = ConfigDict(frozen=True)


class FunctionCallData(BaseModel):
    """
    Payload of a function call event (tag "f").

    Attributes:
        tool_call_id: Identifier pairing the call with its result
        name: Function name
        arguments: JSON-encoded arguments as sent by the model
        status: Optional progress marker ("started" or "completed")
    """
    tool_call_id: str
    name: str
    arguments: str
    status: Optional[str] = None


class FunctionCallResultData(BaseModel):
    """
    Payload of a function call result event (tag "r").

    Attributes:
        tool_call_id: Identifier of the call this result answers
        name: Function name
        result: Result text
        status: Optional progress marker
        note: Optional note attached by the server (wire name "ai_note")
    """
    tool_call_id: str
    name: str
    result: str
    status: Optional[str] = None
    note: Optional[str] = Field(None, alias="ai_note")

    model_config = ConfigDict(populate_by_name=True)


class PromptTokensDetails(BaseModel):
    audio_tokens: int = 0
    cached_tokens: int = 0


class CompletionTokensDetails(BaseModel):
    audio_tokens: int = 0
    reasoning_tokens: int = 0
    accepted_prediction_tokens: int = 0
    rejected_prediction_tokens: int = 0


class UsageData(BaseModel):
    """
    Token accounting reported at the end of a completion (tag "u").

    Attributes:
        prompt_tokens: Tokens consumed by the prompt
        completion_tokens: Tokens generated
        total_tokens: Sum of prompt and completion tokens
        prompt_tokens_details: Optional breakdown of prompt tokens
        completion_tokens_details: Optional breakdown of completion tokens
    """
    prompt_tokens: int
    completion_tokens: int
    total_tokens: int
    prompt_tokens_details: Optional[PromptTokensDetails] = None
    completion_tokens_details: Optional[CompletionTokensDetails] = None


class ErrorData(BaseModel):
    """
    Payload of an error event.

    Sent by the server (tag "e"), produced locally when a record fails to
    decode, or published once when the session fails.

    Attributes:
        code: Machine-readable code (e.g. "decode_error", "server_error")
        message: Human-readable description
        status: HTTP status when the error came from a response
        retryable: Whether the failure was classified as retryable
    """
    code: str
    message: str
    status: Optional[int] = None
    retryable: Optional[bool] = None


EventPayload = Union[
    FunctionCallData,
    FunctionCallResultData,
    UsageData,
    ErrorData,
    str,
    None,
]


class StreamEvent(BaseModel):
    """
    A classified, typed record delivered to consumers.

    The shape of data is fully determined by kind: str for content,
    reasoning, system, end and unknown; the matching payload model for
    function_call, function_call_result, usage and error; None for
    connect and abort.

    Attributes:
        kind: Event kind
        data: Parsed payload
        raw: Original "<tag>:<payload>" text, empty for synthesized events
    """
    kind: EventKind
    data: EventPayload = None
    raw: str = ""

    model_config = ConfigDict(frozen=True)


class ChatMessage(BaseModel):
    role: Literal["system", "user", "assistant", "function", "tool"]
    content: str
    name: Optional[str] = None
    function_call: Optional[dict[str, Any]] = None

    model_config = ConfigDict(extra="allow")


class FunctionDefinition(BaseModel):
    name: str
    description: str = ""
    parameters: dict[str, Any] = Field(default_factory=dict)


class CompletionRequest(BaseModel):
    """
    Body of a chat completion request.

    Unknown fields are passed through to the server unchanged.
    """
    messages: list[ChatMessage]
    functions: Optional[list[FunctionDefinition]] = None
    function_call: Optional[Union[Literal["auto", "none"], dict[str, str]]] = None
    temperature: Optional[float] = None
    max_tokens: Optional[int] = None
    response_format: Optional[dict[str, Any]] = None

    model_config = ConfigDict(extra="allow")

    def to_payload(self, stream: bool = False) -> dict[str, Any]:
        """Serialize for the wire, dropping unset optional fields."""
        payload = self.model_dump(exclude_none=True)
        if stream:
            payload["stream"] = True
        return payload


class CompletionChoice(BaseModel):
    index: int = 0
    message: dict[str, Any] = Field(default_factory=dict)
    finish_reason: Optional[str] = None

    model_config = ConfigDict(extra="allow")


class CompletionResponse(BaseModel):
    """Response of a non-streaming chat completion."""
    id: str = ""
    object: str = "chat.completion"
    created: int = 0
    model: str = ""
    choices: list[CompletionChoice] = Field(default_factory=list)
    usage: Optional[UsageData] = None

    model_config = ConfigDict(extra="allow")

    @property
    def text(self) -> str:
        """Content of the first choice, or an empty string."""
        if not self.choices:
            return ""
        return self.choices[0].message.get("content") or ""


class ClientConfig(BaseModel):
    """
    Configuration passed to VivClient at construction.

    Attributes:
        api_key: Bearer token sent in the Authorization header
        base_url: API root; "/chat/completions" is appended
        max_retries: Retry ceiling for transient failures
        retry_delay: Base backoff delay in seconds
        max_retry_delay: Upper bound of any single backoff delay in seconds
        timeout: Total HTTP timeout in seconds for non-streaming calls
        read_timeout: Idle window in seconds between stream chunks, None
                      to disable
        framing: "blank_line" (records end with a blank line) or
                 "newline" (legacy, one record per line)
        extended_tags: Also recognize the "s" (system) and "e" (error) tags
        max_decode_errors: Malformed records tolerated before the session
                           fails
        response_format: Protocol name sent in X-Response-Format
        default_headers: Headers added to every request
        default_query: Query parameters added to every request
    """
    api_key: str = Field(min_length=1)
    base_url: str = DEFAULT_BASE_URL
    max_retries: int = Field(3, ge=0)
    retry_delay: float = Field(1.0, ge=0)
    max_retry_delay: float = Field(30.0, gt=0)
    timeout: float = Field(600.0, gt=0)
    read_timeout: Optional[float] = Field(60.0, gt=0)
    framing: Literal["blank_line", "newline"] = "blank_line"
    extended_tags: bool = False
    max_decode_errors: int = Field(16, ge=0)
    response_format: str = "vivgrid"
    default_headers: dict[str, str] = Field(default_factory=dict)
    default_query: dict[str, str] = Field(default_factory=dict)

    @classmethod
    def from_env(cls, **overrides: Any) -> "ClientConfig":
        """
        Build a config reading VIV_API_KEY and VIV_BASE_URL from the
        environment. Explicit keyword arguments win.
        """
        values: dict[str, Any] = {}
        if os.environ.get("VIV_API_KEY"):
            values["api_key"] = os.environ["VIV_API_KEY"]
        if os.environ.get("VIV_BASE_URL"):
            values["base_url"] = os.environ["VIV_BASE_URL"]
        values.update(overrides)
        return cls(**values)

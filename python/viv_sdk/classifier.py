"""
Location: python/viv_sdk/classifier.py

Summary:
    Maps decoded Records to typed StreamEvents. Classification never
    raises: a payload that fails to parse becomes an error event.

Usage:
    Used by session.py between the decoder and the event channel.

Example:
    classifier = RecordClassifier()
    event = classifier.classify(Record(tag="c", raw='"Hello"'))
    assert event.data == "Hello"
"""

import json
from typing import Any

from pydantic import BaseModel, ValidationError

from .errors import DecodeError
from .types import (
    ErrorData,
    EventKind,
    FunctionCallData,
    FunctionCallResultData,
    Record,
    StreamEvent,
    UsageData,
)


TAG_TO_KIND = {
    "f": EventKind.FUNCTION_CALL,
    "r": EventKind.FUNCTION_CALL_RESULT,
    "c": EventKind.CONTENT,
    "g": EventKind.REASONING,
    "u": EventKind.USAGE,
    "p": EventKind.END,
    "s": EventKind.SYSTEM,
    "e": EventKind.ERROR,
}

FINISH_MARKER = "finish"

DECODE_ERROR_CODE = "decode_error"

_MODEL_KINDS: dict[EventKind, type[BaseModel]] = {
    EventKind.FUNCTION_CALL: FunctionCallData,
    EventKind.FUNCTION_CALL_RESULT: FunctionCallResultData,
    EventKind.USAGE: UsageData,
    EventKind.ERROR: ErrorData,
}

_TEXT_KINDS = frozenset({EventKind.CONTENT, EventKind.REASONING, EventKind.SYSTEM})


def _parse_text(raw: str) -> str:
    value = json.loads(raw)
    if not isinstance(value, str):
        raise DecodeError(f"expected a JSON string, got {type(value).__name__}")
    return value


def _end_marker(raw: str) -> str:
    """The end payload may be a JSON string or bare text."""
    text = raw.strip()
    try:
        value: Any = json.loads(text)
    except ValueError:
        return text
    return value if isinstance(value, str) else text


class RecordClassifier:
    """
    Classifies records into events.

    content, reasoning and system payloads are JSON strings;
    function_call, function_call_result, usage and error payloads are JSON
    objects validated against their models. The end tag only terminates
    the stream when its payload is the "finish" marker; other payloads on
    that tag are forwarded as unknown events.
    """

    def classify(self, record: Record) -> StreamEvent:
        """
        Classify a single record.

        Args:
            record: Record produced by the decoder

        Returns:
            The typed event, or an error event if the payload is malformed
        """
        raw_text = f"{record.tag}:{record.raw}"
        kind = TAG_TO_KIND.get(record.tag)
        if kind is None:
            return StreamEvent(kind=EventKind.UNKNOWN, data=record.raw, raw=raw_text)

        if kind == EventKind.END:
            marker = _end_marker(record.raw)
            if marker == FINISH_MARKER:
                return StreamEvent(kind=EventKind.END, data=FINISH_MARKER, raw=raw_text)
            return StreamEvent(kind=EventKind.UNKNOWN, data=record.raw, raw=raw_text)

        try:
            if kind in _TEXT_KINDS:
                data: Any = _parse_text(record.raw)
            else:
                data = _MODEL_KINDS[kind].model_validate_json(record.raw)
        except (ValueError, ValidationError, DecodeError) as exc:
            return self._decode_error(kind, raw_text, exc)

        return StreamEvent(kind=kind, data=data, raw=raw_text)

    def _decode_error(
        self,
        kind: EventKind,
        raw_text: str,
        exc: Exception,
    ) -> StreamEvent:
        detail = str(exc).splitlines()[0] if str(exc) else type(exc).__name__
        message = f"Failed to parse {kind.value} record: {detail}"
        return StreamEvent(
            kind=EventKind.ERROR,
            data=ErrorData(code=DECODE_ERROR_CODE, message=message),
            raw=raw_text,
        )

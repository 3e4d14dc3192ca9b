"""
Location: python/viv_sdk/decoder.py

Summary:
    Incremental decoder for the prefix-tagged stream protocol. Turns raw
    bytes, delivered in arbitrary chunks, into an ordered list of Records.

Usage:
    Used by session.py. One decoder lives for the whole session and is
    reset whenever a connection is dropped before a retry.

Example:
    decoder = ProtocolDecoder()
    for chunk in chunks:
        for record in decoder.feed(chunk):
            handle(record)
    last = decoder.flush()
"""

import codecs
import logging
import re
from typing import Iterable, Optional, Union

from .errors import ProtocolError
from .types import Record


logger = logging.getLogger(__name__)

# function_call, function_call_result, content, reasoning, usage, end
CANONICAL_TAGS = frozenset("frcgup")
# adds system and error
EXTENDED_TAGS = CANONICAL_TAGS | frozenset("se")

BLANK_LINE = "\n\n"
NEWLINE = "\n"


def _record_pattern(tags: Iterable[str]) -> "re.Pattern[str]":
    tag_class = "".join(sorted(tags))
    return re.compile(rf"([{re.escape(tag_class)}]):(.+)")


class ProtocolDecoder:
    """
    Splits a byte stream into "<tag>:<payload>" records.

    The buffer grows until a delimiter is found. Every complete segment
    before the last delimiter becomes a candidate record; the trailing
    segment stays buffered, even when it already looks complete, until
    more data arrives or flush() is called at end of stream.

    Segments that do not match the record grammar (blank lines, unknown
    tags, control lines, segments spanning several lines) are dropped and
    counted in ``dropped``.

    Attributes:
        delimiter: Record delimiter, "\\n\\n" or "\\n"
        tags: Recognized prefix tags
        dropped: Number of segments discarded so far
    """

    def __init__(
        self,
        delimiter: str = BLANK_LINE,
        tags: Iterable[str] = CANONICAL_TAGS,
    ):
        if not delimiter:
            raise ValueError("delimiter must not be empty")
        self.delimiter = delimiter
        self.tags = frozenset(tags)
        self.dropped = 0
        self._pattern = _record_pattern(self.tags)
        self._decoder = codecs.getincrementaldecoder("utf-8")(errors="replace")
        self._buffer = ""

    @property
    def pending(self) -> str:
        """Undelimited text currently held back."""
        return self._buffer

    def feed(self, data: Union[bytes, str]) -> list[Record]:
        """
        Append a chunk and return the records it completes.

        Args:
            data: Raw bytes from the transport, or already-decoded text

        Returns:
            Records completed by this chunk, in stream order
        """
        if isinstance(data, str):
            text = data
        else:
            text = self._decoder.decode(data)
        if not text:
            return []

        self._buffer += text
        segments = self._buffer.split(self.delimiter)
        self._buffer = segments.pop()

        records = []
        for segment in segments:
            record = self._parse_or_drop(segment)
            if record is not None:
                records.append(record)
        return records

    def flush(self) -> Optional[Record]:
        """
        Drain the decoder at end of stream.

        Returns:
            The trailing record if the remaining buffer holds one
        """
        self._buffer += self._decoder.decode(b"", final=True)
        remaining, self._buffer = self._buffer, ""
        if not remaining:
            return None
        return self._parse_or_drop(remaining)

    def reset(self) -> None:
        """Discard buffered text and decoder state."""
        if self._buffer:
            logger.debug("Discarding %d buffered characters", len(self._buffer))
        self._buffer = ""
        self._decoder.reset()

    def _parse_or_drop(self, segment: str) -> Optional[Record]:
        if not segment.strip():
            return None
        try:
            return self.parse(segment)
        except ProtocolError as exc:
            self.dropped += 1
            logger.debug("Dropping segment: %s", exc)
            return None

    def parse(self, segment: str) -> Record:
        """
        Parse a single segment into a Record.

        Raises:
            ProtocolError: If the segment is not "<tag>:<payload>" with a
                           recognized tag
        """
        line = segment.strip("\r\n")
        match = self._pattern.fullmatch(line)
        if match is None:
            raise ProtocolError(f"unrecognized segment {line[:80]!r}")
        return Record(tag=match.group(1), raw=match.group(2))

"""
Location: python/viv_sdk/transport.py

Summary:
    HTTP transport layer for the vivgrid wire format. Builds request URLs
    and headers, turns non-2xx responses into classified TransportErrors,
    and exposes a single connection attempt as an async byte iterator.

Usage:
    Used by client.py. The framing convention (blank-line delimited by
    default, newline delimited for legacy servers) is chosen here from
    ClientConfig and handed to the decoder.

Example:
    url = build_url("https://api.vivgrid.com/v1")
    headers = build_headers("sk-...", stream=True)
    async for chunk in open_byte_stream(http, url, payload=body, headers=headers):
        session.feed(chunk)
"""

from typing import AsyncIterator, Optional, TYPE_CHECKING
from urllib.parse import urlencode

import httpx

from .decoder import BLANK_LINE, CANONICAL_TAGS, EXTENDED_TAGS, NEWLINE
from .errors import TransportError, classify_status

if TYPE_CHECKING:
    from .types import ClientConfig


# vivgrid protocol header names
VIV_HEADERS = {
    "AUTHORIZATION": "Authorization",
    "RESPONSE_FORMAT": "X-Response-Format",
    "ACCEPT": "Accept",
    "CONTENT_TYPE": "Content-Type",
}

COMPLETIONS_PATH = "/chat/completions"

EVENT_STREAM = "text/event-stream"

# Record delimiters per framing convention
FRAMING_DELIMITERS = {
    "blank_line": BLANK_LINE,
    "newline": NEWLINE,
}


def build_url(
    base_url: str,
    path: str = COMPLETIONS_PATH,
    query: Optional[dict[str, str]] = None,
) -> str:
    """
    Join the base URL and endpoint path, appending query parameters.

    Args:
        base_url: API root, with or without trailing slash
        path: Endpoint path
        query: Optional query parameters; empty values are skipped

    Returns:
        Full request URL
    """
    url = f"{base_url.rstrip('/')}/{path.lstrip('/')}"
    params = {k: v for k, v in (query or {}).items() if v}
    if params:
        url = f"{url}?{urlencode(params)}"
    return url


def build_headers(
    api_key: str,
    response_format: str = "vivgrid",
    default_headers: Optional[dict[str, str]] = None,
    stream: bool = False,
) -> dict[str, str]:
    """
    Build request headers.

    Streaming requests ask for an event stream and name the record
    protocol in X-Response-Format. Default headers override the built-in
    ones.
    """
    headers = {
        VIV_HEADERS["CONTENT_TYPE"]: "application/json; charset=utf-8",
        VIV_HEADERS["AUTHORIZATION"]: f"Bearer {api_key}",
    }
    if stream:
        headers[VIV_HEADERS["ACCEPT"]] = EVENT_STREAM
        headers[VIV_HEADERS["RESPONSE_FORMAT"]] = response_format
    headers.update(default_headers or {})
    return headers


def decoder_options(config: "ClientConfig") -> tuple[str, frozenset]:
    """Delimiter and tag set for the framing selected in config."""
    delimiter = FRAMING_DELIMITERS[config.framing]
    tags = EXTENDED_TAGS if config.extended_tags else CANONICAL_TAGS
    return delimiter, tags


async def raise_for_status(response: httpx.Response) -> None:
    """
    Raise a classified TransportError for non-2xx responses.

    The response body is read so the error carries the server's message.

    Raises:
        TransportError: With status, error kind and retryable flag set
    """
    if response.is_success:
        return

    body = (await response.aread()).decode("utf-8", errors="replace")
    status = response.status_code
    classification = classify_status(status)
    message = f"API request failed with status {status}"
    if body:
        message = f"{message}: {body}"
    raise TransportError(
        message,
        status=status,
        error_kind=classification.kind,
        retryable=classification.retryable,
        body=body,
    )


async def open_byte_stream(
    http: httpx.AsyncClient,
    url: str,
    *,
    payload: dict,
    headers: dict[str, str],
) -> AsyncIterator[bytes]:
    """
    Perform one streaming POST and yield raw body chunks.

    Non-2xx responses raise before any bytes are yielded. The connection
    is closed when the iterator is closed or garbage collected.

    Yields:
        Non-empty byte chunks as they arrive
    """
    async with http.stream("POST", url, json=payload, headers=headers) as response:
        await raise_for_status(response)
        async for chunk in response.aiter_bytes():
            if chunk:
                yield chunk

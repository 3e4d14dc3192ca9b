"""
Location: python/viv_sdk/client.py

Summary:
    Main VivClient class for the viv-sdk. Sends chat completion requests
    to the vivgrid API, either as a single JSON response or as an
    incremental event stream with automatic retries.

Usage:
    The primary entry point for using the SDK. Create a VivClient with an
    API key (or a ClientConfig), then call stream() or create().

Example:
    from viv_sdk import VivClient

    async with VivClient(api_key="sk-...") as client:
        stream = await client.stream(
            messages=[{"role": "user", "content": "Say this is a test"}]
        )
        async for event in stream:
            print(event.kind, event.data)
"""

import os
from typing import Any, Optional, Union

import httpx

from .errors import VivError
from .retry import RetryController
from .session import StreamSession
from .transport import build_headers, build_url, open_byte_stream, raise_for_status
from .types import ChatMessage, ClientConfig, CompletionRequest, CompletionResponse


MessageInput = Union[ChatMessage, dict[str, Any]]


class VivClient:
    """
    Async client for the vivgrid chat completions API.

    Attributes:
        config: Effective client configuration
        base_url: Base URL for API requests (trailing slash removed)
    """

    def __init__(
        self,
        api_key: Optional[str] = None,
        *,
        config: Optional[ClientConfig] = None,
        http_client: Optional[httpx.AsyncClient] = None,
        **options: Any,
    ):
        """
        Initialize the VivClient.

        Args:
            api_key: Bearer token; falls back to config or VIV_API_KEY
            config: Optional ClientConfig; keyword options override it
            http_client: Optional pre-configured httpx.AsyncClient
            **options: Any ClientConfig field (base_url, max_retries, ...)

        Raises:
            VivError: If no API key is available
        """
        if api_key:
            options["api_key"] = api_key
        if config is not None:
            config = ClientConfig(**{**config.model_dump(), **options})
        else:
            if not options.get("api_key") and not os.environ.get("VIV_API_KEY"):
                raise VivError("api_key is required")
            config = ClientConfig.from_env(**options)

        self.config = config
        self.base_url = config.base_url.rstrip("/")

        self._retry = RetryController.from_config(config)
        self._owns_http = http_client is None
        self._http = http_client or httpx.AsyncClient(timeout=config.timeout)

    @property
    def max_retries(self) -> int:
        return self.config.max_retries

    async def close(self) -> None:
        """Close the HTTP client if this client created it."""
        if self._owns_http:
            await self._http.aclose()

    async def __aenter__(self) -> "VivClient":
        """Enter async context manager."""
        return self

    async def __aexit__(self, *args) -> None:
        """Exit async context manager and close resources."""
        await self.close()

    async def stream(
        self,
        messages: Optional[list[MessageInput]] = None,
        *,
        request: Optional[CompletionRequest] = None,
        **params: Any,
    ) -> StreamSession:
        """
        Start a streaming chat completion.

        The request runs in a background task; the returned session is
        live immediately. Transient failures are retried per the client's
        retry policy, re-issuing the whole request.

        Args:
            messages: Conversation messages (ignored if request is given)
            request: Fully built CompletionRequest
            **params: Extra request fields (temperature, max_tokens, ...)

        Returns:
            StreamSession delivering typed events
        """
        payload = self._build_request(messages, request, params).to_payload(stream=True)
        url = self._url()
        headers = build_headers(
            self.config.api_key,
            self.config.response_format,
            self.config.default_headers,
            stream=True,
        )

        def request_fn():
            return open_byte_stream(self._http, url, payload=payload, headers=headers)

        session = StreamSession.from_config(self.config)
        session.start(self._retry.run(request_fn, session))
        return session

    async def create(
        self,
        messages: Optional[list[MessageInput]] = None,
        *,
        request: Optional[CompletionRequest] = None,
        **params: Any,
    ) -> CompletionResponse:
        """
        Create a chat completion without streaming.

        Args:
            messages: Conversation messages (ignored if request is given)
            request: Fully built CompletionRequest
            **params: Extra request fields

        Returns:
            Parsed CompletionResponse

        Raises:
            APIError: On a non-retryable failure
            ExhaustedRetriesError: When retries are used up
        """
        payload = self._build_request(messages, request, params).to_payload()
        url = self._url()
        headers = build_headers(
            self.config.api_key,
            self.config.response_format,
            self.config.default_headers,
        )

        async def attempt() -> CompletionResponse:
            response = await self._http.post(url, json=payload, headers=headers)
            await raise_for_status(response)
            return CompletionResponse.model_validate(response.json())

        return await self._retry.call(attempt)

    def _url(self) -> str:
        return build_url(self.base_url, query=self.config.default_query)

    def _build_request(
        self,
        messages: Optional[list[MessageInput]],
        request: Optional[CompletionRequest],
        params: dict[str, Any],
    ) -> CompletionRequest:
        if request is not None:
            if params:
                return request.model_copy(update=params)
            return request
        if not messages:
            raise VivError("messages are required")
        return CompletionRequest(messages=messages, **params)

from __future__ import annotations

from collections.abc import Callable
from typing import Any

import anthropic
import httpx
from loguru import logger
from tenacity import AsyncRetrying, retry_if_exception_type

from graded_chat.credentials import ANTHROPIC, CredentialStore, require_credential
from graded_chat.errors import TransportError
from graded_chat.providers.common import RETRYABLE_STATUS_CODES, default_retry_kwargs
from graded_chat.sse_parser import SseStreamParser, StreamResult, TextDelta
from graded_chat.tools.base import Tool

API_VERSION = "2023-06-01"
_STREAM_TIMEOUT = httpx.Timeout(connect=15.0, read=300.0, write=30.0, pool=15.0)


class AnthropicProvider:
    """Messages API transport.

    Streaming calls go over ``httpx`` and are decoded by ``SseStreamParser``;
    single-shot calls (structured extraction) use the ``anthropic`` SDK.
    """

    def __init__(
        self,
        credentials: CredentialStore,
        *,
        base_url: str = "https://api.anthropic.com",
        max_tokens: int = 8192,
        http_client: httpx.AsyncClient | None = None,
        retry_kwargs: dict | None = None,
    ):
        self._credentials = credentials
        self._base_url = base_url.rstrip("/")
        self._max_tokens = max_tokens
        self._http = http_client or httpx.AsyncClient(timeout=_STREAM_TIMEOUT)
        self._retry_kwargs = retry_kwargs or default_retry_kwargs()
        self._sdk_client: anthropic.AsyncAnthropic | None = None
        self._sdk_key: str | None = None

    @property
    def endpoint(self) -> str:
        return f"{self._base_url}/v1/messages"

    def convert_tools(self, tools: list[Tool]) -> list[dict]:
        return [
            {
                "name": t.name,
                "description": t.description,
                "input_schema": t.input_schema,
            }
            for t in tools
        ]

    async def aclose(self) -> None:
        await self._http.aclose()
        if self._sdk_client is not None:
            await self._sdk_client.close()

    async def stream_message(
        self,
        model: str,
        system_prompt: str,
        messages: list[dict],
        tools: list[dict] | None = None,
        *,
        on_text_chunk: Callable[[str], None] | None = None,
    ) -> StreamResult:
        """Stream one model invocation and return the reconstructed result.

        Text deltas are handed to ``on_text_chunk`` as they arrive. Raises
        ``TransportError`` for non-2xx responses and connection failures.
        """
        api_key = require_credential(self._credentials, ANTHROPIC)
        body: dict[str, Any] = {
            "model": model,
            "max_tokens": self._max_tokens,
            "system": system_prompt,
            "messages": messages,
            "stream": True,
        }
        if tools:
            body["tools"] = tools

        logger.debug(
            f"API request: model={model}, max_tokens={self._max_tokens}, "
            f"messages={len(messages)}, tools={len(tools or [])}"
        )
        request = self._http.build_request(
            "POST",
            self.endpoint,
            json=body,
            headers={
                "x-api-key": api_key,
                "anthropic-version": API_VERSION,
                "content-type": "application/json",
                "accept": "text/event-stream",
            },
        )

        try:
            response = await self._open_stream(request)
        except httpx.HTTPError as ex:
            raise TransportError(f"Connection to model API failed: {ex}") from ex

        parser = SseStreamParser()
        try:
            async for line in response.aiter_lines():
                for event in parser.feed_line(line):
                    if isinstance(event, TextDelta) and on_text_chunk is not None:
                        on_text_chunk(event.text)
        except httpx.HTTPError as ex:
            raise TransportError(f"Model stream interrupted: {ex}") from ex
        finally:
            await response.aclose()

        result = parser.result()
        logger.debug(
            f"API response: stop_reason={result.stop_reason}, input_tokens={result.input_tokens}, "
            f"output_tokens={result.output_tokens}, tool_calls={len(result.tool_calls)}"
        )
        return result

    async def _open_stream(self, request: httpx.Request) -> httpx.Response:
        async for attempt in AsyncRetrying(**self._retry_kwargs):
            with attempt:
                response = await self._http.send(request, stream=True)
                if not response.is_success:
                    body = await _drain(response)
                    if response.status_code in RETRYABLE_STATUS_CODES:
                        logger.warning(f"Model API returned HTTP {response.status_code}")
                    raise TransportError.from_status(response.status_code, body)
                return response
        raise AssertionError("unreachable")

    async def single_shot(
        self,
        model: str,
        system_prompt: str,
        messages: list[dict],
        *,
        max_tokens: int = 256,
    ) -> tuple[str, int, int]:
        """Non-streaming call returning (text, input_tokens, output_tokens)."""
        client = self._get_sdk_client()
        logger.debug(f"Single-shot API request: model={model}, messages={len(messages)}")
        retry_kwargs = dict(self._retry_kwargs)
        retry_kwargs["retry"] = retry_if_exception_type((
            anthropic.RateLimitError,
            anthropic.APIConnectionError,
            anthropic.APITimeoutError,
        ))
        try:
            async for attempt in AsyncRetrying(**retry_kwargs):
                with attempt:
                    response = await client.messages.create(
                        model=model,
                        max_tokens=max_tokens,
                        system=system_prompt,
                        messages=messages,
                    )
        except anthropic.APIStatusError as ex:
            raise TransportError.from_status(ex.status_code, str(ex.message)) from ex
        except anthropic.APIError as ex:
            raise TransportError(f"Model API call failed: {ex}") from ex

        usage = response.usage
        logger.debug(
            f"Single-shot API response: input_tokens={usage.input_tokens}, "
            f"output_tokens={usage.output_tokens}"
        )
        text = "".join(block.text for block in response.content if getattr(block, "type", "") == "text")
        return text, usage.input_tokens, usage.output_tokens

    def _get_sdk_client(self) -> anthropic.AsyncAnthropic:
        api_key = require_credential(self._credentials, ANTHROPIC)
        if self._sdk_client is None or self._sdk_key != api_key:
            self._sdk_client = anthropic.AsyncAnthropic(api_key=api_key, base_url=self._base_url)
            self._sdk_key = api_key
        return self._sdk_client


async def _drain(response: httpx.Response) -> str:
    try:
        await response.aread()
        return response.text
    finally:
        await response.aclose()

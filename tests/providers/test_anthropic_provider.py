import asyncio
import json
import unittest
from types import SimpleNamespace
from typing import Any

import httpx
from tenacity import wait_none

from graded_chat.credentials import ANTHROPIC, StaticCredentialStore
from graded_chat.errors import ConfigurationError, TransportError
from graded_chat.providers.anthropic_provider import AnthropicProvider
from graded_chat.providers.common import default_retry_kwargs, is_retryable
from tests.streams import message_delta, message_start, text_block, text_reply, tool_block


def _sse_response(lines: list[str], status_code: int = 200) -> httpx.Response:
    return httpx.Response(
        status_code,
        content="\n".join(lines).encode("utf-8"),
        headers={"content-type": "text/event-stream"},
    )


class _FakeTool:
    name = "get_datetime"
    description = "Current date and time"
    input_schema: dict[str, Any] = {"type": "object", "properties": {}}

    async def execute(self, tool_input: dict[str, Any]):
        raise AssertionError("not executed by the provider")


class _FakeSdkMessages:
    def __init__(self, response: object) -> None:
        self._response = response
        self.calls: list[dict] = []

    async def create(self, **kwargs):
        self.calls.append(kwargs)
        return self._response


class AnthropicProviderTests(unittest.TestCase):
    def setUp(self) -> None:
        self.requests: list[httpx.Request] = []

    def _provider(self, handler, *, api_key: str | None = "sk-test", attempts: int = 3) -> AnthropicProvider:
        def recording_handler(request: httpx.Request) -> httpx.Response:
            self.requests.append(request)
            return handler(request)

        credentials = StaticCredentialStore({ANTHROPIC: api_key} if api_key else {})
        return AnthropicProvider(
            credentials,
            base_url="https://api.example.test/",
            max_tokens=1024,
            http_client=httpx.AsyncClient(transport=httpx.MockTransport(recording_handler)),
            retry_kwargs=default_retry_kwargs(attempts=attempts, wait=wait_none()),
        )

    def test_streams_text_and_reports_usage(self) -> None:
        provider = self._provider(lambda request: _sse_response(text_reply("hi there", input_tokens=12, output_tokens=3)))
        chunks: list[str] = []

        result = asyncio.run(
            provider.stream_message(
                "claude-test",
                "be brief",
                [{"role": "user", "content": "hello"}],
                on_text_chunk=chunks.append,
            )
        )

        self.assertEqual("hi there", result.text)
        self.assertEqual(["hi there"], chunks)
        self.assertEqual(12, result.input_tokens)
        self.assertEqual(3, result.output_tokens)
        self.assertEqual("end_turn", result.stop_reason)

        request = self.requests[0]
        self.assertEqual("https://api.example.test/v1/messages", str(request.url))
        self.assertEqual("sk-test", request.headers["x-api-key"])
        self.assertEqual("2023-06-01", request.headers["anthropic-version"])
        body = json.loads(request.content)
        self.assertEqual("claude-test", body["model"])
        self.assertEqual(1024, body["max_tokens"])
        self.assertEqual("be brief", body["system"])
        self.assertTrue(body["stream"])
        self.assertNotIn("tools", body)

    def test_sends_tool_definitions_and_returns_tool_calls(self) -> None:
        lines = (
            message_start()
            + text_block(0, "Checking.")
            + tool_block(1, "toolu_9", "get_datetime", ["{}"])
            + message_delta("tool_use")
        )
        provider = self._provider(lambda request: _sse_response(lines))
        tools = provider.convert_tools([_FakeTool()])

        result = asyncio.run(provider.stream_message("m", "s", [{"role": "user", "content": "time?"}], tools))

        body = json.loads(self.requests[0].content)
        self.assertEqual(
            [{"name": "get_datetime", "description": "Current date and time", "input_schema": _FakeTool.input_schema}],
            body["tools"],
        )
        self.assertEqual("tool_use", result.stop_reason)
        self.assertEqual("toolu_9", result.tool_calls[0].id)

    def test_error_status_raises_transport_error_with_body(self) -> None:
        error_body = '{"type":"error","error":{"type":"invalid_request_error","message":"bad model"}}'
        provider = self._provider(lambda request: httpx.Response(400, text=error_body))

        with self.assertRaises(TransportError) as ctx:
            asyncio.run(provider.stream_message("m", "s", [{"role": "user", "content": "x"}]))

        self.assertEqual(400, ctx.exception.status_code)
        self.assertEqual(error_body, ctx.exception.body)
        self.assertIn("HTTP 400", str(ctx.exception))
        self.assertEqual(1, len(self.requests))

    def test_rate_limit_is_retried_before_streaming(self) -> None:
        responses = [httpx.Response(429, text="slow down"), _sse_response(text_reply("done"))]
        provider = self._provider(lambda request: responses.pop(0))

        result = asyncio.run(provider.stream_message("m", "s", [{"role": "user", "content": "x"}]))

        self.assertEqual("done", result.text)
        self.assertEqual(2, len(self.requests))

    def test_rate_limit_gives_up_after_attempts(self) -> None:
        provider = self._provider(lambda request: httpx.Response(529, text="overloaded"), attempts=2)

        with self.assertRaises(TransportError) as ctx:
            asyncio.run(provider.stream_message("m", "s", [{"role": "user", "content": "x"}]))

        self.assertEqual(529, ctx.exception.status_code)
        self.assertEqual(2, len(self.requests))

    def test_connection_failure_is_wrapped(self) -> None:
        def refuse(request: httpx.Request) -> httpx.Response:
            raise httpx.ConnectError("connection refused", request=request)

        provider = self._provider(refuse, attempts=2)

        with self.assertRaises(TransportError) as ctx:
            asyncio.run(provider.stream_message("m", "s", [{"role": "user", "content": "x"}]))

        self.assertIsNone(ctx.exception.status_code)
        self.assertEqual(2, len(self.requests))

    def test_missing_credential_fails_before_any_request(self) -> None:
        provider = self._provider(lambda request: _sse_response(text_reply("never")), api_key=None)

        with self.assertRaises(ConfigurationError):
            asyncio.run(provider.stream_message("m", "s", [{"role": "user", "content": "x"}]))

        self.assertEqual([], self.requests)

    def test_single_shot_uses_sdk_client(self) -> None:
        provider = self._provider(lambda request: _sse_response([]))
        response = SimpleNamespace(
            content=[SimpleNamespace(type="text", text='{"city": "Baltimore"}')],
            usage=SimpleNamespace(input_tokens=30, output_tokens=9),
        )
        messages = _FakeSdkMessages(response)
        provider._sdk_client = SimpleNamespace(messages=messages)
        provider._sdk_key = "sk-test"

        text, input_tokens, output_tokens = asyncio.run(
            provider.single_shot("m", "extract", [{"role": "user", "content": "text"}], max_tokens=64)
        )

        self.assertEqual('{"city": "Baltimore"}', text)
        self.assertEqual((30, 9), (input_tokens, output_tokens))
        self.assertEqual(64, messages.calls[0]["max_tokens"])
        self.assertEqual("extract", messages.calls[0]["system"])


class RetryPredicateTests(unittest.TestCase):
    def test_retryable_errors(self) -> None:
        request = httpx.Request("POST", "https://api.example.test")
        self.assertTrue(is_retryable(httpx.ConnectError("x", request=request)))
        self.assertTrue(is_retryable(TransportError.from_status(429, "")))
        self.assertTrue(is_retryable(TransportError.from_status(529, "")))
        self.assertFalse(is_retryable(TransportError.from_status(500, "")))
        self.assertFalse(is_retryable(TransportError("no status")))
        self.assertFalse(is_retryable(ValueError("x")))


if __name__ == "__main__":
    unittest.main()

"""Tests for the Gemini streaming client over a mocked HTTP transport."""

import json

import httpx
import pytest

from gemini_chat.cancellation import CancellationToken
from gemini_chat.errors import EmptyTurnError, InvalidHistoryError, TransportError
from gemini_chat.models.message import AttachmentPart, Message, Role, TextPart
from gemini_chat.streaming import DEFAULT_MODEL, GeminiStreamingClient
from gemini_chat.transport.http import OVERLOADED_MESSAGE, HttpClient, describe_failure
from gemini_chat.transport.sse import iter_events, iter_text


def chunk(text: str) -> str:
    payload = {"candidates": [{"content": {"role": "model", "parts": [{"text": text}]}}]}
    return f"data: {json.dumps(payload)}\n\n"


def sse(*texts: str) -> str:
    return "".join(chunk(t) for t in texts)


class Recorder:
    def __init__(self, *responses: httpx.Response):
        self.responses = list(responses)
        self.requests: list[httpx.Request] = []

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        return self.responses.pop(0)


def make_client(handler, api_key="test-key") -> GeminiStreamingClient:
    http = HttpClient(api_key=api_key, transport=httpx.MockTransport(handler))
    return GeminiStreamingClient(http)


async def collect(stream) -> list[str]:
    return [fragment async for fragment in stream]


def text_parts(text):
    return (TextPart(text=text),)


class TestStreaming:
    @pytest.mark.asyncio
    async def test_fragments_in_order(self):
        rec = Recorder(httpx.Response(200, text=sse("Hel", "lo ", "world")))
        client = make_client(rec)
        ctx = client.open_context("s1")

        assert await collect(client.send_turn(ctx, text_parts("Hi"))) == ["Hel", "lo ", "world"]

        request = rec.requests[0]
        assert request.url.path == f"/v1beta/models/{DEFAULT_MODEL}:streamGenerateContent"
        assert request.url.params["alt"] == "sse"
        assert request.headers["x-goog-api-key"] == "test-key"
        assert json.loads(request.content) == {"contents": [{"role": "user", "parts": [{"text": "Hi"}]}]}

    @pytest.mark.asyncio
    async def test_completed_turn_extends_context(self):
        rec = Recorder(
            httpx.Response(200, text=sse("Hello", "!")),
            httpx.Response(200, text=sse("Sure")),
        )
        client = make_client(rec)
        ctx = client.open_context("s1")
        await collect(client.send_turn(ctx, text_parts("Hi")))
        assert client.cached_context("s1") is ctx

        await collect(client.send_turn(ctx, text_parts("Again")))
        body = json.loads(rec.requests[1].content)
        assert [c["role"] for c in body["contents"]] == ["user", "model", "user"]
        assert body["contents"][1]["parts"] == [{"text": "Hello!"}]

    @pytest.mark.asyncio
    async def test_seeded_context(self):
        rec = Recorder(httpx.Response(200, text=sse("ok")))
        client = make_client(rec)
        seed = [Message.user("first"), Message(role=Role.MODEL, parts=text_parts("reply"))]
        ctx = client.open_context("s1", seed)
        att = AttachmentPart(mime_type="image/png", name="a.png", data="QUJD")
        await collect(client.send_turn(ctx, (TextPart(text="look"), att)))

        contents = json.loads(rec.requests[0].content)["contents"]
        assert [c["role"] for c in contents] == ["user", "model", "user"]
        assert contents[2]["parts"][1] == {"inlineData": {"mimeType": "image/png", "data": "QUJD"}}

    def test_invalid_seed_rejected(self):
        client = make_client(Recorder())
        with pytest.raises(InvalidHistoryError) as exc:
            client.open_context("s1", [Message.user("a"), Message.user("b")])
        assert exc.value.details == {"session_id": "s1"}
        with pytest.raises(InvalidHistoryError):
            client.open_context("s1", [Message.user("a")])
        assert client.cached_context("s1") is None

    def test_empty_turn_rejected_before_request(self):
        rec = Recorder()
        client = make_client(rec)
        ctx = client.open_context("s1")
        with pytest.raises(EmptyTurnError):
            client.send_turn(ctx, (TextPart(text=""),))
        assert rec.requests == []

    @pytest.mark.asyncio
    async def test_cancelled_turn_is_not_recorded(self):
        client = make_client(Recorder(httpx.Response(200, text=sse("a", "b", "c"))))
        ctx = client.open_context("s1")
        token = CancellationToken()
        received = []
        async for fragment in client.send_turn(ctx, text_parts("Hi"), token):
            received.append(fragment)
            token.cancel()
        assert received == ["a"]
        assert ctx.history == []

    def test_context_cache(self):
        client = make_client(Recorder())
        client.open_context("a")
        client.open_context("b")
        client.discard_context("a")
        assert client.cached_context("a") is None
        assert client.cached_context("b") is not None
        client.clear_contexts()
        assert client.cached_context("b") is None


class TestFailures:
    @pytest.mark.asyncio
    async def test_overloaded(self):
        client = make_client(Recorder(httpx.Response(503, text="Service Unavailable")))
        ctx = client.open_context("s1")
        with pytest.raises(TransportError) as exc:
            await collect(client.send_turn(ctx, text_parts("Hi")))
        assert str(exc.value) == OVERLOADED_MESSAGE
        assert exc.value.status_code == 503
        assert ctx.history == []

    @pytest.mark.asyncio
    async def test_bad_request(self):
        client = make_client(Recorder(httpx.Response(400, text='{"error": "API key not valid"}')))
        ctx = client.open_context("s1")
        with pytest.raises(TransportError) as exc:
            await collect(client.send_turn(ctx, text_parts("Hi")))
        assert str(exc.value).startswith("HTTP 400:")

    @pytest.mark.asyncio
    async def test_network_error(self):
        def handler(request):
            raise httpx.ConnectError("refused", request=request)

        client = make_client(handler)
        ctx = client.open_context("s1")
        with pytest.raises(TransportError):
            await collect(client.send_turn(ctx, text_parts("Hi")))

    @pytest.mark.asyncio
    async def test_blocked_prompt(self):
        body = 'data: {"promptFeedback": {"blockReason": "SAFETY"}}\n\n'
        client = make_client(Recorder(httpx.Response(200, text=body)))
        ctx = client.open_context("s1")
        with pytest.raises(TransportError, match="SAFETY"):
            await collect(client.send_turn(ctx, text_parts("Hi")))

    def test_describe_failure(self):
        assert describe_failure(503, "") == OVERLOADED_MESSAGE
        assert describe_failure(500, '{"status": "UNAVAILABLE"}') == OVERLOADED_MESSAGE
        assert describe_failure(404, "not found") == "HTTP 404: not found"


class TestGenerateText:
    @pytest.mark.asyncio
    async def test_one_shot(self):
        payload = {"candidates": [{"content": {"role": "model", "parts": [{"text": "Trip Planning"}]}}]}
        rec = Recorder(httpx.Response(200, json=payload))
        client = make_client(rec)
        assert await client.generate_text("title please") == "Trip Planning"
        assert rec.requests[0].url.path.endswith(":generateContent")


class TestSse:
    @staticmethod
    async def lines(*items):
        for item in items:
            yield item

    @pytest.mark.asyncio
    async def test_malformed_chunk_skipped(self):
        raw = (chunk("a") + "data: {broken\n\n" + chunk("b")).split("\n")
        assert await collect(iter_text(self.lines(*raw))) == ["a", "b"]

    @pytest.mark.asyncio
    async def test_trailing_event_without_blank_line(self):
        raw = chunk("last").rstrip("\n").split("\n")
        events = await collect(iter_events(self.lines(*raw)))
        assert [e.text for e in events] == ["last"]

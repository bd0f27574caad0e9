"""Tests for agentloop/providers/base.py — the streaming, cancellable client contract."""

import asyncio

import pytest

from agentloop.core.messages import Message, ToolCall
from agentloop.providers.base import (
    ConversationRequest,
    ModelClient,
    ModelResponse,
    RequestKind,
    SimpleRequest,
    StreamDelta,
    TransientModelError,
    build_contents,
)
from conftest import text_turn


class SendOnlyClient(ModelClient):
    name = "send-only"

    async def send(self, request):
        return ModelResponse(text="whole answer", tool_calls=[ToolCall("list_files", {"path": "."})])


# ──────────────────────────────────────────────
# Requests
# ──────────────────────────────────────────────

class TestRequests:

    def test_kinds(self):
        assert SimpleRequest(prompt="x").kind == RequestKind.SIMPLE
        assert ConversationRequest().kind == RequestKind.CONVERSATIONAL

    def test_contents_append_user_message(self):
        history = [Message.user("first"), Message.model_text("reply")]
        contents = build_contents(ConversationRequest(history=history, user_message="second"))
        assert [m.text for m in contents] == ["first", "reply", "second"]

    def test_empty_user_message_not_added(self):
        history = [Message.user("first")]
        contents = build_contents(ConversationRequest(history=history, user_message="  "))
        assert len(contents) == 1

    def test_simple_request_contents(self):
        contents = build_contents(SimpleRequest(prompt="hello"))
        assert [m.text for m in contents] == ["hello"]

    def test_sampling_overrides(self, scripted):
        client = scripted([])
        client.temperature = 0.2
        options = client.resolve_sampling(SimpleRequest(prompt="x", top_p=0.9))
        assert options == {"temperature": 0.2, "top_p": 0.9}


# ──────────────────────────────────────────────
# Streaming
# ──────────────────────────────────────────────

class TestStream:

    @pytest.mark.asyncio
    async def test_chunks_in_order_and_accumulated(self, scripted):
        client = scripted([[
            StreamDelta(thought="Looking"),
            StreamDelta(text="Found "),
            StreamDelta(text="2 files"),
        ]])
        chunks = []
        response = await client.stream(ConversationRequest(), chunks.append).complete

        assert [(c.text, c.thought) for c in chunks] == [("", "Looking"), ("Found ", ""), ("2 files", "")]
        assert response.text == "Found 2 files"
        assert response.thought == "Looking"
        assert response.cancelled is False

    @pytest.mark.asyncio
    async def test_tool_calls_reported_once_from_final_state(self, scripted):
        call = ToolCall("read_file", {"path": "a.md"}, thought_signature=b"sig")
        client = scripted([[StreamDelta(text="Let me look."), StreamDelta(tool_calls=[call])]])
        chunks = []
        response = await client.stream(ConversationRequest(), chunks.append).complete

        assert response.tool_calls == [call]
        assert len(chunks) == 1  # tool-call-only deltas emit no chunk

    @pytest.mark.asyncio
    async def test_cancel_after_n_chunks(self, scripted):
        client = scripted([text_turn("a", "b", "c", "d", "e")])
        received = []
        handle = None

        def on_chunk(chunk):
            received.append(chunk.text)
            if len(received) == 2:
                handle.cancel()

        handle = client.stream(ConversationRequest(), on_chunk)
        response = await handle.complete

        assert received == ["a", "b"]
        assert response.text == "ab"
        assert response.cancelled is True

    @pytest.mark.asyncio
    async def test_error_after_cancel_resolves_partial(self, scripted):
        client = scripted([[StreamDelta(text="part"), TransientModelError("reset")]])
        handle = None

        def on_chunk(chunk):
            handle.cancel()

        handle = client.stream(ConversationRequest(), on_chunk)
        response = await handle.complete
        assert response.text == "part"

    @pytest.mark.asyncio
    async def test_error_without_cancel_rejects(self, scripted):
        client = scripted([[StreamDelta(text="part"), TransientModelError("reset")]])
        with pytest.raises(TransientModelError):
            await client.stream(ConversationRequest(), lambda c: None).complete

    @pytest.mark.asyncio
    async def test_send_only_client_streams_single_chunk(self):
        client = SendOnlyClient(model="m")
        chunks = []
        response = await client.stream(SimpleRequest(prompt="x"), chunks.append).complete
        assert [c.text for c in chunks] == ["whole answer"]
        assert response.tool_calls[0].name == "list_files"

    @pytest.mark.asyncio
    async def test_complete_is_awaitable_future(self, scripted):
        client = scripted([text_turn("x")])
        handle = client.stream(ConversationRequest(), lambda c: None)
        assert isinstance(handle.complete, asyncio.Future)
        await handle.complete

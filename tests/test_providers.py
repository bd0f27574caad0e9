"""Tests for agentloop/providers — wire conversion for Gemini and Ollama (no network)."""

import json
from types import SimpleNamespace
from unittest.mock import AsyncMock, MagicMock

import pytest

from agentloop.core.messages import Message, ToolCall, ToolResult
from agentloop.providers import GeminiClient, OllamaClient, get_provider, list_providers
from agentloop.providers.base import ConversationRequest, SimpleRequest
from agentloop.tools import ToolDefinition


LIST = ToolCall("list_files", {"path": "notes/"}, thought_signature=b"\x07sig")

HISTORY = [
    Message.user("list files in notes/"),
    Message.function_calls([LIST]),
    Message.function_responses([LIST], [ToolResult.ok(["notes/a.md"])]),
]

LIST_DEF = ToolDefinition(
    name="list_files",
    description="List files in a directory.",
    parameters={
        "type": "object",
        "properties": {
            "path": {"type": "string", "description": "Directory"},
            "names": {"type": "array", "items": {"type": "string"}},
        },
        "required": ["path"],
    },
)


async def agen(items):
    for item in items:
        yield item


# ──────────────────────────────────────────────
# Factory
# ──────────────────────────────────────────────

class TestFactory:

    def test_list_providers(self):
        assert set(list_providers()) == {"gemini", "ollama"}

    def test_unknown_provider(self):
        with pytest.raises(ValueError, match="Unknown provider"):
            get_provider("nope")


# ──────────────────────────────────────────────
# Gemini
# ──────────────────────────────────────────────

@pytest.fixture
def gemini(monkeypatch):
    monkeypatch.delenv("GOOGLE_API_KEY", raising=False)
    monkeypatch.delenv("GEMINI_API_KEY", raising=False)
    client = GeminiClient(model="gemini-2.5-flash")
    client.genai = MagicMock()
    return client


class TestGeminiConversion:

    def test_contents(self, gemini):
        contents = gemini.convert_contents(HISTORY)

        assert [c["role"] for c in contents] == ["user", "model", "user"]
        call_part = contents[1]["parts"][0]
        assert call_part["function_call"] == {"name": "list_files", "args": {"path": "notes/"}}
        assert call_part["thought_signature"] == b"\x07sig"
        response_part = contents[2]["parts"][0]["function_response"]
        assert response_part == {"name": "list_files", "response": {"success": True, "data": ["notes/a.md"]}}

    def test_tools_uppercase_types(self, gemini):
        tools = gemini.convert_tools([LIST_DEF])
        declaration = tools[0]["function_declarations"][0]
        assert declaration["parameters"]["type"] == "OBJECT"
        assert declaration["parameters"]["properties"]["path"]["type"] == "STRING"
        assert declaration["parameters"]["properties"]["names"]["items"]["type"] == "STRING"

    def test_no_tools(self, gemini):
        assert gemini.convert_tools([]) is None

    def test_parse_parts(self):
        parts = [
            SimpleNamespace(function_call=None, text="Thinking it over", thought=True),
            SimpleNamespace(function_call=None, text="Listing.", thought=False),
            SimpleNamespace(
                function_call=SimpleNamespace(name="list_files", args={"path": "notes/"}),
                thought_signature=b"\x07sig",
            ),
        ]
        delta = GeminiClient.parse_parts(parts)
        assert delta.thought == "Thinking it over"
        assert delta.text == "Listing."
        assert delta.tool_calls == [LIST]

    def test_missing_key(self, gemini):
        assert not gemini.is_configured()
        with pytest.raises(ValueError, match="API key"):
            gemini._model_for(SimpleRequest(prompt="hi"))


class TestGeminiCalls:

    @staticmethod
    def _response(*parts):
        return SimpleNamespace(candidates=[SimpleNamespace(content=SimpleNamespace(parts=list(parts)))])

    @pytest.mark.asyncio
    async def test_send(self, gemini):
        gemini.api_key = "test-key"
        model = gemini.genai.GenerativeModel.return_value
        model.generate_content_async = AsyncMock(return_value=self._response(
            SimpleNamespace(function_call=None, text="Hello", thought=False),
        ))

        request = ConversationRequest(history=HISTORY, tools=[LIST_DEF], prompt="Be brief.", temperature=0.2)
        response = await gemini.send(request)

        assert response.text == "Hello"
        args, kwargs = gemini.genai.GenerativeModel.call_args
        assert args == ("gemini-2.5-flash",)
        assert kwargs["system_instruction"] == "Be brief."
        assert kwargs["tools"][0]["function_declarations"][0]["name"] == "list_files"
        assert model.generate_content_async.call_args.kwargs["generation_config"] == {"temperature": 0.2}

    @pytest.mark.asyncio
    async def test_stream(self, gemini):
        gemini.api_key = "test-key"
        model = gemini.genai.GenerativeModel.return_value
        model.generate_content_async = AsyncMock(return_value=agen([
            self._response(SimpleNamespace(function_call=None, text="Found ", thought=False)),
            self._response(SimpleNamespace(function_call=None, text="2", thought=False)),
        ]))

        chunks = []
        response = await gemini.stream(SimpleRequest(prompt="count"), chunks.append).complete

        assert [c.text for c in chunks] == ["Found ", "2"]
        assert response.text == "Found 2"
        assert model.generate_content_async.call_args.kwargs["stream"] is True


# ──────────────────────────────────────────────
# Ollama
# ──────────────────────────────────────────────

@pytest.fixture
def ollama_client():
    client = OllamaClient(model="qwen3")
    client.client = MagicMock()
    return client


class TestOllamaConversion:

    def test_messages(self, ollama_client):
        converted = ollama_client.convert_messages(HISTORY, system="Be brief.")

        assert converted[0] == {"role": "system", "content": "Be brief."}
        assert converted[1] == {"role": "user", "content": "list files in notes/"}
        assert converted[2]["role"] == "assistant"
        assert converted[2]["tool_calls"] == [{"function": {"name": "list_files", "arguments": {"path": "notes/"}}}]
        assert converted[3]["role"] == "tool"
        assert converted[3]["tool_name"] == "list_files"
        assert json.loads(converted[3]["content"]) == {"success": True, "data": ["notes/a.md"]}

    def test_tools(self, ollama_client):
        tools = ollama_client.convert_tools([LIST_DEF])
        assert tools == [{"type": "function", "function": LIST_DEF.to_dict()}]

    def test_chat_kwargs(self, ollama_client):
        request = ConversationRequest(history=HISTORY[:1], tools=[LIST_DEF], top_p=0.9, model="llama3.2")
        kwargs = ollama_client._chat_kwargs(request)
        assert kwargs["model"] == "llama3.2"
        assert kwargs["options"] == {"top_p": 0.9}
        assert kwargs["tools"][0]["function"]["name"] == "list_files"

    def test_parse_message_string_arguments(self):
        message = SimpleNamespace(
            content="",
            thinking="hmm",
            tool_calls=[SimpleNamespace(function=SimpleNamespace(name="read_file", arguments='{"path": "a.md"}'))],
        )
        delta = OllamaClient.parse_message(message)
        assert delta.thought == "hmm"
        assert delta.tool_calls == [ToolCall("read_file", {"path": "a.md"})]


class TestOllamaCalls:

    @pytest.mark.asyncio
    async def test_send(self, ollama_client):
        ollama_client.client.chat = AsyncMock(return_value=SimpleNamespace(
            message=SimpleNamespace(content="Two files.", thinking=None, tool_calls=None),
        ))
        response = await ollama_client.send(SimpleRequest(prompt="count"))

        assert response.text == "Two files."
        assert ollama_client.client.chat.call_args.kwargs["stream"] is False

    @pytest.mark.asyncio
    async def test_stream_with_tool_call(self, ollama_client):
        call = SimpleNamespace(function=SimpleNamespace(name="list_files", arguments={"path": "notes/"}))
        ollama_client.client.chat = AsyncMock(return_value=agen([
            SimpleNamespace(message=SimpleNamespace(content="Checking.", thinking="", tool_calls=None)),
            SimpleNamespace(message=SimpleNamespace(content="", thinking="", tool_calls=[call])),
        ]))

        chunks = []
        response = await ollama_client.stream(ConversationRequest(history=HISTORY[:1]), chunks.append).complete

        assert [c.text for c in chunks] == ["Checking."]
        assert response.tool_calls == [ToolCall("list_files", {"path": "notes/"})]

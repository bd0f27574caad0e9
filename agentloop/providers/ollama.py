"""Ollama provider with streaming, thinking and native tool calling."""

import json
from typing import Any, AsyncIterator, Dict, List, Optional

from ..core.messages import FunctionCallPart, FunctionResponsePart, Message, Role, TextPart, ToolCall
from ..tools.base import ToolDefinition
from .base import (
    ModelClient,
    ModelRequest,
    ModelResponse,
    RequestKind,
    StreamDelta,
    build_contents,
)


class OllamaClient(ModelClient):
    """Ollama local LLM client."""

    name = "ollama"
    supports_streaming = True
    supports_tools = True

    # Reasoning models that need longer timeouts
    REASONING_MODELS = ["gpt-oss", "deepseek-r1", "qwq", "qwen3"]

    def __init__(self, model: str = "qwen3", api_key: str = None, **kwargs):
        super().__init__(model=model or "qwen3", api_key=api_key, **kwargs)
        self.base_url = kwargs.get("base_url", "http://localhost:11434")
        self.headers = kwargs.get("headers")
        self.think = kwargs.get("think")

        is_reasoning = any(r in self.model.lower() for r in self.REASONING_MODELS)
        timeout = 600.0 if is_reasoning else 120.0  # 10 min for reasoning, 2 min default

        try:
            import httpx
            import ollama
        except ImportError:
            raise ImportError("ollama package required: pip install ollama")
        self.ollama = ollama
        self.client = ollama.AsyncClient(
            host=self.base_url,
            timeout=httpx.Timeout(timeout, connect=30.0),
            headers=self.headers,
        )

    def convert_messages(self, messages: List[Message], system: str = "") -> List[Dict[str, Any]]:
        """Messages to Ollama chat dicts. Each function response is its own tool message."""
        converted = []
        if system:
            converted.append({"role": "system", "content": system})
        for message in messages:
            if message.role == Role.USER:
                converted.append({"role": "user", "content": message.text})
            elif message.role == Role.MODEL:
                entry = {"role": "assistant", "content": message.text}
                calls = [p.call for p in message.parts if isinstance(p, FunctionCallPart)]
                if calls:
                    entry["tool_calls"] = [
                        {"function": {"name": c.name, "arguments": dict(c.arguments)}} for c in calls
                    ]
                converted.append(entry)
            else:
                for part in message.parts:
                    if isinstance(part, FunctionResponsePart):
                        converted.append({
                            "role": "tool",
                            "tool_name": part.name,
                            "content": json.dumps(part.result.to_response(), default=str),
                        })
                    elif isinstance(part, TextPart):
                        converted.append({"role": "user", "content": part.text})
        return converted

    def convert_tools(self, tools: List[ToolDefinition]) -> Optional[List[Dict[str, Any]]]:
        if not tools:
            return None
        return [{"type": "function", "function": t.to_dict()} for t in tools]

    def _chat_kwargs(self, request: ModelRequest) -> Dict[str, Any]:
        if request.kind == RequestKind.SIMPLE:
            messages = [{"role": "user", "content": request.prompt}]
            tools = None
        else:
            messages = self.convert_messages(build_contents(request), request.prompt)
            tools = self.convert_tools(request.tools)

        kwargs = {"model": self.resolve_model(request), "messages": messages}
        if tools:
            kwargs["tools"] = tools
        options = self.resolve_sampling(request)
        if options:
            kwargs["options"] = options
        if self.think is not None:
            kwargs["think"] = self.think
        return kwargs

    @staticmethod
    def parse_message(message) -> StreamDelta:
        if message is None:
            return StreamDelta()
        calls = []
        for tc in getattr(message, "tool_calls", None) or []:
            arguments = tc.function.arguments
            if isinstance(arguments, str):
                arguments = json.loads(arguments) if arguments else {}
            calls.append(ToolCall(name=tc.function.name, arguments=dict(arguments or {})))
        return StreamDelta(
            text=getattr(message, "content", "") or "",
            thought=getattr(message, "thinking", "") or "",
            tool_calls=calls,
        )

    async def send(self, request: ModelRequest) -> ModelResponse:
        response = await self.client.chat(stream=False, **self._chat_kwargs(request))
        delta = self.parse_message(response.message)
        return ModelResponse(text=delta.text, thought=delta.thought, tool_calls=delta.tool_calls)

    async def _iter_stream(self, request: ModelRequest) -> AsyncIterator[StreamDelta]:
        stream = await self.client.chat(stream=True, **self._chat_kwargs(request))
        async for chunk in stream:
            yield self.parse_message(chunk.message)

    def list_models(self) -> List[str]:
        try:
            import ollama
            response = ollama.Client(host=self.base_url, headers=self.headers).list()
            return [m.model for m in response.models]
        except Exception:
            return [self.model]

    def get_config_help(self) -> str:
        return """Ollama (local)

1. Install: https://ollama.com/download
2. Pull a tool-capable model:
   ollama pull qwen3
3. Optional: set base_url in settings.yaml if not on localhost:11434"""

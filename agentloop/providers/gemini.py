"""Google Gemini provider with streaming, thoughts and function calling."""

import os
from collections.abc import Mapping
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


def _to_plain(value: Any) -> Any:
    """Convert proto map/repeated composites into plain dicts and lists."""
    if isinstance(value, Mapping):
        return {k: _to_plain(v) for k, v in value.items()}
    if isinstance(value, (list, tuple)) or type(value).__name__ == "RepeatedComposite":
        return [_to_plain(v) for v in value]
    return value


def _upper_types(schema: Dict[str, Any]) -> Dict[str, Any]:
    """Gemini schema types are uppercase enum names."""
    converted = {}
    for key, value in schema.items():
        if key == "type" and isinstance(value, str):
            converted[key] = value.upper()
        elif key == "properties" and isinstance(value, dict):
            converted[key] = {name: _upper_types(prop) for name, prop in value.items()}
        elif key == "items" and isinstance(value, dict):
            converted[key] = _upper_types(value)
        else:
            converted[key] = value
    return converted


def _part_to_gemini(part) -> Dict[str, Any]:
    if isinstance(part, TextPart):
        return {"text": part.text}
    if isinstance(part, FunctionCallPart):
        converted = {"function_call": {"name": part.call.name, "args": dict(part.call.arguments)}}
        if part.call.thought_signature is not None:
            converted["thought_signature"] = part.call.thought_signature
        return converted
    if isinstance(part, FunctionResponsePart):
        return {"function_response": {"name": part.name, "response": part.result.to_response()}}
    raise TypeError(f"Unsupported part: {part!r}")


class GeminiClient(ModelClient):
    """Google Gemini API client with native tool calling."""

    name = "gemini"
    supports_streaming = True
    supports_tools = True

    MODELS = [
        "gemini-2.5-pro",
        "gemini-2.5-flash",
        "gemini-2.5-flash-lite",
        "gemini-2.0-flash",
    ]

    def __init__(self, model: str = "gemini-2.5-flash", api_key: str = None, **kwargs):
        super().__init__(model=model or "gemini-2.5-flash", api_key=api_key, **kwargs)

        self.api_key = api_key or os.getenv("GOOGLE_API_KEY") or os.getenv("GEMINI_API_KEY")

        try:
            import google.generativeai as genai
        except ImportError:
            raise ImportError("google-generativeai package required: pip install google-generativeai")
        self.genai = genai
        if self.api_key:
            genai.configure(api_key=self.api_key)

    def convert_contents(self, messages: List[Message]) -> List[Dict[str, Any]]:
        """Messages to Gemini content dicts. Tool results travel in a user turn."""
        contents = []
        for message in messages:
            role = "model" if message.role == Role.MODEL else "user"
            contents.append({"role": role, "parts": [_part_to_gemini(p) for p in message.parts]})
        return contents

    def convert_tools(self, tools: List[ToolDefinition]) -> Optional[List[Dict[str, Any]]]:
        if not tools:
            return None
        declarations = []
        for definition in tools:
            declaration = {"name": definition.name, "description": definition.description}
            if definition.parameters.get("properties"):
                declaration["parameters"] = _upper_types(definition.parameters)
            declarations.append(declaration)
        return [{"function_declarations": declarations}]

    def _model_for(self, request: ModelRequest):
        if not self.api_key:
            raise ValueError("Gemini API key not configured. Set GOOGLE_API_KEY or GEMINI_API_KEY")
        tools = None
        system = None
        if request.kind == RequestKind.CONVERSATIONAL:
            tools = self.convert_tools(request.tools)
            system = request.prompt or None
        return self.genai.GenerativeModel(
            self.resolve_model(request),
            tools=tools,
            system_instruction=system,
        )

    def _contents_for(self, request: ModelRequest) -> List[Dict[str, Any]]:
        if request.kind == RequestKind.SIMPLE:
            return [{"role": "user", "parts": [{"text": request.prompt}]}]
        return self.convert_contents(build_contents(request))

    @staticmethod
    def parse_parts(parts) -> StreamDelta:
        """Split response parts into text, thought and function calls."""
        delta = StreamDelta()
        for part in parts or []:
            fc = getattr(part, "function_call", None)
            if fc is not None and getattr(fc, "name", ""):
                delta.tool_calls.append(ToolCall(
                    name=fc.name,
                    arguments=_to_plain(fc.args) if fc.args else {},
                    thought_signature=getattr(part, "thought_signature", None) or None,
                ))
                continue
            text = getattr(part, "text", "")
            if not text:
                continue
            if getattr(part, "thought", False):
                delta.thought += text
            else:
                delta.text += text
        return delta

    def _parse_response(self, response) -> StreamDelta:
        candidates = getattr(response, "candidates", None) or []
        if not candidates:
            return StreamDelta()
        candidate = candidates[0]
        delta = self.parse_parts(getattr(candidate.content, "parts", None))
        grounding = getattr(candidate, "grounding_metadata", None)
        entry_point = getattr(grounding, "search_entry_point", None) if grounding else None
        if entry_point is not None:
            delta.rendered = getattr(entry_point, "rendered_content", "") or ""
        return delta

    async def send(self, request: ModelRequest) -> ModelResponse:
        model = self._model_for(request)
        response = await model.generate_content_async(
            self._contents_for(request),
            generation_config=self.resolve_sampling(request) or None,
        )
        delta = self._parse_response(response)
        return ModelResponse(
            text=delta.text,
            thought=delta.thought,
            tool_calls=delta.tool_calls,
            rendered=delta.rendered,
        )

    async def _iter_stream(self, request: ModelRequest) -> AsyncIterator[StreamDelta]:
        model = self._model_for(request)
        response = await model.generate_content_async(
            self._contents_for(request),
            generation_config=self.resolve_sampling(request) or None,
            stream=True,
        )
        async for chunk in response:
            yield self._parse_response(chunk)

    def list_models(self) -> List[str]:
        """List available Gemini models."""
        if not self.api_key:
            return self.MODELS
        try:
            models = []
            for m in self.genai.list_models():
                if "generateContent" in m.supported_generation_methods:
                    name = m.name.replace("models/", "")
                    if "gemini" in name:
                        models.append(name)
            return sorted(models, reverse=True) if models else self.MODELS
        except Exception:
            return self.MODELS

    def is_configured(self) -> bool:
        return bool(self.api_key)

    def get_config_help(self) -> str:
        return """Google Gemini

1. Get API key: https://aistudio.google.com/apikey
2. Set environment variable:
   export GOOGLE_API_KEY=...

Or add to ~/.agentloop/.env:
   GOOGLE_API_KEY=..."""

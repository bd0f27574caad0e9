"""
Conversation data model.

A conversation is an ordered list of role-tagged messages. Each message holds
parts: plain text, a function call requested by the model, or the response to
one. Messages convert to and from the vendor-neutral wire dict:

    {"role": "model", "parts": [{"functionCall": {"name": ..., "args": {...}},
                                 "thoughtSignature": ...}]}
"""

import base64
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, List, Optional, Union


class Role(str, Enum):
    """Who produced a message."""
    USER = "user"
    MODEL = "model"
    TOOL = "tool"


@dataclass
class ToolCall:
    """A tool invocation requested by the model.

    ``thought_signature`` is an opaque continuation token some models attach to
    a call. It is stored and relayed verbatim, never inspected.
    """
    name: str
    arguments: Dict[str, Any] = field(default_factory=dict)
    thought_signature: Optional[Any] = None


@dataclass
class ToolResult:
    """Outcome of one tool call. Exactly one is produced per ToolCall."""
    success: bool
    data: Any = None
    error: Optional[str] = None

    @classmethod
    def ok(cls, data: Any = None) -> "ToolResult":
        return cls(success=True, data=data)

    @classmethod
    def fail(cls, error: str) -> "ToolResult":
        return cls(success=False, error=error)

    def to_response(self) -> Dict[str, Any]:
        """Payload placed in a functionResponse part."""
        response: Dict[str, Any] = {"success": self.success}
        if self.data is not None:
            response["data"] = self.data
        if self.error is not None:
            response["error"] = self.error
        return response

    @classmethod
    def from_response(cls, response: Dict[str, Any]) -> "ToolResult":
        return cls(
            success=bool(response.get("success")),
            data=response.get("data"),
            error=response.get("error"),
        )


@dataclass
class TextPart:
    text: str


@dataclass
class FunctionCallPart:
    call: ToolCall


@dataclass
class FunctionResponsePart:
    name: str
    result: ToolResult


Part = Union[TextPart, FunctionCallPart, FunctionResponsePart]


def _encode_signature(signature: Any) -> Any:
    # bytes signatures (Gemini) are not JSON-safe
    if isinstance(signature, (bytes, bytearray)):
        return {"base64": base64.b64encode(bytes(signature)).decode("ascii")}
    return signature


def _decode_signature(value: Any) -> Any:
    if isinstance(value, dict) and set(value) == {"base64"}:
        return base64.b64decode(value["base64"])
    return value


def part_to_dict(part: Part) -> Dict[str, Any]:
    """Convert a part to its wire dict."""
    if isinstance(part, TextPart):
        return {"text": part.text}
    if isinstance(part, FunctionCallPart):
        data: Dict[str, Any] = {
            "functionCall": {"name": part.call.name, "args": dict(part.call.arguments)}
        }
        if part.call.thought_signature is not None:
            data["thoughtSignature"] = _encode_signature(part.call.thought_signature)
        return data
    if isinstance(part, FunctionResponsePart):
        return {"functionResponse": {"name": part.name, "response": part.result.to_response()}}
    raise TypeError(f"Unknown part type: {type(part).__name__}")


def part_from_dict(data: Dict[str, Any]) -> Part:
    """Parse a wire dict into a part."""
    if "functionCall" in data:
        fc = data["functionCall"]
        signature = data.get("thoughtSignature", fc.get("thoughtSignature"))
        return FunctionCallPart(ToolCall(
            name=fc.get("name", ""),
            arguments=dict(fc.get("args") or fc.get("arguments") or {}),
            thought_signature=_decode_signature(signature),
        ))
    if "functionResponse" in data:
        fr = data["functionResponse"]
        return FunctionResponsePart(
            name=fr.get("name", ""),
            result=ToolResult.from_response(fr.get("response") or {}),
        )
    if "text" in data:
        return TextPart(text=data["text"])
    raise ValueError(f"Unrecognised part: {sorted(data)}")


@dataclass
class Message:
    """One turn of the conversation."""
    role: Role
    parts: List[Part] = field(default_factory=list)

    @classmethod
    def user(cls, text: str) -> "Message":
        return cls(Role.USER, [TextPart(text)])

    @classmethod
    def model_text(cls, text: str) -> "Message":
        return cls(Role.MODEL, [TextPart(text)])

    @classmethod
    def function_calls(cls, calls: List[ToolCall]) -> "Message":
        """Model turn whose parts are exactly the requested calls."""
        return cls(Role.MODEL, [FunctionCallPart(call) for call in calls])

    @classmethod
    def function_responses(cls, calls: List[ToolCall], results: List[ToolResult]) -> "Message":
        """Tool turn answering ``calls`` one-to-one, in call order."""
        if len(calls) != len(results):
            raise ValueError(f"{len(calls)} calls but {len(results)} results")
        return cls(Role.TOOL, [
            FunctionResponsePart(name=call.name, result=result)
            for call, result in zip(calls, results)
        ])

    @property
    def text(self) -> str:
        return "".join(p.text for p in self.parts if isinstance(p, TextPart))

    @property
    def tool_calls(self) -> List[ToolCall]:
        return [p.call for p in self.parts if isinstance(p, FunctionCallPart)]

    @property
    def tool_responses(self) -> List[FunctionResponsePart]:
        return [p for p in self.parts if isinstance(p, FunctionResponsePart)]

    def to_dict(self) -> Dict[str, Any]:
        return {"role": self.role.value, "parts": [part_to_dict(p) for p in self.parts]}

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Message":
        return cls(
            role=Role(data["role"]),
            parts=[part_from_dict(p) for p in data.get("parts", [])],
        )


def unanswered_calls(history: List[Message]) -> List[ToolCall]:
    """Calls in the last model turn that the following turn does not answer.

    Used to check the call/response pairing before a new user message is added.
    """
    for index in range(len(history) - 1, -1, -1):
        message = history[index]
        if message.role == Role.MODEL and message.tool_calls:
            answered: List[str] = []
            if index + 1 < len(history) and history[index + 1].role == Role.TOOL:
                answered = [r.name for r in history[index + 1].tool_responses]
            pending = []
            for call in message.tool_calls:
                if call.name in answered:
                    answered.remove(call.name)
                else:
                    pending.append(call)
            return pending
        if message.role == Role.USER:
            return []
    return []

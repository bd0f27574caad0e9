"""Base model client interface for LLM backends."""

import asyncio
import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from enum import Enum
from typing import AsyncIterator, Callable, List, Optional, Union

from ..core.messages import Message, ToolCall
from ..tools.base import ToolDefinition

logger = logging.getLogger(__name__)


# === Errors ===

class ModelClientError(Exception):
    """Base error raised by model clients."""

    def __init__(self, message: str, status_code: Optional[int] = None):
        super().__init__(message)
        self.status_code = status_code


class TransientModelError(ModelClientError):
    """Network failure, rate limit or server error. Safe to retry."""


class PermanentModelError(ModelClientError):
    """Auth failure, malformed request or other client error. Never retried."""


# === Requests ===

class RequestKind(Enum):
    """Discriminator for the request variants."""
    SIMPLE = "simple"
    CONVERSATIONAL = "conversational"


@dataclass
class SimpleRequest:
    """A one-shot prompt with no conversation history or tools."""
    prompt: str
    model: Optional[str] = None
    temperature: Optional[float] = None
    top_p: Optional[float] = None
    kind: RequestKind = field(default=RequestKind.SIMPLE, init=False)


@dataclass
class ConversationRequest:
    """A chat turn: prior history, the new user message and advertised tools.

    ``user_message`` may be empty when continuing after tool execution, since
    the tool results are already the last turn of ``history``.
    """
    history: List[Message] = field(default_factory=list)
    user_message: str = ""
    tools: List[ToolDefinition] = field(default_factory=list)
    prompt: str = ""  # extra system instructions
    model: Optional[str] = None
    temperature: Optional[float] = None
    top_p: Optional[float] = None
    kind: RequestKind = field(default=RequestKind.CONVERSATIONAL, init=False)


ModelRequest = Union[SimpleRequest, ConversationRequest]


def build_contents(request: ModelRequest) -> List[Message]:
    """Flatten a request into the ordered turns sent to the model."""
    if request.kind == RequestKind.SIMPLE:
        return [Message.user(request.prompt)] if request.prompt else []
    if request.kind == RequestKind.CONVERSATIONAL:
        contents = list(request.history)
        # Only add the user turn when non-empty: tool continuations send none
        if request.user_message and request.user_message.strip():
            contents.append(Message.user(request.user_message))
        return contents
    raise TypeError(f"Unknown request kind: {request.kind!r}")


# === Responses ===

@dataclass
class ModelResponse:
    """Normalized response from one model turn."""
    text: str = ""
    thought: str = ""
    tool_calls: List[ToolCall] = field(default_factory=list)
    rendered: str = ""  # search grounding HTML, when the provider supplies it
    cancelled: bool = False


@dataclass
class StreamChunk:
    """Incremental text and/or thought delivered to the consumer."""
    text: str = ""
    thought: str = ""


@dataclass
class StreamDelta:
    """What a provider yields per raw chunk, before accumulation.

    Providers merge partial tool-call fragments themselves and only put
    complete calls in ``tool_calls``.
    """
    text: str = ""
    thought: str = ""
    tool_calls: List[ToolCall] = field(default_factory=list)
    rendered: str = ""


StreamCallback = Callable[[StreamChunk], None]


@dataclass
class StreamingResponse:
    """Handle for an in-flight stream.

    ``complete`` resolves with the accumulated response. ``cancel`` stops
    consumption at the next chunk boundary; ``complete`` still resolves with
    whatever was accumulated.
    """
    complete: "asyncio.Future[ModelResponse]"
    cancel: Callable[[], None]


class _StreamAccumulator:
    """Running text/thought/tool-call buffers for one stream."""

    def __init__(self):
        self.text_parts: List[str] = []
        self.thought_parts: List[str] = []
        self.rendered_parts: List[str] = []
        self.tool_calls: List[ToolCall] = []
        self.cancelled = False

    def add(self, delta: StreamDelta) -> Optional[StreamChunk]:
        if delta.text:
            self.text_parts.append(delta.text)
        if delta.thought:
            self.thought_parts.append(delta.thought)
        if delta.rendered:
            self.rendered_parts.append(delta.rendered)
        if delta.tool_calls:
            self.tool_calls.extend(delta.tool_calls)
        if delta.text or delta.thought:
            return StreamChunk(text=delta.text, thought=delta.thought)
        return None

    def response(self) -> ModelResponse:
        return ModelResponse(
            text="".join(self.text_parts),
            thought="".join(self.thought_parts),
            tool_calls=list(self.tool_calls),
            rendered="".join(self.rendered_parts),
            cancelled=self.cancelled,
        )


# === Client ===

class ModelClient(ABC):
    """Abstract base class for model clients.

    Subclasses implement ``send`` and, when they can stream, ``_iter_stream``.
    The base class owns chunk accumulation and cancellation so every provider
    honours the same streaming contract.
    """

    name: str = "base"
    supports_streaming: bool = True
    supports_tools: bool = False

    def __init__(self, model: str = None, api_key: str = None, **kwargs):
        self.model = model
        self.api_key = api_key
        self.kwargs = kwargs
        self.temperature: Optional[float] = kwargs.get("temperature")
        self.top_p: Optional[float] = kwargs.get("top_p")

    @abstractmethod
    async def send(self, request: ModelRequest) -> ModelResponse:
        """Issue one non-streaming request."""

    async def _iter_stream(self, request: ModelRequest) -> AsyncIterator[StreamDelta]:
        """Yield normalized deltas for a streaming request.

        Default for providers without streaming: one delta with the full
        response.
        """
        response = await self.send(request)
        yield StreamDelta(
            text=response.text,
            thought=response.thought,
            tool_calls=response.tool_calls,
            rendered=response.rendered,
        )

    def stream(self, request: ModelRequest, on_chunk: StreamCallback) -> StreamingResponse:
        """Start a streaming request. Must be called from a running event loop."""
        acc = _StreamAccumulator()

        async def consume() -> ModelResponse:
            deltas = self._iter_stream(request)
            try:
                async for delta in deltas:
                    if acc.cancelled:
                        break
                    chunk = acc.add(delta)
                    if chunk is not None:
                        on_chunk(chunk)
            except Exception:
                if acc.cancelled:
                    logger.debug("%s stream failed after cancel; keeping partial output", self.name)
                    return acc.response()
                raise
            finally:
                aclose = getattr(deltas, "aclose", None)
                if aclose is not None:
                    await aclose()
            return acc.response()

        def cancel():
            acc.cancelled = True

        return StreamingResponse(complete=asyncio.ensure_future(consume()), cancel=cancel)

    def resolve_model(self, request: ModelRequest) -> str:
        return request.model or self.model

    def resolve_sampling(self, request: ModelRequest) -> dict:
        """Per-request temperature/top-p overrides over client defaults."""
        options = {}
        temperature = request.temperature if request.temperature is not None else self.temperature
        top_p = request.top_p if request.top_p is not None else self.top_p
        if temperature is not None:
            options["temperature"] = temperature
        if top_p is not None:
            options["top_p"] = top_p
        return options

    def list_models(self) -> List[str]:
        """List available models for this provider."""
        return [self.model] if self.model else []

    def is_configured(self) -> bool:
        """Check if provider is properly configured."""
        return True

    def get_config_help(self) -> str:
        """Get help text for configuring this provider."""
        return f"{self.name} provider"

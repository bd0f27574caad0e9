"""
Model clients - one streaming, cancellable contract over different backends

Supported:
- Gemini (google-generativeai)
- Ollama (local)
"""

from .base import (
    ConversationRequest,
    ModelClient,
    ModelClientError,
    ModelRequest,
    ModelResponse,
    PermanentModelError,
    RequestKind,
    SimpleRequest,
    StreamChunk,
    StreamingResponse,
    TransientModelError,
)
from .gemini import GeminiClient
from .ollama import OllamaClient

PROVIDERS = {
    "gemini": GeminiClient,
    "ollama": OllamaClient,
}


def get_provider(name: str, **kwargs) -> ModelClient:
    """Get a model client instance by provider name."""
    if name not in PROVIDERS:
        raise ValueError(f"Unknown provider: {name}. Available: {list(PROVIDERS.keys())}")
    return PROVIDERS[name](**kwargs)


def list_providers() -> list[str]:
    """List available provider names."""
    return list(PROVIDERS.keys())


__all__ = [
    "ConversationRequest",
    "GeminiClient",
    "ModelClient",
    "ModelClientError",
    "ModelRequest",
    "ModelResponse",
    "OllamaClient",
    "PermanentModelError",
    "RequestKind",
    "SimpleRequest",
    "StreamChunk",
    "StreamingResponse",
    "TransientModelError",
    "get_provider",
    "list_providers",
]

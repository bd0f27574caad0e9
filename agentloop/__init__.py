"""
agentloop - tool-calling conversation runner

Lets a chat model call tools inside a running conversation:
- Streaming, cancellable model clients (Gemini, Ollama)
- Retry with exponential backoff
- Ordered, sequential tool execution
- Confirmation gate for destructive tools
- Persistent sessions
"""

__version__ = "0.1.0"

import os
from pathlib import Path


def get_data_dir() -> Path:
    """Get the user data directory for agentloop."""
    custom_dir = os.environ.get("AGENTLOOP_DATA_DIR")
    if custom_dir:
        return Path(custom_dir)

    # Default to ~/.agentloop
    return Path.home() / ".agentloop"


def ensure_data_dir() -> Path:
    """Ensure the data directory exists with required structure."""
    data_dir = get_data_dir()

    (data_dir / "config").mkdir(parents=True, exist_ok=True)
    (data_dir / "sessions").mkdir(parents=True, exist_ok=True)

    return data_dir

"""
Settings for agentloop.

``settings.yaml`` in the config directory holds the user's choices; API keys
come from the environment or a ``.env`` file.
"""

from dataclasses import dataclass, field
from pathlib import Path
from typing import List, Optional

import yaml
from dotenv import load_dotenv

from . import ensure_data_dir, get_data_dir
from .core.retry import RetryPolicy
from .tools.base import ToolCategory


def get_config_dir() -> Path:
    return ensure_data_dir() / "config"


def load_env():
    """Load ``.env`` from the working directory, then from the data directory."""
    load_dotenv()
    load_dotenv(get_data_dir() / ".env")


def load_config(config_dir: Path = None) -> dict:
    config_path = (config_dir or get_config_dir()) / "settings.yaml"
    if config_path.exists():
        with open(config_path) as f:
            return yaml.safe_load(f) or {}
    return {}


def save_config(config: dict, config_dir: Path = None):
    config_dir = config_dir or get_config_dir()
    config_dir.mkdir(parents=True, exist_ok=True)
    with open(config_dir / "settings.yaml", 'w') as f:
        yaml.dump(config, f, default_flow_style=False)


@dataclass
class AgentConfig:
    """Typed view over settings.yaml."""
    provider: str = "ollama"
    model: Optional[str] = None
    temperature: Optional[float] = None
    top_p: Optional[float] = None
    streaming: bool = True
    retry: RetryPolicy = field(default_factory=RetryPolicy)
    max_turns: int = 25
    permission_timeout: float = 60.0
    tools_root: Path = field(default_factory=Path.cwd)
    enabled_categories: Optional[List[ToolCategory]] = None
    trusted_mode: bool = False

    @classmethod
    def from_dict(cls, data: dict) -> "AgentConfig":
        """Build from the nested settings dict. Raises ValueError on bad values."""
        data = data or {}
        retry = data.get("retry") or {}
        agent = data.get("agent") or {}
        permissions = data.get("permissions") or {}
        tools = data.get("tools") or {}

        max_turns = int(agent.get("max_turns", 25))
        if max_turns < 1:
            raise ValueError(f"agent.max_turns must be >= 1, got {max_turns}")

        timeout = float(permissions.get("timeout_seconds", 60))
        if timeout <= 0:
            raise ValueError(f"permissions.timeout_seconds must be > 0, got {timeout}")

        categories = tools.get("enabled_categories")
        if categories is not None:
            try:
                categories = [ToolCategory(c) for c in categories]
            except ValueError as e:
                raise ValueError(f"tools.enabled_categories: {e}") from e

        return cls(
            provider=data.get("provider", "ollama"),
            model=data.get("model"),
            temperature=data.get("temperature"),
            top_p=data.get("top_p"),
            streaming=bool(data.get("streaming", True)),
            retry=RetryPolicy(
                max_retries=int(retry.get("max_retries", 3)),
                initial_backoff_ms=int(retry.get("initial_backoff_ms", 1000)),
            ),
            max_turns=max_turns,
            permission_timeout=timeout,
            tools_root=Path(tools["root"]).expanduser() if tools.get("root") else Path.cwd(),
            enabled_categories=categories,
            trusted_mode=bool(tools.get("trusted_mode", False)),
        )

    def to_dict(self) -> dict:
        data = {
            "provider": self.provider,
            "streaming": self.streaming,
            "retry": {
                "max_retries": self.retry.max_retries,
                "initial_backoff_ms": self.retry.initial_backoff_ms,
            },
            "agent": {"max_turns": self.max_turns},
            "permissions": {"timeout_seconds": self.permission_timeout},
            "tools": {"root": str(self.tools_root), "trusted_mode": self.trusted_mode},
        }
        for key in ("model", "temperature", "top_p"):
            if getattr(self, key) is not None:
                data[key] = getattr(self, key)
        if self.enabled_categories is not None:
            data["tools"]["enabled_categories"] = [c.value for c in self.enabled_categories]
        return data

    @classmethod
    def load(cls, config_dir: Path = None) -> "AgentConfig":
        return cls.from_dict(load_config(config_dir))

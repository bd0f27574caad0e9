"""
Tools - interface, registry and built-in workspace tools.
"""

from .base import (
    FunctionTool,
    Tool,
    ToolCategory,
    ToolContext,
    ToolDefinition,
    ToolPriority,
    priority_for_name,
    tool,
)
from .registry import ToolRegistry


def default_registry() -> ToolRegistry:
    """Registry holding the built-in workspace tools."""
    from .files import BUILTIN_TOOLS
    return ToolRegistry(list(BUILTIN_TOOLS))


__all__ = [
    "FunctionTool",
    "Tool",
    "ToolCategory",
    "ToolContext",
    "ToolDefinition",
    "ToolPriority",
    "ToolRegistry",
    "default_registry",
    "priority_for_name",
    "tool",
]

"""Registry of available tools."""

import logging
from typing import Any, Dict, List, Optional, Tuple

from .base import Tool, ToolContext, ToolDefinition

logger = logging.getLogger(__name__)

_TYPE_CHECKS = {
    "string": lambda v: isinstance(v, str),
    "integer": lambda v: isinstance(v, int) and not isinstance(v, bool),
    "number": lambda v: isinstance(v, (int, float)) and not isinstance(v, bool),
    "boolean": lambda v: isinstance(v, bool),
    "array": lambda v: isinstance(v, list),
    "object": lambda v: isinstance(v, dict),
}


class ToolRegistry:
    """Holds tools by name and answers which are usable in a session."""

    def __init__(self, tools: Optional[List[Tool]] = None):
        self._tools: Dict[str, Tool] = {}
        for t in tools or []:
            self.register(t)

    def register(self, tool: Tool):
        if tool.name in self._tools:
            logger.warning("Tool %s is already registered, overwriting", tool.name)
        self._tools[tool.name] = tool

    def unregister(self, name: str) -> bool:
        return self._tools.pop(name, None) is not None

    def get(self, name: str) -> Optional[Tool]:
        return self._tools.get(name)

    def all(self) -> List[Tool]:
        return list(self._tools.values())

    def __contains__(self, name: str) -> bool:
        return name in self._tools

    def __len__(self) -> int:
        return len(self._tools)

    def get_enabled_tools(self, context: ToolContext) -> List[Tool]:
        """Tools whose category is enabled for the session."""
        if context.enabled_categories is None:
            return self.all()
        enabled = set(context.enabled_categories)
        return [t for t in self._tools.values() if t.category in enabled]

    def is_enabled(self, name: str, context: ToolContext) -> bool:
        tool = self.get(name)
        return tool is not None and tool in self.get_enabled_tools(context)

    def get_definitions(self, context: ToolContext) -> List[ToolDefinition]:
        """Definitions advertised to the model for this session."""
        return [t.definition() for t in self.get_enabled_tools(context)]

    def requires_confirmation(self, name: str, context: ToolContext) -> bool:
        """Whether a call must pass the permission gate.

        Trusted mode waives confirmation for every tool.
        """
        tool = self.get(name)
        if tool is None or context.trusted_mode:
            return False
        return bool(tool.requires_confirmation)

    def validate_parameters(self, name: str, params: Dict[str, Any]) -> Tuple[bool, List[str]]:
        """Check arguments against the tool's schema."""
        tool = self.get(name)
        if tool is None:
            return False, [f"Tool {name} not found"]

        errors = []
        schema = tool.parameters or {}
        properties = schema.get("properties", {})

        for required in schema.get("required", []):
            if required not in params or params[required] is None:
                errors.append(f"Missing required parameter: {required}")

        for key, value in params.items():
            prop = properties.get(key)
            if prop is None:
                errors.append(f"Unknown parameter: {key}")
                continue
            if value is None:
                continue

            expected = prop.get("type")
            check = _TYPE_CHECKS.get(expected)
            if check and not check(value):
                errors.append(f"Parameter {key} should be {expected} but got {type(value).__name__}")

            if "enum" in prop and value not in prop["enum"]:
                errors.append(f"Parameter {key} must be one of: {', '.join(map(str, prop['enum']))}")

        return not errors, errors

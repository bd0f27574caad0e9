"""Tool interface consumed by the execution engine."""

import asyncio
import inspect
import re
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from enum import Enum, IntEnum
from pathlib import Path
from typing import Any, Callable, Dict, List, Optional

from ..core.messages import ToolResult


class ToolCategory(str, Enum):
    """Coarse grouping used to enable/disable tools per session."""
    READ_ONLY = "read_only"
    FILE_OPERATIONS = "file_operations"
    WEB = "web"
    EXTERNAL = "external"


class ToolPriority(IntEnum):
    """Execution rank within one batch. Lower runs first."""
    LOOKUP = 0   # metadata, listing, search
    READ = 1
    FETCH = 2    # external network reads
    WRITE = 3    # mutating
    DELETE = 4   # destructive


_PRIORITY_PATTERNS = [
    (ToolPriority.DELETE, re.compile(r"^(delete|remove|rm|destroy|drop)(_|$)")),
    (ToolPriority.LOOKUP, re.compile(r"^(list|search|glob|grep|find|stat|get)(_|$)|_(info|metadata)$")),
    (ToolPriority.READ, re.compile(r"^(read|load|open|view)(_|$)")),
    (ToolPriority.FETCH, re.compile(r"^(web|fetch|http|download|google)(_|$)|_search$")),
]


def priority_for_name(name: str) -> ToolPriority:
    """Derive the priority class from a tool name.

    Unknown names are treated as mutating writes.
    """
    lowered = name.lower()
    for priority, pattern in _PRIORITY_PATTERNS:
        if pattern.search(lowered):
            return priority
    return ToolPriority.WRITE


@dataclass
class ToolDefinition:
    """What the model sees: name, description and JSON schema parameters."""
    name: str
    description: str
    parameters: Dict[str, Any] = field(
        default_factory=lambda: {"type": "object", "properties": {}, "required": []}
    )

    def to_dict(self) -> dict:
        return {"name": self.name, "description": self.description, "parameters": self.parameters}


@dataclass
class ToolContext:
    """Explicit per-call context passed down to tool implementations."""
    session_id: str = "default"
    root: Path = field(default_factory=Path.cwd)
    enabled_categories: Optional[List[ToolCategory]] = None  # None = all
    trusted_mode: bool = False
    extra: Dict[str, Any] = field(default_factory=dict)


class Tool(ABC):
    """A named capability the model can invoke."""

    name: str = ""
    description: str = ""
    category: ToolCategory = ToolCategory.READ_ONLY
    requires_confirmation: bool = False
    priority: Optional[ToolPriority] = None
    parameters: Dict[str, Any] = {"type": "object", "properties": {}, "required": []}

    @abstractmethod
    async def execute(self, arguments: Dict[str, Any], context: ToolContext) -> ToolResult:
        """Run the tool. May raise; the engine converts exceptions to failures."""

    def get_priority(self) -> ToolPriority:
        return self.priority if self.priority is not None else priority_for_name(self.name)

    def definition(self) -> ToolDefinition:
        return ToolDefinition(name=self.name, description=self.description, parameters=self.parameters)

    def describe_call(self, arguments: Dict[str, Any]) -> str:
        """One-line progress text for a call."""
        args_str = ", ".join(f"{k}={repr(v)[:50]}" for k, v in arguments.items())
        return f"{self.name}({args_str})"


# === Function tools ===

def parse_docstring(func: Callable) -> Dict[str, Any]:
    """Parse a Google-style docstring into structured parts.

    Returns:
        Dict with 'description', 'params' (name->description), 'returns'
    """
    doc = inspect.getdoc(func) or ""
    if not doc:
        return {"description": f"Function {func.__name__}", "params": {}, "returns": ""}

    description_lines = []
    params = {}
    returns = ""
    section = "description"

    for line in doc.split("\n"):
        stripped = line.strip()

        # Detect section headers
        if stripped.lower() in ("args:", "arguments:", "parameters:", "params:"):
            section = "args"
            continue
        elif stripped.lower() in ("returns:", "return:"):
            section = "returns"
            continue
        elif stripped.lower() in ("raises:", "examples:", "note:", "notes:"):
            section = "other"
            continue

        if section == "description":
            description_lines.append(stripped)
        elif section == "args":
            # "param_name: description" or "param_name (type): description"
            match = re.match(r'^(\w+)\s*(?:\([^)]*\))?\s*:\s*(.+)', stripped)
            if match:
                params[match.group(1)] = match.group(2).strip()
        elif section == "returns":
            if stripped:
                returns = stripped

    # First paragraph only
    paragraph = []
    for line in description_lines:
        if not line and paragraph:
            break
        if line:
            paragraph.append(line)

    return {"description": " ".join(paragraph), "params": params, "returns": returns}


_JSON_TYPES = {int: "integer", bool: "boolean", float: "number", list: "array", dict: "object"}


def schema_from_function(func: Callable) -> Dict[str, Any]:
    """Build a JSON-schema parameter object from a function signature.

    The ``context`` parameter, if present, is injected by the engine and is
    not exposed to the model.
    """
    sig = inspect.signature(func)
    parsed = parse_docstring(func)
    properties = {}
    required = []

    for name, param in sig.parameters.items():
        if name == "context":
            continue
        param_type = "string"
        if param.annotation != inspect.Parameter.empty:
            origin = getattr(param.annotation, "__origin__", param.annotation)
            param_type = _JSON_TYPES.get(origin, "string")

        properties[name] = {
            "type": param_type,
            "description": parsed["params"].get(name, f"The {name} parameter"),
        }
        if param.default == inspect.Parameter.empty:
            required.append(name)

    return {"type": "object", "properties": properties, "required": required}


class FunctionTool(Tool):
    """Wraps a plain (sync or async) function as a tool.

    Sync functions run in a worker thread. A return value that is already a
    ToolResult is passed through; anything else becomes ``ToolResult.ok(value)``.
    """

    def __init__(
        self,
        func: Callable,
        name: str = None,
        description: str = None,
        category: ToolCategory = ToolCategory.READ_ONLY,
        requires_confirmation: bool = False,
        priority: Optional[ToolPriority] = None,
    ):
        self.func = func
        self.name = name or func.__name__
        self.description = description or parse_docstring(func)["description"]
        self.category = category
        self.requires_confirmation = requires_confirmation
        self.priority = priority
        self.parameters = schema_from_function(func)
        self._wants_context = "context" in inspect.signature(func).parameters

    async def execute(self, arguments: Dict[str, Any], context: ToolContext) -> ToolResult:
        kwargs = dict(arguments)
        if self._wants_context:
            kwargs["context"] = context

        if inspect.iscoroutinefunction(self.func):
            output = await self.func(**kwargs)
        else:
            output = await asyncio.to_thread(self.func, **kwargs)

        if isinstance(output, ToolResult):
            return output
        return ToolResult.ok(output)


def tool(
    category: ToolCategory = ToolCategory.READ_ONLY,
    requires_confirmation: bool = False,
    priority: Optional[ToolPriority] = None,
    name: str = None,
) -> Callable[[Callable], FunctionTool]:
    """Decorator turning a function into a FunctionTool."""
    def wrap(func: Callable) -> FunctionTool:
        return FunctionTool(
            func,
            name=name,
            category=category,
            requires_confirmation=requires_confirmation,
            priority=priority,
        )
    return wrap

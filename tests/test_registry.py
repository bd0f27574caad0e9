"""Tests for agentloop/tools — priority classes, function tools and the registry."""

import pytest

from agentloop.core.messages import ToolResult
from agentloop.tools import (
    FunctionTool,
    ToolCategory,
    ToolContext,
    ToolPriority,
    ToolRegistry,
    default_registry,
    priority_for_name,
    tool,
)
from agentloop.tools.base import schema_from_function


# ──────────────────────────────────────────────
# Priority classes
# ──────────────────────────────────────────────

class TestPriorityForName:

    @pytest.mark.parametrize("name,expected", [
        ("list_files", ToolPriority.LOOKUP),
        ("search_files", ToolPriority.LOOKUP),
        ("glob", ToolPriority.LOOKUP),
        ("grep", ToolPriority.LOOKUP),
        ("get_file_info", ToolPriority.LOOKUP),
        ("read_file", ToolPriority.READ),
        ("web_fetch", ToolPriority.FETCH),
        ("google_search", ToolPriority.FETCH),
        ("fetch_url", ToolPriority.FETCH),
        ("write_file", ToolPriority.WRITE),
        ("delete_file", ToolPriority.DELETE),
        ("remove_folder", ToolPriority.DELETE),
    ])
    def test_known_prefixes(self, name, expected):
        assert priority_for_name(name) == expected

    def test_unknown_is_write(self):
        assert priority_for_name("frobnicate") == ToolPriority.WRITE

    def test_prefix_must_be_whole_word(self):
        # "readme" is not a read_* tool, "listen" is not a list_* tool
        assert priority_for_name("readme") == ToolPriority.WRITE
        assert priority_for_name("listen") == ToolPriority.WRITE

    def test_ladder_order(self):
        assert ToolPriority.LOOKUP < ToolPriority.READ < ToolPriority.FETCH < ToolPriority.WRITE < ToolPriority.DELETE


# ──────────────────────────────────────────────
# Function tools
# ──────────────────────────────────────────────

def _sample(context: ToolContext, path: str, limit: int = 10, recursive: bool = False) -> str:
    """Sample tool.

    Args:
        path: Where to look
        limit: Max results
    """
    return path


class TestFunctionTool:

    def test_schema_from_signature(self):
        schema = schema_from_function(_sample)
        assert schema["required"] == ["path"]
        assert "context" not in schema["properties"]
        assert schema["properties"]["limit"] == {"type": "integer", "description": "Max results"}
        assert schema["properties"]["recursive"]["type"] == "boolean"

    def test_description_from_docstring(self):
        assert FunctionTool(_sample).description == "Sample tool."

    @pytest.mark.asyncio
    async def test_sync_function_wrapped_in_ok(self):
        result = await FunctionTool(_sample).execute({"path": "notes/"}, ToolContext())
        assert result == ToolResult.ok("notes/")

    @pytest.mark.asyncio
    async def test_async_function_result_passthrough(self):
        async def ping(url: str) -> ToolResult:
            """Ping a URL."""
            return ToolResult.fail(f"unreachable: {url}")

        result = await FunctionTool(ping).execute({"url": "x"}, ToolContext())
        assert result == ToolResult.fail("unreachable: x")

    def test_decorator_options(self):
        @tool(category=ToolCategory.FILE_OPERATIONS, requires_confirmation=True, priority=ToolPriority.DELETE)
        def purge(path: str) -> str:
            """Purge."""
            return path

        assert isinstance(purge, FunctionTool)
        assert purge.requires_confirmation is True
        assert purge.get_priority() == ToolPriority.DELETE
        assert purge.definition().to_dict()["name"] == "purge"


# ──────────────────────────────────────────────
# Registry
# ──────────────────────────────────────────────

@pytest.fixture
def registry():
    return default_registry()


class TestRegistry:

    def test_builtins_registered(self, registry):
        names = {t.name for t in registry.all()}
        assert {"list_files", "read_file", "search_files", "web_fetch", "write_file", "delete_file"} <= names

    def test_enabled_categories_filter(self, registry):
        context = ToolContext(enabled_categories=[ToolCategory.READ_ONLY])
        names = {d.name for d in registry.get_definitions(context)}
        assert "read_file" in names
        assert "web_fetch" not in names
        assert "write_file" not in names

    def test_all_enabled_by_default(self, registry):
        assert len(registry.get_enabled_tools(ToolContext())) == len(registry)

    def test_requires_confirmation(self, registry):
        assert registry.requires_confirmation("write_file", ToolContext()) is True
        assert registry.requires_confirmation("read_file", ToolContext()) is False
        assert registry.requires_confirmation("write_file", ToolContext(trusted_mode=True)) is False
        assert registry.requires_confirmation("missing", ToolContext()) is False

    def test_register_overwrites(self, registry, caplog):
        @tool(name="read_file")
        def replacement(path: str) -> str:
            """Replacement."""
            return ""

        registry.register(replacement)
        assert registry.get("read_file") is replacement
        assert "already registered" in caplog.text

    def test_unregister(self, registry):
        assert registry.unregister("web_fetch") is True
        assert "web_fetch" not in registry
        assert registry.unregister("web_fetch") is False


class TestValidateParameters:

    def test_valid(self, registry):
        assert registry.validate_parameters("read_file", {"path": "a.md"}) == (True, [])

    def test_missing_required(self, registry):
        valid, errors = registry.validate_parameters("read_file", {})
        assert not valid
        assert errors == ["Missing required parameter: path"]

    def test_unknown_parameter(self, registry):
        _, errors = registry.validate_parameters("read_file", {"path": "a", "mode": "r"})
        assert errors == ["Unknown parameter: mode"]

    def test_type_mismatch(self, registry):
        _, errors = registry.validate_parameters("read_file", {"path": 3})
        assert errors == ["Parameter path should be string but got int"]

    def test_enum_mismatch(self):
        t =FunctionTool(lambda mode: mode, name="set_mode", description="Set mode")
        t.parameters = {
            "type": "object",
            "properties": {"mode": {"type": "string", "enum": ["fast", "slow"]}},
            "required": ["mode"],
        }
        registry = ToolRegistry([t])
        _, errors = registry.validate_parameters("set_mode", {"mode": "medium"})
        assert errors == ["Parameter mode must be one of: fast, slow"]

    def test_unknown_tool(self, registry):
        valid, errors = registry.validate_parameters("nope", {})
        assert not valid
        assert errors == ["Tool nope not found"]

"""Tests for agentloop/tools/files.py — built-in workspace tools."""

import httpx
import pytest

from agentloop.core.messages import ToolCall, ToolResult
from agentloop.core.tool_executor import ToolExecutionEngine
from agentloop.tools import ToolContext, default_registry
from agentloop.tools.files import (
    MAX_READ_CHARS,
    delete_file,
    list_files,
    read_file,
    search_files,
    web_fetch,
    write_file,
)


@pytest.fixture
def workspace(tmp_path):
    notes = tmp_path / "notes"
    notes.mkdir()
    (notes / "a.md").write_text("# A\nremember the milk\n")
    (notes / "b.md").write_text("# B\nnothing here\n")
    (tmp_path / ".hidden").write_text("secret")
    (tmp_path / "src").mkdir()
    (tmp_path / "src" / "main.py").write_text("print('milk')\n")
    return tmp_path


@pytest.fixture
def context(workspace):
    return ToolContext(root=workspace)


# ──────────────────────────────────────────────
# Read-only tools
# ──────────────────────────────────────────────

class TestListFiles:

    def test_lists_directory(self, context):
        assert list_files.func(context, "notes/") == ["notes/a.md", "notes/b.md"]

    def test_root_skips_hidden(self, context):
        assert list_files.func(context) == ["notes/", "src/"]

    def test_glob_pattern(self, context):
        assert list_files.func(context, ".", "**/*.py") == ["src/main.py"]

    def test_missing_directory(self, context):
        with pytest.raises(FileNotFoundError):
            list_files.func(context, "nope")


class TestReadFile:

    def test_reads_text(self, context):
        assert read_file.func(context, "notes/a.md").startswith("# A")

    def test_truncates_long_files(self, context, workspace):
        (workspace / "big.txt").write_text("x" * (MAX_READ_CHARS + 10))
        content = read_file.func(context, "big.txt")
        assert "TRUNCATED" in content
        assert content.startswith("x" * MAX_READ_CHARS)

    def test_escape_rejected(self, context):
        with pytest.raises(PermissionError):
            read_file.func(context, "../outside.txt")


class TestSearchFiles:

    def test_finds_matches_with_line_numbers(self, context):
        matches = search_files.func(context, "milk")
        assert "notes/a.md:2: remember the milk" in matches
        assert "src/main.py:1: print('milk')" in matches

    def test_file_type_filter(self, context):
        assert search_files.func(context, "milk", ".", "py") == ["src/main.py:1: print('milk')"]

    def test_invalid_regex_searched_literally(self, context, workspace):
        (workspace / "odd.txt").write_text("a (b\n")
        assert search_files.func(context, "(b") == ["odd.txt:1: a (b"]

    def test_empty_query(self, context):
        with pytest.raises(ValueError):
            search_files.func(context, "")


# ──────────────────────────────────────────────
# Mutating tools
# ──────────────────────────────────────────────

class TestMutating:

    def test_write_creates_parents(self, context, workspace):
        message = write_file.func(context, "drafts/new.md", "hello")
        assert (workspace / "drafts" / "new.md").read_text() == "hello"
        assert message == "Wrote 5 chars to drafts/new.md"

    def test_delete(self, context, workspace):
        assert delete_file.func(context, "notes/b.md") == "Deleted notes/b.md"
        assert not (workspace / "notes" / "b.md").exists()

    def test_flags(self):
        assert write_file.requires_confirmation and delete_file.requires_confirmation
        assert not read_file.requires_confirmation


# ──────────────────────────────────────────────
# Web fetch
# ──────────────────────────────────────────────

def _client(handler):
    return httpx.AsyncClient(transport=httpx.MockTransport(handler))


class TestWebFetch:

    @pytest.mark.asyncio
    async def test_html_stripped(self):
        def handler(request):
            html = "<html><script>x()</script><body><p>Hello</p> <b>world</b></body></html>"
            return httpx.Response(200, text=html, headers={"content-type": "text/html"})

        async with _client(handler) as client:
            context = ToolContext(extra={"http_client": client})
            result = await web_fetch.execute({"url": "https://example.com"}, context)

        assert result.success
        assert result.data["content"] == "Hello world"

    @pytest.mark.asyncio
    async def test_http_error_raises(self):
        async with _client(lambda request: httpx.Response(404)) as client:
            context = ToolContext(extra={"http_client": client})
            with pytest.raises(httpx.HTTPStatusError):
                await web_fetch.execute({"url": "https://example.com/missing"}, context)

    @pytest.mark.asyncio
    async def test_unsupported_scheme(self):
        result = await web_fetch.execute({"url": "file:///etc/passwd"}, ToolContext())
        assert result == ToolResult.fail("Unsupported URL: file:///etc/passwd")


# ──────────────────────────────────────────────
# Through the engine
# ──────────────────────────────────────────────

class TestThroughEngine:

    @pytest.mark.asyncio
    async def test_escape_becomes_failed_result(self, context):
        engine = ToolExecutionEngine(default_registry())
        results = await engine.execute_batch([ToolCall("read_file", {"path": "../../etc/passwd"})], context)
        assert results[0].success is False
        assert "escapes workspace" in results[0].error

    @pytest.mark.asyncio
    async def test_write_without_gate_handler_denied(self, context, workspace):
        engine = ToolExecutionEngine(default_registry())
        results = await engine.execute_batch([ToolCall("write_file", {"path": "x.md", "content": "y"})], context)
        assert results[0] == ToolResult.fail("denied")
        assert not (workspace / "x.md").exists()

"""
Built-in workspace tools.

Paths are resolved against ``ToolContext.root`` and may not escape it.
Failures raise; the execution engine turns them into failed ToolResults.
"""

import re
from pathlib import Path
from typing import List, Optional

import httpx

from ..core.messages import ToolResult
from .base import FunctionTool, ToolCategory, ToolContext, ToolPriority, tool

MAX_READ_CHARS = 15000
EXCLUDES = {'.git', 'node_modules', '__pycache__', '.venv', 'dist', 'build', '.idea', '.vscode'}


def _resolve(context: ToolContext, path: str) -> Path:
    root = Path(context.root).resolve()
    target = (root / (path or ".")).resolve()
    if target != root and root not in target.parents:
        raise PermissionError(f"Path escapes workspace: {path}")
    return target


def _relative(context: ToolContext, path: Path) -> str:
    try:
        return str(path.relative_to(Path(context.root).resolve()))
    except ValueError:
        return str(path)


# =============================================================================
# READ-ONLY
# =============================================================================

@tool(category=ToolCategory.READ_ONLY)
def list_files(context: ToolContext, path: str = ".", pattern: str = "*") -> List[str]:
    """List files in a directory.

    Args:
        path: Directory path relative to the workspace root
        pattern: Glob pattern like '*.md' or '**/*.py'

    Returns:
        Relative paths, directories suffixed with '/'
    """
    dir_path = _resolve(context, path)
    if not dir_path.is_dir():
        raise FileNotFoundError(f"Directory not found: {path}")

    items = dir_path.iterdir() if pattern == "*" else dir_path.glob(pattern)
    result = []
    for item in sorted(items):
        if item.name.startswith('.') or EXCLUDES.intersection(item.parts):
            continue
        suffix = "/" if item.is_dir() else ""
        result.append(f"{_relative(context, item)}{suffix}")
    return result[:200]


@tool(category=ToolCategory.READ_ONLY)
def read_file(context: ToolContext, path: str) -> str:
    """Read a text file's contents.

    Args:
        path: File path relative to the workspace root
    """
    file_path = _resolve(context, path)
    if not file_path.is_file():
        raise FileNotFoundError(f"File not found: {path}")

    content = file_path.read_text(errors='replace')
    if len(content) > MAX_READ_CHARS:
        content = content[:MAX_READ_CHARS] + f"\n\n... [TRUNCATED - file is {len(content)} chars]"
    return content


@tool(category=ToolCategory.READ_ONLY)
def search_files(context: ToolContext, query: str, path: str = ".", file_type: str = "") -> List[str]:
    """Search for text in files.

    Args:
        query: Text or regular expression to search for
        path: Directory to search in (default: workspace root)
        file_type: File extension like 'md' or 'py' (optional)

    Returns:
        Matching lines as 'path:line: text'
    """
    if not query:
        raise ValueError("No search query provided")

    search_path = _resolve(context, path)
    try:
        matcher = re.compile(query, re.IGNORECASE)
    except re.error:
        matcher = re.compile(re.escape(query), re.IGNORECASE)

    glob = f"**/*.{file_type}" if file_type else "**/*"
    matches = []
    for file_path in sorted(search_path.glob(glob)):
        if not file_path.is_file() or EXCLUDES.intersection(file_path.parts):
            continue
        try:
            lines = file_path.read_text(errors='replace').splitlines()
        except OSError:
            continue
        for number, line in enumerate(lines, 1):
            if matcher.search(line):
                matches.append(f"{_relative(context, file_path)}:{number}: {line.strip()[:200]}")
                if len(matches) >= 50:
                    return matches
    return matches


# =============================================================================
# WEB
# =============================================================================

async def _fetch(url: str, client: Optional[httpx.AsyncClient]) -> httpx.Response:
    headers = {"User-Agent": "agentloop/0.1 (+https://pypi.org/project/agentloop)"}
    if client is not None:
        return await client.get(url, headers=headers, follow_redirects=True)
    async with httpx.AsyncClient(timeout=httpx.Timeout(30.0, connect=10.0)) as fresh:
        return await fresh.get(url, headers=headers, follow_redirects=True)


async def _web_fetch(url: str, context: ToolContext) -> ToolResult:
    """Fetch a URL and return its text content.

    Args:
        url: The http(s) URL to fetch
    """
    if not url.startswith(("http://", "https://")):
        return ToolResult.fail(f"Unsupported URL: {url}")

    # A shared client may be supplied through the context
    response = await _fetch(url, context.extra.get("http_client"))
    response.raise_for_status()

    text = response.text
    if 'text/html' in response.headers.get('content-type', ''):
        text = re.sub(r'<(script|style)[^>]*>.*?</\1>', '', text, flags=re.DOTALL | re.IGNORECASE)
        text = re.sub(r'<[^>]+>', ' ', text)
        text = re.sub(r'\s+', ' ', text).strip()

    if len(text) > MAX_READ_CHARS:
        text = text[:MAX_READ_CHARS] + "\n\n... [TRUNCATED]"
    return ToolResult.ok({"url": str(response.url), "content": text})


web_fetch = FunctionTool(_web_fetch, name="web_fetch", category=ToolCategory.WEB)


# =============================================================================
# MUTATING
# =============================================================================

@tool(category=ToolCategory.FILE_OPERATIONS, requires_confirmation=True)
def write_file(context: ToolContext, path: str, content: str) -> str:
    """Write content to a file, creating or overwriting it.

    Args:
        path: File path relative to the workspace root
        content: The complete file content to write
    """
    file_path = _resolve(context, path)
    file_path.parent.mkdir(parents=True, exist_ok=True)
    file_path.write_text(content)
    return f"Wrote {len(content)} chars to {_relative(context, file_path)}"


@tool(category=ToolCategory.FILE_OPERATIONS, requires_confirmation=True, priority=ToolPriority.DELETE)
def delete_file(context: ToolContext, path: str) -> str:
    """Delete a file.

    Args:
        path: File path relative to the workspace root
    """
    file_path = _resolve(context, path)
    if not file_path.is_file():
        raise FileNotFoundError(f"File not found: {path}")
    file_path.unlink()
    return f"Deleted {_relative(context, file_path)}"


BUILTIN_TOOLS = [list_files, read_file, search_files, web_fetch, write_file, delete_file]

#!/usr/bin/env python3
"""
agentloop CLI - Main entry point for the agentloop command
"""

import asyncio
import logging
import signal
import sys
from pathlib import Path
from typing import List, Optional

import click
import httpx
from rich.logging import RichHandler

from . import __version__, ensure_data_dir
from .config import AgentConfig, get_config_dir, load_env
from .core.messages import Message
from .core.orchestrator import ConversationOrchestrator, OrchestratorResult, OrchestratorState
from .core.permissions import PermissionGate
from .core.retry import with_retry
from .core.session import SessionStore
from .providers import ModelClientError, get_provider, list_providers
from .tools import ToolContext, default_registry
from .ui.terminal import TerminalUI, auto_decision


def _setup_logging(debug: bool):
    logging.basicConfig(
        level=logging.DEBUG if debug else logging.WARNING,
        format="%(message)s",
        datefmt="[%X]",
        handlers=[RichHandler(rich_tracebacks=debug, show_path=debug)],
    )


def _session_store() -> SessionStore:
    return SessionStore(ensure_data_dir() / "sessions" / "sessions.db")


def _resolve_session(store: SessionStore, session_id: str) -> str:
    """Full ID for a session ID or the prefix shown by `agentloop sessions`."""
    try:
        resolved = store.resolve_id(session_id)
    except ValueError as e:
        raise click.ClickException(str(e))
    if resolved is None:
        raise click.ClickException(f"Unknown session: {session_id}")
    return resolved


@click.group(invoke_without_command=True)
@click.option('--version', '-v', is_flag=True, help='Show version')
@click.option('--debug', is_flag=True, help='Verbose logging')
@click.pass_context
def main(ctx, version, debug):
    """
    agentloop - let a chat model use tools in your workspace.

    \b
    Examples:
        agentloop chat "list files in notes/"
        agentloop chat --resume "and now summarize a.md"
        agentloop sessions
        agentloop permissions --allow write_file
    """
    if version:
        click.echo(f"agentloop v{__version__}")
        return

    _setup_logging(debug)
    ensure_data_dir()

    if ctx.invoked_subcommand is None:
        click.echo(ctx.get_help())


def build_orchestrator(
    config: AgentConfig,
    ui: TerminalUI,
    store: SessionStore,
    session_id: str,
    auto_approve: bool = False,
) -> ConversationOrchestrator:
    """Wire provider, retry, tools, permission gate and persistence together."""
    client = get_provider(
        config.provider,
        model=config.model,
        temperature=config.temperature,
        top_p=config.top_p,
    )
    if not client.is_configured():
        raise click.ClickException(f"{config.provider} is not configured.\n\n{client.get_config_help()}")

    handler = auto_decision(True) if auto_approve else ui.confirm_tool
    gate = PermissionGate(handler=handler, timeout=config.permission_timeout, config_dir=get_config_dir())
    return ConversationOrchestrator(
        with_retry(client, config.retry),
        default_registry(),
        persistence=store.writer(session_id),
        progress=ui,
        gate=gate,
        max_turns=config.max_turns,
        streaming=config.streaming,
    )


async def _run_chat(
    orchestrator: ConversationOrchestrator,
    message: str,
    history: List[Message],
    context: ToolContext,
    ui: TerminalUI,
) -> Optional[OrchestratorResult]:
    loop = asyncio.get_running_loop()
    try:
        loop.add_signal_handler(signal.SIGINT, orchestrator.cancel)
    except (NotImplementedError, RuntimeError):
        pass  # Windows, or not the main thread

    result = None
    try:
        async for event in orchestrator.run(message, history, context):
            ui.handle_event(event)
            if event.type == "done":
                result = event.result
    finally:
        try:
            loop.remove_signal_handler(signal.SIGINT)
        except (NotImplementedError, RuntimeError):
            pass
    return result


@main.command()
@click.argument('message')
@click.option('--provider', '-p', type=click.Choice(list_providers()), help='Model provider')
@click.option('--model', '-m', help='Model name')
@click.option('--session', 'session_id', help='Continue a stored session by ID or ID prefix')
@click.option('--resume', is_flag=True, help='Continue the most recent session')
@click.option('--root', type=click.Path(file_okay=False, path_type=Path), help='Workspace root for file tools')
@click.option('--yes', '-y', 'auto_approve', is_flag=True, help='Approve every confirmation prompt')
@click.option('--trusted', is_flag=True, help='Trusted mode: skip confirmation for all tools')
@click.option('--no-stream', is_flag=True, help='Wait for complete responses instead of streaming')
@click.option('--thoughts', is_flag=True, help='Show model reasoning when available')
def chat(message, provider, model, session_id, resume, root, auto_approve, trusted, no_stream, thoughts):
    """Send a message and let the model use tools until it answers."""
    load_env()
    try:
        config = AgentConfig.load(get_config_dir())
    except ValueError as e:
        raise click.ClickException(f"Invalid settings.yaml: {e}")

    if provider:
        config.provider = provider
        if not model:
            config.model = None
    if model:
        config.model = model
    if root:
        config.tools_root = root
    if no_stream:
        config.streaming = False

    store = _session_store()
    if session_id:
        session_id = _resolve_session(store, session_id)
    elif resume:
        session_id = store.latest_session_id()
    if not session_id:
        session_id = store.create_session()
    history = store.load(session_id)

    ui = TerminalUI(show_thoughts=thoughts)
    try:
        orchestrator = build_orchestrator(config, ui, store, session_id, auto_approve=auto_approve)
    except (ImportError, ValueError) as e:
        raise click.ClickException(str(e))

    context = ToolContext(
        session_id=session_id,
        root=config.tools_root,
        enabled_categories=config.enabled_categories,
        trusted_mode=config.trusted_mode or trusted,
    )

    try:
        result = asyncio.run(_run_chat(orchestrator, message, history, context, ui))
    except (ModelClientError, httpx.HTTPError) as e:
        ui.stream_done()
        ui.print_error(str(e))
        sys.exit(1)
    except Exception as e:
        # Provider SDK errors surface verbatim after retries
        ui.stream_done()
        ui.print_error(f"{type(e).__name__}: {e}")
        sys.exit(1)

    if result is not None and result.state == OrchestratorState.MAX_TURNS_REACHED:
        sys.exit(2)


@main.command()
@click.option('--limit', default=20, help='Number of sessions to show')
@click.option('--search', help='Filter by title')
@click.option('--delete', 'delete_id', help='Delete a session by ID or ID prefix')
def sessions(limit, search, delete_id):
    """List or delete stored sessions."""
    store = _session_store()
    ui = TerminalUI()
    if delete_id:
        session_id = _resolve_session(store, delete_id)
        store.delete_session(session_id)
        click.echo(f"Deleted session {session_id}")
        return
    ui.print_sessions(store.list_sessions(limit=limit, search=search))


@main.command()
@click.option('--allow', 'allow', multiple=True, help='Always allow a tool')
@click.option('--deny', 'deny', multiple=True, help='Always deny a tool')
@click.option('--clear', 'clear', multiple=True, help='Remove a saved setting')
@click.option('--reset', is_flag=True, help='Remove all saved settings')
def permissions(allow, deny, clear, reset):
    """Show or change saved tool permissions."""
    gate = PermissionGate(config_dir=get_config_dir())
    if reset:
        gate.reset()
        click.echo("Permissions reset.")
        return
    for name in allow:
        gate.set_always_allow(name)
    for name in deny:
        gate.set_always_deny(name)
    for name in clear:
        gate.clear_override(name)
    TerminalUI().print_permissions(gate.get_overrides())


if __name__ == '__main__':
    main()

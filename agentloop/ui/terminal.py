"""
Terminal UI for agentloop - streamed answers, tool activity and confirmations.
"""

import json
from typing import Callable, Dict, List

from rich.console import Console
from rich.markup import escape
from rich.prompt import Prompt
from rich.table import Table

from ..core.orchestrator import AgentEvent, OrchestratorResult, OrchestratorState
from ..core.permissions import ConfirmationRequest, PermissionDecision


class TerminalUI:
    """Renders orchestrator events and asks for tool confirmations."""

    def __init__(self, console: Console = None, show_thoughts: bool = False):
        self.console = console or Console()
        self.show_thoughts = show_thoughts
        self.is_streaming = False
        self.status = ""
        self.phase = ""

        self.colors = {
            "thought": "dim italic",
            "error": "red",
            "warning": "yellow",
        }

    # === ProgressSink ===

    def update(self, status_text: str, phase: str) -> None:
        self.status = status_text
        self.phase = phase

    # === Output ===

    def stream_text(self, text: str):
        """Stream text to the terminal without newlines."""
        if not text:
            return
        self.is_streaming = True
        self.console.print(text, end="", markup=False, highlight=False)

    def stream_thought(self, text: str):
        if self.show_thoughts and text:
            self.console.print(text, end="", style=self.colors["thought"], markup=False, highlight=False)

    def stream_done(self):
        """Finalize a streamed response with a newline."""
        if self.is_streaming:
            self.console.print()
        self.is_streaming = False

    def print_tool(self, message: str, success: bool = True):
        """Print tool activity with status indicator."""
        indicator = "[green]●[/green]" if success else "[red]●[/red]"
        self.console.print(f"  {indicator} [dim]{escape(message)}[/dim]")

    def print_error(self, message: str):
        self.console.print(f"Error: {message}", style=self.colors["error"], markup=False)

    def print_warning(self, message: str):
        self.console.print(message, style=self.colors["warning"])

    def handle_event(self, event: AgentEvent):
        """Render one orchestrator event."""
        if event.type == "text":
            self.stream_text(event.content)
        elif event.type == "thought":
            self.stream_thought(event.content)
        elif event.type == "tool_start":
            self.stream_done()
        elif event.type == "tool_complete":
            message = event.display or event.tool_name
            if not event.tool_success and event.tool_result is not None:
                message = f"{message} - {event.tool_result.error}"
            self.print_tool(f"{message} ({event.tool_duration:.1f}s)", success=event.tool_success)
        elif event.type == "done":
            self.stream_done()
            if event.result is not None:
                self.print_result(event.result)

    def print_result(self, result: OrchestratorResult):
        if result.state == OrchestratorState.CANCELLED:
            self.console.print("[dim]Stopped[/dim]")
        elif result.state == OrchestratorState.MAX_TURNS_REACHED:
            self.print_warning(f"Max tool iterations reached after {result.turns} turns")
        elif result.degraded:
            self.print_warning("(no summary from the model)")

    def print_sessions(self, sessions: List[Dict]):
        """Print stored sessions, most recent first."""
        if not sessions:
            self.console.print("[dim]No sessions yet.[/dim]")
            return
        table = Table(show_header=True, header_style="bold", box=None)
        table.add_column("ID")
        table.add_column("Title")
        table.add_column("Messages", justify="right")
        table.add_column("Updated")
        for s in sessions:
            table.add_row(s["id"][:8], s["title"], str(s["message_count"]), (s["updated_at"] or "")[:19])
        self.console.print(table)

    def print_permissions(self, overrides: Dict[str, str]):
        if not overrides:
            self.console.print("[dim]No saved permission overrides.[/dim]")
            return
        table = Table(show_header=True, header_style="bold", box=None)
        table.add_column("Tool")
        table.add_column("Setting")
        for name, setting in sorted(overrides.items()):
            style = "green" if setting == "allow" else "red"
            table.add_row(name, f"[{style}]{setting}[/{style}]")
        self.console.print(table)

    # === Confirmation ===

    def confirm_tool(self, request: ConfirmationRequest) -> PermissionDecision:
        """Blocking y/n/a prompt. Runs in a worker thread under the gate."""
        self.stream_done()
        args = json.dumps(request.arguments, default=str)
        if len(args) > 200:
            args = args[:200] + "..."
        self.console.print(f"\n[yellow]Allow[/yellow] [bold]{request.tool_name}[/bold] [dim]{escape(args)}[/dim]")
        answer = Prompt.ask(
            "  [dim]y = yes, n = no, a = yes for this session[/dim]",
            choices=["y", "n", "a"],
            default="n",
            console=self.console,
        )
        return PermissionDecision(confirmed=answer in ("y", "a"), remember_for_session=answer == "a")


def auto_decision(confirmed: bool) -> Callable[[ConfirmationRequest], PermissionDecision]:
    """Non-interactive confirmation handler that always answers the same way."""
    def handler(request: ConfirmationRequest) -> PermissionDecision:
        return PermissionDecision(confirmed=confirmed)
    return handler

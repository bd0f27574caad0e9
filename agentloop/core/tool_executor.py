"""
Sequential tool executor with progress events.

A batch of calls from one model turn is ordered by safety priority (lookups
and reads before writes, deletes last), executed one at a time, and answered
with exactly one ToolResult per call in the original request order.
"""

import asyncio
import logging
import time
from collections import defaultdict
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Callable, Dict, List, Optional

from ..tools.base import ToolContext, ToolPriority, priority_for_name
from ..tools.registry import ToolRegistry
from .cancellation import CancellationToken
from .messages import ToolCall, ToolResult
from .permissions import GateOutcome, PermissionGate

logger = logging.getLogger(__name__)


class EventType(Enum):
    """Types of events emitted during tool execution."""
    TOOL_START = "tool_start"
    TOOL_COMPLETE = "tool_complete"


@dataclass
class ToolEvent:
    """Event emitted during tool execution."""
    event_type: EventType
    tool_name: str
    args: dict = field(default_factory=dict)
    result: Optional[ToolResult] = None
    duration: Optional[float] = None
    success: bool = True
    index: int = 0
    display: str = ""


@dataclass
class ExecutionRecord:
    """One entry of a session's execution history."""
    tool_name: str
    args: dict
    result: ToolResult
    duration: float
    timestamp: float


class ToolExecutionEngine:
    """
    Executes tool-call batches against a registry.

    Usage:
        engine = ToolExecutionEngine(registry, gate)
        engine.on_tool_start(lambda e: print(f"Starting {e.tool_name}"))
        results = await engine.execute_batch(calls, context)
    """

    def __init__(
        self,
        registry: ToolRegistry,
        gate: Optional[PermissionGate] = None,
        cancel_token: Optional[CancellationToken] = None,
    ):
        self.registry = registry
        self.gate = gate or PermissionGate()
        self.cancel_token = cancel_token
        self._on_start: Optional[Callable] = None
        self._on_complete: Optional[Callable] = None
        self._history: Dict[str, List[ExecutionRecord]] = defaultdict(list)

    def on_tool_start(self, callback: Callable[[ToolEvent], Any]):
        """Register callback for tool start events."""
        self._on_start = callback

    def on_tool_complete(self, callback: Callable[[ToolEvent], Any]):
        """Register callback for tool completion events."""
        self._on_complete = callback

    async def _emit(self, callback: Optional[Callable], event: ToolEvent):
        if callback is None:
            return
        result = callback(event)
        if asyncio.iscoroutine(result):
            await result

    def _display(self, call: ToolCall) -> str:
        tool = self.registry.get(call.name)
        if tool is None:
            return f"{call.name}()"
        return tool.describe_call(call.arguments)

    def priority_of(self, call: ToolCall) -> ToolPriority:
        tool = self.registry.get(call.name)
        return tool.get_priority() if tool is not None else priority_for_name(call.name)

    def order_calls(self, calls: List[ToolCall]) -> List[int]:
        """Indices of ``calls`` in execution order. Ties keep request order."""
        return sorted(range(len(calls)), key=lambda i: self.priority_of(calls[i]))

    @property
    def _cancelled(self) -> bool:
        return self.cancel_token is not None and self.cancel_token.cancelled

    async def execute_batch(self, calls: List[ToolCall], context: ToolContext) -> List[ToolResult]:
        """Execute a batch and return results in the same order as ``calls``."""
        results: List[Optional[ToolResult]] = [None] * len(calls)

        for index in self.order_calls(calls):
            call = calls[index]
            if self._cancelled:
                logger.debug("Skipping %s: run cancelled", call.name)
                results[index] = ToolResult.fail("cancelled")
                continue
            results[index] = await self.execute_single(call, context, index=index)

        return results

    async def _run(self, call: ToolCall, context: ToolContext) -> ToolResult:
        tool = self.registry.get(call.name)
        if tool is None:
            return ToolResult.fail(f"Unknown tool: {call.name}")
        if not self.registry.is_enabled(call.name, context):
            return ToolResult.fail(f"Tool {call.name} is not enabled for this session")

        valid, errors = self.registry.validate_parameters(call.name, call.arguments)
        if not valid:
            return ToolResult.fail(f"Invalid parameters: {'; '.join(errors)}")

        if self.registry.requires_confirmation(call.name, context):
            outcome = await self.gate.request(
                call, description=tool.describe_call(call.arguments), cancel_token=self.cancel_token,
            )
            if outcome == GateOutcome.TIMED_OUT:
                return ToolResult.fail("timeout")
            if not outcome.permitted:
                return ToolResult.fail("denied")

        try:
            result = await tool.execute(dict(call.arguments), context)
        except Exception as e:
            logger.debug("Tool %s raised", call.name, exc_info=True)
            return ToolResult.fail(str(e) or type(e).__name__)
        if not isinstance(result, ToolResult):
            result = ToolResult.ok(result)
        return result

    async def execute_single(self, call: ToolCall, context: ToolContext, index: int = 0) -> ToolResult:
        """Execute one call. Never raises for tool-level failures."""
        display = self._display(call)
        await self._emit(self._on_start, ToolEvent(
            event_type=EventType.TOOL_START,
            tool_name=call.name,
            args=dict(call.arguments),
            index=index,
            display=display,
        ))

        start = time.time()
        result = await self._run(call, context)
        duration = time.time() - start

        if result.success:
            logger.debug("Tool %s completed in %.2fs", call.name, duration)
        else:
            logger.info("Tool %s failed: %s", call.name, result.error)

        self._history[context.session_id].append(ExecutionRecord(
            tool_name=call.name,
            args=dict(call.arguments),
            result=result,
            duration=duration,
            timestamp=start,
        ))

        await self._emit(self._on_complete, ToolEvent(
            event_type=EventType.TOOL_COMPLETE,
            tool_name=call.name,
            args=dict(call.arguments),
            result=result,
            duration=duration,
            success=result.success,
            index=index,
            display=display,
        ))
        return result

    def get_execution_history(self, session_id: str) -> List[ExecutionRecord]:
        return list(self._history.get(session_id, []))

    def clear_execution_history(self, session_id: Optional[str] = None):
        if session_id is None:
            self._history.clear()
        else:
            self._history.pop(session_id, None)

"""
Conversation orchestrator: the multi-turn tool-calling loop.

One ``run`` sends the conversation to the model, executes any requested tool
calls, appends the call/response pair to history and calls the model again,
until the model answers with plain text. Progress is yielded as AgentEvents.
"""

import asyncio
import logging
from dataclasses import dataclass, field
from enum import Enum
from typing import AsyncGenerator, AsyncIterator, List, Optional, Protocol

from ..providers.base import (
    ConversationRequest,
    ModelClient,
    ModelResponse,
    StreamChunk,
    StreamingResponse,
)
from ..tools.base import ToolContext
from ..tools.registry import ToolRegistry
from .cancellation import CancellationToken
from .messages import Message, ToolResult, unanswered_calls
from .permissions import PermissionGate
from .session import SessionPersistence
from .tool_executor import ToolEvent, ToolExecutionEngine

logger = logging.getLogger(__name__)

DEFAULT_MAX_TURNS = 25
SUMMARY_PROMPT = "Please summarize what you just did with the tools."
DEGRADED_MESSAGE = "I completed the requested actions but had trouble generating a summary."


class OrchestratorState(str, Enum):
    IDLE = "idle"
    AWAITING_MODEL = "awaiting_model"
    EXECUTING_TOOLS = "executing_tools"
    DONE = "done"
    FAILED = "failed"
    CANCELLED = "cancelled"
    MAX_TURNS_REACHED = "max_turns_reached"


@dataclass
class OrchestratorResult:
    """Terminal outcome of one run."""
    state: OrchestratorState
    text: str = ""
    turns: int = 0
    degraded: bool = False


@dataclass
class AgentEvent:
    """Event emitted by the orchestration loop."""
    type: str  # 'text', 'thought', 'tool_start', 'tool_complete', 'done'
    content: str = ""
    tool_name: str = ""
    tool_args: dict = field(default_factory=dict)
    tool_result: Optional[ToolResult] = None
    tool_duration: float = 0.0
    tool_success: bool = True
    display: str = ""
    result: Optional[OrchestratorResult] = None


class ProgressSink(Protocol):
    def update(self, status_text: str, phase: str) -> None:
        ...


async def _pump(task: asyncio.Future, queue: asyncio.Queue) -> AsyncIterator[AgentEvent]:
    """Yield queued events until ``task`` finishes, then drain the queue."""
    try:
        while not task.done():
            getter = asyncio.ensure_future(queue.get())
            done, _ = await asyncio.wait({task, getter}, return_when=asyncio.FIRST_COMPLETED)
            if getter in done:
                yield getter.result()
            else:
                getter.cancel()
        while not queue.empty():
            yield queue.get_nowait()
    finally:
        if not task.done():
            task.cancel()


class ConversationOrchestrator:
    """
    Drives a conversation until the model produces a final answer.

    Usage:
        orchestrator = ConversationOrchestrator(client, registry)
        async for event in orchestrator.run("list files in notes/", history):
            ...

    ``history`` is mutated in place. Model errors (after any retry wrapping
    the client) end the run in FAILED and are re-raised unchanged.
    """

    def __init__(
        self,
        client: ModelClient,
        registry: ToolRegistry,
        engine: Optional[ToolExecutionEngine] = None,
        persistence: Optional[SessionPersistence] = None,
        progress: Optional[ProgressSink] = None,
        gate: Optional[PermissionGate] = None,
        max_turns: int = DEFAULT_MAX_TURNS,
        streaming: bool = True,
        prompt: str = "",
        model: str = None,
        temperature: float = None,
        top_p: float = None,
    ):
        if max_turns < 1:
            raise ValueError(f"max_turns must be >= 1, got {max_turns}")
        self.client = client
        self.registry = registry
        self.engine = engine or ToolExecutionEngine(registry, gate)
        self.persistence = persistence
        self.progress = progress
        self.max_turns = max_turns
        self.streaming = streaming and client.supports_streaming
        self.prompt = prompt
        self.model = model
        self.temperature = temperature
        self.top_p = top_p

        self.state = OrchestratorState.IDLE
        self.last_result: Optional[OrchestratorResult] = None
        self._token: Optional[CancellationToken] = None
        self._active_stream: Optional[StreamingResponse] = None

    # === Control ===

    def cancel(self):
        """Request cancellation of the current run."""
        if self._token is not None:
            self._token.cancel()
        if self._active_stream is not None:
            self._active_stream.cancel()

    @property
    def cancelled(self) -> bool:
        return self._token is not None and self._token.cancelled

    def _set_state(self, state: OrchestratorState, status: str = ""):
        self.state = state
        logger.debug("Orchestrator -> %s", state.value)
        if self.progress is not None:
            self.progress.update(status or state.value.replace("_", " "), state.value)

    def _persist(self, message: Message):
        if self.persistence is not None:
            self.persistence.append(message)

    def _finish(self, state: OrchestratorState, text: str, turns: int, degraded: bool = False) -> AgentEvent:
        self._set_state(state)
        result = OrchestratorResult(state=state, text=text, turns=turns, degraded=degraded)
        self.last_result = result
        logger.info("Run finished: %s after %d model turn(s)", state.value, turns)
        return AgentEvent(type="done", content=text, result=result)

    # === Model calls ===

    def _request(self, history: List[Message], context: ToolContext, user_message: str = "",
                 with_tools: bool = True) -> ConversationRequest:
        tools = self.registry.get_definitions(context) if with_tools else []
        return ConversationRequest(
            history=list(history),
            user_message=user_message,
            tools=tools,
            prompt=self.prompt,
            model=self.model,
            temperature=self.temperature,
            top_p=self.top_p,
        )

    def _on_chunk(self, queue: asyncio.Queue):
        def on_chunk(chunk: StreamChunk):
            if chunk.thought:
                queue.put_nowait(AgentEvent(type="thought", content=chunk.thought))
                if self.progress is not None:
                    self.progress.update(chunk.thought, "thinking")
            if chunk.text:
                queue.put_nowait(AgentEvent(type="text", content=chunk.text))
        return on_chunk

    async def _call_model(self, request: ConversationRequest, queue: asyncio.Queue,
                          token: CancellationToken) -> ModelResponse:
        if self.streaming:
            handle = self.client.stream(request, self._on_chunk(queue))
            self._active_stream = handle
            if token.cancelled:
                handle.cancel()
            try:
                return await handle.complete
            finally:
                self._active_stream = None

        send = asyncio.ensure_future(self.client.send(request))
        waiter = asyncio.ensure_future(token.wait())
        try:
            done, _ = await asyncio.wait({send, waiter}, return_when=asyncio.FIRST_COMPLETED)
        finally:
            waiter.cancel()
        if send in done:
            response = send.result()
            if response.thought:
                queue.put_nowait(AgentEvent(type="thought", content=response.thought))
            if response.text:
                queue.put_nowait(AgentEvent(type="text", content=response.text))
            return response

        send.cancel()
        await asyncio.gather(send, return_exceptions=True)
        return ModelResponse(cancelled=True)

    # === Tool events ===

    def _route_tool_events(self, queue: asyncio.Queue):
        def on_start(event: ToolEvent):
            queue.put_nowait(AgentEvent(
                type="tool_start",
                tool_name=event.tool_name,
                tool_args=event.args,
                display=event.display,
            ))
            if self.progress is not None:
                self.progress.update(event.display, OrchestratorState.EXECUTING_TOOLS.value)

        def on_complete(event: ToolEvent):
            queue.put_nowait(AgentEvent(
                type="tool_complete",
                tool_name=event.tool_name,
                tool_args=event.args,
                tool_result=event.result,
                tool_duration=event.duration or 0.0,
                tool_success=event.success,
                display=event.display,
            ))

        self.engine.on_tool_start(on_start)
        self.engine.on_tool_complete(on_complete)

    # === Loop ===

    async def run(
        self,
        user_message: str,
        history: Optional[List[Message]] = None,
        context: Optional[ToolContext] = None,
    ) -> AsyncGenerator[AgentEvent, None]:
        """
        Run the loop, yielding events.

        Events:
            text: A chunk of answer text
            thought: A chunk of model reasoning
            tool_start / tool_complete: Tool execution progress
            done: Terminal event carrying the OrchestratorResult
        """
        history = history if history is not None else []
        context = context or ToolContext()
        token = CancellationToken()
        self._token = token
        self.engine.cancel_token = token
        self.last_result = None
        self.state = OrchestratorState.IDLE

        queue: asyncio.Queue = asyncio.Queue()
        self._route_tool_events(queue)
        produced: List[str] = []
        turns = 0

        pending = unanswered_calls(history)
        if pending:
            # A resumed session may end with calls that were never answered
            logger.warning("Answering %d interrupted tool call(s) from a previous run", len(pending))
            repair = Message.function_responses(pending, [ToolResult.fail("interrupted") for _ in pending])
            history.append(repair)
            self._persist(repair)

        if user_message and user_message.strip():
            message = Message.user(user_message)
            history.append(message)
            self._persist(message)

        try:
            while True:
                if token.cancelled:
                    yield self._finish(OrchestratorState.CANCELLED, "".join(produced), turns)
                    return
                if turns >= self.max_turns:
                    logger.warning("Max tool iterations reached (%d)", self.max_turns)
                    yield self._finish(OrchestratorState.MAX_TURNS_REACHED, "".join(produced), turns)
                    return

                turns += 1
                self._set_state(OrchestratorState.AWAITING_MODEL)
                task = asyncio.ensure_future(self._call_model(self._request(history, context), queue, token))
                async for event in _pump(task, queue):
                    yield event
                try:
                    response = task.result()
                except Exception:
                    self._finish(OrchestratorState.FAILED, "".join(produced), turns)
                    raise

                if response.text:
                    produced.append(response.text)
                if response.cancelled or token.cancelled:
                    yield self._finish(OrchestratorState.CANCELLED, "".join(produced), turns)
                    return

                if response.tool_calls:
                    calls = list(response.tool_calls)
                    call_message = Message.function_calls(calls)
                    history.append(call_message)

                    self._set_state(OrchestratorState.EXECUTING_TOOLS, f"running {len(calls)} tool(s)")
                    batch = asyncio.ensure_future(self.engine.execute_batch(calls, context))
                    async for event in _pump(batch, queue):
                        yield event
                    results = batch.result()

                    response_message = Message.function_responses(calls, results)
                    history.append(response_message)
                    self._persist(call_message)
                    self._persist(response_message)
                    # Continue with no new user message: the results are already in history
                    continue

                if not response.text.strip() and turns >= self.max_turns:
                    logger.warning("Empty model response at the turn limit; using degraded message")
                    yield AgentEvent(type="text", content=DEGRADED_MESSAGE)
                    yield self._finish(OrchestratorState.DONE, DEGRADED_MESSAGE, turns, degraded=True)
                    return

                if not response.text.strip():
                    logger.info("Empty model response; asking for a summary")
                    turns += 1
                    self._set_state(OrchestratorState.AWAITING_MODEL, "summarizing")
                    request = self._request(history, context, user_message=SUMMARY_PROMPT, with_tools=False)
                    task = asyncio.ensure_future(self._call_model(request, queue, token))
                    async for event in _pump(task, queue):
                        yield event
                    try:
                        response = task.result()
                    except Exception:
                        self._finish(OrchestratorState.FAILED, "".join(produced), turns)
                        raise

                    if response.cancelled or token.cancelled:
                        produced.append(response.text)
                        yield self._finish(OrchestratorState.CANCELLED, "".join(produced), turns)
                        return
                    if not response.text.strip():
                        logger.warning("Model returned no summary; using degraded message")
                        yield AgentEvent(type="text", content=DEGRADED_MESSAGE)
                        yield self._finish(OrchestratorState.DONE, DEGRADED_MESSAGE, turns, degraded=True)
                        return

                final = Message.model_text(response.text)
                history.append(final)
                self._persist(final)
                yield self._finish(OrchestratorState.DONE, response.text, turns)
                return
        finally:
            self.engine.on_tool_start(None)
            self.engine.on_tool_complete(None)

    async def run_to_completion(
        self,
        user_message: str,
        history: Optional[List[Message]] = None,
        context: Optional[ToolContext] = None,
    ) -> OrchestratorResult:
        """Run without consuming events; return the terminal result."""
        result = None
        async for event in self.run(user_message, history, context):
            if event.type == "done":
                result = event.result
        return result

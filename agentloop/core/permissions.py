"""
Permission gate for tool execution.

Confirmable tool calls wait here for a user decision. Each wait is a small
state machine (``PendingConfirmation``) that ends in exactly one terminal
state: confirmed, denied or timed out. Persistent per-tool overrides live in
``permissions.yaml``; "remember for this session" approvals live in memory.
"""

import asyncio
import inspect
import logging
import threading
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import Any, Awaitable, Callable, Dict, Optional, Set, Union

import yaml

from .cancellation import CancellationToken
from .messages import ToolCall

logger = logging.getLogger(__name__)

DEFAULT_TIMEOUT = 60.0


class ConfirmationState(str, Enum):
    PENDING = "pending"
    CONFIRMED = "confirmed"
    DENIED = "denied"
    TIMED_OUT = "timed_out"


class GateOutcome(str, Enum):
    """Result of passing a call through the gate."""
    ALLOWED = "allowed"        # no prompt needed (override or session allow-list)
    CONFIRMED = "confirmed"
    DENIED = "denied"
    TIMED_OUT = "timed_out"

    @property
    def permitted(self) -> bool:
        return self in (GateOutcome.ALLOWED, GateOutcome.CONFIRMED)


@dataclass
class PermissionDecision:
    confirmed: bool
    remember_for_session: bool = False


@dataclass
class ConfirmationRequest:
    """What the confirmation handler is shown."""
    tool_name: str
    arguments: Dict[str, Any] = field(default_factory=dict)
    description: str = ""


ConfirmationHandler = Callable[
    [ConfirmationRequest],
    Union[PermissionDecision, Awaitable[PermissionDecision]],
]


class PendingConfirmation:
    """One Pending -> {Confirmed, Denied, TimedOut} transition.

    The first transition wins. Later ``resolve()`` / ``time_out()`` calls
    return False and change nothing.
    """

    def __init__(self, request: ConfirmationRequest, timeout: float = DEFAULT_TIMEOUT):
        self.request = request
        self.timeout = timeout
        self.state = ConfirmationState.PENDING
        self.decision: Optional[PermissionDecision] = None
        self._done: Optional[asyncio.Future] = None
        self._timer: Optional[asyncio.TimerHandle] = None

    @property
    def resolved(self) -> bool:
        return self.state != ConfirmationState.PENDING

    def start(self) -> asyncio.Future:
        """Arm the timeout and return a future completing on the terminal state."""
        loop = asyncio.get_running_loop()
        self._done = loop.create_future()
        self._timer = loop.call_later(self.timeout, self.time_out)
        return self._done

    def _finish(self, state: ConfirmationState) -> bool:
        if self.resolved:
            return False
        self.state = state
        if self._timer is not None:
            self._timer.cancel()
        if self._done is not None and not self._done.done():
            self._done.set_result(state)
        return True

    def resolve(self, decision: PermissionDecision) -> bool:
        if self.resolved:
            return False
        self.decision = decision
        state = ConfirmationState.CONFIRMED if decision.confirmed else ConfirmationState.DENIED
        return self._finish(state)

    def time_out(self) -> bool:
        return self._finish(ConfirmationState.TIMED_OUT)

    def deny(self) -> bool:
        return self._finish(ConfirmationState.DENIED)


async def _in_daemon_thread(func: Callable, *args: Any) -> Any:
    """Run a blocking call, such as a terminal prompt, on a daemon thread.

    A call abandoned after a timeout keeps its thread, but that thread does not
    hold up event-loop or interpreter shutdown the way ``asyncio.to_thread``
    workers do.
    """
    loop = asyncio.get_running_loop()
    future = loop.create_future()

    def settle(setter, value):
        if not future.done():
            setter(value)

    def post(setter, value):
        try:
            loop.call_soon_threadsafe(settle, setter, value)
        except RuntimeError:
            pass  # loop already closed; nobody is waiting

    def work():
        try:
            result = func(*args)
        except Exception as e:
            post(future.set_exception, e)
        else:
            post(future.set_result, result)

    threading.Thread(target=work, name="confirmation-handler", daemon=True).start()
    return await future


class PermissionGate:
    """Confirm/deny/timeout checkpoint in front of confirmable tool calls."""

    def __init__(
        self,
        handler: Optional[ConfirmationHandler] = None,
        timeout: float = DEFAULT_TIMEOUT,
        config_dir: Path = None,
    ):
        self.handler = handler
        self.timeout = timeout
        self._config_dir = Path(config_dir) if config_dir else None
        self._overrides: Dict[str, str] = {}  # tool_name -> "allow" | "deny"
        self._session_allowed: Set[str] = set()
        self._load()

    @property
    def _config_path(self) -> Optional[Path]:
        return self._config_dir / "permissions.yaml" if self._config_dir else None

    def _load(self):
        """Load saved permission overrides from YAML."""
        path = self._config_path
        if path is None or not path.exists():
            return
        try:
            with open(path) as f:
                data = yaml.safe_load(f) or {}
        except (OSError, yaml.YAMLError) as e:
            logger.warning("Could not read %s: %s", path, e)
            return
        overrides = data.get("overrides") if isinstance(data, dict) else None
        if not isinstance(overrides, dict):
            overrides = {}
        self._overrides = {
            str(name): value for name, value in overrides.items() if value in ("allow", "deny")
        }

    def _save(self):
        """Save permission overrides to YAML."""
        path = self._config_path
        if path is None:
            return
        try:
            path.parent.mkdir(parents=True, exist_ok=True)
            with open(path, 'w') as f:
                yaml.dump({"overrides": self._overrides}, f, default_flow_style=False)
        except OSError as e:
            logger.warning("Could not write %s: %s", path, e)

    # === Settings ===

    def set_always_allow(self, tool_name: str):
        self._overrides[tool_name] = "allow"
        self._save()

    def set_always_deny(self, tool_name: str):
        self._overrides[tool_name] = "deny"
        self._save()

    def clear_override(self, tool_name: str):
        if self._overrides.pop(tool_name, None) is not None:
            self._save()

    def get_setting(self, tool_name: str) -> str:
        """Current setting for a tool: 'default', 'allow', or 'deny'."""
        return self._overrides.get(tool_name, "default")

    def get_overrides(self) -> Dict[str, str]:
        return dict(self._overrides)

    def is_session_allowed(self, tool_name: str) -> bool:
        return tool_name in self._session_allowed

    def reset(self):
        """Drop overrides and the session allow-list."""
        self._overrides = {}
        self._session_allowed.clear()
        path = self._config_path
        if path is not None and path.exists():
            path.unlink()

    # === Gate ===

    async def _ask(self, request: ConfirmationRequest) -> PermissionDecision:
        if inspect.iscoroutinefunction(self.handler):
            return await self.handler(request)
        decision = await _in_daemon_thread(self.handler, request)
        if inspect.isawaitable(decision):
            decision = await decision
        return decision

    async def request(
        self,
        call: ToolCall,
        description: str = "",
        cancel_token: Optional[CancellationToken] = None,
    ) -> GateOutcome:
        """Wait for a decision on ``call``.

        Overrides and the session allow-list short-circuit the prompt. With no
        handler the call is denied.
        """
        name = call.name
        setting = self.get_setting(name)
        if setting == "allow" or self.is_session_allowed(name):
            return GateOutcome.ALLOWED
        if setting == "deny":
            logger.info("Tool %s denied by saved setting", name)
            return GateOutcome.DENIED
        if self.handler is None:
            logger.info("Tool %s needs confirmation but no handler is set; denying", name)
            return GateOutcome.DENIED

        pending = PendingConfirmation(
            ConfirmationRequest(name, dict(call.arguments), description or name),
            timeout=self.timeout,
        )
        done = pending.start()

        ask = asyncio.ensure_future(self._ask(pending.request))

        def on_answer(task: asyncio.Future):
            if task.cancelled():
                return
            error = task.exception()
            if error is not None:
                logger.error("Confirmation handler failed for %s: %s", name, error)
                pending.deny()
                return
            decision = task.result()
            if not isinstance(decision, PermissionDecision):
                logger.error(
                    "Confirmation handler for %s returned %s, not a PermissionDecision",
                    name, type(decision).__name__,
                )
                pending.deny()
            else:
                pending.resolve(decision)

        ask.add_done_callback(on_answer)

        cancelled = False
        if cancel_token is not None:
            def on_cancel():
                nonlocal cancelled
                cancelled = pending.deny()
            cancel_token.on_cancel(on_cancel)

        try:
            state = await done
        finally:
            if not ask.done():
                ask.cancel()

        if state == ConfirmationState.TIMED_OUT:
            logger.warning("Confirmation for %s timed out after %.0fs", name, self.timeout)
            return GateOutcome.TIMED_OUT
        if state == ConfirmationState.DENIED:
            if cancelled:
                logger.info("Confirmation for %s cancelled", name)
            else:
                logger.info("Tool %s denied by user", name)
            return GateOutcome.DENIED

        if pending.decision.remember_for_session:
            self._session_allowed.add(name)
            logger.debug("Tool %s allowed for the rest of the session", name)
        return GateOutcome.CONFIRMED

"""Shared fakes for agentloop tests. No network access."""

import asyncio

import pytest

from agentloop.core.messages import ToolCall
from agentloop.providers.base import ModelClient, ModelResponse, StreamDelta


class ScriptedClient(ModelClient):
    """Replays scripted model turns.

    Each turn is a ModelResponse, a list of StreamDelta (streamed one per
    chunk, an Exception in the list fails mid-stream), or an Exception
    (fails before the first chunk).
    """

    name = "scripted"
    supports_streaming = True
    supports_tools = True

    def __init__(self, turns):
        super().__init__(model="scripted-1")
        self.turns = list(turns)
        self.requests = []

    def _next(self, request):
        self.requests.append(request)
        if not self.turns:
            raise AssertionError("ScriptedClient ran out of turns")
        turn = self.turns.pop(0)
        if isinstance(turn, BaseException):
            raise turn
        if isinstance(turn, ModelResponse):
            return [StreamDelta(text=turn.text, thought=turn.thought, tool_calls=list(turn.tool_calls))]
        return turn

    async def send(self, request):
        deltas = self._next(request)
        response = ModelResponse()
        for delta in deltas:
            if isinstance(delta, BaseException):
                raise delta
            response.text += delta.text
            response.thought += delta.thought
            response.tool_calls.extend(delta.tool_calls)
        return response

    async def _iter_stream(self, request):
        for delta in self._next(request):
            await asyncio.sleep(0)
            if isinstance(delta, BaseException):
                raise delta
            yield delta


def text_turn(*chunks):
    return [StreamDelta(text=c) for c in chunks]


def call_turn(*calls):
    return ModelResponse(tool_calls=[c if isinstance(c, ToolCall) else ToolCall(*c) for c in calls])


@pytest.fixture
def scripted():
    """Factory for ScriptedClient."""
    return ScriptedClient

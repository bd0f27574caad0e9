"""
Retry with exponential backoff for model clients.

``RetryModelClient`` wraps any ModelClient by composition and exposes the
same contract, so callers cannot tell it apart from the client it wraps.
"""

import asyncio
import logging
from dataclasses import dataclass
from typing import Awaitable, Callable, List, Optional

import httpx

from ..providers.base import (
    ModelClient,
    ModelRequest,
    ModelResponse,
    PermanentModelError,
    StreamCallback,
    StreamChunk,
    StreamingResponse,
    TransientModelError,
)
from .cancellation import CancellationToken

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class RetryPolicy:
    """Immutable retry settings.

    ``max_retries`` counts attempts after the first one. The delay before
    retry ``n`` (0-based) is ``initial_backoff_ms * 2**n``.
    """
    max_retries: int = 3
    initial_backoff_ms: int = 1000

    def __post_init__(self):
        if self.max_retries < 0:
            raise ValueError(f"max_retries must be >= 0, got {self.max_retries}")
        if self.initial_backoff_ms <= 0:
            raise ValueError(f"initial_backoff_ms must be > 0, got {self.initial_backoff_ms}")

    def delay_ms(self, attempt: int) -> int:
        return self.initial_backoff_ms * 2 ** attempt

    def delays_ms(self) -> List[int]:
        return [self.delay_ms(n) for n in range(self.max_retries)]


def _status_code(error: BaseException) -> Optional[int]:
    for attr in ("status_code", "code", "status"):
        value = getattr(error, attr, None)
        if isinstance(value, int) and 100 <= value < 600:
            return value
    response = getattr(error, "response", None)
    value = getattr(response, "status_code", None)
    return value if isinstance(value, int) else None


def is_retryable_status(status: int) -> bool:
    """5xx and 429 are transient; every other status is final."""
    return status == 429 or 500 <= status < 600


def is_retryable(error: BaseException) -> bool:
    """Classify an error raised by a model client as transient or permanent."""
    if isinstance(error, TransientModelError):
        return True
    if isinstance(error, PermanentModelError):
        return False
    if isinstance(error, (httpx.TransportError, httpx.TimeoutException)):
        return True
    if isinstance(error, (ConnectionError, TimeoutError, asyncio.TimeoutError)):
        return True

    status = _status_code(error)
    if status is not None:
        return is_retryable_status(status)

    # Configuration and programming errors will fail the same way again
    if isinstance(error, (ValueError, TypeError, NotImplementedError, ImportError, KeyError)):
        return False
    return True


Sleeper = Callable[[float, CancellationToken], Awaitable[bool]]


async def _token_sleep(seconds: float, token: CancellationToken) -> bool:
    return await token.sleep(seconds)


class RetryModelClient(ModelClient):
    """ModelClient decorator adding bounded exponential-backoff retry.

    Non-streaming: failed attempts are retried up to ``policy.max_retries``
    times; after exhaustion the last error is re-raised unchanged.

    Streaming: only failures before any chunk reached the caller are retried.
    Once output has been delivered a failure is surfaced as-is, because a
    fresh stream would re-emit chunks the caller already has.
    """

    def __init__(
        self,
        inner: ModelClient,
        policy: RetryPolicy = None,
        cancel_token: Optional[CancellationToken] = None,
        sleep: Sleeper = None,
    ):
        super().__init__(model=inner.model, api_key=None)
        self.inner = inner
        self.policy = policy or RetryPolicy()
        self.cancel_token = cancel_token
        self.name = inner.name
        self.supports_streaming = inner.supports_streaming
        self.supports_tools = inner.supports_tools
        self._sleep = sleep or _token_sleep

    def _should_retry(self, error: Exception, attempt: int, operation: str) -> bool:
        total = self.policy.max_retries + 1
        if not is_retryable(error):
            logger.error("%s failed with a non-retryable error: %s", operation, error)
            return False
        if attempt >= self.policy.max_retries:
            logger.error("%s failed after %d attempts: %s", operation, total, error)
            return False
        logger.warning(
            "%s failed (attempt %d/%d). Retrying in %dms: %s",
            operation, attempt + 1, total, self.policy.delay_ms(attempt), error,
        )
        return True

    async def send(self, request: ModelRequest) -> ModelResponse:
        # Cancelling the awaiting task also interrupts the backoff sleep
        token = self.cancel_token or CancellationToken()
        attempt = 0
        while True:
            try:
                return await self.inner.send(request)
            except Exception as error:
                if not self._should_retry(error, attempt, "send"):
                    raise
                if not await self._sleep(self.policy.delay_ms(attempt) / 1000, token):
                    raise asyncio.CancelledError("cancelled during retry backoff")
                attempt += 1

    def stream(self, request: ModelRequest, on_chunk: StreamCallback) -> StreamingResponse:
        token = CancellationToken()
        if self.cancel_token is not None:
            self.cancel_token.on_cancel(token.cancel)
        current: List[StreamingResponse] = []
        delivered = False

        def forward(chunk: StreamChunk):
            nonlocal delivered
            delivered = True
            on_chunk(chunk)

        async def run() -> ModelResponse:
            attempt = 0
            while True:
                if token.cancelled:
                    return ModelResponse(cancelled=True)
                try:
                    handle = self.inner.stream(request, forward)
                    current[:] = [handle]
                    return await handle.complete
                except Exception as error:
                    if token.cancelled:
                        logger.debug("stream error after cancel ignored: %s", error)
                        return ModelResponse(cancelled=True)
                    if delivered:
                        logger.error("stream failed after output was delivered; not retrying: %s", error)
                        raise
                    if not self._should_retry(error, attempt, "stream"):
                        raise
                    if not await self._sleep(self.policy.delay_ms(attempt) / 1000, token):
                        logger.debug("stream cancelled during backoff")
                        return ModelResponse(cancelled=True)
                    attempt += 1

        def cancel():
            token.cancel()
            if current:
                current[0].cancel()

        return StreamingResponse(complete=asyncio.ensure_future(run()), cancel=cancel)

    def list_models(self) -> List[str]:
        return self.inner.list_models()

    def is_configured(self) -> bool:
        return self.inner.is_configured()

    def get_config_help(self) -> str:
        return self.inner.get_config_help()


def with_retry(
    client: ModelClient,
    policy: RetryPolicy = None,
    cancel_token: Optional[CancellationToken] = None,
    sleep: Sleeper = None,
) -> ModelClient:
    """Wrap ``client`` with retry. A policy with zero retries returns it unchanged."""
    if policy is not None and policy.max_retries == 0:
        return client
    return RetryModelClient(client, policy, cancel_token=cancel_token, sleep=sleep)

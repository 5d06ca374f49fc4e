"""Retry-with-backoff policy for calls to the remote classifier."""

import asyncio
import logging
from collections.abc import Awaitable, Callable
from dataclasses import dataclass

import httpx
from tenacity import (
    AsyncRetrying,
    RetryCallState,
    retry_if_exception_type,
    retry_if_result,
    stop_after_attempt,
)

logger = logging.getLogger(__name__)

SleepFunc = Callable[[float], Awaitable[None]]

MODEL_LOADING = 503


@dataclass(frozen=True)
class RetryPolicy:
    """How often and how long to wait when a call fails.

    A 503 means the remote model is still loading. With ``max_loading_delay``
    set, the server's ``estimated_time`` hint is honoured up to that cap;
    otherwise ``loading_delay`` is used.
    """

    max_attempts: int
    transport_delay: float
    loading_delay: float
    status_delay: float = 0.0
    max_loading_delay: float | None = None
    retry_statuses: frozenset[int] | None = frozenset({MODEL_LOADING})

    def is_retryable(self, status_code: int) -> bool:
        """Whether a non-success status should be retried.

        ``retry_statuses=None`` retries every non-success status.
        """
        if self.retry_statuses is None:
            return True
        return status_code in self.retry_statuses

    def should_retry(self, response: httpx.Response) -> bool:
        return not response.is_success and self.is_retryable(response.status_code)

    def delay_for_status(self, response: httpx.Response) -> float:
        """Seconds to wait after a retryable status."""
        if response.status_code != MODEL_LOADING:
            return self.status_delay
        if self.max_loading_delay is None:
            return self.loading_delay
        estimate = _estimated_time(response)
        if estimate is None:
            return min(self.loading_delay, self.max_loading_delay)
        return min(estimate, self.max_loading_delay)

    def wait(self, retry_state: RetryCallState) -> float:
        """Tenacity wait strategy: the delay depends on how the last attempt failed."""
        outcome = retry_state.outcome
        if outcome.failed:
            return self.transport_delay
        return self.delay_for_status(outcome.result())

    def retrying(self, sleep: SleepFunc = asyncio.sleep, label: str = "request") -> AsyncRetrying:
        """Build the tenacity controller for one call.

        Transport errors and retryable statuses are retried. When attempts
        run out the last response (or None) is returned instead of raising.
        """
        return AsyncRetrying(
            stop=stop_after_attempt(self.max_attempts),
            wait=self.wait,
            retry=retry_if_exception_type(httpx.TransportError) | retry_if_result(self.should_retry),
            sleep=sleep,
            before_sleep=_log_retry(label, self.max_attempts),
            retry_error_callback=_last_response,
        )

    async def execute(
        self,
        send: Callable[[], Awaitable[httpx.Response]],
        sleep: SleepFunc = asyncio.sleep,
        label: str = "request",
    ) -> "RetryOutcome":
        """Run ``send`` until it succeeds or the policy gives up.

        Args:
            send: Coroutine factory performing one attempt
            sleep: Async sleep, replaceable by a fake clock in tests
            label: Name used in log messages

        Returns:
            RetryOutcome with the last response (None if every attempt
            raised a transport error)
        """
        attempts = 0
        error: str | None = None

        async def attempt() -> httpx.Response:
            nonlocal attempts, error
            attempts += 1
            try:
                response = await send()
            except httpx.TransportError as e:
                error = f"{type(e).__name__}: {e}"
                raise
            if not response.is_success:
                error = f"HTTP {response.status_code}"
            return response

        response = await self.retrying(sleep, label)(attempt)
        if response is not None and response.is_success:
            return RetryOutcome(response=response, attempts=attempts)
        if response is not None and not self.is_retryable(response.status_code):
            logger.warning(f"{label} returned {response.status_code}, not retrying")
        return RetryOutcome(response=response, attempts=attempts, error=error)


@dataclass
class RetryOutcome:
    """Final state of a retried call."""

    response: httpx.Response | None
    attempts: int
    error: str | None = None

    @property
    def ok(self) -> bool:
        return self.response is not None and self.response.is_success


def _log_retry(label: str, max_attempts: int) -> Callable[[RetryCallState], None]:
    def log(retry_state: RetryCallState) -> None:
        outcome = retry_state.outcome
        if outcome.failed:
            exc = outcome.exception()
            reason = f"{type(exc).__name__}: {exc}"
        else:
            reason = f"HTTP {outcome.result().status_code}"
        logger.warning(f"{label} attempt {retry_state.attempt_number}/{max_attempts} failed: {reason}")

    return log


def _last_response(retry_state: RetryCallState) -> httpx.Response | None:
    """Give up quietly with the last response, or None after a transport error."""
    outcome = retry_state.outcome
    if outcome.failed:
        exc = outcome.exception()
        logger.warning(f"Giving up after {retry_state.attempt_number} attempts: {type(exc).__name__}: {exc}")
        return None
    return outcome.result()


def _estimated_time(response: httpx.Response) -> float | None:
    """Read the ``estimated_time`` hint from a 503 body."""
    try:
        data = response.json()
    except ValueError:
        return None
    if not isinstance(data, dict):
        return None
    try:
        value = float(data.get("estimated_time"))
    except (TypeError, ValueError):
        return None
    return value if value >= 0 else None


# 503: wait for the model (server hint, max 30s); anything else: 3s; 5 attempts.
WARMUP_POLICY = RetryPolicy(
    max_attempts=5,
    transport_delay=3.0,
    loading_delay=20.0,
    status_delay=3.0,
    max_loading_delay=30.0,
    retry_statuses=None,
)

# Two retries: 2s after a transport error, 5s after a 503; other statuses are final.
ITEM_POLICY = RetryPolicy(
    max_attempts=3,
    transport_delay=2.0,
    loading_delay=5.0,
)

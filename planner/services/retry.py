"""Bounded retry controller for generation service calls."""

import asyncio
import logging
import random
from dataclasses import dataclass
from typing import Awaitable, Callable, Optional

from tenacity import AsyncRetrying, RetryCallState, retry_if_exception_type, stop_after_attempt

from planner.config import Settings
from planner.services.failure_classifier import FailureKind, classify_generation_error
from planner.services.generation_client import GenerationClient, GenerationRequest, GenerationResult

logger = logging.getLogger(__name__)


class GenerationFailure(Exception):
    """A classified failure of one logical generation call."""

    kind = FailureKind.NON_RETRYABLE

    def __init__(self, message: str, attempt: int = 1):
        super().__init__(message)
        self.message = message
        self.attempt = attempt


class RateLimited(GenerationFailure):
    kind = FailureKind.RATE_LIMITED


class RequestTimeout(GenerationFailure):
    kind = FailureKind.TIMEOUT


class QuotaExhausted(GenerationFailure):
    kind = FailureKind.QUOTA_EXHAUSTED


class RequestFailed(GenerationFailure):
    kind = FailureKind.NON_RETRYABLE


_FAILURE_TYPES = {
    FailureKind.RATE_LIMITED: RateLimited,
    FailureKind.TIMEOUT: RequestTimeout,
    FailureKind.QUOTA_EXHAUSTED: QuotaExhausted,
    FailureKind.NON_RETRYABLE: RequestFailed,
}


@dataclass(frozen=True)
class RetryPolicy:
    """Attempt budget and delays for one logical call."""

    max_attempts: int = 6
    initial_delay: float = 1.2
    max_delay: float = 18.0
    jitter: float = 0.3
    request_timeout: float = 480.0
    timeout_retry_delay: float = 2.0

    @classmethod
    def from_settings(cls, settings: Settings) -> "RetryPolicy":
        return cls(
            max_attempts=settings.GENERATION_MAX_ATTEMPTS,
            initial_delay=settings.GENERATION_INITIAL_DELAY,
            max_delay=settings.GENERATION_MAX_DELAY,
            jitter=settings.GENERATION_JITTER,
            request_timeout=settings.GENERATION_REQUEST_TIMEOUT,
            timeout_retry_delay=settings.GENERATION_TIMEOUT_RETRY_DELAY,
        )


def backoff_base(policy: RetryPolicy, attempt: int) -> float:
    """Capped exponential delay after the given (1-based) attempt."""
    return min(policy.initial_delay * 2 ** (attempt - 1), policy.max_delay)


def backoff_delay(policy: RetryPolicy, attempt: int, rng: Optional[random.Random] = None) -> float:
    """Capped exponential delay scaled by a factor in [1 - jitter, 1 + jitter]."""
    base = backoff_base(policy, attempt)
    if policy.jitter <= 0:
        return base
    rng = rng or random
    return base * (1 - policy.jitter + rng.random() * 2 * policy.jitter)


class RetryController:
    """Runs one generation call with bounded retries.

    Rate limits back off exponentially with jitter, timeouts retry after a
    short fixed delay, quota exhaustion and any other error surface at once.
    Every failure leaving the controller is a ``GenerationFailure``.
    """

    def __init__(
        self,
        client: GenerationClient,
        policy: Optional[RetryPolicy] = None,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
        rng: Optional[random.Random] = None,
    ):
        """Initialize the controller."""
        self.client = client
        self.policy = policy or RetryPolicy()
        self.sleep = sleep
        self.rng = rng or random.Random()

    async def call(self, request: GenerationRequest) -> GenerationResult:
        """
        Execute the call within the attempt budget.

        Raises:
            QuotaExhausted: On the first quota failure
            RateLimited: If every attempt was rate limited
            RequestTimeout: If the last attempt timed out
            RequestFailed: On any other failure
        """
        retrying = AsyncRetrying(
            stop=stop_after_attempt(self.policy.max_attempts),
            wait=self._wait,
            retry=retry_if_exception_type((RateLimited, RequestTimeout)),
            before_sleep=self._log_retry,
            sleep=self.sleep,
            reraise=True,
        )

        result = None
        async for attempt in retrying:
            with attempt:
                result = await self._attempt(request, attempt.retry_state.attempt_number)
        return result

    async def _attempt(self, request: GenerationRequest, attempt: int) -> GenerationResult:
        """One call raced against the per-attempt timeout, errors classified."""
        try:
            return await asyncio.wait_for(
                self.client.generate(request),
                timeout=self.policy.request_timeout,
            )
        except asyncio.CancelledError:
            raise
        except Exception as e:
            classification = classify_generation_error(e)
            failure_type = _FAILURE_TYPES[classification.kind]
            if isinstance(e, asyncio.TimeoutError):
                message = f"request-timeout after {self.policy.request_timeout:g}s"
            else:
                message = getattr(e, "message", None) or str(e) or e.__class__.__name__
            logger.warning(
                f"Generation attempt {attempt}/{self.policy.max_attempts} failed "
                f"({classification.kind.value}, rule={classification.matched_rule}): {message}"
            )
            raise failure_type(message, attempt=attempt) from e

    def _wait(self, retry_state: RetryCallState) -> float:
        failure = retry_state.outcome.exception()
        if isinstance(failure, RequestTimeout):
            return self.policy.timeout_retry_delay
        return backoff_delay(self.policy, retry_state.attempt_number, self.rng)

    def _log_retry(self, retry_state: RetryCallState) -> None:
        failure = retry_state.outcome.exception()
        delay = retry_state.next_action.sleep if retry_state.next_action else 0.0
        logger.warning(
            f"[attempt {retry_state.attempt_number}] {failure.kind.value}: retrying in {delay:.2f}s"
        )

"""Failure classification and retry policy for provider calls."""

import math
from dataclasses import dataclass
from enum import StrEnum

from nature_eval.domain.errors import (
    ProviderNetworkError,
    ProviderOverloadedError,
    RateLimitError,
)

DEFAULT_RATE_LIMIT_BACKOFF_SECONDS = 30.0
DEFAULT_OVERLOAD_BASE_SECONDS = 60.0
DEFAULT_MAX_RETRIES = 3
RATE_LIMIT_WAIT_CAP_FACTOR = 10


class RetryKind(StrEnum):
    RATE_LIMIT = "rate_limit"
    BACKOFF = "backoff"
    TERMINAL = "terminal"


@dataclass(frozen=True)
class RetryPolicy:
    """Waits to apply before each retry; empty for terminal failures."""

    kind: RetryKind
    delays: tuple[float, ...] = ()

    @property
    def max_attempts(self) -> int:
        return len(self.delays)

    @property
    def retryable(self) -> bool:
        return bool(self.delays)


@dataclass(frozen=True)
class FailureClassifier:
    """Maps an error from a single-subject evaluation to a retry policy.

    Rate-limit errors wait the advisory ``retry_after`` (or the default) and
    retry exactly once; the advisory wait is capped at ten times the default.
    Overload and network errors back off exponentially, ``base * 2**attempt``
    for up to ``max_retries`` attempts. Everything else is terminal.
    """

    rate_limit_backoff_seconds: float = DEFAULT_RATE_LIMIT_BACKOFF_SECONDS
    overload_base_seconds: float = DEFAULT_OVERLOAD_BASE_SECONDS
    max_retries: int = DEFAULT_MAX_RETRIES

    def classify(self, error: BaseException) -> RetryPolicy:
        if isinstance(error, RateLimitError):
            wait = error.retry_after
            if wait is None or not math.isfinite(wait) or wait < 0:
                wait = self.rate_limit_backoff_seconds
            wait = min(wait, self.max_rate_limit_wait)
            return RetryPolicy(RetryKind.RATE_LIMIT, (wait,))
        if isinstance(error, ProviderOverloadedError | ProviderNetworkError):
            return RetryPolicy(RetryKind.BACKOFF, self.backoff_schedule())
        return RetryPolicy(RetryKind.TERMINAL)

    @property
    def max_rate_limit_wait(self) -> float:
        return self.rate_limit_backoff_seconds * RATE_LIMIT_WAIT_CAP_FACTOR

    def backoff_schedule(self) -> tuple[float, ...]:
        return tuple(
            self.overload_base_seconds * 2**attempt
            for attempt in range(self.max_retries)
        )

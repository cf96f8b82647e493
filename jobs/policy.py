# jobs/policy.py
"""
Retry/backoff decisions. Pure: the same inputs always give the same answer.
"""
from __future__ import annotations

from dataclasses import dataclass
from datetime import timedelta

from jobs.envelope import DEFAULT_MAX_ATTEMPTS
from jobs.errors import FailureKind

DEFAULT_BASE_DELAY = timedelta(milliseconds=2000)


@dataclass(frozen=True)
class RetryDecision:
    retry_after: timedelta | None = None

    @property
    def dead_letter(self) -> bool:
        return self.retry_after is None


DEAD_LETTER = RetryDecision()


@dataclass(frozen=True)
class RetryPolicy:
    max_attempts: int = DEFAULT_MAX_ATTEMPTS
    base_delay: timedelta = DEFAULT_BASE_DELAY

    def backoff(self, attempt: int) -> timedelta:
        """base * 2^(attempt-1): 2s, 4s, 8s with the default base."""
        return self.base_delay * (2 ** max(attempt - 1, 0))

    def decide(
        self,
        attempt: int,
        failure_kind: FailureKind,
        previous_kind: FailureKind | None = None,
        max_attempts: int | None = None,
    ) -> RetryDecision:
        if failure_kind is FailureKind.PERMANENT:
            return DEAD_LETTER

        # unknown gets the benefit of the doubt once, not twice in a row
        if failure_kind is FailureKind.UNKNOWN and previous_kind is FailureKind.UNKNOWN:
            return DEAD_LETTER

        ceiling = max_attempts if max_attempts is not None else self.max_attempts
        if attempt >= ceiling:
            return DEAD_LETTER

        return RetryDecision(retry_after=self.backoff(attempt))

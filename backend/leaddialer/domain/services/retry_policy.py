"""
Retry Policy
Fixed per-outcome delays and the global attempt cap
"""
from datetime import timedelta
from typing import Dict

from leaddialer.core.config import Settings
from leaddialer.domain.models.call_attempt import CallAttemptStatus, COUNTABLE_OUTCOMES

# Default values
MAX_ATTEMPTS = 3
NO_ANSWER_DELAY_MINUTES = 30
BUSY_DELAY_MINUTES = 15
FAILED_DELAY_MINUTES = 30


class RetryPolicy:
    """
    Decides when a lead may be called again after a countable outcome.

    Delays are fixed per outcome type; there is no exponential backoff.
    The attempt cap is shared by all outcome types.
    """

    def __init__(
        self,
        max_attempts: int = MAX_ATTEMPTS,
        no_answer_delay_minutes: int = NO_ANSWER_DELAY_MINUTES,
        busy_delay_minutes: int = BUSY_DELAY_MINUTES,
        failed_delay_minutes: int = FAILED_DELAY_MINUTES,
    ):
        if max_attempts < 1:
            raise ValueError("max_attempts must be at least 1")
        self.max_attempts = max_attempts
        self._delays: Dict[str, timedelta] = {
            CallAttemptStatus.NO_ANSWER.value: timedelta(minutes=no_answer_delay_minutes),
            CallAttemptStatus.BUSY.value: timedelta(minutes=busy_delay_minutes),
            CallAttemptStatus.FAILED.value: timedelta(minutes=failed_delay_minutes),
        }

    @classmethod
    def from_settings(cls, settings: Settings) -> "RetryPolicy":
        return cls(
            max_attempts=settings.max_attempts,
            no_answer_delay_minutes=settings.no_answer_delay_minutes,
            busy_delay_minutes=settings.busy_delay_minutes,
            failed_delay_minutes=settings.failed_delay_minutes,
        )

    @staticmethod
    def counts(outcome: str) -> bool:
        """Whether the outcome consumes one of the lead's attempts."""
        return outcome in COUNTABLE_OUTCOMES

    def delay_for(self, outcome: str) -> timedelta:
        if outcome not in self._delays:
            raise ValueError(f"No retry delay for outcome: {outcome}")
        return self._delays[outcome]

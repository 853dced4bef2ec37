"""
Retry Manager for URL probes.

Retries a probe whose failure category is configured as transient, with
exponentially increasing waits. With the default max_retries=0 every probe
gets exactly one attempt.
"""

import asyncio
from typing import Awaitable, Callable

from .config import RetryConfig
from .enums import ErrorCategory
from .models import ProbeOutcome


class RetryManager:
    """Applies bounded exponential-backoff retries to probe attempts."""

    def __init__(
        self,
        config: RetryConfig,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ) -> None:
        """
        Initialize the retry manager.

        Args:
            config: Retry configuration with max_retries, delays and retryable categories
            sleep: Coroutine used to wait between attempts
        """
        self._config = config
        self._sleep = sleep
        self._retryable = frozenset(config.retryable_categories)

    @property
    def max_attempts(self) -> int:
        # 1 initial attempt + max_retries
        return max(self._config.max_retries, 0) + 1

    def _calculate_delay(self, attempt: int) -> float:
        """
        Wait before the retry following a failed attempt (0-indexed).

        delay(n) = base_delay * 2^n, capped at max_delay.
        """
        delay = self._config.base_delay_seconds * (2 ** attempt)
        return min(delay, self._config.max_delay_seconds)

    def is_retryable(self, category: ErrorCategory) -> bool:
        return category.value in self._retryable

    def should_retry(self, outcome: ProbeOutcome) -> bool:
        """Only failed probes with a transient category are retried."""
        if outcome.error_category is None:
            return False
        return self.is_retryable(outcome.error_category)

    async def execute_probe_with_retry(
        self,
        operation: Callable[[], Awaitable[ProbeOutcome]],
    ) -> tuple[ProbeOutcome, int]:
        """
        Run a probe, retrying transient failures.

        The operation must not raise; probe failures are reported through
        the returned outcome.

        Returns:
            Tuple of (final outcome, number of attempts)
        """
        attempts = 0
        while True:
            outcome = await operation()
            attempts += 1

            if not self.should_retry(outcome) or attempts >= self.max_attempts:
                return outcome, attempts

            await self._sleep(self._calculate_delay(attempts - 1))

"""
Retry engine — re-run a command until it succeeds or the budget runs out.

Two backoff strategies are supported:

    exponential   delay doubles from base_delay (capped at max_delay),
                  then signed jitter in [-jitter_bound, +jitter_bound]
    full-jitter   delay = uniform(0, min(max_delay, base_delay * 2^attempt))

The computed delay is always within [0, max_delay]. There is no
independent cancellation: wrap the whole loop in a deadline if the
total time must be bounded.
"""

from __future__ import annotations

import logging
import random
import time
from collections.abc import Callable, Sequence
from dataclasses import dataclass
from enum import StrEnum
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from runtimectl.adapters.shell.command import CommandRunner

logger = logging.getLogger(__name__)

# Floor for exponential delays so negative jitter never yields a busy loop
MIN_DELAY = 0.05


class BackoffStrategy(StrEnum):
    """Inter-attempt delay strategies."""

    EXPONENTIAL = "exponential"
    FULL_JITTER = "full-jitter"


@dataclass(frozen=True)
class RetryPolicy:
    """How many times to try, and how long to wait in between.

    Args:
        max_attempts: Total attempts including the first (>= 1).
        base_delay: Seconds before the first retry.
        max_delay: Upper bound for any single delay.
        jitter_bound: Half-width of the exponential strategy's jitter.
        retryable_exit_codes: Codes worth retrying. Empty means any nonzero.
        strategy: Backoff strategy.
    """

    max_attempts: int = 3
    base_delay: float = 1.0
    max_delay: float = 30.0
    jitter_bound: float = 0.5
    retryable_exit_codes: frozenset[int] = frozenset()
    strategy: BackoffStrategy = BackoffStrategy.EXPONENTIAL

    def __post_init__(self) -> None:
        if self.max_attempts < 1:
            raise ValueError(f"max_attempts must be >= 1, got {self.max_attempts}")
        if self.base_delay < 0 or self.max_delay < 0 or self.jitter_bound < 0:
            raise ValueError("delays and jitter_bound must be >= 0")
        # Accept any iterable of codes and plain strings for the strategy
        object.__setattr__(self, "retryable_exit_codes", frozenset(self.retryable_exit_codes))
        object.__setattr__(self, "strategy", BackoffStrategy(self.strategy))

    def is_retryable(self, exit_code: int) -> bool:
        if exit_code == 0:
            return False
        if not self.retryable_exit_codes:
            return True
        return exit_code in self.retryable_exit_codes

    def with_exit_codes(self, codes: Sequence[int]) -> RetryPolicy:
        """Copy of this policy that only retries the given exit codes."""
        return RetryPolicy(
            max_attempts=self.max_attempts,
            base_delay=self.base_delay,
            max_delay=self.max_delay,
            jitter_bound=self.jitter_bound,
            retryable_exit_codes=frozenset(codes),
            strategy=self.strategy,
        )


def compute_delay(
    policy: RetryPolicy,
    attempt: int,
    rng: random.Random | None = None,
) -> float:
    """Delay to wait after ``attempt`` (1-based) failed."""
    rng = rng or random
    if policy.strategy == BackoffStrategy.FULL_JITTER:
        cap = min(policy.max_delay, policy.base_delay * (2 ** attempt))
        return rng.uniform(0, cap)

    nominal = min(policy.max_delay, policy.base_delay * (2 ** (attempt - 1)))
    jitter = rng.uniform(-policy.jitter_bound, policy.jitter_bound)
    delay = max(MIN_DELAY, nominal + jitter)
    return min(policy.max_delay, delay)


def retry_call(
    policy: RetryPolicy,
    fn: Callable[[], int],
    description: str = "operation",
    *,
    sleep: Callable[[float], None] = time.sleep,
    rng: random.Random | None = None,
) -> int:
    """Call ``fn`` until it returns 0 or the policy gives up.

    Returns:
        The exit code of the last attempt.
    """
    attempt = 1
    while True:
        exit_code = fn()
        if exit_code == 0:
            if attempt > 1:
                logger.info("%s succeeded on attempt %d", description, attempt)
            return 0

        if not policy.is_retryable(exit_code):
            logger.warning(
                "%s failed (rc=%d); exit code not retryable", description, exit_code
            )
            return exit_code

        if attempt >= policy.max_attempts:
            logger.warning(
                "%s failed after %d attempts (rc=%d)", description, attempt, exit_code
            )
            return exit_code

        delay = compute_delay(policy, attempt, rng)
        logger.warning(
            "Attempt %d/%d of %s failed (rc=%d); retrying in %.2fs",
            attempt,
            policy.max_attempts,
            description,
            exit_code,
            delay,
        )
        sleep(delay)
        attempt += 1


def retry(
    policy: RetryPolicy,
    command: Sequence[str],
    runner: CommandRunner | None = None,
    *,
    timeout: float = 60.0,
    sleep: Callable[[float], None] = time.sleep,
    rng: random.Random | None = None,
) -> int:
    """Run ``command`` under ``policy`` and return its final exit code.

    Raises:
        ValueError: If ``command`` is empty. No attempt is consumed.
    """
    if not command:
        raise ValueError("retry: no command provided")

    if runner is None:
        from runtimectl.adapters.shell.command import CommandRunner

        runner = CommandRunner()

    argv = list(command)
    return retry_call(
        policy,
        lambda: runner.run(argv, timeout=timeout).exit_code,
        description=" ".join(argv),
        sleep=sleep,
        rng=rng,
    )

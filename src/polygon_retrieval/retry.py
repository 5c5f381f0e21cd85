"""
Exponential backoff for idempotent GET requests.

An operation reports how it went by returning an Outcome. Only transient
outcomes are retried; success and permanent outcomes end the loop at once.
Retrying stops when the policy's elapsed-time budget is spent, at which
point the last error is raised.
"""

import logging
import random
import time
from dataclasses import dataclass
from typing import Any, Callable, Generic, Optional, TypeVar

from .exceptions import RetrievalError, TransientError

logger = logging.getLogger(__name__)

T = TypeVar('T')


@dataclass(frozen=True)
class RetryPolicy:
    """
    Backoff schedule for one retried call.

    Attributes:
        initial_interval: Delay before the first retry, in seconds.
        multiplier: Growth factor applied to the delay after every retry.
        max_interval: Cap on a single delay, in seconds.
        max_elapsed_time: Retrying stops once this many seconds have passed
            since the first attempt. None retries forever.
        randomization_factor: Jitter; each delay is drawn uniformly from
            [delay * (1 - f), delay * (1 + f)]. Zero disables jitter.
    """

    initial_interval: float = 0.5
    multiplier: float = 1.5
    max_interval: float = 60.0
    max_elapsed_time: Optional[float] = 15 * 60.0
    randomization_factor: float = 0.5

    def __post_init__(self):
        if self.multiplier <= 1:
            raise ValueError("multiplier must be greater than 1")
        if self.initial_interval <= 0:
            raise ValueError("initial_interval must be positive")
        if self.max_interval < self.initial_interval:
            raise ValueError("max_interval must be >= initial_interval")
        if not 0 <= self.randomization_factor < 1:
            raise ValueError("randomization_factor must be in [0, 1)")

    def interval(self, retry: int) -> float:
        """Un-jittered delay before the given zero-indexed retry."""
        delay = self.initial_interval * (self.multiplier ** retry)
        return min(delay, self.max_interval)

    def jittered(self, delay: float, rng: random.Random) -> float:
        if not self.randomization_factor:
            return delay
        spread = delay * self.randomization_factor
        return rng.uniform(delay - spread, delay + spread)


class Outcome(Generic[T]):
    """
    Result of one attempt: success, transient failure or permanent failure.

    Build with Outcome.success(value), Outcome.transient(error) or
    Outcome.permanent(error).
    """

    SUCCESS = "success"
    TRANSIENT = "transient"
    PERMANENT = "permanent"

    __slots__ = ("status", "value", "error")

    def __init__(self, status: str, value: Any = None, error: Optional[BaseException] = None):
        self.status = status
        self.value = value
        self.error = error

    @classmethod
    def success(cls, value: T) -> "Outcome[T]":
        return cls(cls.SUCCESS, value=value)

    @classmethod
    def transient(cls, error: BaseException) -> "Outcome[T]":
        return cls(cls.TRANSIENT, error=error)

    @classmethod
    def permanent(cls, error: BaseException) -> "Outcome[T]":
        return cls(cls.PERMANENT, error=error)

    @property
    def is_success(self) -> bool:
        return self.status == self.SUCCESS

    @property
    def is_transient(self) -> bool:
        return self.status == self.TRANSIENT

    def __repr__(self) -> str:
        if self.is_success:
            return f"Outcome.success({self.value!r})"
        return f"Outcome.{self.status}({self.error!r})"


def classify(func: Callable[[], T]) -> Callable[[], Outcome[T]]:
    """
    Adapt an exception-raising callable into an Outcome-returning operation.

    TransientError becomes a transient outcome. Any other RetrievalError
    (including EmptyResultError) becomes a permanent outcome, which ends
    retrying and re-raises the original error unchanged. Other exceptions
    are programming errors and propagate immediately.
    """
    def operation() -> Outcome[T]:
        try:
            return Outcome.success(func())
        except TransientError as e:
            return Outcome.transient(e)
        except RetrievalError as e:
            return Outcome.permanent(e)

    return operation


class RetryExecutor:
    """
    Runs one operation under exponential backoff.

    Example:
        >>> executor = RetryExecutor(RetryPolicy(initial_interval=0.1))
        >>> data = executor.call(lambda: client.get_json("/v1/marketstatus/now"))
    """

    def __init__(
        self,
        policy: Optional[RetryPolicy] = None,
        sleep: Callable[[float], None] = time.sleep,
        clock: Callable[[], float] = time.monotonic,
        rng: Optional[random.Random] = None,
        name: str = "request",
    ):
        """
        Initialize executor.

        Args:
            policy: Backoff schedule (defaults to RetryPolicy()).
            sleep: Function used to wait between attempts.
            clock: Monotonic clock used for the elapsed-time budget.
            rng: Random source for jitter.
            name: Label used in log messages.
        """
        self.policy = policy or RetryPolicy()
        self._sleep = sleep
        self._clock = clock
        self._rng = rng or random.Random()
        self.name = name
        self.attempts = 0

    def execute(self, operation: Callable[[], Outcome[T]]) -> T:
        """
        Run operation until it succeeds, fails permanently or the budget runs out.

        Returns:
            The success value.

        Raises:
            The error carried by the final non-success outcome.
        """
        policy = self.policy
        started = self._clock()
        total_wait = 0.0
        self.attempts = 0

        while True:
            outcome = operation()
            self.attempts += 1

            if outcome.is_success:
                if self.attempts > 1:
                    logger.info(
                        f"{self.name} succeeded on attempt {self.attempts} "
                        f"(waited {total_wait:.2f}s total)"
                    )
                return outcome.value

            error = outcome.error
            if not outcome.is_transient:
                logger.debug(f"{self.name} failed with non-retryable error: {error}")
                raise error

            delay = policy.jittered(policy.interval(self.attempts - 1), self._rng)
            elapsed = self._clock() - started
            if policy.max_elapsed_time is not None and elapsed + delay > policy.max_elapsed_time:
                logger.error(
                    f"{self.name} failed after {self.attempts} attempts "
                    f"({elapsed:.2f}s elapsed): {error}"
                )
                raise error

            logger.warning(
                f"{self.name} failed on attempt {self.attempts}: "
                f"{type(error).__name__}: {error}. Retrying in {delay:.2f} seconds..."
            )
            self._sleep(delay)
            total_wait += delay

    def call(self, func: Callable[[], T]) -> T:
        """Run an exception-raising callable, retrying TransientError."""
        return self.execute(classify(func))

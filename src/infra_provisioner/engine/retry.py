"""Retry and readiness polling with capped exponential backoff."""

from __future__ import annotations

import logging
import time
from dataclasses import dataclass
from typing import TYPE_CHECKING, TypeVar

from infra_provisioner.core.errors import ProviderTransientError
from infra_provisioner.engine.errors import ReadinessTimeoutError, RetryExhaustedError

if TYPE_CHECKING:
    from collections.abc import Callable

logger = logging.getLogger(__name__)

T = TypeVar("T")


@dataclass(frozen=True)
class RetryPolicy:
    """Bounded retries for transient provider failures.

    The delay before attempt ``n + 1`` is ``base_delay * multiplier ** (n - 1)``,
    capped at ``max_delay``. ``sleep`` and ``clock`` are injectable so tests
    run without waiting.
    """

    max_attempts: int = 5
    base_delay: float = 1.0
    max_delay: float = 30.0
    multiplier: float = 2.0
    sleep: Callable[[float], None] = time.sleep
    clock: Callable[[], float] = time.monotonic

    def delay(self, attempt: int) -> float:
        return min(self.max_delay, self.base_delay * self.multiplier ** (attempt - 1))

    def call(self, fn: Callable[[], T], *, what: str) -> T:
        """Run *fn*, retrying ``ProviderTransientError`` up to ``max_attempts`` times.

        Any other exception propagates immediately.

        Raises:
            RetryExhaustedError: The last attempt still failed transiently.
        """
        attempt = 1
        while True:
            try:
                return fn()
            except ProviderTransientError as e:
                if attempt >= self.max_attempts:
                    raise RetryExhaustedError(e, attempt) from e
                delay = self.delay(attempt)
                logger.warning(
                    "%s failed (attempt %d/%d): %s; retrying in %.1fs",
                    what,
                    attempt,
                    self.max_attempts,
                    e,
                    delay,
                )
                self.sleep(delay)
                attempt += 1

    def wait_until(
        self,
        check: Callable[[], bool],
        *,
        what: str,
        timeout: float,
    ) -> None:
        """Poll *check* with backoff until it returns true.

        Transient errors raised by *check* count as "not yet".

        Raises:
            ReadinessTimeoutError: *check* did not succeed within *timeout* seconds.
        """
        deadline = self.clock() + timeout
        attempt = 1
        while True:
            try:
                if check():
                    return
            except ProviderTransientError as e:
                logger.debug("%s: readiness check failed transiently: %s", what, e)
            remaining = deadline - self.clock()
            if remaining <= 0:
                raise ReadinessTimeoutError(what, timeout)
            delay = min(self.delay(attempt), remaining)
            logger.debug("%s not ready yet; checking again in %.1fs", what, delay)
            self.sleep(delay)
            attempt += 1

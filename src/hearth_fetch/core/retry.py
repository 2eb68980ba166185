"""Shared retry policy and upstream outcome classification."""

from __future__ import annotations

import logging
from collections.abc import Awaitable, Callable, Iterator
from dataclasses import dataclass
from datetime import datetime, timezone
from email.utils import parsedate_to_datetime
from enum import StrEnum
from typing import TYPE_CHECKING, Protocol, TypeVar

if TYPE_CHECKING:
    from hearth_fetch.core.clock import Clock

logger = logging.getLogger(__name__)


class Outcome(StrEnum):
    """Classification of a single upstream attempt."""

    SUCCESS = "success"
    PENDING = "pending"
    NOT_FOUND = "not_found"
    REJECTED = "rejected"
    RATE_LIMITED = "rate_limited"
    UNAVAILABLE = "unavailable"
    TRANSIENT = "transient"

    @property
    def is_terminal(self) -> bool:
        """Whether retrying after this outcome is pointless."""
        return self in (Outcome.SUCCESS, Outcome.NOT_FOUND, Outcome.REJECTED)


def classify_status(status: int) -> Outcome:
    """Map an HTTP status code to an Outcome.

    Status 0 is used for requests that never produced a response
    (connection errors, timeouts).
    """
    if status == 202:
        return Outcome.PENDING
    if 200 <= status < 300:
        return Outcome.SUCCESS
    if status == 404:
        return Outcome.NOT_FOUND
    if status in (401, 403):
        return Outcome.REJECTED
    if status == 429:
        return Outcome.RATE_LIMITED
    if status == 0 or status >= 500:
        return Outcome.UNAVAILABLE
    return Outcome.TRANSIENT


def parse_retry_after(value: str | None) -> float | None:
    """Parse a Retry-After header value.

    Args:
        value: Header value, either delta-seconds or an HTTP-date

    Returns:
        Seconds to wait, or None when absent, unparseable or not positive
    """
    if not value:
        return None
    value = value.strip()
    try:
        seconds = float(value)
    except ValueError:
        try:
            when = parsedate_to_datetime(value)
        except (TypeError, ValueError):
            return None
        if when.tzinfo is None:
            when = when.replace(tzinfo=timezone.utc)
        seconds = (when - datetime.now(timezone.utc)).total_seconds()
    return seconds if seconds > 0 else None


class Attempt(Protocol):
    """Anything a RetryPolicy can drive: it reports an outcome and a hint."""

    @property
    def outcome(self) -> Outcome: ...

    @property
    def retry_after(self) -> float | None: ...


T = TypeVar("T", bound=Attempt)


@dataclass
class RetryPolicy:
    """Bounded retry schedule with multiplicative backoff.

    Attributes:
        max_attempts: Total number of attempts (rounds), including the first
        base_delay: Delay in seconds before the first retry
        multiplier: Growth factor applied to each following delay
        max_delay: Upper bound for a single delay (None = unbounded)
    """

    max_attempts: int = 3
    base_delay: float = 1.0
    multiplier: float = 2.0
    max_delay: float | None = None

    def delay_for(self, attempt: int) -> float:
        """Delay to wait before the given attempt (0 = first attempt, no delay)."""
        if attempt <= 0:
            return 0.0
        delay = self.base_delay * (self.multiplier ** (attempt - 1))
        if self.max_delay is not None:
            delay = min(delay, self.max_delay)
        return delay

    def delays(self) -> Iterator[float]:
        """Yield the delay preceding each attempt, starting with 0."""
        for attempt in range(self.max_attempts):
            yield self.delay_for(attempt)

    async def run(
        self,
        operation: Callable[[], Awaitable[T]],
        *,
        clock: Clock,
        first_delay: float = 0.0,
        label: str = "operation",
    ) -> T | None:
        """Drive an operation until it reaches a terminal outcome.

        A result carrying a retry hint never waits less than that hint.
        Attempts exhausted without a terminal outcome return the last
        result; the caller decides what an unresolved result means.

        Args:
            operation: Coroutine function performing one attempt
            clock: Clock used for the waits between attempts
            first_delay: Optional wait before the very first attempt
            label: Name used in log messages

        Returns:
            The last attempt's result, or None if max_attempts is 0
        """
        result: T | None = None
        for attempt, delay in enumerate(self.delays()):
            if attempt == 0:
                delay = first_delay
            if result is not None and result.retry_after:
                delay = max(delay, result.retry_after)
            if delay > 0:
                await clock.sleep(delay)

            result = await operation()
            if result.outcome.is_terminal:
                return result
            logger.debug(
                "%s attempt %d/%d ended %s",
                label,
                attempt + 1,
                self.max_attempts,
                result.outcome,
            )
        return result

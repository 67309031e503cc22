import asyncio
import time
from typing import Awaitable, Callable, TypeVar

import structlog

from meterprobe.metrics import HarnessMetrics

logger = structlog.get_logger()

CheckT = TypeVar("CheckT")

# a probe performs one attempt with the given check, raising on failure
Probe = Callable[[CheckT], Awaitable[None]]


class PollTimeoutError(Exception):
    """
    raised when a poll did not succeed before its deadline.
    The last attempt's error is kept in last_error.
    """

    def __init__(self, name: "str", timeout: "float", last_error: "BaseException"):
        super().__init__(
            f"{name}: expectation not met for {timeout:.3f}s: {last_error}"
        )
        self.name = name
        self.timeout = timeout
        self.last_error = last_error


class Deadline:
    """
    Deadline tracks the wall-clock budget of one polling phase
    on the monotonic clock.
    """

    def __init__(self, timeout: "float") -> "None":
        self.timeout = timeout
        self._started = time.monotonic()

    @property
    def elapsed(self) -> "float":
        return time.monotonic() - self._started

    @property
    def remaining(self) -> "float":
        return max(0.0, self.timeout - self.elapsed)

    @property
    def expired(self) -> "bool":
        return self.elapsed > self.timeout


async def poll(
    probe: "Probe[CheckT]",
    check: "CheckT",
    *,
    timeout: "float",
    interval: "float",
    name: "str | None" = None,
    metrics: "HarnessMetrics | None" = None,
) -> "None":
    """
    calls probe(check) until it returns without raising, sleeping a
    fixed interval between attempts. Once an attempt fails after the
    deadline has passed, PollTimeoutError is raised from the last
    error. There is no attempt cap besides the deadline.

    A probe that never returns hangs the poll; callers bound it with
    asyncio.timeout when the probe's own behaviour cannot be trusted.
    """
    poll_name = name or getattr(probe, "__qualname__", "probe")
    deadline = Deadline(timeout)
    attempt = 1

    logger.debug("poll_first_attempt", poll=poll_name, timeout=timeout)
    while True:
        try:
            await probe(check)
        except Exception as err:
            if metrics is not None:
                metrics.inc_poll_attempt(poll_name, "failure")

            if deadline.expired:
                logger.warning(
                    "poll_timed_out",
                    poll=poll_name,
                    timeout=timeout,
                    attempts=attempt,
                    error=str(err),
                )
                if metrics is not None:
                    metrics.observe_poll_duration(poll_name, deadline.elapsed)
                raise PollTimeoutError(poll_name, timeout, err) from err

            logger.debug(
                "poll_attempt_failed",
                poll=poll_name,
                attempt=attempt,
                remaining=round(deadline.remaining, 3),
            )
            await asyncio.sleep(interval)
            attempt += 1
            continue

        if metrics is not None:
            metrics.inc_poll_attempt(poll_name, "success")
            metrics.observe_poll_duration(poll_name, deadline.elapsed)
        logger.debug("poll_expectation_met", poll=poll_name, attempts=attempt)
        return

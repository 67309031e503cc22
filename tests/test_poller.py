import asyncio
import time

import pytest
from prometheus_client import CollectorRegistry

from meterprobe.metrics import HarnessMetrics
from meterprobe.poller import Deadline, PollTimeoutError, poll

# allowance for event loop scheduling on slow CI machines
_SLACK = 0.15


class CountingProbe:
    """
    fails until the succeed_on-th call, recording what it was given.
    """

    def __init__(self, succeed_on: "int | None" = None) -> "None":
        self.calls = 0
        self.checks: "list[object]" = []
        self._succeed_on = succeed_on

    async def __call__(self, check: "object") -> "None":
        self.calls += 1
        self.checks.append(check)
        if self._succeed_on is None or self.calls < self._succeed_on:
            raise AssertionError(f"attempt {self.calls} not converged")


class TestPoll:
    @pytest.mark.asyncio
    async def test_immediate_success(self) -> "None":
        probe = CountingProbe(succeed_on=1)
        started = time.monotonic()
        await poll(probe, "check", timeout=1.0, interval=0.5)
        assert probe.calls == 1
        assert probe.checks == ["check"]
        assert time.monotonic() - started < 0.5

    @pytest.mark.asyncio
    async def test_success_on_nth_call_waits_intervals(self) -> "None":
        probe = CountingProbe(succeed_on=4)
        started = time.monotonic()
        await poll(probe, None, timeout=5.0, interval=0.05)
        elapsed = time.monotonic() - started
        assert probe.calls == 4
        assert elapsed >= 3 * 0.05

    @pytest.mark.asyncio
    async def test_always_failing_probe_times_out(self) -> "None":
        probe = CountingProbe()
        started = time.monotonic()
        with pytest.raises(PollTimeoutError) as exc_info:
            await poll(probe, None, timeout=0.3, interval=0.05, name="always_fails")
        elapsed = time.monotonic() - started

        assert elapsed >= 0.3
        assert elapsed <= 0.3 + 0.05 + _SLACK
        assert exc_info.value.name == "always_fails"
        assert isinstance(exc_info.value.last_error, AssertionError)
        assert str(probe.calls) in str(exc_info.value.last_error)
        assert exc_info.value.__cause__ is exc_info.value.last_error

    @pytest.mark.asyncio
    async def test_negative_budget_tries_once(self) -> "None":
        probe = CountingProbe()
        with pytest.raises(PollTimeoutError):
            await poll(probe, None, timeout=-1.0, interval=0.05)
        assert probe.calls == 1

    @pytest.mark.asyncio
    async def test_cancellation_propagates(self) -> "None":
        probe = CountingProbe()
        task = asyncio.create_task(poll(probe, None, timeout=10.0, interval=0.05))
        await asyncio.sleep(0.12)
        task.cancel()
        with pytest.raises(asyncio.CancelledError):
            await task

    @pytest.mark.asyncio
    async def test_records_attempts(self, registry: "CollectorRegistry") -> "None":
        metrics = HarnessMetrics(registry=registry)
        probe = CountingProbe(succeed_on=3)
        await poll(probe, None, timeout=5.0, interval=0.01, name="report", metrics=metrics)

        assert (
            registry.get_sample_value(
                "meterprobe_poll_attempts_total", {"name": "report", "outcome": "failure"}
            )
            == 2.0
        )
        assert (
            registry.get_sample_value(
                "meterprobe_poll_attempts_total", {"name": "report", "outcome": "success"}
            )
            == 1.0
        )
        assert (
            registry.get_sample_value(
                "meterprobe_poll_duration_seconds_count", {"name": "report"}
            )
            == 1.0
        )


class TestDeadline:
    def test_not_expired_at_start(self) -> "None":
        deadline = Deadline(10.0)
        assert not deadline.expired
        assert 0 < deadline.remaining <= 10.0

    def test_expired_after_timeout(self) -> "None":
        deadline = Deadline(0.01)
        time.sleep(0.02)
        assert deadline.expired
        assert deadline.remaining == 0.0

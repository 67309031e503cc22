import asyncio
import calendar
import contextlib
import functools
import time
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import AsyncIterator, Awaitable, Callable, Sequence

import httpx
import structlog

from meterprobe.config import Config, HarnessEnvironment
from meterprobe.database import drop_databases
from meterprobe.emulator import PlatformEmulator
from meterprobe.metrics import HarnessMetrics
from meterprobe.models import AppUsageEvent, ReportExpectation, start_event
from meterprobe.poller import Deadline, poll
from meterprobe.readiness import check_readiness, readiness_url, wait_for_service
from meterprobe.report import (
    UsageReportClient,
    WindowCheck,
    check_current_month_window,
    no_window_check,
)
from meterprobe.supervisor import (
    LOCAL_DB_SERVICE,
    RENEWER,
    ROSTER,
    SHUTDOWN_ORDER,
    ProcessSupervisor,
)
from meterprobe.tokens import SIGNED_RESOURCE_TOKEN, SIGNED_SYSTEM_TOKEN

logger = structlog.get_logger()

BRIDGE_PORT = 9500
RENEWER_PORT = 9501

# allowance on top of total_timeout for the scenario body
SCENARIO_SLACK = 2.0

CURRENT_MONTH = "current-month"
STALE_EVENT = "stale"
SCENARIOS = (CURRENT_MONTH, STALE_EVENT)

SupervisorFactory = Callable[[HarnessEnvironment], ProcessSupervisor]


def months_ago(now: "datetime", months: "int") -> "datetime":
    """
    steps back whole calendar months, clamping the day to the
    length of the target month.
    """
    index = now.year * 12 + now.month - 1 - months
    year, month = divmod(index, 12)
    month += 1
    day = min(now.day, calendar.monthrange(year, month)[1])
    return now.replace(year=year, month=month, day=day)


class ScenarioTimeoutError(Exception):
    """
    raised when a scenario phase outlives the whole scenario budget.
    """

    def __init__(self, phase: "str", timeout: "float") -> "None":
        super().__init__(f"{phase} phase exceeded the scenario budget of {timeout:.3f}s")
        self.phase = phase


@dataclass(frozen=True, slots=True)
class ScenarioResult:
    name: "str"
    passed: "bool"
    duration: "float"
    error: "str | None" = None


class ScenarioDriver:
    """
    ScenarioDriver wires the emulator, the roster and the report
    polling together. One driver runs scenarios sequentially; each
    gets its own emulator and HarnessEnvironment. The bridge phase
    and the renewer phase share the scenario's total time budget.
    """

    def __init__(
        self,
        config: "Config",
        metrics: "HarnessMetrics | None" = None,
        client: "httpx.AsyncClient | None" = None,
        supervisor_factory: "SupervisorFactory | None" = None,
    ) -> "None":
        self._config = config
        self._metrics = metrics
        self._owns_client = client is None
        self._client: "httpx.AsyncClient" = client or httpx.AsyncClient(timeout=10.0)
        self._report = UsageReportClient(SIGNED_RESOURCE_TOKEN, client=self._client)
        self._supervisor_factory: "SupervisorFactory" = (
            supervisor_factory or self._default_supervisor
        )

    def _default_supervisor(self, environment: "HarnessEnvironment") -> "ProcessSupervisor":
        return ProcessSupervisor(
            environment,
            services_dir=self._config.services_dir,
            metrics=self._metrics,
        )

    async def close(self) -> "None":
        if self._owns_client:
            await self._client.aclose()

    async def __aenter__(self) -> "ScenarioDriver":
        return self

    async def __aexit__(self, *exc_info: "object") -> "None":
        await self.close()

    @contextlib.asynccontextmanager
    async def scenario(
        self, events: "Sequence[AppUsageEvent]"
    ) -> "AsyncIterator[ProcessSupervisor]":
        """
        sets up the emulator and the roster for one scenario and tears
        both down afterwards, waiting for every service to stop.
        """
        emulator = PlatformEmulator(events, metrics=self._metrics)
        await emulator.start()
        environment = HarnessEnvironment.for_emulator(emulator.base_url, self._config)
        supervisor = self._supervisor_factory(environment)
        try:
            if self._config.db:
                await drop_databases(self._client, self._config.db)
            else:
                await supervisor.start(LOCAL_DB_SERVICE)
            for name in ROSTER:
                await supervisor.start(name)

            yield supervisor
        finally:
            try:
                await supervisor.stop_all(
                    SHUTDOWN_ORDER, timeout=self._config.shutdown_timeout
                )
            finally:
                await supervisor.close()
                await emulator.close()

    async def wait_for_start_and_poll(
        self,
        component: "str",
        port: "int",
        expectation: "ReportExpectation",
        window_check: "WindowCheck",
        timeout: "float",
    ) -> "None":
        """
        waits for the component's readiness probe, which is fatal when it
        fails, then polls the usage report with whatever is left of
        timeout.
        """
        deadline = Deadline(timeout)
        url = readiness_url(component, port)
        # a service that never answers must fail here, with its last
        # error, before the scenario budget runs out
        start_timeout = min(self._config.start_timeout, max(timeout, 0.0))
        await wait_for_service(self._client, url, start_timeout, metrics=self._metrics)
        await check_readiness(
            self._client, url, SIGNED_SYSTEM_TOKEN if self._config.secured else None
        )

        remaining = timeout - deadline.elapsed
        logger.debug("time_left", component=component, remaining=round(remaining, 3))
        await poll(
            functools.partial(self._report.check, expectation),
            window_check,
            timeout=remaining,
            interval=self._config.poll_interval,
            name=f"{component}_report",
            metrics=self._metrics,
        )

    async def _bridge_then_renewer(
        self,
        events: "Sequence[AppUsageEvent]",
        expectation: "ReportExpectation",
        window_check: "WindowCheck",
    ) -> "None":
        async with self.scenario(events) as supervisor:
            budget = Deadline(self._config.total_timeout)
            phase = "bridge"
            try:
                async with asyncio.timeout(self._config.total_timeout + SCENARIO_SLACK):
                    await self.wait_for_start_and_poll(
                        "bridge", BRIDGE_PORT, expectation, window_check, budget.remaining
                    )

                    phase = "renewer"
                    await supervisor.start(RENEWER)
                    await asyncio.sleep(self._config.renewer_grace)
                    await self.wait_for_start_and_poll(
                        "renewer",
                        RENEWER_PORT,
                        expectation,
                        window_check,
                        budget.timeout - budget.elapsed,
                    )
            except TimeoutError as err:
                raise ScenarioTimeoutError(phase, budget.timeout + SCENARIO_SLACK) from err

    async def run_current_month(self) -> "None":
        """
        an app started now must show up once in the current month, and
        the renewer must not add to what the bridge already reported.
        """
        event = start_event(datetime.now(timezone.utc))
        expectation = ReportExpectation(
            organization_id=self._config.organization_id,
            expected_consuming=event.consuming_gb,
        )
        await self._bridge_then_renewer(
            [event],
            expectation,
            check_current_month_window(expectation.expected_consuming),
        )

    async def run_stale_event(self) -> "None":
        """
        an app started three months ago lies outside the slack window;
        neither the bridge nor the renewer may report it.
        """
        event = start_event(months_ago(datetime.now(timezone.utc), 3))
        expectation = ReportExpectation(
            organization_id=self._config.organization_id,
            no_report_expected=True,
        )
        await self._bridge_then_renewer([event], expectation, no_window_check)

    async def run(self, name: "str") -> "ScenarioResult":
        runners: "dict[str, Callable[[], Awaitable[None]]]" = {
            CURRENT_MONTH: self.run_current_month,
            STALE_EVENT: self.run_stale_event,
        }
        started = time.monotonic()
        structlog.contextvars.bind_contextvars(scenario=name)
        logger.info("scenario_start")
        try:
            await runners[name]()
        except Exception as err:
            logger.exception("scenario_failed")
            result = ScenarioResult(
                name=name,
                passed=False,
                duration=time.monotonic() - started,
                error=str(err),
            )
        else:
            logger.info("scenario_passed")
            result = ScenarioResult(
                name=name, passed=True, duration=time.monotonic() - started
            )
        finally:
            structlog.contextvars.unbind_contextvars("scenario")

        if self._metrics is not None:
            self._metrics.set_scenario_result(name, result.passed)
        return result

    async def run_all(self, names: "Sequence[str]" = SCENARIOS) -> "list[ScenarioResult]":
        """
        runs the scenarios one after another, never overlapping.
        """
        return [await self.run(name) for name in names]

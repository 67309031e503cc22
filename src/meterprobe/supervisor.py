import asyncio
import os
import sys
from dataclasses import dataclass, field
from typing import IO, Any, Callable, Coroutine, Iterable, Sequence

import structlog

from meterprobe.config import HarnessEnvironment
from meterprobe.metrics import HarnessMetrics

logger = structlog.get_logger()

# start order; services do not wait for each other
ROSTER: "tuple[str, ...]" = (
    "abacus-eureka-plugin",
    "abacus-provisioning-plugin",
    "abacus-account-plugin",
    "abacus-usage-collector",
    "abacus-usage-meter",
    "abacus-usage-accumulator",
    "abacus-usage-aggregator",
    "abacus-usage-reporting",
    "abacus-cf-bridge",
)
LOCAL_DB_SERVICE = "abacus-pouchserver"
RENEWER = "abacus-cf-renewer"

# reverse dependency order
SHUTDOWN_ORDER: "tuple[str, ...]" = (
    RENEWER,
    "abacus-cf-bridge",
    "abacus-usage-reporting",
    "abacus-usage-aggregator",
    "abacus-usage-accumulator",
    "abacus-usage-meter",
    "abacus-usage-collector",
    "abacus-account-plugin",
    "abacus-provisioning-plugin",
    "abacus-eureka-plugin",
    LOCAL_DB_SERVICE,
)

# reported to on_exit when the stop command could not be launched
LAUNCH_FAILED = -1

# seconds to wait for forwarded output after a stop command exits
_DRAIN_TIMEOUT = 1.0

ExitCallback = Callable[[str, int], None]


class ShutdownTimeoutError(Exception):
    def __init__(self, pending: "Sequence[str]", timeout: "float") -> "None":
        super().__init__(
            f"{len(pending)} service(s) did not stop within {timeout}s: "
            + ", ".join(pending)
        )
        self.pending = list(pending)


@dataclass(frozen=True, slots=True)
class ServiceSpec:
    name: "str"
    cwd: "str"
    start_command: "tuple[str, ...]" = ("npm", "run", "start")
    stop_command: "tuple[str, ...]" = ("npm", "run", "stop")


@dataclass
class ServiceProcess:
    """
    ServiceProcess is one launched service command. returncode is
    set once, when the process is observed to exit.
    """

    name: "str"
    cwd: "str"
    env: "dict[str, str]"
    process: "asyncio.subprocess.Process"
    returncode: "int | None" = None
    tasks: "list[asyncio.Task[None]]" = field(default_factory=list)

    @property
    def pid(self) -> "int":
        return self.process.pid


class ShutdownBarrier:
    """
    ShutdownBarrier counts roster members down as they report their
    exit and releases waiters once every member has reported.
    """

    def __init__(self, members: "Iterable[str]") -> "None":
        self._pending: "list[str]" = list(members)
        self._done = asyncio.Event()
        self.exit_codes: "dict[str, int]" = {}
        if not self._pending:
            self._done.set()

    @property
    def pending(self) -> "list[str]":
        return list(self._pending)

    def arrive(self, name: "str", code: "int") -> "None":
        if name in self._pending:
            self._pending.remove(name)
        self.exit_codes[name] = code
        logger.debug(
            "service_stopped", service=name, code=code, left=len(self._pending)
        )
        if not self._pending:
            logger.info("all_services_stopped")
            self._done.set()

    async def wait(self, timeout: "float") -> "None":
        try:
            await asyncio.wait_for(self._done.wait(), timeout=timeout)
        except TimeoutError:
            raise ShutdownTimeoutError(self._pending, timeout) from None


class ProcessSupervisor:
    """
    ProcessSupervisor launches and stops roster services with a given
    HarnessEnvironment layered over the current process environment.
    Child output is forwarded to the harness's own stdout/stderr.

    Services are long-running servers whose health is judged by
    readiness probes, so launch failures and exit codes are only
    logged here.
    """

    def __init__(
        self,
        environment: "HarnessEnvironment",
        services_dir: "str" = "node_modules",
        forward_output: "bool" = True,
        metrics: "HarnessMetrics | None" = None,
        specs: "dict[str, ServiceSpec] | None" = None,
    ) -> "None":
        self._environment = environment
        self._services_dir = services_dir
        self._forward_output = forward_output
        self._metrics = metrics
        self._specs: "dict[str, ServiceSpec]" = dict(specs or {})
        self.running: "dict[str, ServiceProcess]" = {}
        self.stopping: "list[ServiceProcess]" = []
        self.failed: "dict[str, str]" = {}
        self._tasks: "set[asyncio.Task[None]]" = set()

    def spec(self, name: "str") -> "ServiceSpec":
        if name not in self._specs:
            self._specs[name] = ServiceSpec(
                name=name, cwd=os.path.join(self._services_dir, name)
            )
        return self._specs[name]

    async def _spawn(
        self, name: "str", command: "Sequence[str]", cwd: "str"
    ) -> "ServiceProcess | None":
        env = self._environment.apply(os.environ)
        pipe = asyncio.subprocess.PIPE if self._forward_output else asyncio.subprocess.DEVNULL
        try:
            process = await asyncio.create_subprocess_exec(
                *command, cwd=cwd, env=env, stdout=pipe, stderr=pipe
            )
        except OSError as err:
            logger.error(
                "service_launch_failed",
                service=name,
                command=" ".join(command),
                cwd=cwd,
                error=str(err),
            )
            self.failed[name] = str(err)
            return None

        service = ServiceProcess(name=name, cwd=cwd, env=env, process=process)
        if self._forward_output:
            service.tasks = [
                self._track(_forward(process.stdout, sys.stdout)),
                self._track(_forward(process.stderr, sys.stderr)),
            ]
        return service

    def _track(
        self, coro: "Coroutine[Any, Any, None]"
    ) -> "asyncio.Task[None]":
        task = asyncio.create_task(coro)
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)
        return task

    async def start(self, name: "str") -> "None":
        """
        launches a service and returns without waiting for it.
        """
        spec = self.spec(name)
        logger.info("service_starting", service=name, cwd=spec.cwd)
        service = await self._spawn(name, spec.start_command, spec.cwd)
        if service is None:
            return

        self.running[name] = service
        self._track(self._watch_start(service))

    async def _watch_start(self, service: "ServiceProcess") -> "None":
        service.returncode = await service.process.wait()
        logger.debug(
            "service_start_exited", service=service.name, code=service.returncode
        )
        if self._metrics is not None:
            self._metrics.inc_service_exit(service.name, "start")

    async def stop(self, name: "str", on_exit: "ExitCallback") -> "None":
        """
        launches the stop command of a service; on_exit(name, code) is
        called once the stop command has exited.
        """
        spec = self.spec(name)
        logger.info("service_stopping", service=name, cwd=spec.cwd)
        service = await self._spawn(name, spec.stop_command, spec.cwd)
        if service is None:
            on_exit(name, LAUNCH_FAILED)
            return

        self.stopping.append(service)
        self._track(self._watch_stop(service, on_exit))

    async def _watch_stop(
        self, service: "ServiceProcess", on_exit: "ExitCallback"
    ) -> "None":
        service.returncode = await service.process.wait()
        # give forwarded output a moment to drain; a daemonized child
        # may keep the pipe open long after the stop command exits
        if service.tasks:
            await asyncio.wait(service.tasks, timeout=_DRAIN_TIMEOUT)
        if self._metrics is not None:
            self._metrics.inc_service_exit(service.name, "stop")
        on_exit(service.name, service.returncode)

    async def stop_all(
        self, names: "Sequence[str]" = SHUTDOWN_ORDER, timeout: "float" = 60.0
    ) -> "ShutdownBarrier":
        """
        stops every named service and waits for all of them to report,
        raising ShutdownTimeoutError listing the ones that did not.
        """
        barrier = ShutdownBarrier(names)
        for name in names:
            await self.stop(name, barrier.arrive)
        await barrier.wait(timeout)
        return barrier

    async def close(self) -> "None":
        """
        kills start and stop commands that are still running and
        cancels output forwarding.
        """
        for service in [*self.running.values(), *self.stopping]:
            if service.returncode is None and service.process.returncode is None:
                logger.warning("service_killed", service=service.name, pid=service.pid)
                try:
                    service.process.kill()
                except ProcessLookupError:
                    pass

        for task in list(self._tasks):
            task.cancel()
        if self._tasks:
            await asyncio.gather(*self._tasks, return_exceptions=True)
        self.running.clear()
        self.stopping.clear()


async def _forward(
    stream: "asyncio.StreamReader | None", target: "IO[str]"
) -> "None":
    if stream is None:
        return
    while True:
        line = await stream.readline()
        if not line:
            return
        target.write(line.decode(errors="replace"))
        target.flush()

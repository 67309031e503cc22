import asyncio

import structlog
from prometheus_client import start_http_server

from meterprobe.cli import parse_args
from meterprobe.config import Config
from meterprobe.logging import setup_logging
from meterprobe.metrics import HarnessMetrics
from meterprobe.scenario import SCENARIOS, ScenarioDriver, ScenarioResult

logger = structlog.get_logger()


def _parse_listen_address(addr: "str") -> "tuple[str, int]":
    """
    parses listen address in format ':9186' or '0.0.0.0:9186'.
    """
    if addr.startswith(":"):
        return ("0.0.0.0", int(addr[1:]))

    host, port = addr.rsplit(":", 1)
    return (host, int(port))


async def _run(config: "Config", metrics: "HarnessMetrics") -> "list[ScenarioResult]":
    names = SCENARIOS if config.scenario == "all" else (config.scenario,)
    async with ScenarioDriver(config, metrics=metrics) as driver:
        return await driver.run_all(names)


def main() -> "None":
    config = parse_args()
    setup_logging(config.log_level, config.log_json)

    metrics = HarnessMetrics()
    if config.metrics_address:
        host, port = _parse_listen_address(config.metrics_address)
        start_http_server(port, addr=host)
        logger.info("metrics_server_started", host=host, port=port)

    results = asyncio.run(_run(config, metrics))

    for result in results:
        logger.info(
            "scenario_result",
            scenario=result.name,
            passed=result.passed,
            duration=round(result.duration, 3),
            error=result.error,
        )

    failed = [r.name for r in results if not r.passed]
    if failed:
        raise SystemExit(f"Scenarios failed: {', '.join(failed)}")


if __name__ == "__main__":
    main()

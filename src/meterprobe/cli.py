import argparse

from meterprobe.config import Config
from meterprobe.scenario import SCENARIOS


def parse_args(argv: "list[str] | None" = None) -> "Config":
    parser = argparse.ArgumentParser(
        prog="meterprobe",
        description="End-to-end verification of a usage metering pipeline",
    )
    parser.add_argument(
        "-t",
        "--start-timeout",
        dest="start_timeout",
        type=int,
        default=100000,
        help="Service start timeout in milliseconds (default: 100000)",
    )
    parser.add_argument(
        "-x",
        "--total-timeout",
        dest="total_timeout",
        type=int,
        default=200000,
        help="Per scenario timeout in milliseconds (default: 200000)",
    )
    parser.add_argument(
        "--scenario",
        dest="scenario",
        default="all",
        choices=["all", *SCENARIOS],
        help="Scenario to run (default: all)",
    )
    parser.add_argument(
        "--insecure",
        dest="secured",
        action="store_false",
        help="Run the services without OAuth token checks",
    )
    parser.add_argument(
        "--web.listen-address",
        dest="metrics_address",
        default="",
        help="Expose harness metrics on this address, e.g. :9186 (default: off)",
    )
    parser.add_argument(
        "--log.level",
        dest="log_level",
        default="info",
        choices=["debug", "info", "warning", "error"],
        help="Log level (default: info)",
    )
    parser.add_argument(
        "--log.json",
        dest="log_json",
        action="store_true",
        help="Log one JSON object per line",
    )

    args = parser.parse_args(argv)
    config = Config.from_env()
    config.start_timeout = args.start_timeout / 1000
    config.total_timeout = args.total_timeout / 1000
    config.scenario = args.scenario
    config.secured = args.secured
    config.metrics_address = args.metrics_address
    config.log_level = args.log_level
    config.log_json = args.log_json
    return config

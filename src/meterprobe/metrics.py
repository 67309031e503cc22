from prometheus_client import REGISTRY, CollectorRegistry, Counter, Gauge, Histogram


class HarnessMetrics:
    """
    records what the harness observed while driving the pipeline:
    poll attempts, emulator traffic, roster exits and scenario
    outcomes.
    """

    def __init__(self, registry: "CollectorRegistry" = REGISTRY) -> "None":
        self._poll_attempts: "Counter" = Counter(
            "meterprobe_poll_attempts_total",
            "Total poll attempts by poll name and outcome",
            ["name", "outcome"],
            registry=registry,
        )
        self._poll_duration: "Histogram" = Histogram(
            "meterprobe_poll_duration_seconds",
            "Time spent polling until success or timeout",
            ["name"],
            buckets=(0.1, 0.5, 1, 5, 10, 30, 60, 120, 300),
            registry=registry,
        )
        self._emulator_requests: "Counter" = Counter(
            "meterprobe_emulator_requests_total",
            "Total requests served by the platform emulator",
            ["endpoint"],
            registry=registry,
        )
        self._service_exits: "Counter" = Counter(
            "meterprobe_service_exits_total",
            "Total roster processes exited, by service and action",
            ["service", "action"],
            registry=registry,
        )
        self._scenario_result: "Gauge" = Gauge(
            "meterprobe_scenario_result",
            "1 if the last run of the scenario passed, 0 otherwise",
            ["scenario"],
            registry=registry,
        )

    def inc_poll_attempt(self, name: "str", outcome: "str") -> "None":
        self._poll_attempts.labels(name=name, outcome=outcome).inc()

    def observe_poll_duration(self, name: "str", duration_seconds: "float") -> "None":
        self._poll_duration.labels(name=name).observe(duration_seconds)

    def inc_emulator_request(self, endpoint: "str") -> "None":
        self._emulator_requests.labels(endpoint=endpoint).inc()

    def inc_service_exit(self, service: "str", action: "str") -> "None":
        """
        action is "start" or "stop", naming the command that exited.
        """
        self._service_exits.labels(service=service, action=action).inc()

    def set_scenario_result(self, scenario: "str", passed: "bool") -> "None":
        self._scenario_result.labels(scenario=scenario).set(1 if passed else 0)

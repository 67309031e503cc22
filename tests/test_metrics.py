from prometheus_client import CollectorRegistry

from meterprobe.metrics import HarnessMetrics


class TestHarnessMetrics:
    def test_registers_metric_families(self, registry: "CollectorRegistry") -> "None":
        HarnessMetrics(registry=registry)
        # prometheus_client strips _total suffix from Counter family names
        metric_names = [m.name for m in registry.collect()]
        assert "meterprobe_poll_attempts" in metric_names
        assert "meterprobe_poll_duration_seconds" in metric_names
        assert "meterprobe_emulator_requests" in metric_names
        assert "meterprobe_service_exits" in metric_names
        assert "meterprobe_scenario_result" in metric_names

    def test_service_exits_by_action(self, registry: "CollectorRegistry") -> "None":
        metrics = HarnessMetrics(registry=registry)
        metrics.inc_service_exit("abacus-cf-bridge", "start")
        metrics.inc_service_exit("abacus-cf-bridge", "stop")
        metrics.inc_service_exit("abacus-cf-bridge", "stop")

        assert (
            registry.get_sample_value(
                "meterprobe_service_exits_total",
                {"service": "abacus-cf-bridge", "action": "stop"},
            )
            == 2.0
        )

    def test_scenario_result_overwritten(self, registry: "CollectorRegistry") -> "None":
        metrics = HarnessMetrics(registry=registry)
        metrics.set_scenario_result("stale", True)
        metrics.set_scenario_result("stale", False)

        assert (
            registry.get_sample_value("meterprobe_scenario_result", {"scenario": "stale"})
            == 0.0
        )

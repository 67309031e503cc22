import pytest
from prometheus_client import CollectorRegistry

from meterprobe.metrics import HarnessMetrics


@pytest.fixture()
def registry() -> "CollectorRegistry":
    """
    fresh Prometheus registry to avoid cross-test state.
    """
    return CollectorRegistry()


@pytest.fixture()
def metrics(registry: "CollectorRegistry") -> "HarnessMetrics":
    return HarnessMetrics(registry=registry)

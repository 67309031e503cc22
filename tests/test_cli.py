import pytest

from meterprobe.__main__ import _parse_listen_address
from meterprobe.cli import parse_args


class TestParseArgs:
    def test_defaults(self, monkeypatch: "object") -> "None":
        monkeypatch.delenv("DB", raising=False)
        config = parse_args([])
        assert config.start_timeout == 100.0
        assert config.total_timeout == 200.0
        assert config.scenario == "all"
        assert config.secured is True
        assert config.metrics_address == ""

    def test_timeouts_are_milliseconds(self) -> "None":
        config = parse_args(["-t", "5000", "--total-timeout", "30000"])
        assert config.start_timeout == 5.0
        assert config.total_timeout == 30.0

    def test_flags(self) -> "None":
        config = parse_args(
            ["--insecure", "--scenario", "stale", "--log.level", "debug", "--log.json"]
        )
        assert config.secured is False
        assert config.scenario == "stale"
        assert config.log_level == "debug"
        assert config.log_json is True

    def test_unknown_scenario_rejected(self) -> "None":
        with pytest.raises(SystemExit):
            parse_args(["--scenario", "nope"])


class TestListenAddress:
    def test_port_only(self) -> "None":
        assert _parse_listen_address(":9186") == ("0.0.0.0", 9186)

    def test_host_and_port(self) -> "None":
        assert _parse_listen_address("127.0.0.1:9186") == ("127.0.0.1", 9186)

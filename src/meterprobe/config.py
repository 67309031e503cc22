import os
from dataclasses import dataclass, field
from typing import Mapping

from meterprobe.models import FIXTURE_ORG_GUID
from meterprobe.tokens import TOKEN_ALGORITHM, TOKEN_SECRET


@dataclass
class Config:
    # timeouts and intervals in seconds
    start_timeout: "float" = 100.0
    total_timeout: "float" = 200.0
    poll_interval: "float" = 1.0
    # let the renewer kick in before probing it
    renewer_grace: "float" = 2.0
    shutdown_timeout: "float" = 60.0

    secured: "bool" = True
    # slack window handed to the services, e.g. "63D"
    slack: "str" = "63D"
    retry_interval_ms: "int" = 2000

    log_level: "str" = "info"
    log_json: "bool" = False
    # optional Prometheus endpoint, format ":9186" or "0.0.0.0:9186"
    metrics_address: "str" = ""
    scenario: "str" = "all"

    # external database url; the local db service is started when empty
    db: "str" = ""
    # directory holding one module directory per roster service
    services_dir: "str" = "node_modules"
    organization_id: "str" = FIXTURE_ORG_GUID

    @classmethod
    def from_env(cls) -> "Config":
        return cls(
            db=os.environ.get("DB", ""),
            services_dir=os.environ.get("METERPROBE_SERVICES_DIR", "node_modules"),
            organization_id=os.environ.get("METERPROBE_ORG_ID", FIXTURE_ORG_GUID),
        )


@dataclass(frozen=True)
class HarnessEnvironment:
    """
    HarnessEnvironment is the full set of variables the roster
    services read at start-up. It is built once per scenario and
    passed to every launch, the harness's own process environment
    is never modified.
    """

    api: "str"
    auth_server: "str"
    secured: "bool" = True
    cf_client_id: "str" = "abacus-cf-renewer"
    cf_client_secret: "str" = "secret"
    client_id: "str" = "abacus-linux-container"
    client_secret: "str" = "secret"
    abacus_client_id: "str" = "abacus-cf-renewer"
    abacus_client_secret: "str" = "secret"
    jwt_key: "str" = TOKEN_SECRET
    jwt_algo: "str" = TOKEN_ALGORITHM
    slack: "str" = "63D"
    retry_interval_ms: "int" = 2000
    db: "str" = ""
    extra: "Mapping[str, str]" = field(default_factory=dict)

    @classmethod
    def for_emulator(cls, base_url: "str", config: "Config") -> "HarnessEnvironment":
        """
        points both the platform API and the OAuth server at the emulator.
        """
        return cls(
            api=base_url,
            auth_server=base_url,
            secured=config.secured,
            slack=config.slack,
            retry_interval_ms=config.retry_interval_ms,
            db=config.db,
        )

    def to_env(self) -> "dict[str, str]":
        env = {
            "SECURED": "true" if self.secured else "false",
            "API": self.api,
            "AUTH_SERVER": self.auth_server,
            "CF_CLIENT_ID": self.cf_client_id,
            "CF_CLIENT_SECRET": self.cf_client_secret,
            "CLIENT_ID": self.client_id,
            "CLIENT_SECRET": self.client_secret,
            "ABACUS_CLIENT_ID": self.abacus_client_id,
            "ABACUS_CLIENT_SECRET": self.abacus_client_secret,
            "JWTKEY": self.jwt_key,
            "JWTALGO": self.jwt_algo,
            "SLACK": self.slack,
            "RETRY_INTERVAL": str(self.retry_interval_ms),
        }
        if self.db:
            env["DB"] = self.db
        env.update(self.extra)
        return env

    def apply(self, base: "Mapping[str, str]") -> "dict[str, str]":
        """
        returns a copy of base with the harness variables layered on top.
        """
        merged = dict(base)
        merged.update(self.to_env())
        return merged

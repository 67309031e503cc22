from types import TracebackType
from typing import Sequence

import structlog
from aiohttp import web

from meterprobe.metrics import HarnessMetrics
from meterprobe.models import AppUsageEvent
from meterprobe.tokens import TOKEN_ID, select_token

logger = structlog.get_logger()

# advertised lifetime of issued tokens, in seconds
TOKEN_EXPIRES_IN = 100000


class PlatformEmulator:
    """
    PlatformEmulator stands in for the platform's app usage events
    API and its OAuth token issuer. Services discover the issuer
    through /v2/info, which points back at the emulator itself.

    The event list is replaced per scenario through the events
    attribute. Scenarios never overlap, so requests always see a
    complete list.
    """

    def __init__(
        self,
        events: "Sequence[AppUsageEvent]" = (),
        host: "str" = "127.0.0.1",
        metrics: "HarnessMetrics | None" = None,
    ) -> "None":
        self.events: "list[AppUsageEvent]" = list(events)
        self._host = host
        self._metrics = metrics
        self._runner: "web.AppRunner | None" = None
        self._port: "int | None" = None

        self.app = web.Application()
        self.app.router.add_get("/v2/app_usage_events", self._app_usage_events)
        self.app.router.add_get("/v2/info", self._info)
        self.app.router.add_route("*", "/oauth/token", self._oauth_token)

    @property
    def port(self) -> "int":
        if self._port is None:
            raise RuntimeError("emulator is not listening")
        return self._port

    @property
    def base_url(self) -> "str":
        return f"http://{self._host}:{self.port}"

    async def start(self) -> "None":
        """
        binds an ephemeral port and starts serving.
        """
        runner = web.AppRunner(self.app, access_log=None)
        await runner.setup()
        site = web.TCPSite(runner, self._host, 0)
        await site.start()

        sockets = site._server.sockets if site._server else []
        if not sockets:
            await runner.cleanup()
            raise RuntimeError("emulator failed to bind")

        self._runner = runner
        self._port = int(sockets[0].getsockname()[1])
        logger.info("emulator_listening", port=self._port)

    async def close(self) -> "None":
        if self._runner is not None:
            await self._runner.cleanup()
            logger.info("emulator_closed", port=self._port)
        self._runner = None
        self._port = None

    async def __aenter__(self) -> "PlatformEmulator":
        await self.start()
        return self

    async def __aexit__(
        self,
        exc_type: "type[BaseException] | None",
        exc: "BaseException | None",
        tb: "TracebackType | None",
    ) -> "None":
        await self.close()

    def _count(self, endpoint: "str") -> "None":
        if self._metrics is not None:
            self._metrics.inc_emulator_request(endpoint)

    async def _app_usage_events(self, request: "web.Request") -> "web.Response":
        self._count("app_usage_events")

        # pollers page with after_guid; a single page is all there is
        if "after_guid" in request.query:
            logger.debug("emulator_events_exhausted", after_guid=request.query["after_guid"])
            return web.json_response(
                {
                    "total_results": 0,
                    "total_pages": 0,
                    "prev_url": None,
                    "next_url": None,
                    "resources": [],
                }
            )

        resources = [event.to_resource() for event in self.events]
        logger.debug("emulator_events_listed", count=len(resources))
        return web.json_response(
            {
                "total_results": len(resources),
                "total_pages": 1,
                "prev_url": None,
                "next_url": None,
                "resources": resources,
            }
        )

    async def _info(self, request: "web.Request") -> "web.Response":
        self._count("info")
        logger.debug("emulator_info_requested")
        return web.json_response({"token_endpoint": self.base_url})

    async def _oauth_token(self, request: "web.Request") -> "web.Response":
        self._count("oauth_token")

        scope = request.query.get("scope")
        if scope is None and request.method == "POST" and request.can_read_body:
            form = await request.post()
            value = form.get("scope")
            scope = value if isinstance(value, str) else None

        logger.debug("emulator_token_requested", scope=scope)
        scopes: "list[str] | str" = scope.split() if scope else ""
        return web.json_response(
            {
                "token_type": "bearer",
                "access_token": select_token(scope),
                "expires_in": TOKEN_EXPIRES_IN,
                "scope": scopes,
                "authorities": scopes,
                "jti": TOKEN_ID,
            }
        )

import httpx
import structlog

from meterprobe.metrics import HarnessMetrics
from meterprobe.poller import PollTimeoutError, poll

logger = structlog.get_logger()


class ServiceStartError(Exception):
    """
    raised when a service did not come up. Unlike report checks this
    is not retried: it means a roster member failed to boot.
    """


def readiness_url(component: "str", port: "int", host: "str" = "localhost") -> "str":
    return f"http://{host}:{port}/v1/cf/{component}"


async def wait_for_service(
    client: "httpx.AsyncClient",
    url: "str",
    timeout: "float",
    interval: "float" = 0.25,
    metrics: "HarnessMetrics | None" = None,
) -> "None":
    """
    waits until something answers HTTP on url, whatever the status.
    """

    async def ping(_: "None") -> "None":
        await client.get(url)

    try:
        await poll(
            ping,
            None,
            timeout=timeout,
            interval=interval,
            name=f"wait_for {url}",
            metrics=metrics,
        )
    except PollTimeoutError as err:
        raise ServiceStartError(
            f"{url} did not answer within {timeout}s: {err.last_error!r}"
        ) from err
    logger.info("service_answering", url=url)


async def check_readiness(
    client: "httpx.AsyncClient", url: "str", token: "str | None" = None
) -> "None":
    """
    the readiness probe must return 200; the token is sent as a bearer
    authorization when the services run secured.
    """
    headers = {"Authorization": f"bearer {token}" if token else ""}
    try:
        resp = await client.get(url, headers=headers)
    except httpx.HTTPError as err:
        raise ServiceStartError(f"readiness probe {url} failed: {err!r}") from err

    if resp.status_code != 200:
        raise ServiceStartError(
            f"readiness probe {url} returned {resp.status_code}"
        )
    logger.info("service_ready", url=url)

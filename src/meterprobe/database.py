import re
from urllib.parse import quote

import httpx
import structlog

logger = structlog.get_logger()

# databases owned by the metering services
HARNESS_DB_PATTERN = re.compile(r"^abacus-")


async def drop_databases(
    client: "httpx.AsyncClient",
    db_url: "str",
    pattern: "re.Pattern[str]" = HARNESS_DB_PATTERN,
) -> "list[str]":
    """
    deletes every database matching pattern on a CouchDB compatible
    server and returns the dropped names. Errors propagate: a server
    that cannot be reset would leave stale usage behind.
    """
    base = db_url.rstrip("/")
    resp = await client.get(f"{base}/_all_dbs")
    resp.raise_for_status()

    dropped: "list[str]" = []
    for name in resp.json():
        if not pattern.search(name):
            continue
        delete = await client.delete(f"{base}/{quote(name, safe='')}")
        # already gone is fine
        if delete.status_code != 404:
            delete.raise_for_status()
        dropped.append(name)

    logger.info("databases_dropped", count=len(dropped), server=base)
    return dropped

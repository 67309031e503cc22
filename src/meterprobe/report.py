import json
from typing import Any, Callable

import httpx
import structlog

from meterprobe.models import TIME_WINDOWS, ReportExpectation

logger = structlog.get_logger()

REPORTING_URL = "http://localhost:9088"
REPORT_PATH = "/v1/metering/organizations/{organization_id}/aggregated/usage"

# a window check receives (window name, usage entry, aggregation level)
WindowCheck = Callable[[str, "dict[str, Any]", "str | None"], None]


class ReportCheckError(Exception):
    """
    raised when the usage report could not be fetched or does not
    match the expectation yet. The poller retries on it.
    """

    def __init__(self, message: "str", report: "Any" = None) -> "None":
        rendered = (
            json.dumps(report, indent=2, default=str) if report is not None else None
        )
        super().__init__(f"{message}\nUsage report:\n{rendered}")
        self.reason = message
        self.report = report


def _require(condition: "bool", message: "str") -> "None":
    if not condition:
        raise AssertionError(message)


def _missing_keys(obj: "Any", *keys: "str") -> "list[str]":
    if not isinstance(obj, dict):
        return list(keys)
    return [k for k in keys if k not in obj]


def check_current_month_window(expected_consuming: "float | None") -> "WindowCheck":
    """
    returns a window check asserting on the current month (slot 0 of
    the month window). At plan level the consumed quantity must equal
    expected_consuming; at every level the charge must be positive.
    """

    def check(window_name: "str", usage: "dict[str, Any]", level: "str | None" = None) -> "None":
        try:
            current_month = usage["windows"][TIME_WINDOWS["month"]][0]
        except (KeyError, IndexError, TypeError):
            current_month = None
        _require(current_month is not None, f"{window_name}: no current month window")

        if level != "resource":
            missing = _missing_keys(current_month, "quantity", "charge")
            _require(not missing, f"{window_name}: missing keys {missing}")
            consuming = (current_month["quantity"] or {}).get("consuming")
            logger.debug(
                "window_checked",
                window=window_name,
                expected_consuming=expected_consuming,
                consuming=consuming,
                charge=current_month.get("charge"),
            )
            _require(
                consuming == expected_consuming,
                f"{window_name}: expected consuming={expected_consuming}, "
                f"got {consuming}",
            )
        else:
            logger.debug(
                "window_checked",
                window=window_name,
                charge=current_month.get("charge"),
            )

        charge = current_month.get("charge")
        _require(charge is not None, f"{window_name}: no charge")
        _require(
            isinstance(charge, (int, float)) and charge > 0,
            f"{window_name}: expected charge > 0, got {charge}",
        )

    return check


def no_window_check(
    window_name: "str", usage: "dict[str, Any]", level: "str | None" = None
) -> "None":
    """
    accepts any window, used when no usage is expected at all.
    """


def validate_report(
    report: "Any", expectation: "ReportExpectation", window_check: "WindowCheck"
) -> "None":
    """
    asserts the report shape for the expectation, raising AssertionError
    on the first mismatch.
    """
    missing = _missing_keys(report, "resources", "spaces")
    _require(not missing, f"report is missing keys {missing}")
    resources = report["resources"]
    spaces = report["spaces"]

    if expectation.no_report_expected:
        _require(len(resources) == 0, f"expected no resources, got {len(resources)}")
        _require(len(spaces) == 0, f"expected no spaces, got {len(spaces)}")
        return

    _require(len(resources) == 1, f"expected 1 resource, got {len(resources)}")
    _require(len(spaces) == 1, f"expected 1 space, got {len(spaces)}")

    resource = resources[0]
    missing = _missing_keys(resource, "plans", "aggregated_usage")
    _require(not missing, f"resource is missing keys {missing}")
    _require(bool(resource["plans"]), "resource has no plans")
    plan = resource["plans"][0]
    _require(
        bool(plan.get("aggregated_usage")), "plan has no aggregated usage"
    )
    _require(bool(resource["aggregated_usage"]), "resource has no aggregated usage")

    window_check("Plans aggregated usage", plan["aggregated_usage"][0], None)
    window_check("Aggregated usage", resource["aggregated_usage"][0], "resource")


class UsageReportClient:
    """
    UsageReportClient fetches an organization's aggregated usage
    report with a bearer token and checks it against an expectation.
    Its check method is meant to be used as a poll probe.
    """

    def __init__(
        self,
        token: "str",
        base_url: "str" = REPORTING_URL,
        client: "httpx.AsyncClient | None" = None,
    ) -> "None":
        self._base_url = base_url.rstrip("/")
        self._owns_client = client is None
        self._client: "httpx.AsyncClient" = client or httpx.AsyncClient(timeout=10.0)
        self._headers: "dict[str, str]" = {"Authorization": f"bearer {token}"}

    async def close(self) -> "None":
        """
        closes the underlying HTTP client when it was created here.
        """
        if self._owns_client:
            await self._client.aclose()

    def url(self, organization_id: "str") -> "str":
        return self._base_url + REPORT_PATH.format(organization_id=organization_id)

    async def fetch(self, organization_id: "str") -> "Any":
        resp = await self._client.get(self.url(organization_id), headers=self._headers)
        resp.raise_for_status()
        return resp.json()

    async def check(
        self, expectation: "ReportExpectation", window_check: "WindowCheck"
    ) -> "None":
        """
        one attempt: fetch the report and validate it. Every failure,
        transport or assertion, is raised as ReportCheckError.
        """
        try:
            report = await self.fetch(expectation.organization_id)
        except (httpx.HTTPError, ValueError) as err:
            logger.debug("report_fetch_failed", error=str(err))
            raise ReportCheckError(f"report fetch failed: {err!r}") from err

        try:
            validate_report(report, expectation, window_check)
        except (AssertionError, AttributeError, KeyError, IndexError, TypeError) as err:
            logger.debug("report_check_failed", error=str(err))
            raise ReportCheckError(f"check failed: {err}", report) from err

        logger.info(
            "report_checks_passed",
            organization_id=expectation.organization_id,
            no_report_expected=expectation.no_report_expected,
        )

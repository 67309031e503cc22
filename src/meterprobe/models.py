import enum
from dataclasses import dataclass
from datetime import datetime, timezone

# index of each granularity inside a usage entry's "windows" list
TIME_WINDOWS: "dict[str, int]" = {
    "second": 0,
    "minute": 1,
    "hour": 2,
    "day": 3,
    "month": 4,
}

FIXTURE_ORG_GUID = "e8139b76-e829-4af3-b332-87316b1c0a6c"
FIXTURE_SPACE_GUID = "a7e44fcd-25bf-4023-8a87-03fba4882995"
FIXTURE_EVENT_GUID = "b457f9e6-19f6-4263-9ffe-be39feccd576"


class UsageState(str, enum.Enum):
    STARTED = "STARTED"
    STOPPED = "STOPPED"


def _isoformat(ts: "datetime") -> "str":
    """
    renders a timestamp the way the platform API does:
    UTC, millisecond precision, trailing Z.
    """
    ts = ts.astimezone(timezone.utc)
    return ts.strftime("%Y-%m-%dT%H:%M:%S.") + f"{ts.microsecond // 1000:03d}Z"


@dataclass(frozen=True, slots=True)
class AppUsageEvent:
    """
    AppUsageEvent represents one application lifecycle
    transition as listed by the platform's app usage
    events API.
    """

    guid: "str"
    created_at: "datetime"
    state: "UsageState"
    previous_state: "UsageState"
    memory_in_mb_per_instance: "int"
    previous_memory_in_mb_per_instance: "int"
    instance_count: "int"
    previous_instance_count: "int"
    app_guid: "str"
    app_name: "str"
    space_guid: "str"
    space_name: "str"
    org_guid: "str"
    package_state: "str" = "PENDING"
    previous_package_state: "str" = "PENDING"
    process_type: "str" = "web"
    buildpack_guid: "str | None" = None
    buildpack_name: "str | None" = None
    parent_app_guid: "str | None" = None
    parent_app_name: "str | None" = None
    task_guid: "str | None" = None
    task_name: "str | None" = None

    @property
    def consuming_gb(self) -> "float":
        """
        memory held by the running instances, in GB.
        """
        return self.instance_count * self.memory_in_mb_per_instance / 1024

    def to_resource(self) -> "dict[str, object]":
        """
        renders the event in the platform's metadata/entity wire shape.
        """
        return {
            "metadata": {
                "guid": self.guid,
                "url": f"/v2/app_usage_events/{self.guid}",
                "created_at": _isoformat(self.created_at),
            },
            "entity": {
                "state": self.state.value,
                "previous_state": self.previous_state.value,
                "memory_in_mb_per_instance": self.memory_in_mb_per_instance,
                "previous_memory_in_mb_per_instance": (
                    self.previous_memory_in_mb_per_instance
                ),
                "instance_count": self.instance_count,
                "previous_instance_count": self.previous_instance_count,
                "app_guid": self.app_guid,
                "app_name": self.app_name,
                "space_guid": self.space_guid,
                "space_name": self.space_name,
                "org_guid": self.org_guid,
                "buildpack_guid": self.buildpack_guid,
                "buildpack_name": self.buildpack_name,
                "package_state": self.package_state,
                "previous_package_state": self.previous_package_state,
                "parent_app_guid": self.parent_app_guid,
                "parent_app_name": self.parent_app_name,
                "process_type": self.process_type,
                "task_name": self.task_name,
                "task_guid": self.task_guid,
            },
        }


def start_event(
    created_at: "datetime",
    memory_in_mb: "int" = 512,
    instances: "int" = 1,
    org_guid: "str" = FIXTURE_ORG_GUID,
) -> "AppUsageEvent":
    """
    builds the fixture event of a single app going from
    STOPPED to STARTED.
    """
    return AppUsageEvent(
        guid=FIXTURE_EVENT_GUID,
        created_at=created_at,
        state=UsageState.STARTED,
        previous_state=UsageState.STOPPED,
        memory_in_mb_per_instance=memory_in_mb,
        previous_memory_in_mb_per_instance=memory_in_mb,
        instance_count=instances,
        previous_instance_count=instances,
        app_guid="35c4ff2f",
        app_name="app",
        space_guid=FIXTURE_SPACE_GUID,
        space_name="abacus",
        org_guid=org_guid,
    )


@dataclass(frozen=True, slots=True)
class ReportExpectation:
    """
    ReportExpectation describes what the aggregated usage
    report of one organization must look like once the
    pipeline has converged.
    """

    organization_id: "str"
    no_report_expected: "bool" = False
    # month window quantity expected at plan level, in GB
    expected_consuming: "float | None" = None

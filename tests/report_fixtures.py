from typing import Any


def usage_entry(consuming: "float | None" = 0.5, charge: "Any" = 0.0034) -> "dict[str, Any]":
    """
    one aggregated usage entry whose only populated window is month slot 0.
    """
    month: "dict[str, Any]" = {"charge": charge}
    if consuming is not None:
        month["quantity"] = {"consuming": consuming}
    return {
        "metric": "memory",
        "windows": [[None], [None], [None], [None], [month]],
    }


def converged_report(consuming: "float" = 0.5, charge: "float" = 0.0034) -> "dict[str, Any]":
    return {
        "organization_id": "e8139b76-e829-4af3-b332-87316b1c0a6c",
        "resources": [
            {
                "resource_id": "linux-container",
                "plans": [
                    {
                        "plan_id": "standard",
                        "aggregated_usage": [usage_entry(consuming, charge)],
                    }
                ],
                "aggregated_usage": [usage_entry(None, charge)],
            }
        ],
        "spaces": [{"space_id": "a7e44fcd-25bf-4023-8a87-03fba4882995"}],
    }


def empty_report() -> "dict[str, Any]":
    return {
        "organization_id": "e8139b76-e829-4af3-b332-87316b1c0a6c",
        "resources": [],
        "spaces": [],
    }

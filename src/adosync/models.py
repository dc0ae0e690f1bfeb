"""Data models shared by the adosync jobs."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import date, datetime, timezone
from typing import Any

# Work item field reference names
START_DATE_FIELD = "Microsoft.VSTS.Scheduling.StartDate"
TARGET_DATE_FIELD = "Microsoft.VSTS.Scheduling.TargetDate"
PARENT_FIELD = "System.Parent"
TAGS_FIELD = "System.Tags"
TITLE_FIELD = "System.Title"
WORK_ITEM_TYPE_FIELD = "System.WorkItemType"

PARENT_RELATION = "System.LinkTypes.Hierarchy-Reverse"


@dataclass(frozen=True)
class WorkItemRef:
    """Id and REST URL of a work item, as returned by a WIQL query."""

    id: int
    url: str


@dataclass(frozen=True)
class WorkItemDateInfo:
    """Scheduling facts extracted from one work item."""

    start_date: datetime | None = None
    target_date: datetime | None = None
    parent_id: int | None = None


@dataclass(frozen=True)
class PatchOperation:
    """A single JSON Patch operation."""

    op: str
    path: str
    value: Any

    def to_dict(self) -> dict[str, Any]:
        """Serialize to the JSON Patch wire format."""
        return {"op": self.op, "path": self.path, "value": self.value}

    @classmethod
    def add_field(cls, field_name: str, value: Any) -> PatchOperation:
        """Build an ``add`` operation for a work item field."""
        return cls("add", f"/fields/{field_name}", value)

    @classmethod
    def add_parent(cls, parent_url: str) -> PatchOperation:
        """Build an ``add`` operation linking to a parent work item."""
        return cls("add", "/relations/-", {"rel": PARENT_RELATION, "url": parent_url})


@dataclass
class DateSyncResult:
    """Summary of one parent date synchronization pass."""

    work_item_type: str
    items_received: int = 0
    items_skipped: int = 0
    start_dates: int = 0
    target_dates: int = 0
    parents_updated: int = 0
    parents_failed: int = 0
    patches: dict[int, list[PatchOperation]] = field(default_factory=dict)


def parse_devops_date(value: Any) -> datetime | None:
    """Parse a date/time value from a work item payload.

    Naive values are taken as UTC so that every parsed value is comparable.

    Returns:
        Timezone-aware datetime, or None if the value is missing or malformed
    """
    if isinstance(value, datetime):
        parsed = value
    elif isinstance(value, date):
        parsed = datetime(value.year, value.month, value.day)
    elif isinstance(value, str) and value.strip():
        try:
            parsed = datetime.fromisoformat(value.strip().replace("Z", "+00:00"))
        except ValueError:
            return None
    else:
        return None

    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


def format_devops_date(value: datetime) -> str:
    """Format a datetime the way Azure DevOps returns it (UTC, ``Z`` suffix)."""
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc).isoformat().replace("+00:00", "Z")


def parse_parent_id(value: Any) -> int | None:
    """Parse a parent work item id, returning None unless it is an integer."""
    if isinstance(value, bool):
        return None
    if isinstance(value, int):
        return value
    if isinstance(value, str):
        try:
            return int(value.strip())
        except ValueError:
            return None
    return None

"""Tests for tag propagation."""

from __future__ import annotations

import threading
from io import StringIO
from typing import Any

import pytest

from adosync.devops_config import TagConfig
from adosync.exceptions import PatchError, WorkItemFetchError
from adosync.logger import setup_logger
from adosync.models import PatchOperation, WorkItemRef
from adosync.tag_sync import TagPropagator, merge_tag, split_tags


class FakeHierarchy:
    """In-memory work item tree answering the queries TagPropagator makes."""

    def __init__(self, items: dict[int, dict[str, Any]]):
        # id -> {"type": ..., "parent": ..., "fields": {...}}
        self.items = items
        self.patches: dict[int, list[PatchOperation]] = {}
        self.fetch_failures: set[int] = set()
        self.patch_failures: set[int] = set()

    def _ref(self, item_id: int) -> WorkItemRef:
        return WorkItemRef(item_id, f"https://dev.azure.com/_apis/wit/workItems/{item_id}")

    def query_work_items(
        self, project: str, work_item_type: str | None = None, cancel: Any = None
    ) -> list[WorkItemRef]:
        return [
            self._ref(item_id)
            for item_id, item in self.items.items()
            if work_item_type is None or item["type"] == work_item_type
        ]

    def query_children(
        self, project: str, parent_id: int, work_item_types: list[str], cancel: Any = None
    ) -> list[WorkItemRef]:
        return [
            self._ref(item_id)
            for item_id, item in self.items.items()
            if item.get("parent") == parent_id and item["type"] in work_item_types
        ]

    def get_work_item(
        self, work_item_id: int, fields: list[str] | None = None, cancel: Any = None
    ) -> dict[str, Any]:
        if work_item_id in self.fetch_failures:
            raise WorkItemFetchError(f"Failed to fetch work item {work_item_id}")
        item = self.items[work_item_id]
        payload_fields = dict(item.get("fields", {}))
        if item.get("parent") is not None:
            payload_fields["System.Parent"] = item["parent"]
        return {"id": work_item_id, "fields": payload_fields}

    def patch_work_item(
        self, work_item_id: int, operations: list[PatchOperation], cancel: Any = None
    ) -> dict[str, Any]:
        if work_item_id in self.patch_failures:
            raise PatchError(work_item_id, 400, "Rule Error")
        self.patches[work_item_id] = operations
        return {"id": work_item_id}


def tags_of(store: FakeHierarchy, item_id: int) -> str:
    (operation,) = store.patches[item_id]
    assert operation.path == "/fields/System.Tags"
    return str(operation.value)


@pytest.fixture
def store() -> FakeHierarchy:
    return FakeHierarchy(
        {
            1: {"type": "Epic", "fields": {"System.Title": "Alpha platform"}},
            2: {"type": "Epic", "fields": {"System.Title": "Beta"}},
            10: {"type": "Feature", "parent": 1, "fields": {}},
            11: {"type": "Feature", "parent": 2, "fields": {"System.Tags": "Task Be"}},
            12: {"type": "Feature", "parent": None, "fields": {}},
            100: {"type": "Product Backlog Item", "parent": 10, "fields": {"System.Tags": "ux"}},
            101: {"type": "Bug", "parent": 10, "fields": {}},
            110: {"type": "Product Backlog Item", "parent": 11, "fields": {}},
            1000: {"type": "Task", "parent": 100, "fields": {"System.Tags": "Task Al; ux"}},
            1001: {"type": "Task", "parent": 101, "fields": {}},
        }
    )


def test_split_tags() -> None:
    assert split_tags("a;  b ;;c ") == ["a", "b", "c"]
    assert split_tags("") == []


def test_merge_tag() -> None:
    assert merge_tag("", "Task Al") == "Task Al"
    assert merge_tag("ux", "Task Al") == "ux; Task Al"
    assert merge_tag("ux;Task Al", "Task Al") is None


def test_epic_tag_uses_config() -> None:
    config = TagConfig(tag_format="Area {prefix}", prefix_length=3)
    propagator = TagPropagator(None, config)  # type: ignore[arg-type]

    assert propagator.epic_tag("Alpha") == "Area Alp"
    assert propagator.epic_tag("A") == "Area A"


def test_propagates_epic_tags(store: FakeHierarchy) -> None:
    result = TagPropagator(store).run("Fabrikam")  # type: ignore[arg-type]

    assert tags_of(store, 10) == "Task Al"
    assert tags_of(store, 100) == "ux; Task Al"
    assert tags_of(store, 101) == "Task Al"
    assert tags_of(store, 1001) == "Task Al"
    assert tags_of(store, 110) == "Task Be"
    # Already tagged
    assert 11 not in store.patches
    assert 1000 not in store.patches
    # No parent epic
    assert 12 not in store.patches
    assert result.epics == 2
    assert result.updated == 5
    assert result.unchanged == 2
    assert result.failed == 0


def test_feature_without_epic_is_logged(store: FakeHierarchy) -> None:
    stream = StringIO()
    setup_logger(1, stream)

    TagPropagator(store).run("Fabrikam")  # type: ignore[arg-type]

    assert "Feature 12 has no known parent epic" in stream.getvalue()


def test_failures_do_not_stop_propagation(store: FakeHierarchy) -> None:
    store.patch_failures = {100}
    store.fetch_failures = {101}

    result = TagPropagator(store).run("Fabrikam")  # type: ignore[arg-type]

    assert 100 not in store.patches
    assert 101 not in store.patches
    assert tags_of(store, 110) == "Task Be"
    assert result.failed == 2


def test_cancel_event_is_passed_through(store: FakeHierarchy) -> None:
    cancel = threading.Event()
    seen: list[Any] = []
    original = store.query_work_items

    def recording_query(
        project: str, work_item_type: str | None = None, cancel: Any = None
    ) -> list[WorkItemRef]:
        seen.append(cancel)
        return original(project, work_item_type)

    store.query_work_items = recording_query  # type: ignore[method-assign]

    TagPropagator(store, cancel=cancel).run("Fabrikam")  # type: ignore[arg-type]

    assert seen == [cancel, cancel]

"""Pytest configuration and fixtures for adosync tests."""

from __future__ import annotations

import threading
from collections.abc import Callable, Iterator
from typing import Any

import pytest

from adosync import context
from adosync.devops_config import DevOpsConnection
from adosync.exceptions import PatchError, WorkItemFetchError
from adosync.logger import reset_logger
from adosync.models import PatchOperation, WorkItemRef


@pytest.fixture(autouse=True)
def clean_state() -> Iterator[None]:
    """Reset the logger and global context between tests."""
    reset_logger()
    context.set_config_path(None)
    context.reset_cancel_event()
    yield
    reset_logger()


@pytest.fixture
def connection() -> DevOpsConnection:
    """Connection settings for a test organization."""
    return DevOpsConnection(organization="contoso", project="Fabrikam")


class FakeWorkItemStore:
    """In-memory stand-in for DevOpsClient.

    Work items are payload dicts keyed by id. Ids listed in ``fetch_failures``
    or ``patch_failures`` fail the corresponding call.
    """

    def __init__(
        self,
        items: dict[int, dict[str, Any]],
        types: dict[int, str] | None = None,
        fetch_failures: set[int] | None = None,
        patch_failures: set[int] | None = None,
    ):
        self.items = items
        self.types = types or {}
        self.fetch_failures = fetch_failures or set()
        self.patch_failures = patch_failures or set()
        self.queries: list[tuple[str, str | None]] = []
        self.fetched: list[int] = []
        self.patches: dict[int, list[PatchOperation]] = {}
        self._lock = threading.Lock()

    def query_work_items(
        self,
        project: str,
        work_item_type: str | None = None,
        cancel: threading.Event | None = None,
    ) -> list[WorkItemRef]:
        self.queries.append((project, work_item_type))
        return [
            WorkItemRef(id=item_id, url=f"https://dev.azure.com/_apis/wit/workItems/{item_id}")
            for item_id in self.items
            if work_item_type is None or self.types.get(item_id) == work_item_type
        ]

    def get_work_item(
        self,
        work_item_id: int,
        fields: list[str] | None = None,
        cancel: threading.Event | None = None,
    ) -> dict[str, Any]:
        with self._lock:
            self.fetched.append(work_item_id)
        if work_item_id in self.fetch_failures:
            raise WorkItemFetchError(f"Failed to fetch work item {work_item_id} (status 404)")
        return self.items[work_item_id]

    def patch_work_item(
        self,
        work_item_id: int,
        operations: list[PatchOperation],
        cancel: threading.Event | None = None,
    ) -> dict[str, Any]:
        if work_item_id in self.patch_failures:
            raise PatchError(work_item_id, 400, "TF401320: Rule Error")
        with self._lock:
            self.patches[work_item_id] = list(operations)
        return {"id": work_item_id}


def work_item(
    parent: Any = None,
    start: Any = None,
    target: Any = None,
) -> dict[str, Any]:
    """Build a work item payload with the given scheduling fields."""
    fields: dict[str, Any] = {"System.WorkItemType": "Product Backlog Item"}
    if parent is not None:
        fields["System.Parent"] = parent
    if start is not None:
        fields["Microsoft.VSTS.Scheduling.StartDate"] = start
    if target is not None:
        fields["Microsoft.VSTS.Scheduling.TargetDate"] = target
    return {"id": 0, "fields": fields}


@pytest.fixture
def make_store() -> Callable[..., FakeWorkItemStore]:
    """Factory for in-memory work item stores."""
    return FakeWorkItemStore

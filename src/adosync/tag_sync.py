"""Tag propagation down the Epic -> Feature -> Backlog item -> Task hierarchy."""

from __future__ import annotations

import threading
from dataclasses import dataclass
from typing import Any

from .devops_client import DevOpsClient
from .devops_config import TagConfig
from .exceptions import PatchError, WorkItemFetchError
from .logger import get_logger
from .models import PARENT_FIELD, TAGS_FIELD, TITLE_FIELD, PatchOperation, parse_parent_id

logger = get_logger()

EPIC_TYPE = "Epic"
FEATURE_TYPE = "Feature"
BACKLOG_ITEM_TYPES = ["Product Backlog Item", "Bug"]
TASK_TYPES = ["Task"]


@dataclass
class TagSyncResult:
    """Counts from one tag propagation run."""

    epics: int = 0
    updated: int = 0
    unchanged: int = 0
    failed: int = 0


def split_tags(tags: str) -> list[str]:
    """Split a ``System.Tags`` value into trimmed, non-empty tags."""
    return [tag.strip() for tag in tags.split(";") if tag.strip()]


def merge_tag(existing: str, tag: str) -> str | None:
    """Append a tag to an existing tag string.

    Returns:
        The new tag string, or None if the tag is already present
    """
    if tag in split_tags(existing):
        return None
    return f"{existing}; {tag}" if existing else tag


class TagPropagator:
    """Copies a tag derived from each Epic's title onto all of its descendants."""

    def __init__(
        self,
        client: DevOpsClient,
        config: TagConfig | None = None,
        cancel: threading.Event | None = None,
    ):
        self.client = client
        self.config = config or TagConfig()
        self.cancel = cancel

    def epic_tag(self, title: str) -> str:
        """Derive the tag for an Epic from its title."""
        return self.config.tag_format.format(prefix=title[: self.config.prefix_length])

    def run(self, project: str) -> TagSyncResult:
        """Propagate epic tags to features, backlog items and tasks of a project."""
        logger.changes("Add tags to features and PBIs")
        result = TagSyncResult()
        tags_by_epic = self._tags_by_epic_id(project)
        result.epics = len(tags_by_epic)

        for feature in self.client.query_work_items(project, FEATURE_TYPE, self.cancel):
            fields = self._fetch_fields(feature.id, [PARENT_FIELD, TAGS_FIELD])
            if fields is None:
                result.failed += 1
                continue

            epic_id = parse_parent_id(fields.get(PARENT_FIELD))
            tag = tags_by_epic.get(epic_id) if epic_id is not None else None
            if tag is None:
                logger.warning("Feature %d has no known parent epic (%s)", feature.id, epic_id)
                continue

            self._tag_descendants(project, feature.id, tag, BACKLOG_ITEM_TYPES, result, TASK_TYPES)
            self._apply_tag(feature.id, fields, tag, result)

        logger.changes(
            "Tagged %d work items (%d already tagged, %d failed)",
            result.updated,
            result.unchanged,
            result.failed,
        )
        return result

    def _tags_by_epic_id(self, project: str) -> dict[int, str]:
        tags: dict[int, str] = {}
        for epic in self.client.query_work_items(project, EPIC_TYPE, self.cancel):
            fields = self._fetch_fields(epic.id, [TITLE_FIELD])
            if fields is None:
                continue
            title = str(fields.get(TITLE_FIELD) or "")
            if not title:
                logger.warning("Epic %d has no title, its children will not be tagged", epic.id)
                continue
            tags[epic.id] = self.epic_tag(title)
        return tags

    def _tag_descendants(
        self,
        project: str,
        parent_id: int,
        tag: str,
        child_types: list[str],
        result: TagSyncResult,
        grandchild_types: list[str] | None = None,
    ) -> None:
        for child in self.client.query_children(project, parent_id, child_types, self.cancel):
            fields = self._fetch_fields(child.id, [TAGS_FIELD])
            if fields is None:
                result.failed += 1
                continue
            if grandchild_types:
                self._tag_descendants(project, child.id, tag, grandchild_types, result)
            self._apply_tag(child.id, fields, tag, result)

    def _fetch_fields(self, work_item_id: int, fields: list[str]) -> dict[str, Any] | None:
        try:
            payload = self.client.get_work_item(work_item_id, fields, self.cancel)
        except WorkItemFetchError as e:
            logger.warning("Cannot get details for work item %d: %s", work_item_id, e)
            return None
        payload_fields = payload.get("fields")
        if not isinstance(payload_fields, dict):
            logger.error("Cannot find fields property in work item %d: %s", work_item_id, payload)
            return None
        return payload_fields

    def _apply_tag(
        self, work_item_id: int, fields: dict[str, Any], tag: str, result: TagSyncResult
    ) -> None:
        new_tags = merge_tag(str(fields.get(TAGS_FIELD) or ""), tag)
        if new_tags is None:
            logger.checks("Work item %d already has tag %s", work_item_id, tag)
            result.unchanged += 1
            return

        try:
            self.client.patch_work_item(
                work_item_id, [PatchOperation.add_field(TAGS_FIELD, new_tags)], self.cancel
            )
        except PatchError as e:
            logger.error(
                "Cannot patch work item %d with status code %s: %s",
                work_item_id,
                e.status_code,
                e.body,
            )
            result.failed += 1
            return

        logger.changes("Updated work item %d with tags: %s", work_item_id, new_tags)
        result.updated += 1

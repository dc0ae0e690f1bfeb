"""Work item creation from configured templates."""

from __future__ import annotations

import threading
from dataclasses import dataclass, field

from .devops_client import DevOpsClient
from .devops_config import WorkItemTemplate
from .exceptions import PatchError
from .logger import get_logger
from .models import (
    START_DATE_FIELD,
    TARGET_DATE_FIELD,
    TITLE_FIELD,
    PatchOperation,
    format_devops_date,
)

logger = get_logger()


@dataclass
class CreationResult:
    """Outcome of one work item creation run."""

    created: list[int] = field(default_factory=list)
    failed: int = 0
    linked: int = 0


def build_create_operations(template: WorkItemTemplate) -> list[PatchOperation]:
    """Build the JSON Patch document creating a work item from a template."""
    operations = [PatchOperation.add_field(TITLE_FIELD, template.title)]
    if template.start_date is not None:
        operations.append(
            PatchOperation.add_field(START_DATE_FIELD, format_devops_date(template.start_date))
        )
    if template.target_date is not None:
        operations.append(
            PatchOperation.add_field(TARGET_DATE_FIELD, format_devops_date(template.target_date))
        )
    return operations


class WorkItemCreator:
    """Creates configured work items and links them to existing parents."""

    def __init__(
        self,
        client: DevOpsClient,
        templates: list[WorkItemTemplate],
        cancel: threading.Event | None = None,
    ):
        self.client = client
        self.templates = templates
        self.cancel = cancel

    def run(self, project: str) -> CreationResult:
        """Create every template; templates that fail are logged and skipped."""
        result = CreationResult()
        urls_by_id = {
            ref.id: ref.url for ref in self.client.query_work_items(project, cancel=self.cancel)
        }

        for template in self.templates:
            try:
                created = self.client.create_work_item(
                    template.type, build_create_operations(template), self.cancel
                )
            except PatchError as e:
                logger.error(
                    "Cannot create the work item %r with status code %s: %s",
                    template.title,
                    e.status_code,
                    e.body,
                )
                result.failed += 1
                continue

            work_item_id = created.get("id") if isinstance(created, dict) else None
            if not isinstance(work_item_id, int):
                logger.error("Created work item %r has no id: %s", template.title, created)
                result.failed += 1
                continue

            result.created.append(work_item_id)
            logger.changes("Created %s %d: %s", template.type, work_item_id, template.title)

            if template.parent_id is None:
                continue

            parent_url = urls_by_id.get(template.parent_id)
            if parent_url is None:
                logger.warning(
                    "The parent %d does not exist for the child %s",
                    template.parent_id,
                    template.title,
                )
                continue

            try:
                self.client.add_parent_link(work_item_id, parent_url, self.cancel)
            except PatchError as e:
                logger.error(
                    "Cannot link work item %d to parent %d with status code %s: %s",
                    work_item_id,
                    template.parent_id,
                    e.status_code,
                    e.body,
                )
                continue
            result.linked += 1

        return result

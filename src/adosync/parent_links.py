"""Static parent/child links from configuration."""

from __future__ import annotations

import threading
from dataclasses import dataclass

from .devops_client import DevOpsClient
from .devops_config import Relation
from .exceptions import PatchError
from .logger import get_logger

logger = get_logger()


@dataclass
class ParentLinkResult:
    """Counts from one parent link run."""

    linked: int = 0
    missing: int = 0
    failed: int = 0


class ParentLinker:
    """Links configured child work items to their parents."""

    def __init__(
        self,
        client: DevOpsClient,
        relations: list[Relation],
        cancel: threading.Event | None = None,
    ):
        self.client = client
        self.relations = relations
        self.cancel = cancel

    def run(self, project: str) -> ParentLinkResult:
        """Create a hierarchy link for every configured relation whose ends exist."""
        result = ParentLinkResult()
        urls_by_id = {
            ref.id: ref.url for ref in self.client.query_work_items(project, cancel=self.cancel)
        }

        for relation in self.relations:
            parent_url = urls_by_id.get(relation.parent_id)
            if parent_url is None:
                logger.error("Cannot find the parent %d in the work items.", relation.parent_id)
            if relation.child_id not in urls_by_id:
                logger.error("Cannot find the child %d in the work items.", relation.child_id)
            if parent_url is None or relation.child_id not in urls_by_id:
                result.missing += 1
                continue

            try:
                self.client.add_parent_link(relation.child_id, parent_url, self.cancel)
            except PatchError as e:
                logger.error(
                    "Cannot patch the work item id %d with status code %s: %s",
                    relation.child_id,
                    e.status_code,
                    e.body,
                )
                result.failed += 1
                continue

            logger.changes(
                "Linked work item %d to parent %d", relation.child_id, relation.parent_id
            )
            result.linked += 1

        return result

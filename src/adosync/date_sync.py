"""Parent date synchronization: roll child schedules up onto their parents."""

from __future__ import annotations

import threading
from concurrent.futures import Future, ThreadPoolExecutor, as_completed
from datetime import datetime
from typing import Any, Protocol

from .devops_config import DateSyncConfig
from .exceptions import PatchError, SyncCancelledError, WorkItemFetchError
from .logger import get_logger
from .models import (
    PARENT_FIELD,
    START_DATE_FIELD,
    TARGET_DATE_FIELD,
    WORK_ITEM_TYPE_FIELD,
    DateSyncResult,
    PatchOperation,
    WorkItemDateInfo,
    WorkItemRef,
    format_devops_date,
    parse_devops_date,
    parse_parent_id,
)

logger = get_logger()

DATE_FIELDS = [WORK_ITEM_TYPE_FIELD, START_DATE_FIELD, TARGET_DATE_FIELD, PARENT_FIELD]

DEFAULT_LOCK_STRIPES = 32


class WorkItemStore(Protocol):
    """The subset of DevOpsClient used by the date synchronization."""

    def query_work_items(
        self,
        project: str,
        work_item_type: str | None = None,
        cancel: threading.Event | None = None,
    ) -> list[WorkItemRef]: ...

    def get_work_item(
        self,
        work_item_id: int,
        fields: list[str] | None = None,
        cancel: threading.Event | None = None,
    ) -> dict[str, Any]: ...

    def patch_work_item(
        self,
        work_item_id: int,
        operations: list[PatchOperation],
        cancel: threading.Event | None = None,
    ) -> dict[str, Any]: ...


class DateExtractor:
    """Extracts scheduling dates and the parent id from work item payloads."""

    def extract(self, work_item_id: int, payload: dict[str, Any]) -> WorkItemDateInfo | None:
        """Extract date info from one work item payload.

        Missing or malformed dates and parent ids become None. Only a payload
        without a ``fields`` object is rejected.

        Args:
            work_item_id: Id of the work item, for logging
            payload: Raw work item payload

        Returns:
            Extracted info, or None if the payload has no fields object
        """
        fields = payload.get("fields") if isinstance(payload, dict) else None
        if not isinstance(fields, dict):
            logger.error("Cannot find fields property in work item %d: %s", work_item_id, payload)
            return None

        start_date = parse_devops_date(fields.get(START_DATE_FIELD))
        target_date = parse_devops_date(fields.get(TARGET_DATE_FIELD))
        parent_id = parse_parent_id(fields.get(PARENT_FIELD))

        if parent_id is None:
            logger.warning(
                "Work item %d has no valid parent id: %s", work_item_id, fields.get(PARENT_FIELD)
            )

        logger.checks(
            "Work item %d: parent=%s start=%s target=%s",
            work_item_id,
            parent_id,
            start_date,
            target_date,
        )
        return WorkItemDateInfo(start_date=start_date, target_date=target_date, parent_id=parent_id)


class DateAggregator:
    """Folds child date info into per-parent earliest start and latest target dates.

    Folding is commutative and associative, so records can be folded from many
    threads in any order. Each key is guarded by one of a fixed set of lock
    stripes; keys in different stripes never contend.
    """

    def __init__(self, stripes: int = DEFAULT_LOCK_STRIPES):
        self._earliest_start: dict[int, datetime] = {}
        self._latest_target: dict[int, datetime] = {}
        self._locks = [threading.Lock() for _ in range(max(1, stripes))]

    def _lock_for(self, parent_id: int) -> threading.Lock:
        return self._locks[hash(parent_id) % len(self._locks)]

    def fold(self, info: WorkItemDateInfo) -> None:
        """Merge one child's dates into its parent's aggregates."""
        if info.parent_id is None:
            return
        if info.start_date is None and info.target_date is None:
            return

        parent_id = info.parent_id
        with self._lock_for(parent_id):
            if info.start_date is not None:
                current = self._earliest_start.get(parent_id)
                if current is None or info.start_date < current:
                    self._earliest_start[parent_id] = info.start_date
            if info.target_date is not None:
                current = self._latest_target.get(parent_id)
                if current is None or info.target_date > current:
                    self._latest_target[parent_id] = info.target_date

    @property
    def earliest_start(self) -> dict[int, datetime]:
        """Snapshot of parent id -> earliest child start date."""
        return dict(self._earliest_start)

    @property
    def latest_target(self) -> dict[int, datetime]:
        """Snapshot of parent id -> latest child target date."""
        return dict(self._latest_target)

    def parent_ids(self) -> list[int]:
        """All parent ids with at least one aggregate, in ascending order."""
        return sorted(self._earliest_start.keys() | self._latest_target.keys())


def build_date_patch(earliest: datetime | None, latest: datetime | None) -> list[PatchOperation]:
    """Build the minimal patch setting only the dates that are defined."""
    operations: list[PatchOperation] = []
    if earliest is not None:
        operations.append(PatchOperation.add_field(START_DATE_FIELD, format_devops_date(earliest)))
    if latest is not None:
        operations.append(PatchOperation.add_field(TARGET_DATE_FIELD, format_devops_date(latest)))
    return operations


class ParentDateWriter:
    """Writes aggregated dates onto parent work items."""

    def __init__(self, client: WorkItemStore, cancel: threading.Event | None = None):
        self.client = client
        self.cancel = cancel

    def write(self, parent_id: int, earliest: datetime | None, latest: datetime | None) -> bool:
        """Patch a parent's start and/or target date.

        Failures are logged and reported through the return value; they never
        raise, so one rejected parent does not stop the others.

        Returns:
            True if the parent was updated
        """
        operations = build_date_patch(earliest, latest)
        if not operations:
            return False

        try:
            self.client.patch_work_item(parent_id, operations, self.cancel)
        except PatchError as e:
            logger.error(
                "Cannot patch the work item %d with status code %s: %s",
                parent_id,
                e.status_code,
                e.body,
            )
            return False

        logger.changes(
            "Updated work item %d: %s",
            parent_id,
            ", ".join(f"{op.path.rsplit('.', 1)[-1]}={op.value}" for op in operations),
        )
        return True


class ParentDateSynchronizer:
    """Orchestrates the parent date synchronization for a project."""

    def __init__(
        self,
        client: WorkItemStore,
        config: DateSyncConfig | None = None,
        cancel: threading.Event | None = None,
        dry_run: bool = False,
    ):
        """Initialize synchronizer.

        Args:
            client: Work item store (usually a DevOpsClient)
            config: Scope order and fetch concurrency
            cancel: Cancellation signal shared with every network call
            dry_run: Compute patches without writing them
        """
        self.client = client
        self.config = config or DateSyncConfig()
        self.cancel = cancel if cancel is not None else threading.Event()
        self.dry_run = dry_run
        self.extractor = DateExtractor()
        self.writer = ParentDateWriter(client, self.cancel)

    def run_all(self, project: str) -> list[DateSyncResult]:
        """Run one pass per configured work item type, strictly in order.

        A fatal error in one pass propagates and skips the remaining passes.
        """
        return [self.run(project, work_item_type) for work_item_type in self.config.work_item_types]

    def run(self, project: str, work_item_type: str) -> DateSyncResult:
        """Aggregate the dates of all work items of one type onto their parents.

        Args:
            project: Team project name
            work_item_type: Type of the child work items (e.g. "Feature")

        Returns:
            Summary of the pass, including the patch computed for each parent

        Raises:
            QueryError: If the work item query fails
            ParseError: If the query response is malformed
            SyncCancelledError: If cancellation is observed
        """
        refs = self.client.query_work_items(project, work_item_type, self.cancel)
        result = DateSyncResult(work_item_type=work_item_type, items_received=len(refs))
        logger.changes("Received %d work items of the type %s", len(refs), work_item_type)

        aggregator = DateAggregator()
        result.items_skipped = self._collect(refs, aggregator)

        earliest_start = aggregator.earliest_start
        latest_target = aggregator.latest_target
        result.start_dates = len(earliest_start)
        result.target_dates = len(latest_target)
        logger.changes(
            "Computed %d start dates, and %d target dates for work items",
            result.start_dates,
            result.target_dates,
        )

        for parent_id in aggregator.parent_ids():
            if self.cancel.is_set():
                raise SyncCancelledError(f"Cancelled while updating parents of {work_item_type}")

            earliest = earliest_start.get(parent_id)
            latest = latest_target.get(parent_id)
            result.patches[parent_id] = build_date_patch(earliest, latest)
            if self.dry_run:
                continue

            if self.writer.write(parent_id, earliest, latest):
                result.parents_updated += 1
            else:
                result.parents_failed += 1

        if self.dry_run:
            logger.changes("Dry run: %d work items would be updated", len(result.patches))
        else:
            logger.changes(
                "Updated %d work items (%d failed)", result.parents_updated, result.parents_failed
            )
        return result

    def _collect(self, refs: list[WorkItemRef], aggregator: DateAggregator) -> int:
        """Fetch and fold every work item concurrently.

        Returns:
            Number of work items that were skipped
        """
        skipped = 0
        with ThreadPoolExecutor(max_workers=self.config.max_workers) as executor:
            futures: list[Future[bool]] = [
                executor.submit(self._fetch_and_fold, ref, aggregator) for ref in refs
            ]
            try:
                for future in as_completed(futures):
                    if not future.result():
                        skipped += 1
            except KeyboardInterrupt:
                self.cancel.set()
                self._cancel_pending(futures)
                raise
            except BaseException:
                self._cancel_pending(futures)
                raise
        return skipped

    @staticmethod
    def _cancel_pending(futures: list[Future[bool]]) -> None:
        for future in futures:
            future.cancel()

    def _fetch_and_fold(self, ref: WorkItemRef, aggregator: DateAggregator) -> bool:
        try:
            payload = self.client.get_work_item(ref.id, DATE_FIELDS, self.cancel)
        except WorkItemFetchError as e:
            logger.warning("Cannot get details for work item %d: %s", ref.id, e)
            return False

        info = self.extractor.extract(ref.id, payload)
        if info is None:
            return False

        aggregator.fold(info)
        return True

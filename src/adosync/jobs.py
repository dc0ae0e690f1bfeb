"""Named jobs and the sequential job runner."""

from __future__ import annotations

import threading
from collections.abc import Callable
from typing import Any

from .date_sync import ParentDateSynchronizer
from .devops_client import DevOpsClient
from .devops_config import AdoSyncConfig
from .exceptions import AdoSyncError, SyncCancelledError
from .logger import get_logger
from .parent_links import ParentLinker
from .tag_sync import TagPropagator
from .work_item_creation import WorkItemCreator

logger = get_logger()

JobFunction = Callable[[DevOpsClient, AdoSyncConfig, threading.Event], Any]


def set_parent_dates(client: DevOpsClient, config: AdoSyncConfig, cancel: threading.Event) -> Any:
    """Roll child start/target dates up onto parents."""
    return ParentDateSynchronizer(client, config.date_sync, cancel).run_all(config.devops.project)


def add_tags(client: DevOpsClient, config: AdoSyncConfig, cancel: threading.Event) -> Any:
    """Propagate epic tags down the hierarchy."""
    return TagPropagator(client, config.tags, cancel).run(config.devops.project)


def set_parents(client: DevOpsClient, config: AdoSyncConfig, cancel: threading.Event) -> Any:
    """Create the configured parent links."""
    return ParentLinker(client, config.relations, cancel).run(config.devops.project)


def create_work_items(client: DevOpsClient, config: AdoSyncConfig, cancel: threading.Event) -> Any:
    """Create the configured work items."""
    return WorkItemCreator(client, config.work_items, cancel).run(config.devops.project)


JOBS: dict[str, JobFunction] = {
    "set_parent_dates": set_parent_dates,
    "add_tags": add_tags,
    "set_parents": set_parents,
    "create_work_items": create_work_items,
}


def run_jobs(
    client: DevOpsClient,
    config: AdoSyncConfig,
    job_names: list[str] | None = None,
    cancel: threading.Event | None = None,
) -> bool:
    """Run jobs sequentially, stopping at the first one that raises.

    Cancellation is not a job failure and propagates to the caller.

    Args:
        client: Shared Azure DevOps client
        config: Loaded configuration
        job_names: Jobs to run in order (defaults to ``config.jobs``)
        cancel: Cancellation signal shared with every job

    Returns:
        True if every job ran to completion

    Raises:
        SyncCancelledError: If the cancellation signal was observed
    """
    cancel = cancel if cancel is not None else threading.Event()
    names = job_names if job_names is not None else config.jobs

    for name in names:
        job = JOBS.get(name)
        if job is None:
            logger.error("Unknown job %s", name)
            return False

        logger.debug("Starting job %s", name)
        try:
            job(client, config, cancel)
        except SyncCancelledError:
            raise
        except AdoSyncError as e:
            logger.error("Cannot perform Azure DevOps operations. Job %s failed: %s", name, e)
            return False
        logger.debug("Completed job %s", name)

    return True

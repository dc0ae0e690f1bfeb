"""Custom exceptions for adosync."""


class AdoSyncError(Exception):
    """Base exception for all adosync errors."""

    pass


class ConfigError(AdoSyncError):
    """Raised when the configuration file is missing or invalid."""

    pass


class DevOpsError(AdoSyncError):
    """Base exception for Azure DevOps API errors."""

    pass


class DevOpsAuthError(DevOpsError):
    """Raised when no personal access token can be found."""

    pass


class QueryError(DevOpsError):
    """Raised when a WIQL query returns a non-success status."""

    pass


class ParseError(DevOpsError):
    """Raised when a WIQL query response cannot be parsed."""

    pass


class WorkItemFetchError(DevOpsError):
    """Raised when a single work item cannot be fetched."""

    pass


class PatchError(DevOpsError):
    """Raised when a work item patch or create request fails."""

    def __init__(self, work_item: int | str, status_code: int | None, body: str):
        self.work_item = work_item
        self.status_code = status_code
        self.body = body
        super().__init__(f"Cannot patch work item {work_item} (status {status_code}): {body}")


class SyncCancelledError(AdoSyncError):
    """Raised when a run observes the cancellation signal."""

    pass

"""Azure DevOps REST API client wrapper."""

from __future__ import annotations

import json
import os
import threading
from typing import Any, cast
from urllib.parse import quote, urljoin

import requests
from dotenv import load_dotenv
from requests.adapters import HTTPAdapter
from urllib3.util.retry import Retry

from .devops_config import DevOpsConnection
from .exceptions import (
    DevOpsAuthError,
    ParseError,
    PatchError,
    QueryError,
    SyncCancelledError,
    WorkItemFetchError,
)
from .logger import get_logger
from .models import PatchOperation, WorkItemRef
from .netrc_utils import get_devops_token_from_netrc

# Load environment variables from .env file
load_dotenv()

logger = get_logger()

JSON_PATCH_CONTENT_TYPE = "application/json-patch+json"
RETRY_STATUS_CODES = (429, 500, 502, 503, 504)


def _quote_wiql(value: str) -> str:
    return value.replace("'", "''")


def _check_cancelled(cancel: threading.Event | None) -> None:
    if cancel is not None and cancel.is_set():
        raise SyncCancelledError("Operation cancelled")


class DevOpsClient:
    """Wrapper around the Azure DevOps work item tracking REST API."""

    def __init__(
        self,
        connection: DevOpsConnection,
        token: str | None = None,
        pool_size: int = 10,
    ):
        """Initialize Azure DevOps client.

        Args:
            connection: Connection settings (organization, project, API version)
            token: Personal access token; falls back to AZURE_DEVOPS_PAT, then .netrc
            pool_size: HTTP connection pool size, should match fetch concurrency

        Raises:
            DevOpsAuthError: If no token can be found
        """
        self.connection = connection
        self.base_address = (
            f"{connection.base_url}{connection.organization}/{quote(connection.project, safe='')}/"
        )
        self.api_version = connection.api_version
        self.timeout = connection.timeout

        self.token = token or os.getenv("AZURE_DEVOPS_PAT")
        if not self.token:
            self.token = get_devops_token_from_netrc(connection.base_url)

        if not self.token:
            raise DevOpsAuthError(
                "Azure DevOps token not found. Set the AZURE_DEVOPS_PAT environment "
                "variable or add a password for the host to ~/.netrc file."
            )

        self.session = requests.Session()
        self.session.auth = ("", self.token)
        self.session.headers.update({"Accept": "application/json"})

        retry = Retry(
            total=connection.max_retries,
            backoff_factor=0.5,
            status_forcelist=RETRY_STATUS_CODES,
            allowed_methods=frozenset({"GET"}),
            raise_on_status=False,
        )
        adapter = HTTPAdapter(max_retries=retry, pool_maxsize=pool_size)
        self.session.mount("https://", adapter)
        self.session.mount("http://", adapter)

    def _url(self, path: str) -> str:
        """Resolve a path against the project base address; absolute URLs pass through."""
        return urljoin(self.base_address, path)

    def _request(
        self,
        method: str,
        path: str,
        cancel: threading.Event | None = None,
        **kwargs: Any,
    ) -> requests.Response:
        """Issue a request, honouring the cancellation signal before and after the call.

        Raises:
            SyncCancelledError: If cancellation was requested
            requests.RequestException: On transport failure
        """
        _check_cancelled(cancel)
        params = dict(kwargs.pop("params", None) or {})
        params.setdefault("api-version", self.api_version)
        url = self._url(path)
        logger.debug("%s %s", method, url)
        response = self.session.request(method, url, params=params, timeout=self.timeout, **kwargs)
        _check_cancelled(cancel)
        return response

    def query(self, wiql: str, cancel: threading.Event | None = None) -> list[WorkItemRef]:
        """Run a WIQL query and return the matching work item references.

        Args:
            wiql: WIQL query text
            cancel: Optional cancellation signal

        Returns:
            Work item references in the order returned by the service

        Raises:
            QueryError: If the request fails or returns a non-success status
            ParseError: If the response body is not a valid query result
        """
        try:
            response = self._request("POST", "_apis/wit/wiql", cancel, json={"query": wiql})
        except requests.RequestException as e:
            raise QueryError(f"Query request failed: {e}") from e

        if not response.ok:
            logger.error(
                "Query to %s returned the status code %s. %s",
                response.url,
                response.status_code,
                response.text,
            )
            raise QueryError(f"Query failed with status {response.status_code}: {response.text}")

        try:
            payload = response.json()
            items = cast(list[dict[str, Any]], payload["workItems"])
            return [WorkItemRef(id=int(item["id"]), url=str(item["url"])) for item in items]
        except (ValueError, KeyError, TypeError) as e:
            raise ParseError(f"Cannot parse query response {response.text}") from e

    def query_work_items(
        self,
        project: str,
        work_item_type: str | None = None,
        cancel: threading.Event | None = None,
    ) -> list[WorkItemRef]:
        """Query all work items of a project, optionally restricted to one type."""
        wiql = (
            "Select [System.Id] From WorkItems "
            f"Where [System.TeamProject] = '{_quote_wiql(project)}'"
        )
        if work_item_type is not None:
            wiql += f" AND [System.WorkItemType] = '{_quote_wiql(work_item_type)}'"
        return self.query(wiql, cancel)

    def query_children(
        self,
        project: str,
        parent_id: int,
        work_item_types: list[str],
        cancel: threading.Event | None = None,
    ) -> list[WorkItemRef]:
        """Query the children of a work item that have one of the given types."""
        type_clause = " OR ".join(
            f"[System.WorkItemType] = '{_quote_wiql(t)}'" for t in work_item_types
        )
        wiql = (
            "Select [System.Id] From WorkItems "
            f"Where ({type_clause}) AND [System.Parent] = {parent_id} "
            f"AND [System.TeamProject] = '{_quote_wiql(project)}'"
        )
        return self.query(wiql, cancel)

    def get_work_item(
        self,
        work_item_id: int,
        fields: list[str] | None = None,
        cancel: threading.Event | None = None,
    ) -> dict[str, Any]:
        """Fetch a single work item.

        Args:
            work_item_id: Work item id
            fields: Optional list of field reference names to fetch
            cancel: Optional cancellation signal

        Returns:
            Raw work item payload

        Raises:
            WorkItemFetchError: If the work item cannot be fetched
        """
        params: dict[str, str] = {}
        if fields:
            params["fields"] = ",".join(fields)

        try:
            response = self._request(
                "GET", f"_apis/wit/workitems/{work_item_id}", cancel, params=params
            )
        except requests.RequestException as e:
            raise WorkItemFetchError(f"Failed to fetch work item {work_item_id}: {e}") from e

        if not response.ok:
            raise WorkItemFetchError(
                f"Failed to fetch work item {work_item_id} "
                f"(status {response.status_code}): {response.text}"
            )

        try:
            return cast(dict[str, Any], response.json())
        except ValueError as e:
            raise WorkItemFetchError(
                f"Work item {work_item_id} returned invalid JSON: {response.text}"
            ) from e

    def patch_work_item(
        self,
        work_item_id: int,
        operations: list[PatchOperation],
        cancel: threading.Event | None = None,
    ) -> dict[str, Any]:
        """Apply JSON Patch operations to a work item.

        Raises:
            PatchError: If the service rejects the patch or the request fails
        """
        return self._send_patch(
            "PATCH", f"_apis/wit/workitems/{work_item_id}", work_item_id, operations, cancel
        )

    def create_work_item(
        self,
        work_item_type: str,
        operations: list[PatchOperation],
        cancel: threading.Event | None = None,
    ) -> dict[str, Any]:
        """Create a work item of the given type from JSON Patch operations.

        Raises:
            PatchError: If the service rejects the request or the request fails
        """
        path = f"_apis/wit/workitems/${quote(work_item_type, safe='')}"
        return self._send_patch("POST", path, work_item_type, operations, cancel)

    def add_parent_link(
        self,
        child_id: int,
        parent_url: str,
        cancel: threading.Event | None = None,
    ) -> dict[str, Any]:
        """Link a work item to its parent with a hierarchy relation."""
        return self.patch_work_item(child_id, [PatchOperation.add_parent(parent_url)], cancel)

    def _send_patch(
        self,
        method: str,
        path: str,
        work_item: int | str,
        operations: list[PatchOperation],
        cancel: threading.Event | None,
    ) -> dict[str, Any]:
        body = json.dumps([operation.to_dict() for operation in operations])
        try:
            response = self._request(
                method,
                path,
                cancel,
                data=body.encode("utf-8"),
                headers={"Content-Type": JSON_PATCH_CONTENT_TYPE},
            )
        except requests.RequestException as e:
            raise PatchError(work_item, None, str(e)) from e

        if not response.ok:
            raise PatchError(work_item, response.status_code, response.text)

        try:
            return cast(dict[str, Any], response.json()) if response.content else {}
        except ValueError as e:
            raise PatchError(work_item, response.status_code, response.text) from e

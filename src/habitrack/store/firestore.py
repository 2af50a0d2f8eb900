"""Firestore REST document store adapter.

Habit documents are kept in Cloud Firestore through its REST API. Requests
carry an optional bearer token, failures are mapped onto the HabitStoreError
hierarchy, and idempotent requests are retried on transient errors with
exponential backoff.
"""

import asyncio
import logging
import types
from collections.abc import Sequence
from typing import Any
from urllib.parse import quote

import httpx

from habitrack.config import ServerConfig
from habitrack.exceptions import (
    HabitStoreError,
    StoreAuthenticationError,
    StoreBadRequestError,
    StoreConflictError,
    StoreDocumentNotFoundError,
    StoreNetworkError,
    StorePermissionDeniedError,
    StoreRateLimitError,
    StoreServerError,
    StoreServiceUnavailableError,
    StoreTimeoutError,
)
from habitrack.store.codec import decode_document, document_id, encode_fields
from habitrack.store.protocols import (
    Document,
    ErrorCallback,
    SnapshotCallback,
    Unsubscribe,
    validate_document_id,
)

logger = logging.getLogger(__name__)

QueryParams = dict[str, Any] | Sequence[tuple[str, str]]

_PAGE_SIZE = 300
_REDACTED = "***redacted***"

# Creating a document is not idempotent, so POST is sent exactly once.
_IDEMPOTENT_METHODS = frozenset({"GET", "PATCH", "DELETE"})
_RETRYABLE_STATUS_CODES = frozenset({500, 502, 503, 504})

_STATUS_ERRORS: dict[int, tuple[type[HabitStoreError], str]] = {
    400: (StoreBadRequestError, "Bad request"),
    401: (StoreAuthenticationError, "Authentication failed"),
    403: (StorePermissionDeniedError, "Permission denied"),
    409: (StoreConflictError, "Write conflict"),
    429: (StoreRateLimitError, "Rate limit exceeded"),
    503: (StoreServiceUnavailableError, "Store temporarily unavailable"),
}


def _error_status(response: httpx.Response) -> str:
    """Return the canonical Firestore error status from a response body, if any."""
    try:
        body = response.json()
    except ValueError:
        return "UNKNOWN"
    if isinstance(body, dict) and isinstance(body.get("error"), dict):
        return str(body["error"].get("status", "UNKNOWN"))
    return "UNKNOWN"


def _status_error(response: httpx.Response) -> HabitStoreError:
    """Build the store exception matching an HTTP error response.

    Messages only carry the Firestore status name, never request headers.
    """
    code = response.status_code
    status = _error_status(response)
    if code == 404:  # noqa: PLR2004
        logger.debug("Document not found: %s", response.request.url.path)
        return StoreDocumentNotFoundError()
    if code in _STATUS_ERRORS:
        error_type, label = _STATUS_ERRORS[code]
        logger.error("Firestore returned %d (%s)", code, status)
        return error_type(f"{label} - {status}")
    if code == 504:  # noqa: PLR2004
        logger.error("Firestore gateway timeout")
        return StoreTimeoutError(f"Gateway timeout - {status}", status_code=code)
    if 500 <= code < 600:  # noqa: PLR2004
        logger.error("Firestore server error %d (%s)", code, status)
        return StoreServerError(f"Server error - {status}", code)
    logger.error("Unmapped Firestore status %d (%s)", code, status)
    return HabitStoreError(f"Store error - {status}", code)


class FirestoreDocumentStore:
    """DocumentStore implementation backed by the Firestore REST API.

    Live subscriptions are served by an asyncio polling task per subscriber
    that emits a snapshot whenever the collection contents change.
    """

    def __init__(self, config: ServerConfig) -> None:
        """Initialize the Firestore store.

        Args:
            config: Server configuration with project, database, token and HTTP tuning
        """
        self._config = config
        self._base_url = str(config.firestore_base_url).rstrip("/")
        self._documents_root = (
            f"projects/{config.firestore_project_id}/databases/"
            f"{config.firestore_database}/documents"
        )
        self._bearer_token = config.store_token
        self._http_client: httpx.AsyncClient | None = None
        self._poll_tasks: set[asyncio.Task[None]] = set()

    def __str__(self) -> str:
        return f"FirestoreDocumentStore(base_url={self._base_url}, token={_REDACTED})"

    def __repr__(self) -> str:
        return f"FirestoreDocumentStore(base_url='{self._base_url}', token='{_REDACTED}')"

    async def __aenter__(self) -> "FirestoreDocumentStore":
        return self

    async def __aexit__(
        self,
        exc_type: type[BaseException] | None,
        exc_val: BaseException | None,
        exc_tb: types.TracebackType | None,
    ) -> None:
        await self.aclose()

    async def aclose(self) -> None:
        """Cancel polling subscriptions and close the HTTP client."""
        for task in list(self._poll_tasks):
            task.cancel()
        if self._poll_tasks:
            await asyncio.gather(*self._poll_tasks, return_exceptions=True)
        if self._http_client is not None:
            await self._http_client.aclose()
            self._http_client = None

    def _get_http_client(self) -> httpx.AsyncClient:
        """Return the shared HTTP client, creating it on first use."""
        if self._http_client is None:
            self._http_client = httpx.AsyncClient(
                timeout=httpx.Timeout(
                    self._config.timeout_read, connect=self._config.timeout_connect
                ),
                limits=httpx.Limits(max_keepalive_connections=5, max_connections=10),
                headers={"User-Agent": self._config.http_user_agent},
                follow_redirects=True,
            )
        return self._http_client

    def _document_path(self, collection_path: str, doc_id: str | None = None) -> str:
        path = f"{self._documents_root}/{collection_path.strip('/')}"
        if doc_id is None:
            return path
        return f"{path}/{quote(validate_document_id(doc_id), safe='')}"

    def _headers(self, token: str | None) -> dict[str, str]:
        headers = {"Content-Type": "application/json"}
        if token:
            headers["Authorization"] = f"Bearer {token}"
        return headers

    def _get_auth_headers(self) -> dict[str, str]:
        return self._headers(self._bearer_token)

    def _get_redacted_headers(self) -> dict[str, str]:
        return self._headers(_REDACTED if self._bearer_token else None)

    async def _send(
        self,
        method: str,
        url: str,
        data: dict[str, Any] | None,
        params: QueryParams | None,
    ) -> httpx.Response:
        """Send a request, retrying transient failures of idempotent methods.

        Raises:
            HabitStoreError: Or a subclass, once retries are exhausted
        """
        attempts = self._config.http_retries + 1 if method in _IDEMPOTENT_METHODS else 1
        delay = self._config.http_backoff_start_seconds
        for attempt in range(1, attempts + 1):
            final = attempt == attempts
            logger.debug(
                "%s %s (attempt %d of %d) headers=%s",
                method,
                url,
                attempt,
                attempts,
                self._get_redacted_headers(),
            )
            try:
                response = await self._get_http_client().request(
                    method, url, headers=self._get_auth_headers(), json=data, params=params
                )
            except httpx.TimeoutException as error:
                if final:
                    logger.exception("Store request timed out: %s %s", method, url)
                    raise StoreTimeoutError from error
                reason = "timeout"
            except httpx.NetworkError as error:
                if final:
                    logger.exception("Store network error: %s %s", method, url)
                    raise StoreNetworkError from error
                reason = "network error"
            else:
                if response.is_success:
                    return response
                if final or response.status_code not in _RETRYABLE_STATUS_CODES:
                    raise _status_error(response)
                reason = f"HTTP {response.status_code}"

            logger.warning(
                "%s on %s %s; retrying in %.2fs (attempt %d of %d)",
                reason,
                method,
                url,
                delay,
                attempt,
                attempts,
            )
            await asyncio.sleep(delay)
            delay *= 2
        msg = f"Exhausted retry attempts for {method} {url}"
        raise HabitStoreError(msg)

    async def make_request(
        self,
        method: str,
        path: str,
        data: dict[str, Any] | None = None,
        params: QueryParams | None = None,
    ) -> dict[str, Any]:
        """Make an authenticated request to the Firestore REST API.

        Args:
            method: HTTP method (GET, POST, PATCH, DELETE)
            path: Resource path relative to the base URL
            data: JSON request body
            params: Query parameters; a sequence of pairs allows repeated keys

        Returns:
            dict[str, Any]: Parsed JSON response, empty for empty bodies

        Raises:
            HabitStoreError: Or one of its subclasses for any failure
        """
        method = method.upper()
        url = f"{self._base_url}/{path.lstrip('/')}"
        try:
            response = await self._send(method, url, data, params)
        except httpx.HTTPError as error:
            logger.exception("Unexpected HTTP failure during store request")
            raise HabitStoreError.create_unexpected_error(method, path) from error

        if not response.content:
            return {}
        try:
            result = response.json()
        except ValueError as error:
            raise HabitStoreError.create_parse_error(path, status=response.status_code) from error
        return result if isinstance(result, dict) else {}

    async def get_all(self, collection_path: str) -> list[Document]:
        """Return every document in a collection, following pagination."""
        path = self._document_path(collection_path)
        documents: list[Document] = []
        page_token: str | None = None
        while True:
            params: dict[str, Any] = {"pageSize": _PAGE_SIZE}
            if page_token:
                params["pageToken"] = page_token
            result = await self.make_request("GET", path, params=params)
            documents.extend(decode_document(raw) for raw in result.get("documents", []))
            page_token = result.get("nextPageToken")
            if not page_token:
                break
        logger.debug("Fetched %d documents from %s", len(documents), collection_path)
        return documents

    async def get_one(self, collection_path: str, doc_id: str) -> Document | None:
        """Return a single document, or None when it does not exist."""
        try:
            result = await self.make_request("GET", self._document_path(collection_path, doc_id))
        except StoreDocumentNotFoundError:
            return None
        return decode_document(result)

    async def add(self, collection_path: str, fields: dict[str, Any]) -> str:
        """Create a document with a store-assigned ID."""
        path = self._document_path(collection_path)
        result = await self.make_request("POST", path, data={"fields": encode_fields(fields)})
        name = result.get("name")
        if not isinstance(name, str) or not name:
            raise HabitStoreError.create_parse_error(path, reason="missing_name")
        doc_id = document_id(name)
        logger.debug("Created document %s in %s", doc_id, collection_path)
        return doc_id

    async def update(self, collection_path: str, doc_id: str, fields: dict[str, Any]) -> None:
        """Replace the given top-level fields of an existing document.

        Fields not named in ``fields`` are left untouched. Updating a missing
        document raises StoreDocumentNotFoundError.
        """
        params: list[tuple[str, str]] = [("updateMask.fieldPaths", key) for key in fields]
        params.append(("currentDocument.exists", "true"))
        await self.make_request(
            "PATCH",
            self._document_path(collection_path, doc_id),
            data={"fields": encode_fields(fields)},
            params=params,
        )
        logger.debug("Updated document %s in %s", doc_id, collection_path)

    async def delete(self, collection_path: str, doc_id: str) -> None:
        """Delete a document; deleting a missing document succeeds."""
        await self.make_request("DELETE", self._document_path(collection_path, doc_id))
        logger.debug("Deleted document %s from %s", doc_id, collection_path)

    def subscribe(
        self,
        collection_path: str,
        on_snapshot: SnapshotCallback,
        on_error: ErrorCallback,
    ) -> Unsubscribe:
        """Start polling a collection for changes.

        Must be called from a running event loop. The first successful poll is
        always delivered; later polls are delivered only when the documents
        differ from the previous snapshot.
        """
        task = asyncio.get_running_loop().create_task(
            self._poll(collection_path, on_snapshot, on_error),
            name=f"habitrack-poll:{collection_path}",
        )
        self._poll_tasks.add(task)
        task.add_done_callback(self._poll_tasks.discard)
        logger.debug("Subscribed to %s", collection_path)

        def unsubscribe() -> None:
            task.cancel()
            logger.debug("Unsubscribed from %s", collection_path)

        return unsubscribe

    async def _poll(
        self,
        collection_path: str,
        on_snapshot: SnapshotCallback,
        on_error: ErrorCallback,
    ) -> None:
        previous: list[Document] | None = None
        while True:
            try:
                documents = await self.get_all(collection_path)
            except HabitStoreError as error:
                logger.warning("Polling %s failed: %s", collection_path, error)
                on_error(error)
            else:
                if documents != previous:
                    previous = documents
                    try:
                        on_snapshot(documents)
                    except Exception as error:
                        logger.exception("Snapshot listener failed for %s", collection_path)
                        on_error(error)
            await asyncio.sleep(self._config.subscription_poll_seconds)

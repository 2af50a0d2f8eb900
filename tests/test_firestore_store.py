"""Tests for the Firestore REST document store adapter."""
# pyright: reportPrivateUsage=false

from __future__ import annotations

import asyncio
import json
from collections.abc import Callable
from typing import Any

import httpx
import pytest
from pytest_mock import MockerFixture

from habitrack.config import ServerConfig
from habitrack.core.repository import HabitRepository
from habitrack.exceptions import (
    HabitStoreError,
    HabitValidationError,
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
from habitrack.store.codec import encode_fields
from habitrack.store.firestore import FirestoreDocumentStore

SECRET_TOKEN = "super-secret-token-456"  # noqa: S105
COLLECTION = "users/u1/habits"
ROOT_PATH = "/v1/projects/demo/databases/(default)/documents"
HTTP_OK = 200
HTTP_IM_A_TEAPOT = 418

Handler = Callable[[httpx.Request], httpx.Response]


def make_config(**overrides: Any) -> ServerConfig:
    """Build a Firestore-backed config with instant retries."""
    values: dict[str, Any] = {
        "user_id": "u1",
        "store_backend": "firestore",
        "firestore_project_id": "demo",
        "store_token": SECRET_TOKEN,
        "http_backoff_start_seconds": 0.0,
    }
    values.update(overrides)
    return ServerConfig(**values)


def make_store(handler: Handler, **overrides: Any) -> FirestoreDocumentStore:
    """Create a store whose HTTP client is served by ``handler``."""
    store = FirestoreDocumentStore(make_config(**overrides))
    store._http_client = httpx.AsyncClient(transport=httpx.MockTransport(handler))
    return store


def document(doc_id: str, **fields: Any) -> dict[str, Any]:
    """Build a Firestore Document resource."""
    return {
        "name": f"projects/demo/databases/(default)/documents/{COLLECTION}/{doc_id}",
        "fields": encode_fields(fields),
    }


def error_response(status_code: int, status: str = "UNKNOWN") -> httpx.Response:
    """Build a Firestore-style error response."""
    return httpx.Response(status_code, json={"error": {"code": status_code, "status": status}})


class TestFirestoreStoreSetup:
    """Test store initialization and token handling."""

    def test_repr_redacts_token(self) -> None:
        """The bearer token never appears in str() or repr()."""
        store = FirestoreDocumentStore(make_config())

        assert SECRET_TOKEN not in str(store)
        assert SECRET_TOKEN not in repr(store)
        assert "***redacted***" in repr(store)

    def test_http_client_lazy_initialization(self) -> None:
        """The HTTP client is created on first use with configured timeouts."""
        store = FirestoreDocumentStore(make_config(timeout_connect=3.0, timeout_read=20.0))

        assert store._http_client is None
        http_client = store._get_http_client()

        assert isinstance(http_client, httpx.AsyncClient)
        assert http_client.timeout.connect == 3.0  # noqa: PLR2004
        assert http_client.timeout.read == 20.0  # noqa: PLR2004
        assert store._get_http_client() is http_client

    @pytest.mark.asyncio
    async def test_requests_carry_bearer_token(self) -> None:
        """Authenticated requests send the bearer token."""
        seen: list[httpx.Request] = []

        def handler(request: httpx.Request) -> httpx.Response:
            seen.append(request)
            return httpx.Response(HTTP_OK, json={})

        store = make_store(handler)
        await store.get_all(COLLECTION)

        assert seen[0].headers["Authorization"] == f"Bearer {SECRET_TOKEN}"
        assert store._get_redacted_headers()["Authorization"] == "Bearer ***redacted***"

    @pytest.mark.asyncio
    async def test_no_token_sends_no_authorization(self) -> None:
        """Without a token the Authorization header is omitted."""
        seen: list[httpx.Request] = []

        def handler(request: httpx.Request) -> httpx.Response:
            seen.append(request)
            return httpx.Response(HTTP_OK, json={})

        store = make_store(handler, store_token=None)
        await store.get_all(COLLECTION)

        assert "Authorization" not in seen[0].headers

    @pytest.mark.asyncio
    async def test_aclose_releases_client(self) -> None:
        """Closing the store drops the HTTP client."""
        async with make_store(lambda _: httpx.Response(HTTP_OK, json={})) as store:
            await store.get_all(COLLECTION)

        assert store._http_client is None


class TestFirestoreDocumentOperations:
    """Test CRUD operations against the REST endpoints."""

    @pytest.mark.asyncio
    async def test_get_all_follows_pagination(self) -> None:
        """Every page is fetched until no nextPageToken is returned."""
        seen: list[httpx.Request] = []

        def handler(request: httpx.Request) -> httpx.Response:
            seen.append(request)
            if "pageToken" not in request.url.params:
                return httpx.Response(
                    HTTP_OK,
                    json={"documents": [document("a", name="Read")], "nextPageToken": "p2"},
                )
            return httpx.Response(HTTP_OK, json={"documents": [document("b", name="Run")]})

        store = make_store(handler)
        documents = await store.get_all(COLLECTION)

        assert documents == [{"id": "a", "name": "Read"}, {"id": "b", "name": "Run"}]
        assert seen[0].url.path == f"{ROOT_PATH}/{COLLECTION}"
        assert seen[0].url.params["pageSize"] == "300"
        assert seen[1].url.params["pageToken"] == "p2"

    @pytest.mark.asyncio
    async def test_get_all_empty_collection(self) -> None:
        """A collection without documents returns an empty body."""
        store = make_store(lambda _: httpx.Response(HTTP_OK, json={}))

        assert await store.get_all(COLLECTION) == []

    @pytest.mark.asyncio
    async def test_get_one(self) -> None:
        """A single document is decoded with its ID."""

        def handler(request: httpx.Request) -> httpx.Response:
            assert request.url.path.endswith(f"/{COLLECTION}/abc")
            return httpx.Response(HTTP_OK, json=document("abc", name="Read", streak=2))

        store = make_store(handler)

        assert await store.get_one(COLLECTION, "abc") == {"id": "abc", "name": "Read", "streak": 2}

    @pytest.mark.asyncio
    async def test_get_one_missing_returns_none(self) -> None:
        """A 404 for a single document means it does not exist."""
        store = make_store(lambda _: error_response(404, "NOT_FOUND"))

        assert await store.get_one(COLLECTION, "missing") is None

    @pytest.mark.asyncio
    async def test_add_posts_encoded_fields(self) -> None:
        """Creation POSTs typed fields and returns the assigned ID."""
        seen: list[httpx.Request] = []

        def handler(request: httpx.Request) -> httpx.Response:
            seen.append(request)
            return httpx.Response(HTTP_OK, json=document("new-id", name="Read"))

        store = make_store(handler)
        doc_id = await store.add(COLLECTION, {"name": "Read", "targetCompletions": 21})

        assert doc_id == "new-id"
        assert seen[0].method == "POST"
        assert json.loads(seen[0].content) == {
            "fields": {
                "name": {"stringValue": "Read"},
                "targetCompletions": {"integerValue": "21"},
            }
        }

    @pytest.mark.asyncio
    async def test_add_without_name_is_parse_error(self) -> None:
        """A creation response without a resource name cannot yield an ID."""
        store = make_store(lambda _: httpx.Response(HTTP_OK, json={}))

        with pytest.raises(HabitStoreError, match="missing_name"):
            await store.add(COLLECTION, {"name": "Read"})

    @pytest.mark.asyncio
    async def test_update_patches_named_fields(self) -> None:
        """Updates PATCH only the given fields and require the document to exist."""
        seen: list[httpx.Request] = []

        def handler(request: httpx.Request) -> httpx.Response:
            seen.append(request)
            return httpx.Response(HTTP_OK, json=document("abc", streak=3))

        store = make_store(handler)
        await store.update(COLLECTION, "abc", {"streak": 3, "completedDays": 4})

        request = seen[0]
        assert request.method == "PATCH"
        assert request.url.params.get_list("updateMask.fieldPaths") == ["streak", "completedDays"]
        assert request.url.params["currentDocument.exists"] == "true"

    @pytest.mark.asyncio
    async def test_update_missing_document(self) -> None:
        """Updating a missing document raises StoreDocumentNotFoundError."""
        store = make_store(lambda _: error_response(404, "NOT_FOUND"))

        with pytest.raises(StoreDocumentNotFoundError):
            await store.update(COLLECTION, "missing", {"streak": 1})

    @pytest.mark.asyncio
    async def test_delete_accepts_empty_body(self) -> None:
        """DELETE succeeds with an empty response body."""
        seen: list[httpx.Request] = []

        def handler(request: httpx.Request) -> httpx.Response:
            seen.append(request)
            return httpx.Response(HTTP_OK)

        store = make_store(handler)
        await store.delete(COLLECTION, "abc")

        assert seen[0].method == "DELETE"

    @pytest.mark.asyncio
    @pytest.mark.parametrize("doc_id", ["../../victim/habits/h1", "a/b", ".", "..", "__name__"])
    async def test_document_path_rejects_ids_outside_collection(self, doc_id: str) -> None:
        """Document IDs that would escape the collection are refused before any request."""
        seen: list[httpx.Request] = []

        def handler(request: httpx.Request) -> httpx.Response:
            seen.append(request)
            return httpx.Response(HTTP_OK)

        store = make_store(handler)

        with pytest.raises(HabitValidationError, match="Invalid habit ID"):
            await store.delete(COLLECTION, doc_id)
        with pytest.raises(HabitValidationError, match="Invalid habit ID"):
            await store.get_one(COLLECTION, doc_id)

        assert seen == []

    @pytest.mark.asyncio
    async def test_repository_requests_stay_in_user_collection(self) -> None:
        """A path-like ID sent through the repository never leaves users/{user_id}/habits."""
        seen: list[httpx.Request] = []

        def handler(request: httpx.Request) -> httpx.Response:
            seen.append(request)
            return httpx.Response(HTTP_OK)

        repository = HabitRepository(make_store(handler), "u1")

        with pytest.raises(HabitValidationError):
            await repository.delete("../../victim/habits/h1")
        await repository.delete("h1")

        assert [request.url.path for request in seen] == [f"{ROOT_PATH}/{COLLECTION}/h1"]

    @pytest.mark.asyncio
    async def test_document_id_is_percent_encoded(self) -> None:
        """Characters with URL meaning stay inside the document ID segment."""
        seen: list[httpx.Request] = []

        def handler(request: httpx.Request) -> httpx.Response:
            seen.append(request)
            return httpx.Response(HTTP_OK)

        store = make_store(handler)
        await store.delete(COLLECTION, "h1?x=1")

        assert seen[0].url.raw_path.decode().endswith("/habits/h1%3Fx%3D1")
        assert seen[0].url.query == b""


class TestFirestoreErrorMapping:
    """Test HTTP status and transport error mapping."""

    @pytest.mark.asyncio
    @pytest.mark.parametrize(
        ("status_code", "expected"),
        [
            (400, StoreBadRequestError),
            (401, StoreAuthenticationError),
            (403, StorePermissionDeniedError),
            (404, StoreDocumentNotFoundError),
            (409, StoreConflictError),
            (429, StoreRateLimitError),
            (500, StoreServerError),
            (503, StoreServiceUnavailableError),
            (504, StoreTimeoutError),
        ],
    )
    async def test_status_codes_map_to_exceptions(
        self, status_code: int, expected: type[HabitStoreError]
    ) -> None:
        """Each mapped status raises its dedicated exception without leaking the token."""
        store = make_store(lambda _: error_response(status_code), http_retries=0)

        with pytest.raises(expected) as exc_info:
            await store.make_request("GET", "documents")

        assert exc_info.value.status_code == status_code
        assert SECRET_TOKEN not in str(exc_info.value)

    @pytest.mark.asyncio
    async def test_unmapped_status_raises_base_error(self) -> None:
        """Unmapped statuses raise HabitStoreError with the status code."""
        store = make_store(lambda _: error_response(HTTP_IM_A_TEAPOT))

        with pytest.raises(HabitStoreError) as exc_info:
            await store.make_request("GET", "documents")

        assert exc_info.value.status_code == HTTP_IM_A_TEAPOT
        assert "Bearer" not in str(exc_info.value)

    @pytest.mark.asyncio
    async def test_transient_status_retried_for_reads(self) -> None:
        """A 503 on GET is retried and the later success returned."""
        responses = [error_response(503), httpx.Response(HTTP_OK, json={"ok": True})]
        calls: list[httpx.Request] = []

        def handler(request: httpx.Request) -> httpx.Response:
            calls.append(request)
            return responses.pop(0)

        store = make_store(handler)

        assert await store.make_request("GET", "documents") == {"ok": True}
        assert len(calls) == 2  # noqa: PLR2004

    @pytest.mark.asyncio
    async def test_retries_exhausted(self) -> None:
        """Persistent server errors surface after the configured retries."""
        calls: list[httpx.Request] = []

        def handler(request: httpx.Request) -> httpx.Response:
            calls.append(request)
            return error_response(500, "INTERNAL")

        store = make_store(handler, http_retries=2)

        with pytest.raises(StoreServerError, match="INTERNAL"):
            await store.make_request("GET", "documents")
        assert len(calls) == 3  # noqa: PLR2004

    @pytest.mark.asyncio
    async def test_post_never_retried(self) -> None:
        """Creation is not idempotent, so a failed POST is not repeated."""
        calls: list[httpx.Request] = []

        def handler(request: httpx.Request) -> httpx.Response:
            calls.append(request)
            return error_response(503)

        store = make_store(handler, http_retries=3)

        with pytest.raises(StoreServiceUnavailableError):
            await store.add(COLLECTION, {"name": "Read"})
        assert len(calls) == 1

    @pytest.mark.asyncio
    async def test_network_error_after_retries(self) -> None:
        """Connection failures become StoreNetworkError."""

        def handler(request: httpx.Request) -> httpx.Response:
            raise httpx.ConnectError("connection refused", request=request)

        store = make_store(handler, http_retries=1)

        with pytest.raises(StoreNetworkError):
            await store.get_all(COLLECTION)

    @pytest.mark.asyncio
    async def test_timeout_error(self) -> None:
        """Client timeouts become StoreTimeoutError."""

        def handler(request: httpx.Request) -> httpx.Response:
            raise httpx.ReadTimeout("timed out", request=request)

        store = make_store(handler, http_retries=0)

        with pytest.raises(StoreTimeoutError):
            await store.get_one(COLLECTION, "abc")

    @pytest.mark.asyncio
    async def test_invalid_json_is_parse_error(self) -> None:
        """Unparsable success bodies raise a parse error."""
        store = make_store(lambda _: httpx.Response(HTTP_OK, content=b"not json"))

        with pytest.raises(HabitStoreError, match="Failed to parse document"):
            await store.make_request("GET", "documents")


class TestFirestoreSubscriptions:
    """Test polling subscriptions."""

    @pytest.mark.asyncio
    async def test_poll_delivers_changes_only(self, mocker: MockerFixture) -> None:
        """Snapshots are delivered on first poll and whenever contents change."""
        pages = [
            {"documents": [document("a", streak=0)]},
            {"documents": [document("a", streak=0)]},
            {"documents": [document("a", streak=1)]},
        ]

        def handler(_: httpx.Request) -> httpx.Response:
            return httpx.Response(HTTP_OK, json=pages[0] if len(pages) == 1 else pages.pop(0))

        store = make_store(handler, subscription_poll_seconds=0.1)
        delivered: asyncio.Queue[list[dict[str, Any]]] = asyncio.Queue()
        on_error = mocker.Mock()

        unsubscribe = store.subscribe(COLLECTION, delivered.put_nowait, on_error)
        first = await asyncio.wait_for(delivered.get(), timeout=2)
        second = await asyncio.wait_for(delivered.get(), timeout=2)
        unsubscribe()
        await store.aclose()

        assert first == [{"id": "a", "streak": 0}]
        assert second == [{"id": "a", "streak": 1}]
        assert delivered.empty()
        on_error.assert_not_called()

    @pytest.mark.asyncio
    async def test_poll_errors_reported(self) -> None:
        """Store failures during polling go to the error callback."""
        store = make_store(lambda _: error_response(403), subscription_poll_seconds=0.1)
        errors: asyncio.Queue[Exception] = asyncio.Queue()

        store.subscribe(COLLECTION, lambda _: None, errors.put_nowait)
        error = await asyncio.wait_for(errors.get(), timeout=2)
        await store.aclose()

        assert isinstance(error, StorePermissionDeniedError)

"""Protocol definitions for document store adapters.

The habit repository depends only on this contract, so any document-oriented
store (the in-memory store, the Firestore REST adapter, or a test double) can
back it.
"""

import re
from collections.abc import Callable
from typing import Any, Protocol

from habitrack.exceptions import HabitValidationError

Document = dict[str, Any]
"""A stored document: its fields plus an ``id`` key."""

SnapshotCallback = Callable[[list[Document]], None]
ErrorCallback = Callable[[Exception], None]
Unsubscribe = Callable[[], None]


def habits_collection_path(user_id: str) -> str:
    """Return the per-user habits collection path."""
    return f"users/{user_id}/habits"


_RESERVED_ID = re.compile(r"^__.*__$")
_MAX_ID_BYTES = 1500


def validate_document_id(doc_id: str) -> str:
    """Ensure ``doc_id`` names a document directly inside its collection.

    Firestore IDs may not contain ``/``, be ``.`` or ``..``, match ``__.*__``
    or exceed 1500 bytes.

    Raises:
        HabitValidationError: When the ID could address another path
    """
    if (
        "/" in doc_id
        or doc_id in {".", ".."}
        or _RESERVED_ID.match(doc_id)
        or len(doc_id.encode()) > _MAX_ID_BYTES
    ):
        raise HabitValidationError.invalid_document_id(doc_id)
    return doc_id


class DocumentStore(Protocol):
    """Protocol defining the document store operations the repository uses."""

    def subscribe(
        self,
        collection_path: str,
        on_snapshot: SnapshotCallback,
        on_error: ErrorCallback,
    ) -> Unsubscribe:
        """Register for live snapshots of a collection.

        Args:
            collection_path: Collection to watch
            on_snapshot: Called with every document in the collection on change
            on_error: Called with store failures

        Returns:
            Unsubscribe: Callable that cancels the subscription
        """
        ...

    async def get_all(self, collection_path: str) -> list[Document]:
        """Return every document in a collection."""
        ...

    async def get_one(self, collection_path: str, doc_id: str) -> Document | None:
        """Return a single document, or None when absent."""
        ...

    async def add(self, collection_path: str, fields: dict[str, Any]) -> str:
        """Create a document and return its store-assigned ID."""
        ...

    async def update(self, collection_path: str, doc_id: str, fields: dict[str, Any]) -> None:
        """Replace the given top-level fields of an existing document."""
        ...

    async def delete(self, collection_path: str, doc_id: str) -> None:
        """Delete a document permanently."""
        ...

    async def aclose(self) -> None:
        """Stop subscriptions and release connections."""
        ...

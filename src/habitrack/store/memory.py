"""In-memory document store.

Backs the server when no remote store is configured and serves as the store
in tests. Documents are deep-copied on the way in and out so callers can never
mutate stored state through a returned reference.
"""

import copy
import logging
import uuid
from collections import defaultdict
from typing import Any

from habitrack.exceptions import StoreDocumentNotFoundError
from habitrack.store.protocols import Document, ErrorCallback, SnapshotCallback, Unsubscribe

logger = logging.getLogger(__name__)


class InMemoryDocumentStore:
    """Dictionary-backed implementation of the DocumentStore protocol.

    Subscribers receive the full collection immediately on subscribe and again
    after every mutation of that collection.
    """

    def __init__(self) -> None:
        self._collections: defaultdict[str, dict[str, dict[str, Any]]] = defaultdict(dict)
        self._subscribers: defaultdict[str, list[tuple[SnapshotCallback, ErrorCallback]]] = (
            defaultdict(list)
        )

    def __repr__(self) -> str:
        return f"InMemoryDocumentStore(collections={len(self._collections)})"

    def _snapshot(self, collection_path: str) -> list[Document]:
        return [
            {"id": doc_id, **copy.deepcopy(fields)}
            for doc_id, fields in self._collections[collection_path].items()
        ]

    def _notify(self, collection_path: str) -> None:
        # The write is already committed; listener failures must not escape into it.
        for on_snapshot, on_error in list(self._subscribers[collection_path]):
            try:
                on_snapshot(self._snapshot(collection_path))
            except Exception as error:
                logger.exception("Snapshot listener failed for %s", collection_path)
                try:
                    on_error(error)
                except Exception:
                    logger.exception("Error listener failed for %s", collection_path)

    def subscribe(
        self,
        collection_path: str,
        on_snapshot: SnapshotCallback,
        on_error: ErrorCallback,
    ) -> Unsubscribe:
        entry = (on_snapshot, on_error)
        self._subscribers[collection_path].append(entry)
        logger.debug("Subscribed to %s", collection_path)
        on_snapshot(self._snapshot(collection_path))

        def unsubscribe() -> None:
            listeners = self._subscribers[collection_path]
            if entry in listeners:
                listeners.remove(entry)
                logger.debug("Unsubscribed from %s", collection_path)

        return unsubscribe

    async def get_all(self, collection_path: str) -> list[Document]:
        return self._snapshot(collection_path)

    async def get_one(self, collection_path: str, doc_id: str) -> Document | None:
        fields = self._collections[collection_path].get(doc_id)
        if fields is None:
            return None
        return {"id": doc_id, **copy.deepcopy(fields)}

    async def add(self, collection_path: str, fields: dict[str, Any]) -> str:
        doc_id = uuid.uuid4().hex
        stored = copy.deepcopy(fields)
        stored.pop("id", None)
        self._collections[collection_path][doc_id] = stored
        logger.debug("Added document %s to %s", doc_id, collection_path)
        self._notify(collection_path)
        return doc_id

    async def update(self, collection_path: str, doc_id: str, fields: dict[str, Any]) -> None:
        collection = self._collections[collection_path]
        if doc_id not in collection:
            raise StoreDocumentNotFoundError(f"Document not found: {collection_path}/{doc_id}")
        changes = copy.deepcopy(fields)
        changes.pop("id", None)
        collection[doc_id] = {**collection[doc_id], **changes}
        logger.debug("Updated document %s in %s", doc_id, collection_path)
        self._notify(collection_path)

    async def delete(self, collection_path: str, doc_id: str) -> None:
        # Deleting a missing document is a no-op.
        if self._collections[collection_path].pop(doc_id, None) is None:
            logger.debug("Delete of missing document %s in %s", doc_id, collection_path)
            return
        logger.debug("Deleted document %s from %s", doc_id, collection_path)
        self._notify(collection_path)

    async def aclose(self) -> None:
        """Drop every subscriber."""
        self._subscribers.clear()

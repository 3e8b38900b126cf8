from typing import Dict, Any, List, Optional
import asyncio
import copy

from .document_store import ArrayUnion, DocumentNotFoundError, DocumentStore


class InMemoryDocumentStore(DocumentStore):
    """Process-local document store for development and tests"""

    def __init__(self):
        self.collections: Dict[str, Dict[str, Dict[str, Any]]] = {}
        self._lock = asyncio.Lock()

    async def get(self, collection: str, doc_id: str) -> Optional[Dict[str, Any]]:
        async with self._lock:
            doc = self.collections.get(collection, {}).get(doc_id)
            return copy.deepcopy(doc) if doc is not None else None

    async def set(self, collection: str, doc_id: str, data: Dict[str, Any], merge: bool = False) -> None:
        async with self._lock:
            docs = self.collections.setdefault(collection, {})
            if merge and doc_id in docs:
                docs[doc_id].update(copy.deepcopy(data))
            else:
                docs[doc_id] = copy.deepcopy(data)

    async def update(self, collection: str, doc_id: str, updates: Dict[str, Any]) -> None:
        async with self._lock:
            doc = self.collections.get(collection, {}).get(doc_id)
            if doc is None:
                raise DocumentNotFoundError(collection, doc_id)

            for path, value in updates.items():
                self._apply(doc, path.split("."), value)

    async def query(
        self,
        collection: str,
        filters: Optional[Dict[str, Any]] = None,
        order_by: Optional[str] = None,
        descending: bool = False,
        limit: Optional[int] = None
    ) -> List[Dict[str, Any]]:
        async with self._lock:
            docs = list(self.collections.get(collection, {}).values())

        filters = filters or {}
        matches = [
            doc for doc in docs
            if all(doc.get(field) == expected for field, expected in filters.items())
        ]

        if order_by:
            with_key = [doc for doc in matches if doc.get(order_by) is not None]
            without_key = [doc for doc in matches if doc.get(order_by) is None]
            with_key.sort(key=lambda doc: doc[order_by], reverse=descending)
            matches = with_key + without_key

        if limit is not None:
            matches = matches[:limit]

        return copy.deepcopy(matches)

    async def delete(self, collection: str, doc_id: str) -> bool:
        async with self._lock:
            docs = self.collections.get(collection, {})
            if doc_id in docs:
                del docs[doc_id]
                return True
            return False

    def _apply(self, doc: Dict[str, Any], path: List[str], value: Any) -> None:
        target = doc
        for key in path[:-1]:
            child = target.get(key)
            if not isinstance(child, dict):
                child = {}
                target[key] = child
            target = child

        leaf = path[-1]
        if isinstance(value, ArrayUnion):
            current = target.get(leaf)
            if not isinstance(current, list):
                current = []
            for item in value.values:
                if item not in current:
                    current.append(copy.deepcopy(item))
            target[leaf] = current
        else:
            target[leaf] = copy.deepcopy(value)

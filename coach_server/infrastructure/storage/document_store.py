from abc import ABC, abstractmethod
from typing import Dict, Any, List, Optional
import uuid

USERS = "users"
COACHES = "coaches"
SESSIONS = "sessions"
PLANS = "plans"
CHECKINS = "checkins"
TOOL_RUNS = "tool_runs"


class DocumentStoreError(Exception):
    """The backing store could not serve the request"""


class DocumentNotFoundError(DocumentStoreError):
    def __init__(self, collection: str, doc_id: str):
        super().__init__(f"{collection}/{doc_id} not found")
        self.collection = collection
        self.doc_id = doc_id


class ArrayUnion:
    """Update sentinel: append values to an array field, skipping equal elements"""

    def __init__(self, *values: Any):
        self.values = list(values)

    def __repr__(self) -> str:
        return f"ArrayUnion({self.values!r})"


class DocumentStore(ABC):
    """Collection/document store contract used by the pipeline and the tools.

    ``update`` takes dotted field paths (``summary.text``) and fails when the
    document does not exist. ``query`` filters by field equality.
    """

    @abstractmethod
    async def get(self, collection: str, doc_id: str) -> Optional[Dict[str, Any]]:
        pass

    @abstractmethod
    async def set(self, collection: str, doc_id: str, data: Dict[str, Any], merge: bool = False) -> None:
        pass

    @abstractmethod
    async def update(self, collection: str, doc_id: str, updates: Dict[str, Any]) -> None:
        pass

    @abstractmethod
    async def query(
        self,
        collection: str,
        filters: Optional[Dict[str, Any]] = None,
        order_by: Optional[str] = None,
        descending: bool = False,
        limit: Optional[int] = None
    ) -> List[Dict[str, Any]]:
        pass

    @abstractmethod
    async def delete(self, collection: str, doc_id: str) -> bool:
        pass

    def new_id(self) -> str:
        return uuid.uuid4().hex[:20]

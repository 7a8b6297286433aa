from abc import ABC, abstractmethod
from typing import Any, Dict, List, Optional

from aggregate_executor.connection.connection_string import ConnectionDescriptor
from aggregate_executor.databases.types import CollectionScope, CursorState, QueryScope, QuerySpec
from aggregate_executor.results.feed_page import FeedPage
from aggregate_executor.results.import_result import BatchImportResult


class FeedCursor(ABC):
    """
    Paged result feed of one query.

    Starts NOT_STARTED; each fetch_next() moves it to HAS_MORE or EXHAUSTED
    depending on whether the backend reports more results pending.
    """

    def __init__(self):
        self.state = CursorState.NOT_STARTED

    @property
    def has_more_results(self) -> bool:
        return self.state is not CursorState.EXHAUSTED

    @abstractmethod
    async def fetch_next(self) -> FeedPage:
        pass

    async def close(self) -> None:
        """Release anything held by the cursor. Safe to call more than once."""


class DocumentStoreHandler(ABC):

    def __init__(self, descriptor: ConnectionDescriptor, config: Optional[Dict[str, Any]] = None):
        self.descriptor = descriptor
        self.config = config or {}

    @abstractmethod
    def query(self, collection: CollectionScope, query: QuerySpec, scope: QueryScope,
              page_size: int) -> FeedCursor:
        """Start a query and return its cursor. No I/O happens until the first fetch."""

    @abstractmethod
    async def collection_exists(self, collection: CollectionScope) -> bool:
        pass

    @abstractmethod
    async def bulk_upsert(self, collection: CollectionScope,
                          documents: List[Dict[str, Any]]) -> BatchImportResult:
        pass

    @abstractmethod
    async def close(self) -> None:
        pass

import asyncio
from typing import Any, Dict, List

import pytest

from aggregate_executor.databases.base_handler import DocumentStoreHandler, FeedCursor
from aggregate_executor.databases.config_manager import AggregateDimension, AppConfig, LoaderConfig
from aggregate_executor.databases.database_factory import SharedClientHandle
from aggregate_executor.databases.types import CollectionScope, CursorState, DocumentStoreType
from aggregate_executor.results.feed_page import FeedPage
from aggregate_executor.results.import_result import BatchImportResult

CONNECTION_STRING = "AccountEndpoint=https://x.example/;AccountKey=abc123"


class ScriptedCursor(FeedCursor):
    """Hands out pre-built pages; an Exception in the script is raised instead of returned."""

    def __init__(self, script):
        super().__init__()
        self.script = list(script)
        self.fetches = 0
        self.closed = False

    async def fetch_next(self) -> FeedPage:
        self.fetches += 1
        # Yields to the event loop like a network fetch
        await asyncio.sleep(0)
        if not self.script:
            self.state = CursorState.EXHAUSTED
            return FeedPage.empty()

        step = self.script.pop(0)
        if isinstance(step, Exception):
            raise step
        self.state = CursorState.HAS_MORE if self.script else CursorState.EXHAUSTED
        return step

    async def close(self) -> None:
        self.closed = True


class FakeDocumentStore(DocumentStoreHandler):
    """In-memory stand-in for the Cosmos handler."""

    def __init__(self, descriptor=None, config=None):
        super().__init__(descriptor=descriptor, config=config)
        self.pages: List[Any] = []
        self.queries: List[Dict[str, Any]] = []
        self.cursors: List[ScriptedCursor] = []
        self.collection_present = True
        self.upserted: List[Dict[str, Any]] = []
        self.failures_per_document: Dict[str, int] = {}
        self.upsert_calls = 0
        self.closed = False

    def query(self, collection, query, scope, page_size):
        self.queries.append({"collection": collection, "query": query, "scope": scope, "page_size": page_size})
        cursor = ScriptedCursor(self.pages)
        self.cursors.append(cursor)
        return cursor

    async def collection_exists(self, collection) -> bool:
        return self.collection_present

    async def bulk_upsert(self, collection, documents):
        self.upsert_calls += 1
        failed = []
        for document in documents:
            remaining = self.failures_per_document.get(document["id"], 0)
            if remaining:
                self.failures_per_document[document["id"]] = remaining - 1
                failed.append(document)
            else:
                self.upserted.append(document)
        imported = len(documents) - len(failed)
        return BatchImportResult(
            documents_imported=imported,
            request_units=imported * 5.0,
            duration_seconds=0.5,
            failed_documents=failed,
        )

    async def close(self) -> None:
        self.closed = True


@pytest.fixture
def fake_store():
    return FakeDocumentStore()


@pytest.fixture
def customer_dimension():
    return AggregateDimension(name="customer", attribute="customer", query_parameter="customer",
                              route="ItemCountByCustomer", is_partition_key=True)


@pytest.fixture
def product_dimension():
    return AggregateDimension(name="product", attribute="productCode", query_parameter="productCode",
                              route="ItemCountByProduct", is_partition_key=False)


@pytest.fixture
def app_config(customer_dimension, product_dimension):
    return AppConfig(
        store_type=DocumentStoreType.COSMOS,
        collection=CollectionScope(database_id="TestDB", collection_id="Items"),
        connection_string_name="CosmosDB",
        connection_string=CONNECTION_STRING,
        page_size=50,
        dimensions=(customer_dimension, product_dimension),
        loader=LoaderConfig(batch_count=2, documents_per_batch=3, max_batch_attempts=3),
        handler_config={"concurrency": 4},
    )


@pytest.fixture
def client_handle(app_config, fake_store):
    return SharedClientHandle.from_config(app_config, factory=lambda store_type, descriptor, config: fake_store)

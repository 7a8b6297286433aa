import asyncio
import logging
import time
from typing import Any, Dict, List, Optional

from azure.core.exceptions import AzureError
from azure.cosmos import exceptions as cosmos_exceptions
from azure.cosmos.aio import CosmosClient

from aggregate_executor.connection.connection_string import ConnectionDescriptor
from aggregate_executor.databases.base_handler import DocumentStoreHandler, FeedCursor
from aggregate_executor.databases.types import CollectionScope, CursorState, QueryScope, QuerySpec
from aggregate_executor.errors import ConfigurationError, ExecutionError
from aggregate_executor.results.feed_page import FeedPage, parse_query_metrics
from aggregate_executor.results.import_result import BatchImportResult

logger = logging.getLogger(__name__)

REQUEST_CHARGE_HEADER = "x-ms-request-charge"
QUERY_METRICS_HEADER = "x-ms-documentdb-query-metrics"
PARTITION_KEY_RANGE_HEADER = "x-ms-documentdb-partitionkeyrangeid"


def _request_charge(headers: Optional[Dict[str, Any]]) -> float:
    if not headers:
        return 0.0
    try:
        return float(headers.get(REQUEST_CHARGE_HEADER, 0) or 0)
    except (TypeError, ValueError):
        return 0.0


class _HeaderRecorder:
    """response_hook that keeps the headers of every response it sees."""

    def __init__(self):
        self.headers: List[Dict[str, Any]] = []
        self._consumed = 0

    def __call__(self, headers, _result) -> None:
        self.headers.append(dict(headers or {}))

    def take_new(self) -> List[Dict[str, Any]]:
        new = self.headers[self._consumed:]
        self._consumed = len(self.headers)
        return new


def _page_from_headers(raw_items, page_headers: List[Dict[str, Any]]) -> FeedPage:
    """Build a page whose cost is the sum of the requests the SDK made for it; none means zero."""
    cost_units = sum(_request_charge(h) for h in page_headers)
    partition_metrics = {}
    for headers in page_headers:
        metrics_header = headers.get(QUERY_METRICS_HEADER)
        if metrics_header:
            partition_id = headers.get(PARTITION_KEY_RANGE_HEADER) or "all"
            partition_metrics[partition_id] = parse_query_metrics(metrics_header)

    return FeedPage.from_raw(raw_items, cost_units, partition_metrics)


class CosmosFeedCursor(FeedCursor):

    def __init__(self, container, query: QuerySpec, scope: QueryScope, page_size: int,
                 semaphore: asyncio.Semaphore):
        super().__init__()
        self._container = container
        self._semaphore = semaphore
        self._recorder = _HeaderRecorder()

        query_args = {
            "query": query.text,
            "parameters": query.parameter_dicts(),
            "max_item_count": page_size,
            "populate_query_metrics": True,
            "response_hook": self._recorder,
        }
        if not scope.is_cross_partition:
            # Routes the query to one partition; omitting it fans out across all of them
            query_args["partition_key"] = scope.partition_key

        self._pages = container.query_items(**query_args).by_page()

    async def fetch_next(self) -> FeedPage:
        if self.state is CursorState.EXHAUSTED:
            raise ExecutionError("Query feed is already exhausted")

        async with self._semaphore:
            try:
                page = await self._pages.__anext__()
                raw_items = [item async for item in page]
            except StopAsyncIteration:
                # The fetch that ends the feed can still be billed
                self.state = CursorState.EXHAUSTED
                return _page_from_headers((), self._recorder.take_new())
            except cosmos_exceptions.CosmosHttpResponseError as e:
                if e.status_code == 429:
                    logger.warning(f"Cosmos query throttled after SDK retries: {e}")
                else:
                    logger.error(f"Cosmos query page failed: {e}")
                raise ExecutionError(f"Failed to fetch query page: {e}") from e
            except AzureError as e:
                logger.error(f"Azure error while fetching query page: {e}")
                raise ExecutionError(f"Failed to fetch query page: {e}") from e

            page_headers = self._recorder.take_new()

        self.state = CursorState.HAS_MORE
        return _page_from_headers(raw_items, page_headers)


class CosmosHandler(DocumentStoreHandler):
    def __init__(self, descriptor: ConnectionDescriptor, config: Optional[Dict[str, Any]] = None):
        super().__init__(descriptor=descriptor, config=config)

        retry_config = self.config.get("retry", {}) or {}
        client_options = {
            "retry_total": retry_config.get("total", 9),
            "retry_backoff_max": retry_config.get("backoff_max", 30),
        }
        if "connection_timeout" in self.config:
            client_options["connection_timeout"] = self.config["connection_timeout"]

        self.client = CosmosClient(descriptor.endpoint, credential=descriptor.auth_key, **client_options)
        self.semaphore = asyncio.Semaphore(self.config.get("concurrency", 10))
        self.containers: Dict[CollectionScope, Any] = {}

        logger.info(f"Cosmos client created for {descriptor.endpoint} "
                    f"(concurrency={self.config.get('concurrency', 10)}, retry_total={client_options['retry_total']})")

    def _get_container(self, collection: CollectionScope):
        container = self.containers.get(collection)
        if container is None:
            database = self.client.get_database_client(collection.database_id)
            container = database.get_container_client(collection.collection_id)
            self.containers[collection] = container
        return container

    def query(self, collection: CollectionScope, query: QuerySpec, scope: QueryScope,
              page_size: int) -> FeedCursor:
        container = self._get_container(collection)
        return CosmosFeedCursor(container, query, scope, page_size, self.semaphore)

    async def collection_exists(self, collection: CollectionScope) -> bool:
        container = self._get_container(collection)
        try:
            await container.read()
            return True
        except cosmos_exceptions.CosmosResourceNotFoundError:
            return False
        except cosmos_exceptions.CosmosHttpResponseError as e:
            if e.status_code in (401, 403):
                raise ConfigurationError(f"Access to collection {collection} was denied: {e}") from e
            raise ExecutionError(f"Failed to read collection {collection}: {e}") from e

    async def _upsert_one(self, container, document: Dict[str, Any]) -> float:
        recorder = _HeaderRecorder()
        async with self.semaphore:
            await container.upsert_item(body=document, response_hook=recorder)
        return sum(_request_charge(h) for h in recorder.headers)

    async def bulk_upsert(self, collection: CollectionScope,
                          documents: List[Dict[str, Any]]) -> BatchImportResult:
        container = self._get_container(collection)
        start_time = time.time()

        results = await asyncio.gather(
            *(self._upsert_one(container, document) for document in documents),
            return_exceptions=True
        )

        request_units = 0.0
        failed_documents = []
        for document, result in zip(documents, results):
            if isinstance(result, BaseException):
                if isinstance(result, asyncio.CancelledError):
                    raise result
                if isinstance(result, cosmos_exceptions.CosmosHttpResponseError) and result.status_code == 429:
                    logger.warning(f"Upsert of {document.get('id')} throttled: {result}")
                else:
                    logger.error(f"Upsert of {document.get('id')} failed: {result}")
                failed_documents.append(document)
            else:
                request_units += result

        return BatchImportResult(
            documents_imported=len(documents) - len(failed_documents),
            request_units=request_units,
            duration_seconds=time.time() - start_time,
            failed_documents=failed_documents,
            metadata={
                'store_type': 'cosmos',
                'collection': str(collection),
                'batch_size': len(documents),
            }
        )

    async def close(self) -> None:
        logger.info("Closing Cosmos client")
        self.containers.clear()
        await self.client.close()

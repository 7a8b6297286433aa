import asyncio
import logging
import time
from typing import Optional

from aggregate_executor.databases.base_handler import FeedCursor
from aggregate_executor.databases.config_manager import AggregateDimension
from aggregate_executor.databases.database_factory import SharedClientHandle
from aggregate_executor.databases.types import CollectionScope, QueryParameter, QueryScope, QuerySpec
from aggregate_executor.errors import AggregateServiceError, ExecutionError, QueryCancelledError
from aggregate_executor.results.aggregate_result import AggregateResult

logger = logging.getLogger(__name__)

FILTER_PARAMETER = "@filterValue"


class AggregateQueryExecutor:
    """Counts documents in one collection, optionally filtered on one dimension attribute."""

    def __init__(self, client_handle: SharedClientHandle, collection: CollectionScope,
                 dimension: AggregateDimension, page_size: int = 50):
        self.client_handle = client_handle
        self.collection = collection
        self.dimension = dimension
        self.page_size = page_size

    def select_scope(self, filter_value: Optional[str]) -> QueryScope:
        """
        Pick where the query runs.

        A known partition key lets the backend skip scatter-gather. Filters on
        any other attribute still have to visit every partition.
        """
        if _is_blank(filter_value) or not self.dimension.is_partition_key:
            return QueryScope.cross_partition()
        return QueryScope.single_partition(filter_value)

    def build_query(self, filter_value: Optional[str]) -> QuerySpec:
        collection_id = self.collection.collection_id
        text = f"SELECT VALUE COUNT(1) FROM {collection_id} i"

        if _is_blank(filter_value):
            return QuerySpec(text=text)

        return QuerySpec(
            text=f"{text} WHERE i.{self.dimension.attribute} = {FILTER_PARAMETER}",
            parameters=(QueryParameter(name=FILTER_PARAMETER, value=filter_value),),
        )

    async def count_aggregate(self, filter_value: Optional[str] = None,
                              cancel_event: Optional[asyncio.Event] = None) -> AggregateResult:
        """
        Run the count query and drain every page of its feed.

        Raises ExecutionError if any page fails and QueryCancelledError if
        cancel_event is set before the feed is exhausted; neither returns the
        partial count.
        """
        handler = self.client_handle.get()
        scope = self.select_scope(filter_value)
        query = self.build_query(filter_value)

        logger.info(f"Counting {self.collection} by {self.dimension.name} with scope {scope}")
        start_time = time.time()

        try:
            cursor = handler.query(self.collection, query, scope, self.page_size)
        except AggregateServiceError:
            raise
        except Exception as e:
            logger.error(f"Could not start count by {self.dimension.name}: {e}")
            raise ExecutionError(f"Aggregate query could not be started: {e}") from e

        try:
            count, total_cost_units, pages = await self._drain(cursor, cancel_event)
        finally:
            await cursor.close()

        result = AggregateResult(count=count, total_cost_units=total_cost_units)
        logger.info(f"Count: {result.count}, Total RUs: {result.total_cost_units} "
                    f"({pages} pages in {time.time() - start_time:.3f}s)")
        return result

    async def _drain(self, cursor: FeedCursor, cancel_event: Optional[asyncio.Event]):
        count = 0
        total_cost_units = 0.0
        pages = 0

        while cursor.has_more_results:
            if cancel_event is not None and cancel_event.is_set():
                logger.info(f"Count by {self.dimension.name} cancelled after {pages} pages")
                raise QueryCancelledError(f"Aggregate query cancelled after {pages} pages")

            try:
                page = await cursor.fetch_next()
            except AggregateServiceError:
                raise
            except Exception as e:
                logger.error(f"Page {pages + 1} of count by {self.dimension.name} failed: {e}")
                raise ExecutionError(f"Aggregate query failed on page {pages + 1}: {e}") from e

            pages += 1
            count += page.partial_count
            total_cost_units += page.cost_units

            logger.debug(f"Page {pages}: {len(page.items)} values, {page.cost_units} RUs")
            for partition_id, metrics in page.partition_metrics.items():
                logger.debug(f"{partition_id}: {metrics}")

        return count, total_cost_units, pages


def _is_blank(value: Optional[str]) -> bool:
    return value is None or not value.strip()

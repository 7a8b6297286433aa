import asyncio

import pytest

from aggregate_executor.databases.types import CollectionScope
from aggregate_executor.errors import ExecutionError, QueryCancelledError
from aggregate_executor.query_executor import AggregateQueryExecutor
from aggregate_executor.results.feed_page import FeedPage

COLLECTION = CollectionScope(database_id="TestDB", collection_id="Items")


@pytest.fixture
def customer_executor(client_handle, customer_dimension):
    return AggregateQueryExecutor(client_handle, COLLECTION, customer_dimension, page_size=50)


@pytest.fixture
def product_executor(client_handle, product_dimension):
    return AggregateQueryExecutor(client_handle, COLLECTION, product_dimension, page_size=50)


def test_counts_and_costs_are_summed_across_pages(customer_executor, fake_store):
    fake_store.pages = [
        FeedPage(items=(1,), cost_units=2.5),
        FeedPage(items=(1,), cost_units=1.1),
        FeedPage(items=(1,), cost_units=0.4),
    ]

    result = asyncio.run(customer_executor.count_aggregate(None))

    assert result.count == 3
    assert result.total_cost_units == pytest.approx(4.0)


def test_result_does_not_depend_on_page_boundaries(customer_executor, fake_store):
    fake_store.pages = [FeedPage(items=(40, 2), cost_units=3.0), FeedPage(items=(), cost_units=1.0)]
    split = asyncio.run(customer_executor.count_aggregate(None))

    fake_store.pages = [FeedPage(items=(42,), cost_units=4.0)]
    single = asyncio.run(customer_executor.count_aggregate(None))

    assert split.count == single.count == 42
    assert split.total_cost_units == pytest.approx(single.total_cost_units)


def test_empty_feed_counts_zero(customer_executor, fake_store):
    fake_store.pages = []

    result = asyncio.run(customer_executor.count_aggregate(None))

    assert result.count == 0
    assert result.total_cost_units == 0.0
    assert fake_store.cursors[0].closed


def test_filter_selects_single_partition_and_binds_parameter(customer_executor, fake_store):
    fake_store.pages = [FeedPage(items=(7,), cost_units=1.0)]

    asyncio.run(customer_executor.count_aggregate("42"))

    issued = fake_store.queries[0]
    assert not issued["scope"].is_cross_partition
    assert issued["scope"].partition_key == "42"
    assert issued["query"].text == "SELECT VALUE COUNT(1) FROM Items i WHERE i.customer = @filterValue"
    assert issued["query"].parameter_dicts() == [{"name": "@filterValue", "value": "42"}]
    assert issued["page_size"] == 50


@pytest.mark.parametrize("filter_value", [None, "", "   "])
def test_missing_or_blank_filter_fans_out(customer_executor, fake_store, filter_value):
    asyncio.run(customer_executor.count_aggregate(filter_value))

    issued = fake_store.queries[0]
    assert issued["scope"].is_cross_partition
    assert issued["query"].text == "SELECT VALUE COUNT(1) FROM Items i"
    assert issued["query"].parameters == ()


def test_quotes_in_filter_never_reach_query_text(customer_executor, fake_store):
    hostile = "x') OR 1=1 --"

    asyncio.run(customer_executor.count_aggregate(hostile))

    issued = fake_store.queries[0]
    assert hostile not in issued["query"].text
    assert issued["query"].parameters[0].value == hostile


def test_non_partition_dimension_filters_across_partitions(product_executor, fake_store):
    asyncio.run(product_executor.count_aggregate("123"))

    issued = fake_store.queries[0]
    assert issued["scope"].is_cross_partition
    assert issued["query"].text.endswith("WHERE i.productCode = @filterValue")


def test_failing_page_raises_execution_error_without_result(customer_executor, fake_store):
    fake_store.pages = [FeedPage(items=(5,), cost_units=1.0), RuntimeError("service unavailable")]

    with pytest.raises(ExecutionError, match="page 2"):
        asyncio.run(customer_executor.count_aggregate(None))
    assert fake_store.cursors[0].closed


def test_handler_execution_errors_pass_through(customer_executor, fake_store):
    fake_store.pages = [ExecutionError("throttled")]

    with pytest.raises(ExecutionError, match="throttled"):
        asyncio.run(customer_executor.count_aggregate(None))


def test_cancel_event_stops_paging(customer_executor, fake_store):
    fake_store.pages = [FeedPage(items=(1,), cost_units=1.0)] * 5

    async def run():
        cancel_event = asyncio.Event()
        cancel_event.set()
        return await customer_executor.count_aggregate(None, cancel_event=cancel_event)

    with pytest.raises(QueryCancelledError):
        asyncio.run(run())
    assert fake_store.cursors[0].fetches == 0


def test_cancel_mid_feed(customer_executor, fake_store):
    cancel_event = asyncio.Event()

    class CancellingPage(FeedPage):
        @property
        def partial_count(self):
            cancel_event.set()
            return super().partial_count

    fake_store.pages = [CancellingPage(items=(1,), cost_units=1.0), FeedPage(items=(1,), cost_units=1.0)]

    with pytest.raises(QueryCancelledError):
        asyncio.run(customer_executor.count_aggregate(None, cancel_event=cancel_event))
    assert fake_store.cursors[0].fetches == 1

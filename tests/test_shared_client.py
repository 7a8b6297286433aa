import asyncio
import threading
import time
from concurrent.futures import ThreadPoolExecutor

import pytest

from aggregate_executor.databases.database_factory import DocumentStoreFactory, SharedClientHandle
from aggregate_executor.databases.types import DocumentStoreType
from aggregate_executor.errors import ConfigurationError, FormatError
from conftest import CONNECTION_STRING, FakeDocumentStore


class CountingFactory:
    def __init__(self):
        self.calls = 0
        self.descriptors = []
        self._calls_lock = threading.Lock()

    def __call__(self, store_type, descriptor, config):
        with self._calls_lock:
            self.calls += 1
        self.descriptors.append(descriptor)
        # Widen the window in which a second constructor could sneak in
        time.sleep(0.05)
        return FakeDocumentStore(descriptor=descriptor, config=config)


def _handle(factory, connection_string=CONNECTION_STRING):
    return SharedClientHandle(
        store_type=DocumentStoreType.COSMOS,
        connection_string_name="CosmosDB",
        connection_string=connection_string,
        handler_config={"concurrency": 2},
        factory=factory,
    )


def test_concurrent_first_use_constructs_once():
    factory = CountingFactory()
    handle = _handle(factory)
    callers = 16
    barrier = threading.Barrier(callers)

    def first_use():
        barrier.wait()
        return handle.get()

    with ThreadPoolExecutor(max_workers=callers) as pool:
        handlers = list(pool.map(lambda _: first_use(), range(callers)))

    assert factory.calls == 1
    assert all(h is handlers[0] for h in handlers)


def test_handler_receives_parsed_descriptor_and_config():
    factory = CountingFactory()

    handler = _handle(factory).get()

    assert handler.descriptor.endpoint == "https://x.example/"
    assert handler.descriptor.auth_key == "abc123"
    assert handler.config == {"concurrency": 2}


def test_later_calls_reuse_the_handler():
    factory = CountingFactory()
    handle = _handle(factory)

    assert not handle.is_initialized
    first = handle.get()
    assert handle.get() is first
    assert handle.is_initialized
    assert factory.calls == 1


@pytest.mark.parametrize("connection_string", [None, "", "  "])
def test_missing_connection_string_is_a_configuration_error(connection_string):
    factory = CountingFactory()
    handle = _handle(factory, connection_string)

    with pytest.raises(ConfigurationError, match="'CosmosDB' has not been defined"):
        handle.get()
    assert factory.calls == 0
    assert not handle.is_initialized


def test_malformed_connection_string_surfaces_format_error():
    handle = _handle(CountingFactory(), "AccountEndpoint=https://x.example/")

    with pytest.raises(FormatError):
        handle.get()


def test_close_releases_the_handler():
    handle = _handle(CountingFactory())
    handler = handle.get()

    asyncio.run(handle.close())

    assert handler.closed
    assert not handle.is_initialized


def test_factory_lists_supported_store_types():
    assert DocumentStoreFactory.get_supported_store_types() == ["cosmos"]

import logging
import threading
from typing import Any, Callable, Dict, List, Optional

from aggregate_executor.connection.connection_string import ConnectionDescriptor, parse
from aggregate_executor.databases.base_handler import DocumentStoreHandler
from aggregate_executor.databases.cosmos import CosmosHandler
from aggregate_executor.databases.types import DocumentStoreType
from aggregate_executor.errors import ConfigurationError

logger = logging.getLogger(__name__)


class DocumentStoreFactory:

    _store_implementations = {
        DocumentStoreType.COSMOS: CosmosHandler
    }

    @classmethod
    def create_handler(cls, store_type: DocumentStoreType, descriptor: ConnectionDescriptor,
                       config: Optional[Dict[str, Any]] = None) -> DocumentStoreHandler:
        if store_type not in cls._store_implementations:
            raise ConfigurationError(f'Document store type {store_type} not supported')

        handler_class = cls._store_implementations[store_type]
        return handler_class(descriptor=descriptor, config=config)

    @classmethod
    def get_supported_store_types(cls) -> List[str]:
        return [store_type.value for store_type in cls._store_implementations.keys()]


HandlerFactory = Callable[[DocumentStoreType, ConnectionDescriptor, Optional[Dict[str, Any]]], DocumentStoreHandler]


class SharedClientHandle:
    """
    Process-wide document store handler, built on first use.

    get() reads the handler without locking once it exists; only the first
    callers contend for the lock, and exactly one of them builds the handler.
    A failed build leaves the handle empty so a corrected deployment can
    succeed on a later call.
    """

    def __init__(self, store_type: DocumentStoreType, connection_string_name: str,
                 connection_string: Optional[str], handler_config: Optional[Dict[str, Any]] = None,
                 factory: Optional[HandlerFactory] = None):
        self.store_type = store_type
        self.connection_string_name = connection_string_name
        self._connection_string = connection_string
        self.handler_config = handler_config or {}
        self._factory = factory or DocumentStoreFactory.create_handler
        self._lock = threading.Lock()
        self._handler: Optional[DocumentStoreHandler] = None

    @classmethod
    def from_config(cls, config, factory: Optional[HandlerFactory] = None) -> "SharedClientHandle":
        return cls(
            store_type=config.store_type,
            connection_string_name=config.connection_string_name,
            connection_string=config.connection_string,
            handler_config=config.handler_config,
            factory=factory,
        )

    @property
    def is_initialized(self) -> bool:
        return self._handler is not None

    def get(self) -> DocumentStoreHandler:
        handler = self._handler
        if handler is not None:
            return handler

        with self._lock:
            if self._handler is None:
                self._handler = self._build()
            return self._handler

    def _build(self) -> DocumentStoreHandler:
        if self._connection_string is None or not self._connection_string.strip():
            raise ConfigurationError(
                f"Connection string '{self.connection_string_name}' has not been defined.")

        descriptor = parse(self._connection_string)
        logger.info(f"Creating shared {self.store_type.value} handler for {descriptor.endpoint}")
        return self._factory(self.store_type, descriptor, self.handler_config)

    async def close(self) -> None:
        with self._lock:
            handler, self._handler = self._handler, None
        if handler is not None:
            await handler.close()

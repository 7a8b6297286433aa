from dataclasses import dataclass
from enum import Enum
from typing import Any, Optional, Tuple


class DocumentStoreType(Enum):
    """
    Enumeration of supported document store backends.
    """
    COSMOS = "cosmos"


class CursorState(Enum):
    NOT_STARTED = "not_started"
    HAS_MORE = "has_more"
    EXHAUSTED = "exhausted"


@dataclass(frozen=True)
class QueryScope:
    """
    Execution scope of a query: one partition, or fan-out across all of them.

    Build instances with single_partition() / cross_partition().
    """
    partition_key: Optional[str] = None

    def __post_init__(self):
        if self.partition_key is not None and not self.partition_key.strip():
            raise ValueError("SinglePartition scope requires a non-empty partition key")

    @classmethod
    def single_partition(cls, key: str) -> "QueryScope":
        return cls(partition_key=key)

    @classmethod
    def cross_partition(cls) -> "QueryScope":
        return cls(partition_key=None)

    @property
    def is_cross_partition(self) -> bool:
        return self.partition_key is None

    def __str__(self) -> str:
        if self.is_cross_partition:
            return "CrossPartition"
        return f"SinglePartition({self.partition_key})"


@dataclass(frozen=True)
class QueryParameter:
    name: str
    value: Any

    def as_dict(self):
        return {"name": self.name, "value": self.value}


@dataclass(frozen=True)
class QuerySpec:
    """Query text plus the parameters bound to it."""
    text: str
    parameters: Tuple[QueryParameter, ...] = ()

    def parameter_dicts(self):
        return [p.as_dict() for p in self.parameters]


@dataclass(frozen=True)
class CollectionScope:
    database_id: str
    collection_id: str

    def __str__(self) -> str:
        return f"{self.database_id}/{self.collection_id}"

from dataclasses import dataclass, field
from numbers import Integral, Real
from typing import Any, Dict, Iterable, Mapping, Tuple

from aggregate_executor.errors import ExecutionError


@dataclass(frozen=True)
class FeedPage:
    """
    One page of an aggregate query feed.

    Aggregate pages carry partial counts, never documents, so items are
    plain integers. Handlers build pages through from_raw() so that anything
    else coming back from the backend is rejected at the boundary.
    """
    items: Tuple[int, ...]
    cost_units: float = 0.0
    partition_metrics: Mapping[str, Any] = field(default_factory=dict)

    @classmethod
    def from_raw(cls, raw_items: Iterable[Any], cost_units: float,
                 partition_metrics: Mapping[str, Any] = None) -> "FeedPage":
        items = tuple(_as_count(item) for item in raw_items)
        return cls(items=items, cost_units=float(cost_units or 0.0),
                   partition_metrics=dict(partition_metrics or {}))

    @classmethod
    def empty(cls) -> "FeedPage":
        return cls(items=())

    @property
    def partial_count(self) -> int:
        return sum(self.items)


def _as_count(value: Any) -> int:
    # bool is an Integral but never a valid count
    if isinstance(value, bool):
        raise ExecutionError(f"Aggregate page contained a non-numeric value: {value!r}")
    if isinstance(value, Integral):
        return int(value)
    if isinstance(value, Real) and float(value).is_integer():
        return int(value)
    raise ExecutionError(f"Aggregate page contained a non-integer value: {value!r}")


def parse_query_metrics(header_value: str) -> Dict[str, str]:
    """Split a `name=value;name=value` metrics header into a dict."""
    metrics: Dict[str, str] = {}
    if not header_value:
        return metrics
    for pair in header_value.split(";"):
        name, separator, value = pair.partition("=")
        if separator and name:
            metrics[name.strip()] = value.strip()
    return metrics

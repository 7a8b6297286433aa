from dataclasses import dataclass
from typing import Any, Dict


@dataclass(frozen=True)
class AggregateResult:
    """
    Final result of one aggregate request.

    Only produced once the feed is exhausted; a failed or cancelled request
    never yields one.
    """
    count: int                 # Sum of every partial count across pages
    total_cost_units: float    # Sum of the request charge of every page

    def to_response(self) -> Dict[str, Any]:
        return {"totalRUs": self.total_cost_units, "count": self.count}

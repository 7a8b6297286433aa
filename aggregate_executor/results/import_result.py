from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional


@dataclass
class BatchImportResult:
    """
    Outcome of upserting one batch of documents.

    Every handler returns bulk writes in this format so the loader can
    report throughput the same way regardless of backend.
    """
    documents_imported: int
    request_units: float
    duration_seconds: float
    failed_documents: List[Dict[str, Any]] = field(default_factory=list)
    metadata: Optional[Dict[str, Any]] = None  # Backend-specific extra info

    def __post_init__(self):
        """Ensure metadata is always a dictionary, never None."""
        if self.metadata is None:
            self.metadata = {}

    @property
    def writes_per_second(self) -> float:
        if self.duration_seconds <= 0:
            return 0.0
        return self.documents_imported / self.duration_seconds

    @property
    def request_units_per_second(self) -> float:
        if self.duration_seconds <= 0:
            return 0.0
        return self.request_units / self.duration_seconds

    @property
    def request_units_per_document(self) -> float:
        if self.documents_imported == 0:
            return 0.0
        return self.request_units / self.documents_imported

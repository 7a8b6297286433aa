from typing import List

from aggregate_executor.results.import_result import BatchImportResult


class LoadSummary:
    """Totals across every batch written by one loader run."""
    def __init__(self, start_time: float, end_time: float = 0.0):
        self.start_time = start_time
        self.end_time = end_time
        self.batches: List[BatchImportResult] = []
        self.total_documents_imported = 0
        self.total_request_units = 0.0
        self.total_time_taken_seconds = 0.0
        self.failed_batches = 0
        self.cancelled = False

    def add_batch(self, batch_result: BatchImportResult) -> None:
        self.batches.append(batch_result)
        self.total_documents_imported += batch_result.documents_imported
        self.total_request_units += batch_result.request_units
        self.total_time_taken_seconds += batch_result.duration_seconds
        if batch_result.failed_documents:
            self.failed_batches += 1

    @property
    def duration(self) -> float:
        """Wall-clock time of the whole run."""
        return self.end_time - self.start_time

    @property
    def writes_per_second(self) -> float:
        if self.total_time_taken_seconds <= 0:
            return 0.0
        return self.total_documents_imported / self.total_time_taken_seconds

    @property
    def request_units_per_second(self) -> float:
        if self.total_time_taken_seconds <= 0:
            return 0.0
        return self.total_request_units / self.total_time_taken_seconds

    @property
    def request_units_per_document(self) -> float:
        if self.total_documents_imported == 0:
            return 0.0
        return self.total_request_units / self.total_documents_imported

import asyncio
import logging
import time
from typing import Any, Dict, Iterable, List, Optional

from aggregate_executor.data.document_generator import ItemDocumentGenerator
from aggregate_executor.databases.base_handler import DocumentStoreHandler
from aggregate_executor.databases.types import CollectionScope
from aggregate_executor.errors import ConfigurationError, ExecutionError
from aggregate_executor.results.import_result import BatchImportResult
from aggregate_executor.results.load_summary import LoadSummary

logger = logging.getLogger(__name__)


class BulkLoader:
    """Writes documents to a collection in batches and reports throughput."""

    def __init__(self, handler: DocumentStoreHandler, collection: CollectionScope,
                 max_batch_attempts: int = 5):
        self.handler = handler
        self.collection = collection
        self.max_batch_attempts = max(1, max_batch_attempts)

    async def ensure_collection(self) -> None:
        if not await self.handler.collection_exists(self.collection):
            raise ConfigurationError(f"Collection {self.collection} does not exist")

    async def import_batch(self, batch_index: int, documents: List[Dict[str, Any]]) -> BatchImportResult:
        """
        Upsert one batch, re-sending failed documents until the whole batch is
        in or the attempts run out.
        """
        logger.info(f"Executing bulk import for batch {batch_index}")

        pending = documents
        imported = 0
        request_units = 0.0
        duration = 0.0
        attempt = 0

        while pending and attempt < self.max_batch_attempts:
            attempt += 1
            result = await self.handler.bulk_upsert(self.collection, pending)
            imported += result.documents_imported
            request_units += result.request_units
            duration += result.duration_seconds
            pending = result.failed_documents

            if pending:
                logger.warning(f"Batch {batch_index} attempt {attempt}: "
                               f"{len(pending)} of {len(documents)} documents not imported")

        batch_result = BatchImportResult(
            documents_imported=imported,
            request_units=request_units,
            duration_seconds=duration,
            failed_documents=list(pending),
            metadata={'batch_index': batch_index, 'attempts': attempt}
        )
        _log_batch_summary(batch_index, batch_result)
        return batch_result

    async def load(self, batches: Iterable[List[Dict[str, Any]]],
                   cancel_event: Optional[asyncio.Event] = None) -> LoadSummary:
        await self.ensure_collection()

        summary = LoadSummary(start_time=time.time())
        for batch_index, documents in enumerate(batches):
            if cancel_event is not None and cancel_event.is_set():
                logger.info(f"Cancellation requested, stopping before batch {batch_index}")
                summary.cancelled = True
                break

            batch_result = await self.import_batch(batch_index, documents)
            summary.add_batch(batch_result)

            if batch_result.documents_imported == 0 and batch_result.failed_documents:
                summary.end_time = time.time()
                raise ExecutionError(f"Batch {batch_index} failed: no documents could be imported")

        summary.end_time = time.time()
        _log_overall_summary(summary)
        return summary


def generated_batches(generator: ItemDocumentGenerator, batch_count: int,
                      documents_per_batch: int) -> Iterable[List[Dict[str, Any]]]:
    for _ in range(batch_count):
        yield generator.generate_batch(documents_per_batch)


def chunked(documents: List[Dict[str, Any]], batch_size: int) -> Iterable[List[Dict[str, Any]]]:
    if batch_size < 1:
        raise ValueError(f"batch_size must be positive, got {batch_size}")
    for start in range(0, len(documents), batch_size):
        yield documents[start:start + batch_size]


def _log_batch_summary(batch_index: int, result: BatchImportResult) -> None:
    logger.info(f"Summary for batch {batch_index}: "
                f"Inserted {result.documents_imported} docs @ {round(result.writes_per_second)} writes/s, "
                f"{round(result.request_units_per_second)} RU/s in {result.duration_seconds:.2f} sec")
    logger.info(f"Average RU consumption per document: {result.request_units_per_document:.2f}")


def _log_overall_summary(summary: LoadSummary) -> None:
    logger.info(f"Overall summary: "
                f"Inserted {summary.total_documents_imported} docs @ {round(summary.writes_per_second)} writes/s, "
                f"{round(summary.request_units_per_second)} RU/s in {summary.total_time_taken_seconds:.2f} sec")
    logger.info(f"Average RU consumption per document: {summary.request_units_per_document:.2f}")
    if summary.failed_batches:
        logger.warning(f"{summary.failed_batches} batches were only partially imported")

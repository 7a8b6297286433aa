import argparse
import asyncio
import logging
import os
import signal
import sys
from pathlib import Path

from aggregate_executor.bulk_loader import BulkLoader, chunked, generated_batches
from aggregate_executor.data.document_generator import ItemDocumentGenerator, read_documents
from aggregate_executor.databases.config_manager import ConfigurationManager
from aggregate_executor.databases.database_factory import SharedClientHandle
from aggregate_executor.errors import AggregateServiceError

logging.basicConfig(
    level=os.getenv("LOG_LEVEL", "INFO").upper(),
    format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
)
logger = logging.getLogger(__name__)


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="Bulk-load test documents into the Items collection.")
    parser.add_argument("--batches", type=int, default=None, help="Number of generated batches")
    parser.add_argument("--batch-size", type=int, default=None, help="Documents per batch")
    parser.add_argument("--input", type=Path, default=None,
                        help="JSON-lines file to load instead of generated documents")
    parser.add_argument("--seed", type=int, default=None, help="Seed for generated documents")
    parser.add_argument("--config-dir", default=None, help="Directory holding cosmos.yaml")
    return parser


def _install_cancel_handler(cancel_event: asyncio.Event) -> None:
    loop = asyncio.get_running_loop()

    def request_cancel():
        logger.info("Task cancellation requested.")
        cancel_event.set()

    try:
        loop.add_signal_handler(signal.SIGINT, request_cancel)
    except NotImplementedError:
        # Windows event loops do not support signal handlers
        pass


async def run(args: argparse.Namespace) -> int:
    config = ConfigurationManager(args.config_dir).load_app_config()
    batch_size = args.batch_size or config.loader.documents_per_batch
    batch_count = args.batches or config.loader.batch_count

    if args.input is not None:
        documents = await read_documents(args.input)
        batches = chunked(documents, batch_size)
    else:
        generator = ItemDocumentGenerator(seed=args.seed)
        batches = generated_batches(generator, batch_count, batch_size)

    client_handle = SharedClientHandle.from_config(config)
    cancel_event = asyncio.Event()
    _install_cancel_handler(cancel_event)

    try:
        loader = BulkLoader(
            handler=client_handle.get(),
            collection=config.collection,
            max_batch_attempts=config.loader.max_batch_attempts,
        )
        summary = await loader.load(batches, cancel_event=cancel_event)
    finally:
        await client_handle.close()

    if summary.cancelled:
        return 130
    return 1 if summary.failed_batches else 0


def main(argv=None) -> int:
    args = build_parser().parse_args(argv)
    try:
        return asyncio.run(run(args))
    except AggregateServiceError as e:
        logger.error(f"Loading failed: {e}")
        return 1
    except (OSError, ValueError) as e:
        logger.error(f"Loading failed: {e}")
        return 1


if __name__ == "__main__":
    sys.exit(main())

import json
import logging
import random
import uuid
from pathlib import Path
from typing import Any, Dict, List, Optional

import aiofiles

logger = logging.getLogger(__name__)

REQUIRED_FIELDS = ("id", "customer", "productCode")


class ItemDocumentGenerator:
    """
    Produces documents for the Items collection.

    Documents are partitioned by `customer`; both `customer` and
    `productCode` are drawn from the same small range so counts per value
    stay meaningful.
    """

    def __init__(self, value_range: int = 999, seed: Optional[int] = None):
        if value_range < 1:
            raise ValueError(f"value_range must be positive, got {value_range}")
        self.value_range = value_range
        self._random = random.Random(seed)

    def new_document(self) -> Dict[str, Any]:
        return {
            "id": uuid.UUID(int=self._random.getrandbits(128)).hex,
            "customer": str(self._random.randrange(self.value_range)),
            "productCode": str(self._random.randrange(self.value_range)),
        }

    def generate_batch(self, document_count: int) -> List[Dict[str, Any]]:
        return [self.new_document() for _ in range(document_count)]


def validate_document(document: Any, line_number: int = 0) -> Dict[str, Any]:
    if not isinstance(document, dict):
        raise ValueError(f"Line {line_number}: expected a JSON object, got {type(document).__name__}")
    missing = [name for name in REQUIRED_FIELDS if not document.get(name)]
    if missing:
        raise ValueError(f"Line {line_number}: document is missing {', '.join(missing)}")
    return document


async def read_documents(input_path: Path) -> List[Dict[str, Any]]:
    """Read JSON-lines documents, one object per line; blank lines are skipped."""
    documents = []
    try:
        async with aiofiles.open(input_path, 'r') as f:
            line_number = 0
            async for line in f:
                line_number += 1
                if not line.strip():
                    continue
                documents.append(validate_document(json.loads(line), line_number))
    except FileNotFoundError:
        logger.error(f"File {input_path} not found.")
        raise
    except json.decoder.JSONDecodeError as e:
        logger.error(f"File {input_path} could not be decoded: {e}")
        raise ValueError(f"File {input_path} could not be decoded: {e}") from e

    logger.info(f"Read {len(documents)} documents from {input_path}")
    return documents

"""Chunked, rate-limited computation of discovery cycle records."""

import logging
import time
from dataclasses import dataclass, field
from typing import Callable, Optional

from services.discovery_cycle import DiscoveryCycleCalculator
from services.models import DiscoveryCycleRecord, WorkItem

logger = logging.getLogger(__name__)

DEFAULT_CHUNK_SIZE = 10
DEFAULT_DELAY_SECONDS = 1.0


@dataclass
class BatchResult:
    processed: int = 0
    cached: int = 0
    errors: int = 0
    start_index: int = 0
    next_index: Optional[int] = None
    has_more: bool = False
    total: int = 0
    failed_keys: list = field(default_factory=list)

    def to_dict(self) -> dict:
        return {
            "processed": self.processed,
            "cached": self.cached,
            "errors": self.errors,
            "startIndex": self.start_index,
            "nextIndex": self.next_index,
            "hasMore": self.has_more,
            "totalIssues": self.total,
            "failedKeys": list(self.failed_keys),
        }


class BatchRunner:
    """Computes and caches cycle records one chunk of issues at a time.

    Consecutive issues in a chunk are separated by ``delay_seconds`` to stay
    under the issue tracker's rate limits. A failing issue is logged and
    counted; the rest of the chunk still runs.
    """

    def __init__(self, provider, cache, calculator: Optional[DiscoveryCycleCalculator] = None,
                 delay_seconds: float = DEFAULT_DELAY_SECONDS,
                 item_source: Optional[Callable[[], list]] = None,
                 sleep: Callable[[float], None] = time.sleep):
        self.provider = provider
        self.cache = cache
        self.calculator = calculator or DiscoveryCycleCalculator()
        self.delay_seconds = delay_seconds
        self.item_source = item_source or provider.list_items
        self._sleep = sleep

    def process_item(self, item: WorkItem) -> DiscoveryCycleRecord:
        """Fetch history, compute and cache one issue.

        Raises:
            ExternalFetchFailed: if the transition log cannot be fetched
            CacheWriteFailed: if the record cannot be stored
        """
        log = self.provider.get_transition_log(item.key)
        record = self.calculator.compute(item, log)
        return self.cache.put(item.key, record)

    def run_chunk(self, start_index: int = 0, chunk_size: int = DEFAULT_CHUNK_SIZE) -> BatchResult:
        if start_index < 0 or chunk_size < 1:
            raise ValueError("start_index must be >= 0 and chunk_size >= 1")

        items = self.item_source()
        chunk = items[start_index:start_index + chunk_size]
        result = BatchResult(start_index=start_index, total=len(items))

        logger.info(f"Processing issues {start_index}-{start_index + len(chunk) - 1} "
                    f"of {len(items)}")

        for i, item in enumerate(chunk):
            try:
                record = self.process_item(item)
                if record.discovery_start_date and record.discovery_end_date:
                    result.cached += 1
            except Exception as e:
                logger.error(f"Error processing {item.key}: {e}")
                result.errors += 1
                result.failed_keys.append(item.key)
            result.processed += 1

            if i < len(chunk) - 1:
                self._sleep(self.delay_seconds)

        next_index = start_index + chunk_size
        result.has_more = next_index < len(items)
        result.next_index = next_index if result.has_more else None

        logger.info(f"Chunk done: {result.processed} processed, {result.cached} with dates, "
                    f"{result.errors} errors")
        return result

    def run_all(self, start_index: int = 0, chunk_size: int = DEFAULT_CHUNK_SIZE) -> BatchResult:
        """Process every remaining chunk and return the combined counts."""
        combined = BatchResult(start_index=start_index)
        index = start_index

        while True:
            result = self.run_chunk(index, chunk_size)
            combined.processed += result.processed
            combined.cached += result.cached
            combined.errors += result.errors
            combined.failed_keys.extend(result.failed_keys)
            combined.total = result.total
            if not result.has_more:
                break
            self._sleep(self.delay_seconds)
            index = result.next_index

        return combined

"""
Buffered, size-bounded inserts into one staging table.
"""

from typing import Any, Dict, List, Optional

from sqlalchemy import Table

from core.config import settings
from core.exceptions import StagingWriteError
from ingestion.loaders.staging_store import StagingStore
import logging

logger = logging.getLogger(__name__)


class BatchedInserter:
    """
    Collect rows and write them as multi-row INSERTs.

    A batch is flushed as soon as it holds ``batch_size`` rows. A row that
    would take the batch past ``max_bytes`` flushes the rows already
    buffered first. ``close()`` writes whatever is left.

    A failed flush keeps the buffered rows and re-raises, so nothing is
    dropped silently.
    """

    def __init__(
        self,
        store: StagingStore,
        table: Table,
        batch_size: Optional[int] = None,
        max_bytes: Optional[int] = None
    ):
        self.store = store
        self.table = table
        self.batch_size = batch_size or settings.STAGING_BATCH_SIZE
        self.max_bytes = max_bytes or settings.STAGING_BATCH_MAX_BYTES
        self._buffer: List[Dict[str, Any]] = []
        self._buffer_bytes = 0
        self._closed = False
        self.rows_written = 0
        self.flush_count = 0

    async def __aenter__(self) -> "BatchedInserter":
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        if exc is None:
            await self.close()

    @property
    def pending(self) -> int:
        return len(self._buffer)

    @staticmethod
    def estimate_size(row: Dict[str, Any]) -> int:
        return sum(len(str(value).encode("utf-8")) for value in row.values() if value is not None)

    async def add(self, row: Dict[str, Any]) -> None:
        if self._closed:
            raise StagingWriteError(
                f"Insert into closed batch for {self.table.name}",
                context={"table": self.table.name}
            )

        size = self.estimate_size(row)
        if self._buffer and self._buffer_bytes + size > self.max_bytes:
            await self.flush()

        self._buffer.append(row)
        self._buffer_bytes += size

        if len(self._buffer) >= self.batch_size:
            await self.flush()

    async def flush(self) -> int:
        if not self._buffer:
            return 0

        count = await self.store.batch_insert(self.table, self._buffer)
        self.rows_written += len(self._buffer)
        self.flush_count += 1
        logger.debug(
            f"Flushed {len(self._buffer)} rows ({self._buffer_bytes} bytes) "
            f"into {self.table.name}"
        )
        self._buffer = []
        self._buffer_bytes = 0
        return count

    async def close(self) -> None:
        if self._closed:
            return
        await self.flush()
        self._closed = True
        logger.info(
            f"Closed inserter for {self.table.name}: "
            f"{self.rows_written} rows in {self.flush_count} batches"
        )

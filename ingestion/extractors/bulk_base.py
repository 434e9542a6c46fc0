"""
Bulk operation puller.

Drives one asynchronous bulk query through its lifecycle:

    IDLE -> SUBMITTING -> POLLING -> DOWNLOADING -> IDLE
                 |            |
          BLOCKED/THROTTLED   THROTTLED
                 |            |
              (wait, retry up to a bound)

Any state can end in FAILED, which re-raises the error that caused it.
Subclasses supply the query and handle one decoded JSONL record at a time.
"""

import asyncio
import json
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Any, AsyncIterable, Dict, Optional

from core.config import settings
from core.exceptions import (
    ApiError,
    BulkConflictError,
    UnexpectedResponseError,
)
from ingestion.extractors.transport import BulkTransport
from models.base import BulkState
from models.gid import GID
from models.pull_stats import PullStats
from schemas.bulk import BulkOperation
from schemas.settings import PullSettings
import logging

logger = logging.getLogger(__name__)

API_NAME = "Shopify"


@dataclass(frozen=True)
class BulkPullerConfig:
    """Retry bounds and waits for one puller, defaulting from core settings."""

    max_blocked_attempts: int = field(default_factory=lambda: settings.BULK_MAX_BLOCKED_ATTEMPTS)
    max_throttled_attempts: int = field(default_factory=lambda: settings.BULK_MAX_THROTTLED_ATTEMPTS)
    blocked_wait: float = field(default_factory=lambda: settings.BULK_BLOCKED_WAIT_SECONDS)
    throttled_wait: float = field(default_factory=lambda: settings.BULK_THROTTLED_WAIT_SECONDS)
    poll_interval: float = field(default_factory=lambda: settings.BULK_POLL_INTERVAL_SECONDS)
    max_poll_attempts: int = field(default_factory=lambda: settings.BULK_MAX_POLL_ATTEMPTS)
    max_poll_errors: int = field(default_factory=lambda: settings.BULK_MAX_POLL_ERRORS)


class BulkPuller(ABC):
    """
    Base class for bulk pullers.

    Attributes:
        settings: Pull settings for the run
        transport: Remote API collaborator
        stats: Counters shared with the owning module
        state: Current BulkState
    """

    def __init__(
        self,
        pull_settings: PullSettings,
        transport: BulkTransport,
        stats: PullStats,
        config: Optional[BulkPullerConfig] = None
    ):
        self.settings = pull_settings
        self.transport = transport
        self.stats = stats
        self.config = config or BulkPullerConfig()
        self.state = BulkState.IDLE
        self.operation: Optional[BulkOperation] = None

    @property
    def name(self) -> str:
        return type(self).__name__

    @abstractmethod
    def get_query(self) -> str:
        """Body of the bulk query (without the enclosing braces)."""
        pass

    @abstractmethod
    async def process_record(self, record: Dict[str, Any]) -> None:
        """Handle one decoded result line."""
        pass

    async def finish(self) -> None:
        """Called once after the last record. Flush anything still open."""
        pass

    def _transition(self, state: BulkState) -> None:
        if state is not self.state:
            logger.debug(f"{self.name}: {self.state.value} -> {state.value}")
        self.state = state

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    async def do_bulk_pull(self) -> None:
        """Submit, poll, download and process one bulk query."""
        try:
            operation = await self.run_bulk_query(self.get_query())
            operation = await self.poll_for_bulk_complete(operation)
            self.operation = operation

            self._transition(BulkState.DOWNLOADING)
            if operation.url:
                await self.process_bulk_result(self.transport.download_bulk_result(operation.url))
            else:
                logger.info(f"{self.name}: bulk operation {operation.id} returned no objects")
            await self.finish()
            self.stats.pages += 1
            self._transition(BulkState.IDLE)
        except Exception:
            self._transition(BulkState.FAILED)
            raise

    async def run_bulk_query(self, query: str) -> BulkOperation:
        """
        Submit the query, waiting out blocked and throttled rejections.

        Raises:
            ApiError: When the retry bound is reached or the operation is dead
            BulkConflictError: For any other rejection
        """
        blocked = 0
        throttled = 0

        while True:
            self._transition(BulkState.SUBMITTING)
            try:
                operation = await self.transport.submit_bulk_query(query)
            except BulkConflictError as e:
                if e.is_blocked:
                    blocked += 1
                    if blocked >= self.config.max_blocked_attempts:
                        raise ApiError(
                            "Another bulk query is already running for this auth token. "
                            f"Error message: {e.first_message}",
                            data={"errors": e.errors},
                            context={"attempts": blocked},
                            original_exception=e
                        )
                    self._transition(BulkState.BLOCKED)
                    logger.info(
                        f"{self.name}: bulk query blocked ({blocked}/{self.config.max_blocked_attempts}), "
                        f"waiting {self.config.blocked_wait} seconds"
                    )
                    await asyncio.sleep(self.config.blocked_wait)
                    continue

                if e.is_throttled:
                    throttled += 1
                    if throttled >= self.config.max_throttled_attempts:
                        raise ApiError(
                            f"Bulk query submission stayed throttled. Error message: {e.first_message}",
                            data={"errors": e.errors},
                            context={"attempts": throttled},
                            original_exception=e
                        )
                    self._transition(BulkState.THROTTLED)
                    logger.info(
                        f"{self.name}: bulk query throttled ({throttled}/{self.config.max_throttled_attempts}), "
                        f"waiting {self.config.throttled_wait} seconds"
                    )
                    await asyncio.sleep(self.config.throttled_wait)
                    continue

                logger.error(f"{self.name}: bulk query rejected: {e.errors}")
                raise

            if operation.is_running or operation.is_complete:
                logger.info(f"{self.name}: bulk operation {operation.id} accepted ({operation.status})")
                return operation

            if operation.is_dead:
                raise ApiError(
                    f"Bulk query submission ended with status {operation.status}",
                    data=operation.model_dump(),
                    context={"operation_id": operation.id, "error_code": operation.error_code}
                )

            raise UnexpectedResponseError(
                API_NAME,
                f"Bulk operation entered unknown state: {operation.status}",
                context={"operation_id": operation.id}
            )

    async def poll_for_bulk_complete(self, operation: BulkOperation) -> BulkOperation:
        """
        Poll until the operation completes.

        Raises:
            ApiError: Operation canceled, too many failed polls, or attempts exhausted
            UnexpectedResponseError: Completed without a result url
        """
        self._transition(BulkState.POLLING)
        poll_errors = 0
        attempts = 0

        while not operation.is_complete:
            attempts += 1
            if attempts > self.config.max_poll_attempts:
                raise ApiError(
                    f"Bulk operation did not complete after {self.config.max_poll_attempts} polls",
                    data=operation.model_dump(),
                    context={"operation_id": operation.id}
                )

            await asyncio.sleep(self.config.poll_interval)
            try:
                operation = await self.transport.poll_bulk_job(operation.id)
            except BulkConflictError as e:
                if not e.is_throttled:
                    raise
                self._transition(BulkState.THROTTLED)
                logger.info(f"{self.name}: status poll throttled, waiting {self.config.throttled_wait} seconds")
                await asyncio.sleep(self.config.throttled_wait)
                self._transition(BulkState.POLLING)
                continue

            if operation.is_complete or operation.is_running:
                continue

            if operation.is_canceled:
                raise ApiError(
                    "Bulk operation was canceled",
                    data=operation.model_dump(),
                    context={"operation_id": operation.id}
                )

            poll_errors += 1
            logger.warning(
                f"{self.name}: bulk operation {operation.id} reported {operation.status} "
                f"({poll_errors}/{self.config.max_poll_errors})"
            )
            if poll_errors > self.config.max_poll_errors:
                raise ApiError(
                    f"Bulk operation failed with status {operation.status}",
                    data=operation.model_dump(),
                    context={"operation_id": operation.id, "error_code": operation.error_code}
                )

        if not operation.url and not operation.is_empty_result:
            raise UnexpectedResponseError(
                API_NAME,
                "Bulk operation completed without a result url",
                context={"operation_id": operation.id}
            )

        logger.info(
            f"{self.name}: bulk operation {operation.id} completed "
            f"with {operation.object_count or 0} objects"
        )
        return operation

    # ------------------------------------------------------------------
    # Result processing
    # ------------------------------------------------------------------

    async def process_bulk_result(self, lines: AsyncIterable[str]) -> None:
        line_number = 0
        async for line in lines:
            line_number += 1
            if not line.strip():
                continue
            try:
                record = json.loads(line)
            except ValueError:
                self.stats.general_errors += 1
                logger.warning(f"{self.name}: skipping malformed line {line_number}")
                continue
            if not isinstance(record, dict):
                self.stats.general_errors += 1
                logger.warning(f"{self.name}: skipping non-object line {line_number}")
                continue
            await self.process_record(record)

    def parse_gid(self, value: Any) -> Optional[GID]:
        """Parse a record id, counting and skipping unusable ones."""
        try:
            return GID.parse(value)
        except UnexpectedResponseError:
            self.stats.general_errors += 1
            logger.warning(f"{self.name}: skipping record with invalid id {value!r}")
            return None

    def parent_gid(self, record: Dict[str, Any]) -> Optional[GID]:
        parent = record.get("__parentId")
        if parent is None:
            return None
        return self.parse_gid(parent)

    def unknown_parent(self, record: Dict[str, Any]) -> None:
        self.stats.warnings += 1
        logger.warning(
            f"{self.name}: record {record.get('id')} references unknown parent "
            f"{record.get('__parentId')}"
        )

    @staticmethod
    def encode(payload: Dict[str, Any]) -> str:
        return json.dumps(payload, separators=(",", ":"))

"""
Run-scoped staging tables on the staging database.
"""

import json
from dataclasses import dataclass
from typing import Any, Dict, List, Optional, Sequence

from sqlalchemy import MetaData, Table, func, insert, select
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncConnection, AsyncEngine

from core.exceptions import InfrastructureError, StagingConflictError, StagingWriteError
from models.staging import (
    COLUMN_DATA,
    COLUMN_ID,
    COLUMN_PARENT_ID,
    COLUMN_ROW_ID,
    build_staging_table,
    has_parent_column,
    has_row_id_column,
)
import logging

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class StagingRow:
    id: int
    parent_id: Optional[int]
    data: Optional[str]

    @property
    def is_empty(self) -> bool:
        return not self.data

    def decode(self) -> Optional[Dict[str, Any]]:
        """Decoded payload, or None for an empty row."""
        if self.is_empty:
            return None
        try:
            return json.loads(self.data)
        except ValueError as e:
            raise InfrastructureError(
                f"Corrupt staging payload for id {self.id}",
                context={"id": self.id},
                original_exception=e
            )


class StagingStore:
    """
    Staging area for one pull.

    Opens a single connection for the run and tracks every table it
    creates. Tables are named ``{prefix}_{name}`` and are dropped when the
    store is closed:

        async with StagingStore(engine, settings.table_prefix) as store:
            table = await store.create_table("products")
            ...
    """

    def __init__(self, engine: AsyncEngine, prefix: str, drop_on_close: bool = True):
        self.engine = engine
        self.prefix = prefix
        self.drop_on_close = drop_on_close
        self.metadata = MetaData()
        self._tables: Dict[str, Table] = {}
        self._conn: Optional[AsyncConnection] = None

    async def __aenter__(self) -> "StagingStore":
        await self.open()
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        try:
            if self.drop_on_close:
                await self._drop_tables(raise_errors=exc is None)
        finally:
            await self.close()

    async def open(self) -> None:
        if self._conn is None:
            self._conn = await self.engine.connect()

    async def close(self) -> None:
        if self._conn is not None:
            await self._conn.close()
            self._conn = None

    @property
    def connection(self) -> AsyncConnection:
        if self._conn is None:
            raise InfrastructureError("Staging store used before it was opened")
        return self._conn

    @property
    def tables(self) -> List[Table]:
        return list(self._tables.values())

    def table_name(self, name: str) -> str:
        return f"{self.prefix}_{name}"

    # ------------------------------------------------------------------
    # Writes
    # ------------------------------------------------------------------

    async def create_table(
        self,
        name: str,
        with_parent: bool = False,
        unique_ids: bool = True,
    ) -> Table:
        full_name = self.table_name(name)
        if full_name in self._tables:
            raise StagingWriteError(
                f"Staging table {full_name} was already created for this run",
                context={"table": full_name}
            )

        table = build_staging_table(self.metadata, full_name, with_parent, unique_ids)
        try:
            await self.connection.run_sync(table.create)
            await self.connection.commit()
        except SQLAlchemyError as e:
            await self.connection.rollback()
            self.metadata.remove(table)
            raise StagingWriteError(
                f"Could not create staging table {full_name}",
                context={"table": full_name},
                original_exception=e
            )

        self._tables[full_name] = table
        logger.info(f"Created staging table {full_name}")
        return table

    async def batch_insert(self, table: Table, rows: Sequence[Dict[str, Any]]) -> int:
        """Insert rows with one multi-row INSERT. Returns the row count."""
        if not rows:
            return 0

        stmt = insert(table).values(list(rows))
        try:
            await self.connection.execute(stmt)
            await self.connection.commit()
        except IntegrityError as e:
            await self.connection.rollback()
            raise StagingConflictError(
                f"Staging table {table.name} rejected a duplicate key",
                context={"table": table.name, "row_count": len(rows)},
                original_exception=e
            )
        except SQLAlchemyError as e:
            await self.connection.rollback()
            logger.error(f"Batch insert into {table.name} failed: {str(e)}")
            raise StagingWriteError(
                f"Batch insert into {table.name} failed",
                context={"table": table.name, "row_count": len(rows)},
                original_exception=e
            )

        logger.debug(f"Inserted {len(rows)} rows into {table.name}")
        return len(rows)

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    async def query_by_id(self, table: Table, entity_id: int) -> List[StagingRow]:
        stmt = (
            select(table)
            .where(table.c[COLUMN_ID] == entity_id)
            .order_by(*self._order_columns(table))
        )
        return await self._fetch(stmt)

    async def query_by_parent_id(self, table: Table, parent_id: int) -> List[StagingRow]:
        if not has_parent_column(table):
            raise InfrastructureError(
                f"Staging table {table.name} has no parent column",
                context={"table": table.name}
            )
        stmt = (
            select(table)
            .where(table.c[COLUMN_PARENT_ID] == parent_id)
            .order_by(*self._order_columns(table))
        )
        return await self._fetch(stmt)

    async def query_next(self, table: Table, after_id: int) -> Optional[StagingRow]:
        """First row with an id strictly greater than ``after_id``."""
        stmt = (
            select(table)
            .where(table.c[COLUMN_ID] > after_id)
            .order_by(*self._order_columns(table))
            .limit(1)
        )
        rows = await self._fetch(stmt)
        return rows[0] if rows else None

    async def query_next_group(self, table: Table, after_id: int) -> List[StagingRow]:
        """Every row for the smallest id greater than ``after_id``."""
        next_id = (
            select(func.min(table.c[COLUMN_ID]))
            .where(table.c[COLUMN_ID] > after_id)
            .scalar_subquery()
        )
        stmt = (
            select(table)
            .where(table.c[COLUMN_ID] == next_id)
            .order_by(*self._order_columns(table))
        )
        return await self._fetch(stmt)

    async def count(self, table: Table) -> int:
        result = await self._execute(select(func.count()).select_from(table))
        return int(result.scalar_one())

    # ------------------------------------------------------------------
    # Teardown
    # ------------------------------------------------------------------

    async def teardown(self) -> None:
        await self._drop_tables(raise_errors=True)

    async def _drop_tables(self, raise_errors: bool) -> None:
        failures = []
        for name, table in list(self._tables.items()):
            try:
                await self.connection.run_sync(table.drop, checkfirst=True)
                await self.connection.commit()
                del self._tables[name]
                logger.debug(f"Dropped staging table {name}")
            except SQLAlchemyError as e:
                await self.connection.rollback()
                logger.error(f"Could not drop staging table {name}: {str(e)}")
                failures.append((name, e))

        if failures and raise_errors:
            name, error = failures[0]
            raise StagingWriteError(
                f"Could not drop staging table {name}",
                context={"tables": [failed for failed, _ in failures]},
                original_exception=error
            )

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    @staticmethod
    def _order_columns(table: Table):
        columns = [table.c[COLUMN_ID]]
        if has_row_id_column(table):
            columns.append(table.c[COLUMN_ROW_ID])
        return columns

    async def _execute(self, stmt):
        try:
            return await self.connection.execute(stmt)
        except SQLAlchemyError as e:
            raise InfrastructureError(
                "Staging query failed",
                context={"statement": str(stmt)[:200]},
                original_exception=e
            )

    async def _fetch(self, stmt) -> List[StagingRow]:
        result = await self._execute(stmt)
        rows = []
        for row in result.mappings():
            rows.append(
                StagingRow(
                    id=int(row[COLUMN_ID]),
                    parent_id=row.get(COLUMN_PARENT_ID),
                    data=row[COLUMN_DATA],
                )
            )
        return rows

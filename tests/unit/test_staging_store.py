"""
Unit tests for the staging store on SQLite
"""

import json

import pytest
from sqlalchemy import inspect

from core.exceptions import StagingConflictError, StagingWriteError
from ingestion.loaders.staging_store import StagingRow, StagingStore


async def table_names(engine):
    async with engine.connect() as conn:
        return await conn.run_sync(lambda sync_conn: inspect(sync_conn).get_table_names())


class TestStagingStore:
    """Test staging table lifecycle and lookups"""

    @pytest.mark.asyncio
    async def test_create_and_query_next(self, staging_store):
        table = await staging_store.create_table("products")
        await staging_store.batch_insert(table, [
            {"id": 30, "data": json.dumps({"title": "C"})},
            {"id": 10, "data": json.dumps({"title": "A"})},
            {"id": 20, "data": None},
        ])

        first = await staging_store.query_next(table, 0)
        assert first.id == 10
        assert first.decode() == {"title": "A"}

        second = await staging_store.query_next(table, 10)
        assert second.id == 20
        assert second.is_empty

        assert (await staging_store.query_next(table, 30)) is None

    @pytest.mark.asyncio
    async def test_table_names_use_prefix(self, staging_store):
        table = await staging_store.create_table("products")
        assert table.name == "stg_test_products"

    @pytest.mark.asyncio
    async def test_query_by_parent_id_orders_by_id(self, staging_store):
        table = await staging_store.create_table("variants", with_parent=True)
        await staging_store.batch_insert(table, [
            {"id": 102, "parent_id": 1, "data": "{}"},
            {"id": 101, "parent_id": 1, "data": "{}"},
            {"id": 201, "parent_id": 2, "data": "{}"},
        ])

        rows = await staging_store.query_by_parent_id(table, 1)
        assert [row.id for row in rows] == [101, 102]
        assert all(row.parent_id == 1 for row in rows)

    @pytest.mark.asyncio
    async def test_non_unique_table_groups(self, staging_store):
        table = await staging_store.create_table("meta", unique_ids=False)
        await staging_store.batch_insert(table, [
            {"id": 5, "data": None},
            {"id": 5, "data": json.dumps({"key": "a"})},
            {"id": 5, "data": json.dumps({"key": "b"})},
            {"id": 8, "data": None},
        ])

        group = await staging_store.query_next_group(table, 0)
        assert [row.id for row in group] == [5, 5, 5]
        assert [row.decode() for row in group if not row.is_empty] == [{"key": "a"}, {"key": "b"}]

        assert [row.id for row in await staging_store.query_next_group(table, 5)] == [8]
        assert await staging_store.query_next_group(table, 8) == []

    @pytest.mark.asyncio
    async def test_query_by_id(self, staging_store):
        table = await staging_store.create_table("products")
        await staging_store.batch_insert(table, [{"id": 7, "data": "{\"a\": 1}"}])

        assert [row.decode() for row in await staging_store.query_by_id(table, 7)] == [{"a": 1}]
        assert await staging_store.query_by_id(table, 8) == []

    @pytest.mark.asyncio
    async def test_duplicate_id_is_conflict(self, staging_store):
        table = await staging_store.create_table("products")
        await staging_store.batch_insert(table, [{"id": 1, "data": "{}"}])

        with pytest.raises(StagingConflictError):
            await staging_store.batch_insert(table, [{"id": 1, "data": "{}"}])

        assert await staging_store.count(table) == 1

    @pytest.mark.asyncio
    async def test_table_is_never_reused(self, staging_store):
        await staging_store.create_table("products")
        with pytest.raises(StagingWriteError):
            await staging_store.create_table("products")

    @pytest.mark.asyncio
    async def test_tables_dropped_on_exit(self, staging_engine):
        async with StagingStore(staging_engine, "stg_run") as store:
            await store.create_table("products")
            await store.create_table("variants", with_parent=True)
            assert set(await table_names(staging_engine)) == {"stg_run_products", "stg_run_variants"}

        assert await table_names(staging_engine) == []

    @pytest.mark.asyncio
    async def test_separate_runs_are_isolated(self, staging_engine):
        async with StagingStore(staging_engine, "stg_one") as one, StagingStore(staging_engine, "stg_two") as two:
            first = await one.create_table("products")
            second = await two.create_table("products")
            await one.batch_insert(first, [{"id": 1, "data": "{}"}])

            assert await two.query_next(second, 0) is None


class TestStagingRow:
    """Test staging row payload handling"""

    def test_empty_string_is_empty(self):
        assert StagingRow(1, None, "").is_empty
        assert StagingRow(1, None, "").decode() is None

    def test_decode_payload(self):
        assert StagingRow(1, None, "{\"x\": 2}").decode() == {"x": 2}

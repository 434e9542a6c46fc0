"""
Integration tests for the complete pull: bulk pulls -> staging -> reassembly -> CSV
"""

import json
from typing import List, Optional

import pandas as pd
import pytest
from sqlalchemy import inspect

from core.exceptions import ApiError, build_error_envelope
from ingestion.base import CatalogModule
from ingestion.loaders.staging_store import StagingRow, StagingStore
from ingestion.modules.staging_helper import StagingHelper
from ingestion.runner import ALWAYS_INCLUDED_FIELDS, PullRunManager, execute_pull
from models.catalog import Product, ProductVariant
from models.pull_stats import PullStats

PRODUCT_RECORDS = [
    {"id": "gid://shopify/Product/10", "title": "Shirt", "handle": "shirt"},
    {"id": "gid://shopify/ProductVariant/101", "__parentId": "gid://shopify/Product/10", "title": "Small", "price": "10.00"},
    {"id": "gid://shopify/Product/20", "title": "Hat", "handle": "hat"},
    {"id": "gid://shopify/ProductVariant/201", "__parentId": "gid://shopify/Product/20", "title": "One size", "price": "5.00"},
    {"id": "gid://shopify/Product/30", "title": "Gift card", "handle": "gift-card"},
]

COLLECTION_RECORDS = [
    {"id": "gid://shopify/Collection/1", "handle": "all", "title": "All", "ruleSet": None},
    {"id": "gid://shopify/Product/10", "__parentId": "gid://shopify/Collection/1"},
    {"id": "gid://shopify/Product/20", "__parentId": "gid://shopify/Collection/1"},
    {"id": "gid://shopify/Product/30", "__parentId": "gid://shopify/Collection/1"},
]


class FixedDataModule(CatalogModule):
    """Module that stages a fixed set of product payloads"""

    MODULE_NAME = "fixed"
    PAYLOADS = {}

    def __init__(self, pull_settings, transport, puller_config=None):
        super().__init__(pull_settings, transport, puller_config)
        self.staging = StagingHelper(self.name(), with_variants=False)

    def build_output_fields(self) -> List[str]:
        return ["color", "size"]

    async def run(self, store: StagingStore, stats: PullStats) -> None:
        await self.staging.create_tables(store)
        await store.batch_insert(self.staging.product_table, [
            {"id": pid, "data": json.dumps(data)} for pid, data in self.PAYLOADS.items()
        ])
        stats.products += len(self.PAYLOADS)

    async def next_product_rows(self, store: StagingStore, after_id: int) -> List[StagingRow]:
        return await self.staging.next_product_rows(store, after_id)

    async def build_product(self, store: StagingStore, rows: List[StagingRow]) -> Optional[Product]:
        return self.staging.build_product(rows, self.settings)

    async def enrich_product(self, store: StagingStore, product: Product) -> None:
        self.staging.merge(product, await self.staging.product_payloads(store, product.id))

    async def enrich_variant(self, store: StagingStore, variant: ProductVariant) -> None:
        return None


class ModuleX(FixedDataModule):
    MODULE_NAME = "x"
    PAYLOADS = {1: {"color": "red", "size": "M"}}


class ModuleY(FixedDataModule):
    MODULE_NAME = "y"
    PAYLOADS = {1: {"color": "blue"}}


def route_catalog(transport):
    transport.route_records("products", PRODUCT_RECORDS)
    transport.route_records("collections", COLLECTION_RECORDS)
    return transport


async def staging_table_names(engine):
    async with engine.connect() as conn:
        return await conn.run_sync(lambda sync_conn: inspect(sync_conn).get_table_names())


@pytest.mark.asyncio
async def test_products_with_collections_enrichment(staging_store, settings_factory, fake_transport, fast_config):
    """
    Integration test: products drive the output, collections enrich every product
    """
    pull_settings = settings_factory(data_types="products,collections")
    transport = route_catalog(fake_transport)
    manager = PullRunManager(pull_settings, transport, puller_config=fast_config)

    assert manager.primary_module().name() == "products"
    assert [m.name() for m in manager.enrichers()] == ["collections"]

    stats = await manager.run(staging_store)
    products = [product async for product in manager.products(staging_store)]

    assert [p.id for p in products] == [10, 20, 30]
    assert [v.id for v in products[0].variants] == [101]
    assert [v.id for v in products[1].variants] == [201]
    assert products[2].variants == []
    for product in products:
        assert product.get("custom_collections_handle") == "all"
        assert product.get("smart_collections_handle") == ""

    assert stats["products"].products == 3
    assert stats["collections"].products == 3
    assert transport.submit_calls == 2


@pytest.mark.asyncio
async def test_later_module_wins_on_shared_field(staging_store, settings_factory, fake_transport):
    """
    Integration test: an enricher overwrites a field set by the primary module
    """
    pull_settings = settings_factory(data_types="products,meta")
    manager = PullRunManager(
        pull_settings,
        fake_transport,
        module_map={"products": ModuleX, "meta": ModuleY},
    )

    await manager.run(staging_store)
    rows = [row async for row in manager.retrieve_output(staging_store)]

    assert manager.output_fields() == ALWAYS_INCLUDED_FIELDS + ["color", "size"]
    assert rows == [{"item_group_id": 1, "color": "blue", "size": "M"}]


class ModuleZ(FixedDataModule):
    MODULE_NAME = "z"
    PAYLOADS = {1: {"color": "green", "material": "wool"}}

    def build_output_fields(self) -> List[str]:
        return ["material", "color"]


@pytest.mark.asyncio
async def test_enrichers_follow_data_type_order(staging_store, settings_factory, fake_transport):
    """
    Integration test: the primary comes from precedence, enrichers and columns from the listed order
    """
    pull_settings = settings_factory(data_types="meta,collections,products")
    manager = PullRunManager(
        pull_settings,
        fake_transport,
        module_map={"products": ModuleX, "meta": ModuleY, "collections": ModuleZ},
    )

    await manager.run(staging_store)
    rows = [row async for row in manager.retrieve_output(staging_store)]

    assert manager.primary_module().name() == "x"
    assert [m.name() for m in manager.enrichers()] == ["y", "z"]
    assert manager.output_fields() == ALWAYS_INCLUDED_FIELDS + ["color", "size", "material"]
    assert rows == [{"item_group_id": 1, "color": "green", "size": "M", "material": "wool"}]


@pytest.mark.asyncio
async def test_resume_after_watermark(staging_store, settings_factory, fake_transport, fast_config):
    """
    Integration test: a second cursor resumes after a stored watermark
    """
    pull_settings = settings_factory(data_types="products,collections")
    manager = PullRunManager(
        pull_settings,
        route_catalog(fake_transport),
        puller_config=fast_config,
    )
    await manager.run(staging_store)

    cursor = manager.products(staging_store)
    first = await cursor.get_next()
    resumed = [p async for p in manager.products(staging_store, start_after=cursor.last_retrieved_id)]

    assert first.id == 10
    assert [p.id for p in resumed] == [20, 30]
    assert resumed[-1].get("custom_collections_title") == "All"


@pytest.mark.asyncio
async def test_execute_pull_writes_csv(staging_engine, settings_factory, fake_transport, fast_config, tmp_path):
    """
    Integration test: full pull into a CSV file, staging dropped afterwards
    """
    pull_settings = settings_factory(data_types="products,collections", table_prefix="stg_csv")
    output_path = tmp_path / "catalog.csv"

    result = await execute_pull(
        pull_settings,
        route_catalog(fake_transport),
        staging_engine,
        str(output_path),
        puller_config=fast_config,
    )

    frame = pd.read_csv(output_path, dtype=str, keep_default_na=False)
    assert result["rows_written"] == 3
    assert list(frame.columns) == result["fields"]
    assert list(frame.columns[:2]) == ALWAYS_INCLUDED_FIELDS
    assert list(frame["item_group_id"]) == ["10", "20", "30"]
    assert list(frame["id"]) == ["101", "201", ""]
    assert list(frame["parent_title"]) == ["Shirt", "Hat", "Gift card"]
    assert list(frame["custom_collections_handle"]) == ["all", "all", "all"]
    assert result["stats"]["products"]["variants"] == 2

    assert await staging_table_names(staging_engine) == []


@pytest.mark.asyncio
async def test_failed_module_aborts_pull(staging_engine, settings_factory, fake_transport, operation_factory, fast_config, tmp_path):
    """
    Integration test: a dead bulk operation aborts the run and staging is still dropped
    """
    pull_settings = settings_factory(data_types="products,collections", table_prefix="stg_fail")
    transport = route_catalog(fake_transport)
    transport.submit_responses = [operation_factory("CREATED"), operation_factory("FAILED")]

    with pytest.raises(ApiError) as exc_info:
        await execute_pull(pull_settings, transport, staging_engine, str(tmp_path / "out.csv"), fast_config)

    assert build_error_envelope(exc_info.value)["error_code"] == "api_response_error"
    assert await staging_table_names(staging_engine) == []
    assert not (tmp_path / "out.csv").exists()

"""
Collections module: custom and smart collection membership per product.
"""

import json
from typing import Any, Dict, List, Optional

from ingestion.base import CatalogModule
from ingestion.extractors.bulk_base import BulkPullerConfig
from ingestion.extractors.bulk_collections import CUSTOM, SMART, BulkCollections
from ingestion.extractors.transport import BulkTransport
from ingestion.loaders.staging_store import StagingRow, StagingStore
from ingestion.modules.staging_helper import StagingHelper
from models.catalog import Product, ProductVariant
from models.pull_stats import PullStats
from schemas.settings import PullSettings
import logging

logger = logging.getLogger(__name__)

LIST_SEPARATOR = "|"


class CollectionsModule(CatalogModule):
    MODULE_NAME = "collections"

    def __init__(
        self,
        pull_settings: PullSettings,
        transport: BulkTransport,
        puller_config: Optional[BulkPullerConfig] = None
    ):
        super().__init__(pull_settings, transport, puller_config)
        self.staging = StagingHelper(self.name(), with_variants=False)

    def build_output_fields(self) -> List[str]:
        fields = []
        for kind in (CUSTOM, SMART):
            fields += [f"{kind}_collections_handle", f"{kind}_collections_title", f"{kind}_collections_id"]
        if self.settings.include_collections_meta:
            fields += [f"{CUSTOM}_collections_meta", f"{SMART}_collections_meta"]
        return fields

    async def run(self, store: StagingStore, stats: PullStats) -> None:
        await self.staging.create_tables(store)

        product_inserter = self.staging.inserter(store, self.staging.product_table)
        async with product_inserter:
            puller = BulkCollections(
                self.settings,
                self.transport,
                stats,
                product_inserter,
                config=self.puller_config,
            )
            await puller.do_bulk_pull()

    @staticmethod
    def apply(product: Product, payload: Dict[str, Any]) -> None:
        for field, values in payload.items():
            if field.endswith("_meta"):
                product.add_datum(field, json.dumps(values) if values else "")
            else:
                product.add_datum(field, LIST_SEPARATOR.join(str(value) for value in values))

    async def next_product_rows(self, store: StagingStore, after_id: int) -> List[StagingRow]:
        return await self.staging.next_product_rows(store, after_id)

    async def build_product(self, store: StagingStore, rows: List[StagingRow]) -> Optional[Product]:
        product = Product(rows[0].id, None, self.settings)
        for payload in self.staging.decode_rows(rows):
            self.apply(product, payload)
        return product

    async def enrich_product(self, store: StagingStore, product: Product) -> None:
        for payload in await self.staging.product_payloads(store, product.id) or []:
            self.apply(product, payload)

    async def enrich_variant(self, store: StagingStore, variant: ProductVariant) -> None:
        # Collections belong to products only
        return None

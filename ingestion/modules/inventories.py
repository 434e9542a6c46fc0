"""
Inventories module: inventory items and levels per variant.
"""

import json
from typing import Any, Dict, List, Optional

from ingestion.base import CatalogModule
from ingestion.extractors.bulk_base import BulkPullerConfig
from ingestion.extractors.bulk_inventories import BulkInventories
from ingestion.extractors.transport import BulkTransport
from ingestion.loaders.staging_store import StagingRow, StagingStore
from ingestion.modules.staging_helper import StagingHelper
from models.catalog import Product, ProductVariant
from models.gid import normalize_id
from models.pull_stats import PullStats
from schemas.settings import PullSettings
import logging

logger = logging.getLogger(__name__)


class InventoriesModule(CatalogModule):
    MODULE_NAME = "inventory_item"

    def __init__(
        self,
        pull_settings: PullSettings,
        transport: BulkTransport,
        puller_config: Optional[BulkPullerConfig] = None
    ):
        super().__init__(pull_settings, transport, puller_config)
        self.staging = StagingHelper(self.name())

    def build_output_fields(self) -> List[str]:
        fields = ["inventory_item"]
        if self.settings.include_inventory_level:
            fields.append("inventory_level")
        return fields

    async def run(self, store: StagingStore, stats: PullStats) -> None:
        await self.staging.create_tables(store)

        product_inserter = self.staging.inserter(store, self.staging.product_table)
        variant_inserter = self.staging.inserter(store, self.staging.variant_table)
        async with product_inserter, variant_inserter:
            puller = BulkInventories(
                self.settings,
                self.transport,
                stats,
                product_inserter,
                variant_inserter,
                config=self.puller_config,
            )
            await puller.do_bulk_pull()

    @staticmethod
    def format_item(item: Dict[str, Any]) -> Dict[str, Any]:
        unit_cost = item.get("unitCost") or {}
        return {
            "id": normalize_id(item["id"]) if item.get("id") else None,
            "sku": item.get("sku"),
            "tracked": item.get("tracked"),
            "unit_cost": unit_cost.get("amount"),
            "currency_code": unit_cost.get("currencyCode"),
        }

    def apply(self, variant: ProductVariant, payload: Dict[str, Any]) -> None:
        variant.add_datum("inventory_item", json.dumps(self.format_item(payload.get("inventory_item") or {})))
        if self.settings.include_inventory_level:
            variant.add_datum("inventory_level", json.dumps(payload.get("inventory_levels") or []))

    async def next_product_rows(self, store: StagingStore, after_id: int) -> List[StagingRow]:
        return await self.staging.next_product_rows(store, after_id)

    async def build_product(self, store: StagingStore, rows: List[StagingRow]) -> Optional[Product]:
        product = Product(rows[0].id, None, self.settings)
        for payload in self.staging.decode_rows(rows):
            product.add_data(payload)
        return product

    async def load_variants(self, store: StagingStore, product: Product) -> None:
        for variant_id, payloads in (await self.staging.variant_groups(store, product.id)).items():
            if not payloads:
                continue
            variant = ProductVariant(product, variant_id)
            for payload in payloads:
                self.apply(variant, payload)
            product.add_variant(variant)

    async def enrich_product(self, store: StagingStore, product: Product) -> None:
        # Inventory data only exists per variant
        return None

    async def enrich_variant(self, store: StagingStore, variant: ProductVariant) -> None:
        for payload in await self.staging.variant_payloads(store, variant.id) or []:
            self.apply(variant, payload)

"""
Metafields module: product and variant metafields.
"""

import json
from typing import Any, Dict, List, Optional

from ingestion.base import CatalogModule
from ingestion.extractors.bulk_base import BulkPullerConfig
from ingestion.extractors.bulk_metafields import (
    PRODUCT_META_KEY,
    VARIANT_META_KEY,
    BulkMetafields,
    metafield_identifier,
)
from ingestion.extractors.transport import BulkTransport
from ingestion.loaders.staging_store import StagingRow, StagingStore
from ingestion.modules.staging_helper import StagingHelper
from models.catalog import FieldContainer, Product, ProductVariant
from models.pull_stats import PullStats
from schemas.settings import PullSettings
import logging

logger = logging.getLogger(__name__)


class MetafieldsModule(CatalogModule):
    """
    Metafields are written either as one JSON list per owner
    (``product_meta`` / ``variant_meta``) or, with split columns, one
    column per metafield found in the pull.
    """

    MODULE_NAME = "meta"

    def __init__(
        self,
        pull_settings: PullSettings,
        transport: BulkTransport,
        puller_config: Optional[BulkPullerConfig] = None
    ):
        super().__init__(pull_settings, transport, puller_config)
        self.staging = StagingHelper(self.name(), unique_ids=False)
        self.metafield_names: List[str] = []

    def build_output_fields(self) -> List[str]:
        if self.settings.metafields_split_columns:
            return list(self.metafield_names)
        return [PRODUCT_META_KEY, VARIANT_META_KEY]

    async def run(self, store: StagingStore, stats: PullStats) -> None:
        await self.staging.create_tables(store)

        product_inserter = self.staging.inserter(store, self.staging.product_table)
        variant_inserter = self.staging.inserter(store, self.staging.variant_table)
        async with product_inserter, variant_inserter:
            puller = BulkMetafields(
                self.settings,
                self.transport,
                stats,
                product_inserter,
                variant_inserter,
                config=self.puller_config,
            )
            await puller.do_bulk_pull()

        self.metafield_names = puller.metafield_names
        logger.info(f"Metafields pulled for {stats.products} products, {stats.variants} variants")

    def apply(self, entity: FieldContainer, owner_key: str, metafields: List[Dict[str, Any]]) -> None:
        if self.settings.metafields_split_columns:
            for metafield in metafields:
                name = metafield_identifier(owner_key, metafield, self.settings.use_metafield_namespaces)
                entity.add_datum(name, metafield.get("value"))
            return
        entity.add_datum(owner_key, json.dumps(metafields) if metafields else "")

    async def next_product_rows(self, store: StagingStore, after_id: int) -> List[StagingRow]:
        return await self.staging.next_product_rows(store, after_id)

    async def build_product(self, store: StagingStore, rows: List[StagingRow]) -> Optional[Product]:
        product = Product(rows[0].id, None, self.settings)
        self.apply(product, PRODUCT_META_KEY, self.staging.decode_rows(rows))
        return product

    async def load_variants(self, store: StagingStore, product: Product) -> None:
        for variant_id, metafields in (await self.staging.variant_groups(store, product.id)).items():
            variant = ProductVariant(product, variant_id)
            self.apply(variant, VARIANT_META_KEY, metafields)
            product.add_variant(variant)

    async def enrich_product(self, store: StagingStore, product: Product) -> None:
        metafields = await self.staging.product_payloads(store, product.id)
        if metafields is not None:
            self.apply(product, PRODUCT_META_KEY, metafields)

    async def enrich_variant(self, store: StagingStore, variant: ProductVariant) -> None:
        metafields = await self.staging.variant_payloads(store, variant.id)
        if metafields is not None:
            self.apply(variant, VARIANT_META_KEY, metafields)

"""
Products module: product and variant core data.
"""

from typing import List, Optional

from core.exceptions import ApiError
from ingestion.base import CatalogModule
from ingestion.extractors.bulk_base import BulkPullerConfig
from ingestion.extractors.bulk_products import BulkProducts
from ingestion.extractors.transport import BulkTransport, get_access_scopes
from ingestion.loaders.staging_store import StagingRow, StagingStore
from ingestion.modules.staging_helper import StagingHelper
from models.catalog import Product, ProductVariant
from models.pull_stats import PullStats
from schemas.settings import PullSettings
import logging

logger = logging.getLogger(__name__)

PUBLICATIONS_SCOPE = "read_publications"


class ProductsModule(CatalogModule):
    MODULE_NAME = "products"

    def __init__(
        self,
        pull_settings: PullSettings,
        transport: BulkTransport,
        puller_config: Optional[BulkPullerConfig] = None
    ):
        super().__init__(pull_settings, transport, puller_config)
        self.staging = StagingHelper(self.name())
        self.variant_names: List[str] = []

    def build_output_fields(self) -> List[str]:
        requested = self.settings.product_filters.fields
        if requested:
            fields = list(requested)
        else:
            fields = Product.DEFAULT_OUTPUT_FIELDS + ProductVariant.DEFAULT_OUTPUT_FIELDS

        product_probe = Product(0)
        variant_probe = ProductVariant(product_probe, 0)
        fields += [product_probe.translate_field_name(f) for f in self.settings.extra_parent_fields]
        fields += [variant_probe.translate_field_name(f) for f in self.settings.extra_variant_fields]

        if self.settings.use_gmc_transition_id:
            fields.append("gmc_transition_id")
        if self.settings.tax_rates:
            fields.append("tax_rates")
        if self.settings.variant_names_split_columns:
            fields = [f for f in fields if f != "variant_names"] + self.variant_names
        return fields

    async def _include_publications(self) -> bool:
        try:
            scopes = await get_access_scopes(self.transport)
        except ApiError as e:
            logger.warning(f"Could not read access scopes, pulling without publications: {e}")
            return False
        return PUBLICATIONS_SCOPE in scopes

    async def run(self, store: StagingStore, stats: PullStats) -> None:
        await self.staging.create_tables(store)
        include_publications = await self._include_publications()

        product_inserter = self.staging.inserter(store, self.staging.product_table)
        variant_inserter = self.staging.inserter(store, self.staging.variant_table)
        async with product_inserter, variant_inserter:
            puller = BulkProducts(
                self.settings,
                self.transport,
                stats,
                product_inserter,
                variant_inserter,
                include_publications=include_publications,
                config=self.puller_config,
            )
            await puller.do_bulk_pull()

        self.variant_names = puller.variant_names
        logger.info(f"Products pulled: {stats.products} products, {stats.variants} variants")

    async def next_product_rows(self, store: StagingStore, after_id: int) -> List[StagingRow]:
        return await self.staging.next_product_rows(store, after_id)

    async def build_product(self, store: StagingStore, rows: List[StagingRow]) -> Optional[Product]:
        return self.staging.build_product(rows, self.settings)

    async def load_variants(self, store: StagingStore, product: Product) -> None:
        await self.staging.load_variants(store, product)

    async def enrich_product(self, store: StagingStore, product: Product) -> None:
        self.staging.merge(product, await self.staging.product_payloads(store, product.id))

    async def enrich_variant(self, store: StagingStore, variant: ProductVariant) -> None:
        self.staging.merge(variant, await self.staging.variant_payloads(store, variant.id))

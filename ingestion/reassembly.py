"""
Watermark-driven reader that rebuilds Products from staging.
"""

from typing import List, Optional, Sequence, TYPE_CHECKING

from ingestion.loaders.staging_store import StagingStore
from models.catalog import Product
import logging

if TYPE_CHECKING:
    from ingestion.base import CatalogModule

logger = logging.getLogger(__name__)


class ReassemblyCursor:
    """
    Single-pass cursor over the primary module's product table.

    Each step reads the first product id strictly greater than
    ``last_retrieved_id`` and moves the watermark to it. Ids whose rows
    carry no payload move the watermark but produce nothing. The cursor
    ends when no later id exists or an id is not positive.

    To read again, create a new cursor with ``start_after`` set to a
    stored watermark:

        cursor = module.products(store, enrichers)
        while await cursor.has_next():
            product = await cursor.get_next()
    """

    def __init__(
        self,
        module: "CatalogModule",
        store: StagingStore,
        enrichers: Sequence["CatalogModule"] = (),
        start_after: int = 0
    ):
        self.module = module
        self.store = store
        self.enrichers: List["CatalogModule"] = list(enrichers)
        self.last_retrieved_id = start_after
        self.emitted = 0
        self.skipped = 0
        self._pending: Optional[Product] = None
        self._exhausted = False

    def __aiter__(self) -> "ReassemblyCursor":
        return self

    async def __anext__(self) -> Product:
        if not await self.has_next():
            raise StopAsyncIteration
        return await self.get_next()

    async def has_next(self) -> bool:
        if self._pending is None and not self._exhausted:
            self._pending = await self._advance()
        return self._pending is not None

    async def get_next(self) -> Product:
        if not await self.has_next():
            raise StopAsyncIteration
        product = self._pending
        self._pending = None
        self.emitted += 1
        return product

    async def _advance(self) -> Optional[Product]:
        while True:
            rows = await self.module.next_product_rows(self.store, self.last_retrieved_id)
            if not rows:
                self._finish()
                return None

            entity_id = rows[0].id
            if entity_id <= 0:
                logger.warning(f"{self.module.name()}: stopping at non-positive id {entity_id}")
                self._finish()
                return None
            self.last_retrieved_id = entity_id

            if all(row.is_empty for row in rows):
                self.skipped += 1
                continue

            product = await self.module.build_product(self.store, rows)
            if product is None:
                self.skipped += 1
                continue

            await self.module.load_variants(self.store, product)
            await self._enrich(product)
            return product

    async def _enrich(self, product: Product) -> None:
        for enricher in self.enrichers:
            await enricher.enrich_product(self.store, product)
        for variant in product.variants:
            for enricher in self.enrichers:
                await enricher.enrich_variant(self.store, variant)

    def _finish(self) -> None:
        self._exhausted = True
        logger.info(
            f"{self.module.name()}: reassembly finished at id {self.last_retrieved_id} "
            f"({self.emitted} emitted, {self.skipped} skipped)"
        )

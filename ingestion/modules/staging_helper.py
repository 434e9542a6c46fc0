"""
Staging-table helper composed by every catalog module.
"""

from typing import Any, Dict, List, Optional

from sqlalchemy import Table

from core.exceptions import InfrastructureError
from ingestion.loaders.batch_inserter import BatchedInserter
from ingestion.loaders.staging_store import StagingRow, StagingStore
from models.catalog import FieldContainer, Product, ProductVariant
from schemas.settings import PullSettings
import logging

logger = logging.getLogger(__name__)


class StagingHelper:
    """
    Owns a module's product (and optionally variant) staging tables and the
    common lookups modules run against them.
    """

    def __init__(self, module_name: str, with_variants: bool = True, unique_ids: bool = True):
        self.module_name = module_name
        self.with_variants = with_variants
        self.unique_ids = unique_ids
        self._product_table: Optional[Table] = None
        self._variant_table: Optional[Table] = None

    async def create_tables(self, store: StagingStore) -> None:
        self._product_table = await store.create_table(
            f"{self.module_name}_products",
            unique_ids=self.unique_ids,
        )
        if self.with_variants:
            self._variant_table = await store.create_table(
                f"{self.module_name}_variants",
                with_parent=True,
                unique_ids=self.unique_ids,
            )

    @property
    def product_table(self) -> Table:
        if self._product_table is None:
            raise InfrastructureError(f"Tried to read {self.module_name} data before it was pulled")
        return self._product_table

    @property
    def variant_table(self) -> Table:
        if self._variant_table is None:
            raise InfrastructureError(f"Module {self.module_name} has no variant table")
        return self._variant_table

    @staticmethod
    def inserter(store: StagingStore, table: Table) -> BatchedInserter:
        return BatchedInserter(store, table)

    # ------------------------------------------------------------------
    # Lookups
    # ------------------------------------------------------------------

    async def next_product_rows(self, store: StagingStore, after_id: int) -> List[StagingRow]:
        if self.unique_ids:
            row = await store.query_next(self.product_table, after_id)
            return [row] if row is not None else []
        return await store.query_next_group(self.product_table, after_id)

    async def product_payloads(self, store: StagingStore, product_id: int) -> Optional[List[Dict[str, Any]]]:
        """Decoded payloads for a product; None when nothing is staged."""
        rows = await store.query_by_id(self.product_table, product_id)
        return self.decode_rows(rows) if rows else None

    async def variant_payloads(self, store: StagingStore, variant_id: int) -> Optional[List[Dict[str, Any]]]:
        if not self.with_variants:
            return None
        rows = await store.query_by_id(self.variant_table, variant_id)
        return self.decode_rows(rows) if rows else None

    async def variant_groups(self, store: StagingStore, product_id: int) -> Dict[int, List[Dict[str, Any]]]:
        """Decoded variant payloads for a product, grouped by variant id in id order."""
        groups: Dict[int, List[Dict[str, Any]]] = {}
        if not self.with_variants:
            return groups
        for row in await store.query_by_parent_id(self.variant_table, product_id):
            payloads = groups.setdefault(row.id, [])
            decoded = row.decode()
            if decoded is not None:
                payloads.append(decoded)
        return groups

    @staticmethod
    def decode_rows(rows: List[StagingRow]) -> List[Dict[str, Any]]:
        return [payload for payload in (row.decode() for row in rows) if payload is not None]

    # ------------------------------------------------------------------
    # Standard rebuild and merge
    # ------------------------------------------------------------------

    @staticmethod
    def build_product(rows: List[StagingRow], pull_settings: PullSettings) -> Product:
        """Product from its staged rows."""
        product = Product(rows[0].id, None, pull_settings)
        for payload in StagingHelper.decode_rows(rows):
            product.add_data(payload)
        return product

    async def load_variants(self, store: StagingStore, product: Product) -> None:
        """One variant per variant id with at least one non-empty row."""
        for variant_id, payloads in (await self.variant_groups(store, product.id)).items():
            if not payloads:
                continue
            variant = ProductVariant(product, variant_id)
            for payload in payloads:
                variant.add_data(payload)
            product.add_variant(variant)

    @staticmethod
    def merge(entity: FieldContainer, payloads: Optional[List[Dict[str, Any]]]) -> None:
        for payload in payloads or []:
            entity.add_data(payload)

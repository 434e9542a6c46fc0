"""
Bulk puller for variant inventory items and, optionally, inventory levels.
"""

from typing import Any, Dict, List, Optional, Set

from ingestion.extractors.bulk_base import BulkPuller, BulkPullerConfig
from ingestion.extractors.transport import BulkTransport
from ingestion.loaders.batch_inserter import BatchedInserter
from models.gid import normalize_id
from models.pull_stats import PullStats
from schemas.settings import PullSettings
import logging

logger = logging.getLogger(__name__)


class BulkInventories(BulkPuller):
    """
    Stage one row per variant with its inventory item, plus a bare row per
    product so the tables can drive the outer iteration.

    Inventory level lines name either the variant or its inventory item as
    their parent; both resolve to that variant wherever it appears in the
    result, so variant rows are written once the whole result has been read.
    """

    def __init__(
        self,
        pull_settings: PullSettings,
        transport: BulkTransport,
        stats: PullStats,
        product_inserter: BatchedInserter,
        variant_inserter: BatchedInserter,
        config: Optional[BulkPullerConfig] = None
    ):
        super().__init__(pull_settings, transport, stats, config)
        self.product_inserter = product_inserter
        self.variant_inserter = variant_inserter
        self._seen_products: Set[int] = set()
        self._variants: List[Dict[str, Any]] = []
        self._variant_refs: Dict[str, Dict[str, Any]] = {}
        self._orphan_levels: List[Dict[str, Any]] = []

    def get_query(self) -> str:
        levels = ""
        if self.settings.include_inventory_level:
            levels = """
                inventoryLevels {
                    edges {
                        node {
                            id
                            quantities(names: ["available"]) { name quantity }
                            location { id name }
                        }
                    }
                }"""
        return f"""
        productVariants{self.settings.product_filters.gql_arguments()} {{
            edges {{
                node {{
                    id
                    product {{ id }}
                    inventoryItem {{
                        id
                        sku
                        tracked
                        unitCost {{ amount currencyCode }}
                        {levels}
                    }}
                }}
            }}
        }}"""

    async def process_record(self, record: Dict[str, Any]) -> None:
        gid = self.parse_gid(record.get("id"))
        if gid is None:
            return

        if gid.is_variant:
            product_gid = self.parse_gid((record.get("product") or {}).get("id"))
            if product_gid is None:
                return

            if product_gid.id not in self._seen_products:
                self._seen_products.add(product_gid.id)
                await self.product_inserter.add({
                    "id": product_gid.id,
                    "data": self.encode({"id": product_gid.raw}),
                })
                self.stats.products += 1

            item = dict(record.get("inventoryItem") or {})
            item.pop("inventoryLevels", None)
            variant = {
                "id": gid.id,
                "parent_id": product_gid.id,
                "inventory_item": item,
                "inventory_levels": [],
            }
            self._variants.append(variant)
            self._variant_refs[gid.raw] = variant
            if item.get("id"):
                self._variant_refs[item["id"]] = variant
            return

        if gid.is_inventory_level:
            variant = self._variant_refs.get(record.get("__parentId"))
            if variant is None:
                # The owning variant may come later in the file
                self._orphan_levels.append(record)
                return
            variant["inventory_levels"].append(self.build_level(record))
            return

        self.stats.warnings += 1
        logger.warning(f"{self.name}: unhandled record type {gid.type}")

    @staticmethod
    def build_level(record: Dict[str, Any]) -> Dict[str, Any]:
        location = record.get("location") or {}
        available = None
        for quantity in record.get("quantities") or []:
            if quantity.get("name") == "available":
                available = quantity.get("quantity")
        return {
            "location_id": normalize_id(location["id"]) if location.get("id") else None,
            "location_name": location.get("name"),
            "available": available,
        }

    async def finish(self) -> None:
        for record in self._orphan_levels:
            variant = self._variant_refs.get(record.get("__parentId"))
            if variant is None:
                self.unknown_parent(record)
                continue
            variant["inventory_levels"].append(self.build_level(record))
        self._orphan_levels = []

        for variant in self._variants:
            payload = {"inventory_item": variant["inventory_item"]}
            if self.settings.include_inventory_level:
                payload["inventory_levels"] = variant["inventory_levels"]
            await self.variant_inserter.add({
                "id": variant["id"],
                "parent_id": variant["parent_id"],
                "data": self.encode(payload),
            })
            self.stats.variants += 1
        self._variants = []
        self._variant_refs = {}

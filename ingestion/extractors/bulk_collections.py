"""
Bulk puller for custom and smart collection membership.
"""

from typing import Any, Dict, List, Optional

from ingestion.extractors.bulk_base import BulkPuller, BulkPullerConfig
from ingestion.extractors.transport import BulkTransport
from ingestion.loaders.batch_inserter import BatchedInserter
from models.pull_stats import PullStats
from schemas.settings import PullSettings
import logging

logger = logging.getLogger(__name__)

CUSTOM = "custom"
SMART = "smart"


class BulkCollections(BulkPuller):
    """
    Stage one row per product listing the collections it belongs to.

    Collection lines arrive before their member products, but membership
    and metafield lines can come in any order, so rows are built once the
    whole result has been read.
    """

    def __init__(
        self,
        pull_settings: PullSettings,
        transport: BulkTransport,
        stats: PullStats,
        product_inserter: BatchedInserter,
        config: Optional[BulkPullerConfig] = None
    ):
        super().__init__(pull_settings, transport, stats, config)
        self.product_inserter = product_inserter
        self._collections: Dict[str, Dict[str, Any]] = {}
        self._memberships: Dict[int, List[str]] = {}

    def get_query(self) -> str:
        metafields = ""
        if self.settings.include_collections_meta:
            metafields = """
                metafields {
                    edges { node { id namespace key value type } }
                }"""
        return f"""
        collections {{
            edges {{
                node {{
                    id
                    handle
                    title
                    ruleSet {{ appliedDisjunctively }}
                    {metafields}
                    products {{
                        edges {{ node {{ id }} }}
                    }}
                }}
            }}
        }}"""

    async def process_record(self, record: Dict[str, Any]) -> None:
        gid = self.parse_gid(record.get("id"))
        if gid is None:
            return

        if gid.is_collection:
            self._collections[gid.raw] = {
                "kind": CUSTOM if record.get("ruleSet") is None else SMART,
                "id": gid.id,
                "handle": record.get("handle") or "",
                "title": record.get("title") or "",
                "meta": [],
            }
            return

        collection = self._collections.get(record.get("__parentId"))
        if collection is None:
            self.unknown_parent(record)
            return

        if gid.is_product:
            members = self._memberships.setdefault(gid.id, [])
            if record["__parentId"] not in members:
                members.append(record["__parentId"])
            return

        if gid.is_metafield:
            collection["meta"].append({k: v for k, v in record.items() if k != "__parentId"})
            return

        self.stats.warnings += 1
        logger.warning(f"{self.name}: unhandled record type {gid.type}")

    def build_product_data(self, collection_refs: List[str]) -> Dict[str, Any]:
        data: Dict[str, Any] = {}
        for kind in (CUSTOM, SMART):
            for key in ("handle", "title", "id"):
                data[f"{kind}_collections_{key}"] = []
            if self.settings.include_collections_meta:
                data[f"{kind}_collections_meta"] = []

        for ref in collection_refs:
            collection = self._collections[ref]
            kind = collection["kind"]
            for key in ("handle", "title", "id"):
                data[f"{kind}_collections_{key}"].append(collection[key])
            if self.settings.include_collections_meta and collection["meta"]:
                data[f"{kind}_collections_meta"].append({
                    "collection_id": collection["id"],
                    "metafields": collection["meta"],
                })
        return data

    async def finish(self) -> None:
        for product_id in sorted(self._memberships):
            data = self.build_product_data(self._memberships[product_id])
            await self.product_inserter.add({"id": product_id, "data": self.encode(data)})
            self.stats.products += 1
        logger.info(
            f"{self.name}: staged {len(self._memberships)} products "
            f"across {len(self._collections)} collections"
        )
        self._memberships = {}

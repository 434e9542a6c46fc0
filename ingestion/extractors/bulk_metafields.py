"""
Bulk puller for product and variant metafields.
"""

import re
from typing import Any, Dict, List, Optional

from ingestion.extractors.bulk_base import BulkPuller, BulkPullerConfig
from ingestion.extractors.transport import BulkTransport
from ingestion.loaders.batch_inserter import BatchedInserter
from models.pull_stats import PullStats
from schemas.settings import PullSettings
import logging

logger = logging.getLogger(__name__)

PRODUCT_META_KEY = "product_meta"
VARIANT_META_KEY = "variant_meta"

METAFIELD_FIELDS = "id namespace key value type description"


def clean_column_name(value: str) -> str:
    return re.sub(r"[^a-z0-9]+", "_", value.lower()).strip("_")


def metafield_identifier(owner_key: str, metafield: Dict[str, Any], use_namespace: bool) -> str:
    """Output column for one metafield, e.g. ``product_meta_custom_material``."""
    parts = [owner_key]
    if use_namespace and metafield.get("namespace"):
        parts.append(clean_column_name(str(metafield["namespace"])))
    parts.append(clean_column_name(str(metafield.get("key", ""))))
    return "_".join(part for part in parts if part)


class BulkMetafields(BulkPuller):
    """
    Stage metafields, one row per metafield.

    Every product and variant also gets an empty placeholder row, so the
    tables can drive the outer iteration when metafields is the only
    module enabled.
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
        self.metafield_names: List[str] = []
        self._product_ids: Dict[str, int] = {}
        self._variant_parents: Dict[str, tuple] = {}

    def get_query(self) -> str:
        filters = self.settings.meta_filters.gql_arguments()
        return f"""
        products{self.settings.product_filters.gql_arguments()} {{
            edges {{
                node {{
                    id
                    metafields{filters} {{
                        edges {{ node {{ {METAFIELD_FIELDS} }} }}
                    }}
                    variants {{
                        edges {{
                            node {{
                                id
                                metafields{filters} {{
                                    edges {{ node {{ {METAFIELD_FIELDS} }} }}
                                }}
                            }}
                        }}
                    }}
                }}
            }}
        }}"""

    async def process_record(self, record: Dict[str, Any]) -> None:
        gid = self.parse_gid(record.get("id"))
        if gid is None:
            return

        if gid.is_product:
            self._product_ids[gid.raw] = gid.id
            await self.product_inserter.add({"id": gid.id, "data": None})
            self.stats.products += 1
            return

        if gid.is_variant:
            parent_id = self._product_ids.get(record.get("__parentId"))
            if parent_id is None:
                self.unknown_parent(record)
                return
            self._variant_parents[gid.raw] = (gid.id, parent_id)
            await self.variant_inserter.add({"id": gid.id, "parent_id": parent_id, "data": None})
            self.stats.variants += 1
            return

        if gid.is_metafield:
            await self._stage_metafield(record)
            return

        self.stats.warnings += 1
        logger.warning(f"{self.name}: unhandled record type {gid.type}")

    async def _stage_metafield(self, record: Dict[str, Any]) -> None:
        parent_ref = record.get("__parentId")
        metafield = {k: v for k, v in record.items() if k != "__parentId"}

        if parent_ref in self._product_ids:
            owner_key = PRODUCT_META_KEY
            await self.product_inserter.add({
                "id": self._product_ids[parent_ref],
                "data": self.encode(metafield),
            })
        elif parent_ref in self._variant_parents:
            owner_key = VARIANT_META_KEY
            variant_id, product_id = self._variant_parents[parent_ref]
            await self.variant_inserter.add({
                "id": variant_id,
                "parent_id": product_id,
                "data": self.encode(metafield),
            })
        else:
            self.unknown_parent(record)
            return

        if self.settings.metafields_split_columns:
            name = metafield_identifier(owner_key, metafield, self.settings.use_metafield_namespaces)
            if name not in self.metafield_names:
                self.metafield_names.append(name)

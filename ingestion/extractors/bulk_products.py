"""
Bulk puller for products, their variants, media and publications.
"""

from typing import Any, Dict, List, Optional

from ingestion.extractors.bulk_base import BulkPuller, BulkPullerConfig
from ingestion.extractors.transport import BulkTransport
from ingestion.loaders.batch_inserter import BatchedInserter
from models.pull_stats import PullStats
from schemas.settings import PullSettings
import logging

logger = logging.getLogger(__name__)

# Extra product fields a client may ask for by name
ALLOWED_EXTRA_PARENT_FIELDS = ("status", "bodyHtml", "isGiftCard", "totalInventory")

MEDIA_FILTER = '(query: "media_type:IMAGE")'


class BulkProducts(BulkPuller):
    """
    Stage products and variants.

    Variant, media, publication and presentment price lines are attached to
    their owner through ``__parentId`` whatever order they arrive in, so
    rows are written once the whole result has been read.
    """

    def __init__(
        self,
        pull_settings: PullSettings,
        transport: BulkTransport,
        stats: PullStats,
        product_inserter: BatchedInserter,
        variant_inserter: BatchedInserter,
        include_publications: bool = False,
        config: Optional[BulkPullerConfig] = None
    ):
        super().__init__(pull_settings, transport, stats, config)
        self.product_inserter = product_inserter
        self.variant_inserter = variant_inserter
        self.include_publications = include_publications
        self.variant_names: List[str] = []
        self._products: Dict[str, Dict[str, Any]] = {}
        self._variants: Dict[str, Dict[str, Any]] = {}
        self._orphans: List[Dict[str, Any]] = []

    def get_query(self) -> str:
        filters = self.settings.product_filters
        extra_fields = "\n".join(
            field for field in self.settings.extra_parent_fields
            if field in ALLOWED_EXTRA_PARENT_FIELDS
        )

        presentment_prices = ""
        if self.settings.include_presentment_prices:
            currencies = ", ".join(filters.presentment_currencies)
            currency_filter = f"(presentmentCurrencies: [{currencies}])" if currencies else ""
            presentment_prices = f"""
                presentmentPrices{currency_filter} {{
                    edges {{
                        node {{
                            price {{ amount currencyCode }}
                            compareAtPrice {{ amount currencyCode }}
                        }}
                    }}
                }}"""

        publications = ""
        if self.include_publications:
            publications = """
                resourcePublications {
                    edges {
                        node {
                            isPublished
                            publication { id name catalog { title } }
                        }
                    }
                }"""

        return f"""
        products{filters.gql_arguments()} {{
            edges {{
                node {{
                    id
                    legacyResourceId
                    createdAt
                    updatedAt
                    description
                    descriptionHtml
                    handle
                    onlineStorePreviewUrl
                    productType
                    publishedAt
                    tags
                    templateSuffix
                    title
                    vendor
                    options {{ name position values }}
                    seo {{ description title }}
                    media{MEDIA_FILTER} {{
                        edges {{
                            node {{
                                id
                                mediaContentType
                                preview {{
                                    image {{ altText height width url }}
                                    status
                                }}
                            }}
                        }}
                    }}
                    {publications}
                    {extra_fields}
                    variants {{
                        edges {{
                            node {{
                                id
                                legacyResourceId
                                {presentment_prices}
                                availableForSale
                                barcode
                                compareAtPrice
                                createdAt
                                displayName
                                image {{ id altText height width url }}
                                inventoryItem {{
                                    id
                                    measurement {{ weight {{ unit value }} }}
                                    requiresShipping
                                    sku
                                    tracked
                                    unitCost {{ amount currencyCode }}
                                }}
                                inventoryPolicy
                                inventoryQuantity
                                position
                                price
                                selectedOptions {{ name value }}
                                sku
                                taxable
                                title
                                updatedAt
                            }}
                        }}
                    }}
                }}
            }}
        }}"""

    async def process_record(self, record: Dict[str, Any]) -> None:
        if not record.get("id"):
            self._attach_or_defer(record)
            return

        gid = self.parse_gid(record["id"])
        if gid is None:
            return

        if gid.is_product:
            record.pop("__parentId", None)
            record["media"] = []
            self._products[gid.raw] = {"id": gid.id, "data": record}
            return

        if gid.is_variant:
            parent = self.parent_gid(record)
            if parent is None or not parent.is_product:
                self.unknown_parent(record)
                return
            record.pop("__parentId")
            self._variants[gid.raw] = {"id": gid.id, "parent_id": parent.id, "data": record}
            if self.settings.variant_names_split_columns:
                for option in record.get("selectedOptions") or []:
                    name = f"variant_{str(option.get('name', '')).lower()}"
                    if name != "variant_" and name not in self.variant_names:
                        self.variant_names.append(name)
            return

        if gid.is_media:
            self._attach_or_defer(record)
            return

        self.stats.warnings += 1
        logger.warning(f"{self.name}: unhandled record type {gid.type}")

    def _attach_or_defer(self, record: Dict[str, Any]) -> None:
        # Children may arrive before their owner
        if not self._attach(record):
            self._orphans.append(record)

    def _attach(self, record: Dict[str, Any]) -> bool:
        """Merge a media, publication or presentment price line into its owner."""
        parent_ref = record.get("__parentId")
        product = self._products.get(parent_ref)
        variant = self._variants.get(parent_ref)
        if product is None and variant is None:
            return False

        child = {k: v for k, v in record.items() if k != "__parentId"}
        if record.get("id"):
            if product is None:
                self.unknown_parent(record)
                return True
            image = (child.get("preview") or {}).get("image") or {}
            if image.get("url"):
                product["data"]["media"].append({
                    "id": child["id"],
                    "src": image.get("url"),
                    "altText": image.get("altText"),
                    "height": image.get("height"),
                    "width": image.get("width"),
                })
        elif "publication" in child and product is not None:
            product["data"].setdefault("publications", []).append(child)
        elif "price" in child and variant is not None:
            variant["data"].setdefault("presentment_prices", []).append(child)
        else:
            self.stats.warnings += 1
            logger.warning(f"{self.name}: unhandled child record for {parent_ref}")
        return True

    async def finish(self) -> None:
        for record in self._orphans:
            if not self._attach(record):
                self.unknown_parent(record)
        self._orphans = []

        for product in self._products.values():
            await self.product_inserter.add({"id": product["id"], "data": self.encode(product["data"])})
            self.stats.products += 1

        for variant in self._variants.values():
            await self.variant_inserter.add({
                "id": variant["id"],
                "parent_id": variant["parent_id"],
                "data": self.encode(variant["data"]),
            })
            self.stats.variants += 1

        logger.info(
            f"{self.name}: staged {len(self._products)} products "
            f"and {len(self._variants)} variants"
        )
        self._products = {}
        self._variants = {}

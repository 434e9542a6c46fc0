"""
In-memory catalog entities assembled while reading staging tables back out.

A Product owns its ProductVariants. Both collect fields from every enabled
module through ``add_data``/``add_datum``; a later write to the same field
replaces the earlier one. The numeric id always comes from the staging row:
an ``id`` key inside a payload is a global id and is kept under
``admin_graphql_api_id`` instead.
"""

import json
from typing import Any, Dict, Iterable, List, Optional, TYPE_CHECKING
from urllib.parse import urlsplit

from models.gid import is_gid, normalize_id

if TYPE_CHECKING:
    from schemas.settings import PullSettings

STR_AVAILABLE = "in stock"
STR_NOT_AVAILABLE = "out of stock"

WEIGHT_UNITS = {
    "GRAMS": "g",
    "OUNCES": "oz",
    "POUNDS": "lb",
    "KILOGRAMS": "kg",
}


class FieldContainer:
    """Field store with output-name translation and last-write-wins merges."""

    FIELD_NAME_MAP: Dict[str, str] = {}
    GID_FIELD = "admin_graphql_api_id"

    def __init__(self, entity_id: int, data: Optional[Dict[str, Any]] = None):
        self.id = int(entity_id)
        self._fields: Dict[str, Any] = {}
        if data:
            self.add_data(data)

    def translate_field_name(self, field: str) -> str:
        return self.FIELD_NAME_MAP.get(field, field)

    def add_data(self, data: Dict[str, Any]) -> None:
        for field, value in data.items():
            self.add_datum(field, value)

    def add_datum(self, field: str, value: Any) -> None:
        if field == "id":
            # Never let a payload replace the staging id
            if is_gid(value):
                self._fields[self.GID_FIELD] = value
            return
        self._fields[self.translate_field_name(field)] = value

    def get(self, field: str, default: Any = None) -> Any:
        value = self._fields.get(field, default)
        return default if value is None else value

    def has(self, field: str) -> bool:
        return field in self._fields

    @property
    def fields(self) -> Dict[str, Any]:
        return dict(self._fields)

    def get_processed_value(self, field: str) -> Any:
        return self.get(field)

    def get_output_data(self, field_list: Optional[Iterable[str]] = None) -> Dict[str, Any]:
        """
        Processed values for the requested fields. Fields without a value
        are left out so they do not shadow values from the parent row.
        """
        names = list(field_list) if field_list is not None else list(self._fields)
        output = {}
        for field in names:
            value = self.get_processed_value(field)
            if value is not None:
                output[field] = value
        return output


class Product(FieldContainer):
    FIELD_NAME_MAP = {
        "title": "parent_title",
        "body_html": "description",
        "vendor": "brand",
        "created_at": "parent_created_at",
        "updated_at": "parent_updated_at",
        "admin_graphql_api_id": "parent_admin_graphql_api_id",
    }
    GID_FIELD = "parent_admin_graphql_api_id"

    DEFAULT_OUTPUT_FIELDS = [
        "item_group_id",
        "parent_title",
        "description",
        "brand",
        "product_type",
        "tags",
        "published_status",
        "image_link",
        "additional_image_link",
        "publications",
    ]

    def __init__(
        self,
        entity_id: int,
        data: Optional[Dict[str, Any]] = None,
        settings: Optional["PullSettings"] = None,
    ):
        self.settings = settings
        self.variants: List["ProductVariant"] = []
        super().__init__(entity_id, data)

    def add_variant(self, variant: "ProductVariant") -> None:
        self.variants.append(variant)

    def get_processed_value(self, field: str) -> Any:
        if field in ("item_group_id", "product_id"):
            return self.id
        if field == "product_type":
            return self.get("productType", "")
        if field == "tags":
            return ", ".join(self.get("tags", []))
        if field == "publications":
            publications = self.get("publications")
            return json.dumps(publications) if publications else ""
        if field == "published_status":
            return self.get_published_status()
        if field == "image_link":
            return self.get_image_link()
        if field == "additional_image_link":
            return ",".join(self.get_image_links())
        if field in ("parent_title", "title"):
            return self.get("parent_title", "")
        if field in ("description", "body_html"):
            return self.get("descriptionHtml", self.get("description", ""))
        if field in ("brand", "vendor"):
            return self.get("brand", "")
        if field == "parent_created_at":
            return self.get("createdAt", self.get("parent_created_at", ""))
        return self.get(field)

    def get_published_status(self) -> str:
        status = self.get("published_status")
        if status:
            return status
        return "published" if self.get("publishedAt") else "unpublished"

    def get_image_links(self) -> List[str]:
        return [image["src"] for image in self.get("media", []) if image.get("src")]

    def get_image_link(self) -> str:
        links = self.get_image_links()
        return links[0] if links else ""


class ProductVariant(FieldContainer):
    FIELD_NAME_MAP = {
        "title": "child_title",
        "barcode": "gtin",
    }

    DEFAULT_OUTPUT_FIELDS = [
        "id",
        "child_title",
        "gtin",
        "sku",
        "price",
        "sale_price",
        "availability",
        "inventory_quantity",
        "inventory_policy",
        "inventory_item_id",
        "requires_shipping",
        "taxable",
        "weight",
        "weight_unit",
        "shipping_weight",
        "image_link",
        "additional_variant_image_link",
        "color",
        "size",
        "material",
        "link",
        "variant_names",
        "presentment_prices",
    ]

    def __init__(self, product: Product, entity_id: int, data: Optional[Dict[str, Any]] = None):
        self.product = product
        super().__init__(entity_id, data)

    @property
    def settings(self) -> Optional["PullSettings"]:
        return self.product.settings

    def _setting(self, name: str, default: Any) -> Any:
        return getattr(self.settings, name, default) if self.settings is not None else default

    def get_processed_value(self, field: str) -> Any:
        if field == "id":
            return self.id
        if field in ("product_id", "item_group_id"):
            return self.product.id
        if field == "created_at":
            return self.get("createdAt", "")
        if field == "inventory_item_id":
            item_id = self.get("inventoryItem", {}).get("id")
            return normalize_id(item_id) if item_id else ""
        if field == "inventory_quantity":
            return self.get("inventoryQuantity", "")
        if field == "inventory_policy":
            return str(self.get("inventoryPolicy", "")).lower()
        if field == "inventory_management":
            return "shopify" if self.get("inventoryItem", {}).get("tracked") else ""
        if field == "sku":
            return self.get("sku") or self.get("inventoryItem", {}).get("sku", "")
        if field == "price":
            return self.get_price()
        if field == "sale_price":
            return self.get_sale_price()
        if field == "presentment_prices":
            return self.get_presentment_prices()
        if field == "requires_shipping":
            return "true" if self.get("inventoryItem", {}).get("requiresShipping") else "false"
        if field == "taxable":
            return "true" if self.get("taxable") else "false"
        if field == "availability":
            return self.get_availability()
        if field == "weight":
            return self.get_normalized_weight(self.get_weight_node()["value"])
        if field == "weight_unit":
            return self.get_weight_node()["unit"]
        if field == "shipping_weight":
            return self.get_shipping_weight()
        if field == "image_link":
            return self.get("image", {}).get("url") or self.product.get_image_link()
        if field in ("color", "size", "material"):
            return self.get_option_value(field)
        if field == "additional_variant_image_link":
            return ",".join(self.get_additional_image_links())
        if field == "variant_names":
            return json.dumps(self.get_variant_names())
        if field == "gmc_transition_id":
            country = self._setting("country_code", "") or "xxx"
            return f"shopify_{country}_{self.product.id}_{self.id}"
        if field == "tax_rates":
            return self._setting("tax_rates", "")
        if field == "link":
            return self.get_link(self._setting("shop_domain", ""))

        if self._setting("variant_names_split_columns", False):
            split_value = self.get_split_name_value(field)
            if split_value is not None:
                return split_value

        return self.get(field)

    def get_price(self) -> str:
        compare_at_price = self.get("compareAtPrice", "")
        display_price = self.get("price", "")
        if display_price != "" and compare_at_price != "" and self._setting("compare_price_override", True):
            return compare_at_price
        return display_price

    def get_sale_price(self) -> str:
        compare_at_price = self.get("compareAtPrice", "")
        display_price = self.get("price", "")
        if display_price != "" and compare_at_price != "":
            return display_price
        return ""

    def get_presentment_prices(self) -> str:
        output_prices = []
        for price in self.get("presentment_prices", []):
            compare = price.get("compareAtPrice")
            output_prices.append({
                "price": {
                    "amount": f"{float(price['price']['amount']):.2f}",
                    "currency_code": price["price"]["currencyCode"],
                },
                "compare_at_price": {
                    "amount": f"{float(compare['amount']):.2f}",
                    "currency_code": compare["currencyCode"],
                } if compare else None,
            })
        return json.dumps(output_prices)

    def get_availability(self) -> str:
        tracked = self.get("inventoryItem", {}).get("tracked", False)
        policy = str(self.get("inventoryPolicy", "")).lower()
        quantity = self.get("inventoryQuantity", 0)
        if (tracked and quantity < 1 and policy == "deny") or self.get("availableForSale") is False:
            return STR_NOT_AVAILABLE
        return STR_AVAILABLE

    def get_weight_node(self) -> Dict[str, str]:
        weight = self.get("inventoryItem", {}).get("measurement", {}).get("weight") or {}
        value = weight.get("value")
        return {
            "value": "" if value is None else str(value),
            "unit": WEIGHT_UNITS.get(weight.get("unit"), ""),
        }

    @staticmethod
    def get_normalized_weight(weight: str) -> str:
        if weight != "" and "." not in weight:
            return f"{weight}.0"
        return weight

    def get_shipping_weight(self) -> str:
        node = self.get_weight_node()
        return f"{self.get_normalized_weight(node['value'])} {node['unit']}".strip()

    def get_variant_names(self) -> Dict[str, Any]:
        return {
            option.get("name", ""): option.get("value")
            for option in self.get("selectedOptions", [])
        }

    def get_option_value(self, name: str) -> str:
        names = {key.lower(): value for key, value in self.get_variant_names().items()}
        return names.get(name.lower()) or ""

    def get_split_name_value(self, field: str) -> Optional[str]:
        prefix, _, option = field.partition("_")
        if prefix != "variant" or not option:
            return None
        names = {key.lower(): value for key, value in self.get_variant_names().items()}
        return names.get(option)

    def get_additional_image_links(self) -> List[str]:
        images = []
        main_image = self.get("image", {}).get("url")
        if main_image:
            images.append(main_image)

        color = self.get_option_value("color").strip().lower()
        for image in self.product.get("media", []):
            src = image.get("src")
            if not src or not color:
                continue
            if color in str(image.get("altText") or "").lower() and src not in images:
                images.append(src)
        return images

    def get_link(self, domain: str) -> str:
        if not domain:
            return ""
        host = urlsplit(f"https://{domain}").hostname or ""
        host = host.replace("www.", "")
        if host.count(".") < 2:
            host = f"www.{host}"
        return f"https://{host}/products/{self.product.get('handle', '')}?variant={self.id}"

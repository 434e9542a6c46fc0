"""
Shopify global ids.

Bulk and GraphQL results identify records as ``gid://shopify/<Type>/<id>``
while staging tables are keyed by the plain numeric id. Every id that enters
staging goes through ``normalize_id``.
"""

import re
from typing import Any, NamedTuple

from core.exceptions import UnexpectedResponseError

API_NAME = "Shopify"

GID_PATTERN = re.compile(r"^gid://shopify/(?P<type>[A-Za-z]+)/(?P<id>\d+)(?:\?.*)?$")

TYPE_PRODUCT = "product"
TYPE_VARIANT = "productvariant"
TYPE_METAFIELD = "metafield"
TYPE_COLLECTION = "collection"
TYPE_MEDIA_IMAGE = "mediaimage"
TYPE_INVENTORY_ITEM = "inventoryitem"
TYPE_INVENTORY_LEVEL = "inventorylevel"
TYPE_PUBLICATION = "publication"


class GID(NamedTuple):
    type: str
    id: int
    raw: str

    @classmethod
    def parse(cls, value: Any) -> "GID":
        if not isinstance(value, str):
            raise UnexpectedResponseError(API_NAME, f"Invalid GID: {value!r}")
        match = GID_PATTERN.match(value.strip())
        if match is None:
            raise UnexpectedResponseError(API_NAME, f"Invalid GID: {value}")
        return cls(match.group("type").lower(), int(match.group("id")), value)

    @property
    def is_product(self) -> bool:
        return self.type == TYPE_PRODUCT

    @property
    def is_variant(self) -> bool:
        return self.type == TYPE_VARIANT

    @property
    def is_metafield(self) -> bool:
        return self.type == TYPE_METAFIELD

    @property
    def is_collection(self) -> bool:
        return self.type == TYPE_COLLECTION

    @property
    def is_media(self) -> bool:
        return self.type == TYPE_MEDIA_IMAGE

    @property
    def is_inventory_item(self) -> bool:
        return self.type == TYPE_INVENTORY_ITEM

    @property
    def is_inventory_level(self) -> bool:
        return self.type == TYPE_INVENTORY_LEVEL

    @property
    def is_publication(self) -> bool:
        return self.type == TYPE_PUBLICATION


def is_gid(value: Any) -> bool:
    return isinstance(value, str) and GID_PATTERN.match(value.strip()) is not None


def normalize_id(value: Any) -> int:
    """Return the numeric id for a GID, a digit string or an int."""
    if isinstance(value, bool):
        raise UnexpectedResponseError(API_NAME, f"Invalid id: {value!r}")
    if isinstance(value, int):
        return value
    if isinstance(value, str):
        stripped = value.strip()
        if stripped.isdigit():
            return int(stripped)
        return GID.parse(stripped).id
    raise UnexpectedResponseError(API_NAME, f"Invalid id: {value!r}")

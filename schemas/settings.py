"""
Pydantic schemas for per-run pull settings with validation
"""

import re
import time
from typing import Any, ClassVar, Dict, List, Optional, Sequence

from pydantic import BaseModel, ConfigDict, Field, field_validator
from pydantic import ValidationError as PydanticValidationError

from core.exceptions import ValidationError

DATA_TYPE_PRODUCTS = "products"
DATA_TYPE_META = "meta"
DATA_TYPE_COLLECTIONS = "collections"
DATA_TYPE_COLLECTIONS_META = "collections_meta"
DATA_TYPE_INVENTORY_ITEM = "inventory_item"
DATA_TYPE_INVENTORY_LEVEL = "inventory_level"

# Older clients switch data types on with individual boolean options
COMPAT_DATA_TYPE_OPTIONS = (
    DATA_TYPE_META,
    DATA_TYPE_COLLECTIONS,
    DATA_TYPE_COLLECTIONS_META,
    DATA_TYPE_INVENTORY_LEVEL,
    DATA_TYPE_INVENTORY_ITEM,
)

TABLE_PREFIX_LENGTH = 28


def split_list(value: Any) -> List[str]:
    """Accept a comma-separated string or a list and return clean items."""
    if value is None:
        return []
    if isinstance(value, str):
        items = value.split(",")
    elif isinstance(value, (list, tuple, set)):
        items = [str(v) for v in value]
    else:
        items = [str(value)]
    return [item.strip() for item in items if item.strip()]


def generate_table_prefix(shop_name: str, now: Optional[float] = None) -> str:
    """Prefix unique to one run: shop name and time, alphanumeric only."""
    stamp = f"{shop_name}{now if now is not None else time.time()}"
    cleaned = re.sub(r"[^A-Za-z0-9]", "", stamp).lower()
    return f"stg_{cleaned[-TABLE_PREFIX_LENGTH:]}"


def _quote_search_value(value: str) -> str:
    if re.search(r"\s", value):
        return "'" + value.replace("'", "\\'") + "'"
    return value


class ProductFilters(BaseModel):
    """Product filters sent by the client as ``[{filter, value}, ...]``."""

    model_config = ConfigDict(frozen=True)

    VALID_FILTERS: ClassVar[Sequence[str]] = (
        "ids",
        "limit",
        "since_id",
        "title",
        "vendor",
        "handle",
        "product_type",
        "status",
        "collection_id",
        "published_status",
        "fields",
        "presentment_currencies",
    )
    # Filters that become terms of the products search query
    GQL_QUERY_FILTERS: ClassVar[Sequence[str]] = (
        "published_status",
        "vendor",
        "product_type",
        "status",
        "title",
        "handle",
    )

    published_status: str = "published"
    ids: List[str] = Field(default_factory=list)
    limit: Optional[int] = Field(None, ge=1)
    since_id: Optional[int] = Field(None, ge=0)
    title: Optional[str] = None
    vendor: Optional[str] = None
    handle: Optional[str] = None
    product_type: Optional[str] = None
    status: Optional[str] = None
    collection_id: Optional[str] = None
    fields: List[str] = Field(default_factory=list)
    presentment_currencies: List[str] = Field(default_factory=list)

    @field_validator("ids", "fields", "presentment_currencies", mode="before")
    @classmethod
    def clean_lists(cls, v):
        return split_list(v)

    @field_validator("published_status")
    @classmethod
    def check_published_status(cls, v):
        v = v.strip().lower()
        if v not in ("published", "unpublished", "any"):
            raise ValueError(f"Unsupported published_status '{v}'")
        return v

    @classmethod
    def from_filter_list(
        cls,
        filters: Optional[Sequence[Dict[str, Any]]],
        default_published_status: Optional[str] = None,
    ) -> "ProductFilters":
        values: Dict[str, Any] = {}
        for entry in filters or []:
            if not isinstance(entry, dict) or "filter" not in entry:
                raise ValidationError(f"Invalid product filter entry: {entry!r}")
            name = str(entry["filter"]).strip()
            if name not in cls.VALID_FILTERS:
                raise ValidationError(f"Invalid product filter '{name}'")
            value = entry.get("value")
            if isinstance(value, (list, tuple)):
                value = ",".join(str(v) for v in value)
            values[name] = value

        if not values.get("published_status") and default_published_status:
            values["published_status"] = default_published_status

        try:
            return cls.model_validate(values)
        except PydanticValidationError as e:
            raise ValidationError(
                f"Invalid product filters: {e.errors()[0]['msg']}",
                context={"filters": list(values)},
                original_exception=e
            )

    def search_terms(self) -> List[str]:
        terms = []
        for name in self.GQL_QUERY_FILTERS:
            value = getattr(self, name)
            if not value:
                continue
            if name == "published_status" and value == "any":
                continue
            terms.append(f"{name}:{_quote_search_value(str(value))}")
        return terms

    def gql_arguments(self, extra_terms: Sequence[str] = ()) -> str:
        """Render the products connection arguments, e.g. ``(query: "...")``."""
        terms = self.search_terms() + list(extra_terms)
        if not terms:
            return ""
        query = " ".join(terms).replace('"', '\\"')
        return f'(query: "{query}")'


class MetaFilters(BaseModel):
    model_config = ConfigDict(frozen=True)

    namespace: Optional[str] = None

    def gql_arguments(self) -> str:
        if not self.namespace:
            return ""
        return f'(namespace: "{self.namespace}")'


class PullSettings(BaseModel):
    """
    Settings for one pull, immutable for the run.

    Build it with ``from_client_options`` so legacy option names and
    compatibility switches are folded in and input errors surface as
    ``ValidationError``.
    """

    model_config = ConfigDict(frozen=True, extra="ignore")

    VALID_DATA_TYPES: ClassVar[Sequence[str]] = (
        DATA_TYPE_INVENTORY_ITEM,
        DATA_TYPE_PRODUCTS,
        DATA_TYPE_META,
        DATA_TYPE_COLLECTIONS,
    )

    # Identity and credentials
    shop_name: str = Field(..., min_length=1, max_length=255)
    oauth_token: str = Field(..., min_length=1)
    shop_domain: str = ""
    country_code: str = ""
    table_prefix: str = Field(..., pattern=r"^[a-z][a-z0-9_]{0,39}$")

    # Data selection
    data_types: List[str] = Field(default_factory=lambda: [DATA_TYPE_PRODUCTS])
    include_inventory_level: bool = False
    include_collections_meta: bool = False
    product_filters: ProductFilters = Field(default_factory=ProductFilters)
    meta_filters: MetaFilters = Field(default_factory=MetaFilters)

    # Output shaping
    metafields_split_columns: bool = False
    variant_names_split_columns: bool = False
    include_presentment_prices: bool = True
    compare_price_override: bool = True
    use_gmc_transition_id: bool = False
    use_metafield_namespaces: bool = False
    tax_rates: str = ""
    extra_parent_fields: List[str] = Field(default_factory=list)
    extra_variant_fields: List[str] = Field(default_factory=list)
    delimiter: str = Field(",", min_length=1, max_length=1)
    enclosure: str = Field('"', min_length=1, max_length=1)

    @field_validator("shop_name")
    @classmethod
    def clean_shop_name(cls, v):
        v = v.strip().lower()
        if v.endswith(".myshopify.com"):
            v = v[: -len(".myshopify.com")]
        if not re.fullmatch(r"[a-z0-9][a-z0-9-]*", v):
            raise ValueError(f"Invalid shop name '{v}'")
        return v

    @field_validator("extra_parent_fields", "extra_variant_fields", mode="before")
    @classmethod
    def clean_field_lists(cls, v):
        return split_list(v)

    @field_validator("data_types", mode="before")
    @classmethod
    def clean_data_types(cls, v):
        seen = []
        for data_type in split_list(v):
            data_type = data_type.lower()
            if data_type not in seen:
                seen.append(data_type)
        return seen

    @field_validator("data_types")
    @classmethod
    def check_data_types(cls, v):
        if not v:
            raise ValueError("At least one data type is required")
        unknown = [data_type for data_type in v if data_type not in cls.VALID_DATA_TYPES]
        if unknown:
            raise ValueError(f"Unknown data type(s): {', '.join(unknown)}")
        return v

    @classmethod
    def from_client_options(cls, options: Dict[str, Any]) -> "PullSettings":
        if not isinstance(options, dict):
            raise ValidationError("Connection info must be an object")

        values = dict(options)

        if not values.get("oauth_token") and values.get("password"):
            values["oauth_token"] = values["password"]

        for required in ("shop_name", "oauth_token"):
            if not values.get(required):
                raise ValidationError(f"Missing required option '{required}'")

        data_types = split_list(values.get("data_types", DATA_TYPE_PRODUCTS))
        for option in COMPAT_DATA_TYPE_OPTIONS:
            if _truthy(values.pop(option, False)) and option not in data_types:
                data_types.append(option)

        # Sub-options imply their parent data type and are not types themselves
        if DATA_TYPE_INVENTORY_LEVEL in data_types:
            values["include_inventory_level"] = True
            data_types.remove(DATA_TYPE_INVENTORY_LEVEL)
            if DATA_TYPE_INVENTORY_ITEM not in data_types:
                data_types.append(DATA_TYPE_INVENTORY_ITEM)
        if DATA_TYPE_COLLECTIONS_META in data_types:
            values["include_collections_meta"] = True
            data_types.remove(DATA_TYPE_COLLECTIONS_META)
            if DATA_TYPE_COLLECTIONS not in data_types:
                data_types.append(DATA_TYPE_COLLECTIONS)
        values["data_types"] = data_types

        product_filters = values.get("product_filters")
        if not isinstance(product_filters, ProductFilters):
            values["product_filters"] = ProductFilters.from_filter_list(
                product_filters,
                default_published_status=values.pop("product_published_status", None),
            )

        meta_filters = values.get("meta_filters")
        if isinstance(meta_filters, (list, tuple)):
            values["meta_filters"] = {
                entry.get("filter"): entry.get("value")
                for entry in meta_filters if isinstance(entry, dict)
            }

        if not values.get("table_prefix"):
            values["table_prefix"] = generate_table_prefix(str(values["shop_name"]))

        try:
            return cls.model_validate(values)
        except PydanticValidationError as e:
            first = e.errors()[0]
            location = ".".join(str(part) for part in first.get("loc", ()))
            raise ValidationError(
                f"{location}: {first['msg']}" if location else first["msg"],
                context={"error_count": e.error_count()},
                original_exception=e
            )

    def has_data_type(self, data_type: str) -> bool:
        return data_type in self.data_types


def _truthy(value: Any) -> bool:
    if isinstance(value, str):
        return value.strip().lower() in ("1", "true", "yes", "on")
    return bool(value)

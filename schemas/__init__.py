"""
Pydantic schemas for run input and remote responses.

Schemas:
    settings: Per-run pull settings, product filters and metafield filters
    bulk: Bulk operation responses and the GraphQL documents that drive them

Usage:
    from schemas.settings import PullSettings
    from schemas.bulk import BulkOperation

Example:
    pull_settings = PullSettings.from_client_options({
        "shop_name": "example-store",
        "oauth_token": "shpat_...",
        "data_types": "products,meta",
    })
    assert pull_settings.has_data_type("meta")

Validation:
    Invalid options surface as core.exceptions.ValidationError, never as
    raw pydantic errors.
"""

__all__ = [
    "PullSettings",
    "ProductFilters",
    "MetaFilters",
    "BulkOperation",
]

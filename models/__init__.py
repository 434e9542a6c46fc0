"""
Data models for the catalog connector.

Models:
    base: Shared enums (BulkOperationStatus, BulkState, RunStage)
    staging: Run-scoped staging table definitions (SQLAlchemy Core)
    gid: Shopify global id parsing and numeric id normalization
    catalog: Product and ProductVariant entities rebuilt from staging
    pull_stats: Per-module pull counters

Staging Schema:
    Staging tables are created per run with a run-specific prefix, so they
    are defined with ``build_staging_table`` rather than as declarative
    classes. Each row is ``{id, parent_id?, data}`` where ``data`` is the
    JSON-encoded record.

Usage:
    from models.catalog import Product, ProductVariant
    from models.gid import GID, normalize_id
    from models.pull_stats import PullStats
"""

__all__ = [
    "BulkOperationStatus",
    "BulkState",
    "RunStage",
    "build_staging_table",
    "GID",
    "normalize_id",
    "Product",
    "ProductVariant",
    "PullStats",
]

"""
Pull pipeline components for the Shopify catalog connector.

Modules:
    base: CatalogModule contract implemented by every catalog module
    reassembly: Watermark-driven cursor that rebuilds Products from staging
    runner: PullRunManager orchestration and execute_pull entry point

Subpackages:
    extractors: Transport, Shopify client and bulk pullers
    loaders: Staging store, batched inserter and CSV writer
    modules: Products, metafields, collections and inventories modules

Architecture:
    A pull runs in two phases:

    1. Pull - each enabled module runs its bulk query and stages the results
    2. Output - the primary module walks its staging table in id order, every
       other module enriches each product and variant, and the rows are
       written to CSV

Usage:
    from ingestion.runner import PullRunManager, execute_pull

Example:
    async with ShopifyClient(shop_name, token) as client:
        result = await execute_pull(pull_settings, client, engine, "out.csv")

    print(f"Wrote {result['rows_written']} rows")

Error Handling:
    Blocked and throttled bulk queries are retried inside the puller; every
    other failure propagates as a core.exceptions.ConnectorException and
    aborts the run.
"""

__all__ = [
    "CatalogModule",
    "ReassemblyCursor",
    "PullRunManager",
    "execute_pull",
]

# ============================================================================
# File: ingestion/runner.py
# Description: Pull orchestrator that runs modules and reassembles output
# ============================================================================
"""
Pull Runner - Orchestrates module pulls and output reassembly.

This module provides:
- Module selection from the run's enabled data types
- Sequential module pulls with per-module statistics
- Primary module selection and enrichment in registration order
- Flat output rows (one per variant) for the CSV writer
"""

from typing import Any, AsyncIterator, Dict, List, Optional, Sequence, Type

from sqlalchemy.ext.asyncio import AsyncEngine

from core.exceptions import ConnectorException, InfrastructureError, ValidationError
from ingestion.base import CatalogModule
from ingestion.extractors.bulk_base import BulkPullerConfig
from ingestion.extractors.transport import BulkTransport
from ingestion.loaders.csv_writer import write_csv
from ingestion.loaders.staging_store import StagingStore
from ingestion.modules.collections import CollectionsModule
from ingestion.modules.inventories import InventoriesModule
from ingestion.modules.metafields import MetafieldsModule
from ingestion.modules.products import ProductsModule
from ingestion.reassembly import ReassemblyCursor
from models.base import RunStage
from models.pull_stats import PullStats
from schemas.settings import PullSettings
import logging

logger = logging.getLogger(__name__)

# Order is precedence: the first enabled module drives the output.
# Every other module enriches in the order the run listed its data types.
MODULE_MAP: Dict[str, Type[CatalogModule]] = {
    InventoriesModule.MODULE_NAME: InventoriesModule,
    ProductsModule.MODULE_NAME: ProductsModule,
    MetafieldsModule.MODULE_NAME: MetafieldsModule,
    CollectionsModule.MODULE_NAME: CollectionsModule,
}

ALWAYS_INCLUDED_FIELDS = ["id", "item_group_id"]


class PullRunManager:
    """
    Pull orchestrator for one run.

    Responsibilities:
    - Build the enabled modules in the order their data types were listed
    - Run each module exactly once, sequentially
    - Pick the primary module and stream enriched Products
    - Merge output fields and produce flat output rows
    """

    def __init__(
        self,
        pull_settings: PullSettings,
        transport: BulkTransport,
        module_map: Optional[Dict[str, Type[CatalogModule]]] = None,
        puller_config: Optional[BulkPullerConfig] = None
    ):
        self.settings = pull_settings
        self.transport = transport
        self.module_map = module_map if module_map is not None else MODULE_MAP
        self.pull_stats: Dict[str, PullStats] = {}
        self.stage = RunStage.SETUP

        unknown = [t for t in pull_settings.data_types if t not in self.module_map]
        if unknown:
            raise ValidationError(f"Unknown data type(s): {', '.join(unknown)}")

        self.modules_by_type: Dict[str, CatalogModule] = {
            data_type: self.module_map[data_type](pull_settings, transport, puller_config)
            for data_type in pull_settings.data_types
        }
        self.modules: List[CatalogModule] = list(self.modules_by_type.values())
        if not self.modules:
            raise ValidationError("No data types were enabled for this pull")

        logger.info(f"Pull modules: {', '.join(m.name() for m in self.modules)}")

    def primary_module(self) -> CatalogModule:
        for data_type in self.module_map:
            if data_type in self.modules_by_type:
                return self.modules_by_type[data_type]
        return self.modules[0]

    def enrichers(self) -> List[CatalogModule]:
        primary = self.primary_module()
        return [module for module in self.modules if module is not primary]

    def output_fields(self) -> List[str]:
        fields = list(ALWAYS_INCLUDED_FIELDS)
        for module in self.modules:
            for field in module.output_fields():
                if field not in fields:
                    fields.append(field)
        return fields

    async def run(self, store: StagingStore) -> Dict[str, PullStats]:
        """
        Run every module once.

        Raises:
            ConnectorException: Known failures, re-raised as they are
            InfrastructureError: Anything unexpected, with the detail attached
        """
        self.stage = RunStage.PULLING

        for module in self.modules:
            stats = self.pull_stats.setdefault(module.name(), PullStats())

            # --------------------------------------------------
            # MODULE PULL
            # --------------------------------------------------
            logger.info(f"Starting pull for module {module.name()}")
            try:
                await module.run(store, stats)
            except ConnectorException:
                raise
            except Exception as e:
                raise InfrastructureError(
                    f"Unexpected error while pulling {module.name()}",
                    context={"module": module.name(), "stats": stats.to_dict()},
                    original_exception=e
                )

            logger.info(f"Module {module.name()} finished: {stats.to_dict()}")

        return self.pull_stats

    def products(self, store: StagingStore, start_after: int = 0) -> ReassemblyCursor:
        return self.primary_module().products(store, self.enrichers(), start_after=start_after)

    async def retrieve_output(
        self,
        store: StagingStore,
        fields: Optional[Sequence[str]] = None
    ) -> AsyncIterator[Dict[str, Any]]:
        """
        Flat output rows: the product's fields merged with each variant's,
        or the product alone when it has no variants.
        """
        self.stage = RunStage.FINAL_OUTPUT
        field_list = list(fields) if fields is not None else self.output_fields()

        async for product in self.products(store):
            product_data = product.get_output_data(field_list)
            if not product.variants:
                yield product_data
                continue
            for variant in product.variants:
                yield {**product_data, **variant.get_output_data(field_list)}

        self.stage = RunStage.COMPLETE


async def execute_pull(
    pull_settings: PullSettings,
    transport: BulkTransport,
    engine: AsyncEngine,
    output_path: str,
    puller_config: Optional[BulkPullerConfig] = None
) -> Dict[str, Any]:
    """
    Run a full pull into run-scoped staging tables and write the CSV.

    Returns:
        Dictionary with:
        - rows_written: Number of CSV data rows
        - fields: Output column list
        - stats: Per-module PullStats as dictionaries
    """
    manager = PullRunManager(pull_settings, transport, puller_config=puller_config)

    async with StagingStore(engine, pull_settings.table_prefix) as store:
        # --------------------------------------------------
        # PHASE 1: PULL INTO STAGING
        # --------------------------------------------------
        stats = await manager.run(store)

        # --------------------------------------------------
        # PHASE 2: REASSEMBLE AND WRITE OUTPUT
        # --------------------------------------------------
        fields = manager.output_fields()
        try:
            rows_written = await write_csv(
                manager.retrieve_output(store, fields),
                fields,
                output_path,
                delimiter=pull_settings.delimiter,
                enclosure=pull_settings.enclosure,
            )
        except ConnectorException:
            raise
        except OSError as e:
            raise InfrastructureError(
                f"Could not write output file {output_path}",
                context={"output_path": output_path},
                original_exception=e
            )

    return {
        "rows_written": rows_written,
        "fields": fields,
        "stats": {name: module_stats.to_dict() for name, module_stats in stats.items()},
    }

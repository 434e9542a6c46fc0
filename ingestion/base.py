"""
Contract for pluggable catalog modules
"""

from abc import ABC, abstractmethod
from typing import List, Optional, Sequence, TYPE_CHECKING

from ingestion.extractors.bulk_base import BulkPullerConfig
from ingestion.extractors.transport import BulkTransport
from ingestion.loaders.staging_store import StagingRow, StagingStore
from models.catalog import Product, ProductVariant
from models.pull_stats import PullStats
from schemas.settings import PullSettings
import logging

if TYPE_CHECKING:
    from ingestion.reassembly import ReassemblyCursor

logger = logging.getLogger(__name__)


class CatalogModule(ABC):
    """
    Abstract base class for catalog modules.

    A module owns its staging tables. ``run`` fills them once per pull;
    afterwards the module either drives the outer iteration (when it is
    the primary module) or enriches products and variants built by the
    primary module.

    Responsibilities:
    - Declare the output fields it contributes
    - Pull its data from the API into staging
    - Rebuild or enrich Products and ProductVariants from staging
    """

    MODULE_NAME: str = ""

    def __init__(
        self,
        pull_settings: PullSettings,
        transport: BulkTransport,
        puller_config: Optional[BulkPullerConfig] = None
    ):
        self.settings = pull_settings
        self.transport = transport
        self.puller_config = puller_config
        self._output_fields: Optional[List[str]] = None

    def name(self) -> str:
        return self.MODULE_NAME

    def output_fields(self) -> List[str]:
        """
        Columns this module contributes. Computed once; modules whose
        columns depend on pulled data must be asked after ``run``.
        """
        if self._output_fields is None:
            fields = []
            for field in self.build_output_fields():
                if field not in fields:
                    fields.append(field)
            self._output_fields = fields
        return list(self._output_fields)

    @abstractmethod
    def build_output_fields(self) -> List[str]:
        pass

    @abstractmethod
    async def run(self, store: StagingStore, stats: PullStats) -> None:
        """
        Populate this module's staging tables.

        Raises:
            ApiError: The remote API rejected a call
            InfrastructureError: Local failure (including staging writes)
        """
        pass

    @abstractmethod
    async def next_product_rows(self, store: StagingStore, after_id: int) -> List[StagingRow]:
        """Rows of the first product with an id greater than ``after_id``."""
        pass

    @abstractmethod
    async def build_product(self, store: StagingStore, rows: List[StagingRow]) -> Optional[Product]:
        """Product built from one id's product rows, without variants."""
        pass

    async def load_variants(self, store: StagingStore, product: Product) -> None:
        """Attach the variants staged under ``product``. Product-only modules keep this no-op."""
        return None

    @abstractmethod
    async def enrich_product(self, store: StagingStore, product: Product) -> None:
        pass

    @abstractmethod
    async def enrich_variant(self, store: StagingStore, variant: ProductVariant) -> None:
        pass

    def products(
        self,
        store: StagingStore,
        enrichers: Sequence["CatalogModule"] = (),
        start_after: int = 0
    ) -> "ReassemblyCursor":
        """Lazy, single-pass sequence of Products read from staging."""
        from ingestion.reassembly import ReassemblyCursor

        return ReassemblyCursor(self, store, enrichers=enrichers, start_after=start_after)

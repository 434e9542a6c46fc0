from dataclasses import dataclass, asdict
from typing import Dict


@dataclass
class PullStats:
    """
    Counters for one module's pull, shared by reference for the run.

    ``pages`` counts result pages ingested (one per bulk result file).
    """

    pages: int = 0
    products: int = 0
    variants: int = 0
    warnings: int = 0
    general_errors: int = 0
    product_errors: int = 0
    variant_errors: int = 0

    def to_dict(self) -> Dict[str, int]:
        return asdict(self)

"""
Transport contract used by bulk pullers and modules.
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Any, AsyncIterator, Dict, List, Optional

from schemas.bulk import BulkOperation


@dataclass
class PagedResponse:
    """Decoded REST body plus the cursor for the next page, if any."""

    data: Any
    next_page_info: Optional[str] = None

    @property
    def has_next_page(self) -> bool:
        return bool(self.next_page_info)


class BulkTransport(ABC):
    """
    Remote calls the pull pipeline depends on.

    Submit and poll raise ``BulkConflictError`` when the API answers with
    errors instead of an operation.
    """

    @abstractmethod
    async def submit_bulk_query(self, query: str) -> BulkOperation:
        pass

    @abstractmethod
    async def poll_bulk_job(self, operation_id: str) -> BulkOperation:
        pass

    @abstractmethod
    def download_bulk_result(self, url: str) -> AsyncIterator[str]:
        """Yield the result file one JSONL line at a time."""
        pass

    @abstractmethod
    async def request(
        self,
        method: str,
        path: str,
        params: Optional[Dict[str, Any]] = None
    ) -> PagedResponse:
        pass


async def get_access_scopes(transport: BulkTransport) -> List[str]:
    """Handles of the access scopes granted to the current token."""
    response = await transport.request("GET", "/admin/oauth/access_scopes.json")
    scopes = (response.data or {}).get("access_scopes") or []
    return [scope.get("handle") for scope in scopes if isinstance(scope, dict) and scope.get("handle")]

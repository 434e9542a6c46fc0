"""
Pytest configuration and fixtures
"""

import json
from typing import Any, AsyncGenerator, AsyncIterator, Dict, List, Optional

import pytest
import pytest_asyncio
from sqlalchemy.ext.asyncio import create_async_engine
from sqlalchemy.pool import NullPool

from core.exceptions import BulkConflictError
from ingestion.extractors.bulk_base import BulkPullerConfig
from ingestion.extractors.transport import BulkTransport, PagedResponse
from ingestion.loaders.staging_store import StagingStore
from schemas.bulk import BulkOperation
from schemas.settings import PullSettings

OPERATION_ID = "gid://shopify/BulkOperation/1001"
RESULT_URL = "https://storage.example.com/bulk/1001.jsonl"


def make_operation(status: str = "RUNNING", url: Optional[str] = None, object_count: int = 0) -> BulkOperation:
    return BulkOperation.model_validate({
        "id": OPERATION_ID,
        "status": status,
        "url": url,
        "objectCount": object_count,
    })


class FakeBulkTransport(BulkTransport):
    """
    In-memory transport. Submit and poll responses are consumed in order;
    the last one repeats. An exception in a response list is raised.
    """

    def __init__(self):
        self.submit_responses: List[Any] = [make_operation("CREATED")]
        self.poll_responses: List[Any] = [make_operation("COMPLETED", RESULT_URL, 1)]
        self.result_lines: List[str] = []
        self.routes: Dict[str, List[str]] = {}
        self.rest_responses: Dict[str, PagedResponse] = {
            "/admin/oauth/access_scopes.json": PagedResponse({"access_scopes": []}),
        }
        self.queries: List[str] = []
        self.submit_calls = 0
        self.poll_calls = 0

    @staticmethod
    def _next(responses: List[Any], index: int) -> Any:
        response = responses[min(index, len(responses) - 1)]
        if isinstance(response, Exception):
            raise response
        return response

    async def submit_bulk_query(self, query: str) -> BulkOperation:
        self.queries.append(query)
        self.submit_calls += 1
        return self._next(self.submit_responses, self.submit_calls - 1)

    async def poll_bulk_job(self, operation_id: str) -> BulkOperation:
        self.poll_calls += 1
        return self._next(self.poll_responses, self.poll_calls - 1)

    async def download_bulk_result(self, url: str) -> AsyncIterator[str]:
        query = self.queries[-1].lstrip() if self.queries else ""
        lines = self.result_lines
        for prefix, routed in self.routes.items():
            if query.startswith(prefix):
                lines = routed
                break
        for line in lines:
            yield line

    async def request(self, method: str, path: str, params=None) -> PagedResponse:
        return self.rest_responses.get(path, PagedResponse({}))

    def set_records(self, records: List[Any]) -> None:
        self.result_lines = [r if isinstance(r, str) else json.dumps(r) for r in records]

    def route_records(self, query_prefix: str, records: List[Any]) -> None:
        """Serve ``records`` to queries starting with ``query_prefix``."""
        self.routes[query_prefix] = [r if isinstance(r, str) else json.dumps(r) for r in records]


def blocked_error() -> BulkConflictError:
    return BulkConflictError([{"message": "A bulk query operation for this app and shop is already in progress"}])


def throttled_error() -> BulkConflictError:
    return BulkConflictError([{"message": "Throttled"}])


@pytest.fixture
def fake_transport() -> FakeBulkTransport:
    return FakeBulkTransport()


@pytest.fixture
def conflict_errors():
    """Factories for blocked and throttled bulk conflicts"""
    return {"blocked": blocked_error, "throttled": throttled_error}


@pytest.fixture
def operation_factory():
    return make_operation


@pytest.fixture
def fast_config() -> BulkPullerConfig:
    """Puller config with no waiting"""
    return BulkPullerConfig(
        max_blocked_attempts=3,
        max_throttled_attempts=3,
        blocked_wait=0,
        throttled_wait=0,
        poll_interval=0,
        max_poll_attempts=10,
        max_poll_errors=2,
    )


@pytest.fixture
def settings_factory():
    """Build PullSettings from client options with test defaults"""
    def _build(**options) -> PullSettings:
        base = {
            "shop_name": "test-store",
            "oauth_token": "shpat_test",
            "table_prefix": "stg_test",
        }
        base.update(options)
        return PullSettings.from_client_options(base)

    return _build


@pytest.fixture
def pull_settings(settings_factory) -> PullSettings:
    return settings_factory()


@pytest_asyncio.fixture(scope="function")
async def staging_engine(tmp_path):
    """SQLite staging database in a temporary directory"""
    engine = create_async_engine(
        f"sqlite+aiosqlite:///{tmp_path / 'staging.db'}",
        echo=False,
        poolclass=NullPool,
    )
    yield engine
    await engine.dispose()


@pytest_asyncio.fixture(scope="function")
async def staging_store(staging_engine) -> AsyncGenerator[StagingStore, None]:
    async with StagingStore(staging_engine, "stg_test") as store:
        yield store

"""
Unit tests for the bulk puller lifecycle
"""

import pytest
from unittest.mock import AsyncMock, patch

from core.exceptions import ApiError, BulkConflictError, UnexpectedResponseError
from ingestion.extractors.bulk_base import BulkPuller, BulkPullerConfig
from models.base import BulkState
from models.pull_stats import PullStats


class RecordingPuller(BulkPuller):
    """Puller that keeps every record it is handed"""

    def __init__(self, *args, **kwargs):
        super().__init__(*args, **kwargs)
        self.records = []
        self.finished = False

    def get_query(self):
        return "products { edges { node { id } } }"

    async def process_record(self, record):
        self.records.append(record)

    async def finish(self):
        self.finished = True


def build_puller(pull_settings, transport, config):
    return RecordingPuller(pull_settings, transport, PullStats(), config)


class TestBulkSubmission:
    """Test submit retries for blocked and throttled conflicts"""

    @pytest.mark.asyncio
    async def test_blocked_retry_bound(self, pull_settings, fake_transport, conflict_errors):
        """After N consecutive blocked rejections an ApiError is raised"""
        fake_transport.submit_responses = [conflict_errors["blocked"]()]
        config = BulkPullerConfig(max_blocked_attempts=2, blocked_wait=0, poll_interval=0)
        puller = build_puller(pull_settings, fake_transport, config)

        with pytest.raises(ApiError) as exc_info:
            await puller.do_bulk_pull()

        assert fake_transport.submit_calls == 2
        assert "already running" in exc_info.value.message
        assert exc_info.value.data["errors"][0]["message"].endswith("already in progress")
        assert puller.state is BulkState.FAILED

    @pytest.mark.asyncio
    async def test_blocked_waits_between_attempts(self, pull_settings, fake_transport, conflict_errors, operation_factory):
        fake_transport.submit_responses = [
            conflict_errors["blocked"](),
            conflict_errors["blocked"](),
            operation_factory("CREATED"),
        ]
        config = BulkPullerConfig(max_blocked_attempts=5, blocked_wait=7, throttled_wait=11, poll_interval=0)
        puller = build_puller(pull_settings, fake_transport, config)

        with patch("ingestion.extractors.bulk_base.asyncio.sleep", new_callable=AsyncMock) as mock_sleep:
            operation = await puller.run_bulk_query(puller.get_query())

        assert operation.is_running
        assert fake_transport.submit_calls == 3
        assert [call.args[0] for call in mock_sleep.await_args_list] == [7, 7]

    @pytest.mark.asyncio
    async def test_throttled_uses_its_own_wait(self, pull_settings, fake_transport, conflict_errors, operation_factory):
        fake_transport.submit_responses = [conflict_errors["throttled"](), operation_factory("CREATED")]
        config = BulkPullerConfig(blocked_wait=7, throttled_wait=11, poll_interval=0)
        puller = build_puller(pull_settings, fake_transport, config)

        with patch("ingestion.extractors.bulk_base.asyncio.sleep", new_callable=AsyncMock) as mock_sleep:
            await puller.run_bulk_query(puller.get_query())

        mock_sleep.assert_awaited_once_with(11)

    @pytest.mark.asyncio
    async def test_throttled_retry_bound(self, pull_settings, fake_transport, conflict_errors, fast_config):
        fake_transport.submit_responses = [conflict_errors["throttled"]()]
        puller = build_puller(pull_settings, fake_transport, fast_config)

        with pytest.raises(ApiError):
            await puller.do_bulk_pull()

        assert fake_transport.submit_calls == fast_config.max_throttled_attempts

    @pytest.mark.asyncio
    async def test_multiple_errors_are_not_retried(self, pull_settings, fake_transport, fast_config):
        fake_transport.submit_responses = [
            BulkConflictError([{"message": "already in progress"}, {"message": "Throttled"}])
        ]
        puller = build_puller(pull_settings, fake_transport, fast_config)

        with pytest.raises(BulkConflictError) as exc_info:
            await puller.do_bulk_pull()

        assert fake_transport.submit_calls == 1
        assert len(exc_info.value.errors) == 2

    @pytest.mark.asyncio
    async def test_dead_submission_is_api_error(self, pull_settings, fake_transport, fast_config, operation_factory):
        fake_transport.submit_responses = [operation_factory("FAILED")]
        puller = build_puller(pull_settings, fake_transport, fast_config)

        with pytest.raises(ApiError):
            await puller.do_bulk_pull()


class TestBulkPolling:
    """Test status polling"""

    @pytest.mark.asyncio
    async def test_polls_until_complete(self, pull_settings, fake_transport, fast_config, operation_factory):
        fake_transport.poll_responses = [
            operation_factory("RUNNING"),
            operation_factory("RUNNING"),
            operation_factory("COMPLETED", "https://storage.example.com/r.jsonl", 1),
        ]
        fake_transport.set_records([{"id": "gid://shopify/Product/1"}])
        puller = build_puller(pull_settings, fake_transport, fast_config)

        await puller.do_bulk_pull()

        assert fake_transport.poll_calls == 3
        assert puller.records == [{"id": "gid://shopify/Product/1"}]
        assert puller.finished
        assert puller.state is BulkState.IDLE
        assert puller.stats.pages == 1

    @pytest.mark.asyncio
    async def test_throttled_poll_is_retried(self, pull_settings, fake_transport, fast_config, conflict_errors, operation_factory):
        fake_transport.poll_responses = [
            conflict_errors["throttled"](),
            operation_factory("COMPLETED", "https://storage.example.com/r.jsonl", 1),
        ]
        puller = build_puller(pull_settings, fake_transport, fast_config)

        await puller.do_bulk_pull()

        assert fake_transport.poll_calls == 2

    @pytest.mark.asyncio
    async def test_canceled_operation_fails(self, pull_settings, fake_transport, fast_config, operation_factory):
        fake_transport.poll_responses = [operation_factory("CANCELED")]
        puller = build_puller(pull_settings, fake_transport, fast_config)

        with pytest.raises(ApiError, match="canceled"):
            await puller.do_bulk_pull()

    @pytest.mark.asyncio
    async def test_failed_status_counts_towards_poll_errors(self, pull_settings, fake_transport, fast_config, operation_factory):
        fake_transport.poll_responses = [operation_factory("FAILED")]
        puller = build_puller(pull_settings, fake_transport, fast_config)

        with pytest.raises(ApiError):
            await puller.do_bulk_pull()

        assert fake_transport.poll_calls == fast_config.max_poll_errors + 1

    @pytest.mark.asyncio
    async def test_poll_attempts_are_bounded(self, pull_settings, fake_transport, fast_config, operation_factory):
        fake_transport.poll_responses = [operation_factory("RUNNING")]
        puller = build_puller(pull_settings, fake_transport, fast_config)

        with pytest.raises(ApiError, match="did not complete"):
            await puller.do_bulk_pull()

        assert fake_transport.poll_calls == fast_config.max_poll_attempts

    @pytest.mark.asyncio
    async def test_empty_result_skips_download(self, pull_settings, fake_transport, fast_config, operation_factory):
        fake_transport.poll_responses = [operation_factory("COMPLETED", None, 0)]
        fake_transport.set_records([{"id": "gid://shopify/Product/1"}])
        puller = build_puller(pull_settings, fake_transport, fast_config)

        await puller.do_bulk_pull()

        assert puller.records == []
        assert puller.finished

    @pytest.mark.asyncio
    async def test_completed_without_url(self, pull_settings, fake_transport, fast_config, operation_factory):
        fake_transport.poll_responses = [operation_factory("COMPLETED", None, 5)]
        puller = build_puller(pull_settings, fake_transport, fast_config)

        with pytest.raises(UnexpectedResponseError):
            await puller.do_bulk_pull()


class TestBulkResultParsing:
    """Test per-line recovery while reading results"""

    @pytest.mark.asyncio
    async def test_malformed_lines_are_counted_and_skipped(self, pull_settings, fake_transport, fast_config):
        fake_transport.set_records([
            {"id": "gid://shopify/Product/1"},
            "{not json",
            "[1, 2]",
            "",
            {"id": "gid://shopify/Product/2"},
        ])
        puller = build_puller(pull_settings, fake_transport, fast_config)

        await puller.do_bulk_pull()

        assert [r["id"] for r in puller.records] == ["gid://shopify/Product/1", "gid://shopify/Product/2"]
        assert puller.stats.general_errors == 2

    def test_parse_gid_counts_invalid_ids(self, pull_settings, fake_transport, fast_config):
        puller = build_puller(pull_settings, fake_transport, fast_config)

        assert puller.parse_gid("not-a-gid") is None
        assert puller.parse_gid("gid://shopify/Product/5").id == 5
        assert puller.stats.general_errors == 1

"""
Unit tests for the CSV output writer
"""

import pytest

from ingestion.loaders.csv_writer import write_csv


async def rows_from(items):
    for item in items:
        yield item


class TestWriteCSV:
    """Test column layout, chunking and quoting"""

    @pytest.mark.asyncio
    async def test_columns_follow_field_list(self, tmp_path):
        path = tmp_path / "out.csv"
        rows = [{"b": 2, "a": 1, "ignored": "x"}, {"a": 3}]

        written = await write_csv(rows_from(rows), ["a", "b"], str(path))

        assert written == 2
        assert path.read_text().splitlines() == ["a,b", "1,2", "3,"]

    @pytest.mark.asyncio
    async def test_header_only_when_no_rows(self, tmp_path):
        path = tmp_path / "out.csv"

        written = await write_csv(rows_from([]), ["id", "item_group_id"], str(path))

        assert written == 0
        assert path.read_text().splitlines() == ["id,item_group_id"]

    @pytest.mark.asyncio
    async def test_header_written_once_across_chunks(self, tmp_path):
        path = tmp_path / "out.csv"
        rows = [{"id": i} for i in range(5)]

        written = await write_csv(rows_from(rows), ["id"], str(path), chunk_size=2)

        assert written == 5
        assert path.read_text().splitlines() == ["id", "0", "1", "2", "3", "4"]

    @pytest.mark.asyncio
    async def test_delimiter_and_enclosure(self, tmp_path):
        path = tmp_path / "out.csv"
        rows = [{"title": "Shirt; blue", "tags": "a"}]

        await write_csv(rows_from(rows), ["title", "tags"], str(path), delimiter=";", enclosure="'")

        assert path.read_text().splitlines() == ["title;tags", "'Shirt; blue';a"]

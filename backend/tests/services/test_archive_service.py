"""Tests for the archive writer."""

import csv
import gzip
import io
import json
from datetime import datetime, timezone
from pathlib import Path
from uuid import UUID

import pytest

from chryso.core.exceptions import ConfigurationError, StorageError
from chryso.models.retention_policy import ArchiveFormat
from chryso.services.archive_service import ArchiveWriter

NOW = datetime(2024, 3, 1, 2, 0, 0, tzinfo=timezone.utc)


@pytest.fixture
def writer() -> ArchiveWriter:
    return ArchiveWriter()


@pytest.fixture
def records():
    return [
        {
            "id": UUID("00000000-0000-0000-0000-000000000001"),
            "title": "Boiler inspection",
            "created_at": datetime(2023, 12, 1, tzinfo=timezone.utc),
            "data": {"pressure": 2.5, "tags": ["a", "b"]},
            "notes": None,
        },
        {
            "id": UUID("00000000-0000-0000-0000-000000000002"),
            "title": 'Quote "test"',
            "created_at": datetime(2023, 12, 2, tzinfo=timezone.utc),
            "data": {},
            "notes": "second",
        },
    ]


class TestEncoding:
    """Tests for archive serialization."""

    def test_json_is_indented_and_serializes_uuids(self, writer, records):
        text = writer.to_json(records)
        parsed = json.loads(text)

        assert "\n  " in text
        assert parsed[0]["id"] == "00000000-0000-0000-0000-000000000001"
        assert parsed[0]["created_at"] == "2023-12-01T00:00:00+00:00"

    def test_csv_header_from_first_record(self, writer, records):
        rows = list(csv.reader(io.StringIO(writer.to_csv(records))))

        assert rows[0] == ["id", "title", "created_at", "data", "notes"]
        assert len(rows) == 3

    def test_csv_quotes_every_cell(self, writer, records):
        first_line = writer.to_csv(records).splitlines()[0]
        assert first_line == '"id","title","created_at","data","notes"'

    def test_csv_nested_values_are_json(self, writer, records):
        rows = list(csv.reader(io.StringIO(writer.to_csv(records))))

        assert json.loads(rows[1][3]) == {"pressure": 2.5, "tags": ["a", "b"]}
        assert rows[1][4] == ""
        assert rows[2][1] == 'Quote "test"'

    def test_csv_empty(self, writer):
        assert writer.to_csv([]) == ""

    def test_compressed_is_gzip_json(self, writer, records):
        payload = writer.encode(records, ArchiveFormat.COMPRESSED)
        parsed = json.loads(gzip.decompress(payload))
        assert len(parsed) == 2


class TestWrite:
    """Tests for writing archive files."""

    @pytest.mark.asyncio
    async def test_writes_file_named_after_label(self, writer, records, tmp_path):
        result = await writer.write(records, "forms", str(tmp_path), ArchiveFormat.JSON, NOW)

        path = Path(result.location)
        assert path.parent == tmp_path
        assert path.name.startswith("forms-2024-03-01T02-00-00")
        assert path.suffix == ".json"
        assert result.size == path.stat().st_size
        assert result.record_count == 2
        assert len(json.loads(path.read_text())) == 2

    @pytest.mark.asyncio
    async def test_compressed_extension(self, writer, records, tmp_path):
        result = await writer.write(records, "users", str(tmp_path), ArchiveFormat.COMPRESSED, NOW)
        assert result.location.endswith(".json.gz")

    @pytest.mark.asyncio
    async def test_creates_missing_directory(self, writer, records, tmp_path):
        target = tmp_path / "nested" / "archive"
        result = await writer.write(records, "forms", str(target), ArchiveFormat.CSV, NOW)

        assert Path(result.location).exists()
        assert result.location.endswith(".csv")

    @pytest.mark.asyncio
    async def test_missing_location(self, writer, records):
        with pytest.raises(ConfigurationError):
            await writer.write(records, "forms", None, ArchiveFormat.JSON, NOW)

    @pytest.mark.asyncio
    async def test_unwritable_location(self, writer, records, tmp_path):
        blocker = tmp_path / "not-a-directory"
        blocker.write_text("occupied")

        with pytest.raises(StorageError):
            await writer.write(records, "forms", str(blocker), ArchiveFormat.JSON, NOW)

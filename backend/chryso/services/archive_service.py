"""Archive sink writing matched records to disk before deletion."""

import asyncio
import csv
import gzip
import io
import json
from dataclasses import dataclass
from datetime import date, datetime
from decimal import Decimal
from enum import Enum
from pathlib import Path
from typing import Any
from uuid import UUID

import structlog

from chryso.core.exceptions import ConfigurationError, StorageError
from chryso.models.retention_policy import ArchiveFormat

logger = structlog.get_logger(__name__)

FILE_EXTENSIONS = {
    ArchiveFormat.JSON: "json",
    ArchiveFormat.CSV: "csv",
    ArchiveFormat.COMPRESSED: "json.gz",
}


@dataclass(frozen=True)
class ArchiveResult:
    """Where an archive was written and how large it is."""

    location: str
    size: int
    record_count: int


def _json_default(value: Any) -> Any:
    if isinstance(value, (datetime, date)):
        return value.isoformat()
    if isinstance(value, UUID):
        return str(value)
    if isinstance(value, Enum):
        return value.value
    if isinstance(value, Decimal):
        return float(value)
    if isinstance(value, (set, frozenset)):
        return sorted(value)
    raise TypeError(f"Object of type {type(value).__name__} is not JSON serializable")


class ArchiveWriter:
    """Serializes records to json, csv or gzip-compressed json files."""

    @staticmethod
    def to_json(records: list[dict[str, Any]], indent: int | None = 2) -> str:
        return json.dumps(records, indent=indent, default=_json_default)

    @staticmethod
    def to_csv(records: list[dict[str, Any]]) -> str:
        """Convert records to CSV.

        The header row comes from the first record's keys. Nested values are
        JSON-encoded; every cell is quoted.
        """
        if not records:
            return ""

        columns = list(records[0].keys())
        output = io.StringIO()
        writer = csv.writer(output, quoting=csv.QUOTE_ALL, lineterminator="\n")
        writer.writerow(columns)
        for record in records:
            writer.writerow([ArchiveWriter._format_value(record.get(col)) for col in columns])

        return output.getvalue()

    @staticmethod
    def _format_value(value: Any) -> str:
        if value is None:
            return ""
        if isinstance(value, (list, dict)):
            return json.dumps(value, default=_json_default)
        if isinstance(value, (datetime, date)):
            return value.isoformat()
        if isinstance(value, Enum):
            return str(value.value)
        return str(value)

    def encode(self, records: list[dict[str, Any]], archive_format: ArchiveFormat) -> bytes:
        archive_format = ArchiveFormat(archive_format)
        if archive_format == ArchiveFormat.JSON:
            return self.to_json(records).encode("utf-8")
        if archive_format == ArchiveFormat.CSV:
            return self.to_csv(records).encode("utf-8")
        return gzip.compress(self.to_json(records, indent=None).encode("utf-8"))

    async def write(
        self,
        records: list[dict[str, Any]],
        label: str,
        archive_location: str | None,
        archive_format: ArchiveFormat,
        now: datetime,
    ) -> ArchiveResult:
        """Write ``records`` to a new file under ``archive_location``.

        Args:
            records: Records to archive.
            label: File name prefix, e.g. ``forms``.
            archive_location: Target directory; created when missing.
            archive_format: Serialization to use.
            now: Run time, used in the file name.

        Returns:
            The written file path and its size in bytes.

        Raises:
            ConfigurationError: If no archive location is configured.
            StorageError: If the file cannot be written.
        """
        if not archive_location:
            raise ConfigurationError(
                "Archiving is enabled but no archive location is configured",
            )

        archive_format = ArchiveFormat(archive_format)
        timestamp = now.isoformat().replace(":", "-").replace(".", "-").replace("+", "_")
        path = Path(archive_location) / f"{label}-{timestamp}.{FILE_EXTENSIONS[archive_format]}"
        payload = self.encode(records, archive_format)

        try:
            await asyncio.to_thread(self._write_file, path, payload)
        except OSError as e:
            raise StorageError(
                f"Failed to write archive {path}",
                details={"error": str(e), "location": str(path)},
            ) from e

        logger.info(
            "Archived retention records",
            label=label,
            records=len(records),
            location=str(path),
            size=len(payload),
        )
        return ArchiveResult(location=str(path), size=len(payload), record_count=len(records))

    @staticmethod
    def _write_file(path: Path, payload: bytes) -> None:
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_bytes(payload)

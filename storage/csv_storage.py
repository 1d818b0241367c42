"""CSV file backend for the assignment ledger."""
import csv
import logging
import os
import tempfile
from pathlib import Path
from typing import List, Tuple

from processor.errors import StorageCorrupt
from storage.ledger import CountRow, RecordRow

logger = logging.getLogger(__name__)


class CsvLedgerStorage:
    """Stores ledger counts and records as two CSV files with header rows."""

    COUNTS_FILE = 'assignment_counts.csv'
    RECORDS_FILE = 'assigned_events.csv'
    COUNTS_HEADER = ['Team', 'Family', 'Count']
    RECORDS_HEADER = ['Team', 'EventID', 'Assignee']

    def __init__(self, directory: str):
        """
        Args:
            directory: Directory holding the ledger files
        """
        self.directory = Path(directory)
        self.counts_path = self.directory / self.COUNTS_FILE
        self.records_path = self.directory / self.RECORDS_FILE

    def read(self) -> Tuple[List[CountRow], List[RecordRow]]:
        """
        Read both ledger tables. Missing files read as empty tables.

        Returns:
            Tuple of (count rows, record rows)

        Raises:
            StorageCorrupt: If a file is unreadable or malformed
        """
        count_rows = [
            (team, name, self._parse_count(value, self.counts_path))
            for team, name, value in self._read_table(
                self.counts_path, self.COUNTS_HEADER
            )
        ]
        record_rows = [
            (team, key, assignee)
            for team, key, assignee in self._read_table(
                self.records_path, self.RECORDS_HEADER
            )
        ]
        return count_rows, record_rows

    def write(self, counts: List[CountRow], records: List[RecordRow]) -> None:
        """
        Replace both ledger tables.

        Args:
            counts: (team, family, count) rows
            records: (team, key, assignee) rows
        """
        self.directory.mkdir(parents=True, exist_ok=True)
        self._write_table(self.counts_path, self.COUNTS_HEADER, counts)
        self._write_table(self.records_path, self.RECORDS_HEADER, records)
        logger.info(f"Wrote ledger files to {self.directory}")

    def _read_table(self, path: Path, header: List[str]) -> List[List[str]]:
        if not path.exists():
            logger.info(f"Ledger file {path} not found, treating as empty")
            return []

        try:
            with path.open(newline='', encoding='utf-8') as f:
                reader = csv.DictReader(f)
                if reader.fieldnames is None:
                    return []
                missing = [col for col in header if col not in reader.fieldnames]
                if missing:
                    raise StorageCorrupt(
                        f"{path} is missing columns: {', '.join(missing)}"
                    )

                rows = []
                for line_no, row in enumerate(reader, start=2):
                    values = [row.get(col) for col in header]
                    if any(value is None or not value.strip() for value in values):
                        raise StorageCorrupt(f"{path} line {line_no} is incomplete")
                    rows.append([value.strip() for value in values])
                return rows
        except (OSError, UnicodeDecodeError, csv.Error) as e:
            raise StorageCorrupt(f"Could not read {path}: {e}") from e

    @staticmethod
    def _parse_count(value: str, path: Path) -> int:
        try:
            return int(value)
        except ValueError as e:
            raise StorageCorrupt(f"{path} has a non-numeric count: {value}") from e

    @staticmethod
    def _write_table(path: Path, header: List[str], rows: list) -> None:
        # Temp file in the same directory, then atomic rename.
        fd, tmp_name = tempfile.mkstemp(
            dir=path.parent, prefix=f".{path.name}.", suffix='.tmp'
        )
        try:
            with os.fdopen(fd, 'w', newline='', encoding='utf-8') as f:
                writer = csv.writer(f)
                writer.writerow(header)
                writer.writerows(rows)
            os.replace(tmp_name, path)
        except BaseException:
            if os.path.exists(tmp_name):
                os.unlink(tmp_name)
            raise

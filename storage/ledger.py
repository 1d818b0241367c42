"""Assignment ledger holding roster records and per-family counts."""
import logging
from collections import defaultdict
from typing import Dict, Iterable, List, Optional, Protocol, Tuple

from processor.errors import DuplicateAssignmentError, StorageCorrupt
from processor.models import ExternalRow

logger = logging.getLogger(__name__)

UNASSIGNED = None

CountRow = Tuple[str, str, int]
RecordRow = Tuple[str, str, str]


class LedgerStorage(Protocol):
    """Durable backend for the ledger's two tables."""

    def read(self) -> Tuple[List[CountRow], List[RecordRow]]:
        ...

    def write(self, counts: List[CountRow], records: List[RecordRow]) -> None:
        ...


class AssignmentLedger:
    """
    In-memory ledger of assignment records and counts, keyed by team.

    Every mutation of a record adjusts the matching count in the same step,
    so for each team the counts always sum to the number of records.
    """

    def __init__(self):
        self._records: Dict[str, Dict[str, str]] = defaultdict(dict)
        self._counts: Dict[str, Dict[str, int]] = defaultdict(dict)

    def load(self, storage: LedgerStorage) -> List[str]:
        """
        Replace the ledger contents with the storage snapshot.

        A missing store loads as empty. An unreadable store also loads as
        empty and is reported as a warning rather than failing the run.

        Args:
            storage: Ledger storage backend

        Returns:
            List of warning messages (empty when the load was clean)
        """
        self._records.clear()
        self._counts.clear()
        warnings = []

        try:
            count_rows, record_rows = storage.read()
            records, counts = self._build(count_rows, record_rows)
        except StorageCorrupt as e:
            message = f"Ledger storage unreadable, starting empty: {e}"
            logger.warning(message)
            return [message]

        for team, team_records in records.items():
            rebuilt = self._tally(team_records.values())
            stored = {
                name: value for name, value in counts.get(team, {}).items()
                if value
            }
            if rebuilt != stored:
                message = (
                    f"Stored counts for team '{team}' disagree with its "
                    f"records, rebuilding counts from records"
                )
                logger.warning(message)
                warnings.append(message)
                counts[team] = {
                    name: 0 for name in counts.get(team, {})
                }
                counts[team].update(rebuilt)

        for team, team_counts in counts.items():
            if team not in records and any(team_counts.values()):
                message = (
                    f"Team '{team}' has counts but no records, resetting counts"
                )
                logger.warning(message)
                warnings.append(message)
                counts[team] = {name: 0 for name in team_counts}

        self._records.update(records)
        self._counts.update(counts)
        logger.info(
            f"Loaded ledger with {sum(len(r) for r in records.values())} "
            f"records for {len(records)} teams"
        )
        return warnings

    def save(self, storage: LedgerStorage) -> None:
        """
        Write a complete snapshot of the ledger.

        Args:
            storage: Ledger storage backend
        """
        count_rows = [
            (team, name, value)
            for team in sorted(self._counts)
            for name, value in self._counts[team].items()
        ]
        record_rows = [
            (team, key, assignee)
            for team in sorted(self._records)
            for key, assignee in self._records[team].items()
        ]
        storage.write(count_rows, record_rows)
        logger.info(
            f"Saved ledger with {len(record_rows)} records and "
            f"{len(count_rows)} counts"
        )

    def ensure_pool(self, team: str, pool: Iterable[str]) -> None:
        """Seed zero counts so every pool member appears in the snapshot."""
        team_counts = self._counts[team]
        for name in pool:
            team_counts.setdefault(name, 0)

    def get(self, team: str, key: str) -> Optional[str]:
        """Return the assignee for a key, or UNASSIGNED."""
        return self._records.get(team, {}).get(key, UNASSIGNED)

    def record_new(self, team: str, key: str, name: str) -> None:
        """
        Create a new assignment record and count it.

        Args:
            team: Team name
            key: Event or role key
            name: Assignee

        Raises:
            DuplicateAssignmentError: If the key is already assigned
        """
        existing = self.get(team, key)
        if existing is not UNASSIGNED:
            raise DuplicateAssignmentError(team, key, existing)

        self._records[team][key] = name
        self._increment(team, name)

    def reconcile(self, team: str, external_rows: Iterable[ExternalRow]) -> int:
        """
        Merge assignments reported by an external sink; the external
        value wins over the local record.

        Args:
            team: Team name
            external_rows: Rows read back from the sink

        Returns:
            Number of records created or overwritten
        """
        changed = 0
        for row in external_rows:
            assignee = (row.assignee or '').strip()
            if not assignee:
                continue

            previous = self.get(team, row.key)
            if previous == assignee:
                continue

            if previous is not UNASSIGNED:
                self._decrement(team, previous)
            self._records[team][row.key] = assignee
            self._increment(team, assignee)
            changed += 1

            logger.info(
                f"Reconciled '{row.key}' for team '{team}': "
                f"{previous or 'unassigned'} -> {assignee}"
            )

        return changed

    def counts_for(self, team: str) -> Dict[str, int]:
        """Return a copy of the team's counts."""
        return dict(self._counts.get(team, {}))

    def records_for(self, team: str) -> Dict[str, str]:
        """Return a copy of the team's records."""
        return dict(self._records.get(team, {}))

    def teams(self) -> List[str]:
        return sorted(set(self._records) | set(self._counts))

    def _increment(self, team: str, name: str) -> None:
        team_counts = self._counts[team]
        team_counts[name] = team_counts.get(name, 0) + 1

    def _decrement(self, team: str, name: str) -> None:
        team_counts = self._counts[team]
        team_counts[name] = max(team_counts.get(name, 0) - 1, 0)

    @staticmethod
    def _tally(assignees: Iterable[str]) -> Dict[str, int]:
        tally: Dict[str, int] = {}
        for name in assignees:
            tally[name] = tally.get(name, 0) + 1
        return tally

    @staticmethod
    def _build(
        count_rows: List[CountRow],
        record_rows: List[RecordRow]
    ) -> Tuple[Dict[str, Dict[str, str]], Dict[str, Dict[str, int]]]:
        records: Dict[str, Dict[str, str]] = {}
        counts: Dict[str, Dict[str, int]] = {}

        for team, key, assignee in record_rows:
            team_records = records.setdefault(team, {})
            if key in team_records:
                raise StorageCorrupt(
                    f"Duplicate record '{key}' for team '{team}'"
                )
            team_records[key] = assignee

        for team, name, value in count_rows:
            if value < 0:
                raise StorageCorrupt(
                    f"Negative count {value} for '{name}' in team '{team}'"
                )
            counts.setdefault(team, {})[name] = value

        return records, counts

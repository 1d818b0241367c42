"""CSV roster output with read-back of human edits."""
import csv
import logging
import re
from pathlib import Path
from typing import List

from processor.errors import SinkUnavailable
from processor.models import Decision, ExternalRow, TeamConfig, role_key

logger = logging.getLogger(__name__)


def slugify(value: str) -> str:
    value = re.sub(r'[^a-z0-9]+', '_', value.strip().lower())
    return value.strip('_') or 'team'


class CsvRosterSink:
    """Writes one roster CSV per team and reads it back for reconcile."""

    BASE_COLUMNS = [
        'Event',
        'Location',
        'Date',
        'Time',
        'Duration (minutes)',
        'Locker Room Monitor',
    ]
    MONITOR_COLUMN = 'Locker Room Monitor'
    ID_COLUMN = 'Event ID'

    def __init__(self, output_dir: str):
        """
        Args:
            output_dir: Directory for roster files
        """
        self.output_dir = Path(output_dir)

    def path_for(self, team: TeamConfig) -> Path:
        return self.output_dir / f"locker_room_monitors_{slugify(team.output_name)}.csv"

    def columns_for(self, team: TeamConfig) -> List[str]:
        return self.BASE_COLUMNS + list(team.auxiliary_roles) + [self.ID_COLUMN]

    def write(self, team: TeamConfig, decisions: List[Decision]) -> Path:
        """
        Write the team's sorted decisions.

        Args:
            team: Team configuration
            decisions: Sorted decision records

        Returns:
            Path of the written file

        Raises:
            SinkUnavailable: If the file cannot be written
        """
        path = self.path_for(team)
        try:
            self.output_dir.mkdir(parents=True, exist_ok=True)
            with path.open('w', newline='', encoding='utf-8') as f:
                writer = csv.writer(f)
                writer.writerow(self.columns_for(team))
                for decision in decisions:
                    writer.writerow(
                        [
                            decision.summary,
                            decision.location,
                            decision.date,
                            decision.time,
                            decision.duration_minutes,
                            decision.monitor,
                        ]
                        + [decision.roles.get(role, '') for role in team.auxiliary_roles]
                        + [decision.event_id]
                    )
        except OSError as e:
            raise SinkUnavailable(f"Could not write {path}: {e}") from e

        logger.info(
            f"Roster for {team.name} saved to '{path}' ({len(decisions)} events)"
        )
        return path

    def read_rows(self, team: TeamConfig) -> List[ExternalRow]:
        """
        Read the previously published roster back as external rows.

        The monitor column maps to the event key and each role column to
        the event's role key. A missing file yields no rows.

        Args:
            team: Team configuration

        Returns:
            List of ExternalRow objects

        Raises:
            SinkUnavailable: If the file exists but cannot be read
        """
        path = self.path_for(team)
        if not path.exists():
            return []

        rows = []
        try:
            with path.open(newline='', encoding='utf-8') as f:
                reader = csv.DictReader(f)
                fieldnames = reader.fieldnames or []
                if self.ID_COLUMN not in fieldnames:
                    logger.warning(
                        f"{path} has no '{self.ID_COLUMN}' column, skipping read-back"
                    )
                    return []

                roles = [role for role in team.auxiliary_roles if role in fieldnames]
                for row in reader:
                    event_id = (row.get(self.ID_COLUMN) or '').strip()
                    if not event_id:
                        continue
                    rows.append(
                        ExternalRow(
                            key=event_id,
                            assignee=(row.get(self.MONITOR_COLUMN) or '').strip()
                        )
                    )
                    for role in roles:
                        rows.append(
                            ExternalRow(
                                key=role_key(event_id, role),
                                assignee=(row.get(role) or '').strip()
                            )
                        )
        except (OSError, UnicodeDecodeError, csv.Error) as e:
            raise SinkUnavailable(f"Could not read {path}: {e}") from e

        logger.info(f"Read back {len(rows)} assignments from '{path}'")
        return rows

"""iCalendar export of roster assignments."""
import hashlib
import logging
from datetime import date, datetime, timedelta, timezone
from pathlib import Path
from typing import List

from icalendar import Calendar, Event as IcalEvent

from processor.errors import SinkUnavailable
from processor.models import Decision, TeamConfig, role_key
from roster_output.csv_sink import slugify

logger = logging.getLogger(__name__)

PRODID = '-//locker-room-roster//EN'

INSTRUCTIONS = (
    'Locker rooms should be monitored 30 minutes before and closed '
    '15 minutes after the scheduled practice/game.'
)


class IcsExportSink:
    """Writes one all-day calendar entry per assignment for a team."""

    def __init__(self, output_dir: str):
        """
        Args:
            output_dir: Directory for calendar files
        """
        self.output_dir = Path(output_dir)

    def path_for(self, team: TeamConfig) -> Path:
        return self.output_dir / f"locker_room_monitor_{slugify(team.output_name)}.ics"

    def build_calendar(self, team: TeamConfig, decisions: List[Decision]) -> Calendar:
        """
        Build the export calendar for a team.

        Args:
            team: Team configuration
            decisions: Sorted decision records

        Returns:
            icalendar Calendar
        """
        calendar = Calendar()
        calendar.add('prodid', PRODID)
        calendar.add('version', '2.0')
        calendar.add('x-wr-calname', f"{team.name} Locker Room Monitors")

        stamp = datetime.now(timezone.utc)
        for decision in decisions:
            if decision.monitor:
                calendar.add_component(
                    self._entry(
                        team, decision, decision.event_id,
                        decision.monitor, 'Locker Room Monitor', stamp
                    )
                )
            for role, name in decision.roles.items():
                if not name:
                    continue
                calendar.add_component(
                    self._entry(
                        team, decision, role_key(decision.event_id, role),
                        name, role, stamp
                    )
                )

        return calendar

    def write(self, team: TeamConfig, decisions: List[Decision]) -> Path:
        """
        Write the team's export calendar.

        Raises:
            SinkUnavailable: If the file cannot be written
        """
        path = self.path_for(team)
        calendar = self.build_calendar(team, decisions)
        try:
            self.output_dir.mkdir(parents=True, exist_ok=True)
            path.write_bytes(calendar.to_ical())
        except OSError as e:
            raise SinkUnavailable(f"Could not write {path}: {e}") from e

        logger.info(f"iCal feed for {team.name} saved to '{path}'")
        return path

    def _entry(
        self,
        team: TeamConfig,
        decision: Decision,
        key: str,
        name: str,
        role: str,
        stamp: datetime
    ) -> IcalEvent:
        day = date.fromisoformat(decision.date)
        title = name if role == 'Locker Room Monitor' else f"{name} ({role})"

        entry = IcalEvent()
        entry.add('uid', self.entry_uid(team.name, key))
        entry.add('dtstamp', stamp)
        entry.add('dtstart', day)
        entry.add('dtend', day + timedelta(days=1))
        entry.add('summary', title)
        entry.add('description', self._description(decision, name, role))
        return entry

    @staticmethod
    def _description(decision: Decision, name: str, role: str) -> str:
        lines = [f"{role}: {name}", '']
        if role == 'Locker Room Monitor':
            lines += ['Instructions:', f"- {INSTRUCTIONS}", '']
        lines += [
            f"Event: {decision.summary}",
            f"Location: {decision.location}",
            f"Scheduled Event Time: {decision.date} at {decision.time} "
            f"({decision.duration_minutes} minutes)",
        ]
        return '\n'.join(lines)

    @staticmethod
    def entry_uid(team_name: str, key: str) -> str:
        digest = hashlib.sha1(f"{team_name}|{key}".encode('utf-8')).hexdigest()
        return f"{digest}@locker-room-roster"

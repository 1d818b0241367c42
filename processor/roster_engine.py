"""Roster engine assigning monitors and game roles for one team at a time."""
import logging
from datetime import datetime, timezone
from typing import Callable, Dict, List, Optional, Protocol, Sequence
from zoneinfo import ZoneInfo

from processor.allocator import FairnessAllocator
from processor.errors import SinkUnavailable, SourceUnavailable
from processor.event_filter import EventFilter
from processor.models import Decision, Event, TeamConfig, TeamRunResult, role_key
from storage.ledger import UNASSIGNED, AssignmentLedger, LedgerStorage

logger = logging.getLogger(__name__)


class EventSource(Protocol):
    def fetch_events(self, team: TeamConfig) -> List[Event]:
        ...


class RosterSink(Protocol):
    def write(self, team: TeamConfig, decisions: List[Decision]):
        ...


class ReadableSink(RosterSink, Protocol):
    def read_rows(self, team: TeamConfig) -> list:
        ...


class RosterEngine:
    """
    Drives one team through filter, allocation and ledger updates.

    The ledger is updated as each event is assigned, so later events in the
    same run see the updated counts.
    """

    def __init__(
        self,
        ledger: AssignmentLedger,
        allocator: Optional[FairnessAllocator] = None,
        clock: Optional[Callable[[], datetime]] = None
    ):
        """
        Args:
            ledger: Loaded assignment ledger
            allocator: Allocator used for new assignments
            clock: Returns the current aware datetime (default: UTC now)
        """
        self.ledger = ledger
        self.allocator = allocator or FairnessAllocator()
        self.clock = clock or (lambda: datetime.now(timezone.utc))
        self.last_assigned: Dict[str, Optional[str]] = {}

    def assign(self, team: TeamConfig, events: Sequence[Event]) -> List[Decision]:
        """
        Assign monitors and roles to the team's events.

        Args:
            team: Team configuration
            events: Events in source order

        Returns:
            Decisions for the surviving events, sorted by date and time
        """
        self.last_assigned[team.name] = None
        self.ledger.ensure_pool(team.name, team.pool)

        event_filter = EventFilter(team.filter)
        tz = ZoneInfo(team.timezone)
        now = self.clock()
        decisions = []

        for event in events:
            verdict = event_filter.evaluate(event, now)
            if not verdict.eligible:
                continue

            monitor = ''
            roles: Dict[str, str] = {}
            if verdict.requires_monitor:
                monitor = self._resolve_monitor(team, event)
                if team.auxiliary_roles and self.is_home_game(team, event):
                    roles = self._resolve_roles(team, event)

            decisions.append(self._decision(event, tz, monitor, roles))

        decisions.sort(key=lambda decision: decision.sort_key)
        return decisions

    def run_team(
        self,
        team: TeamConfig,
        source: EventSource,
        storage: LedgerStorage,
        sinks: Sequence[RosterSink] = (),
        reconcile_from: Optional[ReadableSink] = None
    ) -> TeamRunResult:
        """
        Process one team end to end: fetch, reconcile, assign, write, save.

        A source failure, or a failure reading back the published roster,
        aborts the team before the ledger changes. A sink write failure is
        reported and the ledger is still saved.

        Args:
            team: Team configuration
            source: Calendar event source
            storage: Ledger storage the snapshot is saved to
            sinks: Output sinks receiving the decisions
            reconcile_from: Sink whose published rows override the ledger

        Returns:
            TeamRunResult summarizing the run
        """
        result = TeamRunResult(team=team.name)
        logger.info(f"Processing team: {team.name}")

        try:
            events = source.fetch_events(team)
        except SourceUnavailable as e:
            logger.error(
                f"Calendar feed unavailable for team {team.name}: {e}",
                extra={'team': team.name, 'error_type': type(e).__name__},
                exc_info=True
            )
            result.errors.append(f"SourceUnavailable: {e}")
            return result
        result.events_fetched = len(events)

        if reconcile_from is not None:
            try:
                external_rows = reconcile_from.read_rows(team)
            except SinkUnavailable as e:
                logger.error(
                    f"Could not read back roster for team {team.name}: {e}",
                    extra={'team': team.name, 'error_type': type(e).__name__},
                    exc_info=True
                )
                result.errors.append(f"SinkUnavailable: {e}")
                return result
            result.reconciled = self.ledger.reconcile(team.name, external_rows)

        records_before = len(self.ledger.records_for(team.name))
        result.decisions = self.assign(team, events)
        result.new_assignments = (
            len(self.ledger.records_for(team.name)) - records_before
        )

        for sink in sinks:
            try:
                sink.write(team, result.decisions)
            except SinkUnavailable as e:
                logger.error(
                    f"Output sink failed for team {team.name}: {e}",
                    extra={'team': team.name, 'error_type': type(e).__name__},
                    exc_info=True
                )
                result.errors.append(f"SinkUnavailable: {e}")

        try:
            self.ledger.save(storage)
            result.saved = True
        except Exception as e:
            logger.error(
                f"Failed to save ledger after team {team.name}: {e}",
                extra={'team': team.name, 'error_type': type(e).__name__},
                exc_info=True
            )
            result.errors.append(f"{type(e).__name__}: {e}")

        logger.info(
            f"Finished team {team.name}",
            extra={
                'team': team.name,
                'events_fetched': result.events_fetched,
                'decisions': len(result.decisions),
                'new_assignments': result.new_assignments,
                'reconciled': result.reconciled,
            }
        )
        return result

    @staticmethod
    def is_home_game(team: TeamConfig, event: Event) -> bool:
        """A game keyword in the summary and a home rink keyword in the location."""
        summary = (event.summary or '').lower()
        location = (event.location or '').lower()
        return (
            any(word.lower() in summary for word in team.game_keywords)
            and any(word.lower() in location for word in team.home_location_keywords)
        )

    def _resolve_monitor(self, team: TeamConfig, event: Event) -> str:
        existing = self.ledger.get(team.name, event.uid)
        if existing is not UNASSIGNED:
            return existing

        name = self.allocator.choose(
            team, self.ledger.counts_for(team.name), self.last_assigned
        )[0]
        self.ledger.record_new(team.name, event.uid, name)
        logger.info(
            f"Assigned {name} to '{event.summary}' for team {team.name}"
        )
        return name

    def _resolve_roles(self, team: TeamConfig, event: Event) -> Dict[str, str]:
        roles = {}
        missing = []
        for role in team.auxiliary_roles:
            existing = self.ledger.get(team.name, role_key(event.uid, role))
            if existing is UNASSIGNED:
                missing.append(role)
            else:
                roles[role] = existing

        if missing:
            names = self.allocator.choose(
                team,
                self.ledger.counts_for(team.name),
                self.last_assigned,
                count=len(missing)
            )
            for role, name in zip(missing, names):
                self.ledger.record_new(team.name, role_key(event.uid, role), name)
                roles[role] = name
                logger.info(
                    f"Assigned {name} as {role} for '{event.summary}' "
                    f"for team {team.name}"
                )

        return {role: roles[role] for role in team.auxiliary_roles}

    @staticmethod
    def _decision(
        event: Event,
        tz: ZoneInfo,
        monitor: str,
        roles: Dict[str, str]
    ) -> Decision:
        start = event.start.astimezone(tz)
        duration = int((event.end - event.start).total_seconds() // 60)
        return Decision(
            event_id=event.uid,
            summary=event.summary,
            location=event.location or '',
            date=start.strftime('%Y-%m-%d'),
            time=start.strftime('%I:%M %p'),
            sort_time=start.strftime('%H:%M'),
            duration_minutes=duration,
            monitor=monitor,
            roles=roles
        )

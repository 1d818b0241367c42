"""Tests for RosterEngine."""
import random
from collections import Counter
from datetime import datetime, timezone
from unittest.mock import Mock

import pytest

from conftest import CENTRAL, make_event, make_team
from processor.allocator import FairnessAllocator
from processor.errors import SinkUnavailable, SourceUnavailable
from processor.roster_engine import RosterEngine
from roster_output.csv_sink import CsvRosterSink
from storage.csv_storage import CsvLedgerStorage
from storage.ledger import AssignmentLedger

NOW = datetime(2024, 10, 1, 12, 0, tzinfo=CENTRAL)


class StaticSource:
    """Event source returning a fixed event list."""

    def __init__(self, events):
        self.events = events
        self.calls = 0

    def fetch_events(self, team):
        self.calls += 1
        return list(self.events)


def at(day, hour, minute=0):
    return datetime(2024, 11, day, hour, minute, tzinfo=CENTRAL)


def make_engine(ledger=None, seed=7):
    return RosterEngine(
        ledger or AssignmentLedger(),
        FairnessAllocator(random.Random(seed)),
        clock=lambda: NOW
    )


@pytest.fixture
def home_events():
    return [
        make_event('e1', location='New Hope North', start=at(2, 17)),
        make_event('e2', location='New Hope South', start=at(3, 17)),
        make_event('e3', location='Breck', start=at(4, 17)),
    ]


class TestAssign:
    """Test cases for RosterEngine.assign."""

    def test_three_events_three_families(self, team, home_events):
        """Test that a fresh pool of three covers three events once each."""
        for seed in range(20):
            decisions = make_engine(seed=seed).assign(team, home_events)
            monitors = [decision.monitor for decision in decisions]

            assert Counter(monitors) == Counter(['Anderson', 'Becker', 'Campos'])
            assert all(a != b for a, b in zip(monitors, monitors[1:]))

    def test_ledger_updated_per_event(self, team, home_events):
        ledger = AssignmentLedger()

        decisions = make_engine(ledger).assign(team, home_events)

        assert ledger.records_for('12A') == {d.event_id: d.monitor for d in decisions}
        assert ledger.counts_for('12A') == {'Anderson': 1, 'Becker': 1, 'Campos': 1}

    def test_idempotent_second_run(self, team, home_events):
        """Test that re-running with no changes gives identical output."""
        ledger = AssignmentLedger()
        first = make_engine(ledger, seed=1).assign(team, home_events)
        records = ledger.records_for('12A')
        counts = ledger.counts_for('12A')

        second = make_engine(ledger, seed=99).assign(team, home_events)

        assert second == first
        assert ledger.records_for('12A') == records
        assert ledger.counts_for('12A') == counts

    def test_existing_assignment_reused(self, team):
        ledger = AssignmentLedger()
        ledger.record_new('12A', 'e1', 'Campos')

        decisions = make_engine(ledger).assign(team, [make_event('e1')])

        assert decisions[0].monitor == 'Campos'
        assert ledger.counts_for('12A')['Campos'] == 1

    def test_new_event_balances_against_history(self, team):
        ledger = AssignmentLedger()
        ledger.record_new('12A', 'old-1', 'Anderson')
        ledger.record_new('12A', 'old-2', 'Becker')

        decisions = make_engine(ledger).assign(team, [make_event('new-1')])

        assert decisions[0].monitor == 'Campos'

    def test_ineligible_events_dropped(self, team):
        events = [
            make_event('e1', location=''),
            make_event('e2', summary='Off Ice Conditioning'),
            make_event('e3', start=None),
            make_event('e4'),
        ]

        decisions = make_engine().assign(team, events)

        assert [d.event_id for d in decisions] == ['e4']

    def test_unmonitored_location_kept_without_assignment(self, team):
        ledger = AssignmentLedger()

        decisions = make_engine(ledger).assign(
            team, [make_event('away', location='Braemar Arena')]
        )

        assert decisions[0].monitor == ''
        assert ledger.records_for('12A') == {}

    def test_decisions_sorted_chronologically(self, team):
        """Test that morning events sort before afternoon ones on the same day."""
        events = [
            make_event('late', start=at(5, 13)),
            make_event('early', start=at(5, 9)),
            make_event('prior-day', start=at(4, 20)),
        ]

        decisions = make_engine().assign(team, events)

        assert [d.event_id for d in decisions] == ['prior-day', 'early', 'late']
        assert [d.time for d in decisions] == ['08:00 PM', '09:00 AM', '01:00 PM']

    def test_decision_fields_use_team_timezone(self, team):
        start = datetime(2024, 11, 3, 1, 30, tzinfo=timezone.utc)
        event = make_event('e1', summary='Practice', start=start, minutes=75)

        decision = make_engine().assign(team, [event])[0]

        assert decision.date == '2024-11-02'
        assert decision.time == '08:30 PM'
        assert decision.sort_time == '20:30'
        assert decision.duration_minutes == 75
        assert decision.location == 'New Hope North'

    def test_future_only_skips_started_events(self):
        team = make_team(future_only=True)
        events = [
            make_event('past', start=datetime(2024, 9, 1, 17, 0, tzinfo=CENTRAL)),
            make_event('next', start=at(2, 17)),
        ]

        decisions = make_engine().assign(team, events)

        assert [d.event_id for d in decisions] == ['next']


class TestHomeGameRoles:
    """Test cases for auxiliary role assignment on home games."""

    @pytest.fixture
    def role_team(self):
        return make_team(
            family_names=['A', 'B', 'C', 'D', 'E'],
            auxiliary_roles=['Scorekeeper', 'Clock', 'Penalty Box']
        )

    def test_is_home_game(self, role_team):
        assert RosterEngine.is_home_game(
            role_team, make_event('g', summary='GAME vs Edina', location='New Hope South')
        )
        assert not RosterEngine.is_home_game(
            role_team, make_event('g', summary='Game vs Edina', location='Breck')
        )
        assert not RosterEngine.is_home_game(
            role_team, make_event('p', summary='Practice', location='New Hope North')
        )

    def test_home_game_gets_distinct_roles(self, role_team):
        """Test that a home game fills every role with families other than the monitor."""
        ledger = AssignmentLedger()
        event = make_event('g1', summary='Game vs Edina', location='New Hope North')

        decision = make_engine(ledger).assign(role_team, [event])[0]

        assigned = [decision.monitor] + list(decision.roles.values())
        assert list(decision.roles) == ['Scorekeeper', 'Clock', 'Penalty Box']
        assert len(set(assigned)) == 4
        assert ledger.get('12A', 'g1|Clock') == decision.roles['Clock']
        assert sum(ledger.counts_for('12A').values()) == 4

    def test_practice_gets_no_roles(self, role_team):
        event = make_event('p1', summary='Practice', location='New Hope North')

        decision = make_engine().assign(role_team, [event])[0]

        assert decision.monitor
        assert decision.roles == {}

    def test_missing_roles_filled_existing_kept(self, role_team):
        ledger = AssignmentLedger()
        ledger.record_new('12A', 'g1', 'A')
        ledger.record_new('12A', 'g1|Scorekeeper', 'B')
        event = make_event('g1', summary='Game vs Edina', location='New Hope North')

        decision = make_engine(ledger).assign(role_team, [event])[0]

        assert decision.monitor == 'A'
        assert decision.roles['Scorekeeper'] == 'B'
        assert decision.roles['Clock'] not in ('', None)
        assert len(ledger.records_for('12A')) == 4

    def test_small_pool_repeats_roles(self):
        """Test that an undersized pool still fills every role."""
        team = make_team(family_names=['A', 'B'], auxiliary_roles=['Scorekeeper', 'Clock', 'Penalty Box'])
        event = make_event('g1', summary='Game vs Edina', location='New Hope North')

        decision = make_engine().assign(team, [event])[0]

        assert len(decision.roles) == 3
        assert all(name in ('A', 'B') for name in decision.roles.values())


class TestRunTeam:
    """Test cases for RosterEngine.run_team."""

    def test_source_failure_leaves_ledger_untouched(self, team):
        ledger = AssignmentLedger()
        source = Mock()
        source.fetch_events.side_effect = SourceUnavailable('feed down')
        storage = Mock()

        result = make_engine(ledger).run_team(team, source, storage)

        assert not result.succeeded
        assert 'feed down' in result.errors[0]
        assert not result.saved
        storage.write.assert_not_called()
        assert ledger.teams() == []

    def test_sink_failure_still_saves_ledger(self, team, home_events, tmp_path):
        """Test that fairness state is saved even when output fails."""
        storage = CsvLedgerStorage(str(tmp_path))
        broken_sink = Mock()
        broken_sink.write.side_effect = SinkUnavailable('disk full')

        result = make_engine().run_team(
            team, StaticSource(home_events), storage, [broken_sink]
        )

        assert result.saved
        assert result.new_assignments == 3
        assert 'disk full' in result.errors[0]
        reloaded = AssignmentLedger()
        reloaded.load(storage)
        assert len(reloaded.records_for('12A')) == 3

    def test_read_back_failure_aborts_before_assigning(self, team, home_events):
        ledger = AssignmentLedger()
        sink = Mock()
        sink.read_rows.side_effect = SinkUnavailable('locked')
        storage = Mock()

        result = make_engine(ledger).run_team(
            team, StaticSource(home_events), storage, [sink], reconcile_from=sink
        )

        assert not result.succeeded
        assert ledger.teams() == []
        sink.write.assert_not_called()
        storage.write.assert_not_called()

    def test_human_edit_wins_on_next_run(self, team, home_events, tmp_path):
        """Test that a correction in the published roster is kept, not reverted."""
        storage = CsvLedgerStorage(str(tmp_path / 'ledger'))
        sink = CsvRosterSink(str(tmp_path / 'out'))
        source = StaticSource(home_events)

        ledger = AssignmentLedger()
        ledger.load(storage)
        first = make_engine(ledger).run_team(
            team, source, storage, [sink], reconcile_from=sink
        )
        original = first.decisions[0].monitor
        replacement = next(
            name for name in team.pool
            if name not in (original, first.decisions[1].monitor)
        )
        path = sink.path_for(team)
        lines = path.read_text().splitlines()
        lines[1] = lines[1].replace(f',{original},', f',{replacement},')
        path.write_text('\n'.join(lines) + '\n')

        ledger = AssignmentLedger()
        ledger.load(storage)
        second = make_engine(ledger, seed=3).run_team(
            team, source, storage, [sink], reconcile_from=sink
        )

        assert second.reconciled == 1
        assert second.new_assignments == 0
        assert second.decisions[0].monitor == replacement
        counts = ledger.counts_for('12A')
        assert counts[original] == 0
        assert counts[replacement] == 2

    def test_repeated_runs_are_stable(self, team, home_events, tmp_path):
        storage = CsvLedgerStorage(str(tmp_path / 'ledger'))
        sink = CsvRosterSink(str(tmp_path / 'out'))
        results = []

        for seed in (1, 2):
            ledger = AssignmentLedger()
            ledger.load(storage)
            results.append(
                make_engine(ledger, seed=seed).run_team(
                    team, StaticSource(home_events), storage, [sink], reconcile_from=sink
                )
            )

        assert results[0].decisions == results[1].decisions
        assert results[1].reconciled == 0
        assert results[1].new_assignments == 0

    def test_unknown_save_error_reported(self, team, home_events):
        storage = Mock()
        storage.write.side_effect = RuntimeError('throttled')

        result = make_engine().run_team(team, StaticSource(home_events), storage)

        assert not result.saved
        assert result.errors == ['RuntimeError: throttled']

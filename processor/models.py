"""Data models for roster assignment."""
from dataclasses import dataclass, field
from datetime import datetime
from typing import Dict, List, Optional


@dataclass
class Event:
    """Calendar event as produced by the feed client."""
    uid: str
    summary: str
    location: Optional[str]
    start: Optional[datetime]
    end: Optional[datetime]
    description: str = ''


@dataclass
class FilterConfig:
    """Per-team event filtering rules."""
    monitor_locations: List[str]
    excluded_locations: List[str]
    exclusion_terms: List[str]
    future_only: bool = False


@dataclass
class TeamConfig:
    """Fixed configuration record for one team."""
    name: str
    family_names: List[str]
    ical_feed_url: str
    output_name: str
    timezone: str
    filter: FilterConfig
    game_keywords: List[str] = field(default_factory=list)
    home_location_keywords: List[str] = field(default_factory=list)
    auxiliary_roles: List[str] = field(default_factory=list)

    @property
    def pool(self) -> List[str]:
        """Candidate names with duplicates collapsed, order preserved."""
        return list(dict.fromkeys(self.family_names))


@dataclass
class FilterVerdict:
    """Result of running one event through the filter."""
    eligible: bool
    requires_monitor: bool = False
    reason: Optional[str] = None

    def __bool__(self) -> bool:
        return self.eligible


@dataclass
class ExternalRow:
    """Assignment reported back by an output sink."""
    key: str
    assignee: str


@dataclass
class Decision:
    """Final roster line for one surviving event."""
    event_id: str
    summary: str
    location: str
    date: str
    time: str
    sort_time: str
    duration_minutes: int
    monitor: str = ''
    roles: Dict[str, str] = field(default_factory=dict)

    @property
    def sort_key(self) -> tuple[str, str]:
        return (self.date, self.sort_time)


@dataclass
class TeamRunResult:
    """Outcome of processing one team."""
    team: str
    decisions: List[Decision] = field(default_factory=list)
    events_fetched: int = 0
    reconciled: int = 0
    new_assignments: int = 0
    saved: bool = False
    errors: list[str] = field(default_factory=list)

    @property
    def succeeded(self) -> bool:
        return not self.errors


def role_key(event_id: str, role: str) -> str:
    """Ledger key for an auxiliary role on an event."""
    return f"{event_id}|{role}"

"""Exceptions raised by the roster pipeline."""


class RosterError(Exception):
    """Base class for roster errors."""


class SourceUnavailable(RosterError):
    """Calendar feed could not be fetched or parsed."""


class StorageCorrupt(RosterError):
    """Ledger storage holds unreadable data."""


class SinkUnavailable(RosterError):
    """Roster output could not be read or written."""


class ConfigError(RosterError):
    """Team configuration is invalid."""


class DuplicateAssignmentError(RosterError):
    """An assignment record already exists for the key."""

    def __init__(self, team: str, key: str, assignee: str):
        self.team = team
        self.key = key
        self.assignee = assignee
        super().__init__(
            f"Team '{team}' already has '{assignee}' assigned to '{key}'"
        )

"""Process settings and team definitions."""
import logging
import os
from dataclasses import dataclass
from typing import Any, Dict, List, Optional
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

import yaml

from processor.errors import ConfigError
from processor.models import FilterConfig, TeamConfig

logger = logging.getLogger(__name__)

DEFAULT_TIMEZONE = 'America/Chicago'

# Rinks where a locker room monitor is required
DEFAULT_MONITOR_LOCATIONS = [
    'New Hope North',
    'New Hope South',
    'Breck',
    'Orono Ice Arena (ag)',
    'Northeast (ag)',
    'SLP East (ag)',
    'MG West (ag)',
    'PIC A (ag)',
    'PIC C (ag)',
    'Hopkins Pavilion (ag)',
    'Thaler (ag)',
    'SLP West (ag)',
    'Delano Arena',
]

# Street address the feed uses for venue-wide placeholder entries
DEFAULT_EXCLUDED_LOCATIONS = [
    'New Hope Ice Arena, Louisiana Avenue North, New Hope, MN, USA',
]

DEFAULT_EXCLUSION_TERMS = [
    'Skills Off Ice',
    'Dryland',
    'Goalie Training',
    'Off Ice',
    'Conditioning',
    'Meeting',
    'Tournament',
    'LRM',
]

DEFAULT_GAME_KEYWORDS = ['Game']
DEFAULT_HOME_LOCATION_KEYWORDS = ['New Hope']
DEFAULT_AUXILIARY_ROLES: List[str] = []

# Column names already used by the roster output
RESERVED_COLUMNS = {
    'Event',
    'Location',
    'Date',
    'Time',
    'Duration (minutes)',
    'Locker Room Monitor',
    'Event ID',
}

TEAM_FIELDS = {
    'name',
    'family_names',
    'ical_feed_url',
    'output_name',
    'timezone',
    'monitor_locations',
    'excluded_locations',
    'exclusion_terms',
    'game_keywords',
    'home_location_keywords',
    'auxiliary_roles',
    'future_only',
}


def _env_flag(name: str, default: bool = False) -> bool:
    value = os.environ.get(name)
    if value is None:
        return default
    return value.strip().lower() in ('1', 'true', 'yes', 'on')


@dataclass
class Settings:
    """Process-level settings read from environment variables."""
    teams_config: str = 'teams.yml'
    ledger_backend: str = 'csv'
    ledger_dir: str = '.'
    ledger_table: str = 'locker-room-ledger'
    output_dir: str = '.'
    log_level: str = 'INFO'
    timeout_seconds: int = 30
    future_only: bool = False
    ics_export: bool = True

    @classmethod
    def from_env(cls) -> 'Settings':
        """
        Build settings from environment variables.

        Raises:
            ConfigError: If a value cannot be interpreted
        """
        backend = os.environ.get('LEDGER_BACKEND', 'csv').strip().lower()
        if backend not in ('csv', 'dynamodb'):
            raise ConfigError(f"Unknown LEDGER_BACKEND '{backend}'")

        try:
            timeout_seconds = int(os.environ.get('TIMEOUT_SECONDS', '30'))
        except ValueError as e:
            raise ConfigError(f"TIMEOUT_SECONDS must be an integer: {e}") from e

        return cls(
            teams_config=os.environ.get('TEAMS_CONFIG', 'teams.yml'),
            ledger_backend=backend,
            ledger_dir=os.environ.get('LEDGER_DIR', '.'),
            ledger_table=os.environ.get('LEDGER_TABLE', 'locker-room-ledger'),
            output_dir=os.environ.get('OUTPUT_DIR', '.'),
            log_level=os.environ.get('LOG_LEVEL', 'INFO'),
            timeout_seconds=timeout_seconds,
            future_only=_env_flag('FUTURE_ONLY'),
            ics_export=_env_flag('ICS_EXPORT', default=True),
        )


def load_teams(path: str, future_only: bool = False) -> List[TeamConfig]:
    """
    Load and validate team definitions from a YAML file.

    The optional top-level `defaults` mapping is merged under every entry
    of `teams`.

    Args:
        path: Path to the YAML file
        future_only: Default for the future-events-only filter mode

    Returns:
        List of validated TeamConfig objects

    Raises:
        ConfigError: If the file is missing, unparsable or invalid
    """
    try:
        with open(path, encoding='utf-8') as f:
            document = yaml.safe_load(f)
    except OSError as e:
        raise ConfigError(f"Could not read team config {path}: {e}") from e
    except yaml.YAMLError as e:
        raise ConfigError(f"Invalid YAML in {path}: {e}") from e

    teams = parse_teams(document or {}, future_only=future_only)
    logger.info(f"Loaded {len(teams)} team definitions from {path}")
    return teams


def parse_teams(document: Dict[str, Any], future_only: bool = False) -> List[TeamConfig]:
    """
    Validate a parsed team document.

    Args:
        document: Mapping with `teams` and optional `defaults`
        future_only: Default for the future-events-only filter mode

    Returns:
        List of TeamConfig objects
    """
    if not isinstance(document, dict):
        raise ConfigError("Team config must be a mapping")

    defaults = document.get('defaults') or {}
    entries = document.get('teams')
    if not isinstance(defaults, dict):
        raise ConfigError("'defaults' must be a mapping")
    if not isinstance(entries, list) or not entries:
        raise ConfigError("'teams' must be a non-empty list")

    teams = []
    seen = set()
    for index, entry in enumerate(entries):
        if not isinstance(entry, dict):
            raise ConfigError(f"Team entry {index} must be a mapping")

        team = _build_team({**defaults, **entry}, index, future_only)
        if team.name in seen:
            raise ConfigError(f"Duplicate team name '{team.name}'")
        seen.add(team.name)
        teams.append(team)

    return teams


def _build_team(raw: Dict[str, Any], index: int, future_only: bool) -> TeamConfig:
    unknown = sorted(set(raw) - TEAM_FIELDS)
    if unknown:
        raise ConfigError(
            f"Team entry {index} has unknown fields: {', '.join(unknown)}"
        )

    name = raw.get('name')
    if not isinstance(name, str) or not name.strip():
        raise ConfigError(f"Team entry {index} is missing a name")
    name = name.strip()

    family_names = _string_list(raw, 'family_names', name, required=True)
    if len(set(family_names)) != len(family_names):
        logger.warning(f"Team '{name}' lists duplicate family names")

    feed_url = raw.get('ical_feed_url')
    if not isinstance(feed_url, str) or not feed_url.strip():
        raise ConfigError(f"Team '{name}' is missing ical_feed_url")

    tz_name = raw.get('timezone', DEFAULT_TIMEZONE)
    try:
        ZoneInfo(str(tz_name))
    except (ZoneInfoNotFoundError, ValueError) as e:
        raise ConfigError(f"Team '{name}' has unknown timezone '{tz_name}'") from e

    output_name = raw.get('output_name') or name
    if not isinstance(output_name, str):
        raise ConfigError(f"Team '{name}' output_name must be a string")

    team_future_only = raw.get('future_only', future_only)
    if not isinstance(team_future_only, bool):
        raise ConfigError(f"Team '{name}' future_only must be true or false")

    auxiliary_roles = _string_list(
        raw, 'auxiliary_roles', name, DEFAULT_AUXILIARY_ROLES
    )
    if len(set(auxiliary_roles)) != len(auxiliary_roles):
        raise ConfigError(f"Team '{name}' lists duplicate auxiliary roles")
    if any('|' in role for role in auxiliary_roles):
        raise ConfigError(f"Team '{name}' auxiliary roles must not contain '|'")
    clashes = sorted(set(auxiliary_roles) & RESERVED_COLUMNS)
    if clashes:
        raise ConfigError(
            f"Team '{name}' auxiliary roles clash with roster columns: "
            f"{', '.join(clashes)}"
        )

    return TeamConfig(
        name=name,
        family_names=family_names,
        ical_feed_url=feed_url.strip(),
        output_name=output_name,
        timezone=str(tz_name),
        filter=FilterConfig(
            monitor_locations=_string_list(
                raw, 'monitor_locations', name, DEFAULT_MONITOR_LOCATIONS
            ),
            excluded_locations=_string_list(
                raw, 'excluded_locations', name, DEFAULT_EXCLUDED_LOCATIONS
            ),
            exclusion_terms=_string_list(
                raw, 'exclusion_terms', name, DEFAULT_EXCLUSION_TERMS
            ),
            future_only=team_future_only,
        ),
        game_keywords=_string_list(raw, 'game_keywords', name, DEFAULT_GAME_KEYWORDS),
        home_location_keywords=_string_list(
            raw, 'home_location_keywords', name, DEFAULT_HOME_LOCATION_KEYWORDS
        ),
        auxiliary_roles=auxiliary_roles,
    )


def _string_list(
    raw: Dict[str, Any],
    field: str,
    team: str,
    default: Optional[List[str]] = None,
    required: bool = False
) -> List[str]:
    value = raw.get(field)
    if value is None:
        if required:
            raise ConfigError(f"Team '{team}' is missing {field}")
        return list(default or [])

    if not isinstance(value, list) or not all(isinstance(v, str) for v in value):
        raise ConfigError(f"Team '{team}' {field} must be a list of strings")

    values = [v.strip() for v in value if v.strip()]
    if required and not values:
        raise ConfigError(f"Team '{team}' {field} must not be empty")
    return values

"""Shared fixtures for roster tests."""
import os
from datetime import datetime, timedelta
from zoneinfo import ZoneInfo

import pytest

from processor.models import Event, FilterConfig, TeamConfig

CENTRAL = ZoneInfo('America/Chicago')


@pytest.fixture(autouse=True)
def aws_credentials(monkeypatch):
    """Fake AWS credentials so boto3 never reaches a real account."""
    monkeypatch.setenv('AWS_ACCESS_KEY_ID', 'testing')
    monkeypatch.setenv('AWS_SECRET_ACCESS_KEY', 'testing')
    monkeypatch.setenv('AWS_SECURITY_TOKEN', 'testing')
    monkeypatch.setenv('AWS_SESSION_TOKEN', 'testing')
    monkeypatch.setenv('AWS_DEFAULT_REGION', 'us-east-1')


def make_team(
    name='12A',
    family_names=('Anderson', 'Becker', 'Campos'),
    auxiliary_roles=(),
    future_only=False,
    monitor_locations=('New Hope North', 'New Hope South', 'Breck'),
    exclusion_terms=('Off Ice', 'Meeting', 'Tournament', 'LRM'),
):
    return TeamConfig(
        name=name,
        family_names=list(family_names),
        ical_feed_url=f'https://example.com/ical_feed?team={name}',
        output_name=name,
        timezone='America/Chicago',
        filter=FilterConfig(
            monitor_locations=list(monitor_locations),
            excluded_locations=[
                'New Hope Ice Arena, Louisiana Avenue North, New Hope, MN, USA'
            ],
            exclusion_terms=list(exclusion_terms),
            future_only=future_only,
        ),
        game_keywords=['Game'],
        home_location_keywords=['New Hope'],
        auxiliary_roles=list(auxiliary_roles),
    )


def make_event(
    uid,
    summary='Practice',
    location='New Hope North',
    start=datetime(2024, 11, 2, 17, 0, tzinfo=CENTRAL),
    minutes=60,
    description='',
):
    end = start + timedelta(minutes=minutes) if start is not None else None
    return Event(
        uid=uid,
        summary=summary,
        location=location,
        start=start,
        end=end,
        description=description,
    )


@pytest.fixture
def team():
    return make_team()


@pytest.fixture
def env_clean(monkeypatch):
    """Remove settings variables so defaults apply."""
    for name in (
        'TEAMS_CONFIG', 'LEDGER_BACKEND', 'LEDGER_DIR', 'LEDGER_TABLE',
        'OUTPUT_DIR', 'LOG_LEVEL', 'TIMEOUT_SECONDS', 'FUTURE_ONLY',
        'ICS_EXPORT',
    ):
        monkeypatch.delenv(name, raising=False)
    return os.environ

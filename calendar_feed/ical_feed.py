"""iCalendar feed client producing team events."""
import hashlib
import logging
import time
from datetime import date, datetime, time as dt_time
from typing import List, Optional
from zoneinfo import ZoneInfo

import requests
from bs4 import BeautifulSoup
from icalendar import Calendar

from processor.errors import SourceUnavailable
from processor.models import Event, TeamConfig

logger = logging.getLogger(__name__)


class IcalFeedClient:
    """Client for a team's published iCalendar feed."""

    MAX_RETRIES = 3
    BASE_DELAY = 1  # seconds

    def __init__(self, timeout: int = 30):
        """
        Initialize the feed client.

        Args:
            timeout: HTTP request timeout in seconds (default: 30)
        """
        self.timeout = timeout

    def fetch_events(self, team: TeamConfig) -> List[Event]:
        """
        Fetch and parse the team's calendar feed.

        Args:
            team: Team whose feed is fetched

        Returns:
            List of Event objects in feed order

        Raises:
            SourceUnavailable: If the feed cannot be fetched or parsed
        """
        logger.info(f"Fetching calendar feed for team {team.name}")

        ical_text = self._fetch_feed(team.ical_feed_url)
        events = self.parse_events(ical_text, ZoneInfo(team.timezone))

        logger.info(f"Fetched {len(events)} events for team {team.name}")
        return events

    def _fetch_feed(self, url: str) -> str:
        """
        Fetch feed text with retry logic.

        Args:
            url: Feed URL

        Returns:
            Feed content as string

        Raises:
            SourceUnavailable: If all retry attempts fail
        """
        for attempt in range(self.MAX_RETRIES):
            try:
                logger.info(
                    f"Fetching calendar feed (attempt {attempt + 1}/{self.MAX_RETRIES})"
                )
                response = requests.get(url, timeout=self.timeout)
                response.raise_for_status()
                return response.text

            except requests.RequestException as e:
                if attempt < self.MAX_RETRIES - 1:
                    # Exponential backoff
                    delay = self.BASE_DELAY * (2 ** attempt)
                    logger.warning(
                        f"Request failed (attempt {attempt + 1}/{self.MAX_RETRIES}): {e}. "
                        f"Retrying in {delay} seconds..."
                    )
                    time.sleep(delay)
                else:
                    logger.error(
                        f"All {self.MAX_RETRIES} retry attempts failed. Last error: {e}"
                    )
                    raise SourceUnavailable(
                        f"Could not fetch calendar feed {url}: {e}"
                    ) from e

    def parse_events(self, ical_text: str, tz: ZoneInfo) -> List[Event]:
        """
        Parse VEVENT components from iCalendar text.

        Args:
            ical_text: Raw feed content
            tz: Timezone applied to floating times and all-day dates

        Returns:
            List of Event objects

        Raises:
            SourceUnavailable: If the text is not a valid calendar
        """
        try:
            calendar = Calendar.from_ical(ical_text)
        except ValueError as e:
            raise SourceUnavailable(f"Could not parse calendar feed: {e}") from e

        events = []
        for component in calendar.walk('VEVENT'):
            try:
                events.append(self._parse_component(component, tz))
            except (ValueError, TypeError, AttributeError) as e:
                logger.warning(
                    f"Failed to parse event '{component.get('summary')}': {e}"
                )
                continue

        return events

    def _parse_component(self, component, tz: ZoneInfo) -> Event:
        summary = str(component.get('summary', '')).strip()
        location = component.get('location')
        location = str(location).strip() if location is not None else None
        description = self._plain_text(str(component.get('description', '')))

        start = self._to_datetime(component.get('dtstart'), tz)
        end = self._to_datetime(component.get('dtend'), tz)
        duration = component.get('duration')
        if end is None and start is not None and duration is not None:
            end = start + duration.dt

        uid = component.get('uid')
        uid = str(uid).strip() if uid is not None else ''
        if not uid:
            uid = self.generate_event_id(summary, start, location)

        return Event(
            uid=uid,
            summary=summary,
            location=location,
            start=start,
            end=end,
            description=description
        )

    @staticmethod
    def _to_datetime(prop, tz: ZoneInfo) -> Optional[datetime]:
        """Convert a DTSTART/DTEND property to an aware datetime."""
        if prop is None:
            return None

        value = prop.dt
        if isinstance(value, datetime):
            if value.tzinfo is None:
                return value.replace(tzinfo=tz)
            return value
        if isinstance(value, date):
            return datetime.combine(value, dt_time.min, tzinfo=tz)
        raise TypeError(f"Unsupported date value: {value!r}")

    @staticmethod
    def _plain_text(description: str) -> str:
        if '<' in description and '>' in description:
            soup = BeautifulSoup(description, 'html.parser')
            return soup.get_text(' ', strip=True)
        return description.strip()

    @staticmethod
    def generate_event_id(
        summary: str,
        start: Optional[datetime],
        location: Optional[str]
    ) -> str:
        """
        Generate a stable identifier for events published without a UID.

        Args:
            summary: Event display name
            start: Event start time
            location: Event location

        Returns:
            SHA256 hex digest of summary + start + location
        """
        composite = f"{summary}|{start.isoformat() if start else ''}|{location or ''}"
        return hashlib.sha256(composite.encode('utf-8')).hexdigest()

"""Event filter deciding which calendar events get a roster assignment."""
import logging
from datetime import datetime
from typing import Optional

from processor.models import Event, FilterConfig, FilterVerdict

logger = logging.getLogger(__name__)


class EventFilter:
    """Classifier for calendar events against a team's filter rules."""

    def __init__(self, config: FilterConfig):
        """
        Initialize the filter with normalized rule lists.

        Args:
            config: Team filter configuration
        """
        self.config = config
        self._monitor_locations = {
            self._normalize(loc) for loc in config.monitor_locations
        }
        self._excluded_locations = {
            self._normalize(loc) for loc in config.excluded_locations
        }
        self._exclusion_terms = [
            term.lower() for term in config.exclusion_terms if term.strip()
        ]

    def evaluate(self, event: Event, now: datetime) -> FilterVerdict:
        """
        Classify a single event. Rules are applied in order and the first
        rejection wins.

        Args:
            event: Event to classify
            now: Current time, timezone-aware

        Returns:
            FilterVerdict with eligibility and monitor requirement
        """
        if event.start is None or event.end is None:
            return self._reject(event, 'missing_times')

        location = self._normalize(event.location)
        if not location:
            return self._reject(event, 'missing_location')
        if location in self._excluded_locations:
            return self._reject(event, 'excluded_location')

        if self._matches_exclusion_term(event):
            return self._reject(event, 'excluded_term')

        if self.config.future_only and event.start < now:
            return self._reject(event, 'past_event')

        return FilterVerdict(
            eligible=True,
            requires_monitor=location in self._monitor_locations
        )

    def _matches_exclusion_term(self, event: Event) -> bool:
        haystacks = [
            (event.summary or '').lower(),
            (event.description or '').lower(),
            (event.location or '').lower(),
        ]
        return any(
            term in text
            for term in self._exclusion_terms
            for text in haystacks
        )

    def _reject(self, event: Event, reason: str) -> FilterVerdict:
        logger.debug(f"Skipping event '{event.summary}' ({event.uid}): {reason}")
        return FilterVerdict(eligible=False, reason=reason)

    @staticmethod
    def _normalize(value: Optional[str]) -> str:
        return (value or '').strip().lower()

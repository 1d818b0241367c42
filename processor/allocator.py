"""Fairness allocator choosing the next family for a roster slot."""
import logging
import random
from typing import Dict, List, Mapping, Optional

from processor.models import TeamConfig

logger = logging.getLogger(__name__)


class FairnessAllocator:
    """
    Picks the least-assigned candidates from a team pool.

    Ties on the lowest count are broken uniformly at random so the rotation
    does not settle into a fixed cycle. The most recently assigned name is
    excluded to avoid back-to-back duty.
    """

    def __init__(self, rng: Optional[random.Random] = None):
        """
        Args:
            rng: Random source for tie-breaks (default: a fresh Random)
        """
        self.rng = rng or random.Random()

    def choose(
        self,
        team: TeamConfig,
        counts: Mapping[str, int],
        last_assigned: Dict[str, Optional[str]],
        count: int = 1
    ) -> List[str]:
        """
        Choose `count` names from the team's pool.

        Names are distinct within one call unless the pool is smaller than
        `count`, in which case repetition is accepted.

        Args:
            team: Team whose pool is drawn from
            counts: Current assignment counts per name (not modified)
            last_assigned: Team name to last assigned name, updated in place
            count: Number of names to choose

        Returns:
            List of chosen names, in pick order
        """
        candidates = team.pool
        if not candidates:
            raise ValueError(f"Team '{team.name}' has an empty candidate pool")

        previous = last_assigned.get(team.name)
        eligible = candidates
        if len(candidates) > 1:
            eligible = [name for name in candidates if name != previous]

        working = {name: counts.get(name, 0) for name in eligible}
        chosen: List[str] = []

        for _ in range(count):
            remaining = [name for name in eligible if name not in chosen]
            if not remaining:
                # Undersized pool: repeat within this call.
                logger.debug(
                    f"Pool for team '{team.name}' exhausted after {len(chosen)} "
                    f"picks, allowing repeats"
                )
                remaining = eligible

            lowest = min(working[name] for name in remaining)
            tied = [name for name in remaining if working[name] == lowest]
            pick = self.rng.choice(tied)

            working[pick] += 1
            chosen.append(pick)

        if chosen:
            last_assigned[team.name] = chosen[-1]
        return chosen

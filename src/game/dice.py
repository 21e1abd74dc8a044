"""Dice rolling engine for the shared dice table.

All rolls are made by the host. Players only ever send a dice spec.
"""

import random
import re
from dataclasses import dataclass, field
from typing import Iterable

from ..room.models import DiceGroup


@dataclass
class DicePool:
    """A group of identical dice to roll (e.g. 3d20)."""

    count: int
    sides: int

    def __str__(self) -> str:
        return f"{self.count}d{self.sides}"


@dataclass
class RollOutcome:
    """Result of rolling several dice pools at once."""

    dice_groups: list[DiceGroup] = field(default_factory=list)
    total: int = 0

    def __str__(self) -> str:
        parts = []
        for group in self.dice_groups:
            parts.append(f"{group.count}d{group.sides} [{', '.join(str(r) for r in group.results)}]")
        return f"{' + '.join(parts)} = {self.total}"


class DiceRoller:
    """Uniform dice roller with an injectable random source."""

    # Matches a single term of "3d20 + 2d4"
    TERM_PATTERN = re.compile(r"^(\d+)d(\d+)$", re.IGNORECASE)

    def __init__(self, rng: random.Random | None = None):
        """Initialize the dice roller.

        Args:
            rng: Random number generator instance. Uses default if not provided.
        """
        self.rng = rng or random.Random()

    def roll_die(self, sides: int) -> int:
        """Roll one die, returning a value in [1, sides]."""
        return self.rng.randint(1, sides)

    def roll_pool(self, pool: DicePool) -> DiceGroup:
        """Roll every die in a pool."""
        results = tuple(self.roll_die(pool.sides) for _ in range(pool.count))
        return DiceGroup(sides=pool.sides, count=pool.count, results=results)

    def roll_multiple(self, dice_spec: Iterable[DicePool]) -> RollOutcome:
        """Roll several pools, keeping one result group per pool.

        Args:
            dice_spec: Pools to roll, in display order

        Returns:
            RollOutcome with per-group results and the grand total
        """
        outcome = RollOutcome()
        for pool in dice_spec:
            group = self.roll_pool(pool)
            outcome.dice_groups.append(group)
            outcome.total += group.subtotal
        return outcome

    def parse_dice_string(self, text: str) -> list[DicePool] | None:
        """Parse notation like "3d20 + 2d4" into pools.

        Returns:
            List of DicePool, or None if any term is invalid
        """
        terms = [t.strip() for t in text.split("+") if t.strip()]
        pools = []
        for term in terms:
            match = self.TERM_PATTERN.match(term)
            if not match:
                return None
            count = int(match.group(1))
            sides = int(match.group(2))
            if count < 1 or sides < 2:
                return None
            pools.append(DicePool(count=count, sides=sides))
        return pools or None


def format_dice_spec(dice_spec: Iterable[DicePool]) -> str:
    """Format pools as "3d20 + 2d4"."""
    return " + ".join(str(pool) for pool in dice_spec)


def is_critical_hit(result: int, sides: int, threshold: int | None = None) -> bool:
    """Check a single die for a critical hit.

    d20s use the room threshold (19 means 19-20 crits); any other die
    only crits on its maximum face.
    """
    if sides == 20 and threshold is not None:
        return result >= threshold
    return result == sides


def is_critical_fail(result: int, sides: int, threshold: int = 1) -> bool:
    """Check a single die for a critical failure (natural 1 by default)."""
    if sides == 20:
        return result <= threshold
    return result == 1


def count_criticals(dice_groups: Iterable[DiceGroup], crit_hit: int = 20, crit_fail: int = 1) -> tuple[int, int]:
    """Count critical hits and fails across a roll.

    Args:
        dice_groups: Rolled groups
        crit_hit: Lowest d20 face that counts as a critical hit
        crit_fail: Highest d20 face that counts as a critical fail

    Returns:
        (hits, fails)
    """
    hits = fails = 0
    for group in dice_groups:
        for result in group.results:
            if is_critical_hit(result, group.sides, crit_hit):
                hits += 1
            elif is_critical_fail(result, group.sides, crit_fail):
                fails += 1
    return hits, fails

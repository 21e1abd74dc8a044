"""Dice engine."""

from .dice import DicePool, DiceRoller, RollOutcome, count_criticals

__all__ = ["DicePool", "DiceRoller", "RollOutcome", "count_criticals"]

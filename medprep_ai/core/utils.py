"""Small helpers shared by the services."""

import math


def round_half_up(value: float) -> int:
    """Round to the nearest integer, halves going up (2.5 -> 3, -2.5 -> -2).

    The built-in ``round`` rounds halves to the nearest even number, which
    would turn a 62.5 % score into 62.
    """
    return math.floor(value + 0.5)

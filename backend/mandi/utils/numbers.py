"""
Numeric input parsing.

WHAT: Turn client-supplied quantities and prices into finite floats
WHY: NaN compares False with everything and would slip past stock and floor checks
HOW: float() then math.isfinite(); failures become ValidationError
"""

import math

from .exceptions import ValidationError


def parse_finite(value, label: str) -> float:
    """
    Parse a finite number.

    Accepts ints, floats and numeric strings. "nan", "inf" and the JSON
    NaN/Infinity literals are rejected.

    Raises:
        ValidationError: Not a number, or not finite
    """
    try:
        number = float(value)
    except (TypeError, ValueError):
        raise ValidationError(f"{label} must be a number")
    if not math.isfinite(number):
        raise ValidationError(f"{label} must be a finite number")
    return number

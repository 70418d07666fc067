"""
Numeric normalisation utilities for the Dealsuite sync pipeline.

Deal sizes on the Wanted board are written in many ways: "1M", "1.5 million",
"500K", "€500.000", "2,5 mln". Every amount stored by the pipeline is
expressed in thousands of euros, and this module converts the textual
variants to that unit.

Author: Leonardo Pacciani-Mori
License: MIT
"""

import re
from typing import Optional, Union


# Multipliers (in euros) for the unit suffixes found on the board.
# Keys are matched case-insensitively after the number.
UNIT_MULTIPLIERS = {
    "k": 1_000,
    "thousand": 1_000,
    "m": 1_000_000,
    "mm": 1_000_000,
    "mln": 1_000_000,
    "mio": 1_000_000,
    "million": 1_000_000,
    "millions": 1_000_000,
    "b": 1_000_000_000,
    "bn": 1_000_000_000,
    "billion": 1_000_000_000,
}

_AMOUNT_PATTERN = re.compile(
    r"(?P<number>\d[\d.,\s]*)\s*(?P<unit>[a-z]+)?",
    re.IGNORECASE,
)


def parse_decimal_number(text: str) -> Optional[float]:
    """
    Parse a number written with either European or English separators.

    A single separator followed by exactly three digits is a thousands
    separator ("500.000", "1,250"); otherwise it is the decimal mark
    ("1.5", "2,5"). With both separators present, the last one is the
    decimal mark.

    Args:
        text: The numeric text, without currency symbols or units.

    Returns:
        Optional[float]: The parsed value, or None if it cannot be parsed.

    Example:
        >>> parse_decimal_number("500.000")
        500000.0
        >>> parse_decimal_number("2,5")
        2.5
        >>> parse_decimal_number("1.250.000,50")
        1250000.5
    """
    if not text:
        return None

    cleaned = re.sub(r"\s+", "", text)
    if not cleaned:
        return None

    has_dot = "." in cleaned
    has_comma = "," in cleaned

    if has_dot and has_comma:
        decimal_mark = "." if cleaned.rfind(".") > cleaned.rfind(",") else ","
        thousands_mark = "," if decimal_mark == "." else "."
        cleaned = cleaned.replace(thousands_mark, "").replace(decimal_mark, ".")
    elif has_dot or has_comma:
        mark = "." if has_dot else ","
        groups = cleaned.split(mark)
        if len(groups) > 2 or all(len(group) == 3 for group in groups[1:]):
            cleaned = "".join(groups)
        else:
            cleaned = cleaned.replace(mark, ".")

    try:
        return float(cleaned)
    except ValueError:
        return None


def parse_amount_to_thousands(
    value: Union[str, int, float, None]
) -> Optional[float]:
    """
    Normalise a deal amount to thousands of euros.

    Numbers (int/float) are assumed to be expressed in thousands already,
    because the extraction instruction asks for that unit. Strings are read
    as euros with an optional unit suffix and converted.

    Args:
        value: The raw amount: a number, a string such as "1M", "500K",
            "€ 500.000", "1.5 million", or None.

    Returns:
        Optional[float]: The amount in thousands of euros, or None when the
            value is missing or carries no number.

    Example:
        >>> parse_amount_to_thousands("1M")
        1000.0
        >>> parse_amount_to_thousands("500K")
        500.0
        >>> parse_amount_to_thousands("€500.000")
        500.0
        >>> parse_amount_to_thousands(250)
        250.0
    """
    if value is None or isinstance(value, bool):
        return None

    if isinstance(value, (int, float)):
        return float(value)

    if not isinstance(value, str):
        return None

    text = value.strip().lower().replace("€", "").replace("eur", "")
    if not text or text in ("null", "none", "n/a", "-"):
        return None

    match = _AMOUNT_PATTERN.search(text)
    if not match:
        return None

    number = parse_decimal_number(match.group("number"))
    if number is None:
        return None

    unit = (match.group("unit") or "").lower()
    multiplier = UNIT_MULTIPLIERS.get(unit, 1)

    return round(number * multiplier / 1000, 3)

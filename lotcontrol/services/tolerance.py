"""
Parser for free-text tolerance expressions found in spreadsheets.

Forms, first match wins:
    '240 +/- 5'  -> expected 240, range 235..245
    '10 - 20'    -> expected 15, range 10..20
    '7'          -> expected = min = max = 7 (range/numeric kinds only)
Anything else is kept verbatim as the expected value.
"""
import re
from typing import Optional, Union

from pydantic import BaseModel

from lotcontrol.db.schema import ParameterKind
from lotcontrol.services.evaluation import format_number


PLUS_MINUS_PATTERN = re.compile(r"([0-9.]+)\s*\+/-\s*([0-9.]+)")
RANGE_PATTERN = re.compile(r"([0-9.]+)\s*-\s*([0-9.]+)")
NUMBER_PATTERN = re.compile(r"^([0-9.]+)$")


class ParsedTolerance(BaseModel):
    expected_value: Optional[str] = None
    min_range: Optional[float] = None
    max_range: Optional[float] = None


def _to_float(text: str) -> Optional[float]:
    try:
        return float(text)
    except ValueError:
        return None


def parse_tolerance(value: Optional[str], kind: Union[ParameterKind, str]) -> Optional[ParsedTolerance]:
    """Returns None for empty input, meaning 'no specification'."""
    if value is None or value.strip() == "":
        return None

    clean_value = value.strip()
    kind = ParameterKind(kind)

    match = PLUS_MINUS_PATTERN.search(clean_value)
    if match:
        base, tolerance = _to_float(match.group(1)), _to_float(match.group(2))
        if base is not None and tolerance is not None:
            return ParsedTolerance(
                expected_value=format_number(base),
                min_range=base - tolerance,
                max_range=base + tolerance,
            )

    match = RANGE_PATTERN.search(clean_value)
    if match:
        low, high = _to_float(match.group(1)), _to_float(match.group(2))
        if low is not None and high is not None:
            return ParsedTolerance(
                expected_value=format_number((low + high) / 2),
                min_range=low,
                max_range=high,
            )

    match = NUMBER_PATTERN.match(clean_value)
    if match and kind in (ParameterKind.RANGE, ParameterKind.NUMERIC):
        number = _to_float(match.group(1))
        if number is not None:
            return ParsedTolerance(
                expected_value=format_number(number),
                min_range=number,
                max_range=number,
            )

    return ParsedTolerance(expected_value=clean_value)

"""
Control evaluation engine.

Pure functions: no session, no I/O. A stored specification (nullable
columns) is first turned into one of three variants, then a submitted
measurement is evaluated against it:

    RangeSpec    numeric, inclusive [min_range, max_range]
    NumericSpec  numeric, any finite number passes
    TextSpec     normalized text equality, or anything if nothing is expected

An empty submission is always valid: it means "not measured yet".
"""
import math
import re
import unicodedata
from typing import Literal, Optional, Union

from pydantic import BaseModel, ConfigDict

from lotcontrol.db.schema import ParameterKind


_WHITESPACE = re.compile(r"\s+")
_DISALLOWED = re.compile(r"[^a-z0-9 .,\-/°²³ñ]")


class RangeSpec(BaseModel):
    model_config = ConfigDict(frozen=True)

    kind: Literal["range"] = "range"
    min_range: float
    max_range: float
    unit: Optional[str] = None
    expected_value: Optional[str] = None


class NumericSpec(BaseModel):
    model_config = ConfigDict(frozen=True)

    kind: Literal["numeric"] = "numeric"
    expected_value: Optional[str] = None
    unit: Optional[str] = None


class TextSpec(BaseModel):
    model_config = ConfigDict(frozen=True)

    kind: Literal["text"] = "text"
    expected_value: Optional[str] = None


Specification = Union[RangeSpec, NumericSpec, TextSpec]


class EvaluationResult(BaseModel):
    model_config = ConfigDict(frozen=True)

    is_valid: bool
    message: Optional[str] = None
    numeric_value: Optional[float] = None


def to_specification(
    kind: Union[ParameterKind, str],
    expected_value: Optional[str] = None,
    min_range: Optional[float] = None,
    max_range: Optional[float] = None,
    unit: Optional[str] = None,
) -> Specification:
    """
    Builds the variant for a stored specification. A range without both
    bounds can only be checked for being numeric, so it becomes a NumericSpec.
    """
    kind = ParameterKind(kind)

    if kind == ParameterKind.RANGE and min_range is not None and max_range is not None:
        return RangeSpec(min_range=min_range, max_range=max_range,
                         unit=unit, expected_value=expected_value)
    if kind in (ParameterKind.RANGE, ParameterKind.NUMERIC):
        return NumericSpec(expected_value=expected_value, unit=unit)
    return TextSpec(expected_value=expected_value)


def format_number(value: float) -> str:
    """240.0 -> '240', 240.5 -> '240.5'"""
    if float(value).is_integer():
        return str(int(value))
    return repr(float(value))


def parse_number(value: str) -> Optional[float]:
    try:
        number = float(value.strip())
    except (TypeError, ValueError):
        return None
    if not math.isfinite(number):
        return None
    return number


def normalize_text(text: Optional[str]) -> str:
    """
    Case, accent and whitespace insensitive form used for text comparison.
    'Tránsparente  ' -> 'transparente'
    """
    if not isinstance(text, str):
        return ""

    text = text.lower()
    text = "".join(
        ch for ch in unicodedata.normalize("NFD", text)
        if not unicodedata.combining(ch)
    )
    text = text.replace("&", "").replace("þ", "")
    text = _WHITESPACE.sub(" ", text)
    text = _DISALLOWED.sub("", text)
    return _WHITESPACE.sub(" ", text).strip()


def evaluate_specification(submitted_value: Optional[str], spec: Specification) -> EvaluationResult:
    if submitted_value is None or submitted_value.strip() == "":
        return EvaluationResult(is_valid=True)

    if isinstance(spec, TextSpec):
        if spec.expected_value and normalize_text(submitted_value) != normalize_text(spec.expected_value):
            return EvaluationResult(
                is_valid=False,
                message=f"Value '{submitted_value}' does not match the expected '{spec.expected_value}'."
            )
        return EvaluationResult(is_valid=True)

    number = parse_number(submitted_value)
    if number is None:
        return EvaluationResult(
            is_valid=False,
            message=f"Value '{submitted_value}' is not numeric."
        )

    if isinstance(spec, RangeSpec) and (number < spec.min_range or number > spec.max_range):
        return EvaluationResult(
            is_valid=False,
            numeric_value=number,
            message=(
                f"Value {format_number(number)} is out of range "
                f"({format_number(spec.min_range)} - {format_number(spec.max_range)})."
            )
        )

    return EvaluationResult(is_valid=True, numeric_value=number)


def evaluate(
    submitted_value: Optional[str],
    kind: Union[ParameterKind, str],
    expected_value: Optional[str] = None,
    min_range: Optional[float] = None,
    max_range: Optional[float] = None,
) -> EvaluationResult:
    return evaluate_specification(
        submitted_value,
        to_specification(kind, expected_value, min_range, max_range),
    )


def format_full_range(spec: Specification) -> str:
    """Display text stored on each Control: '235 - 245 g', 'Transparente' or 'N/A'."""
    if isinstance(spec, RangeSpec):
        text = f"{format_number(spec.min_range)} - {format_number(spec.max_range)}"
        return f"{text} {spec.unit}" if spec.unit else text
    return spec.expected_value or "N/A"

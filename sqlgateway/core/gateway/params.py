import math
import re
from datetime import date, datetime
from decimal import Decimal
from numbers import Number
from typing import Any, Callable, Dict, List, Mapping, Tuple

from sqlgateway.core.errors import BindingError
from sqlgateway.core.schemas import Binding, WireType


# -----------------------------------------------------------------------------
# PARAMS MODULE
# Purpose: turn ":name" placeholders into SQL Server "@name" markers and type the values.
# Why: values never get spliced into SQL text, they travel as declared parameters.
#
# Placeholders inside string literals are rewritten too ('a:b_c' becomes 'a@b_c').
# -----------------------------------------------------------------------------

_PLACEHOLDER = re.compile(r":([A-Za-z_][A-Za-z0-9_]*)")
_IDENTIFIER = re.compile(r"^[A-Za-z_][A-Za-z0-9_]*$")

INT32_MIN = -(2**31)
INT32_MAX = 2**31 - 1


def to_named_markers(sql: str) -> str:
    """Rewrite every :identifier into @identifier, leaving other text alone."""
    return _PLACEHOLDER.sub(r"@\1", sql)


def _is_bool(value: Any) -> bool:
    return isinstance(value, bool)


def _is_whole_number(value: Any) -> bool:
    if isinstance(value, int):
        return True
    if isinstance(value, float):
        return value.is_integer()
    if isinstance(value, Decimal):
        return value.is_finite() and value == value.to_integral_value()
    return False


def _is_fraction(value: Any) -> bool:
    return isinstance(value, Number) and not isinstance(value, complex)


def _is_temporal(value: Any) -> bool:
    # datetime is a subclass of date
    return isinstance(value, date)


def _to_int(value: Any) -> int:
    whole = int(value)
    if not INT32_MIN <= whole <= INT32_MAX:
        raise BindingError(f"Integer value {whole} does not fit a 32-bit int.")
    return whole


def _to_float(value: Any) -> float:
    number = float(value)
    if not math.isfinite(number):
        raise BindingError("Floating point parameters must be finite numbers.")
    return number


def _to_datetime(value: date) -> datetime:
    if isinstance(value, datetime):
        return value
    return datetime(value.year, value.month, value.day)


# Order matters: bool is an int subclass and every whole number is also a Number
WIRE_TYPE_RULES: Tuple[Tuple[Callable[[Any], bool], WireType, Callable[[Any], Any]], ...] = (
    (_is_bool, WireType.BIT, bool),
    (_is_whole_number, WireType.INT, _to_int),
    (_is_fraction, WireType.FLOAT, _to_float),
    (_is_temporal, WireType.DATETIME2, _to_datetime),
)


def classify_value(name: str, value: Any) -> Binding:
    """
    Bind one parameter value to its wire type.

    Args:
        name: Placeholder name, without the leading marker.
        value: Caller-supplied scalar.

    Returns:
        Binding with the coerced value.

    Raises:
        BindingError: the name is not an identifier or the value cannot be bound.
    """
    if not isinstance(name, str) or not _IDENTIFIER.match(name):
        raise BindingError(f"Parameter name '{name}' is not a valid identifier.")

    for matches, wire_type, coerce in WIRE_TYPE_RULES:
        if matches(value):
            return Binding(name=name, wire_type=wire_type, value=coerce(value))

    return Binding(name=name, wire_type=WireType.NVARCHAR, value=str(value))


def build_bindings(params: Mapping[str, Any]) -> List[Binding]:
    """Classify every non-null parameter. Null values are left unbound."""
    return [
        classify_value(name, value)
        for name, value in (params or {}).items()
        if value is not None
    ]


def translate_params(sql: str, params: Dict[str, Any]) -> Tuple[str, List[Binding]]:
    """
    Rewrite placeholders and build bindings in one pass.

    Example:
        sql, bindings = translate_params("SELECT * FROM t WHERE id = :id", {"id": 42})
        # sql == "SELECT * FROM t WHERE id = @id"
        # bindings == [Binding(name="id", wire_type=WireType.INT, value=42)]
    """
    return to_named_markers(sql), build_bindings(params)

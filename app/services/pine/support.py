"""
Support namespaces exposed to scripts: math, array, str, color, input.

Namespaces are read-only records built per invocation. math functions are
vectorized (series in, series out); array functions operate on Python lists;
str functions operate on simple values.
"""

from __future__ import annotations

import math
import re
from typing import Any, Callable, Mapping, Optional

import numpy as np

from app.services.pine import colors
from app.services.pine.constants import COLOR_HEX
from app.services.pine.errors import PineRuntimeError
from app.services.pine.values import NA, as_int, is_na, last_value


# =============================================================================
# Namespace Record
# =============================================================================


class Namespace:
    """
    Attribute record exposed to scripts (`ta`, `math`, `color`, ...).

    Optionally callable: `input(...)` and `log(...)` are both namespaces and
    functions.
    """

    def __init__(
        self,
        name: str,
        members: Mapping[str, Any],
        call: Optional[Callable[..., Any]] = None,
    ):
        self.name = name
        self._members = dict(members)
        self._call = call

    def member(self, attr: str) -> Any:
        try:
            return self._members[attr]
        except KeyError:
            raise PineRuntimeError(f"Unknown member '{self.name}.{attr}'")

    def __contains__(self, attr: str) -> bool:
        return attr in self._members

    def __call__(self, *args: Any, **kwargs: Any) -> Any:
        if self._call is None:
            raise PineRuntimeError(f"'{self.name}' is a namespace, not a function")
        return self._call(*args, **kwargs)

    def __repr__(self) -> str:
        return f"Namespace({self.name!r})"


# =============================================================================
# math
# =============================================================================


def _vectorized(func: Callable[..., np.ndarray]) -> Callable[..., Any]:
    """Run a numpy ufunc; scalar inputs come back as Python floats."""

    def call(*args: Any) -> Any:
        arrays = [np.asarray(a, dtype=float) for a in args]
        with np.errstate(divide="ignore", invalid="ignore"):
            result = func(*arrays)
        if isinstance(result, np.ndarray) and result.ndim == 0:
            return float(result)
        return result

    return call


def _math_round(value: Any, precision: Any = None) -> Any:
    """Round half away from zero, optionally to `precision` decimals."""
    factor = 10.0 ** as_int(precision, "precision") if precision is not None else 1.0
    x = np.asarray(value, dtype=float) * factor
    result = np.sign(x) * np.floor(np.abs(x) + 0.5) / factor
    if result.ndim == 0:
        result = float(result)
        return int(result) if precision is None and not math.isnan(result) else result
    return result


def _reduce(func: Callable[..., np.ndarray], name: str) -> Callable[..., Any]:
    def call(*args: Any) -> Any:
        if not args:
            raise PineRuntimeError(f"math.{name}() needs at least one argument")
        if all(isinstance(a, int) and not isinstance(a, bool) for a in args):
            return int(func(np.asarray(args)))
        result = args[0]
        for a in args[1:]:
            result = _vectorized(_PAIRWISE[name])(result, a)
        if len(args) == 1:
            result = _vectorized(lambda x: x)(result)
        return result

    return call


_PAIRWISE: dict[str, Callable[..., np.ndarray]] = {
    "min": np.minimum,
    "max": np.maximum,
}


def _math_sum(*args: Any) -> Any:
    if not args:
        raise PineRuntimeError("math.sum() needs at least one argument")
    total: Any = 0.0
    for a in args:
        total = _vectorized(np.add)(total, a)
    return total


def _math_avg(*args: Any) -> Any:
    if not args:
        raise PineRuntimeError("math.avg() needs at least one argument")
    return _vectorized(lambda s: s / len(args))(_math_sum(*args))


def build_math_namespace(rng: np.random.Generator) -> Namespace:
    def random(min: Any = 0.0, max: Any = 1.0, seed: Any = None) -> float:
        lo = float(last_value(min))
        hi = float(last_value(max))
        return float(rng.uniform(lo, hi))

    members: dict[str, Any] = {
        "abs": _vectorized(np.abs),
        "floor": _vectorized(np.floor),
        "ceil": _vectorized(np.ceil),
        "round": _math_round,
        "sign": _vectorized(np.sign),
        "sqrt": _vectorized(np.sqrt),
        "pow": _vectorized(np.power),
        "exp": _vectorized(np.exp),
        "log": _vectorized(np.log),
        "log10": _vectorized(np.log10),
        "sin": _vectorized(np.sin),
        "cos": _vectorized(np.cos),
        "tan": _vectorized(np.tan),
        "asin": _vectorized(np.arcsin),
        "acos": _vectorized(np.arccos),
        "atan": _vectorized(np.arctan),
        "toradians": _vectorized(np.radians),
        "todegrees": _vectorized(np.degrees),
        "min": _reduce(np.min, "min"),
        "max": _reduce(np.max, "max"),
        "sum": _math_sum,
        "avg": _math_avg,
        "random": random,
        # Constants
        "pi": math.pi,
        "e": math.e,
        "phi": (1 + math.sqrt(5)) / 2,
        "rphi": (math.sqrt(5) - 1) / 2,
    }
    return Namespace("math", members)


# =============================================================================
# array
# =============================================================================


def _check_array(value: Any, func: str) -> list:
    if not isinstance(value, list):
        raise PineRuntimeError(f"array.{func}() expects an array, got {type(value).__name__}")
    return value


def _array_index(arr: list, index: Any, func: str) -> int:
    i = as_int(index, f"array.{func} index")
    if i < 0:
        i += len(arr)
    if not 0 <= i < len(arr):
        raise PineRuntimeError(
            f"array.{func}(): index {as_int(index)} out of bounds (size {len(arr)})"
        )
    return i


def _array_new(size: Any = 0, initial_value: Any = NA) -> list:
    n = as_int(size, "array size")
    if n < 0:
        raise PineRuntimeError(f"array size must be >= 0, got {n}")
    return [initial_value] * n


def _array_from(*items: Any) -> list:
    return list(items)


def _array_size(id: Any) -> int:
    return len(_check_array(id, "size"))


def _array_get(id: Any, index: Any) -> Any:
    arr = _check_array(id, "get")
    return arr[_array_index(arr, index, "get")]


def _array_set(id: Any, index: Any, value: Any) -> None:
    arr = _check_array(id, "set")
    arr[_array_index(arr, index, "set")] = value


def _array_push(id: Any, value: Any) -> None:
    _check_array(id, "push").append(value)


def _array_pop(id: Any) -> Any:
    arr = _check_array(id, "pop")
    if not arr:
        raise PineRuntimeError("array.pop(): array is empty")
    return arr.pop()


def _array_first(id: Any) -> Any:
    arr = _check_array(id, "first")
    if not arr:
        raise PineRuntimeError("array.first(): array is empty")
    return arr[0]


def _array_last(id: Any) -> Any:
    arr = _check_array(id, "last")
    if not arr:
        raise PineRuntimeError("array.last(): array is empty")
    return arr[-1]


def _array_includes(id: Any, value: Any) -> bool:
    return any(item == value for item in _check_array(id, "includes"))


def _array_clear(id: Any) -> None:
    _check_array(id, "clear").clear()


def _array_stat(func: Callable[..., Any], name: str, empty: Any) -> Callable[[Any], Any]:
    """Reduce over elements; series elements reduce bar by bar."""

    def call(id: Any) -> Any:
        arr = _check_array(id, name)
        if not arr:
            return empty
        values = np.asarray(arr, dtype=float)
        with np.errstate(invalid="ignore"):
            result = func(values, axis=0)
        return float(result) if np.ndim(result) == 0 else result

    return call


def build_array_namespace() -> Namespace:
    members: dict[str, Any] = {
        "new": _array_new,
        "new_float": _array_new,
        "new_int": _array_new,
        "new_bool": _array_new,
        "new_string": _array_new,
        "new_color": _array_new,
        "from": _array_from,
        "size": _array_size,
        "get": _array_get,
        "set": _array_set,
        "push": _array_push,
        "pop": _array_pop,
        "first": _array_first,
        "last": _array_last,
        "includes": _array_includes,
        "clear": _array_clear,
        "sum": _array_stat(np.sum, "sum", 0.0),
        "avg": _array_stat(np.mean, "avg", NA),
        "min": _array_stat(np.min, "min", NA),
        "max": _array_stat(np.max, "max", NA),
        "stdev": _array_stat(np.std, "stdev", NA),
    }
    return Namespace("array", members)


# =============================================================================
# str
# =============================================================================

_PLACEHOLDER_PATTERN = re.compile(r"\{(\d+)(?:,[^}]*)?\}")
_NUMBER_FORMAT_PATTERN = re.compile(r"^[#0,]*(?:\.([#0]+))?$")


def tostring(value: Any, format: Any = None) -> str:
    """Pine-style string conversion; series use their last value."""
    value = last_value(value)
    if isinstance(value, str):
        return value
    if value is None:
        return "NaN"
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, list):
        return "[" + ", ".join(tostring(v) for v in value) + "]"
    if isinstance(value, (int, float, np.number)):
        number = float(value)
        if math.isnan(number):
            return "NaN"
        if isinstance(format, str):
            match = _NUMBER_FORMAT_PATTERN.match(format)
            if match:
                decimals = match.group(1) or ""
                text = f"{number:.{len(decimals)}f}"
                if "." in text and not decimals.startswith("0"):
                    text = text.rstrip("0").rstrip(".")
                return text
        if number.is_integer():
            return str(int(number))
        return f"{number:.10g}"
    return str(value)


def _str_format(formatString: Any, *args: Any) -> str:
    def replace(match: re.Match) -> str:
        index = int(match.group(1))
        if index >= len(args):
            return match.group(0)
        return tostring(args[index])

    return _PLACEHOLDER_PATTERN.sub(replace, str(last_value(formatString)))


def _str_tonumber(string: Any) -> float:
    try:
        return float(str(last_value(string)).strip())
    except ValueError:
        return NA


def _text(value: Any) -> str:
    value = last_value(value)
    return value if isinstance(value, str) else tostring(value)


def build_str_namespace() -> Namespace:
    members: dict[str, Any] = {
        "length": lambda string: len(_text(string)),
        "tonumber": _str_tonumber,
        "tostring": tostring,
        "format": _str_format,
        "contains": lambda source, str: _text(str) in _text(source),
        "lower": lambda source: _text(source).lower(),
        "upper": lambda source: _text(source).upper(),
        "trim": lambda source: _text(source).strip(),
        "split": lambda string, separator: _text(string).split(_text(separator))
        if _text(separator)
        else list(_text(string)),
        "startswith": lambda source, str: _text(source).startswith(_text(str)),
        "endswith": lambda source, str: _text(source).endswith(_text(str)),
        "replace_all": lambda source, target, replacement: _text(source).replace(
            _text(target), _text(replacement)
        ),
    }
    return Namespace("str", members)


# =============================================================================
# color
# =============================================================================


def build_color_namespace() -> Namespace:
    members: dict[str, Any] = {
        name: hex_value for name, hex_value in COLOR_HEX.items() if name != "new"
    }
    members["new"] = colors.new
    members["rgb"] = colors.rgb
    return Namespace("color", members)


# =============================================================================
# input
# =============================================================================

INPUT_KINDS = (
    "int",
    "float",
    "bool",
    "string",
    "color",
    "source",
    "timeframe",
    "session",
    "symbol",
    "price",
)


def input_default(*args: Any, **kwargs: Any) -> Any:
    """Inputs are constants: return `defval=` or the first positional argument."""
    if "defval" in kwargs:
        return kwargs["defval"]
    if args:
        return args[0]
    raise PineRuntimeError("input() needs a default value")


def build_input_namespace() -> Namespace:
    return Namespace(
        "input", {kind: input_default for kind in INPUT_KINDS}, call=input_default
    )


def na_fn(value: Any) -> Any:
    """na(x) as a function."""
    return is_na(value)

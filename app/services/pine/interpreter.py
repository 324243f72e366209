"""
Execution host: environment record and tree-walking evaluator.

The translated program is evaluated once, statement by statement. Every
expression evaluates over whole series at a time (numpy arrays of length N),
so `var`/`varip` bindings are initialized once and per-bar accumulation is
not reproduced.

Sinks append to a buffer owned by one Interpreter; the runner reads it only
after the whole program completed.
"""

from __future__ import annotations

import math
import operator
from dataclasses import dataclass
from typing import Any, Callable, Optional

import numpy as np
import structlog

from app.services.pine import colors
from app.services.pine.bars import BarSeries
from app.services.pine.constants import PLOT_STYLES, RANDOM_SEED
from app.services.pine.errors import PineRuntimeError
from app.services.pine.models import PlotKind, PlotResult
from app.services.pine.nodes import (
    ArrayLiteral,
    Assign,
    Attribute,
    BinOp,
    Call,
    Comment,
    Const,
    Declaration,
    Destructure,
    Expr,
    ExprStmt,
    FunctionDef,
    Index,
    Name,
    Program,
    Reassign,
    Sink,
    Statement,
    Ternary,
    UnaryOp,
)
from app.services.pine.support import (
    Namespace,
    build_array_namespace,
    build_color_namespace,
    build_input_namespace,
    build_math_namespace,
    build_str_namespace,
    na_fn,
    tostring,
)
from app.services.pine.ta import TA_FUNCTION_TABLE, bind_ta_function
from app.services.pine.values import (
    NA,
    divide,
    is_na,
    is_series,
    last_value,
    nz,
    select,
    shift,
    to_bool,
    to_series,
)

logger = structlog.get_logger(__name__)

MAX_CALL_DEPTH = 64

# Python exceptions a faulty script can trigger inside library code
EVALUATION_ERRORS = (
    ArithmeticError,
    IndexError,
    KeyError,
    TypeError,
    ValueError,
)

# plot() styles; hline and bgcolor are separate sinks
_PLOT_KINDS = {
    kind.value: kind
    for kind in PlotKind
    if kind not in (PlotKind.HLINE, PlotKind.BGCOLOR)
}

_COMPARISONS: dict[str, Callable[[Any, Any], Any]] = {
    "==": operator.eq,
    "!=": operator.ne,
    "<": operator.lt,
    "<=": operator.le,
    ">": operator.gt,
    ">=": operator.ge,
}

_ARITHMETIC: dict[str, Callable[[Any, Any], Any]] = {
    "+": operator.add,
    "-": operator.sub,
    "*": operator.mul,
}

_COMPOUND_OPS = {"+=": "+", "-=": "-", "*=": "*", "/=": "/", "%=": "%"}


@dataclass(frozen=True)
class UserFunction:
    """Single-expression function declared with `name(params) => body`."""

    name: str
    params: tuple[str, ...]
    body: Expr


@dataclass(frozen=True)
class FillRecord:
    """A fill() call: kept for debug output, never a result entry."""

    plot1: str
    plot2: str
    color: Optional[str]
    title: Optional[str]
    line: int


# =============================================================================
# Environment
# =============================================================================


def _script_logger(debug: bool, level: str) -> Callable[..., None]:
    def emit(message: Any = "", *args: Any) -> None:
        if not debug:
            return
        text = tostring(message)
        if args:
            text = text.format(*(tostring(a) for a in args))
        getattr(logger, level)("pine_script_log", message=text)

    return emit


def build_environment(bars: BarSeries, debug: bool = False) -> dict[str, Any]:
    """
    Fresh name -> value record for one invocation.

    Contains the built-in series, the ta/math/array/str/color/input
    namespaces, nz/na/na_fn and the debug/log hooks. Sinks are AST nodes
    after translation and have no binding here.
    """
    n = len(bars)
    env: dict[str, Any] = dict(bars.as_bindings())
    env["ta"] = Namespace(
        "ta", {name: bind_ta_function(func, n) for name, func in TA_FUNCTION_TABLE.items()}
    )
    env["math"] = build_math_namespace(np.random.default_rng(RANDOM_SEED))
    env["array"] = build_array_namespace()
    env["str"] = build_str_namespace()
    env["color"] = build_color_namespace()
    env["input"] = build_input_namespace()
    env["plot"] = Namespace("plot", PLOT_STYLES)
    env["nz"] = nz
    env["na"] = NA
    env["na_fn"] = na_fn
    env["debug"] = _script_logger(debug, "debug")
    env["log"] = Namespace(
        "log",
        {
            "info": _script_logger(debug, "info"),
            "warning": _script_logger(debug, "warning"),
            "error": _script_logger(debug, "error"),
        },
        call=_script_logger(debug, "info"),
    )
    return env


# =============================================================================
# Interpreter
# =============================================================================


class Interpreter:
    """Evaluates one translated program against one bar series."""

    def __init__(self, bars: BarSeries, debug: bool = False):
        self.bars = bars
        self.bar_count = len(bars)
        self.debug = debug
        self.env = build_environment(bars, debug=debug)
        self.results: list[PlotResult] = []
        self.fills: list[FillRecord] = []
        self._declared: set[str] = set()
        self._frames: list[dict[str, Any]] = []
        self._line = 0

    def run(self, program: Program) -> list[PlotResult]:
        """
        Execute every statement in order and return the sink buffer.

        Raises:
            PineRuntimeError: On the first failing statement, with its line
        """
        for stmt in program.statements:
            self._line = stmt.line
            try:
                with np.errstate(all="ignore"):
                    self.execute(stmt)
            except PineRuntimeError as e:
                if e.line is None:
                    e.line = stmt.line
                raise
            except EVALUATION_ERRORS as e:
                raise PineRuntimeError(str(e) or type(e).__name__, stmt.line) from e
        return self.results

    # -------------------------------------------------------------------------
    # Statements
    # -------------------------------------------------------------------------

    def execute(self, stmt: Statement) -> None:
        if isinstance(stmt, (Comment, Declaration)):
            return
        if isinstance(stmt, Assign):
            self._declare(stmt.target)
            self.env[stmt.target] = self.evaluate(stmt.value)
        elif isinstance(stmt, Reassign):
            if stmt.target not in self._declared:
                raise PineRuntimeError(
                    f"Cannot reassign undeclared variable '{stmt.target}'"
                )
            value = self.evaluate(stmt.value)
            if stmt.op != ":=":
                value = self._binary(_COMPOUND_OPS[stmt.op], self.env[stmt.target], value)
            self.env[stmt.target] = value
        elif isinstance(stmt, Destructure):
            self._destructure(stmt)
        elif isinstance(stmt, FunctionDef):
            self._declare(stmt.name)
            self.env[stmt.name] = UserFunction(stmt.name, stmt.params, stmt.body)
        elif isinstance(stmt, ExprStmt):
            self.evaluate(stmt.expr)
        else:
            raise PineRuntimeError(f"Unsupported statement {type(stmt).__name__}")

    def _declare(self, name: str) -> None:
        if name in self._declared:
            raise PineRuntimeError(
                f"Variable '{name}' is already declared; use ':=' to reassign it"
            )
        self._declared.add(name)

    def _destructure(self, stmt: Destructure) -> None:
        value = self.evaluate(stmt.value)
        if isinstance(value, dict):
            items = list(value.values())
        elif isinstance(value, (list, tuple)):
            items = list(value)
        else:
            raise PineRuntimeError(
                f"Cannot destructure a {type(value).__name__} value into "
                f"{len(stmt.targets)} names"
            )
        if len(items) != len(stmt.targets):
            raise PineRuntimeError(
                f"Expected {len(stmt.targets)} values to destructure, got {len(items)}"
            )
        for target, item in zip(stmt.targets, items):
            self._declare(target)
            self.env[target] = item

    # -------------------------------------------------------------------------
    # Expressions
    # -------------------------------------------------------------------------

    def evaluate(self, expr: Expr) -> Any:
        if isinstance(expr, Const):
            return expr.value
        if isinstance(expr, Name):
            return self._lookup(expr.id)
        if isinstance(expr, Attribute):
            return self._attribute(self.evaluate(expr.obj), expr.attr)
        if isinstance(expr, Index):
            return self._index(self.evaluate(expr.obj), self.evaluate(expr.index))
        if isinstance(expr, Call):
            return self._call(expr)
        if isinstance(expr, UnaryOp):
            return self._unary(expr.op, self.evaluate(expr.operand))
        if isinstance(expr, BinOp):
            return self._binary(expr.op, self.evaluate(expr.left), self.evaluate(expr.right))
        if isinstance(expr, Ternary):
            return self._ternary(expr)
        if isinstance(expr, ArrayLiteral):
            return [self.evaluate(item) for item in expr.items]
        if isinstance(expr, Sink):
            return self._sink(expr)
        raise PineRuntimeError(f"Unsupported expression {type(expr).__name__}")

    def _lookup(self, name: str) -> Any:
        for frame in reversed(self._frames):
            if name in frame:
                return frame[name]
        try:
            return self.env[name]
        except KeyError:
            raise PineRuntimeError(f"Undeclared identifier '{name}'")

    def _attribute(self, obj: Any, attr: str) -> Any:
        if isinstance(obj, Namespace):
            return obj.member(attr)
        if isinstance(obj, dict):
            if attr not in obj:
                raise PineRuntimeError(f"Unknown field '{attr}'")
            return obj[attr]
        raise PineRuntimeError(f"Cannot read '{attr}' of a {type(obj).__name__} value")

    def _index(self, obj: Any, index: Any) -> Any:
        offset = last_value(index)
        if is_na(offset):
            raise PineRuntimeError("History offset must not be na")
        if isinstance(obj, list):
            i = int(offset)
            if not -len(obj) <= i < len(obj):
                raise PineRuntimeError(f"Index {i} out of bounds (size {len(obj)})")
            return obj[i]
        return shift(obj, int(offset))

    def _call(self, expr: Call) -> Any:
        func = self.evaluate(expr.func)
        args = [self.evaluate(a) for a in expr.args]
        kwargs = {k: self.evaluate(v) for k, v in expr.kwargs}
        if isinstance(func, UserFunction):
            return self._call_user(func, args, kwargs)
        if not callable(func):
            raise PineRuntimeError(f"A {type(func).__name__} value is not callable")
        return func(*args, **kwargs)

    def _call_user(self, func: UserFunction, args: list, kwargs: dict) -> Any:
        if len(args) > len(func.params):
            raise PineRuntimeError(
                f"{func.name}() takes {len(func.params)} arguments, got {len(args)}"
            )
        frame = dict(zip(func.params, args))
        for key, value in kwargs.items():
            if key not in func.params:
                raise PineRuntimeError(f"{func.name}() has no parameter '{key}'")
            frame[key] = value
        missing = [p for p in func.params if p not in frame]
        if missing:
            raise PineRuntimeError(f"{func.name}() missing argument '{missing[0]}'")
        if len(self._frames) >= MAX_CALL_DEPTH:
            raise PineRuntimeError(f"Maximum call depth exceeded in {func.name}()")

        self._frames.append(frame)
        try:
            return self.evaluate(func.body)
        finally:
            self._frames.pop()

    def _unary(self, op: str, value: Any) -> Any:
        if op == "not":
            truth = to_bool(value)
            return np.logical_not(truth) if is_series(truth) else not truth
        if op == "-":
            if is_series(value):
                return -value.astype(float)
            return -value
        return value

    def _binary(self, op: str, left: Any, right: Any) -> Any:
        if op in ("and", "or"):
            a, b = to_bool(left), to_bool(right)
            if is_series(a) or is_series(b):
                func = np.logical_and if op == "and" else np.logical_or
                return func(a, b)
            return (a and b) if op == "and" else (a or b)

        if op in _COMPARISONS:
            return self._compare(op, left, right)

        if op == "+" and (_is_text(left) or _is_text(right)):
            return _concat(left, right)
        if op == "/":
            return divide(left, right)
        if op == "%":
            return _modulo(left, right)
        if op in _ARITHMETIC:
            if is_series(left) or is_series(right):
                return _ARITHMETIC[op](_numeric(left), _numeric(right))
            return _ARITHMETIC[op](left, right)
        raise PineRuntimeError(f"Unsupported operator '{op}'")

    def _compare(self, op: str, left: Any, right: Any) -> Any:
        func = _COMPARISONS[op]
        if _is_text(left) or _is_text(right):
            if is_series(left) or is_series(right):
                n = self.bar_count
                lhs = left if is_series(left) else [left] * n
                rhs = right if is_series(right) else [right] * n
                return np.array([bool(func(a, b)) for a, b in zip(lhs, rhs)], dtype=bool)
            return bool(func(left, right))
        if is_series(left) or is_series(right):
            a, b = _numeric(left), _numeric(right)
            # Comparisons involving na are false
            valid = ~(np.isnan(a) | np.isnan(b))
            return np.logical_and(func(a, b), valid)
        if is_na(left) or is_na(right):
            return False
        return bool(func(left, right))

    def _ternary(self, expr: Ternary) -> Any:
        condition = to_bool(self.evaluate(expr.condition))
        if not is_series(condition):
            branch = expr.when_true if condition else expr.when_false
            return self.evaluate(branch)
        return select(
            condition, self.evaluate(expr.when_true), self.evaluate(expr.when_false)
        )

    # -------------------------------------------------------------------------
    # Sinks
    # -------------------------------------------------------------------------

    def _sink(self, sink: Sink) -> Any:
        args = {key: self.evaluate(value) for key, value in sink.args}
        if sink.kind == "plot":
            return self._emit_plot(args)
        if sink.kind == "hline":
            return self._emit_hline(args)
        if sink.kind == "bgcolor":
            return self._emit_bgcolor(args)
        if sink.kind == "fill":
            return self._record_fill(args)
        raise PineRuntimeError(f"Unknown sink '{sink.kind}'")

    def _emit(self, result: PlotResult) -> PlotResult:
        if result.values.shape != (self.bar_count,):
            raise PineRuntimeError(
                f"{result.name}: expected {self.bar_count} values, "
                f"got {result.values.shape[0]}"
            )
        self.results.append(result)
        return result

    def _emit_plot(self, args: dict[str, Any]) -> PlotResult:
        series = args["series"]
        if isinstance(series, (list, dict, Namespace)):
            raise PineRuntimeError(f"plot() cannot draw a {type(series).__name__} value")
        style = last_value(args.get("style", "line"))
        return self._emit(
            PlotResult(
                name=tostring(args.get("title", "Plot")),
                values=to_series(series, self.bar_count).copy(),
                kind=_PLOT_KINDS.get(style, PlotKind.LINE),
                color=_first_color(args.get("color")),
                line_width=_line_width(args.get("linewidth")),
            )
        )

    def _emit_hline(self, args: dict[str, Any]) -> PlotResult:
        price = last_value(args["price"])
        if isinstance(price, bool) or not isinstance(price, (int, float, np.number)):
            raise PineRuntimeError(f"hline() price must be a number, got {price!r}")
        price = float(price)
        return self._emit(
            PlotResult(
                name=tostring(args.get("title", f"Level {price:g}")),
                values=np.full(self.bar_count, price),
                kind=PlotKind.HLINE,
                color=_first_color(args.get("color")),
                line_width=_line_width(args.get("linewidth")),
                hline_value=price,
            )
        )

    def _emit_bgcolor(self, args: dict[str, Any]) -> PlotResult:
        color = args["color"]
        if is_series(color):
            present = ~np.asarray(is_na(color), dtype=bool)
            if color.dtype != object:
                raise PineRuntimeError("bgcolor() expects a color, got a numeric series")
        elif colors.is_color(color):
            present = np.ones(self.bar_count, dtype=bool)
        elif is_na(color):
            present = np.zeros(self.bar_count, dtype=bool)
        else:
            raise PineRuntimeError(f"bgcolor() expects a color, got {color!r}")
        return self._emit(
            PlotResult(
                name=tostring(args.get("title", "bgcolor")),
                values=np.where(present, 1.0, NA),
                kind=PlotKind.BGCOLOR,
                color=_first_color(color),
            )
        )

    def _record_fill(self, args: dict[str, Any]) -> None:
        record = FillRecord(
            plot1=_handle_name(args["plot1"]),
            plot2=_handle_name(args["plot2"]),
            color=_first_color(args.get("color")),
            title=tostring(args["title"]) if "title" in args else None,
            line=self._line,
        )
        self.fills.append(record)
        if self.debug:
            logger.debug(
                "pine_fill_recorded",
                plot1=record.plot1,
                plot2=record.plot2,
                color=record.color,
                line=record.line,
            )
        return None


# =============================================================================
# Helpers
# =============================================================================


def _is_text(value: Any) -> bool:
    if isinstance(value, str):
        return True
    return is_series(value) and value.dtype == object


def _numeric(value: Any) -> Any:
    if is_series(value):
        return to_series(value, value.shape[0])
    if value is None:
        return NA
    return float(value)


def _concat(left: Any, right: Any) -> Any:
    if not is_series(left) and not is_series(right):
        return tostring(left) + tostring(right)
    n = left.shape[0] if is_series(left) else right.shape[0]
    out = np.empty(n, dtype=object)
    for i in range(n):
        a = left[i] if is_series(left) else left
        b = right[i] if is_series(right) else right
        out[i] = tostring(a) + tostring(b)
    return out


def _modulo(left: Any, right: Any) -> Any:
    """Remainder with the dividend's sign; x % 0 is na."""
    if not is_series(left) and not is_series(right):
        if is_na(left) or is_na(right) or right == 0:
            return NA
        result = math.fmod(left, right)
        if isinstance(left, int) and isinstance(right, int):
            return int(result)
        return result
    a, b = _numeric(left), _numeric(right)
    out = np.fmod(a, b)
    return np.where(b == 0, NA, out)


def _first_color(value: Any) -> Optional[str]:
    """The static color of a sink: a constant color or the first present one."""
    if is_series(value):
        for item in value:
            if colors.is_color(item):
                return item
        return None
    return value if colors.is_color(value) else None


def _line_width(value: Any) -> Optional[int]:
    value = last_value(value)
    if value is None or isinstance(value, bool) or is_na(value):
        return None
    if not isinstance(value, (int, float, np.number)):
        raise PineRuntimeError(f"linewidth must be a number, got {value!r}")
    return int(value)


def _handle_name(value: Any) -> str:
    if isinstance(value, PlotResult):
        return value.name
    return tostring(value)

"""
Pine Script translator.

Parses script text and applies an ordered list of AST rewrites that turn the
recognized Pine subset into the normalized program the interpreter runs:

1. Version directive captured (the parser keeps it off the statement list)
2. indicator/strategy/library calls -> Declaration
3. input.*(default, ...) -> the default expression
4. var/varip/plain bindings (parsed directly into Assign modes)
5. [a, b, c] = ta.bb/ta.macd(...) -> hidden binding plus field reads
6. Short ta forms expanded to their full argument lists
7. plot/hline/bgcolor/fill -> Sink nodes with normalized arguments
8. color.X / color.new(color.X, T) folded to hex constants
9. na -> NaN constant, na(x) -> na_fn(x)

Every rewrite only matches its own input shape, so running the translator on
render() output changes nothing.
"""

from __future__ import annotations

import json
import math
from dataclasses import dataclass, field
from typing import Any, Callable, Optional

from app.services.pine import colors
from app.services.pine.constants import (
    COLOR_HEX,
    DEFAULT_PINE_VERSION,
    DESTRUCTURE_FIELDS,
    HLINE_GRAY,
    PLOT_STYLES,
    PRIMARY_BLUE,
)
from app.services.pine.errors import PineSyntaxError
from app.services.pine.models import ScriptInput
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
from app.services.pine.parser import parse
from app.services.pine.values import NA

DECLARATION_KINDS = frozenset(["indicator", "strategy", "library"])

# Positional parameter order per sink
SINK_PARAMS = {
    "plot": ("series", "title", "color", "linewidth", "style"),
    "hline": ("price", "title", "color", "linewidth"),
    "bgcolor": ("color", "title"),
    "fill": ("plot1", "plot2", "color", "title"),
}

# Parameters a sink cannot do without
SINK_REQUIRED = {
    "plot": ("series",),
    "hline": ("price",),
    "bgcolor": ("color",),
    "fill": ("plot1", "plot2"),
}

HIDDEN_PREFIX = "__"

ExprRule = Callable[[Expr, bool, int], Expr]


@dataclass(frozen=True)
class TranslatedScript:
    """Output of translate(): the runnable program plus what was folded away."""

    program: Program
    version: Optional[int] = None  # None when the directive is absent
    title: Optional[str] = None
    inputs: tuple[ScriptInput, ...] = field(default_factory=tuple)

    @property
    def effective_version(self) -> int:
        return self.version if self.version is not None else DEFAULT_PINE_VERSION

    def render(self) -> str:
        return render(self.program)


# =============================================================================
# Tree Mapping
# =============================================================================


def _map_expr(expr: Expr, rule: ExprRule, line: int, callee: bool = False) -> Expr:
    """Rebuild an expression bottom-up, applying rule to every node.

    `callee` is True for the function position of a Call so rules can tell
    `ta.tr` (a value) from `ta.tr(...)` (a call).
    """
    if isinstance(expr, Call):
        expr = Call(
            _map_expr(expr.func, rule, line, callee=True),
            tuple(_map_expr(a, rule, line) for a in expr.args),
            tuple((k, _map_expr(v, rule, line)) for k, v in expr.kwargs),
        )
    elif isinstance(expr, Attribute):
        expr = Attribute(_map_expr(expr.obj, rule, line), expr.attr)
    elif isinstance(expr, Index):
        expr = Index(_map_expr(expr.obj, rule, line), _map_expr(expr.index, rule, line))
    elif isinstance(expr, UnaryOp):
        expr = UnaryOp(expr.op, _map_expr(expr.operand, rule, line))
    elif isinstance(expr, BinOp):
        expr = BinOp(
            expr.op, _map_expr(expr.left, rule, line), _map_expr(expr.right, rule, line)
        )
    elif isinstance(expr, Ternary):
        expr = Ternary(
            _map_expr(expr.condition, rule, line),
            _map_expr(expr.when_true, rule, line),
            _map_expr(expr.when_false, rule, line),
        )
    elif isinstance(expr, ArrayLiteral):
        expr = ArrayLiteral(tuple(_map_expr(i, rule, line) for i in expr.items))
    elif isinstance(expr, Sink):
        expr = Sink(expr.kind, tuple((k, _map_expr(v, rule, line)) for k, v in expr.args))
    return rule(expr, callee, line)


def _map_program(program: Program, rule: ExprRule) -> Program:
    body: list[Statement] = []
    for stmt in program.body:
        line = stmt.line
        if isinstance(stmt, Assign):
            stmt = Assign(
                stmt.target,
                _map_expr(stmt.value, rule, line),
                mode=stmt.mode,
                type_name=stmt.type_name,
                line=line,
            )
        elif isinstance(stmt, Reassign):
            stmt = Reassign(stmt.target, stmt.op, _map_expr(stmt.value, rule, line), line=line)
        elif isinstance(stmt, Destructure):
            stmt = Destructure(stmt.targets, _map_expr(stmt.value, rule, line), line=line)
        elif isinstance(stmt, FunctionDef):
            stmt = FunctionDef(
                stmt.name, stmt.params, _map_expr(stmt.body, rule, line), line=line
            )
        elif isinstance(stmt, ExprStmt):
            stmt = ExprStmt(_map_expr(stmt.expr, rule, line), line=line)
        body.append(stmt)
    return Program(body=tuple(body), version=program.version)


def _namespace_member(expr: Expr, namespace: str) -> Optional[str]:
    """`ns.member` -> "member" when expr is an attribute of the given namespace."""
    if (
        isinstance(expr, Attribute)
        and isinstance(expr.obj, Name)
        and expr.obj.id == namespace
    ):
        return expr.attr
    return None


def _const_value(expr: Optional[Expr]) -> Any:
    return expr.value if isinstance(expr, Const) else None


# =============================================================================
# Rewrites
# =============================================================================


def _rewrite_declarations(program: Program) -> Program:
    body: list[Statement] = []
    for stmt in program.body:
        if (
            isinstance(stmt, ExprStmt)
            and isinstance(stmt.expr, Call)
            and isinstance(stmt.expr.func, Name)
            and stmt.expr.func.id in DECLARATION_KINDS
        ):
            call = stmt.expr
            title_expr = call.args[0] if call.args else call.kwarg("title")
            title = _const_value(title_expr)
            stmt = Declaration(
                call.func.id,
                title if isinstance(title, str) else None,
                line=stmt.line,
            )
        body.append(stmt)
    return Program(body=tuple(body), version=program.version)


def _input_function(expr: Expr) -> Optional[str]:
    if not isinstance(expr, Call):
        return None
    if isinstance(expr.func, Name) and expr.func.id == "input":
        return "input"
    member = _namespace_member(expr.func, "input")
    return f"input.{member}" if member else None


def _input_default(call: Call) -> Optional[Expr]:
    return call.kwarg("defval") or (call.args[0] if call.args else None)


def _input_title(call: Call) -> Optional[str]:
    title = call.kwarg("title") or (call.args[1] if len(call.args) > 1 else None)
    value = _const_value(title)
    return value if isinstance(value, str) else None


def _rewrite_inputs(program: Program) -> tuple[Program, tuple[ScriptInput, ...]]:
    inputs: list[ScriptInput] = []

    # Record bound inputs before folding so the binding name is known
    for stmt in program.body:
        if isinstance(stmt, Assign):
            function = _input_function(stmt.value)
            if function is None:
                continue
            default = _input_default(stmt.value)
            if default is None:
                continue
            inputs.append(
                ScriptInput(
                    name=stmt.target,
                    function=function,
                    title=_input_title(stmt.value),
                    default=_const_value(default)
                    if isinstance(default, Const)
                    else render_expr(default),
                    line=stmt.line,
                )
            )

    def rule(expr: Expr, callee: bool, line: int) -> Expr:
        if _input_function(expr) is None:
            return expr
        default = _input_default(expr)
        return default if default is not None else expr

    return _map_program(program, rule), tuple(inputs)


def _rewrite_destructuring(program: Program) -> Program:
    body: list[Statement] = []
    counter = 0
    for stmt in program.body:
        if isinstance(stmt, Destructure) and isinstance(stmt.value, Call):
            member = _namespace_member(stmt.value.func, "ta")
            fields = DESTRUCTURE_FIELDS.get(member or "")
            if fields is not None:
                if len(stmt.targets) != len(fields):
                    raise PineSyntaxError(
                        f"ta.{member}() returns {len(fields)} values, "
                        f"got {len(stmt.targets)} names",
                        stmt.line,
                    )
                hidden = f"{HIDDEN_PREFIX}{member}_{counter}"
                counter += 1
                body.append(Assign(hidden, stmt.value, line=stmt.line))
                for target, name in zip(stmt.targets, fields):
                    body.append(
                        Assign(target, Attribute(Name(hidden), name), line=stmt.line)
                    )
                continue
        body.append(stmt)
    return Program(body=tuple(body), version=program.version)


_HIGH, _LOW, _CLOSE, _VOLUME, _HLC3 = (
    Name("high"),
    Name("low"),
    Name("close"),
    Name("volume"),
    Name("hlc3"),
)


def _expand_ta(member: str, args: tuple[Expr, ...]) -> Optional[tuple[Expr, ...]]:
    """Full argument list for a short ta call form, None when already full."""
    n = len(args)
    if member in ("atr", "adx", "wpr") and n == 1:
        return (_HIGH, _LOW, _CLOSE, args[0])
    if member == "vwap" and n == 0:
        return (_HLC3, _HIGH, _LOW, _VOLUME)
    if member == "vwap" and n == 1:
        return (args[0], _HIGH, _LOW, _VOLUME)
    if member == "change" and n == 1:
        return (args[0], Const(1))
    if member == "cci" and n == 1:
        return (_HLC3, args[0])
    if member == "obv" and n == 0:
        return (_CLOSE, _VOLUME)
    if member == "tr" and (
        n == 0 or (n == 1 and isinstance(_const_value(args[0]), bool))
    ):
        return (_HIGH, _LOW, _CLOSE)
    if member == "pivothigh" and n == 2:
        return (_HIGH, args[0], args[1])
    if member == "pivotlow" and n == 2:
        return (_LOW, args[0], args[1])
    if member == "highest" and n == 1:
        return (_HIGH, args[0])
    if member == "lowest" and n == 1:
        return (_LOW, args[0])
    if member == "vwma" and n == 2:
        return (args[0], args[1], _VOLUME)
    return None


def _rewrite_ta_calls(program: Program) -> Program:
    def rule(expr: Expr, callee: bool, line: int) -> Expr:
        if isinstance(expr, Call):
            member = _namespace_member(expr.func, "ta")
            if member and not expr.kwargs:
                expanded = _expand_ta(member, expr.args)
                if expanded is not None:
                    return Call(expr.func, expanded)
            return expr
        # Bare value forms: ta.tr, ta.obv, ta.vwap
        member = _namespace_member(expr, "ta")
        if member in ("tr", "obv", "vwap") and not callee:
            return Call(expr, _expand_ta(member, ()) or ())
        return expr

    return _map_program(program, rule)


def _default_hline_title(price: Expr) -> str:
    value = _const_value(price)
    if isinstance(value, (int, float)) and not isinstance(value, bool):
        return f"Level {value:g}"
    return f"Level {render_expr(price)}"


def _rewrite_sinks(program: Program) -> Program:
    plot_count = 0

    def rule(expr: Expr, callee: bool, line: int) -> Expr:
        nonlocal plot_count
        if not (
            isinstance(expr, Call)
            and isinstance(expr.func, Name)
            and expr.func.id in SINK_PARAMS
        ):
            return expr

        kind = expr.func.id
        params = SINK_PARAMS[kind]
        given: dict[str, Expr] = dict(zip(params, expr.args))
        for key, value in expr.kwargs:
            if key in params:
                given[key] = value
        for required in SINK_REQUIRED[kind]:
            if required not in given:
                raise PineSyntaxError(f"{kind}() needs a '{required}' argument", line)

        if kind == "plot":
            plot_count += 1
            series = given["series"]
            if "title" not in given:
                default_title = (
                    series.id if isinstance(series, Name) else f"Plot {plot_count}"
                )
                given["title"] = Const(default_title)
            given.setdefault("color", Const(PRIMARY_BLUE))
            given.setdefault("linewidth", Const(1))
            style = given.get("style")
            style_name = _namespace_member(style, "plot") if style is not None else None
            if style is None:
                given["style"] = Const("line")
            elif style_name is not None:
                given["style"] = Const(PLOT_STYLES.get(style_name, "line"))
        elif kind == "hline":
            given.setdefault("title", Const(_default_hline_title(given["price"])))
            given.setdefault("color", Const(HLINE_GRAY))
            given.setdefault("linewidth", Const(1))
        elif kind == "bgcolor":
            given.setdefault("title", Const("bgcolor"))

        return Sink(kind, tuple((p, given[p]) for p in params if p in given))

    return _map_program(program, rule)


def _rewrite_colors(program: Program) -> Program:
    def rule(expr: Expr, callee: bool, line: int) -> Expr:
        if isinstance(expr, Attribute) and not callee:
            member = _namespace_member(expr, "color")
            if member and member != "new" and member in COLOR_HEX:
                return Const(COLOR_HEX[member])
            return expr
        if isinstance(expr, Call) and _namespace_member(expr.func, "color") == "new":
            base = expr.args[0] if expr.args else expr.kwarg("color")
            transp = (
                expr.args[1] if len(expr.args) > 1 else expr.kwarg("transp")
            ) or Const(0)
            base_value, transp_value = _const_value(base), _const_value(transp)
            if (
                colors.is_color(base_value)
                and isinstance(transp_value, (int, float))
                and not isinstance(transp_value, bool)
            ):
                return Const(colors.new(base_value, transp_value))
        return expr

    return _map_program(program, rule)


def _rewrite_na(program: Program) -> Program:
    def rule(expr: Expr, callee: bool, line: int) -> Expr:
        if isinstance(expr, Name) and expr.id == "na":
            return Name("na_fn") if callee else Const(NA)
        return expr

    return _map_program(program, rule)


# =============================================================================
# Public API
# =============================================================================


def translate_program(program: Program) -> TranslatedScript:
    """Apply the rewrites, in order, to an already parsed program."""
    program = _rewrite_declarations(program)
    program, inputs = _rewrite_inputs(program)
    program = _rewrite_destructuring(program)
    program = _rewrite_ta_calls(program)
    program = _rewrite_sinks(program)
    program = _rewrite_colors(program)
    program = _rewrite_na(program)

    title = next(
        (s.title for s in program.body if isinstance(s, Declaration) and s.title),
        None,
    )
    return TranslatedScript(
        program=program, version=program.version, title=title, inputs=inputs
    )


def translate(script: str) -> TranslatedScript:
    """
    Parse and translate script text.

    Raises:
        PineSyntaxError: If the script is outside the recognized subset
    """
    return translate_program(parse(script))


# =============================================================================
# Rendering
# =============================================================================

# Nodes that need parentheses when nested inside another operator
_COMPOUND = (BinOp, UnaryOp, Ternary)


def _render_const(value: Any) -> str:
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, float):
        if math.isnan(value):
            return "na"
        return repr(value)
    if isinstance(value, int):
        return str(value)
    if colors.is_color(value) and value == value.upper():
        return value
    return json.dumps(value, ensure_ascii=False)


def _wrap(expr: Expr) -> str:
    text = render_expr(expr)
    return f"({text})" if isinstance(expr, _COMPOUND) else text


def _render_args(args: tuple[Expr, ...], kwargs: tuple[tuple[str, Expr], ...]) -> str:
    parts = [render_expr(a) for a in args]
    parts.extend(f"{k}={render_expr(v)}" for k, v in kwargs)
    return ", ".join(parts)


def render_expr(expr: Expr) -> str:
    """Canonical text for one expression."""
    if isinstance(expr, Const):
        return _render_const(expr.value)
    if isinstance(expr, Name):
        return expr.id
    if isinstance(expr, Attribute):
        return f"{_wrap(expr.obj)}.{expr.attr}"
    if isinstance(expr, Index):
        return f"{_wrap(expr.obj)}[{render_expr(expr.index)}]"
    if isinstance(expr, Call):
        return f"{_wrap(expr.func)}({_render_args(expr.args, expr.kwargs)})"
    if isinstance(expr, UnaryOp):
        sep = " " if expr.op == "not" else ""
        return f"{expr.op}{sep}{_wrap(expr.operand)}"
    if isinstance(expr, BinOp):
        return f"{_wrap(expr.left)} {expr.op} {_wrap(expr.right)}"
    if isinstance(expr, Ternary):
        return (
            f"{_wrap(expr.condition)} ? {_wrap(expr.when_true)} : "
            f"{_wrap(expr.when_false)}"
        )
    if isinstance(expr, ArrayLiteral):
        return "[" + ", ".join(render_expr(i) for i in expr.items) + "]"
    if isinstance(expr, Sink):
        return f"{expr.kind}({_render_args((), expr.args)})"
    raise TypeError(f"Cannot render {type(expr).__name__}")


def render_statement(stmt: Statement) -> str:
    if isinstance(stmt, Comment):
        return f"// {stmt.text}".rstrip()
    if isinstance(stmt, Declaration):
        title = json.dumps(stmt.title, ensure_ascii=False) if stmt.title is not None else ""
        return f"{stmt.kind}({title})"
    if isinstance(stmt, Assign):
        prefix = "" if stmt.mode == "let" else f"{stmt.mode} "
        if stmt.type_name:
            prefix += f"{stmt.type_name} "
        return f"{prefix}{stmt.target} = {render_expr(stmt.value)}"
    if isinstance(stmt, Reassign):
        return f"{stmt.target} {stmt.op} {render_expr(stmt.value)}"
    if isinstance(stmt, Destructure):
        return f"[{', '.join(stmt.targets)}] = {render_expr(stmt.value)}"
    if isinstance(stmt, FunctionDef):
        return f"{stmt.name}({', '.join(stmt.params)}) => {render_expr(stmt.body)}"
    if isinstance(stmt, ExprStmt):
        return render_expr(stmt.expr)
    raise TypeError(f"Cannot render {type(stmt).__name__}")


def render(program: Program) -> str:
    """Canonical script text; parsing and translating it yields the same program."""
    lines = []
    if program.version is not None:
        lines.append(f"//@version={program.version}")
    lines.extend(render_statement(s) for s in program.body)
    return "\n".join(lines) + "\n"

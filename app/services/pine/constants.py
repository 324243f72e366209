"""
Pine Script Runner constants.

This module imports nothing - it's the dependency root.
Other modules import from here; this never imports from them.
"""

# =============================================================================
# Versions
# =============================================================================

# Engine version - bump when translation or evaluation semantics change
ENGINE_VERSION = "0.2.0"

# Version assumed when a script has no //@version directive
DEFAULT_PINE_VERSION = 6

# Versions the translator targets
SUPPORTED_PINE_VERSIONS = (5, 6)

# =============================================================================
# Colors
# =============================================================================

COLOR_HEX = {
    "blue": "#3B82F6",
    "red": "#EF4444",
    "green": "#22C55E",
    "purple": "#8B5CF6",
    "orange": "#F97316",
    "gray": "#6B7280",
    "grey": "#6B7280",
    "yellow": "#EAB308",
    "teal": "#14B8A6",
    "white": "#FFFFFF",
    "black": "#000000",
    "aqua": "#00FFFF",
    "lime": "#00FF00",
    "fuchsia": "#FF00FF",
    "silver": "#C0C0C0",
    "maroon": "#800000",
    "navy": "#000080",
    "olive": "#808000",
    "new": "#3B82F6",  # fallback when color.new gets a non-color base
}

PRIMARY_BLUE = COLOR_HEX["blue"]  # plot() default
HLINE_GRAY = "#888888"  # hline() default

# =============================================================================
# Language Surface
# =============================================================================

# Identifiers that may never appear on the left of an assignment
RESERVED_IDENTIFIERS = frozenset(
    [
        "catch",
        "class",
        "do",
        "ellipse",
        "in",
        "is",
        "polygon",
        "range",
        "return",
        "struct",
        "text",
        "throw",
        "try",
    ]
)

# Type keywords accepted (and ignored) in front of declarations
TYPE_KEYWORDS = frozenset(
    ["float", "int", "bool", "string", "color", "series", "simple", "const"]
)

# Namespace members that are functions (validator's missing-parens heuristic)
TA_FUNCTIONS = frozenset(
    [
        "sma",
        "ema",
        "wma",
        "rma",
        "stdev",
        "rsi",
        "atr",
        "stoch",
        "macd",
        "bb",
        "cci",
        "wpr",
        "adx",
        "pivothigh",
        "pivotlow",
        "crossover",
        "crossunder",
        "highest",
        "lowest",
        "change",
        "mom",
        "roc",
        "cum",
        "rising",
        "falling",
        "vwma",
        "hma",
        "dev",
    ]
)

# ta members that are also valid as plain values (ta.tr, ta.obv, ta.vwap)
TA_VALUE_MEMBERS = frozenset(["tr", "obv", "vwap"])

MATH_FUNCTIONS = frozenset(
    [
        "abs",
        "min",
        "max",
        "floor",
        "ceil",
        "round",
        "sign",
        "sqrt",
        "pow",
        "exp",
        "log",
        "log10",
        "sin",
        "cos",
        "tan",
        "asin",
        "acos",
        "atan",
        "random",
        "avg",
        "sum",
        "toradians",
        "todegrees",
    ]
)

ARRAY_FUNCTIONS = frozenset(
    [
        "new",
        "new_float",
        "new_int",
        "new_bool",
        "new_string",
        "new_color",
        "from",
        "size",
        "get",
        "set",
        "push",
        "pop",
        "sum",
        "avg",
        "min",
        "max",
        "stdev",
        "first",
        "last",
        "includes",
        "clear",
    ]
)

STR_FUNCTIONS = frozenset(
    [
        "length",
        "tonumber",
        "tostring",
        "format",
        "contains",
        "lower",
        "upper",
        "trim",
        "split",
        "startswith",
        "endswith",
        "replace_all",
    ]
)

# Namespaces checked by the validator for missing call parentheses
CALLABLE_NAMESPACES = {
    "ta": TA_FUNCTIONS,
    "math": MATH_FUNCTIONS,
    "array": ARRAY_FUNCTIONS,
    "str": STR_FUNCTIONS,
}

# plot.style_* constants -> plot kind
PLOT_STYLES = {
    "style_line": "line",
    "style_linebr": "line",
    "style_stepline": "stepline",
    "style_histogram": "histogram",
    "style_cross": "cross",
    "style_area": "area",
    "style_columns": "columns",
    "style_circles": "circles",
}

# Destructuring field order for tuple-returning ta calls
DESTRUCTURE_FIELDS = {
    "bb": ("upper", "middle", "lower"),
    "macd": ("macd", "signal", "hist"),
}

# =============================================================================
# Diagnostic Codes
# =============================================================================

# Error codes (E-prefix) - block execution
DIAG_E101_UNBALANCED_PARENS = "E101"
DIAG_E102_UNBALANCED_BRACKETS = "E102"
DIAG_E103_RESERVED_IDENTIFIER = "E103"

# Warning codes (W-prefix) - reported, execution proceeds
DIAG_W101_NO_VERSION = "W101"
DIAG_W102_MISSING_CALL_PARENS = "W102"
DIAG_W103_UNSUPPORTED_VERSION = "W103"

# Info codes (I-prefix) - debug mode only
DIAG_I101_VERSION_DETECTED = "I101"
DIAG_I102_FILL_RECORDED = "I102"

# Translation / evaluation failures
DIAG_S001_SYNTAX = "S001"
DIAG_R001_RUNTIME = "R001"

RUNTIME_ERROR_PREFIX = "Runtime Error:"

# =============================================================================
# Execution
# =============================================================================

# Seed for math.random so a run stays a pure function of (script, bars)
RANDOM_SEED = 1337

# =============================================================================
# Mock Bars
# =============================================================================

MOCK_DEFAULT_BAR_COUNT = 200
MOCK_DEFAULT_SEED = 42
MOCK_START_PRICE = 100.0
MOCK_MAX_STEP = 2.0  # close random walk step, +/-
MOCK_MAX_WICK = 2.0  # high/low stretch beyond the body
MOCK_VOLUME_MIN = 500_000
MOCK_VOLUME_MAX = 1_500_000  # exclusive
MOCK_BAR_INTERVAL_MS = 60 * 60 * 1000  # hourly
MOCK_REFERENCE_END_MS = 1_704_067_200_000  # 2024-01-01T00:00:00Z

# Deepest expression nesting (brackets, ternaries, unary chains) the parser accepts
MAX_NESTING_DEPTH = 32

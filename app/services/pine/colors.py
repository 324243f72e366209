"""
Color helpers for the `color` namespace.

All colors are hex strings: "#RRGGBB" or "#RRGGBBAA". Transparency follows
Pine (0 = opaque, 100 = invisible) and is converted to an alpha byte in one
place, transparency_to_alpha().
"""

from __future__ import annotations

import re
from typing import Any

import numpy as np

from app.services.pine.errors import PineRuntimeError
from app.services.pine.values import is_na, last_value

HEX_COLOR_PATTERN = re.compile(r"^#(?:[0-9A-Fa-f]{6}|[0-9A-Fa-f]{8})$")


def transparency_to_alpha(transparency: float) -> str:
    """Map transparency 0..100 (clamped) to a two-digit uppercase alpha byte."""
    clamped = min(100.0, max(0.0, float(transparency)))
    alpha = round((100.0 - clamped) / 100.0 * 255)
    return f"{alpha:02X}"


def is_color(value: Any) -> bool:
    return isinstance(value, str) and bool(HEX_COLOR_PATTERN.match(value))


def base_hex(color: str) -> str:
    """Strip any alpha suffix: "#RRGGBBAA" -> "#RRGGBB"."""
    return color[:7].upper()


def new(base: Any, transp: Any = 0) -> Any:
    """color.new(base, transp): base hex plus alpha; na base stays na."""
    if isinstance(base, np.ndarray):
        out = np.empty(base.shape[0], dtype=object)
        for i, item in enumerate(base):
            out[i] = new(item, transp)
        return out
    base = last_value(base)
    if base is None or (not isinstance(base, str) and is_na(base)):
        return float("nan")
    if not is_color(base):
        raise PineRuntimeError(f"color.new() expects a color, got {base!r}")
    hex_base = base_hex(base)
    transp = last_value(transp)
    if is_na(transp):
        transp = 0
    return f"{hex_base}{transparency_to_alpha(transp)}"


def rgb(red: Any, green: Any, blue: Any, transp: Any = None) -> str:
    """color.rgb(r, g, b, transp?): components clamped to 0..255."""
    parts = []
    for component in (red, green, blue):
        value = last_value(component)
        if is_na(value):
            raise PineRuntimeError("color.rgb() components must not be na")
        parts.append(min(255, max(0, int(round(float(value))))))
    color = "#{:02X}{:02X}{:02X}".format(*parts)
    transp = last_value(transp)
    if transp is not None and not is_na(transp):
        color += transparency_to_alpha(transp)
    return color

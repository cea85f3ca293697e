#!/usr/bin/env python3
"""
color_naming.py - Hex to human/AI-friendly color names
======================================================

Two layers:
- ``get_color_name``: deterministic HSL classifier, e.g. "Light Blue (Vibrant)"
- ``to_semantic_name``: maps technical names to words an image model
  understands better, e.g. "Very Dark Blue" -> "navy"

Conversions shared by the extractor and the validator live here too.
"""

from __future__ import annotations

import colorsys
import re
from typing import Optional, Sequence, Tuple

from ..errors import InvalidColorError

_HEX_RE = re.compile(r"^#?([0-9a-fA-F]{2})([0-9a-fA-F]{2})([0-9a-fA-F]{2})$")

# Achromatic cut-off and lightness bands (HSL percent)
ACHROMATIC_MAX_SATURATION = 15.0
ACHROMATIC_BANDS: Sequence[Tuple[float, str]] = (
    (90.0, "White"),
    (80.0, "Off-White"),
    (70.0, "Light Gray"),
    (50.0, "Gray"),
    (30.0, "Dark Gray"),
    (15.0, "Charcoal"),
)

# (exclusive upper bound in degrees, base name)
HUE_BUCKETS: Sequence[Tuple[float, str]] = (
    (15.0, "Red"),
    (30.0, "Red-Orange"),
    (45.0, "Orange"),
    (60.0, "Yellow-Orange"),
    (75.0, "Yellow"),
    (90.0, "Yellow-Green"),
    (150.0, "Green"),
    (180.0, "Cyan"),
    (210.0, "Light Blue"),
    (240.0, "Blue"),
    (270.0, "Indigo"),
    (300.0, "Purple"),
    (330.0, "Magenta"),
    (345.0, "Pink"),
    (360.0, "Red"),
)

# Modifiers are collapsed to the base name outside this lightness range
MODIFIER_MIN_LIGHTNESS = 15.0
MODIFIER_MAX_LIGHTNESS = 85.0

AI_COLOR_MAP = {
    "Light Red-Orange (Vibrant)": "coral",
    "Light Red-Orange": "coral",
    "Red-Orange": "burnt orange",
    "Very Dark Blue": "navy",
    "Dark Blue": "navy",
    "Light Blue": "sky blue",
    "Very Light Blue": "powder blue",
    "Yellow-Orange": "amber",
    "Yellow-Green": "lime",
    "Light Gray": "light gray",
    "Very Light Gray": "off-white",
    "Dark Gray": "charcoal",
    "Very Dark Gray": "charcoal",
    "Light Pink": "blush",
    "Pink": "pink",
    "Light Purple": "lavender",
    "Dark Purple": "deep purple",
    "Light Green": "mint",
    "Dark Green": "forest green",
    "Very Dark Red": "burgundy",
    "Dark Red": "maroon",
}


# ----------------- conversions -----------------
def hex_to_rgb(hex_str: str) -> Tuple[int, int, int]:
    m = _HEX_RE.match((hex_str or "").strip())
    if not m:
        raise InvalidColorError(f"Invalid hex color: {hex_str!r}")
    return int(m.group(1), 16), int(m.group(2), 16), int(m.group(3), 16)


def rgb_to_hex(r: float, g: float, b: float) -> str:
    clamp = lambda v: max(0, min(255, int(round(v))))
    return f"#{clamp(r):02X}{clamp(g):02X}{clamp(b):02X}"


def rgb_to_hsl(r: float, g: float, b: float) -> Tuple[float, float, float]:
    """Returns (hue 0-360, saturation 0-100, lightness 0-100)."""
    h, l, s = colorsys.rgb_to_hls(r / 255.0, g / 255.0, b / 255.0)
    return h * 360.0, s * 100.0, l * 100.0


def hex_to_hsl(hex_str: str) -> Tuple[float, float, float]:
    return rgb_to_hsl(*hex_to_rgb(hex_str))


# ----------------- naming -----------------
def _hue_name(h: float) -> str:
    for upper, name in HUE_BUCKETS:
        if h < upper:
            return name
    return "Red"


def _lightness_prefix(l: float) -> str:
    if l > 85:
        return "Very Light "
    if l > 70:
        return "Light "
    if l >= 50:
        return ""
    if l > 30:
        return "Dark "
    return "Very Dark "


def _saturation_suffix(s: float) -> str:
    if s < 25:
        return " (Muted)"
    if s < 50:
        return ""
    if s < 75:
        return " (Vibrant)"
    return " (Bold)"


def get_color_name(hex_str: str, force_white: bool = False) -> str:
    """
    Human-readable name for a hex color.

    >>> get_color_name("#FF0000")
    'Red (Bold)'
    >>> get_color_name("#F5F5F5")
    'White'
    """
    if force_white:
        return "White"
    try:
        h, s, l = hex_to_hsl(hex_str)
    except InvalidColorError:
        return "Unknown"

    if s < ACHROMATIC_MAX_SATURATION:
        for floor, name in ACHROMATIC_BANDS:
            if l > floor:
                return name
        return "Black"

    prefix = _lightness_prefix(l)
    suffix = _saturation_suffix(s)
    base = _hue_name(h)

    if 20 <= h < 45 and l < 50 and s < 60:
        base = "Brown"
        suffix = ""

    if (h >= 330 or h < 30) and l > 70 and s > 20:
        base = "Pink"

    if l > MODIFIER_MAX_LIGHTNESS or l < MODIFIER_MIN_LIGHTNESS:
        suffix = ""

    return f"{prefix}{base}{suffix}".strip()


def simple_name(name: Optional[str]) -> str:
    """Drop the parenthetical saturation suffix: 'Red (Bold)' -> 'Red'."""
    return (name or "").split("(")[0].strip()


def to_semantic_name(name: Optional[str]) -> str:
    """Map a technical color name to an AI-friendly one."""
    if not name:
        return "neutral"
    if name in AI_COLOR_MAP:
        return AI_COLOR_MAP[name]
    base = simple_name(name)
    if base in AI_COLOR_MAP:
        return AI_COLOR_MAP[base]
    return re.sub(r"^very\s+", "", base.lower())

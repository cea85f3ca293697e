#!/usr/bin/env python3
"""
step4_color_validator.py - Step 4: Result color QA
==================================================

Compare the color the model produced against the color the product has.

- delta_e: CIE76 distance in CIE Lab (sRGB -> linear -> XYZ D65/2deg -> Lab)
- assess: Delta E -> perfect / acceptable / noticeable / warning / failure
- validate_white_product: white garments commonly come back cream or gray;
  those failure modes get their own verdicts

A bad verdict is a warning attached to a successful result, never an error.

Dependencies: numpy scikit-image
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Optional, Tuple

import numpy as np
from skimage import color as skcolor

from ..utils.color_naming import hex_to_rgb, rgb_to_hsl

logger = logging.getLogger("lookbook.color_validator")

# Upper Delta E bound for each tier; anything above WARNING is a failure.
COLOR_TOLERANCE = {
    "perfect": 2.0,
    "acceptable": 5.0,
    "noticeable": 10.0,
    "warning": 20.0,
}

TIER_MESSAGES = {
    "perfect": "Color match is perfect",
    "acceptable": "Color match is excellent",
    "noticeable": "Slight color variation detected",
    "warning": "Color differs from expected - may need regeneration",
    "failure": "Significant color mismatch detected",
}

WHITE_MIN_LIGHTNESS = 85.0
WHITE_MAX_SATURATION = 15.0
BLACK_MAX_MEAN = 0.15


@dataclass(frozen=True)
class ValidationVerdict:
    delta_e: float
    tier: str
    should_warn: bool
    message: str


@dataclass(frozen=True)
class ColorMatchResult:
    valid: bool
    delta_e: float
    expected_hex: str
    actual_hex: str
    verdict: ValidationVerdict


@dataclass(frozen=True)
class WhiteProductCheck:
    valid: bool
    tier: str
    message: str
    suggestion: Optional[str] = None


# ----------------- conversions -----------------
def hex_to_lab(hex_str: str) -> Tuple[float, float, float]:
    """CIE Lab (D65, 2 degree observer). Raises InvalidColorError for bad input."""
    rgb = np.array(hex_to_rgb(hex_str), dtype=np.float64).reshape(1, 1, 3) / 255.0
    lab = skcolor.rgb2lab(rgb, illuminant="D65", observer="2").reshape(3)
    return float(lab[0]), float(lab[1]), float(lab[2])


def delta_e(hex1: str, hex2: str) -> float:
    """CIE76 color difference rounded to 2 decimals."""
    lab1 = np.array(hex_to_lab(hex1))
    lab2 = np.array(hex_to_lab(hex2))
    return round(float(skcolor.deltaE_cie76(lab1, lab2)), 2)


# ----------------- verdicts -----------------
def assess(value: float) -> ValidationVerdict:
    tier = next((name for name, bound in COLOR_TOLERANCE.items() if value <= bound), "failure")
    return ValidationVerdict(
        delta_e=value,
        tier=tier,
        should_warn=tier in ("warning", "failure"),
        message=TIER_MESSAGES[tier],
    )


def validate_color_match(expected_hex: str, actual_hex: str) -> ColorMatchResult:
    value = delta_e(expected_hex, actual_hex)
    verdict = assess(value)
    log = logger.warning if verdict.should_warn else logger.info
    log(f"Color check {expected_hex} -> {actual_hex}: dE={value} ({verdict.tier})")
    return ColorMatchResult(
        valid=not verdict.should_warn,
        delta_e=value,
        expected_hex=expected_hex,
        actual_hex=actual_hex,
        verdict=verdict,
    )


def is_white_color(hex_str: str) -> bool:
    _, s, l = rgb_to_hsl(*hex_to_rgb(hex_str))
    return l > WHITE_MIN_LIGHTNESS and s < WHITE_MAX_SATURATION


def is_black_color(hex_str: str) -> bool:
    return sum(hex_to_rgb(hex_str)) / 3.0 / 255.0 < BLACK_MAX_MEAN


def validate_white_product(actual_hex: str) -> WhiteProductCheck:
    """Check a result that should be white for the usual cream/gray drift."""
    if is_white_color(actual_hex):
        return WhiteProductCheck(True, "perfect", "White product color preserved correctly")

    L, a, b = hex_to_lab(actual_hex)
    if L > 80 and b > 10:
        return WhiteProductCheck(
            False, "warning", "Product appears cream/beige instead of white",
            suggestion='Try regenerating with a manual "White" color override',
        )
    if 50 < L < 85 and abs(a) < 5 and abs(b) < 5:
        return WhiteProductCheck(
            False, "warning", "Product appears gray instead of white",
            suggestion="Try regenerating with brighter studio lighting",
        )
    return WhiteProductCheck(False, "failure", "White product color was not preserved")

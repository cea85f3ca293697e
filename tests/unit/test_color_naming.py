"""
Unit tests for color naming and conversions.
"""

import pytest
from pathlib import Path

import sys
sys.path.insert(0, str(Path(__file__).parent.parent.parent / "src"))

from lookbook.errors import InvalidColorError
from lookbook.utils.color_naming import (
    get_color_name,
    hex_to_hsl,
    hex_to_rgb,
    rgb_to_hex,
    simple_name,
    to_semantic_name,
)


class TestConversions:
    def test_hex_roundtrip_is_uppercase(self):
        assert rgb_to_hex(*hex_to_rgb("#1e2a5a")) == "#1E2A5A"

    def test_hex_without_hash(self):
        assert hex_to_rgb("00ff00") == (0, 255, 0)

    def test_rgb_to_hex_clamps(self):
        assert rgb_to_hex(300, -5, 127.6) == "#FF0080"

    @pytest.mark.parametrize("bad", ["", "#12345", "#GGGGGG", None])
    def test_invalid_hex(self, bad):
        with pytest.raises(InvalidColorError):
            hex_to_rgb(bad)

    def test_invalid_hex_is_value_error(self):
        with pytest.raises(ValueError):
            hex_to_rgb("nope")

    def test_hsl(self):
        h, s, l = hex_to_hsl("#FF0000")
        assert (round(h), round(s), round(l)) == (0, 100, 50)


class TestColorNames:
    @pytest.mark.parametrize("hex_value,expected", [
        ("#FF0000", "Red (Bold)"),
        ("#F5F5F5", "White"),
        ("#808080", "Gray"),
        ("#000000", "Black"),
        ("#0066FF", "Blue (Bold)"),
    ])
    def test_names(self, hex_value, expected):
        assert get_color_name(hex_value) == expected

    def test_force_white(self):
        assert get_color_name("#D0C8B0", force_white=True) == "White"

    def test_invalid_returns_unknown(self):
        assert get_color_name("zzz") == "Unknown"

    def test_very_dark_blue_is_navy(self):
        name = get_color_name("#0A0F3C")
        assert simple_name(name) == "Very Dark Blue"
        assert to_semantic_name(name) == "navy"


class TestSemanticNames:
    def test_simple_name_strips_suffix(self):
        assert simple_name("Light Blue (Vibrant)") == "Light Blue"

    def test_semantic_fallback_lowercases(self):
        assert to_semantic_name("Red (Bold)") == "red"

    def test_semantic_empty(self):
        assert to_semantic_name(None) == "neutral"

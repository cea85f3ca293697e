"""
Unit tests for Step 2: Prompt building.
"""

import random
import pytest
from pathlib import Path

import sys
sys.path.insert(0, str(Path(__file__).parent.parent.parent / "src"))

from lookbook.steps.step1_color_extract import ColorSwatch
from lookbook.steps.step2_prompt_builder import (
    BACKDROPS,
    CRITICAL_MARKER,
    PERSONAS,
    VARIATION_CUES,
    PromptBuilder,
    VideoPromptBuilder,
    assess_color_confidence,
    get_default_motion_preset,
    get_motion_presets,
    is_near_neutral,
    load_style_kit,
)


def swatch(hex_value, pct):
    return ColorSwatch.from_hex(hex_value, pct)


class TestConfidence:
    def test_high_for_dominant_chromatic(self):
        assert assess_color_confidence([swatch("#FF0000", 80)]) == "high"

    def test_neutral_dominant_is_medium(self):
        assert assess_color_confidence([swatch("#808080", 80)]) == "medium"

    def test_low_for_fragmented_palette(self):
        palette = [swatch("#FF0000", 25), swatch("#00FF00", 25), swatch("#0000FF", 25), swatch("#FFFF00", 25)]
        assert assess_color_confidence(palette) == "low"

    def test_empty_palette_is_low(self):
        assert assess_color_confidence([]) == "low"

    def test_near_neutral(self):
        assert is_near_neutral("#F0F0F0")
        assert not is_near_neutral("#FF0000")
        assert is_near_neutral(None)


class TestPromptBuilder:
    """Test sectioned prompt construction."""

    def test_high_confidence_color_lock(self):
        builder = PromptBuilder([swatch("#FF0000", 80)], rng=random.Random(1))
        critical = builder.sections()["critical"]
        assert critical.startswith(CRITICAL_MARKER)
        assert "#FF0000" in critical
        assert "red" in critical
        assert "Match this exact color" in critical
        assert "Lock to exact hex value #FF0000" in builder.build()

    def test_medium_confidence_wording(self):
        builder = PromptBuilder([swatch("#FF0000", 30), swatch("#FFFFFF", 70)], confidence="medium")
        assert "primarily red" in builder.sections()["critical"]
        assert "Lock to exact hex value" not in builder.build()

    def test_low_confidence_wording(self):
        builder = PromptBuilder([swatch("#FF0000", 20)], confidence="low")
        critical = builder.sections()["critical"]
        assert critical.startswith("IMPORTANT:")
        assert "red tones" in critical

    def test_empty_palette_has_no_critical_marker(self):
        prompt = PromptBuilder([]).build()
        assert CRITICAL_MARKER not in prompt
        assert "Preserve the exact garment design" in prompt

    def test_section_order(self):
        builder = PromptBuilder([swatch("#1E2A5A", 60)], persona=PERSONAS["asma"], backdrop=BACKDROPS["luxury"])
        prompt = builder.build()
        s = builder.sections()
        positions = [prompt.index(s[key]) for key in ("critical", "important", "supporting", "context", "negative")]
        assert positions == sorted(positions)
        assert "Asma" in s["important"]
        assert "Luxury fashion advertisement" in s["supporting"]
        assert prompt.endswith(s["negative"])

    def test_category_specific_rules(self):
        prompt = PromptBuilder([swatch("#000000", 90)], category="shoes").build()
        assert "This is footwear" in prompt
        assert "No floating shoes" in prompt

    def test_unknown_category_falls_back(self):
        builder = PromptBuilder([], category="hats")
        assert builder.category == "clothes"

    def test_palette_summary_lists_top_three(self):
        palette = [swatch("#1E2A5A", 50), swatch("#C8A028", 30), swatch("#148C8C", 15), swatch("#FF0000", 5)]
        supporting = PromptBuilder(palette).sections()["supporting"]
        assert "(50%)" in supporting and "(30%)" in supporting and "(15%)" in supporting
        assert "(5%)" not in supporting

    def test_seeded_rng_is_deterministic(self):
        palette = [swatch("#FF0000", 80)]
        a = PromptBuilder(palette, rng=random.Random(7)).build()
        b = PromptBuilder(palette, rng=random.Random(7)).build()
        assert a == b

    def test_single_variation_cue(self):
        prompt = PromptBuilder([swatch("#FF0000", 80)], rng=random.Random(3)).build()
        assert sum(1 for cue in VARIATION_CUES if cue in prompt) == 1

    def test_token_estimate(self):
        builder = PromptBuilder([])
        assert builder.token_estimate("abcde") == 2
        assert builder.token_estimate() == -(-len(builder.build()) // 4)


class TestVideoPrompt:
    def test_default_preset_is_recommended(self):
        assert get_default_motion_preset("shoes").id == "walking_feet"
        assert get_default_motion_preset("bags").id == "carry_walk"

    def test_unknown_category_uses_clothes(self):
        assert get_motion_presets("hats") is get_motion_presets("clothes")

    def test_build_with_motion_and_user_prompt(self):
        prompt = VideoPromptBuilder(
            category="clothes",
            motion_style="model_turn",
            user_prompt="  slow and elegant  ",
            palette=(swatch("#FF0000", 90),),
        ).build()
        assert "360-degree turn" in prompt
        assert "slow and elegant" in prompt
        assert "#FF0000" in prompt
        assert "no flickering" in prompt

    def test_unknown_motion_falls_back(self):
        builder = VideoPromptBuilder(category="accessories", motion_style="moonwalk")
        assert builder.preset.id == "sparkle_reveal"


class TestStyleKit:
    def test_load_style_kit(self, temp_dir):
        kit_path = temp_dir / "kit.yaml"
        kit_path.write_text(
            "backdrops:\n"
            "  - {id: beach, name: Beach, prompt: Sunny beach}\n"
            "personas:\n"
            "  - {id: lina, description: Lina, gender: female}\n",
            encoding="utf-8",
        )
        kit = load_style_kit(kit_path)
        assert kit["backdrops"]["beach"].prompt == "Sunny beach"
        assert kit["personas"]["lina"].gender == "female"

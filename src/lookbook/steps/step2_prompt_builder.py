#!/usr/bin/env python3
"""
step2_prompt_builder.py - Step 2: Prompt Builder
================================================

Turn a palette plus persona/category/backdrop selections into a sectioned
text prompt for the image model. Section order is itself a priority signal:

1. Critical    - confidence-gated color lock, design & structural preservation
2. Important   - persona and category camera/pose guidance
3. Supporting  - backdrop, palette summary, one pose-variation cue
4. Context     - technical quality and lighting boilerplate
5. Negative    - fixed exclusions plus category additions

Also provides VideoPromptBuilder for animating a finished image with
category-specific motion presets.

Dependencies: PyYAML (optional style kit overrides)
"""

from __future__ import annotations

import argparse
import json
import logging
import math
import random
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, List, Mapping, Optional, Sequence

import yaml

from ..utils.color_naming import hex_to_hsl, to_semantic_name
from ..utils.quality_validator import validate_config
from .step1_color_extract import ColorSwatch

logger = logging.getLogger("lookbook.prompt_builder")

CATEGORIES = ("clothes", "shoes", "bags", "accessories")
DEFAULT_CATEGORY = "clothes"

CRITICAL_MARKER = "CRITICAL:"

# Confidence thresholds (dominant swatch share, percent)
HIGH_CONFIDENCE_SHARE = 40
MEDIUM_CONFIDENCE_SHARE = 25
NEUTRAL_MAX_SATURATION = 15.0

# ---------------------------------------------------------------------------
# Presets
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class ModelPersona:
    id: str
    description: str = ""
    gender: Optional[str] = None


@dataclass(frozen=True)
class Backdrop:
    id: str
    name: str
    prompt: str = ""


PERSONAS: Dict[str, ModelPersona] = {
    p.id: p for p in (
        ModelPersona("asma", "Tunisian woman named Asma, olive skin, long dark hair, modern chic fashion style, "
                             "confident and friendly smile, North African features.", "female"),
        ModelPersona("eya", "Young Tunisian woman named Eya, casual street style, energetic vibe, natural makeup, "
                            "curly hair, North African features.", "female"),
        ModelPersona("sirine", "Tunisian woman named Sirine, professional business attire, sharp focus, "
                               "confident pose, modern Tunis lifestyle.", "female"),
        ModelPersona("ahmed", "Tunisian man named Ahmed, short dark hair, casual t-shirt and jeans look, "
                              "friendly demeanor, North African features.", "male"),
        ModelPersona("ayoub", "Young Tunisian man named Ayoub, trendy streetwear fashion, cool attitude, "
                              "modern haircut, urban vibe.", "male"),
        ModelPersona("mounir", "Tunisian man named Mounir, formal suit, sharp features, serious and commanding "
                               "presence.", "male"),
    )
}

BACKDROPS: Dict[str, Backdrop] = {
    b.id: b for b in (
        Backdrop("studio_white", "Pro Studio (White)",
                 "High-end fashion e-commerce shot, pure white seamless background, soft evenly diffused lighting, "
                 "85mm lens, minimal shadows, commercial catalog style."),
        Backdrop("studio_grey", "Pro Studio (Grey)",
                 "Editorial studio portrait, neutral grey backdrop, cinematic three-point lighting, soft rim light, "
                 "high-fashion magazine aesthetic."),
        Backdrop("luxury", "Luxury Campaign",
                 "Luxury fashion advertisement, warm ambient lighting, elegant indoor setting with blurred depth of "
                 "field, sophisticated mood, premium brand aesthetic."),
        Backdrop("urban", "Urban Editorial",
                 "High-fashion street photography, golden hour natural light, modern architecture background "
                 "(blurred), candid yet polished, lifestyle ad campaign."),
    )
}

VARIATION_CUES = (
    "Use a fresh pose variation: slight head tilt, relaxed weight shift, natural arm positioning.",
    "Change the stance: a gentle walk mid-step, natural arm swing, confident stride.",
    "Try a seated or leaning pose with natural posture and garment drape visible.",
    "Vary the camera: slightly lower angle for presence, direct eye contact.",
    "Add dynamic energy: a light turn of the torso, fabric in motion, natural movement.",
)

PRODUCT_NOUNS = {
    "clothes": "garment",
    "shoes": "footwear",
    "bags": "bag",
    "accessories": "accessory",
}

STRUCTURAL_RULES = {
    "clothes": "Maintain exact garment silhouette, fit, length, fabric texture, and drape. "
               "The garment type and construction must stay identical.",
    "shoes": "This is footwear. Maintain exact shoe type, sole design, upper construction, "
             "lacing/closure system, and heel type.",
    "bags": "This is a bag. Maintain exact bag shape, proportions, strap length, hardware finish, "
            "stitching, and closure type.",
    "accessories": "This is an accessory. Maintain exact shape, metal finish, stones, engravings, "
                   "and every jewelry detail at true scale.",
}

CAMERA_GUIDANCE = {
    "clothes": "Full-body or 3/4 length shot with the garment fully visible. Natural standing pose with relaxed "
               "weight shift, arms at sides or naturally positioned. Camera at eye level or slightly below.",
    "shoes": "Camera angle: low angle 30-45 degrees from ground, or profile view to showcase the shoe design. "
             "Feet positioned to display both sole and upper. Natural standing or walking position.",
    "bags": "Medium shot with the bag as the clear focal point, carried on the shoulder or in hand, "
            "strap and hardware visible. Camera at chest height.",
    "accessories": "Close-up or medium close-up framing the accessory on the model, shallow depth of field, "
                   "sharp focus on the detail and material.",
}

NEGATIVES = (
    "Do not add accessories, jewelry, props, or extra garments not in the original",
    "Do not alter product colors, patterns, or designs",
    "Do not add text, graphics, or decorative elements",
    "Avoid distortions, warping, or unnatural body proportions",
    "Avoid blurry, low-quality, or artificial-looking results",
)

CATEGORY_NEGATIVES = {
    "clothes": "No wardrobe malfunctions, no garment transparency issues, no inappropriate fit",
    "shoes": "No floating shoes, no disembodied feet, no unnatural shoe deformations",
    "bags": "No warped straps, no melted hardware, no extra pockets or logos",
    "accessories": "No duplicated jewelry, no distorted clasps, no fused stones",
}


def load_style_kit(path: Path) -> Dict[str, Any]:
    """
    Load extra personas/backdrops from a YAML style kit:

        backdrops:
          - {id: beach, name: Beach, prompt: "..."}
        personas:
          - {id: lina, description: "...", gender: female}
    """
    with open(path, "r", encoding="utf-8") as f:
        data = yaml.safe_load(f) or {}
    kit = {
        "backdrops": {b["id"]: Backdrop(b["id"], b.get("name", b["id"]), b.get("prompt", ""))
                      for b in data.get("backdrops", [])},
        "personas": {p["id"]: ModelPersona(p["id"], p.get("description", ""), p.get("gender"))
                     for p in data.get("personas", [])},
    }
    logger.info(f"Loaded style kit {path}: {len(kit['backdrops'])} backdrops, {len(kit['personas'])} personas")
    return kit


# ---------------------------------------------------------------------------
# Confidence
# ---------------------------------------------------------------------------

def is_near_neutral(hex_value: Optional[str]) -> bool:
    if not hex_value:
        return True
    _, s, _ = hex_to_hsl(hex_value)
    return s < NEUTRAL_MAX_SATURATION


def assess_color_confidence(palette: Sequence[ColorSwatch]) -> str:
    """'high' | 'medium' | 'low' from dominant share and neutrality."""
    if not palette:
        return "low"
    dominant = palette[0]
    if dominant.percentage > HIGH_CONFIDENCE_SHARE and not is_near_neutral(dominant.hex):
        return "high"
    if dominant.percentage > MEDIUM_CONFIDENCE_SHARE:
        return "medium"
    return "low"


# ---------------------------------------------------------------------------
# Image prompt
# ---------------------------------------------------------------------------

class PromptBuilder:
    """Priority-sectioned prompt for one image generation."""

    def __init__(
        self,
        palette: Sequence[ColorSwatch] = (),
        persona: Optional[ModelPersona] = None,
        category: str = DEFAULT_CATEGORY,
        backdrop: Optional[Backdrop] = None,
        confidence: Optional[str] = None,
        rng: Optional[random.Random] = None,
    ):
        if category not in CATEGORIES:
            logger.warning(f"Unknown category '{category}', using '{DEFAULT_CATEGORY}'")
            category = DEFAULT_CATEGORY
        self.palette = tuple(palette)
        self.persona = persona
        self.category = category
        self.backdrop = backdrop
        self.confidence = confidence or assess_color_confidence(self.palette)
        self._rng = rng or random.Random()
        # Drawn once so build() and sections() agree.
        self.variation_cue = self._rng.choice(VARIATION_CUES)

    @property
    def noun(self) -> str:
        return PRODUCT_NOUNS[self.category]

    def _marker(self) -> str:
        return f"{CRITICAL_MARKER} " if self.palette else ""

    def _critical_section(self) -> str:
        parts: List[str] = []
        if self.palette:
            dominant = self.palette[0]
            semantic = to_semantic_name(dominant.name)
            if self.confidence == "high":
                parts.append(
                    f"{CRITICAL_MARKER} The {self.noun} is {semantic} ({dominant.hex}). "
                    f"Match this exact color with precision. No hue shifts, no recoloring."
                )
            elif self.confidence == "medium":
                parts.append(
                    f"{CRITICAL_MARKER} The {self.noun} is primarily {semantic} ({dominant.hex}). "
                    f"Use this as the dominant color, maintaining accuracy."
                )
            else:
                parts.append(
                    f"IMPORTANT: The {self.noun} features {semantic} tones ({dominant.hex}). "
                    f"Interpret naturally while respecting the overall palette."
                )

        parts.append(
            f"{self._marker()}Preserve the exact {self.noun} design - logos, text, patterns, prints, embroidery, "
            f"and all visual details must remain identical. Do not add, remove, or modify any design elements."
        )
        parts.append(f"{self._marker()}{STRUCTURAL_RULES[self.category]}")
        return " ".join(parts)

    def _important_section(self) -> str:
        parts = []
        if self.persona and self.persona.description:
            parts.append(self.persona.description)
        parts.append(CAMERA_GUIDANCE[self.category])
        return " ".join(parts)

    def _supporting_section(self) -> str:
        parts = []
        if self.backdrop and self.backdrop.prompt:
            parts.append(self.backdrop.prompt)
        if len(self.palette) > 1:
            summary = ", ".join(f"{to_semantic_name(s.name)} ({s.percentage}%)" for s in self.palette[:3])
            parts.append(f"{self.noun.capitalize()} color palette: {summary}.")
        parts.append(self.variation_cue)
        return " ".join(parts)

    def _context_section(self) -> str:
        parts = [
            "Photorealistic rendering, high resolution output (minimum 1024px), professional photography quality.",
            "Skin-safe lighting with natural color temperature. Avoid harsh shadows or overexposure. "
            "Soft, even illumination that shows material texture.",
        ]
        if self.confidence == "high" and self.palette:
            parts.append(
                f"Use the uploaded {self.noun} image as ground truth for color matching. "
                f"Lock to exact hex value {self.palette[0].hex}."
            )
        return " ".join(parts)

    def _negative_section(self) -> str:
        negatives = list(NEGATIVES) + [CATEGORY_NEGATIVES[self.category]]
        return f"Negative prompt: {'; '.join(negatives)}."

    def sections(self) -> Dict[str, str]:
        return {
            "critical": self._critical_section(),
            "important": self._important_section(),
            "supporting": self._supporting_section(),
            "context": self._context_section(),
            "negative": self._negative_section(),
        }

    def build(self) -> str:
        return " ".join(text for text in self.sections().values() if text)

    def token_estimate(self, prompt: Optional[str] = None) -> int:
        """Rough token count at ~4 characters per token."""
        return math.ceil(len(prompt if prompt is not None else self.build()) / 4)


# ---------------------------------------------------------------------------
# Video prompt
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class MotionPreset:
    id: str
    name: str
    prompt: str
    recommended: bool = False


def _presets(*items: MotionPreset) -> Dict[str, MotionPreset]:
    return {p.id: p for p in items}


VIDEO_MOTION_PRESETS: Dict[str, Dict[str, MotionPreset]] = {
    "clothes": _presets(
        MotionPreset("runway_walk", "Runway Walk",
                     "Smooth runway walk, confident stride, fabric flowing naturally, camera follows model smoothly, "
                     "garment details visible throughout", recommended=True),
        MotionPreset("model_turn", "Model Turn",
                     "Graceful 360-degree turn on spot, smooth pivot, showing front, side, and back of garment"),
        MotionPreset("subtle_pose", "Subtle Movement",
                     "Minimal elegant movement, gentle weight shift, slight arm adjustment, lookbook style"),
        MotionPreset("fabric_flow", "Fabric in Motion",
                     "Dramatic fabric movement, material flowing and draping, slow motion fabric physics"),
    ),
    "shoes": _presets(
        MotionPreset("walking_feet", "Walking Feet",
                     "Focus on feet and legs, natural walking motion from low angle, shoe flex visible, "
                     "steady tracking shot", recommended=True),
        MotionPreset("shoe_rotation", "360 Rotation",
                     "Smooth 360-degree orbit around the shoe, revealing all angles, studio lighting, no model visible"),
        MotionPreset("step_detail", "Step Detail",
                     "Close-up of foot stepping forward, slow motion, sole flex visible, heel-to-toe motion"),
    ),
    "bags": _presets(
        MotionPreset("carry_walk", "Carry & Walk",
                     "Model walking naturally with bag, bag moves realistically with body motion, "
                     "focus on bag throughout", recommended=True),
        MotionPreset("bag_360", "360 Display",
                     "Smooth 360-degree rotation of bag on a display stand, showing all sides and hardware details"),
        MotionPreset("open_close", "Open & Close",
                     "Hands opening bag to reveal interior, then closing with click of clasp or zipper"),
    ),
    "accessories": _presets(
        MotionPreset("sparkle_reveal", "Sparkle Reveal",
                     "Slow elegant movement, light catching on metal surfaces, rotating to show facets and details",
                     recommended=True),
        MotionPreset("wrist_gesture", "Wrist Gesture",
                     "Natural wrist and hand movement, watch or bracelet visible, elegant gestures"),
        MotionPreset("zoom_detail", "Zoom Detail",
                     "Camera slowly zooms into product details, extreme close-up on craftsmanship"),
    ),
}

VIDEO_QUALITY_BOOST = ", ".join((
    "8K resolution quality",
    "professional color grading",
    "smooth 60fps motion",
    "studio lighting consistency",
    "no flickering or artifacts",
    "natural motion blur",
))


def get_motion_presets(category: str) -> Dict[str, MotionPreset]:
    return VIDEO_MOTION_PRESETS.get(category, VIDEO_MOTION_PRESETS[DEFAULT_CATEGORY])


def get_default_motion_preset(category: str) -> MotionPreset:
    presets = get_motion_presets(category)
    return next((p for p in presets.values() if p.recommended), next(iter(presets.values())))


def preset_tables(
    backdrops: Optional[Mapping[str, Backdrop]] = None,
    personas: Optional[Mapping[str, ModelPersona]] = None,
) -> Dict[str, Mapping[str, Any]]:
    """The preset tables prompts are built from, for validate_config()."""
    return {
        "personas": PERSONAS if personas is None else personas,
        "backdrops": BACKDROPS if backdrops is None else backdrops,
        "camera_guidance": CAMERA_GUIDANCE,
        "structural_rules": STRUCTURAL_RULES,
        "category_negatives": CATEGORY_NEGATIVES,
        "motion_presets": VIDEO_MOTION_PRESETS,
    }


@dataclass
class VideoPromptBuilder:
    """Prompt for animating an already generated still."""
    category: str = DEFAULT_CATEGORY
    motion_style: Optional[str] = None
    user_prompt: Optional[str] = None
    palette: Sequence[ColorSwatch] = field(default_factory=tuple)

    @property
    def preset(self) -> MotionPreset:
        presets = get_motion_presets(self.category)
        if self.motion_style and self.motion_style in presets:
            return presets[self.motion_style]
        return get_default_motion_preset(self.category)

    def build(self) -> str:
        parts = [
            "Transform this static fashion product image into a smooth, professional video.",
            self.preset.prompt + ".",
        ]
        if self.user_prompt and self.user_prompt.strip():
            parts.append(self.user_prompt.strip())
        parts.append(VIDEO_QUALITY_BOOST + ".")
        if self.palette:
            dominant = self.palette[0]
            parts.append(f"Keep the product {to_semantic_name(dominant.name)} ({dominant.hex}) in every frame.")
        parts.append(
            "Maintain exact product appearance, colors, and details from the source image. "
            "No morphing or distortion of product features. Consistent lighting throughout."
        )
        parts.append(
            "Avoid: jump cuts, camera shake, sudden movements, unnatural poses, color shifts, "
            "blurry frames, low quality compression."
        )
        return " ".join(parts)


# ---------------------------------------------------------------------------
# CLI
# ---------------------------------------------------------------------------

def _palette_from_json(path: Path) -> List[ColorSwatch]:
    data = json.loads(path.read_text(encoding="utf-8"))
    return [ColorSwatch.from_hex(item["hex"], int(item.get("percentage", 100))) for item in data]


def main():
    parser = argparse.ArgumentParser(description="Step 2: build a generation prompt from a palette")
    parser.add_argument("--palette", required=True, help="Palette JSON written by step 1")
    parser.add_argument("--category", default=DEFAULT_CATEGORY, choices=CATEGORIES)
    parser.add_argument("--persona", help="Model persona id")
    parser.add_argument("--backdrop", default="studio_white", help="Backdrop id")
    parser.add_argument("--style-kit", type=Path, help="YAML file with extra backdrops/personas")
    parser.add_argument("--seed", type=int, help="Seed for the variation cue")
    parser.add_argument("--debug", action="store_true", help="Print sections separately")
    args = parser.parse_args()

    logging.basicConfig(level=logging.INFO, format="%(asctime)s - %(name)s - %(levelname)s - %(message)s")

    backdrops: Mapping[str, Backdrop] = dict(BACKDROPS)
    personas: Mapping[str, ModelPersona] = dict(PERSONAS)
    if args.style_kit:
        kit = load_style_kit(args.style_kit)
        backdrops = {**backdrops, **kit["backdrops"]}
        personas = {**personas, **kit["personas"]}

    check = validate_config(preset_tables(backdrops, personas), args.category)
    if not check.valid:
        logger.warning(f"Preset tables incomplete for '{args.category}': missing {', '.join(check.missing)}")

    builder = PromptBuilder(
        palette=_palette_from_json(Path(args.palette)),
        persona=personas.get(args.persona) if args.persona else None,
        category=args.category,
        backdrop=backdrops.get(args.backdrop),
        rng=random.Random(args.seed),
    )
    if args.debug:
        print(json.dumps({**builder.sections(), "token_estimate": builder.token_estimate()}, indent=2))
    else:
        print(builder.build())


if __name__ == "__main__":
    main()

"""
Prompt quality scoring and preset table checks. Advisory only: the
pipeline logs the report and carries on, a low score never blocks a
generation.
"""

from __future__ import annotations

import logging
from dataclasses import asdict, dataclass, field
from datetime import datetime, timezone
from typing import Any, Dict, List, Mapping, Optional

logger = logging.getLogger("lookbook.quality")

MINIMUM_PROMPT_LENGTH = 200
PASSING_SCORE = 70
REQUIRED_SECTIONS = ("CRITICAL",)

CATEGORY_KEYWORDS = {
    "clothes": ("garment", "fabric", "outfit"),
    "shoes": ("footwear", "shoe", "sole"),
    "bags": ("bag", "hardware", "strap"),
    "accessories": ("accessory", "jewelry", "detail"),
}

# Preset tables the prompt builders draw on; True means keyed by category.
REQUIRED_PRESET_TABLES = {
    "personas": False,
    "backdrops": False,
    "camera_guidance": True,
    "structural_rules": True,
    "category_negatives": True,
    "motion_presets": True,
}


@dataclass
class PromptValidation:
    valid: bool
    score: int
    issues: List[str] = field(default_factory=list)
    prompt_length: int = 0


@dataclass
class ConfigValidation:
    valid: bool
    missing: List[str]
    category: str


def validate_prompt(prompt: str, color_hex: Optional[str] = None, category: Optional[str] = None) -> PromptValidation:
    """Score a prompt out of 100 against the rubric; valid when score >= 70."""
    issues: List[str] = []
    score = 100
    lowered = prompt.lower()

    if len(prompt) < MINIMUM_PROMPT_LENGTH:
        issues.append(f"Prompt too short ({len(prompt)} chars, min: {MINIMUM_PROMPT_LENGTH})")
        score -= 20

    for section in REQUIRED_SECTIONS:
        if section not in prompt:
            issues.append(f"Missing {section} section - color/design preservation may fail")
            score -= 30

    if color_hex and color_hex.lower() not in lowered:
        issues.append(f"Color lock not applied: {color_hex} not found in prompt")
        score -= 25

    if category:
        keywords = CATEGORY_KEYWORDS.get(category, ())
        if keywords and not any(kw in lowered for kw in keywords):
            issues.append(f"Category-specific keywords missing for: {category}")
            score -= 10

    if "Negative prompt:" not in prompt and "Avoid:" not in prompt:
        issues.append("Missing negative prompt section")
        score -= 10

    if "photorealistic" not in lowered:
        issues.append("Consider adding photorealistic quality requirement")
        score -= 5

    score = max(0, score)
    return PromptValidation(valid=score >= PASSING_SCORE, score=score, issues=issues, prompt_length=len(prompt))


def validate_config(tables: Mapping[str, Any], category: str) -> ConfigValidation:
    """
    Check that every preset table a category's prompts draw on is present
    and non-empty. Per-category tables must hold an entry for ``category``.
    """
    missing: List[str] = []
    for name, per_category in REQUIRED_PRESET_TABLES.items():
        table = tables.get(name)
        if per_category and table:
            table = table.get(category)
        if not table:
            missing.append(name)
    return ConfigValidation(valid=not missing, missing=missing, category=category)


def generate_quality_report(builder: Any) -> Dict[str, Any]:
    """Section lengths, token estimate and rubric result for a PromptBuilder."""
    full_prompt = builder.build()
    sections = builder.sections()
    palette = builder.palette
    validation = validate_prompt(
        full_prompt,
        color_hex=palette[0].hex if palette else None,
        category=builder.category,
    )
    return {
        "total_length": len(full_prompt),
        "token_estimate": builder.token_estimate(full_prompt),
        "sections": {name: len(text) for name, text in sections.items()},
        "validation": asdict(validation),
        "timestamp": datetime.now(timezone.utc).isoformat(),
    }


def log_quality_metrics(request_id: str, report: Mapping[str, Any], log: Optional[logging.LoggerAdapter] = None) -> None:
    out = log or logger
    validation = report["validation"]
    out.info(f"[Quality] [{request_id}] Prompt length: {report['total_length']}, Score: {validation['score']}/100")
    if validation["issues"]:
        out.warning(f"[Quality] [{request_id}] Issues: {validation['issues']}")

"""
Lookbook Generation Pipeline
============================

Turns a single product photo into an AI-rendered marketing image or video
through an external generation provider, then validates the result.

Core Pipeline:
0. Rate limiting (cooldown, hourly and daily caps per user)
1. Color extraction (k-means palette with background correction)
2. Prompt building (weighted sections, confidence-gated color lock)
3. Generation client (async submit + poll against the provider)
4. Color validation (CIE76 Delta E tiers, white-product checks)
5. Error handling (classification, credit refund, localized messages)

Version: 1.0.0
"""

__version__ = "1.0.0"
__author__ = "Lookbook"

from .steps import (
    step0_rate_limiter,
    step1_color_extract,
    step2_prompt_builder,
    step3_generation_client,
    step4_color_validator,
    step5_error_handler,
)

__all__ = [
    "step0_rate_limiter",
    "step1_color_extract",
    "step2_prompt_builder",
    "step3_generation_client",
    "step4_color_validator",
    "step5_error_handler",
]

"""
Pipeline Steps Module
====================

Contains the core pipeline steps:
- step0_rate_limiter: Sliding-window per-user rate limiting
- step1_color_extract: Pixel buffer to dominant palette
- step2_prompt_builder: Palette + persona + backdrop to weighted prompt
- step3_generation_client: Provider job submission and polling
- step4_color_validator: Delta E comparison of source vs rendered color
- step5_error_handler: Failure classification, refunds and user messages
"""

from . import step0_rate_limiter
from . import step1_color_extract
from . import step2_prompt_builder
from . import step3_generation_client
from . import step4_color_validator
from . import step5_error_handler

__all__ = [
    "step0_rate_limiter",
    "step1_color_extract",
    "step2_prompt_builder",
    "step3_generation_client",
    "step4_color_validator",
    "step5_error_handler",
]

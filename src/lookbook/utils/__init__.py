"""
Lookbook utilities: color naming, prompt quality scoring, credits,
request ids and logging helpers.
"""

from .color_naming import (
    get_color_name,
    hex_to_hsl,
    hex_to_rgb,
    rgb_to_hex,
    rgb_to_hsl,
    simple_name,
    to_semantic_name,
)

from .credits import (
    CreditsService,
    DeductResult,
    HttpCreditsService,
    InMemoryCredits,
)

from .logging_utils import setup_logging, with_context

from .quality_validator import (
    generate_quality_report,
    log_quality_metrics,
    validate_config,
    validate_prompt,
)

from .request_id import generate_request_id, parse_request_id, short_request_id

__all__ = [
    "get_color_name",
    "hex_to_hsl",
    "hex_to_rgb",
    "rgb_to_hex",
    "rgb_to_hsl",
    "simple_name",
    "to_semantic_name",
    "CreditsService",
    "DeductResult",
    "HttpCreditsService",
    "InMemoryCredits",
    "setup_logging",
    "with_context",
    "generate_quality_report",
    "log_quality_metrics",
    "validate_config",
    "validate_prompt",
    "generate_request_id",
    "parse_request_id",
    "short_request_id",
]

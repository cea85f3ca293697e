#!/usr/bin/env python3
"""
config.py - Runtime configuration
=================================

Dataclass configs for every tunable part of the pipeline. Values come from
(lowest to highest priority): dataclass defaults, a YAML file, environment.

Recognized environment variables:
- RATE_LIMIT_PER_HOUR, RATE_LIMIT_PER_DAY, RATE_LIMIT_COOLDOWN
- GEMINIGEN_API_KEY, GEMINIGEN_BASE_URL, GEMINIGEN_MODEL, GEMINIGEN_VIDEO_MODEL
- GEMINIGEN_ASPECT_RATIO, GEMINIGEN_RESOLUTION, GEMINIGEN_VIDEO_RESOLUTION,
  GEMINIGEN_VIDEO_ASPECT_RATIO
- POLL_INTERVAL_MS, POLL_LIMIT, VIDEO_POLL_INTERVAL_MS, VIDEO_POLL_LIMIT,
  VIDEO_POLL_TIMEOUT_MS
- CREDITS_BASE_URL, CREDITS_API_TOKEN
- LOG_LEVEL, LOG_DIR
"""

from __future__ import annotations

import logging
import os
from dataclasses import dataclass, field, fields, replace
from pathlib import Path
from typing import Any, Dict, Mapping, Optional

import yaml

logger = logging.getLogger("lookbook.config")


def _env_int(env: Mapping[str, str], name: str, default: int) -> int:
    raw = env.get(name)
    if raw is None or raw == "":
        return default
    try:
        return int(raw)
    except ValueError:
        logger.warning(f"Ignoring non-integer {name}={raw!r}; using {default}")
        return default


def _env_str(env: Mapping[str, str], name: str, default: Optional[str]) -> Optional[str]:
    raw = env.get(name)
    return raw if raw else default


# -----------------------------
# Config dataclasses
# -----------------------------
@dataclass(frozen=True)
class RateLimitConfig:
    per_hour: int = 10
    per_day: int = 50
    cooldown_seconds: int = 30
    sweep_interval_seconds: int = 3600

    @classmethod
    def from_env(cls, env: Optional[Mapping[str, str]] = None, base: Optional["RateLimitConfig"] = None) -> "RateLimitConfig":
        env = os.environ if env is None else env
        base = base or cls()
        return replace(
            base,
            per_hour=_env_int(env, "RATE_LIMIT_PER_HOUR", base.per_hour),
            per_day=_env_int(env, "RATE_LIMIT_PER_DAY", base.per_day),
            cooldown_seconds=_env_int(env, "RATE_LIMIT_COOLDOWN", base.cooldown_seconds),
        )


@dataclass(frozen=True)
class PollConfig:
    interval_ms: int = 5000
    attempt_limit: int = 60
    # Hard wall-clock deadline for the whole poll loop; None disables it.
    hard_timeout_ms: Optional[int] = None

    @property
    def interval_seconds(self) -> float:
        return self.interval_ms / 1000.0


@dataclass(frozen=True)
class ProviderConfig:
    base_url: str = "https://api.geminigen.ai"
    api_key: Optional[str] = None
    image_model: str = "imagen-pro"
    video_model: str = "veo-3.1-fast"
    aspect_ratio: str = "3:4"
    resolution: str = "2K"
    style: str = "Photorealistic"
    video_resolution: str = "1080p"
    video_aspect_ratio: str = "16:9"
    request_timeout_seconds: float = 120.0
    image_poll: PollConfig = field(default_factory=PollConfig)
    video_poll: PollConfig = field(
        default_factory=lambda: PollConfig(interval_ms=8000, attempt_limit=75, hard_timeout_ms=10 * 60 * 1000)
    )

    @classmethod
    def from_env(cls, env: Optional[Mapping[str, str]] = None, base: Optional["ProviderConfig"] = None) -> "ProviderConfig":
        env = os.environ if env is None else env
        base = base or cls()
        image_poll = replace(
            base.image_poll,
            interval_ms=_env_int(env, "POLL_INTERVAL_MS", base.image_poll.interval_ms),
            attempt_limit=_env_int(env, "POLL_LIMIT", base.image_poll.attempt_limit),
        )
        video_poll = replace(
            base.video_poll,
            interval_ms=_env_int(env, "VIDEO_POLL_INTERVAL_MS", base.video_poll.interval_ms),
            attempt_limit=_env_int(env, "VIDEO_POLL_LIMIT", base.video_poll.attempt_limit),
            hard_timeout_ms=_env_int(env, "VIDEO_POLL_TIMEOUT_MS", base.video_poll.hard_timeout_ms or 0) or None,
        )
        return replace(
            base,
            base_url=_env_str(env, "GEMINIGEN_BASE_URL", base.base_url),
            api_key=_env_str(env, "GEMINIGEN_API_KEY", base.api_key),
            image_model=_env_str(env, "GEMINIGEN_MODEL", base.image_model),
            video_model=_env_str(env, "GEMINIGEN_VIDEO_MODEL", base.video_model),
            aspect_ratio=_env_str(env, "GEMINIGEN_ASPECT_RATIO", base.aspect_ratio),
            resolution=_env_str(env, "GEMINIGEN_RESOLUTION", base.resolution),
            video_resolution=_env_str(env, "GEMINIGEN_VIDEO_RESOLUTION", base.video_resolution),
            video_aspect_ratio=_env_str(env, "GEMINIGEN_VIDEO_ASPECT_RATIO", base.video_aspect_ratio),
            image_poll=image_poll,
            video_poll=video_poll,
        )


@dataclass(frozen=True)
class CreditsConfig:
    base_url: Optional[str] = None
    api_token: Optional[str] = None
    request_timeout_seconds: float = 15.0

    @classmethod
    def from_env(cls, env: Optional[Mapping[str, str]] = None, base: Optional["CreditsConfig"] = None) -> "CreditsConfig":
        env = os.environ if env is None else env
        base = base or cls()
        return replace(
            base,
            base_url=_env_str(env, "CREDITS_BASE_URL", base.base_url),
            api_token=_env_str(env, "CREDITS_API_TOKEN", base.api_token),
        )


@dataclass(frozen=True)
class PipelineConfig:
    rate_limit: RateLimitConfig = field(default_factory=RateLimitConfig)
    provider: ProviderConfig = field(default_factory=ProviderConfig)
    credits: CreditsConfig = field(default_factory=CreditsConfig)
    palette_size: int = 5
    default_lang: str = "en"
    validate_result_color: bool = True
    log_level: str = "INFO"
    log_dir: Optional[str] = None

    @classmethod
    def from_env(cls, env: Optional[Mapping[str, str]] = None, base: Optional["PipelineConfig"] = None) -> "PipelineConfig":
        env = os.environ if env is None else env
        base = base or cls()
        return replace(
            base,
            rate_limit=RateLimitConfig.from_env(env, base.rate_limit),
            provider=ProviderConfig.from_env(env, base.provider),
            credits=CreditsConfig.from_env(env, base.credits),
            log_level=_env_str(env, "LOG_LEVEL", base.log_level),
            log_dir=_env_str(env, "LOG_DIR", base.log_dir),
        )


# -----------------------------
# YAML overlay
# -----------------------------
def _apply_mapping(instance: Any, overrides: Dict[str, Any]) -> Any:
    """Recursively overlay a mapping onto a (frozen) dataclass instance."""
    known = {f.name: f for f in fields(instance)}
    changes: Dict[str, Any] = {}
    for key, value in (overrides or {}).items():
        if key not in known:
            logger.warning(f"Unknown config key '{key}' for {type(instance).__name__}; ignoring")
            continue
        current = getattr(instance, key)
        if isinstance(value, dict) and hasattr(current, "__dataclass_fields__"):
            changes[key] = _apply_mapping(current, value)
        else:
            changes[key] = value
    return replace(instance, **changes)


def load_config(path: Optional[Path] = None, env: Optional[Mapping[str, str]] = None) -> PipelineConfig:
    """
    Build a PipelineConfig from defaults, an optional YAML file and the environment.

    YAML layout mirrors the dataclasses:

        rate_limit: {per_hour: 10, per_day: 50, cooldown_seconds: 30}
        provider:
          base_url: https://api.geminigen.ai
          image_poll: {interval_ms: 5000, attempt_limit: 60}
    """
    config = PipelineConfig()
    if path is not None:
        path = Path(path)
        if path.exists():
            with open(path, "r", encoding="utf-8") as f:
                data = yaml.safe_load(f) or {}
            if not isinstance(data, dict):
                raise ValueError(f"Config file {path} must contain a mapping at the top level")
            config = _apply_mapping(config, data)
            logger.info(f"Loaded pipeline config from {path}")
        else:
            logger.warning(f"Config file {path} not found; using defaults")
    return PipelineConfig.from_env(env, config)

#!/usr/bin/env python3
"""
pipeline.py - End-to-end generation orchestration
=================================================

One request flows through:

    rate slot -> credit deduct -> palette -> prompt (+ quality report)
    -> provider job -> result color QA

Rate-limit and credit rejections come back as structured outcomes. Any
failure after the credit is taken is handled exactly once by the
ErrorHandler (log, refund, localized message). Color QA problems are
warnings on a successful outcome.
"""

from __future__ import annotations

import asyncio
import logging
import random
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Union

import httpx

from .config import PipelineConfig
from .errors import GenerationCancelledError, LookbookError
from .steps.step0_rate_limiter import RateDecision, RateLimiter
from .steps.step1_color_extract import ColorExtractor, ColorSwatch, Palette
from .steps.step2_prompt_builder import (
    BACKDROPS,
    CATEGORIES,
    DEFAULT_CATEGORY,
    PERSONAS,
    Backdrop,
    ModelPersona,
    PromptBuilder,
    VideoPromptBuilder,
    assess_color_confidence,
    preset_tables,
)
from .steps.step3_generation_client import GenerationJob, GenerationJobClient, JobKind
from .steps.step4_color_validator import is_white_color, validate_color_match, validate_white_product
from .steps.step5_error_handler import ErrorHandler, ErrorKind
from .utils.credits import CreditsService, HttpCreditsService
from .utils.logging_utils import with_context
from .utils.quality_validator import generate_quality_report, log_quality_metrics, validate_config
from .utils.request_id import generate_request_id

logger = logging.getLogger("lookbook.pipeline")

STATUS_SUCCEEDED = "succeeded"
STATUS_FAILED = "failed"
STATUS_RATE_LIMITED = "rate_limited"
STATUS_INSUFFICIENT_CREDITS = "insufficient_credits"

RATE_LIMIT_MESSAGES = {
    "cooldown": {
        "en": "⏳ Please wait {retry} seconds before your next generation.",
        "tn": "⏳ Estanna {retry} sec w 3awéd jéréb.",
    },
    "hourly_limit": {
        "en": "⏳ Hourly limit reached ({current}/{limit}). Try again in {retry} minutes.",
        "tn": "⏳ Wsolt lel limite mta3 essa3a ({current}/{limit}). 3awéd ba3d {retry} min.",
    },
    "daily_limit": {
        "en": "⏳ Daily limit reached ({current}/{limit}). Try again tomorrow.",
        "tn": "⏳ Wsolt lel limite mta3 el yom ({current}/{limit}). 3awéd ghodwa.",
    },
}

INSUFFICIENT_CREDITS_MESSAGES = {
    "en": "💳 Not enough credits for this generation.",
    "tn": "💳 Ma 3andekch crédits kafyin.",
}


def rate_limit_message(decision: RateDecision, lang: str = "en") -> str:
    texts = RATE_LIMIT_MESSAGES.get(decision.reason or "", RATE_LIMIT_MESSAGES["cooldown"])
    template = texts.get(lang) or texts["en"]
    return template.format(retry=decision.retry_after, current=decision.current, limit=decision.limit)


@dataclass
class GenerationRequest:
    user_id: Any
    image_bytes: bytes = b""
    category: str = DEFAULT_CATEGORY
    persona: Optional[Union[ModelPersona, str]] = None
    backdrop: Optional[Union[Backdrop, str]] = None
    color_override: Optional[str] = None
    lang: str = "en"
    kind: JobKind = JobKind.IMAGE
    filename: str = "product.png"
    # video only
    reference_url: Optional[str] = None
    motion_style: Optional[str] = None
    user_prompt: Optional[str] = None


@dataclass
class GenerationOutcome:
    status: str
    request_id: str
    message: Optional[str] = None
    job: Optional[GenerationJob] = None
    palette: Palette = ()
    prompt: Optional[str] = None
    warnings: List[str] = field(default_factory=list)
    error_kind: Optional[ErrorKind] = None
    rate_decision: Optional[RateDecision] = None
    quality: Optional[Dict[str, Any]] = None
    delta_e: Optional[float] = None

    @property
    def succeeded(self) -> bool:
        return self.status == STATUS_SUCCEEDED

    @property
    def result_url(self) -> Optional[str]:
        return self.job.result_url if self.job else None


class GenerationPipeline:
    """Wires the steps together around injected collaborators."""

    def __init__(
        self,
        config: PipelineConfig,
        rate_limiter: RateLimiter,
        credits: CreditsService,
        client: GenerationJobClient,
        extractor: Optional[ColorExtractor] = None,
        error_handler: Optional[ErrorHandler] = None,
        rng: Optional[random.Random] = None,
    ):
        self.config = config
        self.rate_limiter = rate_limiter
        self.credits = credits
        self.client = client
        self.extractor = extractor or ColorExtractor(palette_size=config.palette_size)
        self.error_handler = error_handler or ErrorHandler(credits)
        self.rng = rng or random.Random()
        self._check_presets()

    @classmethod
    def from_config(cls, config: PipelineConfig, credits: Optional[CreditsService] = None) -> "GenerationPipeline":
        return cls(
            config=config,
            rate_limiter=RateLimiter(config.rate_limit),
            credits=credits or HttpCreditsService(config.credits),
            client=GenerationJobClient(config.provider),
        )

    async def aclose(self) -> None:
        await self.client.aclose()

    # -------------------------------------------------------------------
    # Helpers
    # -------------------------------------------------------------------
    @staticmethod
    def _check_presets() -> None:
        tables = preset_tables()
        for category in CATEGORIES:
            check = validate_config(tables, category)
            if not check.valid:
                logger.warning(f"Preset tables incomplete for '{category}': missing {', '.join(check.missing)}")

    @staticmethod
    def _persona(value: Optional[Union[ModelPersona, str]]) -> Optional[ModelPersona]:
        if isinstance(value, str):
            return PERSONAS.get(value)
        return value

    @staticmethod
    def _backdrop(value: Optional[Union[Backdrop, str]]) -> Optional[Backdrop]:
        if isinstance(value, str):
            return BACKDROPS.get(value)
        return value

    async def _palette(self, request: GenerationRequest) -> Palette:
        if request.color_override:
            return (ColorSwatch.from_hex(request.color_override, 100),)
        if not request.image_bytes:
            return ()
        return await asyncio.to_thread(self.extractor.extract, request.image_bytes)

    async def _admit(self, request: GenerationRequest, request_id: str, log) -> Optional[GenerationOutcome]:
        """
        Take a rate-limit slot, then deduct. Returns an outcome only when
        the request is turned away.

        The slot is checked and recorded atomically so concurrent requests
        for one user cannot all pass the check before any of them records.
        A refused deduction gives the slot back.
        """
        decision = self.rate_limiter.try_acquire(request.user_id)
        if not decision.allowed:
            log.info(f"Rate limited: {decision.reason} (retry after {decision.retry_after})")
            return GenerationOutcome(
                status=STATUS_RATE_LIMITED,
                request_id=request_id,
                message=rate_limit_message(decision, request.lang),
                rate_decision=decision,
            )

        try:
            deduct = await self.credits.deduct(request.user_id)
        except BaseException:
            self.rate_limiter.release(request.user_id, decision.recorded_at)
            raise
        if not deduct.success:
            self.rate_limiter.release(request.user_id, decision.recorded_at)
            log.info(f"Credit deduction refused: {deduct.error} (balance {deduct.balance})")
            return GenerationOutcome(
                status=STATUS_INSUFFICIENT_CREDITS,
                request_id=request_id,
                message=INSUFFICIENT_CREDITS_MESSAGES.get(request.lang) or INSUFFICIENT_CREDITS_MESSAGES["en"],
            )

        log.info(f"Credit deducted (balance {deduct.balance})")
        return None

    async def _fail(self, exc: BaseException, request: GenerationRequest, request_id: str, **partial) -> GenerationOutcome:
        handled = await self.error_handler.handle_generation_error(exc, request.user_id, request_id, request.lang)
        return GenerationOutcome(
            status=STATUS_FAILED,
            request_id=request_id,
            message=handled.message,
            error_kind=handled.kind,
            job=getattr(exc, "job", None),
            **partial,
        )

    async def _check_result_color(self, job: GenerationJob, palette: Palette, log) -> Dict[str, Any]:
        """Delta E of the rendered dominant color against the source; never raises."""
        warnings: List[str] = []
        url = job.download_url or job.result_url
        if not palette or not url:
            return {"warnings": warnings, "delta_e": None}
        expected = palette[0].hex
        try:
            rendered = await self.client.fetch_artifact(url)
            result_palette = await asyncio.to_thread(self.extractor.extract, rendered)
        except (LookbookError, httpx.HTTPError) as e:
            log.warning(f"Result color could not be validated: {e}")
            warnings.append("Result color could not be validated")
            return {"warnings": warnings, "delta_e": None}

        actual = result_palette[0].hex
        match = validate_color_match(expected, actual)
        if match.verdict.should_warn:
            warnings.append(f"{match.verdict.message} (expected {expected}, got {actual}, dE {match.delta_e})")
        if is_white_color(expected):
            white = validate_white_product(actual)
            if not white.valid:
                warnings.append(white.message)
        return {"warnings": warnings, "delta_e": match.delta_e}

    # -------------------------------------------------------------------
    # Image
    # -------------------------------------------------------------------
    async def run(self, request: GenerationRequest, cancel_event: Optional[asyncio.Event] = None) -> GenerationOutcome:
        """Generate a marketing image for one uploaded product photo."""
        request_id = generate_request_id(request.user_id, "generate")
        log = with_context(logger, request_id=request_id, user_id=request.user_id)
        log.info(f"Image generation requested (category={request.category})")

        rejected = await self._admit(request, request_id, log)
        if rejected:
            return rejected

        palette: Palette = ()
        prompt: Optional[str] = None
        try:
            palette = await self._palette(request)
            confidence = "high" if request.color_override else assess_color_confidence(palette)
            persona = self._persona(request.persona)
            builder = PromptBuilder(
                palette=palette,
                persona=persona,
                category=request.category,
                backdrop=self._backdrop(request.backdrop),
                confidence=confidence,
                rng=self.rng,
            )
            prompt = builder.build()
            report = generate_quality_report(builder)
            log_quality_metrics(request_id, report, log)

            job = await self.client.generate_image(
                prompt,
                request.image_bytes,
                filename=request.filename,
                cancel_event=cancel_event,
                person_generation=persona.gender if persona else None,
            )
        except asyncio.CancelledError:
            await self.error_handler.handle_generation_error(
                GenerationCancelledError("Generation task was cancelled"), request.user_id, request_id, request.lang
            )
            raise
        except Exception as exc:
            return await self._fail(exc, request, request_id, palette=palette, prompt=prompt)

        check = {"warnings": [], "delta_e": None}
        if self.config.validate_result_color:
            check = await self._check_result_color(job, palette, log)

        log.info(f"Image generation succeeded: {job.result_url}")
        return GenerationOutcome(
            status=STATUS_SUCCEEDED,
            request_id=request_id,
            job=job,
            palette=palette,
            prompt=prompt,
            warnings=check["warnings"],
            quality=report,
            delta_e=check["delta_e"],
        )

    # -------------------------------------------------------------------
    # Video
    # -------------------------------------------------------------------
    async def run_video(self, request: GenerationRequest, cancel_event: Optional[asyncio.Event] = None) -> GenerationOutcome:
        """Animate an already generated still (``request.reference_url``)."""
        request_id = generate_request_id(request.user_id, "video")
        log = with_context(logger, request_id=request_id, user_id=request.user_id)
        log.info(f"Video generation requested (category={request.category}, motion={request.motion_style})")

        rejected = await self._admit(request, request_id, log)
        if rejected:
            return rejected

        palette: Palette = ()
        prompt: Optional[str] = None
        try:
            palette = await self._palette(request)
            prompt = VideoPromptBuilder(
                category=request.category,
                motion_style=request.motion_style,
                user_prompt=request.user_prompt,
                palette=palette,
            ).build()
            job = await self.client.generate_video(prompt, request.reference_url or "", cancel_event=cancel_event)
        except asyncio.CancelledError:
            await self.error_handler.handle_generation_error(
                GenerationCancelledError("Video task was cancelled"), request.user_id, request_id, request.lang
            )
            raise
        except Exception as exc:
            return await self._fail(exc, request, request_id, palette=palette, prompt=prompt)

        log.info(f"Video generation succeeded: {job.result_url}")
        return GenerationOutcome(status=STATUS_SUCCEEDED, request_id=request_id, job=job, palette=palette, prompt=prompt)

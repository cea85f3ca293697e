#!/usr/bin/env python3
"""
step3_generation_client.py - Step 3: Generation job client
==========================================================

Submit image/video jobs to the generation provider and poll them to a
terminal state:

    SUBMITTED -> POLLING -> SUCCEEDED | FAILED | TIMEOUT   (+ CANCELLED)

Endpoints (multipart submission, ``x-api-key`` auth):
- POST /uapi/v1/generate_image     -> {"uuid": ...}
- POST /uapi/v1/video-gen/veo      -> {"uuid": ...}
- GET  /uapi/v1/history/{uuid}     -> {"status": int, "generated_image": [...], "error_message": ...}
  (the history body may be wrapped in {"result": {...}})

Polling suspends on ``asyncio.sleep`` between attempts so one event loop
can drive many jobs. Abandoning a poll is done through an ``asyncio.Event``;
no cancel call is sent to the provider.
"""

from __future__ import annotations

import asyncio
import logging
import mimetypes
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, List, Optional, Sequence, Tuple

import httpx

from ..config import PollConfig, ProviderConfig
from ..errors import (
    GenerationCancelledError,
    GenerationError,
    GenerationTimeoutError,
    ProviderError,
    ProviderFailureError,
    ProviderNetworkError,
    RequestTimeoutError,
    SubmissionRejectedError,
)

logger = logging.getLogger("lookbook.generation")

IMAGE_ENDPOINT = "/uapi/v1/generate_image"
VIDEO_ENDPOINT = "/uapi/v1/video-gen/veo"
HISTORY_ENDPOINT = "/uapi/v1/history/{job_id}"

SUCCESS_MIN_STATUS = 2
FAILED_STATUS = 3

_RESULT_KEYS = ("generate_result", "generateResult", "generated_result", "generatedResult")
_IMAGE_KEYS = ("generated_image", "generated_images")
_VIDEO_KEYS = ("generated_video", "generated_videos", "generated_file", "generated_files")


class JobKind(str, Enum):
    IMAGE = "image"
    VIDEO = "video"


class JobStatus(str, Enum):
    SUBMITTED = "submitted"
    POLLING = "polling"
    SUCCEEDED = "succeeded"
    FAILED = "failed"
    TIMEOUT = "timeout"
    CANCELLED = "cancelled"

    @property
    def is_terminal(self) -> bool:
        return self in (JobStatus.SUCCEEDED, JobStatus.FAILED, JobStatus.TIMEOUT, JobStatus.CANCELLED)


@dataclass
class GenerationPayload:
    prompt: str
    kind: JobKind = JobKind.IMAGE
    image_bytes: Optional[bytes] = None
    filename: str = "product.png"
    reference_url: Optional[str] = None
    model: Optional[str] = None
    aspect_ratio: Optional[str] = None
    resolution: Optional[str] = None
    style: Optional[str] = None
    person_generation: Optional[str] = None


@dataclass
class GenerationJob:
    id: str
    kind: JobKind
    status: JobStatus = JobStatus.SUBMITTED
    result_urls: List[str] = field(default_factory=list)
    download_url: Optional[str] = None
    error_message: Optional[str] = None
    submitted_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))
    attempts: int = 0
    meta: Dict[str, Any] = field(default_factory=dict)

    @property
    def result_url(self) -> Optional[str]:
        return self.result_urls[0] if self.result_urls else self.download_url


# -----------------------------
# History parsing helpers
# -----------------------------
def _unwrap(data: Any) -> Dict[str, Any]:
    if isinstance(data, dict) and isinstance(data.get("result"), dict):
        return data["result"]
    return data if isinstance(data, dict) else {}


def _first_present(source: Dict[str, Any], keys: Sequence[str]) -> Any:
    for key in keys:
        if source.get(key):
            return source[key]
    return None


def _artifacts(history: Dict[str, Any], kind: JobKind) -> List[Dict[str, Any]]:
    items = _first_present(history, _IMAGE_KEYS if kind is JobKind.IMAGE else _VIDEO_KEYS)
    return [i for i in items if isinstance(i, dict)] if isinstance(items, list) else []


def _artifact_urls(item: Dict[str, Any], history: Dict[str, Any], kind: JobKind) -> Tuple[Optional[str], Optional[str]]:
    """(display url, download url) for one artifact, falling back to job-level fields."""
    generate_result = _first_present(history, _RESULT_KEYS)
    if kind is JobKind.IMAGE:
        thumbs = item.get("thumbnails") or []
        thumb = thumbs[0].get("url") if thumbs and isinstance(thumbs[0], dict) else None
        view = item.get("image_url") or generate_result or thumb or item.get("file_download_url") or history.get("thumbnail_url")
        download = item.get("file_download_url") or item.get("image_url") or generate_result
    else:
        view = item.get("video_url") or generate_result or item.get("file_download_url") or item.get("url") or history.get("video_url")
        download = item.get("file_download_url") or item.get("video_url") or generate_result or item.get("url")
    return view or download, download or view


def _error_detail(body: Any) -> Optional[str]:
    if not isinstance(body, dict):
        return None
    detail = body.get("detail")
    if isinstance(detail, dict) and detail.get("error_message"):
        return detail["error_message"]
    return body.get("error_message") or body.get("message")


# -----------------------------
# Client
# -----------------------------
class GenerationJobClient:
    """Async client for the generation provider's job API."""

    def __init__(
        self,
        config: ProviderConfig,
        client: Optional[httpx.AsyncClient] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.config = config
        self._client = client or httpx.AsyncClient(
            base_url=config.base_url,
            timeout=config.request_timeout_seconds,
            transport=transport,
            headers={"x-api-key": config.api_key or ""},
        )

    async def __aenter__(self) -> "GenerationJobClient":
        return self

    async def __aexit__(self, *exc_info) -> None:
        await self.aclose()

    async def aclose(self) -> None:
        await self._client.aclose()

    def poll_config(self, kind: JobKind) -> PollConfig:
        return self.config.image_poll if kind is JobKind.IMAGE else self.config.video_poll

    async def _request(self, method: str, url: str, authenticated: bool = True, **kwargs) -> httpx.Response:
        try:
            request = self._client.build_request(method, url, **kwargs)
            if not authenticated:
                request.headers.pop("x-api-key", None)
            response = await self._client.send(request)
        except httpx.InvalidURL as e:
            raise ProviderError(f"Generation API error: invalid URL {url!r}") from e
        except httpx.TimeoutException as e:
            raise RequestTimeoutError(f"Generation request timed out ({type(e).__name__})") from e
        except httpx.TransportError as e:
            raise ProviderNetworkError(f"Network error reaching the generation provider ({type(e).__name__})") from e

        if response.status_code >= 400:
            try:
                body = response.json()
            except ValueError:
                body = None
            message = _error_detail(body) or response.reason_phrase or "request failed"
            raise ProviderError(f"Generation API error {response.status_code}: {message}", status_code=response.status_code)
        return response

    @staticmethod
    def _json(response: httpx.Response) -> Any:
        try:
            return response.json()
        except ValueError as e:
            raise ProviderError("Generation API returned malformed JSON", status_code=response.status_code) from e

    # -------------------------------------------------------------------
    # Submission
    # -------------------------------------------------------------------
    def _form(self, payload: GenerationPayload) -> Tuple[str, List[Tuple[str, Any]]]:
        cfg = self.config
        if payload.kind is JobKind.IMAGE:
            if not payload.image_bytes:
                raise GenerationError("Invalid image payload: product image bytes are required")
            mime = mimetypes.guess_type(payload.filename)[0] or "application/octet-stream"
            fields = {
                "prompt": payload.prompt,
                "model": payload.model or cfg.image_model,
                "aspect_ratio": payload.aspect_ratio or cfg.aspect_ratio,
                "resolution": payload.resolution or cfg.resolution,
                "style": payload.style or cfg.style,
                "person_generation": payload.person_generation,
            }
            files = [("files", (payload.filename, payload.image_bytes, mime))]
            endpoint = IMAGE_ENDPOINT
        else:
            if not payload.reference_url:
                raise GenerationError("Invalid video payload: reference image URL is required")
            fields = {
                "prompt": payload.prompt,
                "model": payload.model or cfg.video_model,
                "resolution": payload.resolution or cfg.video_resolution,
                "aspect_ratio": payload.aspect_ratio or cfg.video_aspect_ratio,
                "file_urls": payload.reference_url,
            }
            files = []
            endpoint = VIDEO_ENDPOINT
        # (None, value) parts keep the body multipart even without a file.
        parts = [(name, (None, str(value))) for name, value in fields.items() if value is not None]
        return endpoint, parts + files

    async def submit(self, payload: GenerationPayload) -> str:
        """Send one submission request and return the provider's job id."""
        if not self.config.api_key:
            raise ProviderError("Generation API key is not set (GEMINIGEN_API_KEY)")
        endpoint, parts = self._form(payload)
        logger.info(f"Submitting {payload.kind.value} job ({len(payload.prompt)} char prompt) to {endpoint}")

        response = await self._request("POST", endpoint, files=parts)
        data = self._json(response)
        job_id = (data.get("uuid") if isinstance(data, dict) else None) or _unwrap(data).get("uuid")
        if not job_id:
            raise SubmissionRejectedError(f"Generation API did not return a job id for the {payload.kind.value}")
        logger.info(f"Job {job_id} accepted")
        return str(job_id)

    # -------------------------------------------------------------------
    # Polling
    # -------------------------------------------------------------------
    def _evaluate(self, job: GenerationJob, history: Dict[str, Any]) -> bool:
        """Update ``job`` from one history snapshot. True when it succeeded."""
        try:
            status = int(history.get("status") or 0)
        except (TypeError, ValueError):
            status = 0
        artifacts = _artifacts(history, job.kind)
        generate_result = _first_present(history, _RESULT_KEYS)
        error_message = _error_detail(history)
        job.meta.update({
            "status": status,
            "status_desc": history.get("status_desc") or "",
            "status_percentage": history.get("status_percentage"),
            "queue_position": history.get("queue_position"),
        })

        if status >= SUCCESS_MIN_STATUS and (artifacts or generate_result):
            primary = artifacts[0] if artifacts else {}
            view, download = _artifact_urls(primary, history, job.kind)
            if not view:
                job.status = JobStatus.FAILED
                job.error_message = f"Generation API finished but did not return a {job.kind.value} URL"
                raise ProviderFailureError(job.error_message, job=job)
            extra = [_artifact_urls(a, history, job.kind)[0] for a in artifacts[1:]]
            job.result_urls = [view] + [u for u in extra if u]
            job.download_url = download
            job.status = JobStatus.SUCCEEDED
            job.meta.update({
                "model": primary.get("model") or history.get("model_name"),
                "thumbnail": history.get("thumbnail_url"),
                "generated_at": history.get("updated_at") or history.get("created_at"),
                "history_url": f"{self.config.base_url}{HISTORY_ENDPOINT.format(job_id=job.id)}",
            })
            return True

        if status == FAILED_STATUS or status < 0 or error_message:
            job.status = JobStatus.FAILED
            job.error_message = error_message or f"Generation API reported a failure (status {status})"
            raise ProviderFailureError(job.error_message, job=job)
        return False

    async def _wait(self, seconds: float, cancel_event: Optional[asyncio.Event]) -> bool:
        """Sleep between attempts; returns True if the cancel event fired."""
        if cancel_event is None:
            await asyncio.sleep(seconds)
            return False
        try:
            await asyncio.wait_for(cancel_event.wait(), timeout=seconds)
        except asyncio.TimeoutError:
            return False
        return True

    async def _poll_loop(self, job: GenerationJob, poll: PollConfig, cancel_event: Optional[asyncio.Event]) -> GenerationJob:
        job.status = JobStatus.POLLING
        url = HISTORY_ENDPOINT.format(job_id=job.id)
        for attempt in range(1, poll.attempt_limit + 1):
            if cancel_event is not None and cancel_event.is_set():
                break
            history = _unwrap(self._json(await self._request("GET", url)))
            job.attempts = attempt
            if self._evaluate(job, history):
                logger.info(f"Job {job.id} succeeded after {attempt} poll(s)")
                return job
            logger.debug(f"Job {job.id} attempt {attempt}/{poll.attempt_limit}: status {job.meta.get('status')}")
            if attempt < poll.attempt_limit and await self._wait(poll.interval_seconds, cancel_event):
                break
        else:
            job.status = JobStatus.TIMEOUT
            job.error_message = (
                f"Timed out waiting for generation job {job.id} to finish after {poll.attempt_limit} polls"
            )
            raise GenerationTimeoutError(job.error_message, job=job)

        job.status = JobStatus.CANCELLED
        job.error_message = f"Generation job {job.id} was cancelled by the caller"
        logger.info(job.error_message)
        raise GenerationCancelledError(job.error_message, job=job)

    async def poll(self, job_id: str, kind: JobKind = JobKind.IMAGE, cancel_event: Optional[asyncio.Event] = None) -> GenerationJob:
        """Poll ``job_id`` until it reaches a terminal state."""
        job = GenerationJob(id=job_id, kind=kind)
        poll = self.poll_config(kind)
        if not poll.hard_timeout_ms:
            return await self._poll_loop(job, poll, cancel_event)
        try:
            return await asyncio.wait_for(self._poll_loop(job, poll, cancel_event), timeout=poll.hard_timeout_ms / 1000.0)
        except asyncio.TimeoutError as e:
            job.status = JobStatus.TIMEOUT
            job.error_message = f"Timed out waiting for generation job {job.id} after {poll.hard_timeout_ms // 1000}s"
            raise GenerationTimeoutError(job.error_message, job=job) from e

    # -------------------------------------------------------------------
    # Convenience
    # -------------------------------------------------------------------
    async def generate_image(
        self,
        prompt: str,
        image_bytes: bytes,
        filename: str = "product.png",
        cancel_event: Optional[asyncio.Event] = None,
        **overrides: Any,
    ) -> GenerationJob:
        payload = GenerationPayload(prompt=prompt, kind=JobKind.IMAGE, image_bytes=image_bytes, filename=filename, **overrides)
        job_id = await self.submit(payload)
        return await self.poll(job_id, JobKind.IMAGE, cancel_event)

    async def generate_video(
        self,
        prompt: str,
        reference_url: str,
        cancel_event: Optional[asyncio.Event] = None,
        **overrides: Any,
    ) -> GenerationJob:
        payload = GenerationPayload(prompt=prompt, kind=JobKind.VIDEO, reference_url=reference_url, **overrides)
        job_id = await self.submit(payload)
        return await self.poll(job_id, JobKind.VIDEO, cancel_event)

    def _is_provider_url(self, url: str) -> bool:
        try:
            target = httpx.URL(url)
        except httpx.InvalidURL:
            return False
        return target.is_relative_url or target.host == self._client.base_url.host

    async def fetch_artifact(self, url: str) -> bytes:
        """
        Download a finished artifact (absolute URL or provider-relative path).

        The API key is only sent to the provider's own host; CDN links are
        fetched without it.
        """
        response = await self._request("GET", url, authenticated=self._is_provider_url(url))
        return response.content

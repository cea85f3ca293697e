"""
Pytest configuration and fixtures for the Lookbook pipeline tests.
"""

import io
import sys
import tempfile
from pathlib import Path
from typing import Any, Dict, List, Optional

import httpx
import numpy as np
import pytest
from PIL import Image

sys.path.insert(0, str(Path(__file__).parent.parent / "src"))

from lookbook.config import PipelineConfig, PollConfig, ProviderConfig, RateLimitConfig

PROVIDER_URL = "https://provider.test"


def png_bytes(img: Image.Image) -> bytes:
    buf = io.BytesIO()
    img.save(buf, format="PNG")
    return buf.getvalue()


class FakeClock:
    """Manually advanced clock for rate limiter tests."""

    def __init__(self, start: float = 1_700_000_000.0):
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


@pytest.fixture
def temp_dir():
    """Create a temporary directory for test outputs."""
    with tempfile.TemporaryDirectory() as tmpdir:
        yield Path(tmpdir)


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def red_on_white_image():
    """180x180 white canvas with a centered 41x41 pure red square (~5% of pixels)."""
    pixels = np.full((180, 180, 3), 255, dtype=np.uint8)
    pixels[70:111, 70:111] = [255, 0, 0]
    return Image.fromarray(pixels)


@pytest.fixture
def red_on_white_bytes(red_on_white_image):
    return png_bytes(red_on_white_image)


@pytest.fixture
def striped_image():
    """Three horizontal bands: navy (50%), mustard (30%), teal (20%)."""
    pixels = np.zeros((100, 100, 3), dtype=np.uint8)
    pixels[0:50] = [20, 30, 90]
    pixels[50:80] = [200, 160, 40]
    pixels[80:100] = [20, 140, 140]
    return Image.fromarray(pixels)


@pytest.fixture
def solid_image_bytes():
    def _make(rgb, size=(64, 64)) -> bytes:
        return png_bytes(Image.new("RGB", size, color=tuple(rgb)))
    return _make


@pytest.fixture
def rate_config():
    return RateLimitConfig(per_hour=3, per_day=5, cooldown_seconds=30)


@pytest.fixture
def provider_config():
    return ProviderConfig(
        base_url=PROVIDER_URL,
        api_key="test-key",
        image_poll=PollConfig(interval_ms=0, attempt_limit=5),
        video_poll=PollConfig(interval_ms=0, attempt_limit=6),
    )


@pytest.fixture
def pipeline_config(rate_config, provider_config):
    return PipelineConfig(rate_limit=rate_config, provider=provider_config)


@pytest.fixture
def provider_transport():
    """
    Build an httpx.MockTransport that serves a scripted provider.

    ``history`` is the list of history bodies returned by successive polls
    (the last one repeats). Every request is recorded in ``calls``.
    """
    def _make(
        history: List[Dict[str, Any]],
        submit: Dict[str, Any] = None,
        submit_status: int = 200,
        artifact: bytes = b"",
        artifact_error: Optional[Exception] = None,
    ):
        calls: List[httpx.Request] = []
        polls = iter(history)
        last = {"body": history[-1] if history else {}}

        def handler(request: httpx.Request) -> httpx.Response:
            calls.append(request)
            path = request.url.path
            if request.method == "POST":
                return httpx.Response(submit_status, json=submit if submit is not None else {"uuid": "job-1"})
            if path.startswith("/uapi/v1/history/"):
                try:
                    last["body"] = next(polls)
                except StopIteration:
                    pass
                return httpx.Response(200, json=last["body"])
            if artifact_error is not None:
                raise artifact_error
            return httpx.Response(200, content=artifact)

        return httpx.MockTransport(handler), calls

    return _make

"""
Unit tests for request ids, credits and logging helpers.
"""

import asyncio
import json
import logging
import httpx
import pytest
from pathlib import Path

import sys
sys.path.insert(0, str(Path(__file__).parent.parent.parent / "src"))

from lookbook.config import CreditsConfig
from lookbook.errors import CreditsError
from lookbook.utils.credits import HttpCreditsService, InMemoryCredits
from lookbook.utils.logging_utils import setup_logging, with_context
from lookbook.utils.request_id import generate_request_id, parse_request_id, short_request_id


class TestRequestId:
    def test_generate_and_parse(self):
        rid = generate_request_id(42, "generate")
        parsed = parse_request_id(rid)
        assert parsed.action == "generate"
        assert parsed.user_id == "42"
        assert parsed.timestamp_ms > 0
        assert len(parsed.uuid) == 8
        assert parsed.created_at is not None

    def test_user_id_with_dashes(self):
        parsed = parse_request_id("video-ab-cd-1704067200000-a1b2c3d4")
        assert parsed.user_id == "ab-cd"
        assert parsed.timestamp_ms == 1704067200000

    def test_unparseable(self):
        assert parse_request_id("nonsense").action == "unknown"
        assert parse_request_id("a-b-notanumber-c").timestamp_ms is None

    def test_unique(self):
        assert generate_request_id(1) != generate_request_id(1)

    def test_short(self):
        assert short_request_id("generate-1-2-a1b2c3d4") == "a1b2c3d4"
        assert short_request_id(None) == "N/A"


class TestInMemoryCredits:
    def test_deduct_and_refund(self):
        credits = InMemoryCredits({"u1": 1})

        async def _go():
            first = await credits.deduct("u1")
            second = await credits.deduct("u1")
            balance = await credits.refund("u1")
            return first, second, balance

        first, second, balance = asyncio.run(_go())
        assert first.success and first.balance == 0
        assert not second.success and second.error == "Insufficient credits"
        assert balance == 1


class TestHttpCredits:
    def _service(self, handler):
        config = CreditsConfig(base_url="https://shop.test", api_token="tok")
        return HttpCreditsService(config, transport=httpx.MockTransport(handler))

    def test_deduct_posts_expected_body(self):
        seen = []

        def handler(request):
            seen.append(request)
            return httpx.Response(200, json={"balance": 4})

        async def _go():
            service = self._service(handler)
            try:
                return await service.deduct(7)
            finally:
                await service.aclose()

        result = asyncio.run(_go())
        assert result.success and result.balance == 4
        assert seen[0].url.path == "/api/user-credits/deduct"
        assert seen[0].headers["authorization"] == "Bearer tok"
        assert json.loads(seen[0].content) == {"userId": 7, "amount": 1, "type": "photo_generation"}

    def test_deduct_rejection_is_unsuccessful(self):
        def handler(request):
            return httpx.Response(402, json={"error": {"message": "Insufficient credits"}})

        async def _go():
            service = self._service(handler)
            try:
                return await service.deduct(7)
            finally:
                await service.aclose()

        result = asyncio.run(_go())
        assert result.success is False
        assert "Insufficient credits" in result.error

    def test_refund_error_raises(self):
        def handler(request):
            return httpx.Response(500, json={"message": "down"})

        async def _go():
            service = self._service(handler)
            try:
                await service.refund(7)
            finally:
                await service.aclose()

        with pytest.raises(CreditsError, match="down"):
            asyncio.run(_go())

    def test_requires_base_url(self):
        with pytest.raises(CreditsError):
            HttpCreditsService(CreditsConfig())


class TestLogging:
    def test_context_prefix(self, caplog):
        log = with_context(logging.getLogger("lookbook.test"), request_id="generate-1-2-x", user_id=1)
        with caplog.at_level(logging.INFO, logger="lookbook.test"):
            log.info("hello")
        assert "[Req:generate-1-2-x] [User:1] hello" in caplog.text
        assert caplog.records[0].request_id == "generate-1-2-x"

    def test_setup_logging_writes_files(self, temp_dir):
        root = setup_logging("INFO", str(temp_dir))
        try:
            logging.getLogger("lookbook.test").error("disk full")
            for handler in root.handlers:
                handler.flush()
            assert "disk full" in (temp_dir / "combined.log").read_text(encoding="utf-8")
            assert "disk full" in (temp_dir / "error.log").read_text(encoding="utf-8")
        finally:
            for handler in list(root.handlers):
                handler.close()
            root.handlers.clear()
            root.propagate = True
            root.setLevel(logging.NOTSET)

"""
Credits collaborator: the narrow deduct/refund interface the pipeline needs.

Two implementations:
- InMemoryCredits: process-local balances (CLI, tests)
- HttpCreditsService: REST calls against the storefront backend
  (``POST /api/user-credits/deduct`` and ``POST /api/user-credits/refund``)
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from typing import Any, Dict, Optional, Protocol

import httpx

from ..config import CreditsConfig
from ..errors import CreditsError

logger = logging.getLogger("lookbook.credits")


@dataclass(frozen=True)
class DeductResult:
    success: bool
    balance: int
    error: Optional[str] = None


class CreditsService(Protocol):
    async def deduct(self, user_id: Any) -> DeductResult: ...

    async def refund(self, user_id: Any) -> int: ...


class InMemoryCredits:
    """Balances held in a dict, one credit per generation."""

    def __init__(self, balances: Optional[Dict[Any, int]] = None, default_balance: int = 0):
        self._balances: Dict[Any, int] = dict(balances or {})
        self._default = default_balance
        self._lock = asyncio.Lock()

    def balance(self, user_id: Any) -> int:
        return self._balances.get(user_id, self._default)

    async def deduct(self, user_id: Any) -> DeductResult:
        async with self._lock:
            current = self.balance(user_id)
            if current < 1:
                return DeductResult(success=False, balance=current, error="Insufficient credits")
            self._balances[user_id] = current - 1
            return DeductResult(success=True, balance=current - 1)

    async def refund(self, user_id: Any) -> int:
        async with self._lock:
            self._balances[user_id] = self.balance(user_id) + 1
            return self._balances[user_id]


class HttpCreditsService:
    """Credits kept by the storefront backend, reached over REST."""

    def __init__(
        self,
        config: CreditsConfig,
        client: Optional[httpx.AsyncClient] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        if not config.base_url:
            raise CreditsError("CREDITS_BASE_URL is not set")
        headers = {"Content-Type": "application/json"}
        if config.api_token:
            headers["Authorization"] = f"Bearer {config.api_token}"
        self._client = client or httpx.AsyncClient(
            base_url=config.base_url,
            headers=headers,
            timeout=config.request_timeout_seconds,
            transport=transport,
        )

    async def aclose(self) -> None:
        await self._client.aclose()

    async def _post(self, path: str, payload: Dict[str, Any]) -> Dict[str, Any]:
        try:
            response = await self._client.post(path, json=payload)
            response.raise_for_status()
        except httpx.HTTPStatusError as e:
            message = _error_message(e.response) or str(e)
            raise CreditsError(f"Credits request {path} failed: {message}") from e
        except httpx.TransportError as e:
            raise CreditsError(f"Credits service network error: {e}") from e
        return response.json() if response.content else {}

    async def deduct(self, user_id: Any) -> DeductResult:
        try:
            data = await self._post("/api/user-credits/deduct", {"userId": user_id, "amount": 1, "type": "photo_generation"})
        except CreditsError as e:
            logger.warning(f"Deduct failed for user {user_id}: {e}")
            return DeductResult(success=False, balance=0, error=str(e))
        return DeductResult(success=True, balance=int(data.get("balance", 0)))

    async def refund(self, user_id: Any) -> int:
        data = await self._post("/api/user-credits/refund", {"userId": user_id, "amount": 1})
        return int(data.get("balance", 0))


def _error_message(response: httpx.Response) -> Optional[str]:
    try:
        body = response.json()
    except ValueError:
        return None
    if isinstance(body, dict):
        err = body.get("error")
        if isinstance(err, dict):
            return err.get("message")
        return err or body.get("message")
    return None

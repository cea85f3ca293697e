#!/usr/bin/env python3
"""
step5_error_handler.py - Step 5: Failure handling
=================================================

Single place where a failed generation is turned into:
1. a structured log line (request id, user id, stack)
2. a best-effort one-credit refund
3. one localized, user-facing message keyed by error class

Classification is keyword based on the lowercase exception message, first
match wins: timeout > providerError > networkError > invalidInput >
fileError > generic. When no keyword matches, the exception type decides.
"""

from __future__ import annotations

import json
import logging
import traceback
from dataclasses import dataclass
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, Mapping, Optional, Sequence, Tuple

from ..errors import (
    ColorExtractionError,
    GenerationTimeoutError,
    InvalidColorError,
    ProviderError,
    ProviderFailureError,
    ProviderNetworkError,
    SubmissionRejectedError,
)
from ..utils.credits import CreditsService
from ..utils.logging_utils import with_context

logger = logging.getLogger("lookbook.error_handler")


class ErrorKind(str, Enum):
    TIMEOUT = "timeout"
    PROVIDER_ERROR = "providerError"
    NETWORK_ERROR = "networkError"
    INVALID_INPUT = "invalidInput"
    FILE_ERROR = "fileError"
    GENERIC = "generic"


ERROR_KEYWORDS: Sequence[Tuple[ErrorKind, Tuple[str, ...]]] = (
    (ErrorKind.TIMEOUT, ("timeout", "timed out")),
    (ErrorKind.PROVIDER_ERROR, ("api", "429", "quota", "rate limit", "unauthorized", "forbidden")),
    (ErrorKind.NETWORK_ERROR, ("network", "econnrefused", "enotfound", "etimedout", "connection")),
    (ErrorKind.INVALID_INPUT, ("invalid", "malformed", "unsupported")),
    (ErrorKind.FILE_ERROR, ("enoent", "file")),
)

_TYPE_FALLBACK: Sequence[Tuple[type, ErrorKind]] = (
    (GenerationTimeoutError, ErrorKind.TIMEOUT),
    (ProviderNetworkError, ErrorKind.NETWORK_ERROR),
    ((ProviderError, ProviderFailureError, SubmissionRejectedError), ErrorKind.PROVIDER_ERROR),
    ((ColorExtractionError, InvalidColorError), ErrorKind.INVALID_INPUT),
    ((FileNotFoundError, IsADirectoryError), ErrorKind.FILE_ERROR),
    (TimeoutError, ErrorKind.TIMEOUT),
    (ConnectionError, ErrorKind.NETWORK_ERROR),
)

DEFAULT_LANG = "en"

MESSAGES: Dict[ErrorKind, Dict[str, str]] = {
    ErrorKind.TIMEOUT: {
        "en": "⏱️ Generation timed out. Your credit has been refunded. Please try again!",
        "tn": "⏱️ Wa9t khlas. Crédits rja3lék. 3awéd jéréb!",
    },
    ErrorKind.PROVIDER_ERROR: {
        "en": "❌ API service error. Your credit has been refunded. Please try again in a few moments.",
        "tn": "❌ Mochkla fil API. Crédits rja3lék. Estanna chwaya w 3awéd jéréb.",
    },
    ErrorKind.NETWORK_ERROR: {
        "en": "🌐 Network connection error. Your credit has been refunded. Please try again.",
        "tn": "🌐 Mochkla fil connexion. Crédits rja3lék. 3awéd jéréb.",
    },
    ErrorKind.INVALID_INPUT: {
        "en": "⚠️ Invalid image or settings. Your credit has been refunded. Please upload a different photo.",
        "tn": "⚠️ Tsawira walla settings mch behin. Crédits rja3lék. 3awéd b tsawira o5ra.",
    },
    ErrorKind.FILE_ERROR: {
        "en": "📁 File processing error. Your credit has been refunded. Please try uploading again.",
        "tn": "📁 Mochkla fil fichier. Crédits rja3lék. 3awéd tsawér márra o5ra.",
    },
    ErrorKind.GENERIC: {
        "en": "❌ Generation failed. Your credit has been refunded. Please try again.",
        "tn": "❌ Fama mochkla. Crédits rja3lék. 3awéd jéréb.",
    },
}


def classify_error(exc: BaseException) -> ErrorKind:
    message = str(exc).lower()
    for kind, keywords in ERROR_KEYWORDS:
        if any(kw in message for kw in keywords):
            return kind
    for types, kind in _TYPE_FALLBACK:
        if isinstance(exc, types):
            return kind
    return ErrorKind.GENERIC


def get_error_message(kind: ErrorKind, lang: Optional[str] = DEFAULT_LANG) -> str:
    by_lang = MESSAGES.get(kind, MESSAGES[ErrorKind.GENERIC])
    return by_lang.get(lang or DEFAULT_LANG) or by_lang[DEFAULT_LANG]


def create_error_report(exc: BaseException, context: Optional[Mapping[str, Any]] = None) -> str:
    """Plain-text report for admins: type, message, ids, stack and context."""
    context = dict(context or {})
    stack = "".join(traceback.format_exception(type(exc), exc, exc.__traceback__)).rstrip()
    return "\n".join([
        "**Error Report**",
        f"Time: {datetime.now(timezone.utc).isoformat()}",
        f"Type: {type(exc).__name__}",
        f"Message: {exc}",
        f"Request ID: {context.get('request_id') or 'N/A'}",
        f"User ID: {context.get('user_id') or 'N/A'}",
        "",
        "Stack Trace:",
        stack,
        "",
        "Context:",
        json.dumps(context, indent=2, default=str),
    ])


@dataclass(frozen=True)
class HandledError:
    kind: ErrorKind
    message: str
    refunded: bool
    request_id: Optional[str] = None


class ErrorHandler:
    """Log, refund and localize a generation failure."""

    def __init__(self, credits: CreditsService):
        self.credits = credits

    async def handle_generation_error(
        self,
        exc: BaseException,
        user_id: Any,
        request_id: Optional[str] = None,
        lang: Optional[str] = DEFAULT_LANG,
    ) -> HandledError:
        log = with_context(logger, request_id=request_id, user_id=user_id)
        kind = classify_error(exc)
        exc_info = (type(exc), exc, exc.__traceback__)

        if kind is ErrorKind.TIMEOUT:
            log.warning(f"Generation timed out: {exc}", exc_info=exc_info)
        else:
            log.error(f"Generation failed ({kind.value}, {type(exc).__name__}): {exc}", exc_info=exc_info)

        refunded = False
        try:
            balance = await self.credits.refund(user_id)
            refunded = True
            log.info(f"Credit refunded after error (balance {balance})")
        except Exception as refund_error:
            log.error(f"Failed to refund credit: {refund_error}")

        return HandledError(kind=kind, message=get_error_message(kind, lang), refunded=refunded, request_id=request_id)

"""
Logging helpers: console + rotating file setup and request-scoped context.

Usage:
    from lookbook.utils.logging_utils import with_context

    log = with_context(logger, request_id=request_id, user_id=user_id)
    log.info("Generation started")
    # -> [Req:generate-42-...] [User:42] Generation started
"""

import logging
import sys
from logging.handlers import RotatingFileHandler
from pathlib import Path
from typing import Any, MutableMapping, Optional, Tuple, Union

LOG_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"


class ContextAdapter(logging.LoggerAdapter):
    """Prefixes every message with the bound request and user ids."""

    def process(self, msg: Any, kwargs: MutableMapping[str, Any]) -> Tuple[Any, MutableMapping[str, Any]]:
        req = self.extra.get("request_id") or "N/A"
        user = self.extra.get("user_id") or "N/A"
        extra = dict(kwargs.get("extra") or {})
        extra.setdefault("request_id", req)
        extra.setdefault("user_id", user)
        kwargs["extra"] = extra
        return f"[Req:{req}] [User:{user}] {msg}", kwargs


def with_context(
    logger: Union[logging.Logger, logging.LoggerAdapter],
    request_id: Optional[str] = None,
    user_id: Optional[Any] = None,
) -> ContextAdapter:
    """Bind request/user ids to a logger so they appear on every line."""
    base = logger.logger if isinstance(logger, logging.LoggerAdapter) else logger
    return ContextAdapter(base, {"request_id": request_id, "user_id": user_id})


def setup_logging(level: str = "INFO", log_dir: Optional[str] = None) -> logging.Logger:
    """
    Configure the ``lookbook`` logger tree.

    Console output always; when ``log_dir`` is given, also ``combined.log``
    (all levels) and ``error.log`` (errors only), both size-rotated.
    """
    root = logging.getLogger("lookbook")
    root.setLevel(getattr(logging, str(level).upper(), logging.INFO))
    root.handlers.clear()
    root.propagate = False

    formatter = logging.Formatter(LOG_FORMAT, datefmt="%Y-%m-%d %H:%M:%S")

    console = logging.StreamHandler(sys.stdout)
    console.setFormatter(formatter)
    root.addHandler(console)

    if log_dir:
        logs = Path(log_dir)
        logs.mkdir(parents=True, exist_ok=True)

        combined = RotatingFileHandler(logs / "combined.log", maxBytes=10 * 1024 * 1024, backupCount=10, encoding="utf-8")
        combined.setFormatter(formatter)
        root.addHandler(combined)

        errors = RotatingFileHandler(logs / "error.log", maxBytes=5 * 1024 * 1024, backupCount=5, encoding="utf-8")
        errors.setLevel(logging.ERROR)
        errors.setFormatter(formatter)
        root.addHandler(errors)

    root.debug(f"Logging initialized (level={level}, log_dir={log_dir})")
    return root

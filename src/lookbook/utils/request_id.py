"""
Request ids for tracing a generation through the logs.

Format: ``{action}-{user_id}-{epoch_ms}-{uuid8}``,
e.g. ``generate-123456789-1704067200000-a1b2c3d4``.
"""

import time
import uuid
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Optional


@dataclass(frozen=True)
class ParsedRequestId:
    action: str
    user_id: Optional[str]
    timestamp_ms: Optional[int]
    uuid: Optional[str]

    @property
    def created_at(self) -> Optional[datetime]:
        if self.timestamp_ms is None:
            return None
        return datetime.fromtimestamp(self.timestamp_ms / 1000.0, tz=timezone.utc)


def generate_request_id(user_id: Any, action: str = "request") -> str:
    timestamp = int(time.time() * 1000)
    return f"{action}-{user_id}-{timestamp}-{uuid.uuid4().hex[:8]}"


def parse_request_id(request_id: str) -> ParsedRequestId:
    # user ids may themselves contain dashes; action is first, the last two are fixed
    parts = (request_id or "").split("-")
    if len(parts) < 4:
        return ParsedRequestId(action="unknown", user_id=None, timestamp_ms=None, uuid=None)
    try:
        timestamp = int(parts[-2])
    except ValueError:
        return ParsedRequestId(action="unknown", user_id=None, timestamp_ms=None, uuid=None)
    return ParsedRequestId(
        action=parts[0],
        user_id="-".join(parts[1:-2]),
        timestamp_ms=timestamp,
        uuid=parts[-1],
    )


def short_request_id(request_id: Optional[str]) -> str:
    if not request_id:
        return "N/A"
    return request_id[-8:]

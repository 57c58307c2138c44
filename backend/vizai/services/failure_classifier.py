"""Map raised errors onto the closed set of pipeline failure kinds.

Resolution order, first match wins:

1. an explicit ``failure_kind`` (our own PipelineError subclasses) or an
   upstream error ``code`` naming a kind,
2. storage driver timeouts,
3. HTTP-like status codes on provider exceptions (429, 408, 504),
4. exception types (TimeoutError, JSONDecodeError),
5. message substrings.

Anything else is UNKNOWN, which the recovery policy treats as permanent.
"""

import concurrent.futures
import json
import logging
from enum import Enum
from typing import Iterable, Optional

from ..repositories.base import is_storage_timeout

logger = logging.getLogger(__name__)


class FailureKind(str, Enum):
    RATE_LIMIT_RPM = "RATE_LIMIT_RPM"
    RATE_LIMIT_BUDGET = "RATE_LIMIT_BUDGET"
    UNPARSEABLE_JSON = "UNPARSEABLE_JSON"
    GENERATION_TIMEOUT = "GENERATION_TIMEOUT"
    STORAGE_TIMEOUT = "STORAGE_TIMEOUT"
    PERMANENT_FAILURE = "PERMANENT_FAILURE"
    UNKNOWN = "UNKNOWN"


# Validation engine outcomes that recover the same way as unparseable output.
_UNPARSEABLE_ALIASES = {"SCHEMA_INVALID", "REPAIR_FAILED"}

_STATUS_KINDS = {
    429: FailureKind.RATE_LIMIT_RPM,
    408: FailureKind.GENERATION_TIMEOUT,
    504: FailureKind.GENERATION_TIMEOUT,
}

_MESSAGE_HINTS: tuple[tuple[FailureKind, tuple[str, ...]], ...] = (
    (FailureKind.RATE_LIMIT_BUDGET, ("budget exhausted", "daily budget", "spend limit")),
    (FailureKind.RATE_LIMIT_RPM, ("rate limit", "too many requests", "requests per minute")),
    (FailureKind.STORAGE_TIMEOUT, ("database is locked", "statement timeout", "canceling statement")),
    (FailureKind.GENERATION_TIMEOUT, ("timed out", "timeout", "deadline exceeded")),
    (FailureKind.UNPARSEABLE_JSON, ("invalid json", "failed to parse", "expecting value", "unterminated string")),
)


def _kind_from_name(name: Optional[str]) -> Optional[FailureKind]:
    if not name:
        return None
    name = str(name).upper()
    if name in _UNPARSEABLE_ALIASES:
        return FailureKind.UNPARSEABLE_JSON
    try:
        return FailureKind(name)
    except ValueError:
        return None


def _match_hint(message: str, hints: Iterable[str]) -> bool:
    return any(hint in message for hint in hints)


def _status_code(error: BaseException) -> Optional[int]:
    for attr in ("status_code", "status", "http_status"):
        value = getattr(error, attr, None)
        if isinstance(value, int):
            return value
    response = getattr(error, "response", None)
    value = getattr(response, "status_code", None)
    return value if isinstance(value, int) else None


def classify(error: BaseException) -> FailureKind:
    """Return the failure kind for *error*. Never raises."""
    kind = _kind_from_name(getattr(error, "failure_kind", None)) or _kind_from_name(
        getattr(error, "code", None) if isinstance(getattr(error, "code", None), str) else None
    )
    if kind is not None and kind is not FailureKind.UNKNOWN:
        return kind

    if is_storage_timeout(error):
        return FailureKind.STORAGE_TIMEOUT

    status = _status_code(error)
    if status in _STATUS_KINDS:
        return _STATUS_KINDS[status]

    if isinstance(error, (TimeoutError, concurrent.futures.TimeoutError)):
        return FailureKind.GENERATION_TIMEOUT
    if isinstance(error, json.JSONDecodeError):
        return FailureKind.UNPARSEABLE_JSON

    message = str(error).lower()
    for hinted_kind, hints in _MESSAGE_HINTS:
        if _match_hint(message, hints):
            return hinted_kind

    logger.debug("Unclassified error %s: %s", type(error).__name__, error)
    return FailureKind.UNKNOWN

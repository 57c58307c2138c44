"""Request context middleware.

Stamps every request with a request id (echoed as ``X-Request-ID``) and,
for project routes, the project id as the log ``run_id``, so HTTP log
lines and the pipeline lines they trigger share one correlation key.
Emits a single access log line with status and duration.

Per-user generation limits are enforced by the rate/budget guard inside the
pipeline, not here.
"""

import logging
import re
import time
import uuid

from starlette.middleware.base import BaseHTTPMiddleware, RequestResponseEndpoint
from starlette.requests import Request
from starlette.responses import Response

from ..core.logging_config import request_id_var, run_id_var

logger = logging.getLogger(__name__)

_PROJECT_PATH_RE = re.compile(r"^/api/projects/([^/]+)")

# Probes log at debug so they do not drown the access log.
_QUIET_PATHS = frozenset({"/health", "/"})


def _project_id(path: str) -> str:
    match = _PROJECT_PATH_RE.match(path)
    return match.group(1) if match else ""


class RequestContextMiddleware(BaseHTTPMiddleware):
    async def dispatch(self, request: Request, call_next: RequestResponseEndpoint) -> Response:
        path = request.url.path
        rid = request.headers.get("x-request-id") or uuid.uuid4().hex[:16]
        rid_token = request_id_var.set(rid)
        run_token = run_id_var.set(_project_id(path))
        started = time.monotonic()
        try:
            response = await call_next(request)
            elapsed_ms = round((time.monotonic() - started) * 1000, 1)
            response.headers["X-Request-ID"] = rid
            response.headers["X-Response-Time"] = f"{elapsed_ms}ms"

            log = logger.debug if path in _QUIET_PATHS else logger.info
            log(
                f"{request.method} {path} -> {response.status_code} in {elapsed_ms}ms",
                extra={
                    "method": request.method,
                    "path": path,
                    "status_code": response.status_code,
                    "duration_ms": elapsed_ms,
                },
            )
            return response
        finally:
            run_id_var.reset(run_token)
            request_id_var.reset(rid_token)

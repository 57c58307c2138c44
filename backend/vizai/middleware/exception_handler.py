"""Exception handler middleware for structured error responses."""

import logging
from fastapi import Request
from fastapi.responses import JSONResponse
from ..exceptions import VizException

logger = logging.getLogger(__name__)


async def viz_exception_handler(request: Request, exc: VizException) -> JSONResponse:
    """
    Convert a VizException into its structured JSON body.

    Client errors (4xx) log at warning level, everything else at error.
    """
    log = logger.warning if exc.status_code < 500 else logger.error
    log(
        f"VizException: {exc.error_code.value}",
        extra={
            "error_code": exc.error_code.value,
            "path": request.url.path,
            "method": request.method,
            "details": exc.details,
            "status_code": exc.status_code
        }
    )

    headers = {}
    retry_at = exc.details.get("retry_at") if isinstance(exc.details, dict) else None
    if exc.status_code == 429 and retry_at:
        headers["X-Retry-At"] = retry_at

    return JSONResponse(
        status_code=exc.status_code,
        content=exc.to_dict(),
        headers=headers or None,
    )

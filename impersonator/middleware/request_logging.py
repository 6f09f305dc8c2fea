"""
Access log for the authorization API.

One structured line per request. Requests that touch a single transaction
also carry its id so approvals and executions can be followed in the log.
"""

import re
import time
import uuid
from typing import Callable

import structlog
from starlette.middleware.base import BaseHTTPMiddleware, RequestResponseEndpoint
from starlette.requests import Request
from starlette.responses import Response

access_log = structlog.stdlib.get_logger("impersonator.access")

_TRANSACTION_PATH = re.compile(r"^/transactions/(tx_[A-Za-z0-9_]+)")


def _bind_request_context(request: Request) -> str:
    request_id = request.headers.get("x-request-id") or uuid.uuid4().hex[:12]
    context = {"request_id": request_id}

    match = _TRANSACTION_PATH.match(request.url.path)
    if match:
        context["transaction_id"] = match.group(1)

    structlog.contextvars.clear_contextvars()
    structlog.contextvars.bind_contextvars(**context)
    return request_id


def _log_method(status_code: int) -> Callable[..., None]:
    if status_code >= 500:
        return access_log.error
    if status_code >= 400:
        return access_log.warning
    return access_log.info


class RequestLoggingMiddleware(BaseHTTPMiddleware):
    """Bind a request id (and transaction id, if any) and log the outcome."""

    async def dispatch(self, request: Request, call_next: RequestResponseEndpoint) -> Response:
        request_id = _bind_request_context(request)
        started = time.perf_counter()
        status_code = 500

        try:
            response = await call_next(request)
            status_code = response.status_code
        finally:
            _log_method(status_code)(
                "api_request",
                method=request.method,
                path=request.url.path,
                status=status_code,
                elapsed_ms=round((time.perf_counter() - started) * 1000, 1),
            )

        response.headers["x-request-id"] = request_id
        return response

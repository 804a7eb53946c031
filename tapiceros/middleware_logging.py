from __future__ import annotations

import logging
import time

from starlette.middleware.base import BaseHTTPMiddleware, RequestResponseEndpoint
from starlette.requests import Request
from starlette.responses import Response

logger = logging.getLogger("tapiceros.requests")


class RequestLoggingMiddleware(BaseHTTPMiddleware):
    def __init__(self, app, *, enabled: bool = True) -> None:
        super().__init__(app)
        self.enabled = enabled

    async def dispatch(self, request: Request, call_next: RequestResponseEndpoint) -> Response:
        if not self.enabled:
            return await call_next(request)

        start = time.perf_counter()
        status_code = 500
        try:
            response = await call_next(request)
            status_code = response.status_code
            return response
        finally:
            duration_ms = int((time.perf_counter() - start) * 1000)
            client = request.client.host if request.client else None
            logger.info(
                "%s %s %s",
                request.method,
                request.url.path,
                status_code,
                extra={
                    "http_method": request.method,
                    "route": request.url.path,
                    "status": status_code,
                    "duration_ms": duration_ms,
                    "client_ip": client,
                    "user_agent": request.headers.get("user-agent"),
                },
            )

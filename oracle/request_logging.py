import logging
import time

from starlette.middleware.base import BaseHTTPMiddleware

logger = logging.getLogger("oracle.http")


class RequestLoggingMiddleware(BaseHTTPMiddleware):
    async def dispatch(self, request, call_next):
        started = time.monotonic()
        status_code = 500
        try:
            response = await call_next(request)
            status_code = response.status_code
            return response
        finally:
            elapsed_ms = int((time.monotonic() - started) * 1000)
            client_host = request.client.host if request.client else "unknown"
            log = logger.warning if status_code >= 400 else logger.info
            log(
                "http_request method=%s path=%s status=%s duration_ms=%s client=%s",
                request.method.upper(),
                request.url.path,
                status_code,
                elapsed_ms,
                client_host,
            )

import logging
import time

import httpx

from .settings import settings

logger = logging.getLogger("oracle.http")


def log_llm_response(response: httpx.Response, started_at: float, attempt: int) -> None:
    """Warn about failed or slow verifier calls; fast successes only log at DEBUG."""
    latency_ms = int((time.monotonic() - started_at) * 1000)
    slow_ms = int(max(settings.HTTPX_SLOW_REQUEST_THRESHOLD_SECONDS, 0.0) * 1000)
    host = response.request.url.host
    if not response.is_success:
        logger.warning(
            "llm_http_error status=%s attempt=%s latency_ms=%s host=%s body=%s",
            response.status_code,
            attempt,
            latency_ms,
            host,
            response.text[:200],
        )
    elif slow_ms and latency_ms >= slow_ms:
        logger.warning("llm_http_slow attempt=%s latency_ms=%s host=%s", attempt, latency_ms, host)
    else:
        logger.debug("llm_http_ok attempt=%s latency_ms=%s host=%s", attempt, latency_ms, host)

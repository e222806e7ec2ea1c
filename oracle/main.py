import logging

from fastapi import FastAPI

from .api.router import api_router
from .core.logging_config import configure_logging
from .request_logging import RequestLoggingMiddleware
from .settings import settings

configure_logging()
logger = logging.getLogger(__name__)

app = FastAPI(
    title="Oracle - prediction market resolution engine",
    description="Resolves due markets and polls and settles payouts.",
)
app.add_middleware(RequestLoggingMiddleware)
app.include_router(api_router)

if not settings.CRON_SECRET:
    logger.warning("cron_secret_missing")
if not settings.OPENAI_API_KEY:
    logger.warning("openai_api_key_missing")

import logging
import secrets

from fastapi import Header, HTTPException

from .settings import settings

logger = logging.getLogger(__name__)


def _matches(provided: str | None, expected: str | None) -> bool:
    expected_value = (expected or "").strip()
    provided_value = (provided or "").strip()
    if not expected_value or not provided_value:
        return False
    return secrets.compare_digest(provided_value.encode("utf-8"), expected_value.encode("utf-8"))


def verify_cron_secret(provided: str | None) -> None:
    if not (settings.CRON_SECRET or "").strip():
        logger.warning("cron_secret_not_configured")
        raise HTTPException(status_code=401, detail="Unauthorized")
    if not _matches(provided, settings.CRON_SECRET):
        logger.warning("cron_secret_rejected")
        raise HTTPException(status_code=401, detail="Unauthorized")


def admin_key_auth(
    x_admin_key: str = Header(default="", alias="X-Admin-Key"),
):
    expected = (settings.ADMIN_API_KEY or "").strip()
    if not expected:
        raise HTTPException(status_code=401, detail="Admin API key not configured")
    if not _matches(x_admin_key, expected):
        raise HTTPException(status_code=401, detail="Invalid admin API key")
    return True

import json
import logging
import logging.config
from datetime import datetime, timezone

from ..settings import settings

_CONFIGURED = False

# Resolution decisions are always kept at INFO so every settlement is traceable.
_ENGINE_LOGGERS = ("oracle.jobs.tasks", "oracle.core.settlement", "oracle.llm.verifier")
_NOISY_LOGGERS = ("httpx", "httpcore", "sqlalchemy.engine", "rq.worker")
_SERVER_LOGGERS = ("uvicorn", "uvicorn.error", "uvicorn.access")


def split_event(message: str) -> tuple[str, dict[str, str]]:
    """Split ``"market_resolved id=m1 outcome=YES"`` into its event name and fields.

    Tokens without ``=`` are left in the message only.
    """
    event, _, rest = message.partition(" ")
    fields: dict[str, str] = {}
    for token in rest.split():
        key, sep, value = token.partition("=")
        if sep and key:
            fields[key] = value
    return event, fields


class JsonFormatter(logging.Formatter):
    def format(self, record: logging.LogRecord) -> str:
        try:
            message = record.getMessage()
        except TypeError:
            message = str(record.msg)
        event, fields = split_event(message)
        payload = {
            "ts": datetime.fromtimestamp(record.created, tz=timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "event": event,
            "message": message,
        }
        if fields:
            payload["fields"] = fields
        if record.exc_info:
            payload["exc_info"] = self.formatException(record.exc_info)
        return json.dumps(payload, ensure_ascii=True, default=str)


def configure_logging() -> None:
    global _CONFIGURED
    if _CONFIGURED:
        return

    root_level = _parse_level(settings.LOG_LEVEL)
    if settings.ENV.lower() == "prod":
        root_level = max(root_level, logging.INFO)

    logging.config.dictConfig(
        {
            "version": 1,
            "disable_existing_loggers": False,
            "formatters": {
                "json": {"()": JsonFormatter},
                "plain": {"format": "%(asctime)s %(levelname)s %(name)s %(message)s"},
            },
            "handlers": {
                "default": {
                    "class": "logging.StreamHandler",
                    "formatter": "json" if settings.LOG_JSON else "plain",
                },
            },
            "root": {"level": root_level, "handlers": ["default"]},
            "loggers": logger_levels(root_level),
        }
    )
    _CONFIGURED = True


def logger_levels(root_level: int) -> dict[str, dict]:
    engine_level = min(root_level, logging.INFO)
    noisy_level = logging.DEBUG if root_level <= logging.DEBUG else max(root_level, logging.WARNING)
    levels: dict[str, dict] = {}
    for name in _ENGINE_LOGGERS:
        levels[name] = {"level": engine_level}
    for name in _NOISY_LOGGERS:
        levels[name] = {"level": noisy_level}
    for name in _SERVER_LOGGERS:
        level = noisy_level if name == "uvicorn.access" else root_level
        levels[name] = {"level": level, "handlers": ["default"], "propagate": False}
    return levels


def _parse_level(value: str | None) -> int:
    level = logging.getLevelName(str(value or "INFO").upper())
    return level if isinstance(level, int) else logging.INFO

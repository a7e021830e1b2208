import json
import logging
import re
import sys
from datetime import UTC, datetime
from typing import Any

from app.core.config import settings

EMAIL_REGEX = re.compile(r"[a-zA-Z0-9._%+-]+@[a-zA-Z0-9.-]+\.[a-zA-Z]{2,}")

# Shopify admin/custom-app tokens plus common secret-key prefixes
API_KEY_REGEX = re.compile(
    r"\b(sk|pk|rk|shpat|shpca|shppa|shpss)_([a-zA-Z0-9]{20,})\b"
)
MASK_STRING = "[REDACTED]"

# Keys whose values are always masked, at any depth of `extra["props"]`
SENSITIVE_FIELD_NAMES = frozenset(
    {
        "password",
        "token",
        "secret",
        "api_key",
        "api_token",
        "api_secret",
        "access_token",
        "refresh_token",
        "client_id",
        "client_secret",
        "credentials",
        "x-shopify-access-token",
        "authorization",
    }
)


def mask_text(value: str) -> str:
    masked = EMAIL_REGEX.sub(MASK_STRING, value)
    return API_KEY_REGEX.sub(lambda m: m.group(1) + "_" + MASK_STRING, masked)


def mask_value(key: str, value: Any) -> Any:
    """Masks a props value by key name, recursing into dicts and lists."""
    if value is not None and key.lower() in SENSITIVE_FIELD_NAMES:
        return MASK_STRING
    if isinstance(value, str):
        return mask_text(value)
    if isinstance(value, dict):
        return {k: mask_value(str(k), v) for k, v in value.items()}
    if isinstance(value, (list, tuple)):
        return [mask_value(key, item) for item in value]
    return value


class PIIMaskingFilter(logging.Filter):
    """Redacts emails, secret tokens and credential fields before formatting.

    The masked message goes to `record.masked_message`; `msg` and `args` are
    left as they were.
    """

    def filter(self, record: logging.LogRecord) -> bool:
        record.masked_message = mask_text(record.getMessage())
        props = getattr(record, "props", None)
        if isinstance(props, dict):
            record.props = {key: mask_value(key, value) for key, value in props.items()}
        return True


class JsonFormatter(logging.Formatter):
    def format(self, record: logging.LogRecord) -> str:
        log_entry: dict[str, Any] = {
            "timestamp": datetime.fromtimestamp(record.created, UTC).isoformat(),
            "level": record.levelname,
            "service": settings.SERVICE_NAME,
            "message": getattr(record, "masked_message", record.getMessage()),
            "logger_name": record.name,
            "func_name": record.funcName,
            "line_no": record.lineno,
        }
        if record.exc_info:
            log_entry["exception"] = mask_text(self.formatException(record.exc_info))
        props = getattr(record, "props", None)
        if isinstance(props, dict):
            # Props never overwrite the fixed envelope fields
            log_entry.update({k: v for k, v in props.items() if k not in log_entry})
        return json.dumps(log_entry, default=str)


def setup_logging(level: str | None = None):
    log_level = (level or settings.LOG_LEVEL).upper()
    numeric_level = getattr(logging, log_level, None)
    if not isinstance(numeric_level, int):
        raise ValueError(f"Invalid log level: {log_level}")

    root_logger = logging.getLogger()
    root_logger.setLevel(numeric_level)
    for handler in root_logger.handlers[:]:
        root_logger.removeHandler(handler)

    console_handler = logging.StreamHandler(sys.stdout)
    console_handler.setFormatter(JsonFormatter())
    console_handler.addFilter(PIIMaskingFilter())
    root_logger.addHandler(console_handler)

    # Library noise
    logging.getLogger("uvicorn.error").propagate = False
    logging.getLogger("uvicorn.access").propagate = False
    for name in ("sqlalchemy.engine", "httpx", "httpcore", "aio_pika", "aiormq"):
        logging.getLogger(name).setLevel(logging.WARNING)

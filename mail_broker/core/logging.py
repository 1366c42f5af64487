"""
Logging setup for the broker.

Log lines go to stdout in one pipe-separated format. ``RedactingFilter`` masks
bearer tokens and OAuth query parameters in both the message template and its
arguments; it is attached to the root handlers and to uvicorn's handlers.
"""

import copy
import logging
import re
import sys
from typing import Any, Dict

_SENSITIVE_PATTERNS = (
    re.compile(r"(Bearer\s+)[A-Za-z0-9\-_.~+/=]+", re.IGNORECASE),
    re.compile(r"((?:code|state|refresh_token|access_token|code_verifier)=)[^&\s]+"),
)

REDACTED = "[redacted]"


def _redact(value: Any) -> Any:
    if not isinstance(value, str):
        return value
    for pattern in _SENSITIVE_PATTERNS:
        value = pattern.sub(rf"\g<1>{REDACTED}", value)
    return value


class RedactingFilter(logging.Filter):
    """Mask credentials in a record without formatting it.

    Arguments are redacted one by one so the record keeps its shape; uvicorn's
    access formatter unpacks ``record.args`` positionally.
    """

    def filter(self, record: logging.LogRecord) -> bool:
        record.msg = _redact(record.msg)
        if isinstance(record.args, tuple):
            record.args = tuple(_redact(arg) for arg in record.args)
        elif isinstance(record.args, dict):
            record.args = {key: _redact(arg) for key, arg in record.args.items()}
        return True


def configure_logging(level: str = "INFO") -> None:
    logging.basicConfig(
        level=level.upper(),
        format="%(asctime)s | %(levelname)s | %(name)s | %(message)s",
        stream=sys.stdout,
    )
    for handler in logging.getLogger().handlers:
        if not any(isinstance(f, RedactingFilter) for f in handler.filters):
            handler.addFilter(RedactingFilter())
    # httpx logs every request URL at INFO.
    logging.getLogger("httpx").setLevel(logging.WARNING)


def uvicorn_log_config() -> Dict[str, Any]:
    """uvicorn's default logging config with ``RedactingFilter`` on every handler.

    The access logger does not propagate to the root, so its request lines
    (``/oauth/callback?code=...&state=...``) need the filter on its own handler.
    """
    from uvicorn.config import LOGGING_CONFIG

    config = copy.deepcopy(LOGGING_CONFIG)
    config.setdefault("filters", {})["redact"] = {"()": RedactingFilter}
    for handler in config["handlers"].values():
        handler["filters"] = [*handler.get("filters", []), "redact"]
    return config


__all__ = ["REDACTED", "RedactingFilter", "configure_logging", "uvicorn_log_config"]

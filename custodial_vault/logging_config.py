"""
Structured Logging Configuration Module

Every vault logger lives under the ``vault`` namespace. Ledger and gateway
records carry the account, the operation and the amounts involved as
structured fields, so a JSON log line can be filtered by account without
parsing the message.
"""

import logging
import json
from datetime import datetime, timezone
from typing import Optional


# Record attributes copied into the JSON line when present
STRUCTURED_FIELDS = ("account", "action", "resource", "extra")

TEXT_FORMAT = "%(asctime)s %(levelname)s %(name)s: %(message)s"


class JSONFormatter(logging.Formatter):
    """One JSON object per record"""

    def format(self, record):
        entry = {
            "timestamp": datetime.fromtimestamp(record.created, timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "module": record.module,
            "message": record.getMessage(),
        }
        for name in STRUCTURED_FIELDS:
            value = getattr(record, name, None)
            if value is not None:
                entry[name] = value

        if record.exc_info:
            entry["exception"] = self.formatException(record.exc_info)

        return json.dumps(entry, default=str)


def _build_handler(fmt: str) -> logging.Handler:
    handler = logging.StreamHandler()
    if fmt == "text":
        handler.setFormatter(logging.Formatter(TEXT_FORMAT))
    else:
        handler.setFormatter(JSONFormatter())
    return handler


def setup_logging(level: str = "INFO", logger_name: str = "vault", fmt: str = "json") -> logging.Logger:
    """
    Configure the vault logger tree.

    Calling this again replaces the handler instead of adding a second one.

    Args:
        level: Log level name (DEBUG, INFO, WARNING, ERROR, CRITICAL)
        logger_name: Root of the logger tree to configure
        fmt: "json" for structured lines, "text" for plain lines

    Returns:
        The configured logger
    """
    logger = logging.getLogger(logger_name)
    for existing in list(logger.handlers):
        logger.removeHandler(existing)

    logger.addHandler(_build_handler(fmt))
    logger.setLevel(getattr(logging, level.upper()))
    # Records stop here so a host application's root handler does not repeat them
    logger.propagate = False

    return logger


def get_logger(name: str = "vault") -> logging.Logger:
    return logging.getLogger(name)


def log_action(logger: logging.Logger, level: str, message: str,
               account: Optional[str] = None, action: Optional[str] = None,
               resource: Optional[str] = None, extra: Optional[dict] = None):
    """
    Log a vault operation with structured fields.

    Args:
        logger: Logger to emit on
        level: Level name (info, warning, error, ...)
        message: Human-readable message
        account: Account the operation acted on
        action: Operation name, e.g. "deposit" or "withdraw"
        resource: Affected resource, e.g. "account:alice"
        extra: Amounts, balances and other operation details
    """
    fields = {
        name: value
        for name, value in (("account", account), ("action", action),
                            ("resource", resource), ("extra", extra))
        if value
    }
    # stacklevel points module/lineno at the caller rather than this helper
    logger.log(getattr(logging, level.upper()), message, extra=fields, stacklevel=2)

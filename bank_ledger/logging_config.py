"""
Ledger Logging

Every ledger event (account opened, deposit, declined transfer, rollback
after a failed write) goes out as one log line. Lines are JSON by default so
the action and the account it touched can be filtered on; the text format is
for running the API in a terminal.
"""

import logging
import json
from datetime import datetime, timezone
from typing import Optional


TEXT_FORMAT = "%(asctime)s %(levelname)s %(name)s: %(message)s"


class JSONFormatter(logging.Formatter):
    """Render a record as one JSON object, dropping fields that are unset"""

    def format(self, record):
        log_entry = {
            "timestamp": datetime.now(timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
            "action": getattr(record, 'action', None),
            "resource": getattr(record, 'resource', None),
            "extra": getattr(record, 'extra', None)
        }

        log_entry = {k: v for k, v in log_entry.items() if v is not None}

        if record.exc_info:
            log_entry['exception'] = self.formatException(record.exc_info)

        return json.dumps(log_entry, default=str)


def setup_logging(level: str = "INFO", logger_name: str = "bank_ledger",
                  log_format: str = "json") -> logging.Logger:
    """
    Attach a single stderr handler to the ledger's logger tree.

    Calling it again replaces the handler, so the API dependency and run.py
    can both call it without doubling output. Child loggers such as
    "bank_ledger.ledger" and "bank_ledger.storage" inherit the handler.

    Args:
        level: Level name, e.g. "INFO" or "debug"
        logger_name: Top of the logger tree to configure
        log_format: "json" or "text"
    """
    logger = logging.getLogger(logger_name)

    for handler in logger.handlers[:]:
        logger.removeHandler(handler)

    handler = logging.StreamHandler()
    if log_format == "text":
        handler.setFormatter(logging.Formatter(TEXT_FORMAT))
    else:
        handler.setFormatter(JSONFormatter())

    logger.addHandler(handler)
    logger.setLevel(getattr(logging, level.upper()))
    logger.propagate = False

    return logger


def get_logger(name: str = "bank_ledger") -> logging.Logger:
    """Logger under the bank_ledger tree"""
    return logging.getLogger(name)


def log_action(logger: logging.Logger, level: str, message: str,
               action: Optional[str] = None, resource: Optional[str] = None,
               extra: Optional[dict] = None):
    """
    Emit a ledger event with its action name and the account(s) it touched.

    resource is "account:<number>", or "account:<a>->account:<b>" for a
    transfer. extra carries amounts as strings so Decimals survive JSON.
    """
    levelno = getattr(logging, level.upper())
    if not logger.isEnabledFor(levelno):
        return

    record = logger.makeRecord(
        logger.name, levelno, __name__, 0, message, (), None
    )

    if action:
        record.action = action
    if resource:
        record.resource = resource
    if extra:
        record.extra = extra

    logger.handle(record)

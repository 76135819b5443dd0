import json
import logging
import os
from logging.handlers import RotatingFileHandler
from typing import Any, Dict, Optional

import bittensor as bt

EVENTS_LEVEL_NUM = 38
DEFAULT_LOG_BACKUP_COUNT = 10
EVENTS_LOGGER_NAME = "bead.event"


class _AddressRedactionFilter(logging.Filter):
    """Shorten bech32 addresses in event payloads to prefix...suffix."""

    def filter(self, record: logging.LogRecord) -> bool:
        try:
            message = record.getMessage()
        except Exception:
            return True
        record.msg = redact_addresses(message)
        record.args = ()
        return True


def redact_address(address: str, keep: int = 12) -> str:
    if not address or len(address) <= keep * 2:
        return address
    return f"{address[:keep]}...{address[-6:]}"


def redact_addresses(text: str) -> str:
    words = []
    for word in text.split(" "):
        # dedupe keys join the actor with ':'
        for part in word.split(":"):
            stripped = part.strip('",{}[]')
            if stripped.startswith(("addr1", "addr_test1")):
                word = word.replace(stripped, redact_address(stripped))
        words.append(word)
    return " ".join(words)


def configure_logging(level: str = "INFO", trace: bool = False) -> None:
    """Map the configured level onto bittensor's logging machine."""
    normalized = (level or "INFO").upper()
    if trace or normalized == "TRACE":
        bt.logging.set_trace(True)
    elif normalized == "DEBUG":
        bt.logging.set_debug(True)


def setup_events_logger(full_path, events_retention_size):
    logging.addLevelName(EVENTS_LEVEL_NUM, "EVENT")

    logger = logging.getLogger(EVENTS_LOGGER_NAME)
    logger.setLevel(EVENTS_LEVEL_NUM)
    logger.propagate = False

    def event(self, message, *args, **kws):
        if self.isEnabledFor(EVENTS_LEVEL_NUM):
            self._log(EVENTS_LEVEL_NUM, message, args, **kws)

    logging.Logger.event = event

    formatter = logging.Formatter(
        "%(asctime)s | %(levelname)s | %(message)s",
        datefmt="%Y-%m-%d %H:%M:%S",
    )

    os.makedirs(full_path, exist_ok=True)
    file_handler = RotatingFileHandler(
        os.path.join(full_path, "events.log"),
        maxBytes=events_retention_size,
        backupCount=DEFAULT_LOG_BACKUP_COUNT,
    )
    file_handler.setFormatter(formatter)
    file_handler.setLevel(EVENTS_LEVEL_NUM)
    file_handler.addFilter(_AddressRedactionFilter())
    logger.addHandler(file_handler)

    return logger


def emit_event(payload: Dict[str, Any], logger: Optional[logging.Logger] = None) -> None:
    """Write one orchestration event as a JSON line.

    No-op until ``setup_events_logger`` has attached a handler.
    """
    target = logger or logging.getLogger(EVENTS_LOGGER_NAME)
    if not target.handlers:
        return
    target.log(EVENTS_LEVEL_NUM, json.dumps(payload, sort_keys=True, default=str))

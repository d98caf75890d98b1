"""
Logging setup for the server and the client pool.

Two formats, same as an access log usually offers:

    text:  2026-10-19 12:00:00 [INFO] tcpsocks.counter: New connection received. Total connections: 3
    json:  {"timestamp": "...", "level": "INFO", "logger": "tcpsocks.counter", ...}

Text is for humans at a terminal, JSON for anything that ships logs to an
aggregator.
"""

import json
import logging
from datetime import datetime, timezone

from .config import TCPSocksConfig


TEXT_FORMAT = "%(asctime)s [%(levelname)s] %(name)s: %(message)s"
DATE_FORMAT = "%Y-%m-%d %H:%M:%S"


class JSONFormatter(logging.Formatter):
    """Render each record as a single JSON object."""

    def format(self, record: logging.LogRecord) -> str:
        entry = {
            "timestamp": datetime.fromtimestamp(record.created, timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "thread": record.threadName,
            "message": record.getMessage(),
        }
        if record.exc_info:
            entry["exception"] = self.formatException(record.exc_info)
        return json.dumps(entry)


def setup_logging(config: TCPSocksConfig):
    """
    Configure the root logger from config.log_level / config.log_format.

    Like logging.basicConfig(), this leaves an already-configured root
    logger alone, so embedding applications (and pytest) keep their own
    handlers. The tcpsocks logger level is always applied.
    """
    level = getattr(logging, config.log_level.upper(), logging.INFO)

    handler = logging.StreamHandler()
    if config.log_format == "json":
        handler.setFormatter(JSONFormatter())
    else:
        handler.setFormatter(logging.Formatter(TEXT_FORMAT, datefmt=DATE_FORMAT))

    logging.basicConfig(level=level, handlers=[handler])

    logging.getLogger("tcpsocks").setLevel(level)

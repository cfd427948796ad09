"""
Logging setup

Configures structured (JSON) logging for the whole process.
Modules log through `logging.getLogger(__name__)` and pass context via `extra`.
"""

import logging
import sys

from pythonjsonlogger import jsonlogger

from whatsapp_flows.core.settings import get_settings

NOISY_LOGGERS = ("httpx", "httpcore", "uvicorn.access")


def setup_logging(level: str | None = None, json_format: bool | None = None) -> None:
    """
    Configure the root logger.

    Args:
        level: Log level name (defaults to LOG_LEVEL setting)
        json_format: Emit JSON lines (defaults to LOG_JSON setting)
    """
    settings = get_settings()
    level = (level or settings.LOG_LEVEL).upper()
    if json_format is None:
        json_format = settings.LOG_JSON

    root = logging.getLogger()
    root.setLevel(level)

    for handler in root.handlers[:]:
        root.removeHandler(handler)

    handler = logging.StreamHandler(sys.stdout)
    if json_format:
        formatter: logging.Formatter = jsonlogger.JsonFormatter(
            "%(asctime)s %(levelname)s %(name)s %(message)s",
            rename_fields={"asctime": "timestamp", "levelname": "level", "name": "logger"},
        )
    else:
        formatter = logging.Formatter("%(asctime)s %(levelname)-8s %(name)s: %(message)s")
    handler.setFormatter(formatter)
    root.addHandler(handler)

    for name in NOISY_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)

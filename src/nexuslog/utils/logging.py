"""
Logging setup for nexuslog.

Modules log through ``logging.getLogger(__name__)``; this module only wires
handlers from LoggingSettings:

- console handler (optional)
- size-rotated file handler (optional)
- JSON-lines or plain text formatting
"""

from __future__ import annotations

import logging
import logging.handlers
from pathlib import Path
from typing import Any, Dict

from .json import json_dumps

# Attributes every LogRecord has; anything else came in through ``extra=``
_RESERVED = set(vars(logging.LogRecord("", 0, "", 0, "", (), None))) | {"message", "asctime"}


class JSONLineFormatter(logging.Formatter):
    def format(self, record: logging.LogRecord) -> str:
        data: Dict[str, Any] = {
            "timestamp": self.formatTime(record, "%Y-%m-%dT%H:%M:%S"),
            "level": record.levelname.lower(),
            "logger": record.name,
            "message": record.getMessage(),
        }
        for key, value in record.__dict__.items():
            if key not in _RESERVED and not key.startswith("_"):
                data[key] = value
        if record.exc_info:
            data["stack"] = self.formatException(record.exc_info)
        return json_dumps(data)


def configure_logging(settings) -> logging.Logger:
    """Install handlers on the ``nexuslog`` logger. Safe to call again."""
    root = logging.getLogger("nexuslog")
    root.setLevel(getattr(logging, settings.log_level.upper(), logging.INFO))

    for handler in list(root.handlers):
        root.removeHandler(handler)
        handler.close()

    if settings.format == "json":
        formatter: logging.Formatter = JSONLineFormatter()
    else:
        formatter = logging.Formatter("%(asctime)s [%(levelname)s] %(name)s: %(message)s")

    if settings.enable_console:
        console = logging.StreamHandler()
        console.setFormatter(formatter)
        root.addHandler(console)

    if settings.enable_file:
        path = Path(settings.log_file)
        path.parent.mkdir(parents=True, exist_ok=True)
        file_handler = logging.handlers.RotatingFileHandler(
            path,
            maxBytes=settings.max_log_size,
            backupCount=settings.max_log_files,
            encoding="utf-8",
        )
        file_handler.setFormatter(JSONLineFormatter())
        root.addHandler(file_handler)

    if not root.handlers:
        root.addHandler(logging.NullHandler())
    root.propagate = False
    return root

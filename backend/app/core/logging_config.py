from __future__ import annotations

import json
import logging
import sys
from contextvars import ContextVar
from typing import Any, Dict

run_id_var: ContextVar[str] = ContextVar("run_id", default="")

# Attributes pipeline code passes through ``extra=`` that belong in every JSON entry.
RUN_FIELDS = ("stage", "vin", "rule", "counts")


def run_fields(record: logging.LogRecord) -> Dict[str, Any]:
    return {name: getattr(record, name) for name in RUN_FIELDS if getattr(record, name, None) is not None}


class JSONFormatter(logging.Formatter):
    """One JSON object per line, tagged with the active pipeline run."""

    def format(self, record: logging.LogRecord) -> str:
        entry: Dict[str, Any] = {
            "timestamp": self.formatTime(record, self.datefmt),
            "level": record.levelname,
            "logger": record.name,
            "run_id": run_id_var.get("") or None,
            "message": record.getMessage(),
        }
        entry.update(run_fields(record))
        if record.exc_info and record.exc_info[1]:
            entry["exception"] = self.formatException(record.exc_info)
        return json.dumps(entry, default=str)


class RunIdFilter(logging.Filter):
    def filter(self, record: logging.LogRecord) -> bool:
        record.run_id = run_id_var.get("") or "-"
        record.vin_tag = f" vin={record.vin}" if getattr(record, "vin", None) else ""
        return True


TEXT_FORMAT = "%(asctime)s %(levelname)-8s [%(name)s] run=%(run_id)s%(vin_tag)s %(message)s"


def configure_logging(level: str = "INFO", fmt: str = "json") -> None:
    """Route everything to stdout; ``fmt`` is ``json`` or ``text``."""
    root = logging.getLogger()
    root.setLevel(getattr(logging, level.upper(), logging.INFO))
    for handler in root.handlers[:]:
        root.removeHandler(handler)

    handler = logging.StreamHandler(sys.stdout)
    handler.addFilter(RunIdFilter())
    handler.setFormatter(JSONFormatter() if fmt == "json" else logging.Formatter(TEXT_FORMAT))
    root.addHandler(handler)

import logging
import json
import sys
from typing import Dict, Any, Optional
from .base import TelemetrySink

from core.constants import APP_NAME


class LoggerSink(TelemetrySink):
    """Writes one JSON object per engine event."""

    def __init__(self, log_file: Optional[str] = None, stream=None):
        self._logger = logging.Logger(
            f"{APP_NAME}.LoggerSink",
            level=logging.INFO
        )

        handlers = [logging.StreamHandler(stream or sys.stdout)]
        if log_file:
            handlers.append(logging.FileHandler(log_file, encoding="utf-8"))

        formatter = logging.Formatter('%(message)s')
        for h in handlers:
            h.setFormatter(formatter)
            self._logger.addHandler(h)

    def emit(self, event: str, payload: Dict[str, Any]) -> None:
        level = logging.INFO
        if payload.get("result") == "failure":
            level = logging.ERROR
        elif payload.get("result") == "noop":
            level = logging.DEBUG

        log_entry = {
            "event": event,
            **payload
        }
        error = payload.get("error")
        if error is not None:
            log_entry["error"] = str(error)
            log_entry["error_code"] = getattr(error, "code", type(error).__name__)

        self._logger.log(
            level,
            json.dumps(log_entry, default=str, ensure_ascii=False)
        )

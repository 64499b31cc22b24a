import logging
from typing import List, Dict, Any
from .base import TelemetrySink

logger = logging.getLogger(__name__)


class TelemetryManager:
    def __init__(self):
        self._sinks: List[TelemetrySink] = []

    def register_sink(self, sink: TelemetrySink) -> None:
        self._sinks.append(sink)

    def clear(self) -> None:
        self._sinks.clear()

    def dispatch(self, event: str, payload: Dict[str, Any]) -> None:
        for sink in self._sinks:
            try:
                sink.emit(event, payload)
            except Exception:
                logger.debug("sink %r failed on %s", sink, event, exc_info=True)


manager = TelemetryManager()

from typing import Protocol, Dict, Any

class TelemetrySink(Protocol):
    """
    Receives engine events ("apply", "revert"). The payload carries
    ``tweak_id``, ``result`` ("success", "noop" or "failure") and, when set,
    ``history_id``, ``option_index`` and ``error``.
    """

    def emit(self, event: str, payload: Dict[str, Any]) -> None:
        pass

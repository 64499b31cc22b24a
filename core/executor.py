import logging
from enum import Enum
from typing import Any, List

logger = logging.getLogger(__name__)


class FailurePolicy(Enum):
    ABORT = "abort"        # stop; nothing mutated yet
    ROLLBACK = "rollback"  # stop; caller restores captured state
    WARN = "warn"          # record a warning and continue


class StepFailed(Exception):

    def __init__(self, step: Any, error: BaseException) -> None:
        super().__init__(f"{step.description}: {error}")
        self.step = step
        self.error = error
        self.policy = step.policy


class Executor:
    """
    Runs steps in order. A step exposes ``execute()`` (returning a list of
    warnings), ``policy`` and ``description``.
    """

    def run_steps(self, steps: List[Any]) -> List[str]:
        warnings: List[str] = []
        for step in steps:
            try:
                warnings.extend(step.execute() or [])
            except Exception as e:
                if step.policy is FailurePolicy.WARN:
                    logger.warning("%s failed (continuing): %s", step.description, e)
                    warnings.append(f"{step.description}: {e}")
                    continue
                raise StepFailed(step, e) from e
        return warnings

from abc import ABC, abstractmethod
from contextlib import contextmanager
from typing import Any, Dict, Iterator, List

from ..adapters import Adapters
from ..errors import RuntimeFailure, TweakError


class ActionSnapshot:

    def __init__(self, action_type: str, metadata: Dict[str, Any]) -> None:
        self.action_type = action_type
        self.metadata = metadata

    def to_dict(self) -> Dict[str, Any]:
        return {
            "action_type": self.action_type,
            "metadata": self.metadata
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'ActionSnapshot':
        return cls(
            action_type=data["action_type"],
            metadata=data["metadata"]
        )

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, ActionSnapshot):
            return NotImplemented
        return self.to_dict() == other.to_dict()

    def __repr__(self) -> str:
        return f"ActionSnapshot({self.action_type!r}, {self.metadata!r})"


@contextmanager
def os_errors_as_failures(what: str) -> Iterator[None]:
    """Re-raise raw OS errors from an adapter as RuntimeFailure."""
    try:
        yield
    except TweakError:
        raise
    except OSError as e:
        raise RuntimeFailure(f"{what}: {e}") from e


class Action(ABC):
    """
    One change bound to the adapters it runs against.

    ``snapshot`` reads the pre-change state, ``apply`` performs the change and
    returns warnings, ``matches`` reports whether live state already equals the
    target, ``rollback`` writes a snapshot record back.
    """

    action_type = "action"

    def __init__(self, change: Any, adapters: Adapters) -> None:
        self.change = change
        self.adapters = adapters

    @abstractmethod
    def snapshot(self) -> List[ActionSnapshot]:
        pass

    @abstractmethod
    def apply(self) -> List[str]:
        pass

    @abstractmethod
    def matches(self) -> bool:
        pass

    @abstractmethod
    def rollback(self, snapshot: ActionSnapshot) -> None:
        pass

    def get_description(self) -> str:
        return self.change.describe()

    def current_value(self) -> str:
        return "n/a"

    def target_value(self) -> str:
        return "n/a"

    @classmethod
    @abstractmethod
    def from_snapshot(cls, snapshot: ActionSnapshot, adapters: Adapters) -> 'Action':
        pass

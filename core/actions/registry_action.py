import logging
from typing import List, Optional

from ..adapters import Adapters
from ..changes import Hive, RegistryChange
from ..values import RegistryValue, ValueKind, values_equal
from .base import Action, ActionSnapshot, os_errors_as_failures

logger = logging.getLogger(__name__)


class RegistryAction(Action):

    action_type = "registry"

    def __init__(self, change: RegistryChange, adapters: Adapters):
        super().__init__(change, adapters)
        self.hive = change.hive
        self.path = change.path
        self.value_name = change.value_name
        self.target = change.target

    def _read(self) -> Optional[RegistryValue]:
        with os_errors_as_failures(f"Reading {self.change.describe()}"):
            return self.adapters.registry.read_value(self.hive, self.path, self.value_name)

    def snapshot(self) -> List[ActionSnapshot]:
        old = self._read()
        return [ActionSnapshot("registry", {
            "hive": self.hive.value,
            "path": self.path,
            "value_name": self.value_name,
            "existed": old is not None,
            "previous_kind": old.kind.value if old is not None else None,
            "previous_value": old.to_json()["data"] if old is not None else None,
        })]

    def apply(self) -> List[str]:
        with os_errors_as_failures(f"Writing {self.change.describe()}"):
            if self.target.is_absent:
                self.adapters.registry.delete_value(self.hive, self.path, self.value_name)
            else:
                self.adapters.registry.write_value(
                    self.hive, self.path, self.value_name, self.target
                )
        logger.debug("registry %s -> %s", self.change.describe(), self.target.display())
        return []

    def matches(self) -> bool:
        return values_equal(self.target, self._read())

    def rollback(self, snapshot: ActionSnapshot) -> None:
        meta = snapshot.metadata
        hive = Hive.parse(meta["hive"])

        with os_errors_as_failures(f"Restoring {meta['path']}\\{meta['value_name']}"):
            if meta["existed"]:
                previous = RegistryValue.from_json({
                    "kind": meta["previous_kind"],
                    "data": meta["previous_value"],
                })
                self.adapters.registry.write_value(
                    hive, meta["path"], meta["value_name"], previous
                )
            else:
                self.adapters.registry.delete_value(hive, meta["path"], meta["value_name"])

    def current_value(self) -> str:
        live = self._read()
        return live.display() if live is not None else "(not set)"

    def target_value(self) -> str:
        return self.target.display()

    @classmethod
    def from_snapshot(cls, snapshot: ActionSnapshot, adapters: Adapters) -> "RegistryAction":
        meta = snapshot.metadata
        if meta["existed"]:
            target = RegistryValue.from_json({
                "kind": meta["previous_kind"],
                "data": meta["previous_value"],
            })
        else:
            target = RegistryValue(ValueKind.ABSENT)
        change = RegistryChange(
            hive=Hive.parse(meta["hive"]),
            path=meta["path"],
            value_name=meta["value_name"],
            target=target,
        )
        return cls(change, adapters)

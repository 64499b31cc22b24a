import logging
from dataclasses import dataclass, field
from datetime import datetime
from pathlib import Path
from typing import Any, Dict, List, Optional

from . import rollback
from .actions.base import ActionSnapshot
from .actions.factory import create_action, create_action_from_snapshot
from .adapters import Adapters
from .catalog import TweakCatalog
from .changes import Hive
from .errors import ResourceNotFound, RollbackFailure, RuntimeFailure
from .time import DEFAULT_TIME_PROVIDER, TimeProvider
from .tweak import TweakDefinition
from .values import RegistryValue, values_equal

logger = logging.getLogger(__name__)


@dataclass
class TweakSnapshot:
    """Pre-apply state of every resource a tweak can touch."""

    tweak_id: str
    applied_option_index: int
    applied_option_label: str
    created_at: datetime
    os_version: int
    resources: List[ActionSnapshot] = field(default_factory=list)

    def to_row(self) -> Dict[str, Any]:
        return {
            "tweak_id": self.tweak_id,
            "applied_option_index": self.applied_option_index,
            "applied_option_label": self.applied_option_label,
            "created_at": self.created_at,
            "os_version": self.os_version,
            "resources": [r.to_dict() for r in self.resources],
        }

    @classmethod
    def from_row(cls, row: Dict[str, Any]) -> "TweakSnapshot":
        return cls(
            tweak_id=row["tweak_id"],
            applied_option_index=row["applied_option_index"],
            applied_option_label=row["applied_option_label"],
            created_at=row["created_at"],
            os_version=row["os_version"],
            resources=[ActionSnapshot.from_dict(r) for r in row["resources"]],
        )


class SnapshotStore:

    def __init__(
        self,
        adapters: Adapters,
        db_path: Optional[Path] = None,
        time_provider: TimeProvider = DEFAULT_TIME_PROVIDER,
    ):
        self.adapters = adapters
        self.db_path = db_path
        self.time = time_provider
        rollback.init_db(db_path)

    def capture(self, tweak: TweakDefinition, os_version: int, option_index: int) -> TweakSnapshot:
        """Read the live state of every resource any option of ``tweak`` touches."""
        resources: List[ActionSnapshot] = []
        for change in tweak.touched_changes(os_version):
            action = create_action(change, self.adapters)
            try:
                resources.extend(action.snapshot())
            except ResourceNotFound as e:
                logger.debug("capture %s: %s (nothing to restore)", tweak.id, e)

        option = tweak.option(option_index)
        return TweakSnapshot(
            tweak_id=tweak.id,
            applied_option_index=option_index,
            applied_option_label=option.label,
            created_at=self.time.now(),
            os_version=os_version,
            resources=resources,
        )

    def persist(self, snapshot: TweakSnapshot) -> None:
        rollback.save_snapshot(snapshot.to_row(), self.db_path)
        logger.info(
            "snapshot saved for %s (%d resources)", snapshot.tweak_id, len(snapshot.resources)
        )

    def load(self, tweak_id: str) -> Optional[TweakSnapshot]:
        row = rollback.load_snapshot(tweak_id, self.db_path)
        return TweakSnapshot.from_row(row) if row else None

    def exists(self, tweak_id: str) -> bool:
        return rollback.load_snapshot(tweak_id, self.db_path) is not None

    def update_applied_option(self, tweak_id: str, index: int, label: str) -> None:
        if not rollback.update_snapshot_option(tweak_id, index, label, self.db_path):
            logger.warning("no snapshot for %s to update", tweak_id)

    def delete(self, tweak_id: str) -> None:
        if rollback.delete_snapshot(tweak_id, self.db_path):
            logger.info("snapshot deleted for %s", tweak_id)

    def list_ids(self) -> List[str]:
        return rollback.list_snapshot_ids(self.db_path)

    def restore(self, snapshot: TweakSnapshot) -> int:
        """
        Write every captured record back, newest first.

        Every record is attempted; if any fail, RollbackFailure lists them all
        after the pass completes. Returns the number of records restored.
        """
        failures: List[str] = []
        restored = 0
        for record in reversed(snapshot.resources):
            try:
                action = create_action_from_snapshot(record, self.adapters)
                action.rollback(record)
                restored += 1
            except Exception as e:
                logger.error("restore %s %s failed: %s", snapshot.tweak_id, record.metadata, e)
                failures.append(f"{record.action_type} {_record_name(record)}: {e}")

        if failures:
            raise RollbackFailure(
                f"Failed to restore {len(failures)} of {len(snapshot.resources)} "
                f"resources for '{snapshot.tweak_id}'",
                failures=failures,
            )
        return restored

    def matches_live_state(self, snapshot: TweakSnapshot) -> bool:
        """True when every captured registry and service record equals live state."""
        checked = 0
        for record in snapshot.resources:
            meta = record.metadata
            if record.action_type == "registry":
                expected = (
                    RegistryValue.from_json(
                        {"kind": meta["previous_kind"], "data": meta["previous_value"]}
                    )
                    if meta["existed"] else RegistryValue.absent()
                )
                try:
                    live = self.adapters.registry.read_value(
                        Hive.parse(meta["hive"]), meta["path"], meta["value_name"]
                    )
                except RuntimeFailure as e:
                    logger.warning(
                        "%s: cannot compare %s (%s); keeping snapshot",
                        snapshot.tweak_id, _record_name(record), e,
                    )
                    return False
                if not values_equal(expected, live):
                    return False
                checked += 1
            elif record.action_type == "service":
                try:
                    mode = self.adapters.services.get_startup_mode(meta["service_name"])
                except ResourceNotFound:
                    return False
                except RuntimeFailure as e:
                    logger.warning(
                        "%s: cannot compare %s (%s); keeping snapshot",
                        snapshot.tweak_id, _record_name(record), e,
                    )
                    return False
                if mode.value != meta["previous_startup_mode"]:
                    return False
                checked += 1
        return checked > 0

    def validate_all(self, catalog: TweakCatalog, os_version: int) -> int:
        """
        Reconcile stored snapshots with the live catalog; returns how many were
        removed as stale.
        """
        removed = 0
        for stored_id in self.list_ids():
            snapshot = self.load(stored_id)
            if snapshot is None:
                continue

            tweak, via_alias = catalog.resolve(stored_id)
            if tweak is None:
                logger.info("stale snapshot %s: tweak no longer exists", stored_id)
                self.delete(stored_id)
                removed += 1
                continue

            if via_alias:
                if self.exists(tweak.id):
                    logger.info("stale snapshot %s: superseded by %s", stored_id, tweak.id)
                    self.delete(stored_id)
                    removed += 1
                    continue
                rollback.rekey_snapshot(stored_id, tweak.id, self.db_path)
                logger.info("snapshot %s re-keyed to %s", stored_id, tweak.id)
                snapshot.tweak_id = tweak.id

            index = self._reconcile_index(tweak, snapshot)
            if index is None:
                logger.info(
                    "stale snapshot %s: option '%s' no longer exists",
                    tweak.id, snapshot.applied_option_label,
                )
                self.delete(tweak.id)
                removed += 1
                continue
            if index != snapshot.applied_option_index:
                self.update_applied_option(tweak.id, index, tweak.options[index].label)

            if self.matches_live_state(snapshot):
                logger.info("stale snapshot %s: tweak was reverted externally", tweak.id)
                self.delete(tweak.id)
                removed += 1

        if removed:
            logger.info("removed %d stale snapshots", removed)
        return removed

    def _reconcile_index(self, tweak: TweakDefinition, snapshot: TweakSnapshot) -> Optional[int]:
        index = snapshot.applied_option_index
        label = snapshot.applied_option_label
        in_range = 0 <= index < len(tweak.options)

        if in_range and tweak.options[index].label.casefold() == label.casefold():
            return index
        by_label = tweak.find_option_by_label(label)
        if by_label is not None:
            return by_label
        return index if in_range else None


def _record_name(record: ActionSnapshot) -> str:
    meta = record.metadata
    if record.action_type == "registry":
        return f"{meta['hive']}\\{meta['path']}\\{meta['value_name']}"
    if record.action_type == "service":
        return meta["service_name"]
    return f"{meta.get('folder_path')}\\{meta.get('task_name')}"

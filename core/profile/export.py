import logging
from pathlib import Path
from typing import Iterable, List, Optional

from ..actions.scheduler_action import SchedulerAction
from ..adapters import Adapters
from ..catalog import TweakCatalog
from ..changes import RegistryChange, SchedulerChange, ServiceChange
from ..constants import ENGINE_VERSION
from ..detector import StateDetector
from ..errors import ConfigurationError, ResourceNotFound
from ..time import DEFAULT_TIME_PROVIDER, TimeProvider
from ..tweak import TweakDefinition
from .archive import write_archive
from .models import (
    BaselineSystemState,
    ConfigurationProfile,
    ProfileMetadata,
    TweakSelection,
)

logger = logging.getLogger(__name__)


class ProfileExporter:

    def __init__(
        self,
        catalog: TweakCatalog,
        adapters: Adapters,
        os_version: int,
        time_provider: TimeProvider = DEFAULT_TIME_PROVIDER,
    ):
        self.catalog = catalog
        self.adapters = adapters
        self.os_version = os_version
        self.time = time_provider
        self.detector = StateDetector(adapters.registry, adapters.services)

    def _tweaks(self, tweak_ids: Optional[Iterable[str]]) -> List[TweakDefinition]:
        if tweak_ids is None:
            return list(self.catalog)
        tweaks = []
        for tid in tweak_ids:
            tweak, _ = self.catalog.resolve(tid)
            if tweak is None:
                raise ConfigurationError(f"Unknown tweak: '{tid}'")
            tweaks.append(tweak)
        return tweaks

    def build_profile(
        self,
        name: str,
        description: Optional[str] = None,
        tweak_ids: Optional[Iterable[str]] = None,
        include_baseline: bool = False,
    ) -> ConfigurationProfile:
        """Record the detected option of every selected tweak."""
        tweaks = self._tweaks(tweak_ids)
        selections = []

        for tweak in tweaks:
            index = self.detector.detect(tweak, self.os_version)
            if index is None:
                logger.debug("%s: no option detected, not exported", tweak.id)
                continue
            option = tweak.options[index]
            selections.append(TweakSelection(
                tweak_id=tweak.id,
                selected_option_index=index,
                option_content_hash=option.content_hash(),
                selected_option_label=option.label,
            ))

        profile = ConfigurationProfile(
            metadata=ProfileMetadata(
                name=name,
                description=description,
                created_at=self.time.iso_now(),
                source_os_version=self.os_version,
                producing_app_version=ENGINE_VERSION,
            ),
            selections=selections,
        )
        if include_baseline:
            profile.baseline_system_state = self.capture_baseline(tweaks)
        return profile

    def capture_baseline(self, tweaks: Iterable[TweakDefinition]) -> BaselineSystemState:
        baseline = BaselineSystemState(
            captured_at=self.time.iso_now(),
            os_version=self.os_version,
        )
        seen = set()

        for tweak in tweaks:
            for change in tweak.touched_changes(self.os_version):
                if change.resource_key in seen:
                    continue
                seen.add(change.resource_key)

                if isinstance(change, RegistryChange):
                    value = self.adapters.registry.read_value(
                        change.hive, change.path, change.value_name
                    )
                    baseline.registry.append({
                        "hive": change.hive.value,
                        "path": change.path,
                        "value_name": change.value_name,
                        "value": value.to_json() if value is not None else None,
                    })
                elif isinstance(change, ServiceChange):
                    try:
                        mode = self.adapters.services.get_startup_mode(change.service_name)
                        running = self.adapters.services.is_running(change.service_name)
                    except ResourceNotFound:
                        mode, running = None, False
                    baseline.services.append({
                        "service_name": change.service_name,
                        "startup_mode": mode.value if mode is not None else None,
                        "running": running,
                    })
                elif isinstance(change, SchedulerChange):
                    action = SchedulerAction(change, self.adapters)
                    for name in action.resolve_targets():
                        state = self.adapters.scheduler.get_state(change.folder_path, name)
                        baseline.tasks.append({
                            "folder_path": change.folder_path,
                            "task_name": name,
                            "state": state.value,
                        })

        return baseline

    def export(
        self,
        path: Path,
        name: str,
        description: Optional[str] = None,
        tweak_ids: Optional[Iterable[str]] = None,
        include_baseline: bool = False,
    ) -> ConfigurationProfile:
        profile = self.build_profile(name, description, tweak_ids, include_baseline)
        write_archive(path, profile)
        logger.info("exported %d selections to %s", len(profile.selections), path)
        return profile

import logging
from typing import Dict, List, Optional, Tuple

from .adapters import RegistryStore, ServiceControl
from .changes import Change, Hive, RegistryChange, ServiceChange, StartupMode
from .errors import ResourceNotFound
from .tweak import TweakDefinition, TweakOption
from .values import RegistryValue, values_equal

logger = logging.getLogger(__name__)

_MISSING = object()


class _ReadCache:
    """Memoises live reads for the duration of one detection pass."""

    def __init__(self, registry: RegistryStore, services: ServiceControl):
        self._registry = registry
        self._services = services
        self._values: Dict[Tuple[Hive, str, str], Optional[RegistryValue]] = {}
        self._modes: Dict[str, object] = {}

    def registry_value(self, change: RegistryChange) -> Optional[RegistryValue]:
        key = (change.hive, change.path.lower(), change.value_name.lower())
        if key not in self._values:
            self._values[key] = self._registry.read_value(
                change.hive, change.path, change.value_name
            )
        return self._values[key]

    def startup_mode(self, name: str) -> Optional[StartupMode]:
        key = name.lower()
        if key not in self._modes:
            try:
                self._modes[key] = self._services.get_startup_mode(name)
            except ResourceNotFound:
                self._modes[key] = _MISSING
        mode = self._modes[key]
        return None if mode is _MISSING else mode


class StateDetector:
    """Reports which option of a tweak the machine currently reflects."""

    def __init__(self, registry: RegistryStore, services: ServiceControl):
        self.registry = registry
        self.services = services

    @staticmethod
    def detectable_changes(option: TweakOption, os_version: int) -> List[Change]:
        result: List[Change] = []
        for c in option.registry_changes:
            if not c.exclude_from_validation and c.applies_to(os_version):
                result.append(c)
        for c in option.service_changes:
            if not c.exclude_from_validation:
                result.append(c)
        return result

    def detect(self, tweak: TweakDefinition, os_version: int) -> Optional[int]:
        """
        Index of the first option whose detectable changes all hold, or None.

        None means the machine is at its default or a custom state, which is
        not the same as option 0.
        """
        cache = _ReadCache(self.registry, self.services)

        for index, option in enumerate(tweak.options):
            changes = self.detectable_changes(option, os_version)
            if not changes:
                continue
            if all(self._holds(c, cache) for c in changes):
                logger.debug("%s detected at option %d (%s)", tweak.id, index, option.label)
                return index

        return None

    def _holds(self, change: Change, cache: _ReadCache) -> bool:
        if isinstance(change, RegistryChange):
            return values_equal(change.target, cache.registry_value(change))
        if isinstance(change, ServiceChange):
            mode = cache.startup_mode(change.service_name)
            return mode is not None and mode is change.startup_mode
        return False

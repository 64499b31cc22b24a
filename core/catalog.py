import json
from pathlib import Path
from typing import Dict, Iterable, Iterator, List, Optional, Tuple

from .errors import ConfigurationError
from .tweak import TweakDefinition
from .validation import TweakValidator


class TweakCatalog:
    """Live tweak definitions, addressable by id or by any retired alias."""

    def __init__(self, tweaks: Iterable[TweakDefinition] = ()):
        self._by_id: Dict[str, TweakDefinition] = {}
        self._aliases: Dict[str, str] = {}
        for t in tweaks:
            self.add(t)

    def add(self, tweak: TweakDefinition) -> None:
        if tweak.id in self._by_id or tweak.id in self._aliases:
            raise ConfigurationError(f"Duplicate tweak id: '{tweak.id}'")
        self._by_id[tweak.id] = tweak
        for alias in tweak.aliases:
            if alias in self._by_id or alias in self._aliases:
                raise ConfigurationError(
                    f"Alias '{alias}' of '{tweak.id}' collides with another tweak"
                )
            self._aliases[alias] = tweak.id

    def get(self, tweak_id: str) -> Optional[TweakDefinition]:
        return self._by_id.get(tweak_id)

    def resolve(self, tweak_id: str) -> Tuple[Optional[TweakDefinition], bool]:
        """Return ``(tweak, via_alias)``; ``(None, False)`` when unknown."""
        tweak = self._by_id.get(tweak_id)
        if tweak is not None:
            return tweak, False
        live_id = self._aliases.get(tweak_id)
        if live_id is not None:
            return self._by_id[live_id], True
        return None, False

    def __iter__(self) -> Iterator[TweakDefinition]:
        return iter(self._by_id.values())

    def __len__(self) -> int:
        return len(self._by_id)

    def __contains__(self, tweak_id: str) -> bool:
        return self.resolve(tweak_id)[0] is not None

    @classmethod
    def load_directory(cls, directory: Path) -> "TweakCatalog":
        tweaks: List[TweakDefinition] = []
        for path in sorted(Path(directory).glob("*.json")):
            with open(path, 'r', encoding='utf-8') as f:
                try:
                    raw = json.load(f)
                except json.JSONDecodeError as e:
                    raise ConfigurationError(f"{path.name}: invalid JSON ({e})") from None

            entries = raw.get("tweaks", [raw]) if isinstance(raw, dict) else raw
            for entry in entries:
                try:
                    tweaks.append(TweakDefinition.from_dict(entry))
                except ConfigurationError as e:
                    raise ConfigurationError(f"{path.name}: {e}") from e

        TweakValidator().validate_catalog(tweaks)
        return cls(tweaks)

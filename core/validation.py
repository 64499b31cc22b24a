import re
from typing import Iterable

from .changes import (
    CommandInvocation,
    RegistryChange,
    SchedulerChange,
    ServiceChange,
)
from .errors import ConfigurationError
from .tweak import TweakDefinition


class ValidationError(ConfigurationError):
    """Raised when a tweak definition violates its structural rules."""
    pass


class TweakValidator:

    ID_PATTERN = re.compile(r'^[A-Za-z0-9_.\-@]+$')

    def validate_definition(self, tweak: TweakDefinition) -> None:
        self._validate_id_format(tweak.id)
        self._validate_aliases(tweak)
        self._validate_options(tweak)
        for opt in tweak.options:
            self._validate_changes(tweak.id, opt.label, opt.changes)

    def validate_catalog(self, tweaks: Iterable[TweakDefinition]) -> None:
        claimed = {}
        for t in tweaks:
            self.validate_definition(t)
            for name in (t.id,) + tuple(t.aliases):
                owner = claimed.get(name)
                if owner is not None and owner != t.id:
                    raise ValidationError(
                        f"Identifier '{name}' claimed by both '{owner}' and '{t.id}'"
                    )
                claimed[name] = t.id

    def _validate_id_format(self, tweak_id: str) -> None:
        if not tweak_id or not self.ID_PATTERN.match(tweak_id):
            raise ValidationError(
                f"Invalid ID format: '{tweak_id}'. "
                "Allowed characters: letters, digits, '_', '.', '-', '@'."
            )

    def _validate_aliases(self, tweak: TweakDefinition) -> None:
        for alias in tweak.aliases:
            self._validate_id_format(alias)
            if alias == tweak.id:
                raise ValidationError(f"Tweak '{tweak.id}' lists its own id as an alias")

    def _validate_options(self, tweak: TweakDefinition) -> None:
        if not tweak.options:
            raise ValidationError(f"Tweak '{tweak.id}' has no options")

        if tweak.is_toggle and len(tweak.options) != 2:
            raise ValidationError(
                f"Toggle tweak '{tweak.id}' must have exactly 2 options, "
                f"found {len(tweak.options)}"
            )

        seen = set()
        for opt in tweak.options:
            if not opt.label.strip():
                raise ValidationError(f"Tweak '{tweak.id}' has an option with an empty label")
            folded = opt.label.casefold()
            if folded in seen:
                raise ValidationError(
                    f"Duplicate option label '{opt.label}' in tweak '{tweak.id}'"
                )
            seen.add(folded)

    def _validate_changes(self, tweak_id: str, label: str, changes) -> None:
        where = f"'{tweak_id}' option '{label}'"
        for c in changes:
            if isinstance(c, RegistryChange):
                if not c.path.strip():
                    raise ValidationError(f"Registry change in {where} has an empty path")
            elif isinstance(c, ServiceChange):
                if not c.service_name.strip():
                    raise ValidationError(f"Service change in {where} has no service name")
                if c.stop_after and c.start_after:
                    raise ValidationError(
                        f"Service '{c.service_name}' in {where} cannot both stop and start"
                    )
            elif isinstance(c, SchedulerChange):
                if not c.folder_path.startswith("\\"):
                    raise ValidationError(
                        f"Task folder '{c.folder_path}' in {where} must start with '\\'"
                    )
            elif isinstance(c, CommandInvocation):
                if not c.text.strip():
                    raise ValidationError(f"Empty command in {where}")
            else:
                raise ValidationError(f"Unknown change {c!r} in {where}")

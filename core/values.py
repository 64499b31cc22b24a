from dataclasses import dataclass
from enum import Enum
from typing import Any, Dict, List, Optional, Union

from .errors import ConfigurationError

RegistryData = Union[int, str, bytes, List[str], None]


class ValueKind(Enum):
    DWORD = "REG_DWORD"
    QWORD = "REG_QWORD"
    SZ = "REG_SZ"
    EXPAND_SZ = "REG_EXPAND_SZ"
    MULTI_SZ = "REG_MULTI_SZ"
    BINARY = "REG_BINARY"
    # Target meaning "the value must not exist".
    ABSENT = "ABSENT"

    @classmethod
    def parse(cls, raw: str) -> "ValueKind":
        text = str(raw).strip().upper()
        if not text.startswith("REG_") and text != "ABSENT":
            text = "REG_" + text
        try:
            return cls(text)
        except ValueError:
            valid = ", ".join(k.value for k in cls)
            raise ConfigurationError(
                f"Invalid registry value type: '{raw}'. Valid types: {valid}"
            ) from None


_INT_WIDTH = {
    ValueKind.DWORD: 32,
    ValueKind.QWORD: 64,
}

_STRING_KINDS = {ValueKind.SZ, ValueKind.EXPAND_SZ}


@dataclass(frozen=True)
class RegistryValue:
    """A typed registry value. ``data`` is None only for ABSENT."""

    kind: ValueKind
    data: RegistryData = None

    def __post_init__(self) -> None:
        if self.kind in _INT_WIDTH:
            if isinstance(self.data, bool) or not isinstance(self.data, int):
                raise ConfigurationError(
                    f"{self.kind.value} requires an integer, got {self.data!r}"
                )
            bits = _INT_WIDTH[self.kind]
            # Signed input is accepted and stored as written; it normalises on compare.
            if not -(1 << (bits - 1)) <= self.data < (1 << bits):
                raise ConfigurationError(
                    f"{self.data} does not fit in {self.kind.value}"
                )
        elif self.kind in _STRING_KINDS:
            if not isinstance(self.data, str):
                raise ConfigurationError(f"{self.kind.value} requires a string")
        elif self.kind is ValueKind.MULTI_SZ:
            if not isinstance(self.data, (list, tuple)) or not all(
                isinstance(s, str) for s in self.data
            ):
                raise ConfigurationError("REG_MULTI_SZ requires a list of strings")
            object.__setattr__(self, "data", list(self.data))
        elif self.kind is ValueKind.BINARY:
            if isinstance(self.data, (bytearray, memoryview)):
                object.__setattr__(self, "data", bytes(self.data))
            elif not isinstance(self.data, bytes):
                raise ConfigurationError("REG_BINARY requires bytes")
        elif self.data is not None:
            raise ConfigurationError("ABSENT carries no data")

    def __hash__(self) -> int:
        data = tuple(self.data) if isinstance(self.data, list) else self.data
        return hash((self.kind, data))

    @classmethod
    def absent(cls) -> "RegistryValue":
        return cls(ValueKind.ABSENT)

    @classmethod
    def dword(cls, value: int) -> "RegistryValue":
        return cls(ValueKind.DWORD, value)

    @classmethod
    def string(cls, value: str) -> "RegistryValue":
        return cls(ValueKind.SZ, value)

    @property
    def is_absent(self) -> bool:
        return self.kind is ValueKind.ABSENT

    def to_json(self) -> Dict[str, Any]:
        data: Any = self.data
        if self.kind is ValueKind.BINARY:
            data = self.data.hex()
        return {"kind": self.kind.value, "data": data}

    @classmethod
    def from_json(cls, raw: Dict[str, Any]) -> "RegistryValue":
        if not isinstance(raw, dict) or "kind" not in raw:
            raise ConfigurationError(f"Malformed registry value: {raw!r}")
        kind = ValueKind.parse(raw["kind"])
        data = raw.get("data")
        if kind is ValueKind.BINARY:
            if isinstance(data, str):
                try:
                    data = bytes.fromhex(data)
                except ValueError:
                    raise ConfigurationError(
                        f"REG_BINARY data is not valid hex: {data!r}"
                    ) from None
            elif isinstance(data, list):
                if not all(isinstance(b, int) and 0 <= b <= 255 for b in data):
                    raise ConfigurationError("REG_BINARY byte list out of range")
                data = bytes(data)
        return cls(kind, data)

    def display(self) -> str:
        if self.is_absent:
            return "(deleted)"
        if self.kind is ValueKind.BINARY:
            return f"{self.kind.value}:{self.data.hex()}"
        return f"{self.kind.value}:{self.data}"


def _unsigned(kind: ValueKind, number: int) -> int:
    return number & ((1 << _INT_WIDTH[kind]) - 1)


def values_equal(expected: RegistryValue, live: Optional[RegistryValue]) -> bool:
    """Compare a target value against what is on the machine (None = missing)."""
    if expected.is_absent:
        return live is None or live.is_absent
    if live is None or live.is_absent:
        return False

    if expected.kind in _INT_WIDTH and live.kind in _INT_WIDTH:
        return _unsigned(expected.kind, expected.data) == _unsigned(live.kind, live.data)
    if expected.kind in _STRING_KINDS and live.kind in _STRING_KINDS:
        return expected.data == live.data
    if expected.kind is not live.kind:
        return False
    return expected.data == live.data

import winreg
from typing import Dict, Optional

from core.changes import Hive
from core.errors import RuntimeFailure
from core.values import RegistryValue, ValueKind

HIVES: Dict[Hive, int] = {
    Hive.HKCU: winreg.HKEY_CURRENT_USER,
    Hive.HKLM: winreg.HKEY_LOCAL_MACHINE,
    Hive.HKCR: winreg.HKEY_CLASSES_ROOT,
    Hive.HKU: winreg.HKEY_USERS,
    Hive.HKCC: winreg.HKEY_CURRENT_CONFIG,
}

REG_TYPES: Dict[ValueKind, int] = {
    ValueKind.DWORD: winreg.REG_DWORD,
    ValueKind.QWORD: winreg.REG_QWORD,
    ValueKind.SZ: winreg.REG_SZ,
    ValueKind.EXPAND_SZ: winreg.REG_EXPAND_SZ,
    ValueKind.MULTI_SZ: winreg.REG_MULTI_SZ,
    ValueKind.BINARY: winreg.REG_BINARY,
}

_KINDS = {v: k for k, v in REG_TYPES.items()}


def _to_unsigned(kind: ValueKind, data):
    # winreg rejects negative DWORD/QWORD input
    if kind is ValueKind.DWORD:
        return data & 0xFFFFFFFF
    if kind is ValueKind.QWORD:
        return data & 0xFFFFFFFFFFFFFFFF
    return data


class WinRegistryStore:
    """RegistryStore over the winreg module; 64-bit view of the registry."""

    ACCESS_64 = winreg.KEY_WOW64_64KEY

    def read_value(self, hive: Hive, path: str, name: str) -> Optional[RegistryValue]:
        try:
            with winreg.OpenKey(HIVES[hive], path, 0, winreg.KEY_READ | self.ACCESS_64) as key:
                data, reg_type = winreg.QueryValueEx(key, name)
        except FileNotFoundError:
            return None
        except OSError as e:
            raise RuntimeFailure(f"Cannot read {hive.value}\\{path}\\{name}: {e}") from e

        kind = _KINDS.get(reg_type)
        if kind is None:
            raise RuntimeFailure(
                f"Unsupported registry type {reg_type} at {hive.value}\\{path}\\{name}"
            )
        if kind is ValueKind.BINARY and data is None:
            data = b""
        if kind is ValueKind.MULTI_SZ and data is None:
            data = []
        return RegistryValue(kind, data)

    def write_value(self, hive: Hive, path: str, name: str, value: RegistryValue) -> None:
        if value.is_absent:
            self.delete_value(hive, path, name)
            return
        try:
            with winreg.CreateKeyEx(
                HIVES[hive], path, 0, winreg.KEY_WRITE | self.ACCESS_64
            ) as key:
                winreg.SetValueEx(
                    key, name, 0, REG_TYPES[value.kind], _to_unsigned(value.kind, value.data)
                )
        except OSError as e:
            raise RuntimeFailure(f"Cannot write {hive.value}\\{path}\\{name}: {e}") from e

    def delete_value(self, hive: Hive, path: str, name: str) -> None:
        try:
            with winreg.OpenKey(HIVES[hive], path, 0, winreg.KEY_WRITE | self.ACCESS_64) as key:
                winreg.DeleteValue(key, name)
        except FileNotFoundError:
            return
        except OSError as e:
            raise RuntimeFailure(f"Cannot delete {hive.value}\\{path}\\{name}: {e}") from e

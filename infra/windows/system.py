import platform
import sys

from core.adapters import Adapters
from core.tweak import PrivilegeLevel

WINDOWS_11_FIRST_BUILD = 22000


def os_version_from_build(build: int) -> int:
    return 11 if build >= WINDOWS_11_FIRST_BUILD else 10


def current_os_version() -> int:
    if hasattr(sys, "getwindowsversion"):
        return os_version_from_build(sys.getwindowsversion().build)
    # "10.0.22631" on Windows, anything else off it
    parts = platform.version().split(".")
    if len(parts) >= 3 and parts[2].isdigit():
        return os_version_from_build(int(parts[2]))
    return 10


def build_adapters(privilege: PrivilegeLevel = PrivilegeLevel.ADMIN) -> Adapters:
    """Adapters backed by the live system. Windows only."""
    from .commands import SubprocessCommandRunner
    from .registry import WinRegistryStore
    from .scheduler import SchtasksScheduler
    from .services import WinServiceControl

    return Adapters(
        registry=WinRegistryStore(),
        services=WinServiceControl(),
        scheduler=SchtasksScheduler(),
        commands=SubprocessCommandRunner(held=privilege),
    )

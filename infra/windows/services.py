import pywintypes
import win32service
import win32serviceutil

from core.changes import StartupMode
from core.errors import ResourceNotFound, RuntimeFailure

ERROR_SERVICE_DOES_NOT_EXIST = 1060

START_TYPES = {
    StartupMode.BOOT: win32service.SERVICE_BOOT_START,
    StartupMode.SYSTEM: win32service.SERVICE_SYSTEM_START,
    StartupMode.AUTOMATIC: win32service.SERVICE_AUTO_START,
    StartupMode.MANUAL: win32service.SERVICE_DEMAND_START,
    StartupMode.DISABLED: win32service.SERVICE_DISABLED,
}

_MODES = {v: k for k, v in START_TYPES.items()}


def _raise(name: str, what: str, e: pywintypes.error) -> None:
    if e.winerror == ERROR_SERVICE_DOES_NOT_EXIST:
        raise ResourceNotFound(f"Service '{name}' not found") from e
    raise RuntimeFailure(f"Cannot {what} service '{name}': {e.strerror}") from e


class WinServiceControl:
    """ServiceControl over the Service Control Manager (pywin32)."""

    def _open(self, name: str, access: int):
        scm = win32service.OpenSCManager(None, None, win32service.SC_MANAGER_CONNECT)
        try:
            return scm, win32service.OpenService(scm, name, access)
        except pywintypes.error:
            win32service.CloseServiceHandle(scm)
            raise

    def get_startup_mode(self, name: str) -> StartupMode:
        try:
            scm, svc = self._open(name, win32service.SERVICE_QUERY_CONFIG)
        except pywintypes.error as e:
            _raise(name, "query", e)
        try:
            config = win32service.QueryServiceConfig(svc)
        except pywintypes.error as e:
            _raise(name, "query", e)
        finally:
            win32service.CloseServiceHandle(svc)
            win32service.CloseServiceHandle(scm)

        mode = _MODES.get(config[1])
        if mode is None:
            raise RuntimeFailure(f"Unknown start type {config[1]} for service '{name}'")
        return mode

    def set_startup_mode(self, name: str, mode: StartupMode) -> None:
        try:
            scm, svc = self._open(name, win32service.SERVICE_CHANGE_CONFIG)
        except pywintypes.error as e:
            _raise(name, "open", e)
        try:
            win32service.ChangeServiceConfig(
                svc,
                win32service.SERVICE_NO_CHANGE,
                START_TYPES[mode],
                win32service.SERVICE_NO_CHANGE,
                None, None, 0, None, None, None, None,
            )
        except pywintypes.error as e:
            _raise(name, "configure", e)
        finally:
            win32service.CloseServiceHandle(svc)
            win32service.CloseServiceHandle(scm)

    def is_running(self, name: str) -> bool:
        try:
            status = win32serviceutil.QueryServiceStatus(name)[1]
        except pywintypes.error as e:
            _raise(name, "query", e)
        return status in (win32service.SERVICE_RUNNING, win32service.SERVICE_START_PENDING)

    def start(self, name: str) -> None:
        try:
            win32serviceutil.StartService(name)
        except pywintypes.error as e:
            _raise(name, "start", e)

    def stop(self, name: str) -> None:
        try:
            win32serviceutil.StopService(name)
        except pywintypes.error as e:
            _raise(name, "stop", e)

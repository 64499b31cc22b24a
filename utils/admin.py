import ctypes
import getpass
import sys

from core.tweak import PrivilegeLevel


def is_admin() -> bool:
    try:
        return bool(ctypes.windll.shell32.IsUserAnAdmin())
    except (AttributeError, OSError):
        return False


def current_privilege() -> PrivilegeLevel:
    if not is_admin():
        return PrivilegeLevel.NONE
    # LocalSystem logs on as the machine account, e.g. "DESKTOP-1$"
    user = getpass.getuser()
    if user.upper() == "SYSTEM" or user.endswith("$"):
        return PrivilegeLevel.SYSTEM
    return PrivilegeLevel.ADMIN


def require_admin():
    if not is_admin():
        print("ERROR: Administrator privileges are required.")
        print("Execute as administrator and try again.")
        sys.exit(1)

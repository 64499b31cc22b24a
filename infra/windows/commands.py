import logging
import subprocess
from typing import List

from core.changes import Interpreter
from core.errors import ElevationRequiredError, RuntimeFailure
from core.tweak import PrivilegeLevel

logger = logging.getLogger(__name__)

CREATE_NO_WINDOW = getattr(subprocess, "CREATE_NO_WINDOW", 0)


def build_argv(text: str, interpreter: Interpreter) -> List[str]:
    if interpreter is Interpreter.SCRIPT_HOST:
        return [
            "powershell.exe",
            "-NoProfile",
            "-NonInteractive",
            "-ExecutionPolicy", "Bypass",
            "-Command", text,
        ]
    return ["cmd.exe", "/c", text]


class SubprocessCommandRunner:
    """
    CommandRunner that launches cmd.exe / powershell.exe in the current token.

    It can only run commands at or below the privilege the process holds.
    """

    def __init__(self, held: PrivilegeLevel = PrivilegeLevel.ADMIN):
        self.held = held

    def run(self, text: str, interpreter: Interpreter, elevation: PrivilegeLevel) -> int:
        if not self.held.satisfies(elevation):
            raise ElevationRequiredError(
                f"Command needs {elevation.name}, process holds {self.held.name}",
                required=elevation,
                held=self.held,
            )

        argv = build_argv(text, interpreter)
        logger.debug("running %s", argv)
        try:
            proc = subprocess.run(
                argv,
                capture_output=True,
                text=True,
                creationflags=CREATE_NO_WINDOW,
            )
        except OSError as e:
            raise RuntimeFailure(f"Failed to launch '{argv[0]}': {e}") from e

        if proc.returncode != 0 and proc.stderr:
            logger.debug("stderr: %s", proc.stderr.strip())
        return proc.returncode

import csv
import io
import logging
import re
import subprocess
from typing import List, Tuple

from core.changes import TaskState
from core.errors import RuntimeFailure

logger = logging.getLogger(__name__)

CREATE_NO_WINDOW = getattr(subprocess, "CREATE_NO_WINDOW", 0)

_NOT_FOUND_MARKERS = ("does not exist", "cannot find")


def full_task_path(folder: str, name: str) -> str:
    folder = folder.rstrip("\\")
    return f"{folder}\\{name}" if folder else f"\\{name}"


def parse_status(list_output: str) -> TaskState:
    """Status line of ``schtasks /Query /FO LIST /V`` output."""
    for line in list_output.splitlines():
        line = line.strip()
        if line.startswith("Status:"):
            text = line[len("Status:"):].strip().lower()
            if text == "disabled":
                return TaskState.DISABLED
            if text == "running":
                return TaskState.RUNNING
            return TaskState.READY
    raise RuntimeFailure("Could not parse task state from schtasks output")


def parse_task_list(csv_output: str) -> List[Tuple[str, str]]:
    """(folder, name) pairs from ``schtasks /Query /FO CSV /NH`` output."""
    tasks = []
    seen = set()
    for row in csv.reader(io.StringIO(csv_output)):
        if not row or not row[0].startswith("\\"):
            continue
        folder, _, name = row[0].rpartition("\\")
        key = (folder.lower(), name.lower())
        if key in seen:
            continue
        seen.add(key)
        tasks.append((folder or "\\", name))
    return tasks


class SchtasksScheduler:
    """SchedulerControl over schtasks.exe."""

    def _run(self, *args: str) -> subprocess.CompletedProcess:
        try:
            return subprocess.run(
                ["schtasks", *args],
                capture_output=True,
                text=True,
                creationflags=CREATE_NO_WINDOW,
            )
        except OSError as e:
            raise RuntimeFailure(f"Failed to execute schtasks: {e}") from e

    @staticmethod
    def _is_not_found(proc: subprocess.CompletedProcess) -> bool:
        stderr = (proc.stderr or "").lower()
        return any(marker in stderr for marker in _NOT_FOUND_MARKERS)

    def get_state(self, folder: str, name: str) -> TaskState:
        path = full_task_path(folder, name)
        proc = self._run("/Query", "/TN", path, "/FO", "LIST", "/V")
        if proc.returncode != 0:
            if self._is_not_found(proc):
                return TaskState.NOT_FOUND
            raise RuntimeFailure(f"Failed to query task '{path}': {proc.stderr.strip()}")
        return parse_status(proc.stdout)

    def set_enabled(self, folder: str, name: str, enabled: bool) -> None:
        path = full_task_path(folder, name)
        proc = self._run("/Change", "/TN", path, "/ENABLE" if enabled else "/DISABLE")
        if proc.returncode != 0:
            raise RuntimeFailure(
                f"Failed to {'enable' if enabled else 'disable'} task '{path}': "
                f"{proc.stderr.strip()}"
            )
        logger.info("task %s %s", path, "enabled" if enabled else "disabled")

    def delete(self, folder: str, name: str) -> None:
        path = full_task_path(folder, name)
        proc = self._run("/Delete", "/TN", path, "/F")
        if proc.returncode != 0 and not self._is_not_found(proc):
            raise RuntimeFailure(f"Failed to delete task '{path}': {proc.stderr.strip()}")
        logger.info("task %s deleted", path)

    def find_tasks(self, folder: str, pattern: str) -> List[str]:
        proc = self._run("/Query", "/FO", "CSV", "/NH")
        if proc.returncode != 0:
            raise RuntimeFailure(f"Failed to list tasks: {proc.stderr.strip()}")

        wanted = (folder.rstrip("\\") or "\\").lower()
        regex = re.compile(pattern, re.IGNORECASE)
        return [
            name for task_folder, name in parse_task_list(proc.stdout)
            if task_folder.lower() == wanted and regex.search(name)
        ]

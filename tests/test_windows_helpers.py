from core.changes import Interpreter, TaskState
from infra.windows.commands import build_argv
from infra.windows.scheduler import full_task_path, parse_status, parse_task_list
from infra.windows.system import os_version_from_build


LIST_OUTPUT = """
Folder: \\Microsoft\\Windows\\Application Experience
HostName:                             DESKTOP
TaskName:                             \\Microsoft\\Windows\\Application Experience\\ProgramDataUpdater
Next Run Time:                        N/A
Status:                               Disabled
Logon Mode:                           Interactive/Background
"""

CSV_OUTPUT = (
    '"\\Microsoft\\Windows\\Customer Experience Improvement Program\\Consolidator","N/A","Ready"\r\n'
    '"\\Microsoft\\Windows\\Customer Experience Improvement Program\\UsbCeip","N/A","Disabled"\r\n'
    '"\\Microsoft\\Windows\\Customer Experience Improvement Program\\Consolidator","N/A","Ready"\r\n'
    '"\\OneDrive Standalone Update Task","1/1/2025 10:00:00 AM","Ready"\r\n'
    '"Folder: \\Microsoft"\r\n'
)


class TestScheduler:

    def test_full_task_path(self):
        assert full_task_path("\\Microsoft\\Windows\\", "Task") == "\\Microsoft\\Windows\\Task"
        assert full_task_path("\\", "Task") == "\\Task"

    def test_parse_status(self):
        assert parse_status(LIST_OUTPUT) is TaskState.DISABLED
        assert parse_status("Status: Running") is TaskState.RUNNING
        assert parse_status("Status: Queued") is TaskState.READY

    def test_parse_task_list(self):
        tasks = parse_task_list(CSV_OUTPUT)
        assert tasks == [
            ("\\Microsoft\\Windows\\Customer Experience Improvement Program", "Consolidator"),
            ("\\Microsoft\\Windows\\Customer Experience Improvement Program", "UsbCeip"),
            ("\\", "OneDrive Standalone Update Task"),
        ]


class TestCommands:

    def test_shell_argv(self):
        assert build_argv("ipconfig /flushdns", Interpreter.SHELL) == [
            "cmd.exe", "/c", "ipconfig /flushdns",
        ]

    def test_script_host_argv(self):
        argv = build_argv("Get-Service", Interpreter.SCRIPT_HOST)
        assert argv[0] == "powershell.exe"
        assert argv[-2:] == ["-Command", "Get-Service"]


def test_os_version_from_build():
    assert os_version_from_build(19045) == 10
    assert os_version_from_build(22000) == 11
    assert os_version_from_build(26100) == 11

import re

import pytest

from core.adapters import Adapters
from core.catalog import TweakCatalog
from core.changes import StartupMode, TaskState
from core.errors import ResourceNotFound, RuntimeFailure
from core.tweak import TweakDefinition
from core.tweak_manager import TweakManager


class FakeRegistry:

    def __init__(self):
        self.values = {}
        # names that fail on every write, and names that fail on the next write only
        self.fail_on = set()
        self.fail_once = set()
        self.writes = []

    def _check(self, name):
        if name.lower() in self.fail_once:
            self.fail_once.discard(name.lower())
            raise RuntimeFailure(f"access denied writing {name}")
        if name.lower() in self.fail_on:
            raise RuntimeFailure(f"access denied writing {name}")

    @staticmethod
    def _key(hive, path, name):
        return (hive.value, path.lower(), name.lower())

    def seed(self, hive, path, name, value):
        self.values[self._key(hive, path, name)] = value

    def get(self, hive, path, name):
        return self.values.get(self._key(hive, path, name))

    def read_value(self, hive, path, name):
        return self.values.get(self._key(hive, path, name))

    def write_value(self, hive, path, name, value):
        self._check(name)
        self.writes.append((hive.value, path, name, value))
        self.values[self._key(hive, path, name)] = value

    def delete_value(self, hive, path, name):
        self._check(name)
        self.writes.append((hive.value, path, name, None))
        self.values.pop(self._key(hive, path, name), None)


class FakeServices:

    def __init__(self):
        self.services = {}
        self.fail_on = set()
        self.fail_stop = set()

    def add(self, name, mode=StartupMode.MANUAL, running=False):
        self.services[name.lower()] = {"mode": mode, "running": running}

    def _get(self, name):
        svc = self.services.get(name.lower())
        if svc is None:
            raise ResourceNotFound(f"Service '{name}' not found")
        return svc

    def get_startup_mode(self, name):
        return self._get(name)["mode"]

    def set_startup_mode(self, name, mode):
        svc = self._get(name)
        if name.lower() in self.fail_on:
            raise RuntimeFailure(f"cannot configure {name}")
        svc["mode"] = mode

    def is_running(self, name):
        return self._get(name)["running"]

    def start(self, name):
        self._get(name)["running"] = True

    def stop(self, name):
        svc = self._get(name)
        if name.lower() in self.fail_stop:
            raise RuntimeFailure(f"{name} did not stop")
        svc["running"] = False


class FakeScheduler:

    def __init__(self):
        self.tasks = {}
        self.deleted = []

    def add(self, folder, name, state=TaskState.READY):
        self.tasks[(folder.lower(), name)] = state

    def _find(self, folder, name):
        for (f, n) in self.tasks:
            if f == folder.lower() and n.lower() == name.lower():
                return (f, n)
        return None

    def get_state(self, folder, name):
        key = self._find(folder, name)
        return self.tasks[key] if key else TaskState.NOT_FOUND

    def set_enabled(self, folder, name, enabled):
        key = self._find(folder, name)
        if key is None:
            raise ResourceNotFound(f"Task {folder}\\{name} not found")
        self.tasks[key] = TaskState.READY if enabled else TaskState.DISABLED

    def delete(self, folder, name):
        key = self._find(folder, name)
        if key is not None:
            del self.tasks[key]
            self.deleted.append(name)

    def find_tasks(self, folder, pattern):
        regex = re.compile(pattern, re.IGNORECASE)
        return sorted(n for (f, n) in self.tasks if f == folder.lower() and regex.search(n))


class FakeCommands:

    def __init__(self):
        self.calls = []
        self.exit_codes = {}
        self.unlaunchable = set()

    def run(self, text, interpreter, elevation):
        if text in self.unlaunchable:
            raise RuntimeFailure(f"cannot launch: {text}")
        self.calls.append((text, interpreter, elevation))
        return self.exit_codes.get(text, 0)


@pytest.fixture
def adapters():
    return Adapters(
        registry=FakeRegistry(),
        services=FakeServices(),
        scheduler=FakeScheduler(),
        commands=FakeCommands(),
    )


@pytest.fixture
def db_path(tmp_path):
    return tmp_path / "tweakcore.db"


def reg(path, name, data, hive="HKLM", kind="REG_DWORD", **extra):
    change = {
        "type": "registry",
        "hive": hive,
        "path": path,
        "value_name": name,
        "target": {"kind": kind} if kind == "ABSENT" else {"kind": kind, "data": data},
    }
    change.update(extra)
    return change


def svc(name, mode, **extra):
    change = {"type": "service", "service_name": name, "startup_mode": mode}
    change.update(extra)
    return change


def make_tweak(tweak_id, options, **fields):
    data = {
        "id": tweak_id,
        "name": fields.pop("name", tweak_id),
        "options": [{"label": label, "changes": changes} for label, changes in options],
    }
    data.update(fields)
    return TweakDefinition.from_dict(data)


@pytest.fixture
def make_manager(adapters, db_path):
    def _make(*tweaks, **kwargs):
        catalog = TweakCatalog(tweaks)
        kwargs.setdefault("os_version", 11)
        return TweakManager(adapters, catalog, db_path=db_path, **kwargs)
    return _make

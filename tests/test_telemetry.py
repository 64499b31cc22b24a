import io
import json

import pytest

import core.tweak_manager as core_manager
from cli.main import build_parser, parse_option, setup_telemetry
from core.errors import NothingToRevertError, TweakError
from infra.telemetry.dispatcher import TelemetryManager, manager as telemetry_manager
from infra.telemetry.logger import LoggerSink

from conftest import make_tweak, reg


class BrokenSink:
    def emit(self, event, payload):
        raise RuntimeError("disk full")


class RecordingSink:
    def __init__(self):
        self.events = []

    def emit(self, event, payload):
        self.events.append((event, payload))


def test_failing_sink_does_not_break_dispatch():
    manager = TelemetryManager()
    recorder = RecordingSink()
    manager.register_sink(BrokenSink())
    manager.register_sink(recorder)

    manager.dispatch("apply", {"tweak_id": "t.a", "result": "success"})

    assert recorder.events == [("apply", {"tweak_id": "t.a", "result": "success"})]


def test_logger_sink_writes_json_lines():
    stream = io.StringIO()
    sink = LoggerSink(stream=stream)

    sink.emit("revert", {"tweak_id": "t.a", "result": "failure",
                         "error": NothingToRevertError("nothing")})

    entry = json.loads(stream.getvalue().strip())
    assert entry["event"] == "revert"
    assert entry["error"] == "nothing"
    assert entry["error_code"] == "NOT_FOUND"


def test_logger_sink_omits_noop_events():
    stream = io.StringIO()
    LoggerSink(stream=stream).emit("apply", {"result": "noop"})
    assert stream.getvalue() == ""


def test_setup_telemetry_hooks_engine(monkeypatch, tmp_path):
    monkeypatch.setattr(core_manager, "_hook", core_manager._hook)
    monkeypatch.setattr(telemetry_manager, "_sinks", [])
    log_file = tmp_path / "events.log"

    setup_telemetry(log_file=str(log_file))
    core_manager._hook("apply", {"tweak_id": "t.a", "result": "success"})

    assert json.loads(log_file.read_text(encoding="utf-8").strip())["tweak_id"] == "t.a"


class TestCli:

    def test_profile_import_arguments(self):
        args = build_parser().parse_args([
            "--os-version", "10", "profile", "import", "p.tcp",
            "--skip", "t.a", "--skip", "t.b", "--workers", "3",
        ])
        assert args.os_version == 10
        assert args.skip == ["t.a", "t.b"]
        assert args.workers == 3
        assert not args.include_applied

    def test_option_by_index_or_label(self):
        tweak = make_tweak("t.flag", [("Off", [reg("K", "A", 0)]), ("On", [reg("K", "A", 1)])])
        assert parse_option(tweak, "1") == 1
        assert parse_option(tweak, "off") == 0
        with pytest.raises(TweakError):
            parse_option(tweak, "Turbo")

import json

import pytest

from core.catalog import TweakCatalog
from core.errors import ConfigurationError
from core.tweak import PrivilegeLevel, TweakOption
from core.validation import TweakValidator, ValidationError

from conftest import make_tweak, reg, svc


PATH = "SOFTWARE\\Policies\\Test"


class TestOptionHash:

    def test_hash_ignores_label_and_change_order(self):
        a = TweakOption.from_dict({"label": "Off", "changes": [
            reg(PATH, "A", 0), svc("DiagTrack", "disabled"),
        ]})
        b = TweakOption.from_dict({"label": "Disabled", "changes": [
            svc("DiagTrack", "disabled"), reg(PATH, "A", 0),
        ]})
        assert a.content_hash() == b.content_hash()

    def test_hash_ignores_commands_and_tasks(self):
        plain = TweakOption.from_dict({"label": "x", "changes": [reg(PATH, "A", 0)]})
        with_extras = TweakOption.from_dict({"label": "x", "changes": [
            reg(PATH, "A", 0),
            {"type": "command", "text": "echo hi"},
            {"type": "scheduler", "folder_path": "\\T", "task_name": "N", "action": "disable"},
        ]})
        assert plain.content_hash() == with_extras.content_hash()

    def test_hash_changes_with_target(self):
        a = TweakOption.from_dict({"label": "x", "changes": [reg(PATH, "A", 0)]})
        b = TweakOption.from_dict({"label": "x", "changes": [reg(PATH, "A", 1)]})
        assert a.content_hash() != b.content_hash()


class TestTweakDefinition:

    def test_option_out_of_range(self):
        tweak = make_tweak("t.one", [("On", [reg(PATH, "A", 1)])])
        with pytest.raises(ConfigurationError):
            tweak.option(1)

    def test_label_lookup_is_case_insensitive(self):
        tweak = make_tweak("t.two", [("On", [reg(PATH, "A", 1)]), ("Off", [reg(PATH, "A", 0)])])
        assert tweak.find_option_by_label("off") == 1
        assert tweak.find_option_by_label("missing") is None

    def test_touched_changes_deduplicated_across_options(self):
        tweak = make_tweak("t.two", [
            ("On", [reg(PATH, "A", 1), svc("Svc", "automatic")]),
            ("Off", [reg(PATH, "a", 0), svc("svc", "disabled"), reg(PATH, "B", 0)]),
        ])
        keys = [c.resource_key for c in tweak.touched_changes()]
        assert len(keys) == 3

    def test_touched_changes_respects_os_filter(self):
        tweak = make_tweak("t.os", [
            ("On", [reg(PATH, "A", 1), reg(PATH, "Eleven", 1, os_versions=[11])]),
        ])
        assert len(tweak.touched_changes(10)) == 1
        assert len(tweak.touched_changes(11)) == 2

    def test_missing_mandatory_fields(self):
        from core.tweak import TweakDefinition
        with pytest.raises(ConfigurationError) as exc_info:
            TweakDefinition.from_dict({"id": "x"})
        assert "name" in str(exc_info.value)

    def test_privilege_parse_and_order(self):
        assert PrivilegeLevel.parse("ti") is PrivilegeLevel.TRUSTED_INSTALLER
        assert PrivilegeLevel.SYSTEM.satisfies(PrivilegeLevel.ADMIN)
        assert not PrivilegeLevel.ADMIN.satisfies(PrivilegeLevel.SYSTEM)


class TestValidator:

    def test_valid_definition(self):
        tweak = make_tweak("gaming.dvr@1.0", [("On", [reg(PATH, "A", 1)])])
        TweakValidator().validate_definition(tweak)

    def test_invalid_id(self):
        tweak = make_tweak("bad id", [("On", [reg(PATH, "A", 1)])])
        with pytest.raises(ValidationError):
            TweakValidator().validate_definition(tweak)

    def test_toggle_needs_two_options(self):
        tweak = make_tweak("t.toggle", [("On", [reg(PATH, "A", 1)])], is_toggle=True)
        with pytest.raises(ValidationError):
            TweakValidator().validate_definition(tweak)

    def test_duplicate_labels(self):
        tweak = make_tweak("t.dup", [("On", [reg(PATH, "A", 1)]), ("on", [reg(PATH, "A", 0)])])
        with pytest.raises(ValidationError):
            TweakValidator().validate_definition(tweak)

    def test_service_cannot_stop_and_start(self):
        tweak = make_tweak("t.svc", [
            ("On", [svc("Svc", "manual", stop_after=True, start_after=True)]),
        ])
        with pytest.raises(ValidationError):
            TweakValidator().validate_definition(tweak)

    def test_task_folder_must_be_rooted(self):
        tweak = make_tweak("t.task", [("On", [
            {"type": "scheduler", "folder_path": "Microsoft", "task_name": "X", "action": "disable"},
        ])])
        with pytest.raises(ValidationError):
            TweakValidator().validate_definition(tweak)

    def test_alias_collision_in_catalog(self):
        a = make_tweak("t.a", [("On", [reg(PATH, "A", 1)])], aliases=["old"])
        b = make_tweak("t.b", [("On", [reg(PATH, "B", 1)])], aliases=["old"])
        with pytest.raises(ValidationError):
            TweakValidator().validate_catalog([a, b])


class TestCatalog:

    def test_resolve_by_alias(self):
        tweak = make_tweak("gaming.dvr", [("On", [reg(PATH, "A", 1)])], aliases=["011"])
        catalog = TweakCatalog([tweak])
        assert catalog.resolve("gaming.dvr") == (tweak, False)
        assert catalog.resolve("011") == (tweak, True)
        assert catalog.resolve("nope") == (None, False)
        assert "011" in catalog

    def test_load_directory(self, tmp_path):
        bundle = {"tweaks": [
            {"id": "t.a", "name": "A", "options": [{"label": "On", "changes": [reg(PATH, "A", 1)]}]},
        ]}
        single = {"id": "t.b", "name": "B", "options": [{"label": "On", "changes": [reg(PATH, "B", 1)]}]}
        (tmp_path / "bundle.json").write_text(json.dumps(bundle), encoding="utf-8")
        (tmp_path / "single.json").write_text(json.dumps(single), encoding="utf-8")

        catalog = TweakCatalog.load_directory(tmp_path)
        assert len(catalog) == 2
        assert catalog.get("t.b").name == "B"

    def test_load_directory_reports_bad_file(self, tmp_path):
        (tmp_path / "broken.json").write_text("{not json", encoding="utf-8")
        with pytest.raises(ConfigurationError) as exc_info:
            TweakCatalog.load_directory(tmp_path)
        assert "broken.json" in str(exc_info.value)

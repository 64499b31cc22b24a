import json
import zipfile

import pytest

from core.catalog import TweakCatalog
from core.changes import Hive, StartupMode
from core.errors import ChecksumMismatch, InvalidArchive, RuntimeFailure, SchemaError, SchemaVersionTooNew
from core.profile import (
    ApplyOptions,
    ConfigurationProfile,
    ErrorCode,
    ProfileApplier,
    ProfileExporter,
    ProfileResolver,
    WarningCode,
    import_profile,
    migrate,
    read_archive,
    write_archive,
)
from core.profile.models import ProfileMetadata, TweakSelection
from core.values import RegistryValue

from conftest import make_tweak, reg, svc


PATH = "SOFTWARE\\Policies\\Test"


def profile_of(*selections, source_os=11):
    return ConfigurationProfile(
        metadata=ProfileMetadata(
            name="test",
            created_at="2025-01-01T00:00:00+00:00",
            source_os_version=source_os,
            producing_app_version="1.2.0",
        ),
        selections=list(selections),
    )


def codes(issues):
    return [i.code for i in issues]


def toggle(tweak_id, name="Flag", **fields):
    return make_tweak(tweak_id, [
        ("Off", [reg(PATH, name, 0)]),
        ("On", [reg(PATH, name, 1)]),
    ], **fields)


class TestMigration:

    def test_v1_envelope_is_upgraded(self):
        raw = {
            "metadata": {"name": "old", "windows_version": 10, "app_version": "0.9"},
            "selections": [{"tweak_id": "t.flag", "option_index": 1, "option_label": "On"}],
        }

        profile, notes = migrate(raw)

        assert [(n.from_version, n.to_version) for n in notes] == [(1, 2), (2, 3)]
        assert profile.metadata.source_os_version == 10
        assert profile.metadata.producing_app_version == "0.9"
        selection = profile.selections[0]
        assert selection.selected_option_index == 1
        assert selection.selected_option_label == "On"
        assert selection.option_content_hash is None
        assert "option_index" in raw["selections"][0]

    def test_current_envelope_needs_no_notes(self):
        profile = profile_of(TweakSelection("t.flag", 0))
        migrated, notes = migrate(profile.to_dict())
        assert notes == []
        assert migrated.selections == profile.selections

    def test_newer_schema_refused(self):
        with pytest.raises(SchemaVersionTooNew):
            migrate({"schema_version": 5, "selections": []})

    def test_invalid_version_refused(self):
        with pytest.raises(SchemaError):
            migrate({"schema_version": "three"})


class TestArchive:

    def test_round_trip_with_baseline(self, tmp_path, adapters):
        adapters.registry.seed(Hive.HKLM, PATH, "Flag", RegistryValue.dword(1))
        catalog = TweakCatalog([toggle("t.flag")])
        exporter = ProfileExporter(catalog, adapters, 11)
        path = tmp_path / "mine.tcp"

        exported = exporter.export(path, "mine", include_baseline=True)
        raw = read_archive(path)
        profile, _ = migrate(raw)

        assert profile.selections == exported.selections
        assert profile.baseline_system_state.registry[0]["value"] == {"kind": "REG_DWORD", "data": 1}
        with zipfile.ZipFile(path) as zf:
            assert sorted(zf.namelist()) == ["manifest.json", "profile.json", "system_state.json"]

    def test_tampered_profile_detected(self, tmp_path):
        path = tmp_path / "p.tcp"
        write_archive(path, profile_of(TweakSelection("t.flag", 1)))

        with zipfile.ZipFile(path) as zf:
            manifest = zf.read("manifest.json")
        tampered = tmp_path / "tampered.tcp"
        with zipfile.ZipFile(tampered, "w") as zf:
            zf.writestr("profile.json", json.dumps({"schema_version": 3, "selections": []}))
            zf.writestr("manifest.json", manifest)

        with pytest.raises(ChecksumMismatch):
            read_archive(tampered)

    def test_not_a_zip(self, tmp_path):
        path = tmp_path / "junk.tcp"
        path.write_bytes(b"definitely not a zip")
        with pytest.raises(InvalidArchive):
            read_archive(path)

    def test_missing_manifest(self, tmp_path):
        path = tmp_path / "bare.tcp"
        with zipfile.ZipFile(path, "w") as zf:
            zf.writestr("profile.json", "{}")
        with pytest.raises(InvalidArchive):
            read_archive(path)


class TestResolver:

    def resolver(self, adapters, *tweaks, **kwargs):
        return ProfileResolver(TweakCatalog(tweaks), adapters, **kwargs)

    def test_option_found_by_hash_after_reordering(self, adapters):
        exported = toggle("t.flag")
        on_hash = exported.options[1].content_hash()
        reordered = make_tweak("t.flag", [
            ("Enabled", [reg(PATH, "Flag", 1)]),
            ("Disabled", [reg(PATH, "Flag", 0)]),
        ])

        validation = self.resolver(adapters, reordered).validate(
            profile_of(TweakSelection("t.flag", 1, on_hash, "On")), 11
        )

        assert validation.is_valid
        assert validation.preview[0].target_option_index == 0
        assert WarningCode.OPTION_RESOLVED_BY_HASH in codes(validation.warnings)

    def test_selected_index_kept_when_options_share_a_hash(self, adapters):
        tasks = "\\Microsoft\\Windows\\Customer Experience Improvement Program"
        tweak = make_tweak("t.ceip_task", [
            ("Enabled", [{"type": "scheduler", "folder_path": tasks,
                          "task_name": "Consolidator", "action": "enable"}]),
            ("Disabled", [{"type": "scheduler", "folder_path": tasks,
                           "task_name": "Consolidator", "action": "disable"}]),
        ])
        adapters.scheduler.add(tasks, "Consolidator")
        disabled_hash = tweak.options[1].content_hash()
        assert tweak.find_options_by_hash(disabled_hash) == [0, 1]

        validation = self.resolver(adapters, tweak).validate(
            profile_of(TweakSelection("t.ceip_task", 1, disabled_hash, "Disabled")), 11
        )

        item = validation.preview[0]
        assert (item.target_option_index, item.target_option_label) == (1, "Disabled")
        assert WarningCode.OPTION_RESOLVED_BY_HASH not in codes(validation.warnings)

    def test_ambiguous_hash_match_is_reported(self, adapters):
        tweak = make_tweak("t.flag", [
            ("Off", [reg(PATH, "Flag", 0)]),
            ("Off again", [reg(PATH, "Flag", 0)]),
            ("On", [reg(PATH, "Flag", 1)]),
        ])
        off_hash = tweak.options[0].content_hash()

        validation = self.resolver(adapters, tweak).validate(
            profile_of(TweakSelection("t.flag", 2, off_hash)), 11
        )

        assert validation.preview[0].target_option_index == 0
        moved = [w for w in validation.warnings if w.code is WarningCode.OPTION_RESOLVED_BY_HASH]
        assert "ambiguous" in moved[0].message

    def test_changed_option_falls_back_to_index(self, adapters):
        validation = self.resolver(adapters, toggle("t.flag")).validate(
            profile_of(TweakSelection("t.flag", 1, "0" * 64)), 11
        )
        assert validation.preview[0].target_option_index == 1
        assert WarningCode.TWEAK_SCHEMA_CHANGED in codes(validation.warnings)

    def test_alias_resolution_warns(self, adapters):
        validation = self.resolver(adapters, toggle("t.new", aliases=["t.old"])).validate(
            profile_of(TweakSelection("t.old", 0)), 11
        )
        assert validation.preview[0].tweak_id == "t.new"
        assert WarningCode.TWEAK_RESOLVED_BY_ALIAS in codes(validation.warnings)

    def test_unknown_tweak_and_bad_index(self, adapters):
        validation = self.resolver(adapters, toggle("t.flag")).validate(profile_of(
            TweakSelection("t.gone", 0),
            TweakSelection("t.flag", 7),
        ), 11)

        assert not validation.is_valid
        assert codes(validation.errors) == [ErrorCode.TWEAK_NOT_FOUND, ErrorCode.INVALID_OPTION_INDEX]
        assert validation.preview == []
        assert validation.stats.skipped == 2
        assert not validation.blocks_apply

    def test_missing_service_marks_item_not_applicable(self, adapters):
        tweak = make_tweak("t.svc", [("Off", [svc("Missing", "disabled")])])
        good = toggle("t.flag")

        validation = self.resolver(adapters, tweak, good).validate(profile_of(
            TweakSelection("t.svc", 0),
            TweakSelection("t.flag", 1),
        ), 11)

        assert not validation.is_valid
        assert validation.is_partially_applicable
        assert ErrorCode.SERVICE_NOT_FOUND in codes(validation.errors)
        item = validation.preview_for("t.svc")
        assert not item.applicable
        assert "Missing" in item.skip_reason

    def test_insufficient_privilege(self, adapters):
        tweak = toggle("t.sys", privilege="system")
        validation = self.resolver(adapters, tweak).validate(
            profile_of(TweakSelection("t.sys", 1)), 11
        )
        assert ErrorCode.INSUFFICIENT_PERMISSIONS in codes(validation.errors)
        assert not validation.preview[0].applicable

    def test_already_applied_and_preview_values(self, adapters):
        adapters.registry.seed(Hive.HKLM, PATH, "Flag", RegistryValue.dword(1))
        validation = self.resolver(adapters, toggle("t.flag")).validate(
            profile_of(TweakSelection("t.flag", 1)), 11
        )
        item = validation.preview[0]
        assert item.already_applied
        assert item.current_option_label == "On"
        assert item.changes[0].current_value == "REG_DWORD:1"
        assert WarningCode.ALREADY_APPLIED in codes(validation.warnings)

    def test_os_mismatch_warning(self, adapters):
        validation = self.resolver(adapters, toggle("t.flag")).validate(
            profile_of(TweakSelection("t.flag", 1), source_os=10), 11
        )
        assert validation.is_valid
        assert WarningCode.OS_VERSION_MISMATCH in codes(validation.warnings)

    def test_import_rejects_newer_schema(self, adapters):
        profile, validation, _ = import_profile(
            {"schema_version": 9, "selections": []}, self.resolver(adapters), 11
        )
        assert profile is None
        assert validation.blocks_apply
        assert codes(validation.errors) == [ErrorCode.SCHEMA_VERSION_TOO_NEW]

    def test_import_rejects_damaged_file(self, adapters, tmp_path):
        path = tmp_path / "junk.tcp"
        path.write_bytes(b"junk")
        profile, validation, _ = import_profile(path, self.resolver(adapters), 11)
        assert profile is None
        assert codes(validation.errors) == [ErrorCode.INVALID_ARCHIVE]


    @pytest.mark.parametrize("raw", [
        {"schema_version": 3, "metadata": {"source_os_version": "Windows 11"}, "selections": []},
        {"schema_version": 3, "metadata": "oops", "selections": []},
        {"schema_version": 3, "selections": [{"tweak_id": ["a"], "selected_option_index": 0}]},
        {"schema_version": 3, "selections": [{"tweak_id": "t.flag", "selected_option_index": "1"}]},
        {"schema_version": 3, "selections": "t.flag"},
        {"schema_version": 1, "selections": [5]},
        {"schema_version": 2, "metadata": ["windows_version"], "selections": []},
    ], ids=[
        "metadata-value", "metadata-type", "tweak-id-type", "index-type",
        "selections-type", "v1-selection-entry", "v2-metadata-type",
    ])
    def test_import_rejects_malformed_fields(self, adapters, raw):
        profile, validation, notes = import_profile(raw, self.resolver(adapters, toggle("t.flag")), 11)

        assert profile is None
        assert not validation.is_valid
        assert codes(validation.errors) == [ErrorCode.INVALID_ARCHIVE]
        assert notes == []


class TestApplier:

    def run(self, adapters, make_manager, tweaks, selections, **options):
        manager = make_manager(*tweaks)
        profile = profile_of(*selections)
        validation = ProfileResolver(manager.catalog, adapters).validate(profile, 11)
        result = ProfileApplier(manager).apply(profile, validation, ApplyOptions(**options))
        return manager, result

    def test_one_broken_tweak_does_not_stop_the_batch(self, adapters, make_manager):
        adapters.registry.fail_once.add("broken")
        tweaks = [toggle("t.a", "A"), toggle("t.broken", "Broken"), toggle("t.c", "C")]

        manager, result = self.run(adapters, make_manager, tweaks, [
            TweakSelection("t.a", 1), TweakSelection("t.broken", 1), TweakSelection("t.c", 1),
        ])

        assert result.applied_count == 2
        assert [t for t, _ in result.failed_tweaks] == ["t.broken"]
        assert not result.success
        assert sorted(result.touched_snapshot_ids) == ["t.a", "t.c"]
        assert adapters.registry.get(Hive.HKLM, PATH, "Broken") is None

    def test_already_applied_and_skipped_ids(self, adapters, make_manager):
        adapters.registry.seed(Hive.HKLM, PATH, "A", RegistryValue.dword(1))
        tweaks = [toggle("t.a", "A"), toggle("t.b", "B"), toggle("t.c", "C")]

        _, result = self.run(adapters, make_manager, tweaks, [
            TweakSelection("t.a", 1), TweakSelection("t.b", 1), TweakSelection("t.c", 1),
        ], skip_ids=("t.b",))

        assert result.applied_count == 1
        assert result.skipped_count == 2
        assert result.success

    def test_skip_list_matches_selections_exported_under_an_alias(self, adapters, make_manager):
        tweaks = [toggle("t.new", "New", aliases=["t.old"]), toggle("t.other", "Other")]

        _, result = self.run(adapters, make_manager, tweaks, [
            TweakSelection("t.old", 1), TweakSelection("t.other", 1),
        ], skip_ids=("t.new",))

        assert result.applied_count == 1
        assert result.skipped_count == 1
        assert adapters.registry.get(Hive.HKLM, PATH, "New") is None

    def test_skip_list_may_name_an_alias(self, adapters, make_manager):
        tweaks = [toggle("t.new", "New", aliases=["t.old"])]

        _, result = self.run(adapters, make_manager, tweaks, [
            TweakSelection("t.new", 1),
        ], skip_ids=("t.old",))

        assert result.applied_count == 0
        assert result.skipped_count == 1

    def test_reboot_and_warnings_collected(self, adapters, make_manager):
        adapters.services.add("Svc", StartupMode.MANUAL, running=True)
        adapters.services.fail_stop.add("svc")
        tweak = make_tweak("t.svc", [
            ("Off", [svc("Svc", "disabled", stop_after=True)]),
        ], requires_reboot=True)

        _, result = self.run(adapters, make_manager, [tweak], [TweakSelection("t.svc", 0)])

        assert result.requires_reboot
        assert result.reboot_required_tweaks == ["t.svc"]
        assert "t.svc" in result.warnings

    def test_restore_point_failure_applies_nothing(self, adapters, make_manager):
        def failing_hook():
            raise OSError("System Restore is disabled")

        with pytest.raises(RuntimeFailure):
            self.run(adapters, make_manager, [toggle("t.a", "A")], [TweakSelection("t.a", 1)],
                     create_restore_point_hook=failing_hook)

        assert adapters.registry.writes == []

    def test_rollback_failure_halts_the_batch(self, adapters, make_manager):
        adapters.registry.seed(Hive.HKLM, PATH, "A", RegistryValue.dword(0))
        adapters.registry.fail_on.add("a")
        tweaks = [toggle("t.a", "A"), toggle("t.b", "B")]

        _, result = self.run(adapters, make_manager, tweaks, [
            TweakSelection("t.a", 1), TweakSelection("t.b", 1),
        ])

        assert result.rollback_failures == ["t.a"]
        assert result.applied_count == 0
        assert result.skipped_count == 1

    def test_parallel_workers(self, adapters, make_manager):
        tweaks = [toggle(f"t.{n}", n) for n in ("a", "b", "c", "d")]
        _, result = self.run(adapters, make_manager, tweaks, [
            TweakSelection(t.id, 1) for t in tweaks
        ], max_workers=4)
        assert result.applied_count == 4


class TestExporter:

    def test_only_detected_tweaks_exported(self, adapters):
        adapters.registry.seed(Hive.HKLM, PATH, "A", RegistryValue.dword(0))
        catalog = TweakCatalog([toggle("t.a", "A"), toggle("t.b", "B")])

        profile = ProfileExporter(catalog, adapters, 11).build_profile("mine")

        assert len(profile.selections) == 1
        selection = profile.selections[0]
        assert (selection.tweak_id, selection.selected_option_index) == ("t.a", 0)
        assert selection.option_content_hash == catalog.get("t.a").options[0].content_hash()
        assert profile.metadata.source_os_version == 11

    def test_exported_profile_reimports_as_already_applied(self, adapters, tmp_path):
        adapters.registry.seed(Hive.HKLM, PATH, "A", RegistryValue.dword(1))
        catalog = TweakCatalog([toggle("t.a", "A")])
        path = tmp_path / "mine.tcp"
        ProfileExporter(catalog, adapters, 11).export(path, "mine")

        profile, validation, notes = import_profile(path, ProfileResolver(catalog, adapters), 11)

        assert notes == []
        assert validation.is_valid
        assert validation.preview[0].already_applied

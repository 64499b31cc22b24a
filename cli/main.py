import sys
import argparse
import logging
from pathlib import Path

from infra.telemetry.dispatcher import manager as telemetry_manager
from infra.telemetry.logger import LoggerSink
import core.tweak_manager as core_manager
from core.catalog import TweakCatalog
from core.constants import APP_NAME, ENGINE_VERSION, PROFILE_EXTENSION, data_dir
from core.errors import RollbackFailure, TweakError
from core.profile import (
    ApplyOptions,
    ProfileApplier,
    ProfileExporter,
    ProfileResolver,
    import_profile,
)
from core.recovery import RecoveryManager
from utils.admin import current_privilege, require_admin

EXIT_OK = 0
EXIT_FAILURE = 1
EXIT_ROLLBACK_FAILURE = 2

MUTATING_COMMANDS = ("apply", "revert", "recover")


def setup_telemetry(log_file=None):
    sink = LoggerSink(log_file)
    telemetry_manager.register_sink(sink)

    def hooked_handler(event, ctx):
        telemetry_manager.dispatch(event, ctx)

    core_manager._hook = hooked_handler


class Context:
    """Live-system wiring shared by every command."""

    def __init__(self, args):
        from infra.windows.system import build_adapters, current_os_version

        self.privilege = current_privilege()
        self.os_version = args.os_version or current_os_version()
        self.adapters = build_adapters(self.privilege)
        tweaks_dir = Path(args.tweaks) if args.tweaks else data_dir() / "tweaks"
        self.catalog = TweakCatalog.load_directory(tweaks_dir)
        self.manager = core_manager.TweakManager(
            self.adapters, self.catalog, self.os_version, privilege=self.privilege
        )

    def lookup(self, tweak_id):
        tweak, via_alias = self.catalog.resolve(tweak_id)
        if tweak is None:
            raise TweakError(f"Unknown tweak: '{tweak_id}'")
        if via_alias:
            print(f"[INFO] '{tweak_id}' is now '{tweak.id}'")
        return tweak


def run_recovery_check(ctx: Context) -> int:
    """Undo interrupted operations and drop stale snapshots."""
    recovery = RecoveryManager(ctx.manager.store)

    print("[STARTUP] Scanning for interrupted operations...")
    try:
        results = recovery.run_startup(ctx.catalog, ctx.os_version)
    except RollbackFailure as e:
        print(f"[CRITICAL] {e}")
        for failure in e.failures:
            print(f"  - {failure}")
        return EXIT_ROLLBACK_FAILURE

    if results["issues_found"] or results["stale_removed"]:
        print("[RECOVERY SUMMARY]")
        print(f"  Issues found: {results['issues_found']}")
        print(f"  Recovered: {results['recovered']}")
        print(f"  Stale snapshots removed: {results['stale_removed']}")
    else:
        print("[OK] No issues found")
    return EXIT_OK


def parse_option(tweak, value: str) -> int:
    if value.isdigit():
        return int(value)
    index = tweak.find_option_by_label(value)
    if index is None:
        labels = ", ".join(o.label for o in tweak.options)
        raise TweakError(f"'{tweak.id}' has no option '{value}' (options: {labels})")
    return index


def cmd_list(ctx: Context, args) -> int:
    for tweak in sorted(ctx.catalog, key=lambda t: t.id):
        status = ctx.manager.status(tweak)
        current = status["detected_label"] or "custom"
        marker = "*" if status["has_snapshot"] else " "
        print(f"{marker} {tweak.id:<40} {current:<20} {tweak.name}")
    return EXIT_OK


def cmd_status(ctx: Context, args) -> int:
    tweak = ctx.lookup(args.tweak_id)
    status = ctx.manager.status(tweak)
    print(f"[STATUS] {tweak.id} ({tweak.name})")
    print(f"  Detected option: {status['detected_label'] or 'custom'}")
    if status["has_snapshot"]:
        print(f"  Snapshot: '{status['snapshot_option']}' since {status['snapshot_created_at']}")
    else:
        print("  Snapshot: none")
    for option_index, option in enumerate(tweak.options):
        print(f"  [{option_index}] {option.label}")
    return EXIT_OK


def cmd_apply(ctx: Context, args) -> int:
    tweak = ctx.lookup(args.tweak_id)
    outcome = ctx.manager.apply_option(tweak, parse_option(tweak, args.option))

    if outcome.already_applied:
        print(f"[OK] {tweak.id} already at '{outcome.option_label}'")
        return EXIT_OK
    for warning in outcome.warnings:
        print(f"[WARNING] {warning}")
    print(f"[OK] {tweak.id} -> '{outcome.option_label}'")
    if outcome.requires_reboot:
        print("[INFO] Reboot required")
    return EXIT_OK


def cmd_revert(ctx: Context, args) -> int:
    outcome = ctx.manager.revert_tweak(args.tweak_id)
    print(f"[OK] {outcome.tweak_id} reverted from '{outcome.reverted_option_label}'"
          f" ({outcome.restored_resources} resources restored)")
    if outcome.requires_reboot:
        print("[INFO] Reboot required")
    return EXIT_OK


def cmd_recover(ctx: Context, args) -> int:
    print("[MANUAL RECOVERY MODE]")
    return run_recovery_check(ctx)


def cmd_profile_export(ctx: Context, args) -> int:
    path = Path(args.path)
    if not path.suffix:
        path = path.with_suffix(PROFILE_EXTENSION)
    exporter = ProfileExporter(ctx.catalog, ctx.adapters, ctx.os_version)
    profile = exporter.export(
        path,
        args.name,
        description=args.description,
        tweak_ids=args.tweak or None,
        include_baseline=args.baseline,
    )
    print(f"[OK] Exported {len(profile.selections)} selection(s) to {path}")
    return EXIT_OK


def print_validation(validation, notes) -> None:
    for note in notes:
        print(f"[MIGRATED] v{note.from_version} -> v{note.to_version}: {note.message}")
    for issue in validation.errors:
        print(f"[ERROR] {issue.code.value}: {issue.message}")
    for issue in validation.warnings:
        print(f"[WARNING] {issue.code.value}: {issue.message}")
    for preview in validation.preview:
        if not preview.applicable:
            state = f"skip ({preview.skip_reason})"
        elif preview.already_applied:
            state = "already applied"
        else:
            state = f"{preview.current_option_label or 'custom'} -> {preview.target_option_label}"
        print(f"  {preview.tweak_id:<40} {state}")
        for change in preview.changes:
            print(f"      {change.description}: {change.current_value} -> {change.new_value}")

    stats = validation.stats
    print(f"[SUMMARY] {stats.total} tweak(s): {stats.applicable} applicable, "
          f"{stats.already_applied} already applied, {stats.skipped} skipped")


def cmd_profile_validate(ctx: Context, args) -> int:
    resolver = ProfileResolver(ctx.catalog, ctx.adapters, ctx.privilege)
    profile, validation, notes = import_profile(Path(args.path), resolver, ctx.os_version)
    print_validation(validation, notes)
    return EXIT_OK if profile is not None and not validation.blocks_apply else EXIT_FAILURE


def cmd_profile_import(ctx: Context, args) -> int:
    resolver = ProfileResolver(ctx.catalog, ctx.adapters, ctx.privilege)
    profile, validation, notes = import_profile(Path(args.path), resolver, ctx.os_version)
    print_validation(validation, notes)
    if profile is None or validation.blocks_apply:
        print("[ERROR] Profile cannot be applied")
        return EXIT_FAILURE

    options = ApplyOptions(
        skip_ids=tuple(args.skip or ()),
        skip_already_applied=not args.include_applied,
        max_workers=args.workers,
    )
    result = ProfileApplier(ctx.manager).apply(profile, validation, options)

    for tweak_id, warnings in result.warnings.items():
        for warning in warnings:
            print(f"[WARNING] {tweak_id}: {warning}")
    for tweak_id, error in result.failed_tweaks:
        print(f"[FAILED] {tweak_id}: {error}")
    print(f"[SUMMARY] applied {result.applied_count}, skipped {result.skipped_count}, "
          f"failed {len(result.failed_tweaks)}")
    if result.requires_reboot:
        print(f"[INFO] Reboot required by: {', '.join(result.reboot_required_tweaks)}")

    if result.rollback_failures:
        return EXIT_ROLLBACK_FAILURE
    return EXIT_OK if result.success else EXIT_FAILURE


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="main.py",
        description=f"{APP_NAME} {ENGINE_VERSION} - transactional Windows tweak engine",
    )
    parser.add_argument("--log-file", type=str, default=None)
    parser.add_argument("--verbose", action="store_true")
    parser.add_argument("--os-version", type=int, default=None)
    parser.add_argument("--tweaks", type=str, default=None,
                        help="directory of tweak definition files")
    sub = parser.add_subparsers(dest="command")

    sub.add_parser("list").set_defaults(func=cmd_list)

    p_status = sub.add_parser("status")
    p_status.add_argument("tweak_id")
    p_status.set_defaults(func=cmd_status)

    p_apply = sub.add_parser("apply")
    p_apply.add_argument("tweak_id")
    p_apply.add_argument("option", help="option index or label")
    p_apply.set_defaults(func=cmd_apply)

    p_revert = sub.add_parser("revert")
    p_revert.add_argument("tweak_id")
    p_revert.set_defaults(func=cmd_revert)

    sub.add_parser("recover").set_defaults(func=cmd_recover)

    p_profile = sub.add_parser("profile")
    profile_sub = p_profile.add_subparsers(dest="profile_command")

    p_export = profile_sub.add_parser("export")
    p_export.add_argument("path")
    p_export.add_argument("--name", required=True)
    p_export.add_argument("--description", default=None)
    p_export.add_argument("--tweak", action="append")
    p_export.add_argument("--baseline", action="store_true")
    p_export.set_defaults(func=cmd_profile_export)

    p_validate = profile_sub.add_parser("validate")
    p_validate.add_argument("path")
    p_validate.set_defaults(func=cmd_profile_validate)

    p_import = profile_sub.add_parser("import")
    p_import.add_argument("path")
    p_import.add_argument("--skip", action="append")
    p_import.add_argument("--include-applied", action="store_true")
    p_import.add_argument("--workers", type=int, default=1)
    p_import.set_defaults(func=cmd_profile_import)

    return parser


def main(argv=None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)

    if not hasattr(args, "func"):
        parser.print_help()
        return EXIT_FAILURE

    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.WARNING,
        format="%(levelname)s %(name)s: %(message)s",
    )
    setup_telemetry(log_file=args.log_file)

    if args.command in MUTATING_COMMANDS or getattr(args, "profile_command", None) == "import":
        require_admin()

    try:
        ctx = Context(args)
        if args.command != "recover":
            code = run_recovery_check(ctx)
            if code != EXIT_OK:
                return code
        return args.func(ctx, args)
    except RollbackFailure as e:
        print(f"[CRITICAL] {e}")
        for failure in e.failures:
            print(f"  - {failure}")
        return EXIT_ROLLBACK_FAILURE
    except TweakError as e:
        print(f"[ERROR] {e.code}: {e.message}")
        return EXIT_FAILURE


if __name__ == "__main__":
    sys.exit(main())

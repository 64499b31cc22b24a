import logging
import threading
from concurrent.futures import ThreadPoolExecutor
from typing import Any, List, Optional, Tuple

from ..errors import RollbackFailure, RuntimeFailure
from ..tweak_manager import TweakManager
from .models import (
    ApplyOptions,
    ApplyResult,
    ConfigurationProfile,
    ProfileValidation,
    TweakChangePreview,
)

logger = logging.getLogger(__name__)


class ProfileApplier:
    """
    Applies the resolved selections of a validated profile.

    Each selection goes through the engine on its own: a failing tweak is
    recorded and the batch moves on. A rollback failure stops the batch,
    since the machine may be left inconsistent.
    """

    def __init__(self, manager: TweakManager):
        self.manager = manager

    def apply(
        self,
        profile: ConfigurationProfile,
        validation: ProfileValidation,
        options: Optional[ApplyOptions] = None,
    ) -> ApplyResult:
        options = options or ApplyOptions()
        result = ApplyResult()

        if validation.blocks_apply:
            logger.warning("profile '%s' cannot be applied", profile.metadata.name)
            result.skipped_count = len(profile.selections)
            return result

        queue = self._plan(validation, options, result)
        if not queue:
            return result

        if options.create_restore_point_hook is not None:
            try:
                options.create_restore_point_hook()
            except Exception as e:
                raise RuntimeFailure(
                    f"Restore point creation failed; nothing was applied: {e}"
                ) from e

        halted = threading.Event()
        workers = max(1, options.max_workers)

        with ThreadPoolExecutor(max_workers=workers) as pool:
            futures = [pool.submit(self._apply_one, p, halted) for p in queue]
            for future in futures:
                self._record(result, *future.result())

        logger.info(
            "profile '%s': %d applied, %d skipped, %d failed",
            profile.metadata.name, result.applied_count,
            result.skipped_count, len(result.failed_tweaks),
        )
        return result

    def _plan(
        self,
        validation: ProfileValidation,
        options: ApplyOptions,
        result: ApplyResult,
    ) -> List[TweakChangePreview]:
        skip_ids = {self._canonical_id(t) for t in options.skip_ids}
        queue: List[TweakChangePreview] = []

        result.skipped_count += validation.unresolved
        for preview in validation.preview:
            if preview.tweak_id in skip_ids:
                result.skipped_count += 1
            elif not preview.applicable:
                logger.info("skipping %s: %s", preview.tweak_id, preview.skip_reason)
                result.skipped_count += 1
            elif preview.already_applied and options.skip_already_applied:
                result.skipped_count += 1
            else:
                queue.append(preview)
        return queue

    def _canonical_id(self, tweak_id: str) -> str:
        tweak, _ = self.manager.catalog.resolve(tweak_id)
        return tweak.id if tweak is not None else tweak_id

    def _apply_one(
        self, preview: TweakChangePreview, halted: threading.Event
    ) -> Tuple[str, TweakChangePreview, Any]:
        if halted.is_set():
            return "halted", preview, None

        tweak = self.manager.catalog.get(preview.tweak_id)
        try:
            outcome = self.manager.apply_option(tweak, preview.target_option_index)
            return "ok", preview, outcome
        except RollbackFailure as e:
            halted.set()
            return "rollback_failure", preview, e
        except Exception as e:
            return "failed", preview, e

    def _record(
        self, result: ApplyResult, status: str, preview: TweakChangePreview, payload: Any
    ) -> None:
        tweak_id = preview.tweak_id

        if status == "halted":
            result.skipped_count += 1
        elif status == "rollback_failure":
            logger.critical("%s: rollback failed, batch halted: %s", tweak_id, payload)
            result.failed_tweaks.append((tweak_id, str(payload)))
            result.rollback_failures.append(tweak_id)
        elif status == "failed":
            logger.error("%s failed: %s", tweak_id, payload)
            result.failed_tweaks.append((tweak_id, str(payload)))
        elif payload.already_applied:
            result.skipped_count += 1
        else:
            result.applied_count += 1
            result.touched_snapshot_ids.append(tweak_id)
            if payload.warnings:
                result.warnings[tweak_id] = list(payload.warnings)
            if payload.requires_reboot:
                result.requires_reboot = True
                result.reboot_required_tweaks.append(tweak_id)

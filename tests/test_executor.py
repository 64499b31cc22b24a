import threading

import pytest

from core.executor import Executor, FailurePolicy, StepFailed
from core.locks import TweakLockRegistry


class Step:
    def __init__(self, description, policy=FailurePolicy.ROLLBACK, error=None, warnings=None):
        self.description = description
        self.policy = policy
        self.error = error
        self.warnings = warnings or []
        self.ran = False

    def execute(self):
        self.ran = True
        if self.error:
            raise self.error
        return self.warnings


class TestExecutor:

    def test_collects_warnings_in_order(self):
        steps = [Step("a", warnings=["w1"]), Step("b"), Step("c", warnings=["w2"])]
        assert Executor().run_steps(steps) == ["w1", "w2"]

    def test_stops_at_first_failure(self):
        failing = Step("b", error=OSError("denied"))
        after = Step("c")

        with pytest.raises(StepFailed) as exc_info:
            Executor().run_steps([Step("a"), failing, after])

        assert exc_info.value.step is failing
        assert isinstance(exc_info.value.error, OSError)
        assert not after.ran

    def test_warn_policy_continues(self):
        after = Step("c")
        warnings = Executor().run_steps([
            Step("b", policy=FailurePolicy.WARN, error=RuntimeError("flaky")),
            after,
        ])
        assert warnings == ["b: flaky"]
        assert after.ran


class TestLocks:

    def test_same_id_shares_a_lock(self):
        locks = TweakLockRegistry()
        assert locks.lock_for("a") is locks.lock_for("a")
        assert locks.lock_for("a") is not locks.lock_for("b")

    def test_hold_is_reentrant(self):
        locks = TweakLockRegistry()
        with locks.hold("a"):
            with locks.hold("a"):
                pass

    def test_hold_blocks_other_threads(self):
        locks = TweakLockRegistry()
        acquired = []

        with locks.hold("a"):
            worker = threading.Thread(
                target=lambda: acquired.append(locks.lock_for("a").acquire(timeout=0.05))
            )
            worker.start()
            worker.join()

        assert acquired == [False]

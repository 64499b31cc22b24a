from enum import Enum
from typing import Dict

class TweakState(Enum):
    PENDING = "pending"
    APPLYING = "applying"
    APPLIED = "applied"
    FAILED = "failed"
    ROLLED_BACK = "rolled_back"
    REVERTING = "reverting"
    REVERTED = "reverted"
    RECOVERED = "recovered"
    ORPHANED = "orphaned"

TRANSITIONS: Dict['TweakState', Dict[str, 'TweakState']] = {
    TweakState.PENDING: {
        "apply": TweakState.APPLYING,
        "revert": TweakState.REVERTING,
        "recover": TweakState.RECOVERED,
    },
    TweakState.APPLYING: {
        "success": TweakState.APPLIED,
        "rollback": TweakState.ROLLED_BACK,
        "fail": TweakState.FAILED,
        "recover": TweakState.RECOVERED,
    },
    TweakState.REVERTING: {
        "success": TweakState.REVERTED,
        "fail": TweakState.FAILED,
        "recover": TweakState.RECOVERED,
    },
    TweakState.APPLIED: {},
    TweakState.FAILED: {},
    TweakState.ROLLED_BACK: {},
    TweakState.REVERTED: {},
    TweakState.RECOVERED: {},
    TweakState.ORPHANED: {},
}

# Entries left in these states were interrupted mid-operation.
IN_FLIGHT = (TweakState.PENDING, TweakState.APPLYING, TweakState.REVERTING)

def can_transition(state: TweakState, action: str) -> bool:
    return action in TRANSITIONS.get(state, {})

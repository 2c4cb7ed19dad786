from __future__ import annotations

from enum import Enum
from typing import TypeVar

from .models import PreconditionError, StageError


class DoublesStage(str, Enum):
    UNLOCKED = "unlocked"
    FORMAT_LOCKED = "format_locked"
    CHECK_IN_LOCKED = "check_in_locked"
    FINALIZED = "finalized"


class PuttingStage(str, Enum):
    UNLOCKED = "unlocked"
    LOCKED = "locked"
    FINALIZED = "finalized"


StageT = TypeVar("StageT", DoublesStage, PuttingStage)


def stage_index(stage: Enum) -> int:
    return list(type(stage)).index(stage)


def advance(current: StageT, target: StageT) -> StageT:
    """Move one stage forward. Repeating the current stage is a no-op."""
    if type(current) is not type(target):
        raise StageError("stage_mismatch", f"Cannot move {current.value} to {target.value}.")
    if target == current:
        return current
    step = stage_index(target) - stage_index(current)
    if step < 0:
        raise StageError("backward_transition", f"Cannot go back from {current.value} to {target.value}.")
    if step > 1:
        raise StageError("skipped_transition", f"Cannot jump from {current.value} to {target.value}.")
    return target


def at_least(current: StageT, minimum: StageT) -> bool:
    return stage_index(current) >= stage_index(minimum)


def require_before(current: StageT, limit: StageT, action: str) -> None:
    if at_least(current, limit):
        raise PreconditionError(
            "stage_locked",
            f"Cannot {action} once the league is {current.value.replace('_', ' ')}.",
        )


def require_at(current: StageT, wanted: StageT, action: str) -> None:
    if current != wanted:
        raise PreconditionError(
            "wrong_stage",
            f"Cannot {action} while the league is {current.value.replace('_', ' ')}.",
        )

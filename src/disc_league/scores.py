from __future__ import annotations

import math
from dataclasses import dataclass, field
from typing import Any

from .models import RowKey


def parse_score(raw: Any) -> float | None:
    """Return a finite number for ``raw`` or ``None`` when it is not a usable score."""
    if raw is None or isinstance(raw, bool):
        return None
    if isinstance(raw, (int, float)):
        value = float(raw)
    elif isinstance(raw, str):
        text = raw.strip()
        if not text:
            return None
        try:
            value = float(text)
        except ValueError:
            return None
    else:
        return None
    if math.isnan(value) or math.isinf(value):
        return None
    return value


def is_blank(raw: Any) -> bool:
    return raw is None or (isinstance(raw, str) and not raw.strip())


def clamp_score(raw: Any, low: int, high: int) -> int:
    # Non-numeric entry counts as 0 before clamping.
    value = parse_score(raw)
    number = 0 if value is None else int(math.floor(value))
    return max(low, min(high, number))


@dataclass(slots=True)
class ScoreStore:
    scores: dict[RowKey, int] = field(default_factory=dict)
    adjustments: dict[RowKey, int] = field(default_factory=dict)

    def base(self, key: RowKey) -> int | None:
        return self.scores.get(key)

    def adjustment(self, key: RowKey) -> int:
        return self.adjustments.get(key, 0)

    def set_adjustment(self, key: RowKey, offset: int) -> None:
        self.adjustments[key] = int(offset)

    def clear_adjustment(self, key: RowKey) -> None:
        self.adjustments.pop(key, None)

    def set_final_score(self, key: RowKey, desired_final: int) -> int:
        offset = int(desired_final) - (self.scores.get(key) or 0)
        self.adjustments[key] = offset
        return offset

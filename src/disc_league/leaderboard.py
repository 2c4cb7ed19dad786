from __future__ import annotations

from dataclasses import dataclass, field
from typing import Iterable

from .models import RowKey
from .scores import ScoreStore


@dataclass(slots=True)
class LeaderboardEntry:
    key: RowKey
    label: str
    members: list[str] = field(default_factory=list)
    base_score: int | None = None
    adjustment: int = 0


@dataclass(slots=True)
class RankedRow:
    key: RowKey
    label: str
    members: list[str]
    base_score: int | None
    adjustment: int
    final_score: int | None
    rank: int | None

    @property
    def is_scored(self) -> bool:
        return self.final_score is not None

    def to_dict(self) -> dict[str, object]:
        return {
            "key": self.key.to_dict(),
            "label": self.label,
            "members": list(self.members),
            "base_score": self.base_score,
            "adjustment": self.adjustment,
            "final_score": self.final_score,
            "rank": self.rank,
        }


def score_label(value: int | None) -> str:
    if value is None:
        return "-"
    if value == 0:
        return "E"
    return f"+{value}" if value > 0 else str(value)


def build_leaderboard(entries: Iterable[LeaderboardEntry], higher_is_better: bool = False) -> list[RankedRow]:
    """Rank rows by base + adjustment with standard competition ranking.

    Golf scores rank ascending. Point totals pass ``higher_is_better`` and
    rank descending. Rows without a base score are unscored: they keep their
    input order after every scored row and carry no rank, whatever their
    adjustment.
    """
    scored: list[RankedRow] = []
    unscored: list[RankedRow] = []
    for entry in entries:
        final = None if entry.base_score is None else entry.base_score + entry.adjustment
        row = RankedRow(
            key=entry.key,
            label=entry.label,
            members=list(entry.members),
            base_score=entry.base_score,
            adjustment=entry.adjustment,
            final_score=final,
            rank=None,
        )
        (unscored if final is None else scored).append(row)

    # sorted() is stable, so equal finals keep input order.
    scored.sort(key=lambda r: -r.final_score if higher_is_better else r.final_score)
    previous: int | None = None
    rank = 0
    for position, row in enumerate(scored, start=1):
        if row.final_score != previous:
            rank = position
            previous = row.final_score
        row.rank = rank
    return scored + unscored


def entries_from_store(
    store: ScoreStore,
    rows: Iterable[tuple[RowKey, str, list[str]]],
) -> list[LeaderboardEntry]:
    return [
        LeaderboardEntry(
            key=key,
            label=label,
            members=members,
            base_score=store.base(key),
            adjustment=store.adjustment(key),
        )
        for key, label, members in rows
    ]

from __future__ import annotations

from typing import Any, Iterable

from .models import PreconditionError, RowKey
from .scores import clamp_score, is_blank


class RoundSubmissionEngine:
    """Per play-unit round gating.

    Every unit carries a watermark, the highest round it has committed. Scores
    at or below the watermark are frozen and are the only ones that count
    towards totals; scores above it are tentative.
    """

    def __init__(self, total_rounds: int, score_range: tuple[int, int]) -> None:
        if total_rounds < 1:
            raise ValueError("total_rounds must be at least 1")
        self.total_rounds = total_rounds
        self.low, self.high = score_range
        self.units: dict[str, list[RowKey]] = {}
        self.watermarks: dict[str, int] = {}
        self.scores: dict[int, dict[RowKey, int]] = {}

    @property
    def started(self) -> bool:
        return any(mark > 0 for mark in self.watermarks.values())

    def set_total_rounds(self, total_rounds: int) -> None:
        if self.started:
            raise PreconditionError("rounds_started", "Round count is fixed once scores have been submitted.")
        if total_rounds < 1:
            raise PreconditionError("invalid_rounds", "There must be at least one round.")
        self.total_rounds = total_rounds

    def unit_for(self, member: RowKey) -> str | None:
        return next((unit_id for unit_id, members in self.units.items() if member in members), None)

    def watermark(self, unit_id: str) -> int:
        self._require_unit(unit_id)
        return self.watermarks[unit_id]

    def _require_unit(self, unit_id: str) -> list[RowKey]:
        members = self.units.get(unit_id)
        if members is None:
            raise PreconditionError("unknown_unit", f"Unknown card: {unit_id}.")
        return members

    def _require_roster_open(self, unit_id: str) -> None:
        if self.watermarks.get(unit_id, 0) >= 1:
            raise PreconditionError("roster_locked", "This card has already submitted a round; its players are locked.")

    def add_unit(self, unit_id: str, members: Iterable[RowKey]) -> None:
        if unit_id in self.units:
            raise PreconditionError("duplicate_unit", f"Card {unit_id} already exists.")
        incoming = list(members)
        for member in incoming:
            if self.unit_for(member) is not None:
                raise PreconditionError("member_taken", f"{member} is already on another card.")
        self.units[unit_id] = incoming
        self.watermarks[unit_id] = 0

    def add_member(self, unit_id: str, member: RowKey) -> None:
        members = self._require_unit(unit_id)
        self._require_roster_open(unit_id)
        if self.unit_for(member) is not None:
            raise PreconditionError("member_taken", f"{member} is already on a card.")
        members.append(member)

    def remove_member(self, unit_id: str, member: RowKey) -> None:
        members = self._require_unit(unit_id)
        self._require_roster_open(unit_id)
        if member not in members:
            raise PreconditionError("unknown_member", f"{member} is not on this card.")
        members.remove(member)
        for by_member in self.scores.values():
            by_member.pop(member, None)

    def record_score(self, unit_id: str, member: RowKey, round_no: int, raw: Any) -> int | None:
        """Store a clamped score; a blank value clears it. Returns what was stored."""
        members = self._require_unit(unit_id)
        if member not in members:
            raise PreconditionError("unknown_member", f"{member} is not on this card.")
        if round_no < 1 or round_no > self.total_rounds:
            raise PreconditionError("invalid_round", f"Round must be between 1 and {self.total_rounds}.")
        if round_no <= self.watermarks[unit_id]:
            raise PreconditionError("round_submitted", f"Round {round_no} is already submitted for this card.")
        if is_blank(raw):
            self.scores.get(round_no, {}).pop(member, None)
            return None
        value = clamp_score(raw, self.low, self.high)
        self.scores.setdefault(round_no, {})[member] = value
        return value

    def score(self, member: RowKey, round_no: int) -> int | None:
        return self.scores.get(round_no, {}).get(member)

    def missing_members(self, unit_id: str, round_no: int) -> list[RowKey]:
        by_member = self.scores.get(round_no, {})
        return [m for m in self._require_unit(unit_id) if m not in by_member]

    def submit_round(self, unit_id: str, round_no: int | None = None) -> bool:
        """Commit the next round for a unit. Returns False when it was already committed."""
        members = self._require_unit(unit_id)
        current = self.watermarks[unit_id]
        if round_no is None:
            if current >= self.total_rounds:
                return False
            round_no = current + 1
        if round_no <= current:
            return False
        if round_no > self.total_rounds:
            raise PreconditionError("invalid_round", f"Round must be between 1 and {self.total_rounds}.")
        if round_no > current + 1:
            raise PreconditionError("round_out_of_order", f"Round {current + 1} must be submitted first.")
        if not members:
            raise PreconditionError("empty_unit", "This card has no players.")
        missing = self.missing_members(unit_id, round_no)
        if missing:
            raise PreconditionError(
                "missing_scores",
                f"Round {round_no} is missing scores for {len(missing)} of {len(members)} entries.",
            )
        self.watermarks[unit_id] = round_no
        return True

    def is_round_committed(self, unit_id: str, round_no: int) -> bool:
        return self.watermark(unit_id) >= round_no

    def missing_units(self, round_no: int) -> list[str]:
        return [unit_id for unit_id, mark in self.watermarks.items() if mark < round_no]

    def is_complete(self) -> bool:
        if not self.units:
            return False
        return all(mark >= self.total_rounds for mark in self.watermarks.values())

    def committed_total(self, member: RowKey) -> int | None:
        unit_id = self.unit_for(member)
        if unit_id is None:
            return None
        mark = self.watermarks[unit_id]
        if mark < 1:
            return None
        return sum(self.scores.get(r, {}).get(member, 0) for r in range(1, mark + 1))

    def committed_totals(self) -> dict[RowKey, int]:
        totals: dict[RowKey, int] = {}
        for members in self.units.values():
            for member in members:
                total = self.committed_total(member)
                if total is not None:
                    totals[member] = total
        return totals

    def replace_member(self, unit_id: str, old: RowKey, new: RowKey) -> None:
        members = self._require_unit(unit_id)
        self._require_roster_open(unit_id)
        if old not in members:
            raise PreconditionError("unknown_member", f"{old} is not on this card.")
        if self.unit_for(new) is not None:
            raise PreconditionError("member_taken", f"{new} is already on a card.")
        members[members.index(old)] = new
        for by_member in self.scores.values():
            if old in by_member:
                by_member[new] = by_member.pop(old)

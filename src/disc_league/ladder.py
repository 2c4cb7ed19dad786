"""Bag-tag ladder: tags change hands among the players who played a round.

Each round only redistributes the tags its valid entrants already hold, so the
set of tags across the league is the same before and after every round.
"""
from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Iterable

from .leaderboard import LeaderboardEntry, RankedRow, build_leaderboard
from .models import PreconditionError, RowKey, new_id
from .scores import parse_score

RoundScores = Iterable[tuple[str, Any]]


@dataclass(slots=True)
class LadderPlayer:
    name: str
    tag: int | None
    id: str = field(default_factory=new_id)


@dataclass(slots=True)
class TagHolder:
    id: str
    name: str
    tag: int | None


@dataclass(slots=True)
class LadderRound:
    scores: list[tuple[str, Any]]
    id: str = field(default_factory=new_id)


def _valid_entrants(tags: dict[str, int | None], round_scores: RoundScores) -> list[tuple[str, float]]:
    entrants: list[tuple[str, float]] = []
    seen: set[str] = set()
    for player_id, raw in round_scores:
        if player_id in seen or tags.get(player_id) is None:
            continue
        score = parse_score(raw)
        if score is None:
            continue
        seen.add(player_id)
        entrants.append((player_id, score))
    return entrants


def _swap_tags(tags: dict[str, int | None], round_scores: RoundScores) -> None:
    entrants = _valid_entrants(tags, round_scores)
    if len(entrants) < 2:
        return
    # Equal scores: the lower tag held going in finishes ahead.
    finish = sorted(entrants, key=lambda e: (e[1], tags[e[0]]))
    pool = sorted(tags[player_id] for player_id, _score in entrants)
    for (player_id, _score), tag in zip(finish, pool):
        tags[player_id] = tag


def _as_number(score: float) -> int | float:
    return int(score) if score.is_integer() else score


def _ordered(holders: Iterable[TagHolder]) -> list[TagHolder]:
    return sorted(holders, key=lambda h: (h.tag is None, h.tag or 0, h.name.lower()))


def compute_standings(players: Iterable[LadderPlayer], rounds: Iterable[LadderRound]) -> list[TagHolder]:
    roster = list(players)
    tags: dict[str, int | None] = {p.id: p.tag for p in roster}
    for ladder_round in rounds:
        _swap_tags(tags, ladder_round.scores)
    return _ordered(TagHolder(id=p.id, name=p.name, tag=tags[p.id]) for p in roster)


def compute_round_swaps(current: Iterable[TagHolder], round_scores: RoundScores) -> list[TagHolder]:
    holders = list(current)
    tags: dict[str, int | None] = {h.id: h.tag for h in holders}
    _swap_tags(tags, list(round_scores))
    return _ordered(TagHolder(id=h.id, name=h.name, tag=tags[h.id]) for h in holders)


class TagLadder:
    def __init__(
        self,
        players: list[LadderPlayer] | None = None,
        rounds: list[LadderRound] | None = None,
    ) -> None:
        self.players: list[LadderPlayer] = list(players or [])
        self.rounds: list[LadderRound] = list(rounds or [])

    def get_player(self, player_id: str) -> LadderPlayer | None:
        return next((p for p in self.players if p.id == player_id), None)

    def add_player(self, name: str) -> LadderPlayer:
        clean = name.strip()
        if not clean:
            raise PreconditionError("blank_name", "Player name is required.")
        if any(p.name.lower() == clean.lower() for p in self.players):
            raise PreconditionError("duplicate_name", f"{clean} is already on the ladder.")
        player = LadderPlayer(name=clean, tag=len(self.players) + 1)
        self.players.append(player)
        return player

    def _normalize_scores(self, scores: dict[str, Any] | RoundScores) -> list[tuple[str, Any]]:
        pairs = list(scores.items()) if isinstance(scores, dict) else [(pid, raw) for pid, raw in scores]
        if not pairs:
            raise PreconditionError("empty_round", "A round needs at least one score.")
        known = {p.id for p in self.players}
        unknown = [pid for pid, _raw in pairs if pid not in known]
        if unknown:
            raise PreconditionError("unknown_player", f"Unknown player id(s): {', '.join(unknown)}.")
        if len({pid for pid, _raw in pairs}) != len(pairs):
            raise PreconditionError("duplicate_entry", "A player can only post one score per round.")
        return pairs

    def record_round(self, scores: dict[str, Any] | RoundScores) -> LadderRound:
        ladder_round = LadderRound(scores=self._normalize_scores(scores))
        self.rounds.append(ladder_round)
        return ladder_round

    def standings(self) -> list[TagHolder]:
        return compute_standings(self.players, self.rounds)

    def preview_round(self, scores: dict[str, Any] | RoundScores) -> list[TagHolder]:
        return compute_round_swaps(self.standings(), self._normalize_scores(scores))

    def round_results(self, round_id: str) -> list[RankedRow]:
        index = next((i for i, r in enumerate(self.rounds) if r.id == round_id), None)
        if index is None:
            raise PreconditionError("unknown_round", f"Round {round_id} not found.")
        before = {h.id: h.tag for h in compute_standings(self.players, self.rounds[:index])}
        names = {p.id: p.name for p in self.players}
        entries: list[LeaderboardEntry] = []
        for player_id, raw in self.rounds[index].scores:
            score = parse_score(raw)
            entries.append(
                LeaderboardEntry(
                    key=RowKey.player(player_id),
                    label=names.get(player_id, player_id),
                    members=[player_id],
                    base_score=None if score is None or before.get(player_id) is None else _as_number(score),
                )
            )
        return build_leaderboard(entries)

    def tag_history(self, player_id: str) -> list[int | None]:
        """Tag held by ``player_id`` after each recorded round, oldest first."""
        if self.get_player(player_id) is None:
            raise PreconditionError("unknown_player", f"Unknown player id: {player_id}.")
        tags: dict[str, int | None] = {p.id: p.tag for p in self.players}
        history: list[int | None] = []
        for ladder_round in self.rounds:
            _swap_tags(tags, ladder_round.scores)
            history.append(tags[player_id])
        return history

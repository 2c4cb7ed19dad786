from __future__ import annotations

import random
from dataclasses import dataclass, field
from typing import Any, Iterable

from .config import (
    MAX_STATIONS,
    MAX_TOTAL_ROUNDS,
    MIN_PUTTING_PLAYERS,
    MIN_STATIONS,
    MIN_TOTAL_ROUNDS,
    PUTTING_CARD_MAX,
    PUTTING_CARD_MIN,
    PUTTING_POOLS,
    PUTTS_PER_STATION,
    STATION_POINTS,
)
from .formation import build_cards_in_order, build_random_cards, validate_putting_cards
from .leaderboard import RankedRow, build_leaderboard, entries_from_store
from .models import Player, PoolMode, PreconditionError, PuttingCard, RowKey
from .scores import ScoreStore, clamp_score, is_blank
from .stages import PuttingStage, advance, require_at, require_before

COMBINED_BOARD = "ALL"


def points_for_made(made: int) -> int:
    return STATION_POINTS[max(0, min(PUTTS_PER_STATION, made))]


@dataclass(slots=True)
class PuttingSettings:
    total_rounds: int = 1
    stations: int = 1
    pool_mode: PoolMode = PoolMode.SPLIT
    card_mode: str = ""


@dataclass(slots=True)
class PuttingRound:
    """One league-wide round: its cards, putts made per station, and submitted cards."""

    number: int
    cards: list[PuttingCard] = field(default_factory=list)
    made: dict[str, dict[int, int]] = field(default_factory=dict)
    submitted: list[str] = field(default_factory=list)

    def card_for(self, player_id: str) -> PuttingCard | None:
        return next((c for c in self.cards if player_id in c.player_ids), None)

    def is_submitted(self, card_id: str) -> bool:
        return card_id in self.submitted

    def points(self, player_id: str) -> int:
        return sum(points_for_made(made) for made in self.made.get(player_id, {}).values())

    def is_filled(self, card: PuttingCard, stations: int) -> bool:
        if not card.player_ids:
            return False
        return all(
            station in self.made.get(player_id, {})
            for player_id in card.player_ids
            for station in range(1, stations + 1)
        )

    def missing_cards(self) -> list[PuttingCard]:
        return [c for c in self.cards if c.id not in self.submitted]


class PuttingLeague:
    def __init__(
        self,
        settings: PuttingSettings | None = None,
        stage: PuttingStage = PuttingStage.UNLOCKED,
        players: list[Player] | None = None,
        cards: list[PuttingCard] | None = None,
        rounds: list[PuttingRound] | None = None,
        adjustments: dict[RowKey, int] | None = None,
    ) -> None:
        self.settings = settings or PuttingSettings()
        self.stage = stage
        self.players: list[Player] = list(players or [])
        # Round 1 cards as built during setup.
        self.cards: list[PuttingCard] = list(cards or [])
        self.rounds: list[PuttingRound] = list(rounds or [])
        self.adjustments: dict[RowKey, int] = dict(adjustments or {})

    def get_player(self, player_id: str) -> Player | None:
        return next((p for p in self.players if p.id == player_id), None)

    @property
    def current_round(self) -> int:
        """League-wide round in play (0 before the league begins)."""
        return len(self.rounds)

    @property
    def current_cards(self) -> list[PuttingCard]:
        return self.rounds[-1].cards if self.rounds else self.cards

    def get_round(self, round_no: int) -> PuttingRound:
        if not 1 <= round_no <= len(self.rounds):
            raise PreconditionError("unknown_round", f"Round {round_no} has not begun.")
        return self.rounds[round_no - 1]

    def get_card(self, card_id: str) -> PuttingCard:
        card = next((c for c in self.current_cards if c.id == card_id), None)
        if card is None:
            raise PreconditionError("unknown_card", f"Card {card_id} not found.")
        return card

    def update_settings(
        self,
        total_rounds: int | None = None,
        stations: int | None = None,
        pool_mode: PoolMode | str | None = None,
    ) -> PuttingSettings:
        require_before(self.stage, PuttingStage.LOCKED, "change league settings")
        if pool_mode is not None:
            self.settings.pool_mode = PoolMode(pool_mode)
        if total_rounds is not None:
            self.settings.total_rounds = max(MIN_TOTAL_ROUNDS, min(MAX_TOTAL_ROUNDS, int(total_rounds)))
        if stations is not None:
            self.settings.stations = max(MIN_STATIONS, min(MAX_STATIONS, int(stations)))
        return self.settings

    # ------------------------------
    # Check-in and cards
    # ------------------------------
    def check_in(self, name: str, pool: str = "A") -> Player:
        require_before(self.stage, PuttingStage.LOCKED, "check in")
        clean = " ".join(name.split())
        if not clean:
            raise PreconditionError("blank_name", "Player name is required.")
        if any(p.name.lower() == clean.lower() for p in self.players):
            raise PreconditionError("duplicate_name", f"{clean} is already checked in.")
        normalized = (pool or "A").strip().upper()
        if normalized not in PUTTING_POOLS:
            raise PreconditionError("invalid_pool", f"Pool must be one of {', '.join(PUTTING_POOLS)}.")
        player = Player(name=clean, group=normalized)
        self.players.append(player)
        return player

    def remove_player(self, player_id: str) -> None:
        require_before(self.stage, PuttingStage.LOCKED, "remove players")
        player = self.get_player(player_id)
        if player is None:
            raise PreconditionError("unknown_player", f"Player {player_id} not found.")
        self.players.remove(player)
        for card in self.cards:
            if player_id in card.player_ids:
                card.player_ids.remove(player_id)
        self.cards = [c for c in self.cards if c.player_ids]

    def randomize_cards(self, rng: random.Random | None = None) -> list[PuttingCard]:
        require_before(self.stage, PuttingStage.LOCKED, "change cards")
        if len(self.players) < MIN_PUTTING_PLAYERS:
            raise PreconditionError(
                "not_enough_players",
                f"Check in at least {MIN_PUTTING_PLAYERS} players first.",
            )
        self.cards = build_random_cards(self.players, rng)
        self.settings.card_mode = "random"
        return self.cards

    def create_card(self, player_ids: Iterable[str], name: str = "") -> PuttingCard:
        require_before(self.stage, PuttingStage.LOCKED, "change cards")
        chosen = list(dict.fromkeys(player_ids))
        if len(chosen) < PUTTING_CARD_MIN:
            raise PreconditionError("card_too_small", f"Select at least {PUTTING_CARD_MIN} players for a card.")
        if len(chosen) > PUTTING_CARD_MAX:
            raise PreconditionError("card_too_large", f"Max {PUTTING_CARD_MAX} players per card.")
        unknown = [pid for pid in chosen if self.get_player(pid) is None]
        if unknown:
            raise PreconditionError("unknown_player", "A selected player is not checked in.")
        if self.settings.card_mode != "manual":
            self.cards = []
        used = {pid for card in self.cards for pid in card.player_ids}
        if used.intersection(chosen):
            raise PreconditionError("duplicate_assignment", "One or more selected players are already on a card.")
        card = PuttingCard(name=name.strip() or f"Card {len(self.cards) + 1}", player_ids=chosen)
        self.cards.append(card)
        self.settings.card_mode = "manual"
        return card

    def clear_cards(self) -> None:
        require_before(self.stage, PuttingStage.LOCKED, "change cards")
        self.cards = []
        self.settings.card_mode = ""

    # ------------------------------
    # Rounds
    # ------------------------------
    def begin(self) -> bool:
        if self.stage == PuttingStage.LOCKED:
            return False
        require_at(self.stage, PuttingStage.UNLOCKED, "begin round 1")
        if len(self.players) < MIN_PUTTING_PLAYERS:
            raise PreconditionError(
                "not_enough_players",
                f"Check in at least {MIN_PUTTING_PLAYERS} players first.",
            )
        validate_putting_cards(self.cards, self.players)
        first = PuttingRound(
            number=1,
            cards=[PuttingCard(name=c.name, player_ids=list(c.player_ids), id=c.id) for c in self.cards],
        )
        self.stage = advance(self.stage, PuttingStage.LOCKED)
        self.rounds = [first]
        return True

    def missing_cards(self, round_no: int | None = None) -> list[str]:
        if not self.rounds:
            return []
        played = self.get_round(round_no or self.current_round)
        return [c.name for c in played.missing_cards()]

    def begin_next_round(self) -> list[PuttingCard]:
        """Open the next round with cards re-drawn from the round just played.

        Players are ranked by that round's points, best first, and cut into
        cards of 2-4 in that order, so the top putters share Card 1.
        """
        require_at(self.stage, PuttingStage.LOCKED, "begin the next round")
        if self.current_round >= self.settings.total_rounds:
            raise PreconditionError("final_round", "You are already on the final round.")
        waiting = self.missing_cards()
        if waiting:
            raise PreconditionError(
                "round_incomplete",
                f"Not all cards have submitted scores for Round {self.current_round} yet. "
                f"Waiting on: {', '.join(waiting)}.",
            )
        played = self.rounds[-1]
        ranked = sorted(self.players, key=lambda p: -played.points(p.id))
        nxt = PuttingRound(number=self.current_round + 1, cards=build_cards_in_order([p.id for p in ranked]))
        self.rounds.append(nxt)
        return nxt.cards

    def is_complete(self) -> bool:
        return (
            bool(self.rounds)
            and self.current_round == self.settings.total_rounds
            and not self.rounds[-1].missing_cards()
        )

    def finalize(self) -> bool:
        if self.stage == PuttingStage.FINALIZED:
            return False
        require_at(self.stage, PuttingStage.LOCKED, "finalize")
        if self.current_round < self.settings.total_rounds:
            raise PreconditionError(
                "rounds_incomplete",
                f"Finalize is only available on the final round (round {self.current_round} of "
                f"{self.settings.total_rounds}).",
            )
        waiting = self.missing_cards()
        if waiting:
            raise PreconditionError(
                "rounds_incomplete",
                f"Not all cards have submitted the final round. Waiting on: {', '.join(waiting)}.",
            )
        self.stage = advance(self.stage, PuttingStage.FINALIZED)
        return True

    def reset(self) -> None:
        self.settings = PuttingSettings(
            total_rounds=self.settings.total_rounds,
            stations=self.settings.stations,
            pool_mode=self.settings.pool_mode,
        )
        self.stage = PuttingStage.UNLOCKED
        self.players = []
        self.cards = []
        self.rounds = []
        self.adjustments = {}

    # ------------------------------
    # Scoring
    # ------------------------------
    def _require_scoring_open(self) -> PuttingRound:
        if self.stage == PuttingStage.FINALIZED:
            raise PreconditionError("finalized", "Scores are finalized.")
        require_at(self.stage, PuttingStage.LOCKED, "enter scores")
        return self.rounds[-1]

    def record_made(self, card_id: str, player_id: str, station: int, raw: Any) -> int | None:
        """Store putts made (0-4) at one station of the current round; blank clears it."""
        current = self._require_scoring_open()
        card = self.get_card(card_id)
        if player_id not in card.player_ids:
            raise PreconditionError("not_on_card", f"Player {player_id} is not on {card.name}.")
        if not MIN_STATIONS <= station <= self.settings.stations:
            raise PreconditionError("invalid_station", f"Station must be 1 to {self.settings.stations}.")
        if current.is_submitted(card.id):
            raise PreconditionError("card_submitted", f"{card.name} already submitted this round.")
        stations = current.made.setdefault(player_id, {})
        if is_blank(raw):
            stations.pop(station, None)
            return None
        stations[station] = clamp_score(raw, 0, PUTTS_PER_STATION)
        return stations[station]

    def submit_card(self, card_id: str) -> bool:
        """Lock a card's scores for the current round. Re-submitting changes nothing."""
        if self.stage == PuttingStage.FINALIZED:
            self.get_card(card_id)
            return False
        current = self._require_scoring_open()
        card = self.get_card(card_id)
        if current.is_submitted(card.id):
            return False
        if not current.is_filled(card, self.settings.stations):
            raise PreconditionError(
                "missing_scores",
                f"{card.name} is missing some scores. Fill all stations for all players.",
            )
        current.submitted.append(card.id)
        return True

    def round_points(self, round_no: int, player_id: str) -> int:
        return self.get_round(round_no).points(player_id)

    def committed_total(self, player_id: str) -> int | None:
        """Points from rounds whose card has been submitted; ``None`` before any."""
        total: int | None = None
        for played in self.rounds:
            card = played.card_for(player_id)
            if card is not None and played.is_submitted(card.id):
                total = (total or 0) + played.points(player_id)
        return total

    # ------------------------------
    # Leaderboards
    # ------------------------------
    def score_store(self) -> ScoreStore:
        scores: dict[RowKey, int] = {}
        for player in self.players:
            total = self.committed_total(player.id)
            if total is not None:
                scores[RowKey.player(player.id)] = total
        return ScoreStore(scores=scores, adjustments=self.adjustments)

    def leaderboards(self) -> dict[str, list[RankedRow]]:
        store = self.score_store()
        if self.settings.pool_mode == PoolMode.COMBINED:
            groups = {COMBINED_BOARD: list(self.players)}
        else:
            groups = {}
            for player in self.players:
                groups.setdefault(player.group or "A", []).append(player)
            groups = {pool: groups[pool] for pool in PUTTING_POOLS if pool in groups}
        return {
            board: build_leaderboard(
                entries_from_store(store, [(RowKey.player(p.id), p.name, [p.name]) for p in members]),
                higher_is_better=True,
            )
            for board, members in groups.items()
        }

    def _require_player_row(self, player_id: str) -> RowKey:
        require_before(self.stage, PuttingStage.FINALIZED, "adjust the leaderboard")
        if self.get_player(player_id) is None:
            raise PreconditionError("unknown_player", f"Player {player_id} not found.")
        return RowKey.player(player_id)

    def set_adjustment(self, player_id: str, offset: int) -> int:
        key = self._require_player_row(player_id)
        store = self.score_store()
        store.set_adjustment(key, offset)
        return store.adjustment(key)

    def set_final_score(self, player_id: str, desired_final: int) -> int:
        key = self._require_player_row(player_id)
        return self.score_store().set_final_score(key, desired_final)

    def clear_adjustment(self, player_id: str) -> None:
        key = self._require_player_row(player_id)
        self.score_store().clear_adjustment(key)

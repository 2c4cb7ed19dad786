from __future__ import annotations

import random
from dataclasses import dataclass
from typing import Any

from .config import DOUBLES_SCORE_RANGE, MAX_TOTAL_ROUNDS, MIN_TOTAL_ROUNDS, SEATED_GROUPS, START_SLOT_CYCLE
from .formation import Formation, build_formation
from .leaderboard import RankedRow, build_leaderboard, entries_from_store
from .models import (
    FloatingMode,
    FormationMode,
    PlayCard,
    Player,
    PreconditionError,
    RowKey,
    RowKind,
    Team,
)
from .rounds import RoundSubmissionEngine
from .scores import ScoreStore
from .stages import DoublesStage, advance, require_at, require_before


@dataclass(slots=True)
class DoublesSettings:
    formation_mode: FormationMode = FormationMode.RANDOM
    floating_mode: FloatingMode = FloatingMode.AUTO
    manual_floating_id: str = ""
    total_rounds: int = 1
    layout_note: str = ""


def _normalize_name(name: str) -> str:
    clean = " ".join(name.split())
    if not clean:
        raise PreconditionError("blank_name", "Player name is required.")
    return clean


class DoublesLeague:
    def __init__(
        self,
        settings: DoublesSettings | None = None,
        stage: DoublesStage = DoublesStage.UNLOCKED,
        players: list[Player] | None = None,
        formation: Formation | None = None,
        rounds: RoundSubmissionEngine | None = None,
        adjustments: dict[RowKey, int] | None = None,
    ) -> None:
        self.settings = settings or DoublesSettings()
        self.stage = stage
        self.players: list[Player] = list(players or [])
        self.formation = formation or Formation()
        self.rounds = rounds or RoundSubmissionEngine(self.settings.total_rounds, DOUBLES_SCORE_RANGE)
        self.adjustments: dict[RowKey, int] = dict(adjustments or {})

    @property
    def cards(self) -> list[PlayCard]:
        return self.formation.cards

    @property
    def teams(self) -> list[Team]:
        return self.formation.teams

    def get_player(self, player_id: str) -> Player | None:
        return next((p for p in self.players if p.id == player_id), None)

    def get_card(self, card_id: str) -> PlayCard:
        card = next((c for c in self.cards if c.id == card_id), None)
        if card is None:
            raise PreconditionError("unknown_card", f"Card {card_id} not found.")
        return card

    def get_team(self, team_id: str) -> Team | None:
        return next((t for t in self.teams if t.id == team_id), None)

    # ------------------------------
    # Settings and check-in
    # ------------------------------
    def update_settings(
        self,
        formation_mode: FormationMode | str | None = None,
        floating_mode: FloatingMode | str | None = None,
        manual_floating_id: str | None = None,
        total_rounds: int | None = None,
        layout_note: str | None = None,
    ) -> DoublesSettings:
        if formation_mode is not None or floating_mode is not None or total_rounds is not None:
            require_before(self.stage, DoublesStage.FORMAT_LOCKED, "change the format")
        if manual_floating_id is not None:
            require_before(self.stage, DoublesStage.CHECK_IN_LOCKED, "choose the floating player")
        if layout_note is not None:
            require_before(self.stage, DoublesStage.FINALIZED, "edit the layout note")
        if manual_floating_id and self.get_player(manual_floating_id) is None:
            raise PreconditionError("unknown_player", "The chosen floating player is not checked in.")

        if formation_mode is not None:
            self.settings.formation_mode = FormationMode(formation_mode)
        if floating_mode is not None:
            self.settings.floating_mode = FloatingMode(floating_mode)
        if total_rounds is not None:
            rounds = max(MIN_TOTAL_ROUNDS, min(MAX_TOTAL_ROUNDS, int(total_rounds)))
            self.rounds.set_total_rounds(rounds)
            self.settings.total_rounds = rounds
        if manual_floating_id is not None:
            self.settings.manual_floating_id = manual_floating_id
        if layout_note is not None:
            self.settings.layout_note = layout_note.strip()
        return self.settings

    def _require_unique(self, name: str) -> None:
        if any(p.name.lower() == name.lower() for p in self.players):
            raise PreconditionError("duplicate_name", f"{name} is already checked in.")

    def _group_for(self, group: str) -> str:
        normalized = (group or "").strip().upper()
        if self.settings.formation_mode == FormationMode.SEATED and normalized not in SEATED_GROUPS:
            raise PreconditionError("missing_group", "Seated doubles check-in needs group A or B.")
        return normalized

    def check_in(self, name: str, group: str = "") -> Player:
        require_before(self.stage, DoublesStage.CHECK_IN_LOCKED, "check in")
        clean = _normalize_name(name)
        self._require_unique(clean)
        player = Player(name=clean, group=self._group_for(group))
        self.players.append(player)
        return player

    def remove_player(self, player_id: str) -> None:
        require_before(self.stage, DoublesStage.CHECK_IN_LOCKED, "remove players")
        player = self.get_player(player_id)
        if player is None:
            raise PreconditionError("unknown_player", f"Player {player_id} not found.")
        self.players.remove(player)
        if self.settings.manual_floating_id == player_id:
            self.settings.manual_floating_id = ""

    def check_in_summary(self) -> dict[str, int]:
        summary = {"total": len(self.players)}
        if self.settings.formation_mode == FormationMode.SEATED:
            for group in SEATED_GROUPS:
                summary[group] = len([p for p in self.players if p.group == group])
        return summary

    # ------------------------------
    # Stage transitions
    # ------------------------------
    def lock_format(self) -> bool:
        previous = self.stage
        self.stage = advance(self.stage, DoublesStage.FORMAT_LOCKED)
        return self.stage != previous

    def start(self, rng: random.Random | None = None, floating_id: str | None = None) -> Formation:
        """Build teams and cards, then lock check-in. Fails without changing anything."""
        require_at(self.stage, DoublesStage.FORMAT_LOCKED, "make teams")
        chosen = self.settings.manual_floating_id if floating_id is None else floating_id
        formation = build_formation(
            self.players,
            self.settings.formation_mode,
            self.settings.floating_mode,
            chosen,
            rng,
        )
        rounds = RoundSubmissionEngine(self.settings.total_rounds, DOUBLES_SCORE_RANGE)
        for card in formation.cards:
            rounds.add_unit(card.id, card.row_keys)

        self.stage = advance(self.stage, DoublesStage.CHECK_IN_LOCKED)
        self.formation = formation
        self.rounds = rounds
        self.adjustments = {}
        if chosen and formation.floating_id == chosen:
            self.settings.manual_floating_id = chosen
        return formation

    def is_complete(self) -> bool:
        return self.stage != DoublesStage.UNLOCKED and self.rounds.is_complete()

    def finalize(self) -> bool:
        if self.stage == DoublesStage.FINALIZED:
            return False
        require_at(self.stage, DoublesStage.CHECK_IN_LOCKED, "finalize")
        if not self.rounds.is_complete():
            waiting = [c.name for c in self.cards if self.rounds.watermark(c.id) < self.rounds.total_rounds]
            raise PreconditionError(
                "rounds_incomplete",
                f"Not all cards have submitted every round. Waiting on: {', '.join(waiting) or 'unknown'}.",
            )
        self.stage = advance(self.stage, DoublesStage.FINALIZED)
        return True

    def reset(self) -> None:
        settings = DoublesSettings(
            formation_mode=self.settings.formation_mode,
            floating_mode=self.settings.floating_mode,
            total_rounds=self.settings.total_rounds,
            layout_note=self.settings.layout_note,
        )
        self.settings = settings
        self.stage = DoublesStage.UNLOCKED
        self.players = []
        self.formation = Formation()
        self.rounds = RoundSubmissionEngine(settings.total_rounds, DOUBLES_SCORE_RANGE)
        self.adjustments = {}

    # ------------------------------
    # Scoring
    # ------------------------------
    def _require_scoring_open(self) -> None:
        if self.stage == DoublesStage.FINALIZED:
            raise PreconditionError("finalized", "Scores are finalized.")
        require_at(self.stage, DoublesStage.CHECK_IN_LOCKED, "enter scores")

    def record_score(self, card_id: str, key: RowKey, round_no: int, raw: Any) -> int | None:
        self._require_scoring_open()
        self.get_card(card_id)
        return self.rounds.record_score(card_id, key, round_no, raw)

    def submit_round(self, card_id: str, round_no: int | None = None) -> bool:
        if self.stage == DoublesStage.FINALIZED:
            self.get_card(card_id)
            return False
        require_at(self.stage, DoublesStage.CHECK_IN_LOCKED, "submit scores")
        return self.rounds.submit_round(card_id, round_no)

    def set_start_slot(self, card_id: str, slot: Any) -> int:
        require_before(self.stage, DoublesStage.FINALIZED, "edit start holes")
        card = self.get_card(card_id)
        try:
            value = int(slot)
        except (TypeError, ValueError):
            value = card.start_slot
        card.start_slot = max(1, min(START_SLOT_CYCLE, value))
        return card.start_slot

    # ------------------------------
    # Late arrivals
    # ------------------------------
    def add_late_player(self, name: str, group: str = "", card_id: str = "") -> Player:
        """Seat a player who arrives after teams were made.

        A solo floating player still on an unsubmitted card gets the newcomer
        as a teammate. Otherwise the newcomer floats on ``card_id`` (or the
        first unsubmitted card without a floater).
        """
        self._require_scoring_open()
        clean = _normalize_name(name)
        self._require_unique(clean)
        player = Player(name=clean, group=self._group_for(group), late=True)

        target = self.get_card(card_id) if card_id else None
        if target is not None:
            open_card = target if target.floating_id else None
        else:
            open_card = next(
                (c for c in self.cards if c.floating_id and self.rounds.watermark(c.id) == 0),
                None,
            )
        if open_card is not None:
            floater_id = open_card.floating_id
            team = Team(player_ids=[floater_id, player.id], name="Cali Team")
            old_key, new_key = RowKey.floating(floater_id), RowKey.team(team.id)
            self.rounds.replace_member(open_card.id, old_key, new_key)
            if old_key in self.adjustments:
                self.adjustments[new_key] = self.adjustments.pop(old_key)
            open_card.floating_id = ""
            open_card.team_ids.append(team.id)
            self.formation.teams.append(team)
            self.players.append(player)
            self._sync_floating()
            return player

        if target is None:
            target = next(
                (c for c in self.cards if not c.floating_id and self.rounds.watermark(c.id) == 0),
                None,
            )
            if target is None:
                raise PreconditionError("no_open_card", "Every card has started scoring; no card can take a late player.")
        self.rounds.add_member(target.id, RowKey.floating(player.id))
        target.floating_id = player.id
        self.players.append(player)
        self._sync_floating()
        return player

    def _sync_floating(self) -> None:
        # The formation names the first card's floater, or nobody once every floater is paired.
        self.formation.floating_id = next((c.floating_id for c in self.cards if c.floating_id), "")

    # ------------------------------
    # Leaderboard
    # ------------------------------
    def row_label(self, key: RowKey) -> tuple[str, list[str]]:
        if key.kind == RowKind.TEAM:
            team = self.get_team(key.id)
            names = [self._player_name(pid) for pid in team.player_ids] if team else []
            prefix = f"{team.name}: " if team and team.name == "Cali Team" else ""
            return prefix + " & ".join(names), names
        name = self._player_name(key.id)
        return f"Cali: {name}", [name]

    def _player_name(self, player_id: str) -> str:
        player = self.get_player(player_id)
        return player.name if player else player_id

    def row_keys(self) -> list[RowKey]:
        return [key for card in self.cards for key in card.row_keys]

    def _require_row(self, key: RowKey) -> None:
        if key not in self.row_keys():
            raise PreconditionError("unknown_row", f"No leaderboard row for {key}.")

    def score_store(self) -> ScoreStore:
        """Committed totals plus the live adjustment map (shared, not copied)."""
        return ScoreStore(scores=self.rounds.committed_totals(), adjustments=self.adjustments)

    def leaderboard(self) -> list[RankedRow]:
        rows = [(key, *self.row_label(key)) for key in self.row_keys()]
        return build_leaderboard(entries_from_store(self.score_store(), rows))

    def set_adjustment(self, key: RowKey, offset: int) -> int:
        require_before(self.stage, DoublesStage.FINALIZED, "adjust the leaderboard")
        self._require_row(key)
        store = self.score_store()
        store.set_adjustment(key, offset)
        return store.adjustment(key)

    def set_final_score(self, key: RowKey, desired_final: int) -> int:
        require_before(self.stage, DoublesStage.FINALIZED, "adjust the leaderboard")
        self._require_row(key)
        return self.score_store().set_final_score(key, desired_final)

    def clear_adjustment(self, key: RowKey) -> None:
        require_before(self.stage, DoublesStage.FINALIZED, "adjust the leaderboard")
        self.score_store().clear_adjustment(key)

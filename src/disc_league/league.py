from __future__ import annotations

import copy
import random
from pathlib import Path
from typing import Any, Callable, TypeVar

from .config import DEFAULT_LEAGUE_ID
from .doubles import DoublesSettings
from .formation import Formation
from .ladder import LadderPlayer, LadderRound, TagHolder
from .leaderboard import RankedRow
from .log import get_logger
from .models import Player, PlayCard, PuttingCard, RowKey
from .putting import PuttingSettings
from .storage import LeagueState, LeagueStore

logger = get_logger("disc_league.league")

T = TypeVar("T")


class LeagueEngine:
    """Loads one league document and applies every change all-or-nothing.

    Each mutation runs against a deep copy of the current state. The copy is
    written to disk and swapped in only when the operation succeeds, so a
    rejected call leaves both memory and the file untouched.
    """

    def __init__(
        self,
        state_path: str | Path | None = None,
        league_id: str = DEFAULT_LEAGUE_ID,
        seed: int | None = None,
    ) -> None:
        self._rng = random.Random(seed)
        self.store = LeagueStore(state_path or f"{league_id}.json", league_id)
        self.state: LeagueState = self.store.load()

    @property
    def league_id(self) -> str:
        return self.state.league_id

    @property
    def last_load_error(self) -> str:
        return self.store.last_load_error

    def reload(self) -> LeagueState:
        self.state = self.store.load()
        return self.state

    def _transaction(self, action: str, operation: Callable[[LeagueState], T]) -> T:
        draft = copy.deepcopy(self.state)
        result = operation(draft)
        self.store.save(draft)
        self.state = draft
        logger.info("[%s] %s", self.state.league_id, action)
        return result

    def set_display_name(self, name: str) -> str:
        def _apply(state: LeagueState) -> str:
            state.display_name = name.strip()
            return state.display_name

        return self._transaction("renamed league", _apply)

    # ------------------------------
    # Tag ladder
    # ------------------------------
    def add_ladder_player(self, name: str) -> LadderPlayer:
        return self._transaction(f"ladder player added: {name.strip()}", lambda s: s.ladder.add_player(name))

    def record_ladder_round(self, scores: dict[str, Any]) -> LadderRound:
        return self._transaction("ladder round recorded", lambda s: s.ladder.record_round(scores))

    def ladder_standings(self) -> list[TagHolder]:
        return self.state.ladder.standings()

    def preview_ladder_round(self, scores: dict[str, Any]) -> list[TagHolder]:
        return self.state.ladder.preview_round(scores)

    def ladder_round_results(self, round_id: str) -> list[RankedRow]:
        return self.state.ladder.round_results(round_id)

    def tag_history(self, player_id: str) -> list[int | None]:
        return self.state.ladder.tag_history(player_id)

    # ------------------------------
    # Doubles
    # ------------------------------
    def update_doubles_settings(self, **changes: Any) -> DoublesSettings:
        return self._transaction("doubles settings updated", lambda s: s.doubles.update_settings(**changes))

    def doubles_check_in(self, name: str, group: str = "") -> Player:
        return self._transaction(f"doubles check-in: {name.strip()}", lambda s: s.doubles.check_in(name, group))

    def doubles_remove_player(self, player_id: str) -> None:
        self._transaction(f"doubles player removed: {player_id}", lambda s: s.doubles.remove_player(player_id))

    def lock_doubles_format(self) -> bool:
        return self._transaction("doubles format locked", lambda s: s.doubles.lock_format())

    def start_doubles(self, floating_id: str | None = None) -> Formation:
        formation = self._transaction(
            "doubles teams made",
            lambda s: s.doubles.start(rng=self._rng, floating_id=floating_id),
        )
        logger.info(
            "[%s] %s teams on %s cards; floating player: %s",
            self.state.league_id,
            len(formation.teams),
            len(formation.cards),
            formation.floating_id or "none",
        )
        return formation

    def record_doubles_score(self, card_id: str, key: RowKey, round_no: int, raw: Any) -> int | None:
        return self._transaction(
            f"doubles score on card {card_id}",
            lambda s: s.doubles.record_score(card_id, key, round_no, raw),
        )

    def submit_doubles_round(self, card_id: str, round_no: int | None = None) -> bool:
        return self._transaction(
            f"doubles round submitted for card {card_id}",
            lambda s: s.doubles.submit_round(card_id, round_no),
        )

    def add_late_player(self, name: str, group: str = "", card_id: str = "") -> Player:
        return self._transaction(
            f"late doubles player: {name.strip()}",
            lambda s: s.doubles.add_late_player(name, group, card_id),
        )

    def set_start_slot(self, card_id: str, slot: Any) -> int:
        return self._transaction(f"start hole set for card {card_id}", lambda s: s.doubles.set_start_slot(card_id, slot))

    def doubles_leaderboard(self) -> list[RankedRow]:
        return self.state.doubles.leaderboard()

    def set_doubles_adjustment(self, key: RowKey, offset: int) -> int:
        return self._transaction(f"doubles adjustment for {key}", lambda s: s.doubles.set_adjustment(key, offset))

    def set_doubles_final_score(self, key: RowKey, desired_final: int) -> int:
        return self._transaction(
            f"doubles final score set for {key}",
            lambda s: s.doubles.set_final_score(key, desired_final),
        )

    def clear_doubles_adjustment(self, key: RowKey) -> None:
        self._transaction(f"doubles adjustment cleared for {key}", lambda s: s.doubles.clear_adjustment(key))

    def finalize_doubles(self) -> bool:
        return self._transaction("doubles finalized", lambda s: s.doubles.finalize())

    def reset_doubles(self) -> None:
        self._transaction("doubles reset", lambda s: s.doubles.reset())

    def doubles_card(self, card_id: str) -> PlayCard:
        return self.state.doubles.get_card(card_id)

    # ------------------------------
    # Putting
    # ------------------------------
    def update_putting_settings(self, **changes: Any) -> PuttingSettings:
        return self._transaction("putting settings updated", lambda s: s.putting.update_settings(**changes))

    def putting_check_in(self, name: str, pool: str = "A") -> Player:
        return self._transaction(f"putting check-in: {name.strip()}", lambda s: s.putting.check_in(name, pool))

    def putting_remove_player(self, player_id: str) -> None:
        self._transaction(f"putting player removed: {player_id}", lambda s: s.putting.remove_player(player_id))

    def randomize_putting_cards(self) -> list[PuttingCard]:
        return self._transaction("putting cards randomized", lambda s: s.putting.randomize_cards(self._rng))

    def create_putting_card(self, player_ids: list[str], name: str = "") -> PuttingCard:
        return self._transaction("putting card created", lambda s: s.putting.create_card(player_ids, name))

    def clear_putting_cards(self) -> None:
        self._transaction("putting cards cleared", lambda s: s.putting.clear_cards())

    def begin_putting(self) -> bool:
        return self._transaction("putting round 1 begun", lambda s: s.putting.begin())

    def record_putting_made(self, card_id: str, player_id: str, station: int, raw: Any) -> int | None:
        return self._transaction(
            f"putting station {station} on card {card_id}",
            lambda s: s.putting.record_made(card_id, player_id, station, raw),
        )

    def submit_putting_card(self, card_id: str) -> bool:
        return self._transaction(
            f"putting card {card_id} submitted",
            lambda s: s.putting.submit_card(card_id),
        )

    def begin_next_putting_round(self) -> list[PuttingCard]:
        return self._transaction("putting next round begun", lambda s: s.putting.begin_next_round())

    def putting_leaderboards(self) -> dict[str, list[RankedRow]]:
        return self.state.putting.leaderboards()

    def set_putting_adjustment(self, player_id: str, offset: int) -> int:
        return self._transaction(
            f"putting adjustment for {player_id}",
            lambda s: s.putting.set_adjustment(player_id, offset),
        )

    def set_putting_final_score(self, player_id: str, desired_final: int) -> int:
        return self._transaction(
            f"putting final score set for {player_id}",
            lambda s: s.putting.set_final_score(player_id, desired_final),
        )

    def clear_putting_adjustment(self, player_id: str) -> None:
        self._transaction(
            f"putting adjustment cleared for {player_id}",
            lambda s: s.putting.clear_adjustment(player_id),
        )

    def finalize_putting(self) -> bool:
        return self._transaction("putting finalized", lambda s: s.putting.finalize())

    def reset_putting(self) -> None:
        self._transaction("putting reset", lambda s: s.putting.reset())

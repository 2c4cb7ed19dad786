from __future__ import annotations

import random
from dataclasses import dataclass, field
from typing import Iterable

from .config import (
    MIN_DOUBLES_PLAYERS,
    PUTTING_CARD_MAX,
    PUTTING_CARD_MIN,
    PUTTING_CARD_SIZES,
    SEATED_GROUPS,
    START_SLOT_CYCLE,
    START_SLOT_STEP,
)
from .models import (
    FloatingMode,
    FormationError,
    FormationMode,
    PlayCard,
    Player,
    PreconditionError,
    PuttingCard,
    Team,
)


@dataclass(slots=True)
class Formation:
    teams: list[Team] = field(default_factory=list)
    cards: list[PlayCard] = field(default_factory=list)
    floating_id: str = ""

    def card_for_team(self, team_id: str) -> PlayCard | None:
        return next((c for c in self.cards if team_id in c.team_ids), None)

    def placed_player_ids(self) -> set[str]:
        placed = {pid for team in self.teams for pid in team.player_ids}
        placed.update(c.floating_id for c in self.cards if c.floating_id)
        return placed


def start_slot_for(index: int) -> int:
    """Odd starting slots 1, 3, ... 17, wrapping back to 1 after the cycle."""
    return (index * START_SLOT_STEP) % START_SLOT_CYCLE + 1


def _shuffled(players: Iterable[Player], rng: random.Random) -> list[Player]:
    pool = list(players)
    rng.shuffle(pool)
    return pool


def pick_floating(
    players: list[Player],
    mode: FormationMode,
    floating_mode: FloatingMode,
    explicit_id: str,
    rng: random.Random,
) -> str:
    if len(players) % 2 == 0:
        return ""

    if floating_mode == FloatingMode.MANUAL:
        if not explicit_id:
            raise FormationError(
                "floating_required",
                "Odd number of players: choose the floating player before making teams.",
            )
        if not any(p.id == explicit_id for p in players):
            raise FormationError(
                "floating_not_in_roster",
                "The chosen floating player is not checked in.",
            )
        return explicit_id

    candidates = players
    if mode == FormationMode.SEATED:
        group_a = [p for p in players if p.group == "A"]
        group_b = [p for p in players if p.group == "B"]
        odd_group = "A" if len(group_a) % 2 == 1 else "B" if len(group_b) % 2 == 1 else "A"
        candidates = [p for p in players if p.group == odd_group] or players
    return rng.choice(candidates).id


def _team(first: Player, second: Player, number: int) -> Team:
    return Team(player_ids=[first.id, second.id], name=f"Team {number}")


def pair_players(pool: list[Player], mode: FormationMode, rng: random.Random) -> list[Team]:
    teams: list[Team] = []
    if mode == FormationMode.RANDOM:
        shuffled = _shuffled(pool, rng)
        for idx in range(0, len(shuffled) - 1, 2):
            teams.append(_team(shuffled[idx], shuffled[idx + 1], len(teams) + 1))
        return teams

    group_a = _shuffled((p for p in pool if p.group == "A"), rng)
    group_b = _shuffled((p for p in pool if p.group == "B"), rng)
    if (not group_a) != (not group_b):
        empty = "A" if not group_a else "B"
        raise FormationError(
            "unbalanced_groups",
            f"Group {empty} has no players; seated doubles needs players in both groups.",
        )

    matched = min(len(group_a), len(group_b))
    for idx in range(matched):
        teams.append(_team(group_a[idx], group_b[idx], len(teams) + 1))

    leftover = _shuffled([*group_a[matched:], *group_b[matched:]], rng)
    if len(leftover) % 2 == 1:
        raise FormationError(
            "invalid_leftover",
            "Leftover players in one group cannot be paired evenly.",
        )
    for idx in range(0, len(leftover), 2):
        teams.append(_team(leftover[idx], leftover[idx + 1], len(teams) + 1))
    return teams


def assemble_cards(teams: list[Team], floating_id: str = "") -> list[PlayCard]:
    queue = list(teams)
    cards: list[PlayCard] = []
    while len(queue) >= 2:
        first, second = queue.pop(0), queue.pop(0)
        cards.append(PlayCard(name="", team_ids=[first.id, second.id]))

    floating_placed = False
    if queue:
        lone = queue.pop()
        if floating_id:
            cards.append(PlayCard(name="", team_ids=[lone.id], floating_id=floating_id))
            floating_placed = True
        elif cards:
            cards[-1].team_ids.append(lone.id)
        else:
            raise FormationError(
                "invalid_leftover",
                "A single team cannot make up a card on its own.",
            )

    if floating_id and not floating_placed:
        target = next((c for c in cards if len(c.team_ids) == 2 and not c.floating_id), None)
        if target is None:
            target = next((c for c in cards if len(c.team_ids) == 1 and not c.floating_id), None)
        if target is None:
            raise FormationError(
                "invalid_leftover",
                "No card can take the floating player.",
            )
        target.floating_id = floating_id

    for idx, card in enumerate(cards):
        if not card.is_valid:
            raise FormationError(
                "invalid_leftover",
                "Formation produced a card with a single team and no floating player.",
            )
        card.name = f"Card {idx + 1}"
        card.start_slot = start_slot_for(idx)
    return cards


def build_formation(
    players: Iterable[Player],
    mode: FormationMode,
    floating_mode: FloatingMode = FloatingMode.AUTO,
    explicit_floating_id: str = "",
    rng: random.Random | None = None,
) -> Formation:
    """Split a checked-in roster into 2-person teams and play-cards.

    Odd rosters leave exactly one floating player who joins a card without a
    partner. Nothing is returned unless the whole formation is valid; every
    failure raises ``FormationError`` with a named reason.
    """
    roster = list(players)
    rng = rng or random.Random()
    if len(roster) < MIN_DOUBLES_PLAYERS:
        raise FormationError(
            "not_enough_players",
            f"Need at least {MIN_DOUBLES_PLAYERS} players checked in (have {len(roster)}).",
        )
    if mode == FormationMode.SEATED:
        ungrouped = [p.name for p in roster if p.group not in SEATED_GROUPS]
        if ungrouped:
            raise FormationError(
                "missing_group",
                f"Seated doubles needs every player in group A or B: {', '.join(ungrouped)}.",
            )

    floating_id = pick_floating(roster, mode, floating_mode, explicit_floating_id, rng)
    pool = [p for p in roster if p.id != floating_id]
    teams = pair_players(pool, mode, rng)
    cards = assemble_cards(teams, floating_id)
    return Formation(teams=teams, cards=cards, floating_id=floating_id)


def compute_card_sizes(count: int) -> list[int]:
    """Card sizes of 2-4 adding up to ``count``: fewest 2s, then fewest 4s, then fewest cards."""
    if count <= 0:
        return []
    if count <= PUTTING_CARD_MAX:
        return [count]

    best: list[tuple[tuple[int, int, int], list[int]] | None] = [None] * (count + 1)
    best[0] = ((0, 0, 0), [])
    for total in range(count + 1):
        current = best[total]
        if current is None:
            continue
        (twos, fours, length), combo = current
        for size in PUTTING_CARD_SIZES:
            nxt = total + size
            if nxt > count:
                continue
            score = (twos + (size == 2), fours + (size == 4), length + 1)
            if best[nxt] is None or score < best[nxt][0]:
                best[nxt] = (score, [*combo, size])
    result = best[count]
    return result[1] if result else []


def build_cards_in_order(player_ids: list[str]) -> list[PuttingCard]:
    """Cut an ordered list of players into consecutive cards of 2-4."""
    cards: list[PuttingCard] = []
    idx = 0
    for size in compute_card_sizes(len(player_ids)):
        chunk = player_ids[idx : idx + size]
        idx += size
        cards.append(PuttingCard(name=f"Card {len(cards) + 1}", player_ids=list(chunk)))
    return cards


def build_random_cards(players: Iterable[Player], rng: random.Random | None = None) -> list[PuttingCard]:
    rng = rng or random.Random()
    return build_cards_in_order([p.id for p in _shuffled(players, rng)])


def validate_putting_cards(cards: list[PuttingCard], players: list[Player]) -> None:
    if not cards:
        raise PreconditionError("no_cards", "No cards created yet.")
    roster = {p.id for p in players}
    seen: set[str] = set()
    for card in cards:
        if len(card.player_ids) > PUTTING_CARD_MAX:
            raise PreconditionError("card_too_large", f"{card.name} has more than {PUTTING_CARD_MAX} players.")
        if len(card.player_ids) < PUTTING_CARD_MIN:
            raise PreconditionError("card_too_small", f"{card.name} needs at least {PUTTING_CARD_MIN} players.")
        for player_id in card.player_ids:
            if player_id not in roster:
                raise PreconditionError("unknown_player", f"{card.name} contains an unknown player.")
            if player_id in seen:
                raise PreconditionError("duplicate_assignment", "A player appears on more than one card.")
            seen.add(player_id)
    if seen != roster:
        raise PreconditionError("unassigned_players", "Not all checked-in players are assigned to a card yet.")

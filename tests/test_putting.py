import random

import pytest

from disc_league.models import PreconditionError, RowKey
from disc_league.putting import COMBINED_BOARD, PuttingLeague, points_for_made
from disc_league.stages import PuttingStage


def _checked_in(pools: str = "AAB") -> tuple[PuttingLeague, list[str]]:
    league = PuttingLeague()
    ids = [league.check_in(f"Putter {idx + 1}", pool).id for idx, pool in enumerate(pools)]
    return league, ids


def _play_round(league: PuttingLeague, made: dict[str, int]) -> None:
    for card in league.current_cards:
        for player_id in card.player_ids:
            for station in range(1, league.settings.stations + 1):
                league.record_made(card.id, player_id, station, made.get(player_id, 0))
        league.submit_card(card.id)


def test_points_for_made_putts() -> None:
    assert [points_for_made(made) for made in range(5)] == [0, 1, 2, 3, 5]
    assert points_for_made(9) == 5
    assert points_for_made(-1) == 0


def test_check_in_pools_and_names() -> None:
    league = PuttingLeague()
    player = league.check_in("Ann", "c")
    assert player.group == "C"
    with pytest.raises(PreconditionError) as exc:
        league.check_in("ANN", "A")
    assert exc.value.reason == "duplicate_name"
    with pytest.raises(PreconditionError) as exc:
        league.check_in("Ben", "D")
    assert exc.value.reason == "invalid_pool"


def test_settings_clamp_stations_and_rounds() -> None:
    league = PuttingLeague()
    settings = league.update_settings(total_rounds=9, stations=15)
    assert (settings.total_rounds, settings.stations) == (5, 10)
    assert league.update_settings(stations=0).stations == 1


def test_begin_requires_complete_cards() -> None:
    league, ids = _checked_in("AAAB")
    with pytest.raises(PreconditionError) as exc:
        league.begin()
    assert exc.value.reason == "no_cards"
    league.create_card(ids[:2])
    with pytest.raises(PreconditionError) as exc:
        league.begin()
    assert exc.value.reason == "unassigned_players"
    league.create_card(ids[2:])
    assert league.current_round == 0
    assert league.begin() is True
    assert league.begin() is False
    assert league.stage == PuttingStage.LOCKED
    assert league.current_round == 1
    assert [c.id for c in league.current_cards] == [c.id for c in league.cards]
    with pytest.raises(PreconditionError):
        league.check_in("Late")
    with pytest.raises(PreconditionError):
        league.update_settings(stations=3)


def test_create_card_rejects_overlap_and_bad_sizes() -> None:
    league, ids = _checked_in("AAAAAB")
    league.create_card(ids[:3], name="Pit")
    with pytest.raises(PreconditionError) as exc:
        league.create_card([ids[2], ids[3]])
    assert exc.value.reason == "duplicate_assignment"
    with pytest.raises(PreconditionError) as exc:
        league.create_card([ids[4]])
    assert exc.value.reason == "card_too_small"
    with pytest.raises(PreconditionError) as exc:
        league.create_card(ids)
    assert exc.value.reason == "card_too_large"
    assert [c.name for c in league.cards] == ["Pit"]


def test_randomize_cards_replaces_manual_cards() -> None:
    league, ids = _checked_in("AAAAAAB")
    league.create_card(ids[:2])
    cards = league.randomize_cards(random.Random(3))
    assert sorted(len(c.player_ids) for c in cards) == [3, 4]
    assert league.settings.card_mode == "random"
    league.clear_cards()
    assert league.cards == []


def test_station_entry_clamps_and_blank_clears() -> None:
    league, ids = _checked_in("AAA")
    league.update_settings(stations=2)
    league.create_card(ids)
    league.begin()
    card = league.current_cards[0]
    assert league.record_made(card.id, ids[0], 1, 7) == 4
    assert league.record_made(card.id, ids[0], 2, "-2") == 0
    assert league.record_made(card.id, ids[1], 1, "abc") == 0
    assert league.record_made(card.id, ids[1], 1, "") is None
    assert league.round_points(1, ids[0]) == 5

    with pytest.raises(PreconditionError) as exc:
        league.record_made(card.id, ids[0], 3, 1)
    assert exc.value.reason == "invalid_station"
    with pytest.raises(PreconditionError) as exc:
        league.record_made(card.id, "ghost", 1, 1)
    assert exc.value.reason == "not_on_card"


def test_card_submits_only_when_every_station_is_filled() -> None:
    league, ids = _checked_in("AA")
    league.update_settings(stations=2)
    league.create_card(ids)
    league.begin()
    card = league.current_cards[0]
    for player_id in ids:
        league.record_made(card.id, player_id, 1, 3)
    league.record_made(card.id, ids[0], 2, 0)
    with pytest.raises(PreconditionError) as exc:
        league.submit_card(card.id)
    assert exc.value.reason == "missing_scores"
    assert league.committed_total(ids[0]) is None

    league.record_made(card.id, ids[1], 2, 4)
    assert league.submit_card(card.id) is True
    assert league.submit_card(card.id) is False
    assert (league.committed_total(ids[0]), league.committed_total(ids[1])) == (3, 8)
    with pytest.raises(PreconditionError) as exc:
        league.record_made(card.id, ids[0], 2, 4)
    assert exc.value.reason == "card_submitted"


def test_next_round_waits_for_every_card() -> None:
    league, ids = _checked_in("AAAB")
    league.update_settings(total_rounds=2)
    league.create_card(ids[:2], name="Pit")
    league.create_card(ids[2:], name="Fence")
    league.begin()
    first, second = league.current_cards

    for player_id in first.player_ids:
        league.record_made(first.id, player_id, 1, 2)
    league.submit_card(first.id)
    assert league.missing_cards() == ["Fence"]
    with pytest.raises(PreconditionError) as exc:
        league.begin_next_round()
    assert exc.value.reason == "round_incomplete"
    assert "Fence" in str(exc.value)
    assert league.current_round == 1

    for player_id in second.player_ids:
        league.record_made(second.id, player_id, 1, 1)
    league.submit_card(second.id)
    league.begin_next_round()
    assert league.current_round == 2
    assert league.missing_cards() == ["Card 1"]
    with pytest.raises(PreconditionError) as exc:
        league.record_made(first.id, ids[0], 1, 4)
    assert exc.value.reason == "unknown_card"

    _play_round(league, {})
    with pytest.raises(PreconditionError) as exc:
        league.begin_next_round()
    assert exc.value.reason == "final_round"


def test_next_round_recards_by_previous_points() -> None:
    league, ids = _checked_in("AAAAAA")
    league.update_settings(total_rounds=3)
    league.randomize_cards(random.Random(5))
    league.begin()
    # Putter 2 and Putter 5 tie on 3 points and keep check-in order.
    _play_round(league, {ids[0]: 1, ids[1]: 3, ids[2]: 0, ids[3]: 4, ids[4]: 3, ids[5]: 2})

    cards = league.begin_next_round()
    assert [c.player_ids for c in cards] == [[ids[3], ids[1], ids[4]], [ids[5], ids[0], ids[2]]]
    assert [c.name for c in cards] == ["Card 1", "Card 2"]
    assert league.current_cards == cards
    assert league.get_round(1).points(ids[3]) == 5


def test_finalize_needs_the_final_round_submitted() -> None:
    league, ids = _checked_in("AAB")
    league.update_settings(total_rounds=2)
    league.create_card(ids)
    league.begin()
    _play_round(league, {})
    with pytest.raises(PreconditionError) as exc:
        league.finalize()
    assert exc.value.reason == "rounds_incomplete"

    league.begin_next_round()
    with pytest.raises(PreconditionError) as exc:
        league.finalize()
    assert exc.value.reason == "rounds_incomplete"
    _play_round(league, {})
    assert league.is_complete() is True
    assert league.finalize() is True
    assert league.finalize() is False
    assert league.stage == PuttingStage.FINALIZED
    card = league.current_cards[0]
    with pytest.raises(PreconditionError) as exc:
        league.record_made(card.id, ids[0], 1, 2)
    assert exc.value.reason == "finalized"
    assert league.submit_card(card.id) is False


def test_split_leaderboards_rank_most_points_first() -> None:
    league, ids = _checked_in("AAAB")
    league.create_card(ids)
    league.begin()
    _play_round(league, {ids[0]: 2, ids[1]: 4, ids[2]: 2, ids[3]: 1})

    boards = league.leaderboards()
    assert list(boards) == ["A", "B"]
    assert [(r.label, r.final_score, r.rank) for r in boards["A"]] == [
        ("Putter 2", 5, 1),
        ("Putter 1", 2, 2),
        ("Putter 3", 2, 2),
    ]
    assert [r.final_score for r in boards["B"]] == [1]


def test_combined_pool_mode_uses_single_board() -> None:
    league, ids = _checked_in("ABC")
    league.update_settings(pool_mode="combined")
    league.create_card(ids)
    league.begin()
    _play_round(league, {ids[0]: 1, ids[1]: 4, ids[2]: 3})
    boards = league.leaderboards()
    assert list(boards) == [COMBINED_BOARD]
    assert [r.label for r in boards[COMBINED_BOARD]] == ["Putter 2", "Putter 3", "Putter 1"]


def test_adjustments_survive_until_finalized() -> None:
    league, ids = _checked_in("AA")
    league.create_card(ids)
    league.begin()
    _play_round(league, {ids[0]: 2, ids[1]: 3})
    assert league.set_final_score(ids[0], 6) == 4
    rows = league.leaderboards()["A"]
    assert [(r.label, r.final_score, r.rank) for r in rows] == [("Putter 1", 6, 1), ("Putter 2", 3, 2)]
    assert league.adjustments == {RowKey.player(ids[0]): 4}
    league.clear_adjustment(ids[0])
    assert league.adjustments == {}
    league.finalize()
    with pytest.raises(PreconditionError) as exc:
        league.set_adjustment(ids[0], 2)
    assert exc.value.reason == "stage_locked"


def test_remove_player_and_reset() -> None:
    league, ids = _checked_in("AAB")
    league.update_settings(stations=4)
    league.create_card(ids)
    league.remove_player(ids[2])
    assert league.cards[0].player_ids == ids[:2]
    league.begin()
    league.reset()
    assert league.stage == PuttingStage.UNLOCKED
    assert league.players == [] and league.cards == []
    assert league.rounds == [] and league.current_round == 0
    assert league.settings.stations == 4

import random

import pytest

from disc_league.doubles import DoublesLeague
from disc_league.models import FormationError, PreconditionError, RowKey, RowKind, StageError
from disc_league.stages import DoublesStage, advance


def _league(names: list[str], *, seed: int = 11, total_rounds: int = 1) -> DoublesLeague:
    league = DoublesLeague()
    league.update_settings(total_rounds=total_rounds)
    for name in names:
        league.check_in(name)
    league.lock_format()
    league.start(rng=random.Random(seed))
    return league


def _score_card(league: DoublesLeague, card_id: str, round_no: int, value: int = 0) -> None:
    card = league.get_card(card_id)
    for key in card.row_keys:
        league.record_score(card_id, key, round_no, value)


def test_stages_move_forward_one_step() -> None:
    league = DoublesLeague()
    with pytest.raises(PreconditionError) as exc:
        league.start(rng=random.Random(1))
    assert exc.value.reason == "wrong_stage"
    assert league.lock_format() is True
    assert league.lock_format() is False
    assert league.stage == DoublesStage.FORMAT_LOCKED


def test_failed_start_leaves_league_unchanged() -> None:
    league = DoublesLeague()
    for name in ["Ann", "Ben", "Cy"]:
        league.check_in(name)
    league.lock_format()
    with pytest.raises(FormationError) as exc:
        league.start(rng=random.Random(1))
    assert exc.value.reason == "not_enough_players"
    assert league.stage == DoublesStage.FORMAT_LOCKED
    assert league.cards == []
    league.check_in("Dee")
    league.start(rng=random.Random(1))
    assert league.stage == DoublesStage.CHECK_IN_LOCKED


def test_check_in_rules() -> None:
    league = DoublesLeague()
    league.check_in("Ann")
    with pytest.raises(PreconditionError) as exc:
        league.check_in(" ann ")
    assert exc.value.reason == "duplicate_name"
    league.update_settings(formation_mode="seated")
    with pytest.raises(PreconditionError) as exc:
        league.check_in("Ben", group="")
    assert exc.value.reason == "missing_group"
    league.check_in("Ben", group="b")
    assert league.check_in_summary() == {"total": 2, "A": 0, "B": 1}


def test_settings_lock_with_format() -> None:
    league = DoublesLeague()
    league.lock_format()
    with pytest.raises(PreconditionError) as exc:
        league.update_settings(total_rounds=3)
    assert exc.value.reason == "stage_locked"
    assert league.update_settings(layout_note=" Front nine only ").layout_note == "Front nine only"


def test_full_doubles_flow_to_finalize() -> None:
    league = _league(["Ann", "Ben", "Cy", "Dee", "Eve"], total_rounds=2)
    assert len(league.cards) == 1
    card = league.cards[0]
    assert len(card.row_keys) == 3

    with pytest.raises(PreconditionError) as exc:
        league.finalize()
    assert exc.value.reason == "rounds_incomplete"

    for idx, key in enumerate(card.row_keys):
        league.record_score(card.id, key, 1, -idx)
    assert league.submit_round(card.id) is True
    assert [r.final_score for r in league.leaderboard()] == [-2, -1, 0]

    _score_card(league, card.id, 2, value=-1)
    league.submit_round(card.id)
    assert league.finalize() is True
    assert league.finalize() is False
    assert league.submit_round(card.id) is False
    with pytest.raises(PreconditionError):
        league.set_adjustment(card.row_keys[0], -1)


def test_leaderboard_only_counts_submitted_rounds() -> None:
    league = _league(["Ann", "Ben", "Cy", "Dee"])
    card = league.cards[0]
    _score_card(league, card.id, 1, value=-3)
    rows = league.leaderboard()
    assert all(r.final_score is None and r.rank is None for r in rows)
    league.submit_round(card.id)
    assert [r.rank for r in league.leaderboard()] == [1, 1]


def test_floating_row_label_and_adjustments() -> None:
    league = _league(["Ann", "Ben", "Cy", "Dee", "Eve"])
    card = league.cards[0]
    floating_key = RowKey.floating(league.formation.floating_id)
    assert floating_key in card.row_keys
    label, members = league.row_label(floating_key)
    assert label.startswith("Cali: ")
    assert len(members) == 1

    _score_card(league, card.id, 1, value=2)
    league.submit_round(card.id)
    assert league.set_final_score(floating_key, -1) == -3
    row = next(r for r in league.leaderboard() if r.key == floating_key)
    assert (row.base_score, row.adjustment, row.final_score, row.rank) == (2, -3, -1, 1)
    league.clear_adjustment(floating_key)
    row = next(r for r in league.leaderboard() if r.key == floating_key)
    assert (row.base_score, row.final_score) == (2, 2)
    with pytest.raises(PreconditionError) as exc:
        league.set_adjustment(RowKey.team("missing"), 1)
    assert exc.value.reason == "unknown_row"


def test_late_player_joins_floating_player() -> None:
    league = _league(["Ann", "Ben", "Cy", "Dee", "Eve"])
    card = league.cards[0]
    floater = league.formation.floating_id
    league.record_score(card.id, RowKey.floating(floater), 1, -2)

    late = league.add_late_player("Finn")
    assert late.late is True
    assert card.floating_id == ""
    assert len(card.team_ids) == 3
    cali = league.get_team(card.team_ids[-1])
    assert cali.name == "Cali Team"
    assert cali.player_ids == [floater, late.id]
    assert league.rounds.score(RowKey.team(cali.id), 1) == -2
    label, _members = league.row_label(RowKey.team(cali.id))
    assert label.startswith("Cali Team: ")
    assert league.formation.floating_id == ""


def test_late_player_floats_when_no_floater_is_open() -> None:
    league = _league(["Ann", "Ben", "Cy", "Dee", "Eve", "Fay", "Gus", "Hal"])
    assert league.formation.floating_id == ""
    late = league.add_late_player("Ivy")
    assert sum(1 for c in league.cards if c.floating_id == late.id) == 1
    target = next(c for c in league.cards if c.floating_id == late.id)
    assert RowKey.floating(late.id) in league.rounds.units[target.id]
    assert league.formation.floating_id == late.id


def test_seated_late_player_needs_a_group() -> None:
    league = DoublesLeague()
    league.update_settings(formation_mode="seated")
    for name, group in [("Ann", "A"), ("Ben", "A"), ("Cy", "B"), ("Dee", "B")]:
        league.check_in(name, group)
    league.lock_format()
    league.start(rng=random.Random(2))
    for group in ["", "Z"]:
        with pytest.raises(PreconditionError) as exc:
            league.add_late_player("Eve", group)
        assert exc.value.reason == "missing_group"
    assert all(p.name != "Eve" for p in league.players)
    assert league.add_late_player("Eve", "b").group == "B"


def test_late_player_needs_unsubmitted_card() -> None:
    league = _league(["Ann", "Ben", "Cy", "Dee"])
    card = league.cards[0]
    _score_card(league, card.id, 1)
    league.submit_round(card.id)
    with pytest.raises(PreconditionError) as exc:
        league.add_late_player("Zed")
    assert exc.value.reason == "no_open_card"
    assert all(p.name != "Zed" for p in league.players)


def test_start_slot_clamps() -> None:
    league = _league(["Ann", "Ben", "Cy", "Dee"])
    card = league.cards[0]
    assert card.start_slot == 1
    assert league.set_start_slot(card.id, 40) == 18
    assert league.set_start_slot(card.id, "0") == 1
    assert league.set_start_slot(card.id, "x") == 1


def test_manual_floating_player_is_used() -> None:
    league = DoublesLeague()
    players = [league.check_in(name) for name in ["Ann", "Ben", "Cy", "Dee", "Eve"]]
    league.update_settings(floating_mode="manual", manual_floating_id=players[2].id)
    league.lock_format()
    formation = league.start(rng=random.Random(4))
    assert formation.floating_id == players[2].id
    assert {k.kind for k in league.cards[0].row_keys} == {RowKind.TEAM, RowKind.FLOATING}


def test_reset_returns_to_unlocked() -> None:
    league = _league(["Ann", "Ben", "Cy", "Dee"], total_rounds=3)
    league.reset()
    assert league.stage == DoublesStage.UNLOCKED
    assert league.players == []
    assert league.cards == []
    assert league.settings.total_rounds == 3
    league.check_in("Ann")


def test_transition_function_rejects_backward_moves() -> None:
    with pytest.raises(StageError) as exc:
        advance(DoublesStage.FINALIZED, DoublesStage.UNLOCKED)
    assert exc.value.reason == "backward_transition"
    with pytest.raises(StageError) as exc:
        advance(DoublesStage.UNLOCKED, DoublesStage.CHECK_IN_LOCKED)
    assert exc.value.reason == "skipped_transition"
    assert advance(DoublesStage.FINALIZED, DoublesStage.FINALIZED) == DoublesStage.FINALIZED

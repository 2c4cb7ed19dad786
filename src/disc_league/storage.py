from __future__ import annotations

from dataclasses import dataclass, field
from pathlib import Path
import json
import shutil
from typing import Any

from .config import (
    DEFAULT_LEAGUE_ID,
    DOUBLES_SCORE_RANGE,
    MAX_STATIONS,
    MAX_TOTAL_ROUNDS,
    MIN_STATIONS,
    MIN_TOTAL_ROUNDS,
    PUTTS_PER_STATION,
)
from .doubles import DoublesLeague, DoublesSettings
from .formation import Formation
from .ladder import LadderPlayer, LadderRound, TagLadder
from .log import get_logger
from .models import (
    FloatingMode,
    FormationMode,
    PlayCard,
    Player,
    PoolMode,
    PreconditionError,
    PuttingCard,
    RowKey,
    RowKind,
    Team,
)
from .putting import PuttingLeague, PuttingRound, PuttingSettings
from .rounds import RoundSubmissionEngine
from .scores import clamp_score, is_blank
from .stages import DoublesStage, PuttingStage

logger = get_logger("disc_league.storage")

LEGACY_FLOATING_PREFIX = "cali_"


@dataclass(slots=True)
class LeagueState:
    league_id: str = DEFAULT_LEAGUE_ID
    display_name: str = ""
    ladder: TagLadder = field(default_factory=TagLadder)
    doubles: DoublesLeague = field(default_factory=DoublesLeague)
    putting: PuttingLeague = field(default_factory=PuttingLeague)


# ------------------------------
# Small coercion helpers
# ------------------------------
def _as_int(raw: Any, default: int) -> int:
    try:
        return int(raw)
    except (TypeError, ValueError):
        return default


def _as_str(raw: Any, default: str = "") -> str:
    return raw if isinstance(raw, str) else default


def _as_list(raw: Any) -> list[Any]:
    return raw if isinstance(raw, list) else []


def _as_dict(raw: Any) -> dict[str, Any]:
    return raw if isinstance(raw, dict) else {}


def _enum(enum_type: Any, raw: Any, default: Any) -> Any:
    try:
        return enum_type(raw)
    except ValueError:
        return default


def _total_rounds(raw: Any) -> int:
    return max(MIN_TOTAL_ROUNDS, min(MAX_TOTAL_ROUNDS, _as_int(raw, 1)))


def _parse_row_key(raw: Any, default_kind: RowKind) -> RowKey | None:
    """Read a row key in either form: ``{"kind", "id"}`` or a legacy string."""
    if isinstance(raw, dict):
        try:
            return RowKey.from_dict(raw)
        except (KeyError, ValueError):
            return None
    if not isinstance(raw, str) or not raw:
        return None
    if raw.startswith(LEGACY_FLOATING_PREFIX):
        return RowKey.floating(raw[len(LEGACY_FLOATING_PREFIX):])
    kind, sep, rest = raw.partition(":")
    if sep:
        parsed = _enum(RowKind, kind, None)
        if parsed is not None and rest:
            return RowKey(parsed, rest)
    return RowKey(default_kind, raw)


# ------------------------------
# Serialization
# ------------------------------
def _serialize_player(player: Player) -> dict[str, Any]:
    return {"id": player.id, "name": player.name, "group": player.group, "late": player.late}


def _deserialize_player(raw: dict[str, Any]) -> Player | None:
    name = _as_str(raw.get("name")).strip()
    if not name:
        return None
    player_id = _as_str(raw.get("id"))
    player = Player(name=name, group=_as_str(raw.get("group", raw.get("pool", ""))).upper(), late=bool(raw.get("late", False)))
    if player_id:
        player.id = player_id
    return player


def _deserialize_players(raw: Any) -> list[Player]:
    players: list[Player] = []
    for entry in _as_list(raw):
        player = _deserialize_player(entry) if isinstance(entry, dict) else None
        if player is not None:
            players.append(player)
    return players


def _serialize_adjustments(adjustments: dict[RowKey, int]) -> list[dict[str, Any]]:
    return [{"key": key.to_dict(), "offset": offset} for key, offset in adjustments.items()]


def _deserialize_adjustments(raw: Any, default_kind: RowKind) -> dict[RowKey, int]:
    adjustments: dict[RowKey, int] = {}
    # Version 1 stored adjustments as a flat {key: offset} object.
    items = (
        [(key, value) for key, value in raw.items()]
        if isinstance(raw, dict)
        else [(e.get("key"), e.get("offset")) for e in _as_list(raw) if isinstance(e, dict)]
    )
    for raw_key, raw_offset in items:
        key = _parse_row_key(raw_key, default_kind)
        if key is None:
            continue
        try:
            adjustments[key] = int(raw_offset)
        except (TypeError, ValueError):
            continue
    return adjustments


def _serialize_rounds(rounds: RoundSubmissionEngine) -> dict[str, Any]:
    return {
        "total_rounds": rounds.total_rounds,
        "units": {unit_id: [m.to_dict() for m in members] for unit_id, members in rounds.units.items()},
        "watermarks": dict(rounds.watermarks),
        "scores": {
            str(round_no): [{"key": key.to_dict(), "value": value} for key, value in by_member.items()]
            for round_no, by_member in sorted(rounds.scores.items())
        },
    }


def _deserialize_rounds(
    raw: dict[str, Any],
    total_rounds: int,
    score_range: tuple[int, int],
    default_kind: RowKind,
) -> RoundSubmissionEngine:
    rounds = RoundSubmissionEngine(_total_rounds(raw.get("total_rounds", total_rounds)), score_range)
    for unit_id, members in _as_dict(raw.get("units")).items():
        keys = [key for key in (_parse_row_key(m, default_kind) for m in _as_list(members)) if key is not None]
        try:
            rounds.add_unit(str(unit_id), keys)
        except PreconditionError as exc:
            logger.warning("Dropping card %s from saved rounds: %s", unit_id, exc.message)
    watermarks = _as_dict(raw.get("watermarks"))
    for unit_id in rounds.units:
        rounds.watermarks[unit_id] = max(0, min(rounds.total_rounds, _as_int(watermarks.get(unit_id), 0)))
    low, high = score_range
    for round_key, entries in _as_dict(raw.get("scores")).items():
        round_no = _as_int(round_key, 0)
        if round_no < 1 or round_no > rounds.total_rounds:
            continue
        pairs = (
            [(key, value) for key, value in entries.items()]
            if isinstance(entries, dict)
            else [(e.get("key"), e.get("value")) for e in _as_list(entries) if isinstance(e, dict)]
        )
        for raw_key, raw_value in pairs:
            key = _parse_row_key(raw_key, default_kind)
            if key is None or rounds.unit_for(key) is None:
                continue
            value = _as_int(raw_value, 0)
            rounds.scores.setdefault(round_no, {})[key] = max(low, min(high, value))
    return rounds


def serialize_ladder(ladder: TagLadder) -> dict[str, Any]:
    return {
        "players": [{"id": p.id, "name": p.name, "tag": p.tag} for p in ladder.players],
        "rounds": [{"id": r.id, "scores": [[pid, raw] for pid, raw in r.scores]} for r in ladder.rounds],
    }


def deserialize_ladder(raw: dict[str, Any]) -> TagLadder:
    players: list[LadderPlayer] = []
    for entry in _as_list(raw.get("players")):
        if not isinstance(entry, dict) or not _as_str(entry.get("name")).strip():
            continue
        tag = entry.get("tag")
        player = LadderPlayer(name=entry["name"].strip(), tag=tag if isinstance(tag, int) and not isinstance(tag, bool) else None)
        if _as_str(entry.get("id")):
            player.id = entry["id"]
        players.append(player)
    rounds: list[LadderRound] = []
    for entry in _as_list(raw.get("rounds")):
        if not isinstance(entry, dict):
            continue
        scores = entry.get("scores")
        if isinstance(scores, dict):
            pairs = [(str(pid), value) for pid, value in scores.items()]
        else:
            pairs = [(str(pair[0]), pair[1]) for pair in _as_list(scores) if isinstance(pair, list) and len(pair) == 2]
        ladder_round = LadderRound(scores=pairs)
        if _as_str(entry.get("id")):
            ladder_round.id = entry["id"]
        rounds.append(ladder_round)
    return TagLadder(players=players, rounds=rounds)


def serialize_doubles(doubles: DoublesLeague) -> dict[str, Any]:
    settings = doubles.settings
    return {
        "stage": doubles.stage.value,
        "settings": {
            "formation_mode": settings.formation_mode.value,
            "floating_mode": settings.floating_mode.value,
            "manual_floating_id": settings.manual_floating_id,
            "total_rounds": settings.total_rounds,
            "layout_note": settings.layout_note,
        },
        "players": [_serialize_player(p) for p in doubles.players],
        "formation": {
            "floating_id": doubles.formation.floating_id,
            "teams": [{"id": t.id, "name": t.name, "player_ids": list(t.player_ids)} for t in doubles.teams],
            "cards": [
                {
                    "id": c.id,
                    "name": c.name,
                    "team_ids": list(c.team_ids),
                    "floating_id": c.floating_id,
                    "start_slot": c.start_slot,
                }
                for c in doubles.cards
            ],
        },
        "rounds": _serialize_rounds(doubles.rounds),
        "adjustments": _serialize_adjustments(doubles.adjustments),
    }


def _legacy_doubles_stage(raw: dict[str, Any]) -> DoublesStage:
    if raw.get("finalized"):
        return DoublesStage.FINALIZED
    if raw.get("started") or raw.get("check_in_locked"):
        return DoublesStage.CHECK_IN_LOCKED
    if raw.get("format_locked"):
        return DoublesStage.FORMAT_LOCKED
    return DoublesStage.UNLOCKED


def deserialize_doubles(raw: dict[str, Any]) -> DoublesLeague:
    raw_settings = _as_dict(raw.get("settings"))
    settings = DoublesSettings(
        formation_mode=_enum(FormationMode, raw_settings.get("formation_mode"), FormationMode.RANDOM),
        floating_mode=_enum(FloatingMode, raw_settings.get("floating_mode"), FloatingMode.AUTO),
        manual_floating_id=_as_str(raw_settings.get("manual_floating_id")),
        total_rounds=_total_rounds(raw_settings.get("total_rounds", 1)),
        layout_note=_as_str(raw_settings.get("layout_note")),
    )
    if "stage" in raw:
        stage = _enum(DoublesStage, raw.get("stage"), DoublesStage.UNLOCKED)
    else:
        stage = _legacy_doubles_stage(raw)

    raw_formation = _as_dict(raw.get("formation"))
    teams: list[Team] = []
    for entry in _as_list(raw_formation.get("teams")):
        if not isinstance(entry, dict):
            continue
        try:
            team = Team(player_ids=[str(pid) for pid in _as_list(entry.get("player_ids"))], name=_as_str(entry.get("name"), "Team"))
        except ValueError:
            logger.warning("Skipping saved team %s without exactly two players", entry.get("id"))
            continue
        if _as_str(entry.get("id")):
            team.id = entry["id"]
        teams.append(team)
    cards: list[PlayCard] = []
    for entry in _as_list(raw_formation.get("cards")):
        if not isinstance(entry, dict):
            continue
        card = PlayCard(
            name=_as_str(entry.get("name"), f"Card {len(cards) + 1}"),
            team_ids=[str(tid) for tid in _as_list(entry.get("team_ids"))],
            floating_id=_as_str(entry.get("floating_id")),
            start_slot=_as_int(entry.get("start_slot"), 1),
        )
        if _as_str(entry.get("id")):
            card.id = entry["id"]
        cards.append(card)
    formation = Formation(teams=teams, cards=cards, floating_id=_as_str(raw_formation.get("floating_id")))

    rounds = _deserialize_rounds(_as_dict(raw.get("rounds")), settings.total_rounds, DOUBLES_SCORE_RANGE, RowKind.TEAM)
    if not rounds.units:
        for card in cards:
            rounds.add_unit(card.id, card.row_keys)
    settings.total_rounds = rounds.total_rounds
    return DoublesLeague(
        settings=settings,
        stage=stage,
        players=_deserialize_players(raw.get("players")),
        formation=formation,
        rounds=rounds,
        adjustments=_deserialize_adjustments(raw.get("adjustments"), RowKind.TEAM),
    )


def _serialize_putting_card(card: PuttingCard) -> dict[str, Any]:
    return {"id": card.id, "name": card.name, "player_ids": list(card.player_ids)}


def _deserialize_putting_cards(raw: Any) -> list[PuttingCard]:
    cards: list[PuttingCard] = []
    for entry in _as_list(raw):
        if not isinstance(entry, dict):
            continue
        card = PuttingCard(
            name=_as_str(entry.get("name"), f"Card {len(cards) + 1}"),
            player_ids=[str(pid) for pid in _as_list(entry.get("player_ids", entry.get("playerIds")))],
        )
        if _as_str(entry.get("id")):
            card.id = entry["id"]
        cards.append(card)
    return cards


def _deserialize_made(raw: Any) -> dict[str, dict[int, int]]:
    made: dict[str, dict[int, int]] = {}
    for player_id, stations in _as_dict(raw).items():
        for station, value in _as_dict(stations).items():
            number = _as_int(station, 0)
            if MIN_STATIONS <= number <= MAX_STATIONS and not is_blank(value):
                made.setdefault(str(player_id), {})[number] = clamp_score(value, 0, PUTTS_PER_STATION)
    return made


def _legacy_putting_rounds(raw: dict[str, Any], current_round: int) -> list[PuttingRound]:
    # Version 1 kept cardsByRound, scores[round][station][player] and submitted[round][card].
    cards_by_round = _as_dict(raw.get("cardsByRound"))
    scores = _as_dict(raw.get("scores"))
    submitted = _as_dict(raw.get("submitted"))
    rounds: list[PuttingRound] = []
    for number in range(1, current_round + 1):
        by_station = _as_dict(scores.get(str(number)))
        by_player: dict[str, dict[str, Any]] = {}
        for station, players in by_station.items():
            for player_id, value in _as_dict(players).items():
                by_player.setdefault(player_id, {})[station] = value
        rounds.append(
            PuttingRound(
                number=number,
                cards=_deserialize_putting_cards(cards_by_round.get(str(number))),
                made=_deserialize_made(by_player),
                submitted=[str(cid) for cid, done in _as_dict(submitted.get(str(number))).items() if done],
            )
        )
    return rounds


def serialize_putting(putting: PuttingLeague) -> dict[str, Any]:
    return {
        "stage": putting.stage.value,
        "settings": {
            "total_rounds": putting.settings.total_rounds,
            "stations": putting.settings.stations,
            "pool_mode": putting.settings.pool_mode.value,
            "card_mode": putting.settings.card_mode,
        },
        "players": [_serialize_player(p) for p in putting.players],
        "cards": [_serialize_putting_card(c) for c in putting.cards],
        "rounds": [
            {
                "number": played.number,
                "cards": [_serialize_putting_card(c) for c in played.cards],
                "made": {
                    player_id: {str(station): value for station, value in sorted(stations.items())}
                    for player_id, stations in played.made.items()
                },
                "submitted": list(played.submitted),
            }
            for played in putting.rounds
        ],
        "adjustments": _serialize_adjustments(putting.adjustments),
    }


def deserialize_putting(raw: dict[str, Any]) -> PuttingLeague:
    raw_settings = _as_dict(raw.get("settings"))
    settings = PuttingSettings(
        total_rounds=_total_rounds(raw_settings.get("total_rounds", raw_settings.get("rounds", 1))),
        stations=max(MIN_STATIONS, min(MAX_STATIONS, _as_int(raw_settings.get("stations"), 1))),
        pool_mode=_enum(PoolMode, raw_settings.get("pool_mode"), PoolMode.SPLIT),
        card_mode=_as_str(raw_settings.get("card_mode", raw_settings.get("cardMode", ""))),
    )
    if "stage" in raw:
        stage = _enum(PuttingStage, raw.get("stage"), PuttingStage.UNLOCKED)
    elif raw_settings.get("finalized"):
        stage = PuttingStage.FINALIZED
    elif raw_settings.get("locked"):
        stage = PuttingStage.LOCKED
    else:
        stage = PuttingStage.UNLOCKED

    cards = _deserialize_putting_cards(raw.get("cards"))
    if not cards:
        cards = _deserialize_putting_cards(_as_dict(raw.get("cardsByRound")).get("1"))

    rounds: list[PuttingRound] = []
    if stage != PuttingStage.UNLOCKED:
        if isinstance(raw.get("rounds"), list):
            for entry in raw["rounds"]:
                if not isinstance(entry, dict):
                    continue
                rounds.append(
                    PuttingRound(
                        number=len(rounds) + 1,
                        cards=_deserialize_putting_cards(entry.get("cards")),
                        made=_deserialize_made(entry.get("made")),
                        submitted=[str(cid) for cid in _as_list(entry.get("submitted"))],
                    )
                )
        elif "cardsByRound" in raw:
            current = min(settings.total_rounds, max(1, _as_int(raw_settings.get("currentRound"), 1)))
            rounds = _legacy_putting_rounds(raw, current)
        if not rounds:
            rounds = [
                PuttingRound(
                    number=1,
                    cards=[PuttingCard(name=c.name, player_ids=list(c.player_ids), id=c.id) for c in cards],
                )
            ]
    return PuttingLeague(
        settings=settings,
        stage=stage,
        players=_deserialize_players(raw.get("players")),
        cards=cards,
        rounds=rounds[: settings.total_rounds],
        adjustments=_deserialize_adjustments(raw.get("adjustments"), RowKind.PLAYER),
    )


def serialize_state(state: LeagueState, save_version: int) -> dict[str, Any]:
    return {
        "save_version": save_version,
        "league_id": state.league_id,
        "display_name": state.display_name,
        "ladder": serialize_ladder(state.ladder),
        "doubles": serialize_doubles(state.doubles),
        "putting": serialize_putting(state.putting),
    }


def deserialize_state(raw: dict[str, Any], league_id: str) -> LeagueState:
    return LeagueState(
        league_id=_as_str(raw.get("league_id"), league_id) or league_id,
        display_name=_as_str(raw.get("display_name")),
        ladder=deserialize_ladder(_as_dict(raw.get("ladder"))),
        doubles=deserialize_doubles(_as_dict(raw.get("doubles"))),
        putting=deserialize_putting(_as_dict(raw.get("putting"))),
    )


class LeagueStore:
    """One league document on disk, read and written whole."""

    SAVE_VERSION = 2

    def __init__(self, path: str | Path, league_id: str = DEFAULT_LEAGUE_ID) -> None:
        self.path = Path(path)
        self.league_id = league_id
        self.last_load_error: str = ""

    def exists(self) -> bool:
        return self.path.exists()

    def _load_raw(self) -> dict[str, Any]:
        if not self.path.exists():
            return {}
        try:
            raw = json.loads(self.path.read_text(encoding="utf-8"))
            if isinstance(raw, dict):
                version = int(raw.get("save_version", 1) or 1)
                if version > self.SAVE_VERSION:
                    self.last_load_error = (
                        f"Unsupported league state version {version}; app supports up to {self.SAVE_VERSION}."
                    )
                    return {}
                return raw
            self.last_load_error = "League state file has invalid format; starting with defaults."
        except (json.JSONDecodeError, OSError, TypeError, ValueError) as exc:
            self.last_load_error = f"Failed to load league state ({exc}); starting with defaults."
            return {}
        return {}

    def load(self) -> LeagueState:
        self.last_load_error = ""
        raw = self._load_raw()
        if self.last_load_error:
            logger.warning("%s: %s", self.path, self.last_load_error)
        if not raw:
            return LeagueState(league_id=self.league_id)
        version = int(raw.get("save_version", 1) or 1)
        state = deserialize_state(raw, self.league_id)
        if version < self.SAVE_VERSION:
            logger.info("Migrated %s from save version %s to %s", self.path, version, self.SAVE_VERSION)
        return state

    def save(self, state: LeagueState) -> None:
        self.path.parent.mkdir(parents=True, exist_ok=True)
        self._write_json_with_backup(self.path, serialize_state(state, self.SAVE_VERSION))

    def _write_json_with_backup(self, path: Path, payload: Any, *, with_backup: bool = True) -> None:
        if with_backup and path.exists():
            backup = path.with_suffix(path.suffix + ".bak")
            try:
                shutil.copy2(path, backup)
            except OSError as exc:
                logger.warning("Could not back up %s: %s", path, exc)
        path.write_text(json.dumps(payload, indent=2), encoding="utf-8")


def clone_league(source: LeagueStore, target: LeagueStore, overwrite: bool = False) -> LeagueState:
    """Copy one league document to another league id and return the new state."""
    if source.league_id == target.league_id or source.path.resolve() == target.path.resolve():
        raise PreconditionError("same_league", "Source and target league must differ.")
    if not source.exists():
        raise PreconditionError("unknown_league", f"League {source.league_id} does not exist.")
    if target.exists() and not overwrite:
        raise PreconditionError("league_exists", f"League {target.league_id} already exists.")
    state = source.load()
    if source.last_load_error:
        raise PreconditionError("unreadable_league", source.last_load_error)
    state.league_id = target.league_id
    target.save(state)
    logger.info("Cloned league %s into %s", source.league_id, target.league_id)
    return state

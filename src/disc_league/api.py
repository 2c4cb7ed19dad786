from __future__ import annotations

import os
import re
import secrets
from pathlib import Path
from threading import Lock
from typing import Any

from fastapi import FastAPI, Header, HTTPException, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse, PlainTextResponse
from pydantic import BaseModel

from .app import format_league_report
from .doubles import DoublesLeague
from .ladder import TagHolder
from .leaderboard import RankedRow
from .league import LeagueEngine
from .log import get_logger
from .models import Player, RowKey, RowKind
from .putting import PuttingLeague
from .storage import LeagueStore, clone_league

logger = get_logger("disc_league.api")

LEAGUE_ID_PATTERN = re.compile(r"^[a-z0-9][a-z0-9_-]{0,63}$")


class LeagueCreate(BaseModel):
    league_id: str
    display_name: str = ""


class CloneRequest(BaseModel):
    target_id: str
    overwrite: bool = False


class NameEntry(BaseModel):
    name: str
    group: str = ""


class RoundScores(BaseModel):
    scores: dict[str, Any]


class DoublesSettingsUpdate(BaseModel):
    formation_mode: str | None = None
    floating_mode: str | None = None
    manual_floating_id: str | None = None
    total_rounds: int | None = None
    layout_note: str | None = None


class PuttingSettingsUpdate(BaseModel):
    total_rounds: int | None = None
    stations: int | None = None
    pool_mode: str | None = None


class StartSelection(BaseModel):
    floating_id: str | None = None


class RowKeyPayload(BaseModel):
    kind: str
    id: str

    def to_key(self) -> RowKey:
        return RowKey(RowKind(self.kind), self.id)


class DoublesScoreEntry(BaseModel):
    card_id: str
    key: RowKeyPayload
    round: int
    value: Any = None


class PuttingScoreEntry(BaseModel):
    card_id: str
    player_id: str
    station: int
    value: Any = None


class RoundSubmission(BaseModel):
    round: int | None = None


class StartSlotSelection(BaseModel):
    slot: Any


class LatePlayerEntry(BaseModel):
    name: str
    group: str = ""
    card_id: str = ""


class CardEntry(BaseModel):
    player_ids: list[str]
    name: str = ""


class DoublesAdjustment(BaseModel):
    key: RowKeyPayload
    offset: int | None = None
    final_score: int | None = None


class PuttingAdjustment(BaseModel):
    player_id: str
    offset: int | None = None
    final_score: int | None = None


class LeagueService:
    def __init__(self, data_dir: str | Path | None = None, admin_secret: str | None = None) -> None:
        self.data_dir = Path(data_dir or os.environ.get("DISC_LEAGUE_DATA_DIR") or Path.cwd() / "leagues")
        self.admin_secret = (
            admin_secret if admin_secret is not None else os.environ.get("DISC_LEAGUE_ADMIN_SECRET", "")
        )
        self._engines: dict[str, LeagueEngine] = {}
        self._lock = Lock()

    def _path_for(self, league_id: str) -> Path:
        if not LEAGUE_ID_PATTERN.match(league_id):
            raise HTTPException(status_code=400, detail="Invalid league id")
        return self.data_dir / f"{league_id}.json"

    def engine(self, league_id: str) -> LeagueEngine:
        cached = self._engines.get(league_id)
        if cached is not None:
            return cached
        path = self._path_for(league_id)
        if not path.exists():
            raise HTTPException(status_code=404, detail="League not found")
        engine = LeagueEngine(path, league_id=league_id)
        self._engines[league_id] = engine
        return engine

    def require_admin(self, secret: str | None) -> None:
        if not self.admin_secret or not secret or not secrets.compare_digest(secret, self.admin_secret):
            logger.warning("Rejected admin call with a missing or wrong secret")
            raise HTTPException(status_code=403, detail="Admin secret required")

    def create_league(self, league_id: str, display_name: str) -> dict[str, Any]:
        path = self._path_for(league_id)
        if path.exists():
            raise HTTPException(status_code=400, detail="League already exists")
        engine = LeagueEngine(path, league_id=league_id)
        engine.set_display_name(display_name or league_id)
        self._engines[league_id] = engine
        return self.league_summary(engine)

    def clone(self, source_id: str, target_id: str, overwrite: bool) -> dict[str, Any]:
        source = LeagueStore(self._path_for(source_id), source_id)
        target = LeagueStore(self._path_for(target_id), target_id)
        if not source.exists():
            raise HTTPException(status_code=404, detail="League not found")
        clone_league(source, target, overwrite=overwrite)
        self._engines.pop(target_id, None)
        return self.league_summary(self.engine(target_id))

    # ------------------------------
    # Response shapes
    # ------------------------------
    def _player_to_dict(self, player: Player) -> dict[str, Any]:
        return {"id": player.id, "name": player.name, "group": player.group, "late": player.late}

    def _holder_to_dict(self, holder: TagHolder) -> dict[str, Any]:
        return {"id": holder.id, "name": holder.name, "tag": holder.tag}

    def _rows(self, rows: list[RankedRow]) -> list[dict[str, Any]]:
        return [row.to_dict() for row in rows]

    def league_summary(self, engine: LeagueEngine) -> dict[str, Any]:
        state = engine.state
        return {
            "league_id": state.league_id,
            "display_name": state.display_name,
            "last_load_error": engine.last_load_error,
            "ladder_players": len(state.ladder.players),
            "doubles_stage": state.doubles.stage.value,
            "putting_stage": state.putting.stage.value,
        }

    def ladder_view(self, engine: LeagueEngine) -> dict[str, Any]:
        ladder = engine.state.ladder
        return {
            "standings": [self._holder_to_dict(h) for h in engine.ladder_standings()],
            "rounds": [{"id": r.id, "entries": len(r.scores)} for r in ladder.rounds],
        }

    def doubles_view(self, doubles: DoublesLeague) -> dict[str, Any]:
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
            "check_in": doubles.check_in_summary(),
            "players": [self._player_to_dict(p) for p in doubles.players],
            "teams": [{"id": t.id, "name": t.name, "player_ids": list(t.player_ids)} for t in doubles.teams],
            "cards": [
                {
                    "id": c.id,
                    "name": c.name,
                    "start_slot": c.start_slot,
                    "team_ids": list(c.team_ids),
                    "floating_id": c.floating_id,
                    "submitted_through": doubles.rounds.watermark(c.id) if c.id in doubles.rounds.units else 0,
                }
                for c in doubles.cards
            ],
            "complete": doubles.is_complete(),
        }

    def putting_view(self, putting: PuttingLeague) -> dict[str, Any]:
        return {
            "stage": putting.stage.value,
            "settings": {
                "total_rounds": putting.settings.total_rounds,
                "stations": putting.settings.stations,
                "pool_mode": putting.settings.pool_mode.value,
                "card_mode": putting.settings.card_mode,
            },
            "current_round": putting.current_round,
            "players": [self._player_to_dict(p) for p in putting.players],
            "cards": [
                {
                    "id": c.id,
                    "name": c.name,
                    "player_ids": list(c.player_ids),
                    "submitted": bool(putting.rounds) and putting.rounds[-1].is_submitted(c.id),
                }
                for c in putting.current_cards
            ],
            "missing_cards": putting.missing_cards(),
            "complete": putting.is_complete(),
        }


service = LeagueService()
app = FastAPI(title="Disc League API", version="0.1.0")
app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.exception_handler(ValueError)
def league_error_handler(request: Request, exc: ValueError) -> JSONResponse:
    reason = getattr(exc, "reason", "invalid_value")
    return JSONResponse(status_code=400, content={"detail": str(exc), "reason": reason})


@app.get("/api/health")
def health() -> dict[str, str]:
    return {"status": "ok"}


@app.post("/api/leagues")
def create_league(payload: LeagueCreate, x_admin_secret: str | None = Header(default=None)) -> dict[str, Any]:
    with service._lock:
        service.require_admin(x_admin_secret)
        return service.create_league(payload.league_id, payload.display_name)


@app.get("/api/leagues/{league_id}")
def league_summary(league_id: str) -> dict[str, Any]:
    with service._lock:
        return service.league_summary(service.engine(league_id))


@app.post("/api/leagues/{league_id}/clone")
def clone(league_id: str, payload: CloneRequest, x_admin_secret: str | None = Header(default=None)) -> dict[str, Any]:
    with service._lock:
        service.require_admin(x_admin_secret)
        return service.clone(league_id, payload.target_id, payload.overwrite)


@app.get("/api/leagues/{league_id}/report", response_class=PlainTextResponse)
def report(league_id: str) -> str:
    with service._lock:
        return format_league_report(service.engine(league_id))


# ------------------------------
# Tag ladder
# ------------------------------
@app.get("/api/leagues/{league_id}/ladder")
def ladder(league_id: str) -> dict[str, Any]:
    with service._lock:
        return service.ladder_view(service.engine(league_id))


@app.post("/api/leagues/{league_id}/ladder/players")
def add_ladder_player(league_id: str, payload: NameEntry) -> dict[str, Any]:
    with service._lock:
        engine = service.engine(league_id)
        player = engine.add_ladder_player(payload.name)
        return {"id": player.id, "name": player.name, "tag": player.tag}


@app.post("/api/leagues/{league_id}/ladder/rounds")
def record_ladder_round(league_id: str, payload: RoundScores) -> dict[str, Any]:
    with service._lock:
        engine = service.engine(league_id)
        ladder_round = engine.record_ladder_round(payload.scores)
        return {"round_id": ladder_round.id, **service.ladder_view(engine)}


@app.post("/api/leagues/{league_id}/ladder/preview")
def preview_ladder_round(league_id: str, payload: RoundScores) -> dict[str, Any]:
    with service._lock:
        engine = service.engine(league_id)
        return {"standings": [service._holder_to_dict(h) for h in engine.preview_ladder_round(payload.scores)]}


@app.get("/api/leagues/{league_id}/ladder/rounds/{round_id}")
def ladder_round_results(league_id: str, round_id: str) -> dict[str, Any]:
    with service._lock:
        return {"rows": service._rows(service.engine(league_id).ladder_round_results(round_id))}


@app.get("/api/leagues/{league_id}/ladder/players/{player_id}/history")
def tag_history(league_id: str, player_id: str) -> dict[str, Any]:
    with service._lock:
        return {"player_id": player_id, "tags": service.engine(league_id).tag_history(player_id)}


# ------------------------------
# Doubles
# ------------------------------
@app.get("/api/leagues/{league_id}/doubles")
def doubles(league_id: str) -> dict[str, Any]:
    with service._lock:
        return service.doubles_view(service.engine(league_id).state.doubles)


@app.post("/api/leagues/{league_id}/doubles/settings")
def update_doubles_settings(
    league_id: str,
    payload: DoublesSettingsUpdate,
    x_admin_secret: str | None = Header(default=None),
) -> dict[str, Any]:
    with service._lock:
        service.require_admin(x_admin_secret)
        engine = service.engine(league_id)
        engine.update_doubles_settings(**payload.model_dump(exclude_none=True))
        return service.doubles_view(engine.state.doubles)


@app.post("/api/leagues/{league_id}/doubles/checkins")
def doubles_check_in(league_id: str, payload: NameEntry) -> dict[str, Any]:
    with service._lock:
        player = service.engine(league_id).doubles_check_in(payload.name, payload.group)
        return service._player_to_dict(player)


@app.delete("/api/leagues/{league_id}/doubles/players/{player_id}")
def doubles_remove_player(
    league_id: str,
    player_id: str,
    x_admin_secret: str | None = Header(default=None),
) -> dict[str, Any]:
    with service._lock:
        service.require_admin(x_admin_secret)
        engine = service.engine(league_id)
        engine.doubles_remove_player(player_id)
        return service.doubles_view(engine.state.doubles)


@app.post("/api/leagues/{league_id}/doubles/lock-format")
def lock_doubles_format(league_id: str, x_admin_secret: str | None = Header(default=None)) -> dict[str, Any]:
    with service._lock:
        service.require_admin(x_admin_secret)
        engine = service.engine(league_id)
        changed = engine.lock_doubles_format()
        return {"changed": changed, **service.doubles_view(engine.state.doubles)}


@app.post("/api/leagues/{league_id}/doubles/start")
def start_doubles(
    league_id: str,
    payload: StartSelection | None = None,
    x_admin_secret: str | None = Header(default=None),
) -> dict[str, Any]:
    with service._lock:
        service.require_admin(x_admin_secret)
        engine = service.engine(league_id)
        engine.start_doubles(floating_id=payload.floating_id if payload else None)
        return service.doubles_view(engine.state.doubles)


@app.post("/api/leagues/{league_id}/doubles/scores")
def record_doubles_score(league_id: str, payload: DoublesScoreEntry) -> dict[str, Any]:
    with service._lock:
        stored = service.engine(league_id).record_doubles_score(
            payload.card_id, payload.key.to_key(), payload.round, payload.value
        )
        return {"stored": stored}


@app.post("/api/leagues/{league_id}/doubles/cards/{card_id}/submit")
def submit_doubles_round(league_id: str, card_id: str, payload: RoundSubmission | None = None) -> dict[str, Any]:
    with service._lock:
        engine = service.engine(league_id)
        changed = engine.submit_doubles_round(card_id, payload.round if payload else None)
        return {"changed": changed, "submitted_through": engine.state.doubles.rounds.watermark(card_id)}


@app.post("/api/leagues/{league_id}/doubles/cards/{card_id}/start-slot")
def set_start_slot(
    league_id: str,
    card_id: str,
    payload: StartSlotSelection,
    x_admin_secret: str | None = Header(default=None),
) -> dict[str, Any]:
    with service._lock:
        service.require_admin(x_admin_secret)
        return {"start_slot": service.engine(league_id).set_start_slot(card_id, payload.slot)}


@app.post("/api/leagues/{league_id}/doubles/late-players")
def add_late_player(
    league_id: str,
    payload: LatePlayerEntry,
    x_admin_secret: str | None = Header(default=None),
) -> dict[str, Any]:
    with service._lock:
        service.require_admin(x_admin_secret)
        engine = service.engine(league_id)
        player = engine.add_late_player(payload.name, payload.group, payload.card_id)
        return {"player": service._player_to_dict(player), **service.doubles_view(engine.state.doubles)}


@app.get("/api/leagues/{league_id}/doubles/leaderboard")
def doubles_leaderboard(league_id: str) -> dict[str, Any]:
    with service._lock:
        return {"rows": service._rows(service.engine(league_id).doubles_leaderboard())}


@app.post("/api/leagues/{league_id}/doubles/adjustments")
def adjust_doubles(
    league_id: str,
    payload: DoublesAdjustment,
    x_admin_secret: str | None = Header(default=None),
) -> dict[str, Any]:
    with service._lock:
        service.require_admin(x_admin_secret)
        engine = service.engine(league_id)
        key = payload.key.to_key()
        if payload.final_score is not None:
            engine.set_doubles_final_score(key, payload.final_score)
        elif payload.offset is not None:
            engine.set_doubles_adjustment(key, payload.offset)
        else:
            raise HTTPException(status_code=400, detail="Provide offset or final_score")
        return {"rows": service._rows(engine.doubles_leaderboard())}


@app.delete("/api/leagues/{league_id}/doubles/adjustments/{kind}/{row_id}")
def clear_doubles_adjustment(
    league_id: str,
    kind: str,
    row_id: str,
    x_admin_secret: str | None = Header(default=None),
) -> dict[str, Any]:
    with service._lock:
        service.require_admin(x_admin_secret)
        engine = service.engine(league_id)
        engine.clear_doubles_adjustment(RowKey(RowKind(kind), row_id))
        return {"rows": service._rows(engine.doubles_leaderboard())}


@app.post("/api/leagues/{league_id}/doubles/finalize")
def finalize_doubles(league_id: str, x_admin_secret: str | None = Header(default=None)) -> dict[str, Any]:
    with service._lock:
        service.require_admin(x_admin_secret)
        engine = service.engine(league_id)
        changed = engine.finalize_doubles()
        return {"changed": changed, **service.doubles_view(engine.state.doubles)}


@app.post("/api/leagues/{league_id}/doubles/reset")
def reset_doubles(league_id: str, x_admin_secret: str | None = Header(default=None)) -> dict[str, Any]:
    with service._lock:
        service.require_admin(x_admin_secret)
        engine = service.engine(league_id)
        engine.reset_doubles()
        return service.doubles_view(engine.state.doubles)


# ------------------------------
# Putting
# ------------------------------
@app.get("/api/leagues/{league_id}/putting")
def putting(league_id: str) -> dict[str, Any]:
    with service._lock:
        return service.putting_view(service.engine(league_id).state.putting)


@app.post("/api/leagues/{league_id}/putting/settings")
def update_putting_settings(
    league_id: str,
    payload: PuttingSettingsUpdate,
    x_admin_secret: str | None = Header(default=None),
) -> dict[str, Any]:
    with service._lock:
        service.require_admin(x_admin_secret)
        engine = service.engine(league_id)
        engine.update_putting_settings(**payload.model_dump(exclude_none=True))
        return service.putting_view(engine.state.putting)


@app.post("/api/leagues/{league_id}/putting/checkins")
def putting_check_in(league_id: str, payload: NameEntry) -> dict[str, Any]:
    with service._lock:
        player = service.engine(league_id).putting_check_in(payload.name, payload.group or "A")
        return service._player_to_dict(player)


@app.delete("/api/leagues/{league_id}/putting/players/{player_id}")
def putting_remove_player(
    league_id: str,
    player_id: str,
    x_admin_secret: str | None = Header(default=None),
) -> dict[str, Any]:
    with service._lock:
        service.require_admin(x_admin_secret)
        engine = service.engine(league_id)
        engine.putting_remove_player(player_id)
        return service.putting_view(engine.state.putting)


@app.post("/api/leagues/{league_id}/putting/cards/randomize")
def randomize_putting_cards(league_id: str, x_admin_secret: str | None = Header(default=None)) -> dict[str, Any]:
    with service._lock:
        service.require_admin(x_admin_secret)
        engine = service.engine(league_id)
        engine.randomize_putting_cards()
        return service.putting_view(engine.state.putting)


@app.post("/api/leagues/{league_id}/putting/cards")
def create_putting_card(
    league_id: str,
    payload: CardEntry,
    x_admin_secret: str | None = Header(default=None),
) -> dict[str, Any]:
    with service._lock:
        service.require_admin(x_admin_secret)
        engine = service.engine(league_id)
        engine.create_putting_card(payload.player_ids, payload.name)
        return service.putting_view(engine.state.putting)


@app.delete("/api/leagues/{league_id}/putting/cards")
def clear_putting_cards(league_id: str, x_admin_secret: str | None = Header(default=None)) -> dict[str, Any]:
    with service._lock:
        service.require_admin(x_admin_secret)
        engine = service.engine(league_id)
        engine.clear_putting_cards()
        return service.putting_view(engine.state.putting)


@app.post("/api/leagues/{league_id}/putting/begin")
def begin_putting(league_id: str, x_admin_secret: str | None = Header(default=None)) -> dict[str, Any]:
    with service._lock:
        service.require_admin(x_admin_secret)
        engine = service.engine(league_id)
        changed = engine.begin_putting()
        return {"changed": changed, **service.putting_view(engine.state.putting)}


@app.post("/api/leagues/{league_id}/putting/scores")
def record_putting_made(league_id: str, payload: PuttingScoreEntry) -> dict[str, Any]:
    with service._lock:
        stored = service.engine(league_id).record_putting_made(
            payload.card_id, payload.player_id, payload.station, payload.value
        )
        return {"stored": stored}


@app.post("/api/leagues/{league_id}/putting/cards/{card_id}/submit")
def submit_putting_card(league_id: str, card_id: str) -> dict[str, Any]:
    with service._lock:
        engine = service.engine(league_id)
        changed = engine.submit_putting_card(card_id)
        putting = engine.state.putting
        return {
            "changed": changed,
            "round": putting.current_round,
            "missing_cards": putting.missing_cards(),
        }


@app.post("/api/leagues/{league_id}/putting/next-round")
def begin_next_putting_round(league_id: str, x_admin_secret: str | None = Header(default=None)) -> dict[str, Any]:
    with service._lock:
        service.require_admin(x_admin_secret)
        engine = service.engine(league_id)
        engine.begin_next_putting_round()
        return service.putting_view(engine.state.putting)


@app.get("/api/leagues/{league_id}/putting/leaderboards")
def putting_leaderboards(league_id: str) -> dict[str, Any]:
    with service._lock:
        boards = service.engine(league_id).putting_leaderboards()
        return {"boards": {name: service._rows(rows) for name, rows in boards.items()}}


@app.post("/api/leagues/{league_id}/putting/adjustments")
def adjust_putting(
    league_id: str,
    payload: PuttingAdjustment,
    x_admin_secret: str | None = Header(default=None),
) -> dict[str, Any]:
    with service._lock:
        service.require_admin(x_admin_secret)
        engine = service.engine(league_id)
        if payload.final_score is not None:
            engine.set_putting_final_score(payload.player_id, payload.final_score)
        elif payload.offset is not None:
            engine.set_putting_adjustment(payload.player_id, payload.offset)
        else:
            raise HTTPException(status_code=400, detail="Provide offset or final_score")
        boards = engine.putting_leaderboards()
        return {"boards": {name: service._rows(rows) for name, rows in boards.items()}}


@app.delete("/api/leagues/{league_id}/putting/adjustments/{player_id}")
def clear_putting_adjustment(
    league_id: str,
    player_id: str,
    x_admin_secret: str | None = Header(default=None),
) -> dict[str, Any]:
    with service._lock:
        service.require_admin(x_admin_secret)
        engine = service.engine(league_id)
        engine.clear_putting_adjustment(player_id)
        boards = engine.putting_leaderboards()
        return {"boards": {name: service._rows(rows) for name, rows in boards.items()}}


@app.post("/api/leagues/{league_id}/putting/finalize")
def finalize_putting(league_id: str, x_admin_secret: str | None = Header(default=None)) -> dict[str, Any]:
    with service._lock:
        service.require_admin(x_admin_secret)
        engine = service.engine(league_id)
        changed = engine.finalize_putting()
        return {"changed": changed, **service.putting_view(engine.state.putting)}


@app.post("/api/leagues/{league_id}/putting/reset")
def reset_putting(league_id: str, x_admin_secret: str | None = Header(default=None)) -> dict[str, Any]:
    with service._lock:
        service.require_admin(x_admin_secret)
        engine = service.engine(league_id)
        engine.reset_putting()
        return service.putting_view(engine.state.putting)

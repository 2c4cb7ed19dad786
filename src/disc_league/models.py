from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from uuid import uuid4


def new_id() -> str:
    return uuid4().hex[:10]


class FormationMode(str, Enum):
    RANDOM = "random"
    SEATED = "seated"


class FloatingMode(str, Enum):
    AUTO = "auto"
    MANUAL = "manual"


class PoolMode(str, Enum):
    SPLIT = "split"
    COMBINED = "combined"


class RowKind(str, Enum):
    TEAM = "team"
    PLAYER = "player"
    FLOATING = "floating"


@dataclass(frozen=True, slots=True)
class RowKey:
    """Identifies one leaderboard row: a team, a single player, or a floating player."""

    kind: RowKind
    id: str

    @classmethod
    def team(cls, team_id: str) -> RowKey:
        return cls(RowKind.TEAM, team_id)

    @classmethod
    def player(cls, player_id: str) -> RowKey:
        return cls(RowKind.PLAYER, player_id)

    @classmethod
    def floating(cls, player_id: str) -> RowKey:
        return cls(RowKind.FLOATING, player_id)

    def to_dict(self) -> dict[str, str]:
        return {"kind": self.kind.value, "id": self.id}

    @classmethod
    def from_dict(cls, raw: dict[str, str]) -> RowKey:
        return cls(RowKind(raw["kind"]), str(raw["id"]))

    def __str__(self) -> str:
        return f"{self.kind.value}:{self.id}"


@dataclass(slots=True)
class Player:
    name: str
    group: str = ""
    id: str = field(default_factory=new_id)
    late: bool = False


@dataclass(slots=True)
class Team:
    player_ids: list[str]
    name: str = "Team"
    id: str = field(default_factory=new_id)

    def __post_init__(self) -> None:
        if len(self.player_ids) != 2:
            raise ValueError(f"{self.name} must have exactly 2 players.")


@dataclass(slots=True)
class PlayCard:
    """A doubles card: 1-3 teams plus at most one floating player."""

    name: str
    team_ids: list[str] = field(default_factory=list)
    floating_id: str = ""
    start_slot: int = 1
    id: str = field(default_factory=new_id)

    @property
    def row_keys(self) -> list[RowKey]:
        keys = [RowKey.team(team_id) for team_id in self.team_ids]
        if self.floating_id:
            keys.append(RowKey.floating(self.floating_id))
        return keys

    @property
    def is_valid(self) -> bool:
        if not self.team_ids:
            return False
        if len(self.team_ids) == 1 and not self.floating_id:
            return False
        return True


@dataclass(slots=True)
class PuttingCard:
    name: str
    player_ids: list[str] = field(default_factory=list)
    id: str = field(default_factory=new_id)

    @property
    def row_keys(self) -> list[RowKey]:
        return [RowKey.player(player_id) for player_id in self.player_ids]


class LeagueError(ValueError):
    """Base for every rejected league operation. ``reason`` is a stable code."""

    def __init__(self, reason: str, message: str) -> None:
        super().__init__(message)
        self.reason = reason
        self.message = message


class PreconditionError(LeagueError):
    pass


class FormationError(LeagueError):
    pass


class StageError(LeagueError):
    pass

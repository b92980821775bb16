import enum
from dataclasses import dataclass, field
from typing import Optional, Union

from app.engine.position import Position


class ExtraType(enum.Enum):
    WIDE = "wide"
    NO_BALL = "no_ball"
    BYE = "bye"
    LEG_BYE = "leg_bye"

    @property
    def is_legal_delivery(self) -> bool:
        """Wides and no-balls are bowled again"""
        return self not in (ExtraType.WIDE, ExtraType.NO_BALL)

    @property
    def charged_to_bowler(self) -> bool:
        return self in (ExtraType.WIDE, ExtraType.NO_BALL)


class DismissalType(enum.Enum):
    BOWLED = "bowled"
    CAUGHT = "caught"
    LBW = "lbw"
    RUN_OUT = "run_out"
    STUMPED = "stumped"
    HIT_WICKET = "hit_wicket"

    @property
    def needs_fielder(self) -> bool:
        return self in (DismissalType.CAUGHT, DismissalType.STUMPED, DismissalType.RUN_OUT)

    @property
    def credited_to_bowler(self) -> bool:
        return self != DismissalType.RUN_OUT


class PendingRequest(enum.Enum):
    NONE = "none"
    FIELDER = "fielder"
    NEW_BATSMAN = "new_batsman"
    NEW_BOWLER = "new_bowler"
    NEW_INNINGS_OPENERS = "new_innings_openers"


class SessionStatus(enum.Enum):
    AWAITING_OPENERS = "awaiting_openers"
    LIVE = "live"
    AWAITING_FIELDER = "awaiting_fielder"
    AWAITING_NEW_BATSMAN = "awaiting_new_batsman"
    AWAITING_NEW_BOWLER = "awaiting_new_bowler"
    INNINGS_BREAK = "innings_break"
    MATCH_COMPLETE = "match_complete"


@dataclass(frozen=True)
class Extra:
    kind: ExtraType
    runs: int = 1


@dataclass(frozen=True)
class Wicket:
    kind: DismissalType
    dismissed: int
    fielder: Optional[int] = None


@dataclass(frozen=True)
class BallEvent:
    """One delivery as entered by the scorer"""
    striker: int
    non_striker: int
    bowler: int
    runs_off_bat: int = 0
    extra: Optional[Extra] = None
    wicket: Optional[Wicket] = None

    @property
    def extra_runs(self) -> int:
        return self.extra.runs if self.extra else 0

    @property
    def total_runs(self) -> int:
        return self.runs_off_bat + self.extra_runs

    @property
    def is_legal_delivery(self) -> bool:
        return self.extra is None or self.extra.kind.is_legal_delivery

    @property
    def is_wide(self) -> bool:
        return self.extra is not None and self.extra.kind == ExtraType.WIDE

    @property
    def short_outcome(self) -> str:
        if self.wicket:
            return "W"
        if self.extra and self.extra.kind == ExtraType.WIDE:
            return "Wd"
        if self.extra and self.extra.kind == ExtraType.NO_BALL:
            return "Nb"
        return str(self.total_runs)

    def describe(self) -> str:
        parts = []
        if self.runs_off_bat > 0:
            parts.append(f"{self.runs_off_bat} run{'s' if self.runs_off_bat != 1 else ''}")
        if self.extra:
            parts.append(f"{self.extra.runs} {self.extra.kind.value.replace('_', ' ')}")
        if self.wicket:
            parts.append(f"Wicket ({self.wicket.kind.value.replace('_', ' ')})")
        if not parts:
            return "Dot ball"
        return " + ".join(parts)


@dataclass(frozen=True)
class RecordedBall:
    """A logged delivery: the slot it was bowled at plus the bowler who bowled the over before"""
    sequence: int
    position: Position
    event: BallEvent
    previous_bowler: Optional[int] = None


# Payloads for resolve_pending_request

@dataclass(frozen=True)
class Openers:
    striker: int
    non_striker: int
    bowler: int


@dataclass(frozen=True)
class NextInnings:
    pass


@dataclass(frozen=True)
class NewBatsman:
    player_id: int


@dataclass(frozen=True)
class NewBowler:
    player_id: int


@dataclass(frozen=True)
class Fielder:
    player_id: int


ResolvePayload = Union[Openers, NextInnings, NewBatsman, NewBowler, Fielder]


@dataclass(frozen=True)
class RosterEntry:
    player_id: int
    is_selected: bool = True


@dataclass(frozen=True)
class Roster:
    """Ordered squad for one team in one match"""
    team_id: int
    players: tuple = field(default_factory=tuple)

    def __post_init__(self):
        object.__setattr__(self, "players", tuple(self.players))

    @classmethod
    def of(cls, team_id: int, player_ids: list) -> "Roster":
        """Roster where every listed player is selected"""
        return cls(team_id=team_id, players=tuple(RosterEntry(pid) for pid in player_ids))

    def is_eligible(self, player_id: Optional[int]) -> bool:
        return any(p.player_id == player_id and p.is_selected for p in self.players)

    @property
    def selected_ids(self) -> list:
        return [p.player_id for p in self.players if p.is_selected]

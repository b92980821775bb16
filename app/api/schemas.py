"""
Pydantic schemas for API request/response models
"""
from pydantic import BaseModel
from typing import Literal, Optional
from enum import Enum

from app.engine.events import DismissalType, ExtraType


class ResolveKind(str, Enum):
    OPENERS = "openers"
    NEXT_INNINGS = "next_innings"
    NEW_BATSMAN = "new_batsman"
    NEW_BOWLER = "new_bowler"
    FIELDER = "fielder"


# Match setup
class RosterPlayerIn(BaseModel):
    player_id: int
    is_selected: bool = True


class CreateMatchRequest(BaseModel):
    team1_id: int
    team2_id: int
    batting_first_id: int
    total_overs: Optional[int] = None  # defaults to settings.DEFAULT_TOTAL_OVERS
    toss_winner_id: Optional[int] = None
    toss_decision: Optional[Literal["bat", "bowl"]] = None
    team1_players: list[RosterPlayerIn]
    team2_players: list[RosterPlayerIn]


class MatchResponse(BaseModel):
    id: int
    team1_id: int
    team2_id: int
    batting_first_id: int
    total_overs: int
    status: str


# Scoring
class ExtraIn(BaseModel):
    type: ExtraType
    runs: int = 1


class WicketIn(BaseModel):
    type: DismissalType
    dismissed_id: int
    fielder_id: Optional[int] = None


class BallRequest(BaseModel):
    striker_id: int
    non_striker_id: int
    bowler_id: int
    runs_off_bat: int = 0
    extra: Optional[ExtraIn] = None
    wicket: Optional[WicketIn] = None


class ResolveRequest(BaseModel):
    kind: ResolveKind
    player_id: Optional[int] = None  # new batsman, new bowler or fielder
    striker_id: Optional[int] = None  # openers only
    non_striker_id: Optional[int] = None
    bowler_id: Optional[int] = None


class PositionResponse(BaseModel):
    inning: int
    over: int
    ball: int
    display: str
    overs_remaining: float


class SignalsResponse(BaseModel):
    end_of_over: bool = False
    inning_complete: bool = False
    match_complete: bool = False


class RecordedBallResponse(BaseModel):
    sequence: int
    inning: int
    over: int
    ball: int
    striker_id: int
    bowler_id: int
    outcome: str  # "0".."6", "W", "Wd", "Nb"
    description: str


class InningsScoreResponse(BaseModel):
    inning: int
    runs: int
    wickets: int
    extras: int
    overs: str
    run_rate: float


class SessionStateResponse(BaseModel):
    match_id: int
    status: str
    pending_request: str
    summary: str
    position: PositionResponse

    striker_id: Optional[int] = None
    non_striker_id: Optional[int] = None
    bowler_id: Optional[int] = None
    previous_bowler_id: Optional[int] = None

    balls_recorded: int
    last_signals: SignalsResponse
    last_ball: Optional[RecordedBallResponse] = None
    undo_available: bool = False
    innings: list[InningsScoreResponse]

    # Candidates for the outstanding prompt
    available_batsmen: list[int] = []
    available_bowlers: list[int] = []


class PlayerStatsResponse(BaseModel):
    player_id: int
    runs: int
    balls_faced: int
    fours: int
    sixes: int
    strike_rate: float
    dismissals: int
    dismissal: str
    overs: str
    runs_conceded: int
    wickets: int
    wides: int
    no_balls: int
    economy: float
    catches: int
    stumpings: int
    run_outs: int

from typing import Optional, List
from sqlalchemy import String, Integer, Boolean, ForeignKey, Enum, DateTime, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column, relationship
from datetime import datetime
import enum
from app.database import Base
from app.engine import events
from app.engine.position import Position
from app.engine.scoring_session import SessionCheckpoint


class MatchStatus(enum.Enum):
    SCHEDULED = "scheduled"
    IN_PROGRESS = "in_progress"
    COMPLETED = "completed"
    CANCELLED = "cancelled"


class Match(Base):
    __tablename__ = "matches"

    id: Mapped[int] = mapped_column(primary_key=True)

    # Teams
    team1_id: Mapped[int] = mapped_column(ForeignKey("teams.id"))
    team2_id: Mapped[int] = mapped_column(ForeignKey("teams.id"))
    team1: Mapped["Team"] = relationship("Team", foreign_keys=[team1_id])
    team2: Mapped["Team"] = relationship("Team", foreign_keys=[team2_id])

    # Toss
    toss_winner_id: Mapped[Optional[int]] = mapped_column(ForeignKey("teams.id"), nullable=True)
    toss_decision: Mapped[Optional[str]] = mapped_column(String(10), nullable=True)  # "bat" or "bowl"
    batting_first_id: Mapped[int] = mapped_column(ForeignKey("teams.id"))

    total_overs: Mapped[int] = mapped_column(Integer)
    match_date: Mapped[datetime] = mapped_column(DateTime, default=datetime.utcnow)
    status: Mapped[MatchStatus] = mapped_column(Enum(MatchStatus), default=MatchStatus.SCHEDULED)

    # Session checkpoint, rewritten after every scoring call
    session_status: Mapped[Optional[str]] = mapped_column(String(30), nullable=True)
    striker_id: Mapped[Optional[int]] = mapped_column(ForeignKey("players.id"), nullable=True)
    non_striker_id: Mapped[Optional[int]] = mapped_column(ForeignKey("players.id"), nullable=True)
    bowler_id: Mapped[Optional[int]] = mapped_column(ForeignKey("players.id"), nullable=True)
    position_inning: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)
    position_over: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)
    position_ball: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)
    undo_available: Mapped[bool] = mapped_column(Boolean, default=False)

    # Relationships
    players: Mapped[List["MatchPlayer"]] = relationship(
        "MatchPlayer", back_populates="match", order_by="MatchPlayer.position"
    )
    ball_events: Mapped[List["BallEvent"]] = relationship(
        "BallEvent", back_populates="match", order_by="BallEvent.sequence"
    )

    @property
    def bowling_first_id(self) -> int:
        return self.team2_id if self.batting_first_id == self.team1_id else self.team1_id

    def roster(self, team_id: int) -> events.Roster:
        entries = [
            events.RosterEntry(player_id=mp.player_id, is_selected=mp.is_playing_xi)
            for mp in self.players if mp.team_id == team_id
        ]
        return events.Roster(team_id=team_id, players=tuple(entries))

    @property
    def checkpoint(self) -> Optional[SessionCheckpoint]:
        if self.session_status is None:
            return None
        position = None
        if self.position_inning is not None:
            position = Position(self.position_inning, self.position_over, self.position_ball)
        return SessionCheckpoint(
            status=events.SessionStatus(self.session_status),
            striker_id=self.striker_id,
            non_striker_id=self.non_striker_id,
            bowler_id=self.bowler_id,
            position=position,
            undo_available=bool(self.undo_available),
        )

    def save_checkpoint(self, state):
        """Store the lineup and status from a SessionState"""
        self.session_status = state.status.value
        self.striker_id = state.striker_id
        self.non_striker_id = state.non_striker_id
        self.bowler_id = state.bowler_id
        self.position_inning = state.position.inning
        self.position_over = state.position.over
        self.position_ball = state.position.ball
        self.undo_available = state.undo_available

    def __repr__(self):
        return f"<Match {self.id}: {self.team1_id} vs {self.team2_id} ({self.total_overs} overs)>"


class MatchPlayer(Base):
    """A squad member for one match; only playing XI entries are eligible to take part"""
    __tablename__ = "match_players"

    id: Mapped[int] = mapped_column(primary_key=True)
    match_id: Mapped[int] = mapped_column(ForeignKey("matches.id", ondelete="CASCADE"))
    team_id: Mapped[int] = mapped_column(ForeignKey("teams.id"))
    player_id: Mapped[int] = mapped_column(ForeignKey("players.id"))
    position: Mapped[int] = mapped_column(Integer)  # batting order
    is_playing_xi: Mapped[bool] = mapped_column(default=True)

    match = relationship("Match", back_populates="players")
    player = relationship("Player")

    __table_args__ = (
        UniqueConstraint('match_id', 'team_id', 'player_id', name='unique_match_player'),
    )

    def __repr__(self):
        return f"<MatchPlayer match={self.match_id} team={self.team_id} player={self.player_id} pos={self.position}>"


class BallEvent(Base):
    """One recorded delivery; wides and no-balls share their slot with the re-bowled ball"""
    __tablename__ = "ball_events"

    id: Mapped[int] = mapped_column(primary_key=True)
    match_id: Mapped[int] = mapped_column(ForeignKey("matches.id", ondelete="CASCADE"))
    match: Mapped["Match"] = relationship("Match", back_populates="ball_events")

    sequence: Mapped[int] = mapped_column(Integer)
    inning: Mapped[int] = mapped_column(Integer)
    over_number: Mapped[int] = mapped_column(Integer)
    ball_number: Mapped[int] = mapped_column(Integer)  # 1-6

    # Players involved
    striker_id: Mapped[int] = mapped_column(ForeignKey("players.id"))
    non_striker_id: Mapped[int] = mapped_column(ForeignKey("players.id"))
    bowler_id: Mapped[int] = mapped_column(ForeignKey("players.id"))
    previous_bowler_id: Mapped[Optional[int]] = mapped_column(ForeignKey("players.id"), nullable=True)

    runs_off_bat: Mapped[int] = mapped_column(Integer, default=0)

    # Extras
    extra_type: Mapped[Optional[events.ExtraType]] = mapped_column(Enum(events.ExtraType), nullable=True)
    extra_runs: Mapped[int] = mapped_column(Integer, default=0)

    # Wicket
    dismissal_type: Mapped[Optional[events.DismissalType]] = mapped_column(
        Enum(events.DismissalType), nullable=True
    )
    dismissed_player_id: Mapped[Optional[int]] = mapped_column(ForeignKey("players.id"), nullable=True)
    fielder_id: Mapped[Optional[int]] = mapped_column(ForeignKey("players.id"), nullable=True)

    created_at: Mapped[datetime] = mapped_column(DateTime, default=datetime.utcnow)

    __table_args__ = (
        UniqueConstraint('match_id', 'sequence', name='unique_ball_sequence'),
    )

    @classmethod
    def from_recorded(cls, match_id: int, recorded: events.RecordedBall) -> "BallEvent":
        event = recorded.event
        row = cls(
            match_id=match_id,
            sequence=recorded.sequence,
            inning=recorded.position.inning,
            over_number=recorded.position.over,
            ball_number=recorded.position.ball,
            striker_id=event.striker,
            non_striker_id=event.non_striker,
            bowler_id=event.bowler,
            previous_bowler_id=recorded.previous_bowler,
            runs_off_bat=event.runs_off_bat,
            extra_type=event.extra.kind if event.extra else None,
            extra_runs=event.extra_runs,
        )
        if event.wicket:
            row.dismissal_type = event.wicket.kind
            row.dismissed_player_id = event.wicket.dismissed
            row.fielder_id = event.wicket.fielder
        return row

    def to_recorded(self) -> events.RecordedBall:
        extra = None
        if self.extra_type is not None:
            extra = events.Extra(kind=self.extra_type, runs=self.extra_runs)
        wicket = None
        if self.dismissal_type is not None:
            wicket = events.Wicket(
                kind=self.dismissal_type,
                dismissed=self.dismissed_player_id,
                fielder=self.fielder_id,
            )
        return events.RecordedBall(
            sequence=self.sequence,
            position=Position(self.inning, self.over_number, self.ball_number),
            event=events.BallEvent(
                striker=self.striker_id,
                non_striker=self.non_striker_id,
                bowler=self.bowler_id,
                runs_off_bat=self.runs_off_bat,
                extra=extra,
                wicket=wicket,
            ),
            previous_bowler=self.previous_bowler_id,
        )

    def __repr__(self):
        return f"<Ball {self.inning}:{self.over_number}.{self.ball_number} #{self.sequence}>"

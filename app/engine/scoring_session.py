"""
Scoring session: the per-match state machine driven by ball events.

The session owns the lineup, the outstanding prompts for the scorer and the
append-only ball log. It is mutated only through apply_ball,
resolve_pending_request and undo_last_ball; every validation happens before
the first mutation so a rejected call leaves the session untouched.
"""
import logging
from dataclasses import dataclass, field, replace
from typing import Callable, Iterable, Optional

from app.engine.errors import (
    IllegalScoringCombination,
    InvalidRosterSelection,
    PositionOverflow,
    StatePreconditionViolation,
)
from app.engine.events import (
    BallEvent,
    DismissalType,
    Extra,
    ExtraType,
    Fielder,
    NewBatsman,
    NewBowler,
    NextInnings,
    Openers,
    PendingRequest,
    RecordedBall,
    ResolvePayload,
    Roster,
    SessionStatus,
    Wicket,
)
from app.engine.position import (
    Position,
    Signals,
    advance,
    can_accept_ball,
    close_innings,
    is_legal_position,
    should_swap_batsmen,
)
from app.engine.stats import InningsTotals, PlayerStats, StatsBook

logger = logging.getLogger(__name__)

_REQUEST_STATUS = {
    PendingRequest.FIELDER: SessionStatus.AWAITING_FIELDER,
    PendingRequest.NEW_BATSMAN: SessionStatus.AWAITING_NEW_BATSMAN,
    PendingRequest.NEW_BOWLER: SessionStatus.AWAITING_NEW_BOWLER,
}


@dataclass(frozen=True)
class SessionState:
    """Read-only snapshot returned by every session operation"""
    match_id: int
    status: SessionStatus
    pending_request: PendingRequest
    position: Position
    striker_id: Optional[int]
    non_striker_id: Optional[int]
    bowler_id: Optional[int]
    previous_bowler_id: Optional[int]
    balls_recorded: int
    last_signals: Signals = field(default_factory=Signals)
    last_ball: Optional[RecordedBall] = None
    undo_available: bool = False

    @property
    def is_match_complete(self) -> bool:
        return self.status == SessionStatus.MATCH_COMPLETE


@dataclass(frozen=True)
class SessionCheckpoint:
    """Persisted status and lineup, used to finish rehydrating a replayed session"""
    status: SessionStatus
    striker_id: Optional[int] = None
    non_striker_id: Optional[int] = None
    bowler_id: Optional[int] = None
    position: Optional[Position] = None
    undo_available: bool = False


class ScoringSession:
    """
    Ball-by-ball scoring for one two-innings match.

    The first innings starts awaiting openers. After the last ball of an
    innings the session waits in the innings break until the next innings
    is started explicitly, then awaits the new openers.
    """

    def __init__(
        self,
        match_id: int,
        total_overs: int,
        batting_roster: Roster,
        bowling_roster: Roster,
        notify: Optional[Callable[[PendingRequest, SessionState], None]] = None,
    ):
        if total_overs < 1:
            raise ValueError(f"total_overs must be at least 1, got {total_overs}")
        self.match_id = match_id
        self.total_overs = total_overs
        self.batting_roster = batting_roster
        self.bowling_roster = bowling_roster
        self.notify = notify

        self.position = Position()
        self.striker_id: Optional[int] = None
        self.non_striker_id: Optional[int] = None
        self.bowler_id: Optional[int] = None
        self.previous_bowler_id: Optional[int] = None

        self.balls: list[RecordedBall] = []
        self.stats = StatsBook()
        self.last_signals = Signals()

        self._phase = SessionStatus.AWAITING_OPENERS
        self._requests: list[PendingRequest] = []
        # Cleared by undo and by the start of a new innings
        self._undo_available = False

    # Queries

    @property
    def status(self) -> SessionStatus:
        if self._phase != SessionStatus.LIVE:
            return self._phase
        if self._requests:
            return _REQUEST_STATUS[self._requests[0]]
        return SessionStatus.LIVE

    def current_position(self) -> Position:
        return self.position

    def pending_request(self) -> PendingRequest:
        if self._phase == SessionStatus.MATCH_COMPLETE:
            return PendingRequest.NONE
        if self._phase in (SessionStatus.AWAITING_OPENERS, SessionStatus.INNINGS_BREAK):
            return PendingRequest.NEW_INNINGS_OPENERS
        if self._requests:
            return self._requests[0]
        return PendingRequest.NONE

    def is_match_complete(self) -> bool:
        return self._phase == SessionStatus.MATCH_COMPLETE

    def player_stats(self, player_id: int) -> PlayerStats:
        stats = self.stats.players.get(player_id)
        if stats is None:
            return PlayerStats(player_id=player_id)
        return replace(stats)

    def innings_summary(self, inning: int) -> InningsTotals:
        totals = self.stats.innings.get(inning)
        if totals is None:
            return InningsTotals(inning=inning)
        return replace(totals, dismissed=totals.dismissed.copy())

    def available_batsmen(self) -> list:
        """Selected batsmen who are neither at the crease nor out this innings"""
        totals = self.stats.innings.get(self.position.inning)
        at_crease = {self.striker_id, self.non_striker_id}
        return [
            pid for pid in self.batting_roster.selected_ids
            if pid not in at_crease and not (totals and totals.is_dismissed(pid))
        ]

    def available_bowlers(self) -> list:
        return [pid for pid in self.bowling_roster.selected_ids if pid != self.previous_bowler_id]

    def state(self) -> SessionState:
        return SessionState(
            match_id=self.match_id,
            status=self.status,
            pending_request=self.pending_request(),
            position=self.position,
            striker_id=self.striker_id,
            non_striker_id=self.non_striker_id,
            bowler_id=self.bowler_id,
            previous_bowler_id=self.previous_bowler_id,
            balls_recorded=len(self.balls),
            last_signals=self.last_signals,
            last_ball=self.balls[-1] if self.balls else None,
            undo_available=self._undo_available,
        )

    def make_event(
        self,
        runs_off_bat: int = 0,
        extra: Optional[Extra] = None,
        wicket: Optional[Wicket] = None,
    ) -> BallEvent:
        """Build a ball event bowled to the current lineup"""
        return BallEvent(
            striker=self.striker_id,
            non_striker=self.non_striker_id,
            bowler=self.bowler_id,
            runs_off_bat=runs_off_bat,
            extra=extra,
            wicket=wicket,
        )

    # Operations

    def apply_ball(self, event: BallEvent) -> SessionState:
        status = self.status
        if status != SessionStatus.LIVE:
            raise StatePreconditionViolation(f"Cannot record a ball while {status.value}")
        if not can_accept_ball(self.position, self.total_overs):
            raise StatePreconditionViolation("No more balls can be recorded in this match")
        self._validate_lineup(event)
        self._validate_combination(event)

        # Wides and no-balls carrying no bat runs are dead for strike rotation
        rotation_runs = event.total_runs
        if not event.is_legal_delivery and event.runs_off_bat == 0:
            rotation_runs = 0

        next_position = self.position
        signals = Signals()
        if event.is_legal_delivery:
            result = advance(self.position, self.total_overs, rotation_runs)
            next_position, signals, rotate = result.position, result.signals, result.rotate_strike
        else:
            rotate = should_swap_batsmen(rotation_runs, False)

        wicket = event.wicket
        needs_batsman = wicket is not None and wicket.kind != DismissalType.RUN_OUT
        if needs_batsman and not signals.inning_complete and not self._has_replacement(event):
            all_out = close_innings(self.position)
            next_position = all_out.position
            signals = replace(all_out.signals, end_of_over=signals.end_of_over)

        if not signals.match_complete and not is_legal_position(next_position, self.total_overs):
            raise PositionOverflow(f"Advance produced illegal position {next_position}")

        previous_pending = self.pending_request()
        recorded = RecordedBall(
            sequence=self.balls[-1].sequence + 1 if self.balls else 1,
            position=self.position,
            event=event,
            previous_bowler=self.previous_bowler_id,
        )
        self.balls.append(recorded)
        self.stats.record(recorded)
        self.position = next_position
        self.last_signals = signals
        self._undo_available = True
        if rotate:
            self.striker_id, self.non_striker_id = self.non_striker_id, self.striker_id

        logger.debug(
            "Match %s ball %s at %s: %s",
            self.match_id, recorded.sequence, recorded.position.display, event.describe(),
        )

        if signals.match_complete:
            self._phase = SessionStatus.MATCH_COMPLETE
            self._requests = []
            logger.info("Match %s complete after %s balls", self.match_id, len(self.balls))
        elif signals.inning_complete:
            self._phase = SessionStatus.INNINGS_BREAK
            self._requests = []
            self.previous_bowler_id = self.bowler_id
            self.striker_id = self.non_striker_id = self.bowler_id = None
            logger.info("Match %s innings %s complete", self.match_id, recorded.position.inning)
        else:
            requests = []
            if wicket is not None and wicket.kind.needs_fielder and wicket.fielder is None:
                requests.append(PendingRequest.FIELDER)
            if needs_batsman:
                requests.append(PendingRequest.NEW_BATSMAN)
            if signals.end_of_over:
                requests.append(PendingRequest.NEW_BOWLER)
                self.previous_bowler_id = self.bowler_id
                self.bowler_id = None
            self._requests = requests

        return self._finish(previous_pending)

    def resolve_pending_request(self, payload: ResolvePayload) -> SessionState:
        status = self.status
        previous_pending = self.pending_request()

        if isinstance(payload, NextInnings):
            self._require(status, SessionStatus.INNINGS_BREAK, "start the next innings")
            self.batting_roster, self.bowling_roster = self.bowling_roster, self.batting_roster
            self.previous_bowler_id = None
            self._phase = SessionStatus.AWAITING_OPENERS
            self._undo_available = False
            logger.info("Match %s innings %s started", self.match_id, self.position.inning)

        elif isinstance(payload, Openers):
            self._require(status, SessionStatus.AWAITING_OPENERS, "select openers")
            self._check_batsman(payload.striker, "Striker")
            self._check_batsman(payload.non_striker, "Non-striker")
            if payload.striker == payload.non_striker:
                raise InvalidRosterSelection("Striker and non-striker must be different players")
            self._check_bowler(payload.bowler)
            self.striker_id = payload.striker
            self.non_striker_id = payload.non_striker
            self.bowler_id = payload.bowler
            self._phase = SessionStatus.LIVE

        elif isinstance(payload, Fielder):
            self._require(status, SessionStatus.AWAITING_FIELDER, "credit a fielder")
            if not self.bowling_roster.is_eligible(payload.player_id):
                raise InvalidRosterSelection(f"Player {payload.player_id} is not in the fielding side")
            last = self.balls[-1]
            wicket = replace(last.event.wicket, fielder=payload.player_id)
            self.balls[-1] = replace(last, event=replace(last.event, wicket=wicket))
            self.stats.credit_fielder(wicket.kind, payload.player_id)
            self._requests.pop(0)

        elif isinstance(payload, NewBatsman):
            self._require(status, SessionStatus.AWAITING_NEW_BATSMAN, "select a new batsman")
            if payload.player_id not in self.available_batsmen():
                raise InvalidRosterSelection(f"Player {payload.player_id} cannot come in to bat")
            dismissed = self.balls[-1].event.wicket.dismissed
            if self.striker_id == dismissed:
                self.striker_id = payload.player_id
            else:
                self.non_striker_id = payload.player_id
            self._requests.pop(0)

        elif isinstance(payload, NewBowler):
            self._require(status, SessionStatus.AWAITING_NEW_BOWLER, "select a new bowler")
            self._check_bowler(payload.player_id)
            if payload.player_id == self.previous_bowler_id:
                raise InvalidRosterSelection(
                    f"Player {payload.player_id} bowled the previous over and cannot bowl consecutive overs"
                )
            self.bowler_id = payload.player_id
            self._requests.pop(0)

        else:
            raise StatePreconditionViolation(f"Unknown request payload {payload!r}")

        return self._finish(previous_pending)

    def start_next_innings(self) -> SessionState:
        return self.resolve_pending_request(NextInnings())

    def undo_last_ball(self) -> SessionState:
        if not self.balls:
            raise StatePreconditionViolation("No ball to undo")
        if self._phase == SessionStatus.MATCH_COMPLETE:
            raise StatePreconditionViolation("Cannot undo after the match is complete")
        if not self._undo_available:
            raise StatePreconditionViolation("Only the most recent ball can be undone")
        last = self.balls[-1]
        if last.position.inning != self.position.inning and self._phase != SessionStatus.INNINGS_BREAK:
            raise StatePreconditionViolation("Cannot undo across an innings that has already started")

        previous_pending = self.pending_request()
        self.balls.pop()
        self.stats.revert(last)

        # Position stays where it is unless the undone ball closed the innings
        if self._phase == SessionStatus.INNINGS_BREAK:
            self.position = last.position
        self.striker_id = last.event.striker
        self.non_striker_id = last.event.non_striker
        self.bowler_id = last.event.bowler
        self.previous_bowler_id = last.previous_bowler
        self.last_signals = Signals()
        self._phase = SessionStatus.LIVE
        self._requests = []
        self._undo_available = False

        logger.info("Match %s undid ball %s at %s", self.match_id, last.sequence, last.position.display)
        return self._finish(previous_pending)

    # Rehydration

    @classmethod
    def rehydrate(
        cls,
        match_id: int,
        total_overs: int,
        batting_roster: Roster,
        bowling_roster: Roster,
        balls: Iterable[RecordedBall],
        checkpoint: Optional[SessionCheckpoint] = None,
        notify: Optional[Callable[[PendingRequest, SessionState], None]] = None,
    ) -> "ScoringSession":
        """
        Rebuild a session by replaying persisted balls in order.

        Each ball is replayed at the slot it was recorded at. Selections made
        between balls are implied by the lineup of the next ball; the
        checkpoint, when given, restores what happened after the last one.
        """
        session = cls(match_id, total_overs, batting_roster, bowling_roster)
        for ball in balls:
            session._replay(ball)
        if checkpoint is not None:
            session._restore_checkpoint(checkpoint)
        session.notify = notify
        return session

    def _replay(self, ball: RecordedBall):
        event = ball.event
        if self._phase == SessionStatus.INNINGS_BREAK:
            self.start_next_innings()
        if self.status != SessionStatus.LIVE:
            self._adopt_lineup(event.striker, event.non_striker, event.bowler)
            self._requests = []
        self.position = ball.position
        self.apply_ball(event)
        self.balls[-1] = replace(self.balls[-1], sequence=ball.sequence)

    def _restore_checkpoint(self, checkpoint: SessionCheckpoint):
        if checkpoint.position is not None:
            self.position = checkpoint.position
        self._move_to(checkpoint)
        self._undo_available = checkpoint.undo_available and bool(self.balls)

    def _move_to(self, checkpoint: SessionCheckpoint):
        target = checkpoint.status
        if self.status == target:
            return
        if self._phase == SessionStatus.INNINGS_BREAK:
            self.start_next_innings()
            if self.status == target:
                return
        while self._requests and _REQUEST_STATUS[self._requests[0]] != target:
            self._requests.pop(0)
        self._adopt_lineup(checkpoint.striker_id, checkpoint.non_striker_id, checkpoint.bowler_id)

    def _adopt_lineup(self, striker: Optional[int], non_striker: Optional[int], bowler: Optional[int]):
        self.striker_id = striker
        self.non_striker_id = non_striker
        self.bowler_id = bowler
        if self._phase == SessionStatus.AWAITING_OPENERS:
            self._phase = SessionStatus.LIVE

    # Validation

    def _require(self, status: SessionStatus, expected: SessionStatus, action: str):
        if status != expected:
            raise StatePreconditionViolation(f"Cannot {action} while {status.value}")

    def _check_batsman(self, player_id: Optional[int], label: str):
        if not self.batting_roster.is_eligible(player_id):
            raise InvalidRosterSelection(f"{label} {player_id} is not in the batting side")

    def _check_bowler(self, player_id: Optional[int]):
        if not self.bowling_roster.is_eligible(player_id):
            raise InvalidRosterSelection(f"Bowler {player_id} is not in the bowling side")

    def _validate_lineup(self, event: BallEvent):
        if (event.striker, event.non_striker) != (self.striker_id, self.non_striker_id):
            raise InvalidRosterSelection(
                f"Ball bowled to {event.striker}/{event.non_striker} but "
                f"{self.striker_id}/{self.non_striker_id} are at the crease"
            )
        if event.bowler != self.bowler_id:
            raise InvalidRosterSelection(f"Bowler {event.bowler} is not the current bowler {self.bowler_id}")

    def _validate_combination(self, event: BallEvent):
        extra = event.extra
        wicket = event.wicket

        if event.runs_off_bat < 0:
            raise IllegalScoringCombination("Runs off the bat cannot be negative")
        if extra is not None:
            if extra.runs < 0:
                raise IllegalScoringCombination("Extra runs cannot be negative")
            if extra.runs < 1:
                raise IllegalScoringCombination(f"A {extra.kind.value} carries at least one run")
            if extra.kind != ExtraType.NO_BALL and event.runs_off_bat > 0:
                raise IllegalScoringCombination(
                    f"Runs off the bat cannot be scored with a {extra.kind.value}"
                )

        if wicket is None:
            return
        if wicket.kind != DismissalType.RUN_OUT:
            if event.runs_off_bat != 0 or extra is not None:
                raise IllegalScoringCombination(
                    f"Only a run out can carry runs or extras, not {wicket.kind.value}"
                )
            if wicket.dismissed != event.striker:
                raise IllegalScoringCombination(f"Only the striker can be {wicket.kind.value}")
        elif wicket.dismissed not in (event.striker, event.non_striker):
            raise IllegalScoringCombination(f"Player {wicket.dismissed} is not at the crease")
        if wicket.fielder is not None and not self.bowling_roster.is_eligible(wicket.fielder):
            raise InvalidRosterSelection(f"Player {wicket.fielder} is not in the fielding side")

    def _has_replacement(self, event: BallEvent) -> bool:
        totals = self.stats.innings.get(self.position.inning)
        at_crease = {event.striker, event.non_striker}
        for pid in self.batting_roster.selected_ids:
            if pid in at_crease or (totals and totals.is_dismissed(pid)):
                continue
            return True
        return False

    def _finish(self, previous_pending: PendingRequest) -> SessionState:
        state = self.state()
        if self.notify and state.pending_request not in (PendingRequest.NONE, previous_pending):
            self.notify(state.pending_request, state)
        return state

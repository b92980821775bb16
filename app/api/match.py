import copy
import logging
import threading
from collections import defaultdict
from typing import Callable, Dict

from fastapi import APIRouter, Depends, HTTPException
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from app.config import settings
from app.database import get_db
from app.models.team import Team
from app.models.player import Player
from app.models.match import Match, MatchPlayer, MatchStatus, BallEvent
from app.engine.errors import ScoringError, StatePreconditionViolation, PositionOverflow
from app.engine.events import (
    BallEvent as Delivery, Extra, Wicket, PendingRequest,
    Openers, NextInnings, NewBatsman, NewBowler, Fielder, RecordedBall,
)
from app.engine.position import overs_remaining, match_state_summary
from app.engine.scoring_session import ScoringSession, SessionState
from app.api.schemas import (
    CreateMatchRequest, MatchResponse, BallRequest, ResolveRequest, ResolveKind,
    SessionStateResponse, PositionResponse, SignalsResponse, RecordedBallResponse,
    InningsScoreResponse, PlayerStatsResponse,
)

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/matches", tags=["Scoring"])

# In-memory sessions, rebuilt from ball_events after a restart
active_sessions: Dict[int, ScoringSession] = {}

# One writer per match
_match_locks: Dict[int, threading.Lock] = defaultdict(threading.Lock)
_locks_guard = threading.Lock()


def _lock_for(match_id: int) -> threading.Lock:
    with _locks_guard:
        return _match_locks[match_id]


def _release_lock(match_id: int):
    """Forget the lock of a match that takes no more scoring calls"""
    with _locks_guard:
        _match_locks.pop(match_id, None)


def _notify_prompt(pending: PendingRequest, state: SessionState):
    """Prompt channel for the scoring UI"""
    logger.info("Match %s awaiting %s at %s", state.match_id, pending.value, state.position.display)


def _announce(previous: PendingRequest, state: SessionState):
    """Send a newly opened prompt, only once the call that opened it is stored"""
    if state.pending_request not in (PendingRequest.NONE, previous):
        _notify_prompt(state.pending_request, state)


def _get_match(db: Session, match_id: int) -> Match:
    match = db.query(Match).filter_by(id=match_id).first()
    if not match:
        raise HTTPException(status_code=404, detail="Match not found")
    return match


def _error_response(error: ScoringError) -> HTTPException:
    status_code = 409 if isinstance(error, (StatePreconditionViolation, PositionOverflow)) else 400
    return HTTPException(status_code=status_code, detail={"code": error.code, "message": error.message})


def _new_session(match: Match) -> ScoringSession:
    return ScoringSession(
        match.id,
        match.total_overs,
        match.roster(match.batting_first_id),
        match.roster(match.bowling_first_id),
    )


def _load_session(match: Match) -> ScoringSession:
    session = active_sessions.get(match.id)
    if session is not None:
        return session

    if match.status == MatchStatus.SCHEDULED:
        raise HTTPException(status_code=400, detail="Match has not started")
    if match.status == MatchStatus.CANCELLED:
        raise HTTPException(status_code=400, detail="Match was cancelled")

    session = ScoringSession.rehydrate(
        match.id,
        match.total_overs,
        match.roster(match.batting_first_id),
        match.roster(match.bowling_first_id),
        [row.to_recorded() for row in match.ball_events],
        checkpoint=match.checkpoint,
    )
    logger.info("Rehydrated match %s from %s balls", match.id, len(session.balls))
    active_sessions[match.id] = session
    return session


def _sync_ball_log(match: Match, session: ScoringSession, db: Session):
    """Bring ball_events in line with the session's log (insert, fielder update, undo delete)"""
    stored = {row.sequence: row for row in match.ball_events}
    live = {ball.sequence: ball for ball in session.balls}

    for sequence, row in stored.items():
        if sequence not in live:
            db.delete(row)
    for sequence, ball in live.items():
        row = stored.get(sequence)
        if row is None:
            db.add(BallEvent.from_recorded(match.id, ball))
        elif ball.event.wicket and row.fielder_id != ball.event.wicket.fielder:
            row.fielder_id = ball.event.wicket.fielder


def _run_scoring_call(
    match_id: int,
    db: Session,
    operation: Callable[[ScoringSession], SessionState],
) -> SessionStateResponse:
    """
    Apply one session operation and persist it before answering.

    If the write fails the in-memory session is put back to where it was
    before the call, so memory and storage never diverge.
    """
    with _lock_for(match_id):
        match = _get_match(db, match_id)
        session = _load_session(match)
        snapshot = copy.deepcopy(session)
        previous = session.pending_request()

        try:
            state = operation(session)
        except ScoringError as e:
            logger.warning("Match %s rejected %s: %s", match_id, e.code, e.message)
            raise _error_response(e)

        try:
            _sync_ball_log(match, session, db)
            match.save_checkpoint(state)
            if state.is_match_complete:
                match.status = MatchStatus.COMPLETED
            db.commit()
        except SQLAlchemyError:
            db.rollback()
            active_sessions[match_id] = snapshot
            logger.exception("Match %s could not persist scoring call", match_id)
            raise HTTPException(status_code=503, detail="Could not save the ball, please retry")

        _announce(previous, state)
        if state.is_match_complete:
            active_sessions.pop(match_id, None)
            _release_lock(match_id)
        return _state_response(session)


def _ball_response(ball: RecordedBall) -> RecordedBallResponse:
    return RecordedBallResponse(
        sequence=ball.sequence,
        inning=ball.position.inning,
        over=ball.position.over,
        ball=ball.position.ball,
        striker_id=ball.event.striker,
        bowler_id=ball.event.bowler,
        outcome=ball.event.short_outcome,
        description=ball.event.describe(),
    )


def _state_response(session: ScoringSession) -> SessionStateResponse:
    state = session.state()
    position = state.position
    pending = state.pending_request

    innings = []
    for inning in sorted(session.stats.innings):
        totals = session.innings_summary(inning)
        innings.append(InningsScoreResponse(
            inning=inning,
            runs=totals.runs,
            wickets=totals.wickets,
            extras=totals.extras,
            overs=totals.overs_display,
            run_rate=round(totals.run_rate, 2),
        ))

    return SessionStateResponse(
        match_id=state.match_id,
        status=state.status.value,
        pending_request=pending.value,
        summary=match_state_summary(position, session.total_overs),
        position=PositionResponse(
            inning=position.inning,
            over=position.over,
            ball=position.ball,
            display=position.display,
            overs_remaining=round(overs_remaining(position, session.total_overs), 2),
        ),
        striker_id=state.striker_id,
        non_striker_id=state.non_striker_id,
        bowler_id=state.bowler_id,
        previous_bowler_id=state.previous_bowler_id,
        balls_recorded=state.balls_recorded,
        last_signals=SignalsResponse(
            end_of_over=state.last_signals.end_of_over,
            inning_complete=state.last_signals.inning_complete,
            match_complete=state.last_signals.match_complete,
        ),
        last_ball=_ball_response(state.last_ball) if state.last_ball else None,
        undo_available=state.undo_available,
        innings=innings,
        available_batsmen=session.available_batsmen() if pending == PendingRequest.NEW_BATSMAN else [],
        available_bowlers=session.available_bowlers() if pending == PendingRequest.NEW_BOWLER else [],
    )


@router.post("", response_model=MatchResponse)
def create_match(request: CreateMatchRequest, db: Session = Depends(get_db)):
    """Create a match with both squads"""
    if request.team1_id == request.team2_id:
        raise HTTPException(status_code=400, detail="A team cannot play itself")
    for team_id in (request.team1_id, request.team2_id):
        if not db.query(Team).filter_by(id=team_id).first():
            raise HTTPException(status_code=404, detail=f"Team {team_id} not found")
    if request.batting_first_id not in (request.team1_id, request.team2_id):
        raise HTTPException(status_code=400, detail="Batting side must be one of the two teams")
    if request.toss_winner_id is not None and request.toss_winner_id not in (request.team1_id, request.team2_id):
        raise HTTPException(status_code=400, detail="Toss winner must be one of the two teams")

    total_overs = request.total_overs if request.total_overs is not None else settings.DEFAULT_TOTAL_OVERS
    if not 1 <= total_overs <= settings.MAX_TOTAL_OVERS:
        raise HTTPException(
            status_code=400,
            detail=f"Overs must be between 1 and {settings.MAX_TOTAL_OVERS}",
        )

    match = Match(
        team1_id=request.team1_id,
        team2_id=request.team2_id,
        batting_first_id=request.batting_first_id,
        toss_winner_id=request.toss_winner_id,
        toss_decision=request.toss_decision,
        total_overs=total_overs,
        status=MatchStatus.SCHEDULED,
    )
    db.add(match)
    db.flush()

    seen = set()
    for team_id, squad in ((request.team1_id, request.team1_players), (request.team2_id, request.team2_players)):
        for position, entry in enumerate(squad, start=1):
            if entry.player_id in seen:
                db.rollback()
                raise HTTPException(status_code=400, detail=f"Player {entry.player_id} listed twice")
            if not db.query(Player).filter_by(id=entry.player_id).first():
                db.rollback()
                raise HTTPException(status_code=404, detail=f"Player {entry.player_id} not found")
            seen.add(entry.player_id)
            db.add(MatchPlayer(
                match_id=match.id,
                team_id=team_id,
                player_id=entry.player_id,
                position=position,
                is_playing_xi=entry.is_selected,
            ))

    db.commit()
    logger.info("Created match %s (%s overs)", match.id, total_overs)
    return MatchResponse(
        id=match.id,
        team1_id=match.team1_id,
        team2_id=match.team2_id,
        batting_first_id=match.batting_first_id,
        total_overs=match.total_overs,
        status=match.status.value,
    )


@router.post("/{match_id}/start", response_model=SessionStateResponse)
def start_match(match_id: int, db: Session = Depends(get_db)):
    """Open the scoring session; the first prompt is for the openers"""
    with _lock_for(match_id):
        match = _get_match(db, match_id)
        if match.status == MatchStatus.IN_PROGRESS:
            return _state_response(_load_session(match))
        if match.status != MatchStatus.SCHEDULED:
            raise HTTPException(status_code=400, detail=f"Match is {match.status.value}")

        session = _new_session(match)
        match.status = MatchStatus.IN_PROGRESS
        match.save_checkpoint(session.state())
        db.commit()
        active_sessions[match.id] = session
        _announce(PendingRequest.NONE, session.state())
        return _state_response(session)


@router.post("/{match_id}/cancel", response_model=MatchResponse)
def cancel_match(match_id: int, db: Session = Depends(get_db)):
    with _lock_for(match_id):
        match = _get_match(db, match_id)
        if match.status == MatchStatus.COMPLETED:
            raise HTTPException(status_code=400, detail="Match already completed")
        match.status = MatchStatus.CANCELLED
        db.commit()
        active_sessions.pop(match_id, None)
        _release_lock(match_id)
        return MatchResponse(
            id=match.id,
            team1_id=match.team1_id,
            team2_id=match.team2_id,
            batting_first_id=match.batting_first_id,
            total_overs=match.total_overs,
            status=match.status.value,
        )


@router.get("/{match_id}/state", response_model=SessionStateResponse)
def get_state(match_id: int, db: Session = Depends(get_db)):
    with _lock_for(match_id):
        match = _get_match(db, match_id)
        return _state_response(_load_session(match))


@router.get("/{match_id}/balls", response_model=list[RecordedBallResponse])
def get_balls(match_id: int, db: Session = Depends(get_db)):
    with _lock_for(match_id):
        match = _get_match(db, match_id)
        return [_ball_response(ball) for ball in _load_session(match).balls]


@router.get("/{match_id}/players/{player_id}/stats", response_model=PlayerStatsResponse)
def get_player_stats(match_id: int, player_id: int, db: Session = Depends(get_db)):
    with _lock_for(match_id):
        match = _get_match(db, match_id)
        stats = _load_session(match).player_stats(player_id)
        return PlayerStatsResponse(
            player_id=player_id,
            runs=stats.runs,
            balls_faced=stats.balls_faced,
            fours=stats.fours,
            sixes=stats.sixes,
            strike_rate=round(stats.strike_rate, 2),
            dismissals=stats.dismissals,
            dismissal=stats.dismissal,
            overs=stats.overs_display,
            runs_conceded=stats.runs_conceded,
            wickets=stats.wickets,
            wides=stats.wides,
            no_balls=stats.no_balls,
            economy=round(stats.economy, 2),
            catches=stats.catches,
            stumpings=stats.stumpings,
            run_outs=stats.run_outs,
        )


@router.post("/{match_id}/ball", response_model=SessionStateResponse)
def record_ball(match_id: int, request: BallRequest, db: Session = Depends(get_db)):
    event = Delivery(
        striker=request.striker_id,
        non_striker=request.non_striker_id,
        bowler=request.bowler_id,
        runs_off_bat=request.runs_off_bat,
        extra=Extra(kind=request.extra.type, runs=request.extra.runs) if request.extra else None,
        wicket=Wicket(
            kind=request.wicket.type,
            dismissed=request.wicket.dismissed_id,
            fielder=request.wicket.fielder_id,
        ) if request.wicket else None,
    )
    return _run_scoring_call(match_id, db, lambda session: session.apply_ball(event))


@router.post("/{match_id}/resolve", response_model=SessionStateResponse)
def resolve_request(match_id: int, request: ResolveRequest, db: Session = Depends(get_db)):
    """Answer the outstanding prompt (openers, new batsman, new bowler or fielder)"""
    if request.kind == ResolveKind.NEXT_INNINGS:
        payload = NextInnings()
    elif request.kind == ResolveKind.OPENERS:
        if None in (request.striker_id, request.non_striker_id, request.bowler_id):
            raise HTTPException(status_code=422, detail="Openers need striker_id, non_striker_id and bowler_id")
        payload = Openers(request.striker_id, request.non_striker_id, request.bowler_id)
    else:
        if request.player_id is None:
            raise HTTPException(status_code=422, detail=f"{request.kind.value} needs player_id")
        payload = {
            ResolveKind.NEW_BATSMAN: NewBatsman,
            ResolveKind.NEW_BOWLER: NewBowler,
            ResolveKind.FIELDER: Fielder,
        }[request.kind](request.player_id)
    return _run_scoring_call(match_id, db, lambda session: session.resolve_pending_request(payload))


@router.post("/{match_id}/next-innings", response_model=SessionStateResponse)
def start_next_innings(match_id: int, db: Session = Depends(get_db)):
    return _run_scoring_call(match_id, db, lambda session: session.start_next_innings())


@router.post("/{match_id}/undo", response_model=SessionStateResponse)
def undo_last_ball(match_id: int, db: Session = Depends(get_db)):
    return _run_scoring_call(match_id, db, lambda session: session.undo_last_ball())

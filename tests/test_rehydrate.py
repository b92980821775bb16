"""
Tests for rebuilding a scoring session from its persisted ball log.
"""
import pytest

from app.engine import ScoringSession, SessionCheckpoint, Position
from app.engine.errors import StatePreconditionViolation
from app.engine.events import (
    Extra, ExtraType, Wicket, DismissalType, Roster, SessionStatus,
    PendingRequest, Openers, NewBatsman, NewBowler, Fielder,
)
from app.engine.stats import StatsBook


BATTING = Roster.of(1, [1, 2, 3, 4, 5])
BOWLING = Roster.of(2, [21, 22, 23, 24, 25])


def checkpoint_of(session: ScoringSession) -> SessionCheckpoint:
    state = session.state()
    return SessionCheckpoint(
        status=state.status,
        striker_id=state.striker_id,
        non_striker_id=state.non_striker_id,
        bowler_id=state.bowler_id,
        position=state.position,
        undo_available=state.undo_available,
    )


def rehydrated(session: ScoringSession, with_checkpoint: bool = True) -> ScoringSession:
    return ScoringSession.rehydrate(
        session.match_id,
        session.total_overs,
        BATTING,
        BOWLING,
        list(session.balls),
        checkpoint=checkpoint_of(session) if with_checkpoint else None,
    )


def bowl(session, runs=0, extra=None, wicket=None):
    return session.apply_ball(session.make_event(runs, extra, wicket))


@pytest.fixture
def session():
    session = ScoringSession(7, 2, BATTING, BOWLING)
    session.resolve_pending_request(Openers(1, 2, 21))
    return session


def assert_same(original: ScoringSession, copy: ScoringSession):
    assert copy.state().status == original.state().status
    assert copy.state().pending_request == original.state().pending_request
    assert copy.current_position() == original.current_position()
    assert copy.state().undo_available == original.state().undo_available
    assert copy.striker_id == original.striker_id
    assert copy.non_striker_id == original.non_striker_id
    assert copy.bowler_id == original.bowler_id
    assert copy.previous_bowler_id == original.previous_bowler_id
    assert copy.balls == original.balls
    assert copy.stats.players == original.stats.players
    assert copy.stats.innings == original.stats.innings


class TestRehydrate:
    def test_empty_log(self):
        fresh = ScoringSession.rehydrate(7, 2, BATTING, BOWLING, [])
        assert fresh.status == SessionStatus.AWAITING_OPENERS
        assert fresh.current_position() == Position()

    def test_openers_only_restored_from_checkpoint(self, session):
        assert_same(session, rehydrated(session))

    def test_mid_over(self, session):
        bowl(session, runs=1)
        bowl(session, extra=Extra(ExtraType.WIDE))
        bowl(session, runs=4)
        copy = rehydrated(session, with_checkpoint=False)
        assert_same(session, copy)

    def test_awaiting_new_bowler(self, session):
        for _ in range(6):
            bowl(session)
        copy = rehydrated(session)
        assert copy.status == SessionStatus.AWAITING_NEW_BOWLER
        assert_same(session, copy)

    def test_selections_implied_by_next_ball(self, session):
        bowl(session, wicket=Wicket(DismissalType.CAUGHT, dismissed=1))
        session.resolve_pending_request(Fielder(23))
        session.resolve_pending_request(NewBatsman(4))
        for _ in range(5):
            bowl(session)
        session.resolve_pending_request(NewBowler(22))
        bowl(session, runs=2)

        assert_same(session, rehydrated(session))

    def test_pending_batsman_restored(self, session):
        bowl(session, runs=1)
        bowl(session, wicket=Wicket(DismissalType.LBW, dismissed=2))
        copy = rehydrated(session)
        assert copy.pending_request() == PendingRequest.NEW_BATSMAN
        assert_same(session, copy)

    def test_resolved_batsman_restored_from_checkpoint(self, session):
        bowl(session, wicket=Wicket(DismissalType.BOWLED, dismissed=1))
        session.resolve_pending_request(NewBatsman(5))
        copy = rehydrated(session)
        assert copy.status == SessionStatus.LIVE
        assert copy.striker_id == 5
        assert_same(session, copy)

    def test_log_with_undo(self, session):
        bowl(session, runs=1)
        bowl(session, runs=3)
        session.undo_last_ball()
        bowl(session, runs=2)
        assert [b.sequence for b in session.balls] == [1, 2]
        assert_same(session, rehydrated(session))

    def test_spent_undo_stays_spent(self, session):
        bowl(session, runs=1)
        bowl(session, runs=3)
        session.undo_last_ball()

        copy = rehydrated(session)
        assert copy.state().undo_available is False
        with pytest.raises(StatePreconditionViolation):
            copy.undo_last_ball()
        assert len(copy.balls) == 1

    def test_undo_available_after_restart(self, session):
        bowl(session, runs=1)
        copy = rehydrated(session)
        copy.undo_last_ball()
        assert copy.balls == []

    def test_across_innings_break(self, session):
        for _ in range(12):
            if session.status == SessionStatus.AWAITING_NEW_BOWLER:
                session.resolve_pending_request(NewBowler(22 if session.previous_bowler_id == 21 else 21))
            bowl(session, runs=1)
        assert session.status == SessionStatus.INNINGS_BREAK
        assert_same(session, rehydrated(session))

        session.start_next_innings()
        session.resolve_pending_request(Openers(21, 22, 3))
        bowl(session, runs=6)

        copy = ScoringSession.rehydrate(
            7, 2, BATTING, BOWLING, list(session.balls), checkpoint=checkpoint_of(session)
        )
        assert copy.batting_roster == BOWLING
        assert_same(session, copy)

    def test_notify_not_called_during_replay(self, session):
        bowl(session, wicket=Wicket(DismissalType.BOWLED, dismissed=1))
        prompts = []
        ScoringSession.rehydrate(
            7, 2, BATTING, BOWLING, list(session.balls),
            notify=lambda request, state: prompts.append(request),
        )
        assert prompts == []


class TestStatsFromLog:
    def test_rebuilt_book_matches_running_book(self, session):
        bowl(session, runs=4)
        bowl(session, extra=Extra(ExtraType.NO_BALL), runs=1)
        bowl(session, extra=Extra(ExtraType.LEG_BYE))
        bowl(session, wicket=Wicket(DismissalType.STUMPED, dismissed=session.striker_id, fielder=25))

        book = StatsBook.from_log(session.balls)
        assert book.players == session.stats.players
        assert book.innings == session.stats.innings

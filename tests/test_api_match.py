"""
Integration tests for the scoring API.
Runs the router against an in-memory database through FastAPI's TestClient.
"""
import pytest
from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.exc import OperationalError
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.pool import StaticPool

from app.database import Base, get_db
from app.models.team import Team
from app.models.player import Player, PlayerRole
from app.models.match import Match, MatchStatus, BallEvent
from app.api import match as match_api
from app.api.match import active_sessions, _match_locks
from app.engine.events import PendingRequest
from main import app


HOME = [1, 2, 3, 4, 5]
AWAY = [21, 22, 23, 24, 25]


@pytest.fixture
def test_db():
    """Create an in-memory test database shared across request threads."""
    engine = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    Base.metadata.create_all(engine)
    TestingSession = sessionmaker(bind=engine)

    db = TestingSession()
    db.add(Team(id=1, name="Home XI", short_name="HOM"))
    db.add(Team(id=2, name="Away XI", short_name="AWY"))
    for pid in HOME:
        db.add(Player(id=pid, name=f"Home {pid}", role=PlayerRole.BATSMAN, team_id=1))
    for pid in AWAY:
        db.add(Player(id=pid, name=f"Away {pid}", role=PlayerRole.BOWLER, team_id=2))
    db.commit()
    db.close()

    yield TestingSession
    engine.dispose()


@pytest.fixture
def client(test_db):
    def override_get_db():
        db = test_db()
        try:
            yield db
        finally:
            db.close()

    app.dependency_overrides[get_db] = override_get_db
    active_sessions.clear()
    yield TestClient(app)
    app.dependency_overrides.clear()
    active_sessions.clear()


def create_match(client, total_overs=2, **overrides):
    payload = {
        "team1_id": 1,
        "team2_id": 2,
        "batting_first_id": 1,
        "total_overs": total_overs,
        "team1_players": [{"player_id": pid} for pid in HOME],
        "team2_players": [{"player_id": pid} for pid in AWAY],
    }
    payload.update(overrides)
    return client.post("/api/matches", json=payload)


@pytest.fixture
def live_match(client):
    """Match with openers 1/2 facing bowler 21"""
    match_id = create_match(client).json()["id"]
    client.post(f"/api/matches/{match_id}/start")
    response = client.post(f"/api/matches/{match_id}/resolve", json={
        "kind": "openers", "striker_id": 1, "non_striker_id": 2, "bowler_id": 21,
    })
    assert response.status_code == 200
    return match_id


def ball(client, match_id, striker, non_striker, bowler, runs=0, extra=None, wicket=None):
    payload = {
        "striker_id": striker,
        "non_striker_id": non_striker,
        "bowler_id": bowler,
        "runs_off_bat": runs,
    }
    if extra:
        payload["extra"] = extra
    if wicket:
        payload["wicket"] = wicket
    return client.post(f"/api/matches/{match_id}/ball", json=payload)


def stored_balls(test_db, match_id):
    db = test_db()
    try:
        return db.query(BallEvent).filter_by(match_id=match_id).order_by(BallEvent.sequence).all()
    finally:
        db.close()


class TestCreateMatch:
    def test_create(self, client):
        response = create_match(client)
        assert response.status_code == 200
        data = response.json()
        assert data["status"] == "scheduled"
        assert data["total_overs"] == 2

    def test_default_overs(self, client):
        response = create_match(client, total_overs=None)
        assert response.json()["total_overs"] == 20

    def test_zero_overs_rejected(self, client):
        assert create_match(client, total_overs=0).status_code == 400

    def test_team_cannot_play_itself(self, client):
        assert create_match(client, team2_id=1).status_code == 400

    def test_unknown_team(self, client):
        assert create_match(client, team2_id=9).status_code == 404

    def test_player_listed_twice(self, client):
        response = create_match(client, team2_players=[{"player_id": 1}])
        assert response.status_code == 400

    def test_unknown_match(self, client):
        assert client.get("/api/matches/999/state").status_code == 404

    def test_toss(self, client):
        response = create_match(client, toss_winner_id=2, toss_decision="bowl")
        assert response.status_code == 200

    def test_toss_winner_must_be_playing(self, client):
        assert create_match(client, toss_winner_id=9).status_code == 400

    def test_unknown_toss_decision(self, client):
        assert create_match(client, toss_winner_id=1, toss_decision="field").status_code == 422


class TestMatchLifecycle:
    def test_state_before_start(self, client):
        match_id = create_match(client).json()["id"]
        assert client.get(f"/api/matches/{match_id}/state").status_code == 400

    def test_start_awaits_openers(self, client):
        match_id = create_match(client).json()["id"]
        response = client.post(f"/api/matches/{match_id}/start")
        assert response.status_code == 200
        data = response.json()
        assert data["status"] == "awaiting_openers"
        assert data["pending_request"] == "new_innings_openers"
        assert data["summary"] == "1st Innings - Not Started (2.0 overs remaining)"

    def test_ball_before_openers_conflicts(self, client):
        match_id = create_match(client).json()["id"]
        client.post(f"/api/matches/{match_id}/start")
        response = ball(client, match_id, 1, 2, 21)
        assert response.status_code == 409
        assert response.json()["detail"]["code"] == "state_precondition_violation"

    def test_cancel(self, client, live_match):
        response = client.post(f"/api/matches/{live_match}/cancel")
        assert response.json()["status"] == "cancelled"
        assert client.get(f"/api/matches/{live_match}/state").status_code == 400
        assert live_match not in _match_locks


class TestScoring:
    def test_record_ball(self, client, test_db, live_match):
        response = ball(client, live_match, 1, 2, 21, runs=1)
        assert response.status_code == 200
        data = response.json()
        assert data["striker_id"] == 2
        assert data["position"]["display"] == "0.2"
        assert data["innings"][0]["runs"] == 1
        assert data["last_ball"]["outcome"] == "1"

        rows = stored_balls(test_db, live_match)
        assert len(rows) == 1
        assert rows[0].runs_off_bat == 1

    def test_illegal_combination_not_written(self, client, test_db, live_match):
        response = ball(client, live_match, 1, 2, 21, runs=2,
                        wicket={"type": "bowled", "dismissed_id": 1})
        assert response.status_code == 400
        assert response.json()["detail"]["code"] == "illegal_scoring_combination"
        assert stored_balls(test_db, live_match) == []

    def test_wrong_bowler_rejected(self, client, live_match):
        response = ball(client, live_match, 1, 2, 22)
        assert response.status_code == 400
        assert response.json()["detail"]["code"] == "invalid_roster_selection"

    def test_wide(self, client, live_match):
        data = ball(client, live_match, 1, 2, 21, extra={"type": "wide"}).json()
        assert data["position"]["display"] == "0.1"
        assert data["last_ball"]["outcome"] == "Wd"
        assert data["innings"][0]["extras"] == 1

    def test_fielder_and_new_batsman_prompts(self, client, test_db, live_match):
        data = ball(client, live_match, 1, 2, 21, wicket={"type": "caught", "dismissed_id": 1}).json()
        assert data["status"] == "awaiting_fielder"

        response = client.post(f"/api/matches/{live_match}/resolve", json={"kind": "fielder"})
        assert response.status_code == 422

        data = client.post(f"/api/matches/{live_match}/resolve",
                           json={"kind": "fielder", "player_id": 23}).json()
        assert data["status"] == "awaiting_new_batsman"
        assert data["available_batsmen"] == [3, 4, 5]
        assert stored_balls(test_db, live_match)[0].fielder_id == 23

        data = client.post(f"/api/matches/{live_match}/resolve",
                           json={"kind": "new_batsman", "player_id": 3}).json()
        assert data["status"] == "live"
        assert data["striker_id"] == 3

    def test_previous_bowler_rejected(self, client, live_match):
        for _ in range(6):
            data = ball(client, live_match, 1, 2, 21).json()
        assert data["status"] == "awaiting_new_bowler"
        assert 21 not in data["available_bowlers"]

        response = client.post(f"/api/matches/{live_match}/resolve",
                               json={"kind": "new_bowler", "player_id": 21})
        assert response.status_code == 400

    def test_player_stats(self, client, live_match):
        ball(client, live_match, 1, 2, 21, runs=4)
        ball(client, live_match, 1, 2, 21, runs=6)
        data = client.get(f"/api/matches/{live_match}/players/1/stats").json()
        assert data["runs"] == 10
        assert data["fours"] == 1
        assert data["sixes"] == 1
        bowler = client.get(f"/api/matches/{live_match}/players/21/stats").json()
        assert bowler["overs"] == "0.2"
        assert bowler["runs_conceded"] == 10

    def test_ball_log(self, client, live_match):
        ball(client, live_match, 1, 2, 21, runs=2)
        ball(client, live_match, 1, 2, 21, extra={"type": "no_ball"})
        balls = client.get(f"/api/matches/{live_match}/balls").json()
        assert [b["outcome"] for b in balls] == ["2", "Nb"]


class TestUndo:
    def test_undo_deletes_row(self, client, test_db, live_match):
        ball(client, live_match, 1, 2, 21, runs=1)
        ball(client, live_match, 2, 1, 21, wicket={"type": "lbw", "dismissed_id": 2})

        data = client.post(f"/api/matches/{live_match}/undo").json()
        assert data["status"] == "live"
        assert data["balls_recorded"] == 1
        assert len(stored_balls(test_db, live_match)) == 1

    def test_undo_empty_log_conflicts(self, client, live_match):
        assert client.post(f"/api/matches/{live_match}/undo").status_code == 409

    def test_second_undo_conflicts(self, client, live_match):
        ball(client, live_match, 1, 2, 21, runs=1)
        ball(client, live_match, 2, 1, 21, runs=2)
        data = client.post(f"/api/matches/{live_match}/undo").json()
        assert data["undo_available"] is False

        response = client.post(f"/api/matches/{live_match}/undo")
        assert response.status_code == 409
        assert response.json()["detail"]["code"] == "state_precondition_violation"

    def test_undo_spent_before_restart_stays_spent(self, client, live_match):
        ball(client, live_match, 1, 2, 21, runs=1)
        ball(client, live_match, 2, 1, 21, runs=2)
        client.post(f"/api/matches/{live_match}/undo")

        active_sessions.clear()
        assert client.post(f"/api/matches/{live_match}/undo").status_code == 409
        assert client.get(f"/api/matches/{live_match}/state").json()["balls_recorded"] == 1


class TestRehydration:
    def test_state_survives_restart(self, client, live_match):
        ball(client, live_match, 1, 2, 21, runs=1)
        ball(client, live_match, 2, 1, 21, wicket={"type": "bowled", "dismissed_id": 2})
        client.post(f"/api/matches/{live_match}/resolve", json={"kind": "new_batsman", "player_id": 4})
        before = client.get(f"/api/matches/{live_match}/state").json()

        active_sessions.clear()
        after = client.get(f"/api/matches/{live_match}/state").json()
        assert after == before

    def test_failed_write_keeps_session_unchanged(self, client, live_match, monkeypatch):
        ball(client, live_match, 1, 2, 21, runs=1)

        def failing_commit(self):
            raise OperationalError("INSERT INTO ball_events", {}, Exception("disk I/O error"))

        monkeypatch.setattr(Session, "commit", failing_commit)
        response = ball(client, live_match, 2, 1, 21, runs=4)
        assert response.status_code == 503
        monkeypatch.undo()

        data = client.get(f"/api/matches/{live_match}/state").json()
        assert data["balls_recorded"] == 1
        assert data["striker_id"] == 2


class TestPrompts:
    """Prompts reach the scoring UI only after the call is stored"""

    @pytest.fixture
    def prompts(self, monkeypatch):
        sent = []
        monkeypatch.setattr(match_api, "_notify_prompt", lambda pending, state: sent.append(pending))
        return sent

    def test_prompt_after_wicket(self, client, live_match, prompts):
        ball(client, live_match, 1, 2, 21, wicket={"type": "bowled", "dismissed_id": 1})
        assert prompts == [PendingRequest.NEW_BATSMAN]

    def test_no_prompt_when_write_fails(self, client, live_match, prompts, monkeypatch):
        def failing_commit(self):
            raise OperationalError("INSERT INTO ball_events", {}, Exception("disk I/O error"))

        monkeypatch.setattr(Session, "commit", failing_commit)
        response = ball(client, live_match, 1, 2, 21, wicket={"type": "bowled", "dismissed_id": 1})
        assert response.status_code == 503
        assert prompts == []

    def test_openers_prompt_on_start(self, client, prompts):
        match_id = create_match(client).json()["id"]
        client.post(f"/api/matches/{match_id}/start")
        assert prompts == [PendingRequest.NEW_INNINGS_OPENERS]


class TestFullMatch:
    def test_one_over_match_completes(self, client, test_db):
        match_id = create_match(client, total_overs=1).json()["id"]
        client.post(f"/api/matches/{match_id}/start")
        client.post(f"/api/matches/{match_id}/resolve", json={
            "kind": "openers", "striker_id": 1, "non_striker_id": 2, "bowler_id": 21,
        })
        for _ in range(6):
            data = ball(client, match_id, 1, 2, 21).json()
        assert data["status"] == "innings_break"
        assert data["last_signals"] == {"end_of_over": True, "inning_complete": True, "match_complete": False}

        data = client.post(f"/api/matches/{match_id}/next-innings").json()
        assert data["status"] == "awaiting_openers"
        client.post(f"/api/matches/{match_id}/resolve", json={
            "kind": "openers", "striker_id": 21, "non_striker_id": 22, "bowler_id": 1,
        })
        for _ in range(6):
            data = ball(client, match_id, 21, 22, 1).json()

        assert data["status"] == "match_complete"
        assert data["summary"] == "Match Complete"
        assert data["last_signals"]["match_complete"]

        db = test_db()
        try:
            match = db.query(Match).filter_by(id=match_id).first()
            assert match.status == MatchStatus.COMPLETED
            assert len(match.ball_events) == 12
        finally:
            db.close()
        assert match_id not in _match_locks
        assert match_id not in active_sessions

from app.engine.scoring_session import ScoringSession, SessionState, SessionCheckpoint
from app.engine.position import Position, Signals, advance

__all__ = ["ScoringSession", "SessionState", "SessionCheckpoint", "Position", "Signals", "advance"]

"""
Typed validation errors raised by the scoring session.

Every error is raised before the session mutates anything, so a caller
that catches one can keep using the same session.
"""


class ScoringError(Exception):
    """Base class for rejected scoring operations"""
    code = "scoring_error"

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message


class InvalidRosterSelection(ScoringError):
    """Player not eligible, duplicated, or previous-over bowler re-picked"""
    code = "invalid_roster_selection"


class IllegalScoringCombination(ScoringError):
    """Runs, extras and dismissal that cannot occur on one delivery"""
    code = "illegal_scoring_combination"


class StatePreconditionViolation(ScoringError):
    """Operation not allowed in the session's current state"""
    code = "state_precondition_violation"


class PositionOverflow(ScoringError):
    """Advance produced a slot outside the innings (should be unreachable)"""
    code = "position_overflow"

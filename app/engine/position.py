"""
Over and innings position arithmetic.

A Position names the slot of the next delivery: a fresh match sits at
inning 1, over 0, ball 1. Everything here is pure; advancing returns a new
Position together with the signals the scoring session acts on.
"""
from dataclasses import dataclass, field

BALLS_PER_OVER = 6
INNINGS_PER_MATCH = 2


@dataclass(frozen=True)
class Position:
    inning: int = 1
    over: int = 0
    ball: int = 1

    @property
    def display(self) -> str:
        return format_position(self.over, self.ball)

    @property
    def is_match_complete(self) -> bool:
        return self.inning > INNINGS_PER_MATCH


@dataclass(frozen=True)
class Signals:
    """Transition signals raised by a single delivery (independent flags)"""
    end_of_over: bool = False
    inning_complete: bool = False
    match_complete: bool = False


@dataclass(frozen=True)
class AdvanceResult:
    position: Position
    signals: Signals = field(default_factory=Signals)
    rotate_strike: bool = False


def _check_total_overs(total_overs: int):
    if total_overs < 1:
        raise ValueError(f"total_overs must be at least 1, got {total_overs}")


def advance(position: Position, total_overs: int, runs_this_ball: int = 0) -> AdvanceResult:
    """Move one legal delivery forward from `position`"""
    _check_total_overs(total_overs)
    if runs_this_ball < 0:
        raise ValueError(f"runs_this_ball cannot be negative, got {runs_this_ball}")

    inning, over, ball = position.inning, position.over, position.ball + 1
    end_of_over = False

    if ball > BALLS_PER_OVER:
        over += 1
        ball = 1
        end_of_over = True

    inning_complete = False
    if over >= total_overs:
        inning += 1
        over = 0
        ball = 1
        inning_complete = True

    # Never report a slot past the last legal ball of an innings
    if over >= total_overs:
        over = total_overs - 1
        ball = BALLS_PER_OVER

    signals = Signals(
        end_of_over=end_of_over,
        inning_complete=inning_complete,
        match_complete=inning > INNINGS_PER_MATCH,
    )
    return AdvanceResult(
        position=Position(inning=inning, over=over, ball=ball),
        signals=signals,
        rotate_strike=should_swap_batsmen(runs_this_ball, end_of_over),
    )


def close_innings(position: Position) -> AdvanceResult:
    """Jump to the first slot of the next innings (side all out)"""
    inning = position.inning + 1
    return AdvanceResult(
        position=Position(inning=inning, over=0, ball=1),
        signals=Signals(inning_complete=True, match_complete=inning > INNINGS_PER_MATCH),
    )


def should_swap_batsmen(runs: int, end_of_over: bool) -> bool:
    if end_of_over:
        return True
    return runs % 2 == 1


def to_decimal_overs(over: int, ball: int) -> float:
    """2.3 (third ball of the third over) -> 2 + 2/6"""
    return over + (ball - 1) / BALLS_PER_OVER


def from_decimal_overs(decimal_overs: float) -> tuple[int, int]:
    over = int(decimal_overs)
    ball = round((decimal_overs - over) * BALLS_PER_OVER) + 1
    return over, ball


def format_position(over: int, ball: int) -> str:
    return f"{over}.{ball}"


def describe_position(position: Position) -> str:
    if position.is_match_complete:
        return "Match Complete"
    if position.over == 0 and position.ball == 1:
        return "Not Started"
    return format_position(position.over, position.ball)


def is_legal_position(position: Position, total_overs: int) -> bool:
    if position.inning < 1 or position.inning > INNINGS_PER_MATCH:
        return False
    if position.over < 0 or position.over >= total_overs:
        return False
    if position.ball < 1 or position.ball > BALLS_PER_OVER:
        return False
    return True


def can_accept_ball(position: Position, total_overs: int) -> bool:
    if position.is_match_complete:
        return False
    if (position.inning == INNINGS_PER_MATCH
            and position.over >= total_overs
            and position.ball >= BALLS_PER_OVER):
        return False
    return True


def overs_remaining(position: Position, total_overs: int) -> float:
    if position.is_match_complete:
        return 0.0
    return total_overs - to_decimal_overs(position.over, position.ball)


def match_state_summary(position: Position, total_overs: int) -> str:
    """One-line summary such as '1st Innings - 2.3 (17.7 overs remaining)'"""
    if position.is_match_complete:
        return "Match Complete"
    label = {1: "1st Innings", 2: "2nd Innings"}.get(position.inning)
    if label is None:
        return "Match not started"
    remaining = overs_remaining(position, total_overs)
    return f"{label} - {describe_position(position)} ({remaining:.1f} overs remaining)"

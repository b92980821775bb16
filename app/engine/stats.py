from collections import Counter
from dataclasses import dataclass, field
from typing import Iterable, Optional

from app.engine.events import DismissalType, ExtraType, RecordedBall
from app.engine.position import BALLS_PER_OVER


@dataclass
class PlayerStats:
    """Batting, bowling and fielding aggregates for one player across the match"""
    player_id: int
    runs: int = 0
    balls_faced: int = 0
    fours: int = 0
    sixes: int = 0
    dismissals: int = 0
    dismissal: str = ""

    balls_bowled: int = 0
    runs_conceded: int = 0
    wickets: int = 0
    wides: int = 0
    no_balls: int = 0

    catches: int = 0
    stumpings: int = 0
    run_outs: int = 0

    @property
    def strike_rate(self) -> float:
        if self.balls_faced == 0:
            return 0.0
        return (self.runs / self.balls_faced) * 100

    @property
    def overs_display(self) -> str:
        return f"{self.balls_bowled // BALLS_PER_OVER}.{self.balls_bowled % BALLS_PER_OVER}"

    @property
    def economy(self) -> float:
        if self.balls_bowled == 0:
            return 0.0
        return (self.runs_conceded / self.balls_bowled) * BALLS_PER_OVER

    @property
    def figures(self) -> str:
        return f"{self.overs_display}-{self.runs_conceded}-{self.wickets}"


@dataclass
class InningsTotals:
    inning: int
    runs: int = 0
    wickets: int = 0
    extras: int = 0
    legal_balls: int = 0
    dismissed: Counter = field(default_factory=Counter)

    @property
    def overs_display(self) -> str:
        return f"{self.legal_balls // BALLS_PER_OVER}.{self.legal_balls % BALLS_PER_OVER}"

    @property
    def run_rate(self) -> float:
        if self.legal_balls == 0:
            return 0.0
        return (self.runs / self.legal_balls) * BALLS_PER_OVER

    @property
    def score(self) -> str:
        return f"{self.runs}/{self.wickets}"

    def is_dismissed(self, player_id: int) -> bool:
        return self.dismissed[player_id] > 0


_FIELDER_CREDIT = {
    DismissalType.CAUGHT: "catches",
    DismissalType.STUMPED: "stumpings",
    DismissalType.RUN_OUT: "run_outs",
}


class StatsBook:
    """
    Running aggregates derived from the ball log.

    Every contribution is applied with a sign so that undo reverts exactly
    what recording added; `from_log` rebuilds the same book from scratch.
    """

    def __init__(self):
        self.players: dict[int, PlayerStats] = {}
        self.innings: dict[int, InningsTotals] = {}

    @classmethod
    def from_log(cls, balls: Iterable[RecordedBall]) -> "StatsBook":
        book = cls()
        for ball in balls:
            book.record(ball)
        return book

    def player(self, player_id: int) -> PlayerStats:
        return self.players.setdefault(player_id, PlayerStats(player_id=player_id))

    def innings_totals(self, inning: int) -> InningsTotals:
        return self.innings.setdefault(inning, InningsTotals(inning=inning))

    def record(self, ball: RecordedBall):
        self._apply(ball, 1)

    def revert(self, ball: RecordedBall):
        self._apply(ball, -1)

    def credit_fielder(self, kind: DismissalType, fielder_id: Optional[int], sign: int = 1):
        attr = _FIELDER_CREDIT.get(kind)
        if attr is None or fielder_id is None:
            return
        stats = self.player(fielder_id)
        setattr(stats, attr, getattr(stats, attr) + sign)

    def _apply(self, ball: RecordedBall, sign: int):
        event = ball.event
        extra = event.extra
        totals = self.innings_totals(ball.position.inning)
        batter = self.player(event.striker)
        bowler = self.player(event.bowler)

        totals.runs += sign * event.total_runs
        totals.extras += sign * event.extra_runs
        if event.is_legal_delivery:
            totals.legal_balls += sign
            bowler.balls_bowled += sign

        # No-balls count as faced, wides do not
        if not event.is_wide:
            batter.balls_faced += sign
        batter.runs += sign * event.runs_off_bat
        if event.runs_off_bat == 4:
            batter.fours += sign
        elif event.runs_off_bat == 6:
            batter.sixes += sign

        bowler.runs_conceded += sign * event.runs_off_bat
        if extra and extra.kind.charged_to_bowler:
            bowler.runs_conceded += sign * extra.runs
            if extra.kind == ExtraType.WIDE:
                bowler.wides += sign
            else:
                bowler.no_balls += sign

        wicket = event.wicket
        if wicket:
            totals.wickets += sign
            totals.dismissed[wicket.dismissed] += sign
            dismissed = self.player(wicket.dismissed)
            dismissed.dismissals += sign
            dismissed.dismissal = wicket.kind.value if sign > 0 else ""
            if wicket.kind.credited_to_bowler:
                bowler.wickets += sign
            self.credit_fielder(wicket.kind, wicket.fielder, sign)

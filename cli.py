#!/usr/bin/env python3
"""
CLI for the Scorebook scoring engine
"""
import json
import logging

import click
from rich.console import Console
from rich.table import Table
from rich.panel import Panel

from app.config import settings
from app.database import init_db, get_session
from app.models import Match
from app.engine import ScoringSession
from app.engine.errors import ScoringError
from app.engine.events import (
    BallEvent, Extra, ExtraType, Wicket, DismissalType, Roster,
    PendingRequest, SessionStatus, Openers, NewBatsman, NewBowler,
)
from app.engine.position import match_state_summary

console = Console()


@click.group()
@click.option("--log-level", default=settings.LOG_LEVEL, help="Logging level")
def cli(log_level: str):
    """Scorebook - ball-by-ball cricket scoring"""
    logging.basicConfig(level=log_level.upper(), format="%(levelname)s %(name)s: %(message)s")


@cli.command()
def init():
    """Initialize the database"""
    console.print("[yellow]Initializing database...[/yellow]")
    init_db()
    console.print("[green]Database initialized successfully![/green]")


def _parse_ball(raw: dict) -> BallEvent:
    extra = None
    if raw.get("extra"):
        extra = Extra(kind=ExtraType(raw["extra"]["type"]), runs=raw["extra"].get("runs", 1))
    wicket = None
    if raw.get("wicket"):
        wicket = Wicket(
            kind=DismissalType(raw["wicket"]["type"]),
            dismissed=raw["wicket"]["dismissed"],
            fielder=raw["wicket"].get("fielder"),
        )
    return BallEvent(
        striker=raw["striker"],
        non_striker=raw["non_striker"],
        bowler=raw["bowler"],
        runs_off_bat=raw.get("runs", 0),
        extra=extra,
        wicket=wicket,
    )


def _answer_prompts(session: ScoringSession, event: BallEvent):
    """Resolve outstanding prompts using the lineup the next ball was bowled to"""
    while session.status != SessionStatus.LIVE:
        status = session.status
        if status == SessionStatus.INNINGS_BREAK:
            session.start_next_innings()
        elif status == SessionStatus.AWAITING_OPENERS:
            session.resolve_pending_request(Openers(event.striker, event.non_striker, event.bowler))
        elif status == SessionStatus.AWAITING_NEW_BATSMAN:
            at_crease = {session.striker_id, session.non_striker_id}
            incoming = next((p for p in (event.striker, event.non_striker) if p not in at_crease), None)
            if incoming is None:
                raise click.ClickException("Scoresheet does not name the incoming batsman")
            session.resolve_pending_request(NewBatsman(incoming))
        elif status == SessionStatus.AWAITING_NEW_BOWLER:
            session.resolve_pending_request(NewBowler(event.bowler))
        else:
            raise click.ClickException(f"Scoresheet cannot continue while {status.value}")


@cli.command()
@click.argument("scoresheet", type=click.File("r"))
def replay(scoresheet):
    """Replay a JSON scoresheet through the scoring engine and print the scorecard"""
    data = json.load(scoresheet)
    team1, team2 = data["team1"], data["team2"]
    names = {**team1.get("names", {}), **team2.get("names", {})}
    session = ScoringSession(
        match_id=data.get("match_id", 0),
        total_overs=data.get("total_overs", settings.DEFAULT_TOTAL_OVERS),
        batting_roster=Roster.of(team1["id"], team1["players"]),
        bowling_roster=Roster.of(team2["id"], team2["players"]),
    )

    for number, raw in enumerate(data["balls"], start=1):
        event = _parse_ball(raw)
        try:
            _answer_prompts(session, event)
            session.apply_ball(event)
        except ScoringError as e:
            raise click.ClickException(f"Ball {number} rejected ({e.code}): {e.message}")

    console.print(Panel(f"[bold]{match_state_summary(session.position, session.total_overs)}[/bold]"))
    if session.pending_request() != PendingRequest.NONE:
        console.print(f"[yellow]Awaiting: {session.pending_request().value}[/yellow]")

    _print_scorecard(session, 1, team1["players"], team2["players"], names)
    if 2 in session.stats.innings:
        _print_scorecard(session, 2, team2["players"], team1["players"], names)


@cli.command()
@click.argument("match_id", type=int)
def scorecard(match_id: int):
    """Print the scorecard of a stored match"""
    db = get_session()
    try:
        match = db.query(Match).filter_by(id=match_id).first()
        if not match:
            raise click.ClickException(f"Match {match_id} not found")
        session = ScoringSession.rehydrate(
            match.id,
            match.total_overs,
            match.roster(match.batting_first_id),
            match.roster(match.bowling_first_id),
            [row.to_recorded() for row in match.ball_events],
            checkpoint=match.checkpoint,
        )
        names = {str(mp.player_id): mp.player.name for mp in match.players}
        batting_first = [mp.player_id for mp in match.players if mp.team_id == match.batting_first_id]
        batting_second = [mp.player_id for mp in match.players if mp.team_id == match.bowling_first_id]
    finally:
        db.close()

    console.print(Panel(f"[bold]Match {match_id}: {match_state_summary(session.position, session.total_overs)}[/bold]"))
    _print_scorecard(session, 1, batting_first, batting_second, names)
    if 2 in session.stats.innings:
        _print_scorecard(session, 2, batting_second, batting_first, names)


def _print_scorecard(session: ScoringSession, inning: int, batters: list, bowlers: list, names: dict):
    """Print innings scorecard"""
    totals = session.innings_summary(inning)
    console.print(f"\n[bold]Innings {inning}: {totals.score} ({totals.overs_display} overs, extras {totals.extras})[/bold]")

    def name(player_id):
        return names.get(str(player_id), f"Player {player_id}")

    # Batting
    bat_table = Table(title="Batting")
    bat_table.add_column("Batter", style="cyan")
    bat_table.add_column("Dismissal")
    bat_table.add_column("R", justify="right")
    bat_table.add_column("B", justify="right")
    bat_table.add_column("4s", justify="right")
    bat_table.add_column("6s", justify="right")
    bat_table.add_column("SR", justify="right")

    for player_id in batters:
        stats = session.player_stats(player_id)
        if stats.balls_faced == 0 and stats.dismissals == 0:
            continue
        bat_table.add_row(
            name(player_id),
            stats.dismissal or "not out",
            str(stats.runs),
            str(stats.balls_faced),
            str(stats.fours),
            str(stats.sixes),
            f"{stats.strike_rate:.1f}",
        )

    console.print(bat_table)

    # Bowling
    bowl_table = Table(title="Bowling")
    bowl_table.add_column("Bowler", style="magenta")
    bowl_table.add_column("O", justify="right")
    bowl_table.add_column("R", justify="right")
    bowl_table.add_column("W", justify="right")
    bowl_table.add_column("Econ", justify="right")

    for player_id in bowlers:
        stats = session.player_stats(player_id)
        if stats.balls_bowled == 0 and stats.runs_conceded == 0:
            continue
        bowl_table.add_row(
            name(player_id),
            stats.overs_display,
            str(stats.runs_conceded),
            str(stats.wickets),
            f"{stats.economy:.1f}",
        )

    console.print(bowl_table)


if __name__ == "__main__":
    cli()

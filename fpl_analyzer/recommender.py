"""
FPL Analyzer - Fixture Recommender

Ranks players by how vulnerable their upcoming opponents are to their
position, over one or more gameweek horizons.
"""

import logging
from datetime import datetime, timezone
from typing import Optional, List, Dict, Iterable

from fpl_analyzer.calculators import calculate_vulnerability_score
from fpl_analyzer.config import MODEL_CONFIG, EligibilityConfig, VulnerabilityConfig
from fpl_analyzer.constants import MAX_GAMEWEEK, POSITION_IDS, UNKNOWN_TEAM
from fpl_analyzer.models import (
    DefenseTable, Fixture, Player, Position, Recommendation, Team, UpcomingFixture,
)

logger = logging.getLogger("fpl_analyzer")

# Unscheduled kickoffs sort after every real one
_LATEST = datetime.max.replace(tzinfo=timezone.utc)


# ============ GAMEWEEK RESOLUTION ============

def _kickoff_key(fixture: Fixture) -> datetime:
    kickoff = fixture.kickoff_time
    if kickoff is None:
        return _LATEST
    if kickoff.tzinfo is None:
        return kickoff.replace(tzinfo=timezone.utc)
    return kickoff


def resolve_current_gameweek(fixtures: List[Fixture]) -> int:
    """
    Gameweek of the earliest fixture that hasn't kicked off.

    Once every fixture has started or finished (end of season) fall back
    to the gameweek after the latest one seen, capped at 38.
    """
    pending = [
        f for f in fixtures
        if not f.started and not f.finished and f.gameweek is not None
    ]
    if pending:
        return min(pending, key=_kickoff_key).gameweek

    max_gameweek = max((f.gameweek or 0 for f in fixtures), default=0)
    return min(MAX_GAMEWEEK, max_gameweek + 1)


def get_target_gameweeks(current_gw: int, horizon: int) -> List[int]:
    return list(range(current_gw, current_gw + horizon))


# ============ UPCOMING FIXTURES ============

def get_player_upcoming_fixtures(
    player: Player,
    fixtures: List[Fixture],
    current_gw: int,
    horizon: int,
    table: DefenseTable,
    teams_by_id: Dict[int, Team],
    config: Optional[VulnerabilityConfig] = None,
) -> List[UpcomingFixture]:
    """
    Unfinished fixtures for the player's team within `horizon` gameweeks
    starting at `current_gw`, scored against the player's position.
    """
    target = set(get_target_gameweeks(current_gw, horizon))
    upcoming = []

    for fix in fixtures:
        if fix.finished or fix.gameweek not in target or not fix.involves(player.team_id):
            continue

        is_home = fix.home_team_id == player.team_id
        if is_home:
            opponent_id = fix.away_team_id
            difficulty = fix.home_difficulty
        else:
            opponent_id = fix.home_team_id
            difficulty = fix.away_difficulty

        opponent = teams_by_id.get(opponent_id)
        upcoming.append(UpcomingFixture(
            fixture_id=fix.id,
            gameweek=fix.gameweek,
            opponent_id=opponent_id,
            opponent_name=opponent.name if opponent else UNKNOWN_TEAM,
            is_home=is_home,
            difficulty=difficulty,
            vulnerability_score=calculate_vulnerability_score(
                opponent_id, player.position_id, table, config
            ),
        ))

    return sorted(upcoming, key=lambda x: x.gameweek)


# ============ ELIGIBILITY & RANKING ============

def is_recommendation_eligible(player: Player, config: Optional[EligibilityConfig] = None) -> bool:
    cfg = config or MODEL_CONFIG["eligibility"]
    return player.status == cfg.required_status and player.minutes > cfg.min_minutes


def rank_recommendations(
    recommendations: Iterable[Recommendation],
    tie_threshold: Optional[float] = None,
) -> List[Recommendation]:
    """
    Order by total vulnerability, breaking near-ties on form.

    Candidates are sorted by total, then grouped: a group starts at its
    highest total and takes every following candidate within
    `tie_threshold` of it. Each group is ordered by form. Both sorts are
    stable, so identical input always gives identical output.
    """
    if tie_threshold is None:
        tie_threshold = MODEL_CONFIG["vulnerability"].tie_threshold

    by_total = sorted(recommendations, key=lambda r: r.total_vulnerability, reverse=True)

    ranked: List[Recommendation] = []
    group: List[Recommendation] = []
    for rec in by_total:
        # Totals carry 2 dp; compare the gap at that precision
        if group and round(group[0].total_vulnerability - rec.total_vulnerability, 2) > tie_threshold:
            ranked.extend(sorted(group, key=lambda r: r.player.form, reverse=True))
            group = []
        group.append(rec)
    ranked.extend(sorted(group, key=lambda r: r.player.form, reverse=True))

    return ranked


def build_recommendation(
    player: Player,
    upcoming: List[UpcomingFixture],
    teams_by_id: Dict[int, Team],
) -> Recommendation:
    total = sum(f.vulnerability_score for f in upcoming)
    avg = total / len(upcoming) if upcoming else 0.0
    team = teams_by_id.get(player.team_id)
    return Recommendation(
        player=player,
        team_name=team.name if team else UNKNOWN_TEAM,
        fixtures=upcoming,
        total_vulnerability=round(total, 2),
        avg_vulnerability=round(avg, 2),
    )


def analyze_time_horizon(
    players: List[Player],
    fixtures: List[Fixture],
    table: DefenseTable,
    horizon: int,
    teams_by_id: Dict[int, Team],
    current_gw: int,
) -> Dict[Position, List[Recommendation]]:
    """Ranked recommendations per position for a single horizon."""
    by_position: Dict[Position, List[Recommendation]] = {Position(p): [] for p in POSITION_IDS}

    for player in players:
        if player.position_id not in POSITION_IDS or not is_recommendation_eligible(player):
            continue
        upcoming = get_player_upcoming_fixtures(
            player, fixtures, current_gw, horizon, table, teams_by_id
        )
        # Blank gameweeks for the team: leave the player out entirely
        if not upcoming:
            continue
        by_position[Position(player.position_id)].append(
            build_recommendation(player, upcoming, teams_by_id)
        )

    return {pos: rank_recommendations(recs) for pos, recs in by_position.items()}


def normalize_horizons(horizons: Optional[Iterable[int]]) -> List[int]:
    """Validate horizons, keeping first-seen order and dropping duplicates."""
    if horizons is None:
        horizons = MODEL_CONFIG["vulnerability"].default_horizons
    result: List[int] = []
    for horizon in horizons:
        if isinstance(horizon, bool) or not isinstance(horizon, int) or horizon < 1:
            raise ValueError(f"Invalid horizon {horizon!r}: must be a positive number of gameweeks")
        if horizon not in result:
            result.append(horizon)
    if not result:
        raise ValueError("At least one horizon is required")
    return result


def recommend_players(
    players: List[Player],
    fixtures: List[Fixture],
    table: DefenseTable,
    horizons: Optional[Iterable[int]],
    teams: List[Team],
    current_gw: Optional[int] = None,
) -> Dict[int, Dict[Position, List[Recommendation]]]:
    """
    horizon -> position -> ranked recommendations.

    Every position key is present for every horizon, possibly with an
    empty list.
    """
    horizon_list = normalize_horizons(horizons)
    teams_by_id = {t.id: t for t in teams}
    if current_gw is None:
        current_gw = resolve_current_gameweek(fixtures)

    recommendations = {}
    for horizon in horizon_list:
        logger.info(f"Analyzing {horizon} gameweek horizon from GW{current_gw}")
        recommendations[horizon] = analyze_time_horizon(
            players, fixtures, table, horizon, teams_by_id, current_gw
        )
    return recommendations


def get_top_picks(
    recommendations: Dict[int, Dict[Position, List[Recommendation]]],
) -> Dict[int, Dict[Position, Recommendation]]:
    """First-ranked player per position for each horizon; empty positions are omitted."""
    return {
        horizon: {pos: recs[0] for pos, recs in by_position.items() if recs}
        for horizon, by_position in recommendations.items()
    }

"""
FPL Analyzer - Calculators Module

Team defence aggregation (points conceded per position) and the
vulnerability score derived from it.
"""

import logging
from typing import Optional, Dict, List

from fpl_analyzer.config import MODEL_CONFIG, VulnerabilityConfig
from fpl_analyzer.constants import POSITION_IDS
from fpl_analyzer.models import (
    DefenseTable, GameweekRecord, Player, Position, Team, TeamDefenseRanking,
)

__all__ = [
    # Defence aggregation
    "aggregate_team_defense",
    "rank_team_defense",
    "get_top_vulnerable_teams",
    # Vulnerability scoring
    "vulnerability_from_average",
    "calculate_vulnerability_score",
    "build_vulnerability_matrix",
]

logger = logging.getLogger("fpl_analyzer")


# =============================================================================
# DEFENCE AGGREGATION
# =============================================================================

def aggregate_team_defense(
    players: List[Player],
    histories: Dict[int, List[GameweekRecord]],
    teams: List[Team],
) -> DefenseTable:
    """
    Build the points-conceded table from every player's gameweek history.

    A record counts against its opponent when the player was on the pitch
    (minutes > 0) and the opponent is a team in the snapshot. Anything else
    is missing data and is skipped without raising.

    Args:
        players: Bootstrap snapshot (supplies each player's position)
        histories: player_id -> gameweek records; players without an entry
            contribute nothing
        teams: Teams that get a row in every position

    Returns:
        A fresh DefenseTable
    """
    table = DefenseTable(teams)
    skipped = 0

    for player in players:
        records = histories.get(player.id)
        if not records:
            continue
        for record in records:
            if record.minutes <= 0:
                continue
            if not table.record(player.position_id, record.opponent_team_id, record.total_points):
                skipped += 1

    if skipped:
        logger.debug(f"Skipped {skipped} gameweek records with unknown opponent or position")

    return table


def rank_team_defense(table: DefenseTable) -> Dict[Position, List[TeamDefenseRanking]]:
    """
    Per position, teams that have conceded at least one counted game,
    sorted by total points allowed (highest first).
    """
    rankings: Dict[Position, List[TeamDefenseRanking]] = {}
    for position_id in POSITION_IDS:
        rows = [
            TeamDefenseRanking(
                team_id=cell.team_id,
                team_name=cell.team_name,
                total_points_allowed=cell.points_allowed,
                games_played=cell.games_counted,
                avg_points_allowed=round(cell.avg_points_allowed, 2),
            )
            for cell in table.cells(position_id)
            if cell.games_counted > 0
        ]
        rows.sort(key=lambda r: r.total_points_allowed, reverse=True)
        rankings[Position(position_id)] = rows
    return rankings


def get_top_vulnerable_teams(
    rankings: Dict[Position, List[TeamDefenseRanking]],
    position: int,
    limit: Optional[int] = None,
) -> List[TeamDefenseRanking]:
    if limit is None:
        limit = MODEL_CONFIG["analysis"].top_vulnerable_teams
    return rankings.get(Position(position), [])[:limit]


# =============================================================================
# VULNERABILITY SCORING
# =============================================================================

def vulnerability_from_average(
    avg_points_allowed: float,
    config: Optional[VulnerabilityConfig] = None,
) -> float:
    """
    Linear map of average points conceded per game onto 0-10.

    0-4 pts/game covers nearly every team/position pair; 4.0 and above
    saturates at 10.
    """
    cfg = config or MODEL_CONFIG["vulnerability"]
    score = avg_points_allowed * cfg.points_scale
    return min(cfg.max_score, max(cfg.min_score, score))


def calculate_vulnerability_score(
    team_id: int,
    position_id: int,
    table: DefenseTable,
    config: Optional[VulnerabilityConfig] = None,
) -> float:
    """
    Vulnerability of `team_id` against players of `position_id`.

    No data (unknown team, or zero counted games) scores 0.0 rather than
    raising, so callers can score any fixture.
    """
    cell = table.get(position_id, team_id)
    if cell is None or cell.games_counted == 0:
        return 0.0
    return vulnerability_from_average(round(cell.avg_points_allowed, 2), config)


def build_vulnerability_matrix(
    table: DefenseTable,
    config: Optional[VulnerabilityConfig] = None,
) -> Dict[int, Dict[Position, float]]:
    """team_id -> {position: score} for every team in the table."""
    return {
        team_id: {
            Position(pos): calculate_vulnerability_score(team_id, pos, table, config)
            for pos in POSITION_IDS
        }
        for team_id in table.team_ids
    }

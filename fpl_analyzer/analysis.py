"""
FPL Analyzer - Player Analysis Module

Filter/sort/cap views over the bootstrap snapshot: top scorers, value,
form, differentials, positions, team totals and single-player detail.
"""

import math
from typing import Optional, List, Dict, Callable, Any

from fpl_analyzer.config import MODEL_CONFIG, RegularStarterConfig
from fpl_analyzer.constants import UNKNOWN_TEAM, get_position_name
from fpl_analyzer.models import Player, PlayerNotFoundError, PlayerSummary, Team


# ============ REGULAR STARTER ============

def is_regular_starter(player: Player, config: Optional[RegularStarterConfig] = None) -> bool:
    """
    True for players who are currently first choice.

    Needs 5 full games of minutes, 60+ minutes per estimated appearance,
    and either non-zero form or 20 full games banked.
    """
    cfg = config or MODEL_CONFIG["regular_starter"]
    if player.minutes < cfg.min_minutes:
        return False

    estimated_games = max(1, math.ceil(player.minutes / cfg.full_game_minutes))
    avg_minutes = player.minutes / estimated_games

    has_recent_minutes = player.form != 0 or player.minutes >= cfg.established_minutes
    return avg_minutes >= cfg.min_avg_minutes and has_recent_minutes


def points_per_million(player: Player) -> float:
    if player.cost <= 0:
        return 0.0
    return round(player.total_points / player.cost, 2)


def select_players(
    players: List[Player],
    predicate: Callable[[Player], bool],
    sort_key: Callable[[Player], Any],
    limit: Optional[int] = None,
) -> List[Player]:
    """Filter, sort descending (stable) and cap."""
    selected = sorted((p for p in players if predicate(p)), key=sort_key, reverse=True)
    return selected if limit is None else selected[:limit]


# ============ VIEWS ============

def get_top_scorers(players: List[Player], limit: Optional[int] = None) -> List[Dict]:
    if limit is None:
        limit = MODEL_CONFIG["analysis"].default_limit
    return [
        {
            "id": p.id,
            "name": p.name,
            "web_name": p.web_name,
            "total_points": p.total_points,
            "points_per_game": p.points_per_game,
            "form": p.form,
            "cost": p.cost,
            "selected_by": p.selected_by,
        }
        for p in select_players(players, lambda p: True, lambda p: p.total_points, limit)
    ]


def get_best_value_players(players: List[Player], limit: Optional[int] = None) -> List[Dict]:
    """Regular starters with meaningful points, ranked by points per £m."""
    cfg = MODEL_CONFIG["analysis"]
    if limit is None:
        limit = cfg.default_limit

    def qualifies(p: Player) -> bool:
        return (
            is_regular_starter(p)
            and p.total_points > cfg.min_points_for_value
            and p.cost > cfg.min_value_cost
        )

    return [
        {
            "id": p.id,
            "name": p.name,
            "web_name": p.web_name,
            "total_points": p.total_points,
            "cost": p.cost,
            "points_per_million": points_per_million(p),
            "form": p.form,
            "selected_by": p.selected_by,
            "minutes": p.minutes,
        }
        for p in select_players(players, qualifies, points_per_million, limit)
    ]


def get_best_form_players(players: List[Player], limit: Optional[int] = None) -> List[Dict]:
    cfg = MODEL_CONFIG["analysis"]
    if limit is None:
        limit = cfg.default_limit

    def qualifies(p: Player) -> bool:
        return is_regular_starter(p) and p.total_points > cfg.min_points_for_form

    return [
        {
            "id": p.id,
            "name": p.name,
            "web_name": p.web_name,
            "form": p.form,
            "total_points": p.total_points,
            "cost": p.cost,
            "minutes": p.minutes,
            "selected_by": p.selected_by,
        }
        for p in select_players(players, qualifies, lambda p: p.form, limit)
    ]


def get_differential_picks(
    players: List[Player],
    max_ownership: Optional[float] = None,
    min_points: Optional[int] = None,
    limit: Optional[int] = None,
) -> List[Dict]:
    """Low-ownership regular starters with a high points total."""
    cfg = MODEL_CONFIG["analysis"]
    if max_ownership is None:
        max_ownership = cfg.differential_max_ownership
    if min_points is None:
        min_points = cfg.differential_min_points

    def qualifies(p: Player) -> bool:
        return (
            p.selected_by <= max_ownership
            and p.total_points >= min_points
            and is_regular_starter(p)
        )

    return [
        {
            "id": p.id,
            "name": p.name,
            "web_name": p.web_name,
            "total_points": p.total_points,
            "cost": p.cost,
            "ownership": p.selected_by,
            "form": p.form,
            "position": get_position_name(p.position_id),
        }
        for p in select_players(players, qualifies, lambda p: p.total_points, limit)
    ]


def get_players_by_position(players: List[Player], position_id: int) -> List[Dict]:
    return [
        {
            "id": p.id,
            "name": p.name,
            "web_name": p.web_name,
            "position": get_position_name(p.position_id),
            "total_points": p.total_points,
            "goals_scored": p.goals_scored,
            "assists": p.assists,
            "clean_sheets": p.clean_sheets,
            "cost": p.cost,
            "form": p.form,
            "minutes": p.minutes,
            "selected_by": p.selected_by,
        }
        for p in select_players(
            players, lambda p: p.position_id == position_id, lambda p: p.total_points
        )
    ]


def analyze_team_performance(players: List[Player], teams: List[Team]) -> List[Dict]:
    """Sum player output per team, highest total points first."""
    team_stats = {
        t.id: {
            "team_id": t.id,
            "name": t.name,
            "total_points": 0,
            "player_count": 0,
            "average_points": 0.0,
            "total_goals": 0,
            "total_assists": 0,
            "clean_sheets": 0,
        }
        for t in teams
    }

    for player in players:
        stats = team_stats.get(player.team_id)
        if stats is None:
            continue
        stats["total_points"] += player.total_points
        stats["player_count"] += 1
        stats["total_goals"] += player.goals_scored
        stats["total_assists"] += player.assists
        stats["clean_sheets"] += player.clean_sheets

    for stats in team_stats.values():
        if stats["player_count"]:
            stats["average_points"] = round(stats["total_points"] / stats["player_count"], 1)

    return sorted(team_stats.values(), key=lambda s: s["total_points"], reverse=True)


# ============ PLAYER DETAIL ============

def find_player(players: List[Player], player_id: int) -> Player:
    for player in players:
        if player.id == player_id:
            return player
    raise PlayerNotFoundError(player_id)


def build_player_detail(
    player_id: int,
    players: List[Player],
    teams: List[Team],
    summary: PlayerSummary,
) -> Dict:
    player = find_player(players, player_id)
    team = next((t for t in teams if t.id == player.team_id), None)

    return {
        "basic_info": {
            "id": player.id,
            "name": player.name,
            "web_name": player.web_name,
            "position": get_position_name(player.position_id),
            "team": team.name if team else UNKNOWN_TEAM,
            "cost": player.cost,
            "total_points": player.total_points,
            "form": player.form,
            "selected_by": player.selected_by,
        },
        "season_stats": {
            "goals": player.goals_scored,
            "assists": player.assists,
            "clean_sheets": player.clean_sheets,
            "minutes": player.minutes,
            "yellow_cards": player.yellow_cards,
            "red_cards": player.red_cards,
            "saves": player.saves,
            "bonus": player.bonus,
        },
        "gameweek_history": [
            {
                "gameweek": h.gameweek,
                "opponent_team_id": h.opponent_team_id,
                "minutes": h.minutes,
                "total_points": h.total_points,
                "was_home": h.was_home,
            }
            for h in summary.history
        ],
        "upcoming_fixtures": summary.upcoming_fixtures,
        "previous_seasons": summary.previous_seasons,
    }

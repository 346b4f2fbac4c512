"""
FPL Analyzer - Analysis Pipeline

fetch -> aggregate -> score -> recommend over one snapshot.
Callable from API endpoints, tests, or a script.

The synchronous core takes pre-fetched data so it can be tested without
HTTP mocking; the async wrapper does the fetching.
"""

import logging
from datetime import datetime, timezone
from typing import Optional, List, Dict, Iterable

from fpl_analyzer.calculators import aggregate_team_defense, rank_team_defense
from fpl_analyzer.config import MODEL_CONFIG, DataQualityConfig
from fpl_analyzer.models import (
    AnalysisResult, Fixture, GameweekRecord, HistoryFetchFailure, Player,
    Position, Recommendation, Team, TeamDefenseRanking, UpcomingFixture,
)
from fpl_analyzer.recommender import (
    get_top_picks, normalize_horizons, recommend_players, resolve_current_gameweek,
)
from fpl_analyzer.services import fetch_bootstrap, fetch_fixtures, fetch_player_histories

logger = logging.getLogger("fpl_analyzer")


# =============================================================================
# DATA QUALITY
# =============================================================================

def has_sufficient_data(
    requested: int,
    failures: List[HistoryFetchFailure],
    histories: Dict[int, List[GameweekRecord]],
    config: Optional[DataQualityConfig] = None,
) -> bool:
    cfg = config or MODEL_CONFIG["data_quality"]
    if requested == 0 or not histories:
        return False
    return len(failures) / requested <= cfg.max_history_failure_ratio


# =============================================================================
# SYNC CORE
# =============================================================================

def run_analysis_sync(
    players: List[Player],
    teams: List[Team],
    fixtures: List[Fixture],
    histories: Dict[int, List[GameweekRecord]],
    horizons: Optional[Iterable[int]] = None,
    history_failures: Optional[List[HistoryFetchFailure]] = None,
    requested: Optional[int] = None,
) -> AnalysisResult:
    """
    Defence table and fixture recommendations for one snapshot.

    `requested` is how many histories were asked for (defaults to the
    player count). When too many of them failed the defence rankings are
    still returned but recommendations are withheld.
    """
    horizon_list = normalize_horizons(horizons)
    failures = list(history_failures or [])
    if requested is None:
        requested = len(players)

    table = aggregate_team_defense(players, histories, teams)
    rankings = rank_team_defense(table)
    current_gw = resolve_current_gameweek(fixtures)

    if has_sufficient_data(requested, failures, histories):
        status = "ok"
        recommendations = recommend_players(
            players, fixtures, table, horizon_list, teams, current_gw=current_gw
        )
    else:
        status = "insufficient_data"
        recommendations = None
        logger.warning(
            f"Insufficient data for recommendations: {len(failures)}/{requested} histories failed, "
            f"{len(histories)} loaded"
        )

    return AnalysisResult(
        status=status,
        current_gameweek=current_gw,
        horizons=horizon_list,
        defense_rankings=rankings,
        recommendations=recommendations,
        history_failures=failures,
        players_analyzed=len(histories),
        timestamp=datetime.now(timezone.utc).isoformat(),
    )


# =============================================================================
# ASYNC WRAPPER
# =============================================================================

async def run_analysis_async(horizons: Optional[Iterable[int]] = None) -> AnalysisResult:
    """
    Fetch a fresh snapshot and analyse it.

    Bootstrap or fixtures failures raise FetchError; history failures are
    tolerated and reported on the result.
    """
    horizon_list = normalize_horizons(horizons)

    logger.info("Starting comprehensive team defense analysis...")
    bootstrap = await fetch_bootstrap()
    fixtures = await fetch_fixtures()

    player_ids = [p.id for p in bootstrap.players]
    batch = await fetch_player_histories(player_ids)
    logger.info("Analysis fetch complete, calculating results")

    return run_analysis_sync(
        players=bootstrap.players,
        teams=bootstrap.teams,
        fixtures=fixtures,
        histories=batch.histories,
        horizons=horizon_list,
        history_failures=batch.failures,
        requested=batch.requested,
    )


# =============================================================================
# SERIALIZATION
# =============================================================================

def defense_ranking_to_dict(r: TeamDefenseRanking) -> Dict:
    return {
        "team_id": r.team_id,
        "name": r.team_name,
        "total_points_allowed": r.total_points_allowed,
        "games_played": r.games_played,
        "avg_points_allowed_per_game": r.avg_points_allowed,
    }


def defense_rankings_to_dict(rankings: Dict[Position, List[TeamDefenseRanking]]) -> Dict:
    return {pos.group: [defense_ranking_to_dict(r) for r in rows] for pos, rows in rankings.items()}


def _fixture_to_dict(f: UpcomingFixture) -> Dict:
    return {
        "gameweek": f.gameweek,
        "opponent": f.opponent_name,
        "opponent_id": f.opponent_id,
        "is_home": f.is_home,
        "difficulty": f.difficulty,
        "vulnerability_score": round(f.vulnerability_score, 2),
    }


def recommendation_to_dict(rec: Recommendation) -> Dict:
    p = rec.player
    return {
        "id": p.id,
        "name": p.name,
        "web_name": p.web_name,
        "team": rec.team_name,
        "position": Position(p.position_id).label,
        "position_id": p.position_id,
        "cost": p.cost,
        "total_points": p.total_points,
        "form": p.form,
        "selected_by": p.selected_by,
        "fixtures_count": rec.fixture_count,
        "total_vulnerability_score": rec.total_vulnerability,
        "avg_vulnerability_score": rec.avg_vulnerability,
        "fixtures": [_fixture_to_dict(f) for f in rec.fixtures],
    }


def recommendations_to_dict(
    recommendations: Dict[int, Dict[Position, List[Recommendation]]],
    limit: Optional[int] = None,
) -> Dict:
    return {
        str(horizon): {
            pos.label: [recommendation_to_dict(r) for r in (recs if limit is None else recs[:limit])]
            for pos, recs in by_position.items()
        }
        for horizon, by_position in recommendations.items()
    }


def analysis_result_to_dict(result: AnalysisResult, limit: Optional[int] = None) -> Dict:
    """Convert AnalysisResult to a JSON-serializable dict for API response."""
    payload = {
        "status": result.status,
        "current_gw": result.current_gameweek,
        "horizons": result.horizons,
        "timestamp": result.timestamp,
        "players_analyzed": result.players_analyzed,
        "history_failures": [
            {"player_id": f.player_id, "reason": f.reason} for f in result.history_failures
        ],
        "defense": defense_rankings_to_dict(result.defense_rankings),
        "recommendations": None,
        "top_picks": None,
    }
    if result.recommendations is not None:
        payload["recommendations"] = recommendations_to_dict(result.recommendations, limit)
        payload["top_picks"] = {
            str(horizon): {
                pos.label: {"id": rec.player.id, "web_name": rec.player.web_name, "team": rec.team_name}
                for pos, rec in picks.items()
            }
            for horizon, picks in get_top_picks(result.recommendations).items()
        }
    return payload

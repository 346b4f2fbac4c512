"""
FPL Analyzer - Endpoints Module

FastAPI app initialization, CORS middleware, lifespan handler,
and the API endpoint handlers. Every request analyses a fresh snapshot.
"""

import os
import logging
from contextlib import asynccontextmanager
from typing import Optional, List

from fastapi import FastAPI, HTTPException, Query
from fastapi.middleware.cors import CORSMiddleware
from pydantic import ValidationError

from fpl_analyzer.analysis import (
    analyze_team_performance, build_player_detail, find_player,
    get_best_form_players, get_best_value_players, get_differential_picks,
    get_players_by_position, get_top_scorers,
)
from fpl_analyzer.calculators import (
    aggregate_team_defense, get_top_vulnerable_teams, rank_team_defense,
)
from fpl_analyzer.config import MODEL_CONFIG
from fpl_analyzer.constants import POSITION_ID_MAP
from fpl_analyzer.models import (
    FetchError, PlayerNotFoundError, Position, RecommendationQuery,
)
from fpl_analyzer.pipeline import (
    analysis_result_to_dict, defense_ranking_to_dict, defense_rankings_to_dict,
    run_analysis_async,
)
from fpl_analyzer.services import (
    close_http_client, create_http_client,
    fetch_bootstrap, fetch_player_histories, fetch_player_summary,
)
import fpl_analyzer.services as services_module


logger = logging.getLogger("fpl_analyzer")


def _unavailable(error: FetchError) -> HTTPException:
    logger.error(f"Upstream fetch failed: {error}")
    return HTTPException(status_code=503, detail=f"FPL API unavailable: {error}")


async def _load_bootstrap():
    try:
        return await fetch_bootstrap()
    except FetchError as e:
        raise _unavailable(e)


# ============ LIFESPAN ============

@asynccontextmanager
async def lifespan(app: FastAPI):
    """Startup and shutdown events."""
    services_module.http_client = create_http_client()
    yield
    await close_http_client()


# ============ APP INITIALIZATION ============

app = FastAPI(title="FPL Analyzer API", version="1.0.0", lifespan=lifespan)

CORS_ORIGINS = os.environ.get("CORS_ORIGINS", "*").split(",")

app.add_middleware(
    CORSMiddleware,
    allow_origins=CORS_ORIGINS,
    allow_credentials=False,
    allow_methods=["*"],
    allow_headers=["*"],
)


# ============ PLAYER VIEWS ============

@app.get("/api/top-scorers")
async def top_scorers(limit: int = Query(10, ge=1, le=100)):
    bootstrap = await _load_bootstrap()
    return {"players": get_top_scorers(bootstrap.players, limit)}


@app.get("/api/value-players")
async def value_players(limit: int = Query(10, ge=1, le=100)):
    bootstrap = await _load_bootstrap()
    return {"players": get_best_value_players(bootstrap.players, limit)}


@app.get("/api/form-players")
async def form_players(limit: int = Query(10, ge=1, le=100)):
    bootstrap = await _load_bootstrap()
    return {"players": get_best_form_players(bootstrap.players, limit)}


@app.get("/api/differentials")
async def differentials(
    max_ownership: float = Query(MODEL_CONFIG["analysis"].differential_max_ownership, ge=0, le=100),
    min_points: int = Query(MODEL_CONFIG["analysis"].differential_min_points, ge=0),
    limit: Optional[int] = Query(None, ge=1, le=100),
):
    bootstrap = await _load_bootstrap()
    players = get_differential_picks(bootstrap.players, max_ownership, min_points, limit)
    return {"max_ownership": max_ownership, "min_points": min_points, "players": players}


@app.get("/api/players/position/{position}")
async def players_by_position(position: str, limit: Optional[int] = Query(None, ge=1)):
    position_id = POSITION_ID_MAP.get(position.upper())
    if position_id is None:
        raise HTTPException(status_code=404, detail=f"Unknown position {position}")
    bootstrap = await _load_bootstrap()
    players = get_players_by_position(bootstrap.players, position_id)
    return {"position": Position(position_id).label, "players": players[:limit] if limit else players}


@app.get("/api/team-performance")
async def team_performance():
    bootstrap = await _load_bootstrap()
    return {"teams": analyze_team_performance(bootstrap.players, bootstrap.teams)}


@app.get("/api/player/{player_id}")
async def player_detail(player_id: int):
    bootstrap = await _load_bootstrap()
    try:
        find_player(bootstrap.players, player_id)
    except PlayerNotFoundError as e:
        raise HTTPException(status_code=404, detail=str(e))
    try:
        summary = await fetch_player_summary(player_id)
    except FetchError as e:
        raise _unavailable(e)
    return build_player_detail(player_id, bootstrap.players, bootstrap.teams, summary)


# ============ DEFENCE & RECOMMENDATIONS ============

@app.get("/api/team-defense")
async def team_defense(top: int = Query(5, ge=1, le=20)):
    bootstrap = await _load_bootstrap()
    batch = await fetch_player_histories([p.id for p in bootstrap.players])

    table = aggregate_team_defense(bootstrap.players, batch.histories, bootstrap.teams)
    rankings = rank_team_defense(table)

    return {
        "players_analyzed": len(batch.histories),
        "history_failures": [{"player_id": f.player_id, "reason": f.reason} for f in batch.failures],
        "rankings": defense_rankings_to_dict(rankings),
        "most_vulnerable": {
            pos.group: [defense_ranking_to_dict(r) for r in get_top_vulnerable_teams(rankings, pos, top)]
            for pos in Position
        },
    }


@app.get("/api/recommendations")
async def recommendations(
    horizons: List[int] = Query(list(MODEL_CONFIG["vulnerability"].default_horizons)),
    limit: Optional[int] = Query(None, ge=1, le=100),
):
    try:
        query = RecommendationQuery(horizons=horizons)
    except ValidationError as e:
        raise HTTPException(status_code=422, detail=[err["msg"] for err in e.errors()])

    try:
        result = await run_analysis_async(query.horizons)
    except FetchError as e:
        raise _unavailable(e)

    return analysis_result_to_dict(result, limit)


# ============ HEALTH CHECK ============

@app.get("/api/health")
async def health_check():
    return {
        "status": "ok",
        "http_client": services_module.http_client is not None,
        "config": {
            "tie_threshold": MODEL_CONFIG["vulnerability"].tie_threshold,
            "default_horizons": list(MODEL_CONFIG["vulnerability"].default_horizons),
            "batch_size": MODEL_CONFIG["fetch"].batch_size,
            "max_concurrency": MODEL_CONFIG["fetch"].max_concurrency,
        },
    }


@app.get("/")
async def root():
    return {"message": "FPL Analyzer API", "docs": "/docs"}

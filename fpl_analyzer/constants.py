"""
FPL Analyzer - Constants Module

API locations, position lookup tables, thresholds lifted from MODEL_CONFIG
and small parsing helpers shared by the models and analyses.
"""

from typing import Any

from fpl_analyzer.config import MODEL_CONFIG


FPL_BASE_URL = "https://fantasy.premierleague.com/api"
USER_AGENT = "FPL-Analyzer/1.0"

MAX_GAMEWEEK = 38

POSITION_MAP = {1: "GKP", 2: "DEF", 3: "MID", 4: "FWD"}
POSITION_ID_MAP = {"GKP": 1, "DEF": 2, "MID": 3, "FWD": 4}
POSITION_NAMES = {1: "Goalkeeper", 2: "Defender", 3: "Midfielder", 4: "Forward"}
POSITION_GROUPS = {1: "goalkeepers", 2: "defenders", 3: "midfielders", 4: "forwards"}
POSITION_IDS = tuple(POSITION_MAP)

STATUS_AVAILABLE = "a"

UNKNOWN_TEAM = "Unknown"
UNKNOWN_POSITION = "Unknown"

# Vulnerability scoring
VULNERABILITY_SCALE = MODEL_CONFIG["vulnerability"].points_scale
VULNERABILITY_MIN = MODEL_CONFIG["vulnerability"].min_score
VULNERABILITY_MAX = MODEL_CONFIG["vulnerability"].max_score
TIE_THRESHOLD = MODEL_CONFIG["vulnerability"].tie_threshold
DEFAULT_HORIZONS = MODEL_CONFIG["vulnerability"].default_horizons


def to_float(value: Any, default: float = 0.0) -> float:
    """Parse FPL numeric strings ("5.2", "", None) into floats."""
    if value is None or value == "":
        return default
    try:
        return float(value)
    except (TypeError, ValueError):
        return default


def to_int(value: Any, default: int = 0) -> int:
    if value is None or value == "":
        return default
    try:
        return int(value)
    except (TypeError, ValueError):
        return default


def get_position_name(position_id: int) -> str:
    return POSITION_NAMES.get(position_id, UNKNOWN_POSITION)

import os
from dataclasses import dataclass, field
from typing import Tuple


# =============================================================================
# MODEL CONFIGURATION - All analysis constants with documentation
# =============================================================================

def _env_float(name: str, default: float) -> float:
    value = os.environ.get(name)
    return float(value) if value else default


def _env_int(name: str, default: int) -> int:
    value = os.environ.get(name)
    return int(value) if value else default


@dataclass
class VulnerabilityConfig:
    """
    Vulnerability score configuration.
    Score 0-10 scale where 10 = team concedes the most points to a position.

    Typical average points conceded per game to one position sits in the
    0-4 range, so a fixed 2.5x scale maps it onto 0-10. There is no
    calibration step: the transform is linear and clamped.
    """

    points_scale: float = 2.5
    min_score: float = 0.0
    max_score: float = 10.0

    # Totals this close are treated as equal and ordered by form instead
    tie_threshold: float = 0.5

    # Gameweek horizons analysed when the caller doesn't pass any
    default_horizons: Tuple[int, ...] = (1, 3, 5)


@dataclass
class EligibilityConfig:
    """Which players are considered for fixture recommendations."""

    required_status: str = "a"   # FPL status code for "available"
    min_minutes: int = 200       # Strictly more than this many season minutes


@dataclass
class RegularStarterConfig:
    """
    Regular starter detection.

    A player needs 5 full games worth of minutes, must average 60+ minutes
    per estimated appearance, and must either show non-zero form (played
    recently) or have banked 20 full games.
    """

    min_minutes: int = 450
    full_game_minutes: int = 90
    min_avg_minutes: float = 60.0
    established_minutes: int = 1800


@dataclass
class AnalysisConfig:
    """Filters and caps for the simple player views."""

    default_limit: int = 10
    min_points_for_value: int = 20      # Strictly greater than
    min_value_cost: float = 4.0         # Strictly greater than (£m)
    min_points_for_form: int = 20       # Strictly greater than

    differential_max_ownership: float = 5.0
    differential_min_points: int = 50

    top_vulnerable_teams: int = 5


@dataclass
class FetchConfig:
    """
    Element-summary fetch pacing.

    One request per player (~700 per season) is needed to build the
    defence table. Requests go out in batches with a small stagger inside
    each batch and a longer pause between batches.
    """

    batch_size: int = field(default_factory=lambda: _env_int("FPL_BATCH_SIZE", 50))
    request_spacing: float = field(default_factory=lambda: _env_float("FPL_REQUEST_SPACING", 0.1))
    batch_pause: float = field(default_factory=lambda: _env_float("FPL_BATCH_PAUSE", 2.0))
    max_concurrency: int = field(default_factory=lambda: _env_int("FPL_MAX_CONCURRENCY", 10))

    request_timeout: float = field(default_factory=lambda: _env_float("FPL_REQUEST_TIMEOUT", 30.0))
    max_retries: int = 3
    history_max_retries: int = 2
    base_delay: float = 1.0

    progress_log_every: int = 50

    # Circuit breaker
    breaker_threshold: int = 3
    breaker_cooldown: int = 60


@dataclass
class DataQualityConfig:
    """
    When too many player histories fail to load, the defence table no longer
    reflects the league and recommendations are withheld.
    """

    max_history_failure_ratio: float = 0.25


# Initialize global config
MODEL_CONFIG = {
    "vulnerability": VulnerabilityConfig(),
    "eligibility": EligibilityConfig(),
    "regular_starter": RegularStarterConfig(),
    "analysis": AnalysisConfig(),
    "fetch": FetchConfig(),
    "data_quality": DataQualityConfig(),
}

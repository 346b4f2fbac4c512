from dataclasses import dataclass, field
from datetime import datetime
from enum import IntEnum
from typing import Optional, List, Dict, Any, Iterator

from pydantic import BaseModel, field_validator

from fpl_analyzer.constants import (
    POSITION_MAP, POSITION_NAMES, POSITION_GROUPS, POSITION_IDS,
    STATUS_AVAILABLE, UNKNOWN_TEAM, to_float, to_int,
)


# ============ EXCEPTIONS ============

class FPLAPIError(Exception):
    """Base exception for FPL API errors."""
    def __init__(self, message: str, status_code: Optional[int] = None):
        super().__init__(message)
        self.status_code = status_code


class FetchError(FPLAPIError):
    """Raised when one of the first-class datasets can't be fetched."""
    def __init__(self, source: str, message: str, status_code: Optional[int] = None):
        super().__init__(f"Failed to fetch {source}: {message}", status_code)
        self.source = source


class PlayerNotFoundError(LookupError):
    """Raised when a detail lookup references an unknown player id."""
    def __init__(self, player_id: int):
        super().__init__(f"Player with ID {player_id} not found")
        self.player_id = player_id


# ============ ENUMS ============

class Position(IntEnum):
    GKP = 1
    DEF = 2
    MID = 3
    FWD = 4

    @property
    def label(self) -> str:
        return POSITION_NAMES[self.value]

    @property
    def group(self) -> str:
        return POSITION_GROUPS[self.value]


# ============ SNAPSHOT DATA CLASSES ============

@dataclass(frozen=True)
class Team:
    id: int
    name: str
    short_name: str = ""

    @classmethod
    def from_api(cls, data: Dict) -> "Team":
        return cls(
            id=data["id"],
            name=data.get("name", UNKNOWN_TEAM),
            short_name=data.get("short_name", ""),
        )


@dataclass(frozen=True)
class Player:
    """One bootstrap element, with API strings parsed and price in £m."""
    id: int
    web_name: str
    team_id: int
    position_id: int  # 1=GKP, 2=DEF, 3=MID, 4=FWD
    first_name: str = ""
    second_name: str = ""
    status: str = STATUS_AVAILABLE
    minutes: int = 0
    form: float = 0.0
    total_points: int = 0
    cost: float = 0.0
    points_per_game: float = 0.0
    selected_by: float = 0.0
    goals_scored: int = 0
    assists: int = 0
    clean_sheets: int = 0
    yellow_cards: int = 0
    red_cards: int = 0
    saves: int = 0
    bonus: int = 0

    @property
    def name(self) -> str:
        return f"{self.first_name} {self.second_name}".strip() or self.web_name

    @property
    def position_short(self) -> str:
        return POSITION_MAP.get(self.position_id, "???")

    @classmethod
    def from_api(cls, data: Dict) -> "Player":
        return cls(
            id=data["id"],
            web_name=data.get("web_name", ""),
            team_id=data["team"],
            position_id=data["element_type"],
            first_name=data.get("first_name", ""),
            second_name=data.get("second_name", ""),
            status=data.get("status", STATUS_AVAILABLE),
            minutes=to_int(data.get("minutes")),
            form=to_float(data.get("form")),
            total_points=to_int(data.get("total_points")),
            cost=to_int(data.get("now_cost")) / 10,
            points_per_game=to_float(data.get("points_per_game")),
            selected_by=to_float(data.get("selected_by_percent")),
            goals_scored=to_int(data.get("goals_scored")),
            assists=to_int(data.get("assists")),
            clean_sheets=to_int(data.get("clean_sheets")),
            yellow_cards=to_int(data.get("yellow_cards")),
            red_cards=to_int(data.get("red_cards")),
            saves=to_int(data.get("saves")),
            bonus=to_int(data.get("bonus")),
        )


def _parse_kickoff(value: Optional[str]) -> Optional[datetime]:
    if not value:
        return None
    try:
        return datetime.fromisoformat(value.replace("Z", "+00:00"))
    except ValueError:
        return None


@dataclass(frozen=True)
class Fixture:
    id: int
    gameweek: Optional[int]  # None until the fixture is scheduled
    home_team_id: int
    away_team_id: int
    finished: bool = False
    started: bool = False
    kickoff_time: Optional[datetime] = None
    home_difficulty: int = 3
    away_difficulty: int = 3

    def involves(self, team_id: int) -> bool:
        return self.home_team_id == team_id or self.away_team_id == team_id

    @classmethod
    def from_api(cls, data: Dict) -> "Fixture":
        return cls(
            id=data["id"],
            gameweek=data.get("event"),
            home_team_id=data["team_h"],
            away_team_id=data["team_a"],
            finished=bool(data.get("finished")),
            started=bool(data.get("started")),
            kickoff_time=_parse_kickoff(data.get("kickoff_time")),
            home_difficulty=to_int(data.get("team_h_difficulty"), 3),
            away_difficulty=to_int(data.get("team_a_difficulty"), 3),
        )


@dataclass(frozen=True)
class GameweekRecord:
    """One row of an element-summary `history` list."""
    gameweek: int
    opponent_team_id: Optional[int]
    minutes: int
    total_points: int
    was_home: bool = False
    fixture_id: Optional[int] = None

    @classmethod
    def from_api(cls, data: Dict) -> "GameweekRecord":
        return cls(
            gameweek=to_int(data.get("round")),
            opponent_team_id=data.get("opponent_team"),
            minutes=to_int(data.get("minutes")),
            total_points=to_int(data.get("total_points")),
            was_home=bool(data.get("was_home")),
            fixture_id=data.get("fixture"),
        )


def _require_object(data: Any, what: str) -> Dict:
    if not isinstance(data, dict):
        raise ValueError(f"Malformed {what}: expected an object, got {type(data).__name__}")
    return data


@dataclass
class PlayerSummary:
    """Parsed element-summary response."""
    history: List[GameweekRecord] = field(default_factory=list)
    upcoming_fixtures: List[Dict[str, Any]] = field(default_factory=list)
    previous_seasons: List[Dict[str, Any]] = field(default_factory=list)

    @classmethod
    def from_api(cls, data: Dict) -> "PlayerSummary":
        data = _require_object(data, "element summary")
        return cls(
            history=[
                GameweekRecord.from_api(_require_object(h, "history row"))
                for h in data.get("history") or []
            ],
            upcoming_fixtures=list(data.get("fixtures") or []),
            previous_seasons=list(data.get("history_past") or []),
        )


@dataclass
class Bootstrap:
    players: List[Player]
    teams: List[Team]

    @classmethod
    def from_api(cls, data: Dict) -> "Bootstrap":
        data = _require_object(data, "bootstrap")
        return cls(
            players=[Player.from_api(e) for e in data.get("elements", [])],
            teams=[Team.from_api(t) for t in data.get("teams", [])],
        )


# =============================================================================
# DEFENCE TABLE
# =============================================================================

@dataclass
class DefenseCell:
    """Points conceded by one team to one position."""
    team_id: int
    team_name: str
    points_allowed: int = 0
    games_counted: int = 0

    @property
    def avg_points_allowed(self) -> float:
        if self.games_counted == 0:
            return 0.0
        return self.points_allowed / self.games_counted


class DefenseTable:
    """
    Fixed-size accumulator indexed by (position_id, team_id).

    Rows are the four positions, columns are team ids. Slots for ids that
    aren't teams in the snapshot hold None, so a lookup is two list indexes.
    """

    def __init__(self, teams: List[Team]):
        self._width = max((t.id for t in teams), default=0) + 1
        self._team_order = [t.id for t in teams]
        self._rows: List[List[Optional[DefenseCell]]] = []
        for _ in POSITION_IDS:
            row: List[Optional[DefenseCell]] = [None] * self._width
            for team in teams:
                row[team.id] = DefenseCell(team_id=team.id, team_name=team.name)
            self._rows.append(row)

    def get(self, position_id: int, team_id: Optional[int]) -> Optional[DefenseCell]:
        if position_id not in POSITION_IDS or team_id is None:
            return None
        if not 0 <= team_id < self._width:
            return None
        return self._rows[position_id - 1][team_id]

    def record(self, position_id: int, team_id: Optional[int], points: int) -> bool:
        """Add one game to a cell. Returns False when the cell doesn't exist."""
        cell = self.get(position_id, team_id)
        if cell is None:
            return False
        cell.points_allowed += points
        cell.games_counted += 1
        return True

    def cells(self, position_id: int) -> Iterator[DefenseCell]:
        """All cells of a position in snapshot team order, including empty ones."""
        for team_id in self._team_order:
            cell = self.get(position_id, team_id)
            if cell is not None:
                yield cell

    @property
    def team_ids(self) -> List[int]:
        return list(self._team_order)

    @property
    def games_counted(self) -> int:
        return sum(c.games_counted for pos in POSITION_IDS for c in self.cells(pos))


@dataclass
class TeamDefenseRanking:
    team_id: int
    team_name: str
    total_points_allowed: int
    games_played: int
    avg_points_allowed: float


# =============================================================================
# RECOMMENDATIONS
# =============================================================================

@dataclass
class UpcomingFixture:
    fixture_id: int
    gameweek: int
    opponent_id: int
    opponent_name: str
    is_home: bool
    difficulty: int
    vulnerability_score: float


@dataclass
class Recommendation:
    player: Player
    team_name: str
    fixtures: List[UpcomingFixture]
    total_vulnerability: float
    avg_vulnerability: float

    @property
    def fixture_count(self) -> int:
        return len(self.fixtures)


# =============================================================================
# FETCH / PIPELINE RESULTS
# =============================================================================

@dataclass
class HistoryFetchFailure:
    player_id: int
    reason: str


@dataclass
class PlayerHistoryBatch:
    """Best-effort result of fetching every player's gameweek history."""
    histories: Dict[int, List[GameweekRecord]] = field(default_factory=dict)
    failures: List[HistoryFetchFailure] = field(default_factory=list)
    requested: int = 0

    @property
    def failure_ratio(self) -> float:
        if self.requested == 0:
            return 0.0
        return len(self.failures) / self.requested


@dataclass
class AnalysisResult:
    status: str  # ok, insufficient_data
    current_gameweek: int
    horizons: List[int]
    defense_rankings: Dict[Position, List[TeamDefenseRanking]]
    recommendations: Optional[Dict[int, Dict[Position, List[Recommendation]]]]
    history_failures: List[HistoryFetchFailure]
    players_analyzed: int
    timestamp: str

    @property
    def is_sufficient(self) -> bool:
        return self.status == "ok"


# ============ REQUEST SCHEMAS ============

class RecommendationQuery(BaseModel):
    """Validated horizons for the recommendations endpoint."""
    horizons: List[int]

    @field_validator("horizons")
    @classmethod
    def horizons_positive(cls, value: List[int]) -> List[int]:
        if not value:
            raise ValueError("at least one horizon is required")
        if any(h < 1 for h in value):
            raise ValueError("horizons must be positive gameweek counts")
        return value

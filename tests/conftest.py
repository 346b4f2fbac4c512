"""Shared fixtures for FPL test suite."""
import os
import sys

import pytest

sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from fpl_analyzer.models import Fixture, GameweekRecord, Player, Team


@pytest.fixture
def make_element():
    """Factory for creating bootstrap element dicts matching FPL API shape."""
    def _make(**overrides):
        base = {
            "id": 1,
            "first_name": "Test",
            "second_name": "Player",
            "web_name": "TestPlayer",
            "team": 1,
            "element_type": 3,  # MID
            "status": "a",
            "now_cost": 70,  # £7.0m
            "minutes": 1800,  # 20 full games
            "form": "5.0",
            "total_points": 104,
            "points_per_game": "5.2",
            "selected_by_percent": "12.5",
            "goals_scored": 5,
            "assists": 4,
            "clean_sheets": 6,
            "yellow_cards": 3,
            "red_cards": 0,
            "saves": 0,
            "bonus": 12,
        }
        base.update(overrides)
        return base
    return _make


@pytest.fixture
def make_player(make_element):
    """Factory for parsed Player snapshots."""
    def _make(**overrides):
        return Player.from_api(make_element(**overrides))
    return _make


@pytest.fixture
def make_teams():
    """Factory for a list of Team objects with ids 1..n."""
    names = ["Arsenal", "Aston Villa", "Bournemouth", "Brentford", "Brighton", "Chelsea"]

    def _make(n=4):
        return [Team(id=i + 1, name=names[i % len(names)], short_name=names[i % len(names)][:3].upper())
                for i in range(n)]
    return _make


@pytest.fixture
def make_history():
    """Factory for a list of GameweekRecord entries, one per dict."""
    def _make(entries=None):
        default_entry = {
            "round": 1,
            "opponent_team": 2,
            "minutes": 90,
            "total_points": 5,
            "was_home": True,
        }
        result = []
        for i, entry in enumerate(entries or []):
            row = dict(default_entry)
            row["round"] = i + 1
            row.update(entry)
            result.append(GameweekRecord.from_api(row))
        return result
    return _make


@pytest.fixture
def make_fixture():
    """Factory for parsed Fixture objects from API-shaped overrides."""
    def _make(**overrides):
        base = {
            "id": 1,
            "event": 24,
            "team_h": 1,
            "team_a": 2,
            "team_h_difficulty": 3,
            "team_a_difficulty": 3,
            "finished": False,
            "started": False,
            "kickoff_time": "2025-02-01T15:00:00Z",
        }
        base.update(overrides)
        return Fixture.from_api(base)
    return _make

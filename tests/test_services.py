"""Tests for the FPL API fetchers: retry, circuit breaker and best-effort history batch."""
import asyncio
from unittest.mock import AsyncMock, patch

import httpx
import pytest

import fpl_analyzer.services as services
from fpl_analyzer.config import FetchConfig
from fpl_analyzer.models import (
    FetchError, FPLAPIError, GameweekRecord, PlayerSummary,
)


@pytest.fixture(autouse=True)
def _reset_services():
    services.reset_circuit_breaker()
    services.http_client = None
    yield
    services.reset_circuit_breaker()
    services.http_client = None


def _run_with_transport(handler, make_coro):
    """Run a coroutine against a mocked FPL API."""
    async def _go():
        services.http_client = httpx.AsyncClient(transport=httpx.MockTransport(handler))
        try:
            return await make_coro()
        finally:
            await services.close_http_client()
    return asyncio.run(_go())


BOOTSTRAP = {
    "elements": [
        {"id": 1, "web_name": "Saka", "first_name": "Bukayo", "second_name": "Saka",
         "team": 1, "element_type": 3, "now_cost": 100, "form": "6.1",
         "selected_by_percent": "30.2", "minutes": 1500, "total_points": 110, "status": "a"},
    ],
    "teams": [{"id": 1, "name": "Arsenal", "short_name": "ARS"}, {"id": 2, "name": "Chelsea", "short_name": "CHE"}],
}


# =============================================================================
# fetch_with_retry
# =============================================================================

class TestFetchWithRetry:
    def test_success_returns_response(self):
        def handler(request):
            return httpx.Response(200, json={"ok": True})

        response = _run_with_transport(handler, lambda: services.fetch_with_retry("https://x/api/"))
        assert response.json() == {"ok": True}

    @patch("fpl_analyzer.services.asyncio.sleep", new_callable=AsyncMock)
    def test_retries_server_errors(self, mock_sleep):
        calls = []

        def handler(request):
            calls.append(request)
            if len(calls) < 3:
                return httpx.Response(503)
            return httpx.Response(200, json=[])

        response = _run_with_transport(
            handler, lambda: services.fetch_with_retry("https://x/api/", max_retries=3, base_delay=0)
        )
        assert response.status_code == 200
        assert len(calls) == 3
        assert mock_sleep.await_count == 2

    @patch("fpl_analyzer.services.asyncio.sleep", new_callable=AsyncMock)
    def test_rate_limit_honours_retry_after(self, mock_sleep):
        calls = []

        def handler(request):
            calls.append(request)
            if len(calls) == 1:
                return httpx.Response(429, headers={"Retry-After": "2"})
            return httpx.Response(200, json={})

        _run_with_transport(handler, lambda: services.fetch_with_retry("https://x/api/", max_retries=2))
        mock_sleep.assert_awaited_once_with(2.0)

    @patch("fpl_analyzer.services.asyncio.sleep", new_callable=AsyncMock)
    def test_rate_limit_with_http_date_keeps_retrying(self, mock_sleep):
        calls = []

        def handler(request):
            calls.append(request)
            if len(calls) == 1:
                return httpx.Response(429, headers={"Retry-After": "Wed, 21 Oct 2015 07:28:00 GMT"})
            return httpx.Response(200, json={})

        response = _run_with_transport(handler, lambda: services.fetch_with_retry("https://x/api/", max_retries=2))
        assert response.status_code == 200
        assert len(calls) == 2
        # A date in the past means retry straight away
        mock_sleep.assert_awaited_once_with(0.0)

    def test_retry_after_parsing(self):
        assert services._retry_after_seconds("3", 1.0) == 3.0
        assert services._retry_after_seconds(None, 1.5) == 1.5
        assert services._retry_after_seconds("soon", 1.5) == 1.5
        assert services._retry_after_seconds("Thu, 01 Jan 2099 00:00:00 GMT", 1.0) > 0

    def test_client_error_not_retried(self):
        calls = []

        def handler(request):
            calls.append(request)
            return httpx.Response(404)

        with pytest.raises(FPLAPIError) as exc:
            _run_with_transport(handler, lambda: services.fetch_with_retry("https://x/api/", max_retries=3))
        assert exc.value.status_code == 404
        assert len(calls) == 1

    @patch("fpl_analyzer.services.asyncio.sleep", new_callable=AsyncMock)
    def test_exhausted_retries_raise(self, mock_sleep):
        def handler(request):
            return httpx.Response(500)

        with pytest.raises(FPLAPIError) as exc:
            _run_with_transport(
                handler, lambda: services.fetch_with_retry("https://x/api/", max_retries=2, base_delay=0)
            )
        assert exc.value.status_code == 500

    @patch("fpl_analyzer.services.asyncio.sleep", new_callable=AsyncMock)
    def test_circuit_breaker_opens(self, mock_sleep):
        calls = []

        def handler(request):
            calls.append(request)
            return httpx.Response(502)

        async def hammer():
            for _ in range(3):
                with pytest.raises(FPLAPIError):
                    await services.fetch_with_retry("https://x/api/", max_retries=1, base_delay=0)
            with pytest.raises(FPLAPIError, match="circuit breaker open"):
                await services.fetch_with_retry("https://x/api/", max_retries=1, base_delay=0)

        _run_with_transport(handler, hammer)
        assert len(calls) == 3


# =============================================================================
# Dataset fetchers
# =============================================================================

class TestFetchers:
    def test_fetch_bootstrap_parses_players_and_teams(self):
        def handler(request):
            assert request.url.path == "/api/bootstrap-static/"
            return httpx.Response(200, json=BOOTSTRAP)

        bootstrap = _run_with_transport(handler, services.fetch_bootstrap)
        assert [t.name for t in bootstrap.teams] == ["Arsenal", "Chelsea"]
        player = bootstrap.players[0]
        assert player.cost == 10.0
        assert player.form == 6.1
        assert player.name == "Bukayo Saka"

    def test_fetch_bootstrap_failure_names_source(self):
        def handler(request):
            return httpx.Response(403)

        with pytest.raises(FetchError) as exc:
            _run_with_transport(handler, services.fetch_bootstrap)
        assert exc.value.source == "bootstrap"
        assert "bootstrap" in str(exc.value)

    def test_fetch_fixtures(self):
        def handler(request):
            return httpx.Response(200, json=[
                {"id": 7, "event": 3, "team_h": 1, "team_a": 2, "finished": False, "started": None,
                 "kickoff_time": "2025-08-30T14:00:00Z", "team_h_difficulty": 2, "team_a_difficulty": 4},
                {"id": 8, "event": None, "team_h": 2, "team_a": 1, "kickoff_time": None},
            ])

        fixtures = _run_with_transport(handler, services.fetch_fixtures)
        assert fixtures[0].gameweek == 3
        assert fixtures[0].started is False
        assert fixtures[0].kickoff_time.year == 2025
        assert fixtures[1].gameweek is None
        assert fixtures[1].kickoff_time is None

    def test_fetch_fixtures_bad_payload(self):
        def handler(request):
            return httpx.Response(200, content=b"not json")

        with pytest.raises(FetchError) as exc:
            _run_with_transport(handler, services.fetch_fixtures)
        assert exc.value.source == "fixtures"

    def test_fetch_bootstrap_non_object_payload(self):
        def handler(request):
            return httpx.Response(200, json=[])

        with pytest.raises(FetchError) as exc:
            _run_with_transport(handler, services.fetch_bootstrap)
        assert exc.value.source == "bootstrap"

    def test_fetch_player_summary(self):
        def handler(request):
            assert request.url.path == "/api/element-summary/12/"
            return httpx.Response(200, json={
                "history": [{"round": 1, "opponent_team": 4, "minutes": 90, "total_points": 7, "was_home": True}],
                "fixtures": [{"event": 2}],
                "history_past": [],
            })

        summary = _run_with_transport(handler, lambda: services.fetch_player_summary(12))
        assert summary.history[0].opponent_team_id == 4
        assert summary.history[0].total_points == 7
        assert summary.upcoming_fixtures == [{"event": 2}]


# =============================================================================
# fetch_player_histories
# =============================================================================

FAST = FetchConfig(batch_size=2, request_spacing=0, batch_pause=0, max_concurrency=2)


class TestFetchPlayerHistories:
    def test_failures_are_collected_not_raised(self):
        async def fake_summary(pid):
            if pid == 2:
                raise FetchError(f"player history {pid}", "HTTP 500")
            return PlayerSummary(history=[GameweekRecord(1, 3, 90, pid)])

        with patch("fpl_analyzer.services.fetch_player_summary", side_effect=fake_summary):
            batch = asyncio.run(services.fetch_player_histories([1, 2, 3], FAST))

        assert sorted(batch.histories) == [1, 3]
        assert batch.histories[3][0].total_points == 3
        assert [f.player_id for f in batch.failures] == [2]
        assert "HTTP 500" in batch.failures[0].reason
        assert batch.requested == 3
        assert batch.failure_ratio == pytest.approx(1 / 3)

    def test_malformed_summary_skips_only_that_player(self):
        def handler(request):
            if request.url.path == "/api/element-summary/2/":
                return httpx.Response(200, json=[])
            if request.url.path == "/api/element-summary/3/":
                return httpx.Response(200, json={"history": [7]})
            return httpx.Response(200, json={
                "history": [{"round": 1, "opponent_team": 4, "minutes": 90, "total_points": 6}],
            })

        batch = _run_with_transport(handler, lambda: services.fetch_player_histories([1, 2, 3, 4], FAST))

        assert sorted(batch.histories) == [1, 4]
        assert sorted(f.player_id for f in batch.failures) == [2, 3]
        assert all("Malformed" in f.reason for f in batch.failures)

    def test_all_players_requested_across_batches(self):
        mock = AsyncMock(return_value=PlayerSummary())
        with patch("fpl_analyzer.services.fetch_player_summary", mock):
            batch = asyncio.run(services.fetch_player_histories(list(range(1, 6)), FAST))

        assert sorted(c.args[0] for c in mock.await_args_list) == [1, 2, 3, 4, 5]
        assert len(batch.histories) == 5
        assert batch.failures == []

    @patch("fpl_analyzer.services.asyncio.sleep", new_callable=AsyncMock)
    def test_pauses_between_batches(self, mock_sleep):
        cfg = FetchConfig(batch_size=2, request_spacing=0, batch_pause=2.0, max_concurrency=2)
        with patch("fpl_analyzer.services.fetch_player_summary", AsyncMock(return_value=PlayerSummary())):
            asyncio.run(services.fetch_player_histories([1, 2, 3, 4, 5], cfg))
        # 3 batches -> 2 pauses
        assert [c.args[0] for c in mock_sleep.await_args_list] == [2.0, 2.0]

    def test_empty_ids(self):
        batch = asyncio.run(services.fetch_player_histories([], FAST))
        assert batch.histories == {}
        assert batch.failure_ratio == 0.0

"""
FPL Analyzer - Services Module

HTTP client, circuit breaker and FPL API fetchers: bootstrap, fixtures,
element summaries and the paced best-effort history batch.
"""

import asyncio
import random
import logging
from datetime import datetime, timedelta, timezone
from email.utils import parsedate_to_datetime
from typing import Optional, List, Tuple

import httpx

from fpl_analyzer.config import MODEL_CONFIG, FetchConfig
from fpl_analyzer.constants import FPL_BASE_URL, USER_AGENT
from fpl_analyzer.models import (
    Bootstrap, Fixture, FetchError, FPLAPIError, GameweekRecord,
    HistoryFetchFailure, PlayerHistoryBatch, PlayerSummary,
)


logger = logging.getLogger("fpl_analyzer")

# Transport failures plus anything a malformed payload raises while parsing
FETCH_ERRORS = (FPLAPIError, httpx.HTTPError, ValueError, KeyError, TypeError, AttributeError)


# ============ HTTP CLIENT & CIRCUIT BREAKER ============

# Global HTTP client (initialized in lifespan)
http_client: Optional[httpx.AsyncClient] = None


def create_http_client(config: Optional[FetchConfig] = None) -> httpx.AsyncClient:
    cfg = config or MODEL_CONFIG["fetch"]
    return httpx.AsyncClient(
        timeout=cfg.request_timeout,
        limits=httpx.Limits(
            max_keepalive_connections=cfg.max_concurrency,
            max_connections=cfg.max_concurrency * 2,
        ),
        headers={"User-Agent": USER_AGENT},
    )


async def get_http_client() -> httpx.AsyncClient:
    """Get the shared HTTP client, creating one if needed."""
    global http_client
    if http_client is None:
        http_client = create_http_client()
    return http_client


async def close_http_client():
    global http_client
    if http_client is not None:
        await http_client.aclose()
        http_client = None


# Circuit breaker state for FPL API
_circuit_breaker = {
    "consecutive_failures": 0,
    "open_until": None,  # datetime when circuit can be retried
}


def reset_circuit_breaker():
    _circuit_breaker["consecutive_failures"] = 0
    _circuit_breaker["open_until"] = None


def _retry_after_seconds(header: Optional[str], default: float) -> float:
    """Retry-After as seconds; accepts delta-seconds or an HTTP date."""
    if not header:
        return default
    try:
        return max(0.0, float(header))
    except ValueError:
        pass
    try:
        when = parsedate_to_datetime(header)
    except (TypeError, ValueError):
        return default
    if when.tzinfo is None:
        when = when.replace(tzinfo=timezone.utc)
    return max(0.0, (when - datetime.now(timezone.utc)).total_seconds())


async def fetch_with_retry(
    url: str,
    max_retries: Optional[int] = None,
    base_delay: Optional[float] = None,
) -> httpx.Response:
    """
    Fetch URL with exponential backoff retry logic.
    Handles rate limiting (429) and transient errors.
    After `breaker_threshold` consecutive exhausted fetches the circuit opens
    and calls fail fast for `breaker_cooldown` seconds.
    """
    cfg = MODEL_CONFIG["fetch"]
    if max_retries is None:
        max_retries = cfg.max_retries
    if base_delay is None:
        base_delay = cfg.base_delay

    cb = _circuit_breaker
    now = datetime.now()

    # Circuit breaker: fail fast if open
    if cb["open_until"] and now < cb["open_until"]:
        remaining = (cb["open_until"] - now).seconds
        raise FPLAPIError(f"FPL API circuit breaker open, retrying in {remaining}s", 503)

    client = await get_http_client()
    last_error: Optional[Exception] = None

    for attempt in range(max_retries):
        try:
            response = await client.get(url)

            if response.status_code == 429:
                # Rate limited - wait and retry
                retry_after = _retry_after_seconds(
                    response.headers.get("Retry-After"), base_delay * (2 ** attempt)
                )
                logger.warning(f"Rate limited on {url}, waiting {retry_after}s")
                last_error = FPLAPIError(f"Rate limited on {url}", 429)
                await asyncio.sleep(retry_after)
                continue

            response.raise_for_status()
            # Success - reset circuit breaker
            reset_circuit_breaker()
            return response

        except httpx.HTTPStatusError as e:
            if e.response.status_code in (500, 502, 503, 504):
                delay = base_delay * (2 ** attempt) + random.uniform(0, 1)
                logger.warning(f"Server error {e.response.status_code} on {url}, retry in {delay:.1f}s")
                await asyncio.sleep(delay)
                last_error = e
                continue
            raise FPLAPIError(f"HTTP {e.response.status_code} from {url}", e.response.status_code) from e
        except (httpx.TimeoutException, httpx.ConnectError) as e:
            delay = base_delay * (2 ** attempt) + random.uniform(0, 1)
            logger.warning(f"Connection error on {url}, retry in {delay:.1f}s: {e}")
            await asyncio.sleep(delay)
            last_error = e
            continue

    # All retries exhausted - update circuit breaker
    cb["consecutive_failures"] += 1
    if cb["consecutive_failures"] >= cfg.breaker_threshold:
        cb["open_until"] = now + timedelta(seconds=cfg.breaker_cooldown)
        logger.error(f"Circuit breaker OPEN after {cb['consecutive_failures']} consecutive failures. Cooldown {cfg.breaker_cooldown}s.")

    if isinstance(last_error, FPLAPIError):
        raise last_error
    status = last_error.response.status_code if isinstance(last_error, httpx.HTTPStatusError) else None
    raise FPLAPIError(f"Failed after {max_retries} attempts on {url}: {last_error}", status)


# ============ FPL API FETCHERS ============

async def fetch_bootstrap() -> Bootstrap:
    """Players and teams. Failure aborts the run."""
    try:
        response = await fetch_with_retry(f"{FPL_BASE_URL}/bootstrap-static/")
        bootstrap = Bootstrap.from_api(response.json())
    except FETCH_ERRORS as e:
        raise FetchError("bootstrap", str(e), getattr(e, "status_code", None)) from e
    logger.info(f"Loaded data for {len(bootstrap.players)} players and {len(bootstrap.teams)} teams")
    return bootstrap


async def fetch_fixtures() -> List[Fixture]:
    try:
        response = await fetch_with_retry(f"{FPL_BASE_URL}/fixtures/")
        fixtures = [Fixture.from_api(f) for f in response.json()]
    except FETCH_ERRORS as e:
        raise FetchError("fixtures", str(e), getattr(e, "status_code", None)) from e
    logger.info(f"Successfully retrieved {len(fixtures)} fixtures")
    return fixtures


async def fetch_player_summary(player_id: int) -> PlayerSummary:
    """Gameweek history, upcoming fixtures and previous seasons for one player."""
    cfg = MODEL_CONFIG["fetch"]
    try:
        response = await fetch_with_retry(
            f"{FPL_BASE_URL}/element-summary/{player_id}/",
            max_retries=cfg.history_max_retries,
        )
        return PlayerSummary.from_api(response.json())
    except FETCH_ERRORS as e:
        raise FetchError(f"player history {player_id}", str(e), getattr(e, "status_code", None)) from e


async def fetch_player_histories(
    player_ids: List[int],
    config: Optional[FetchConfig] = None,
) -> PlayerHistoryBatch:
    """
    Fetch every player's gameweek history, best effort.

    Requests go out in batches of `batch_size`, staggered by
    `request_spacing` within a batch and capped at `max_concurrency` in
    flight, with `batch_pause` between batches. A failed player is recorded
    in `failures` and the rest carry on.
    """
    cfg = config or MODEL_CONFIG["fetch"]
    batch = PlayerHistoryBatch(requested=len(player_ids))
    total = len(player_ids)
    processed = 0
    sem = asyncio.Semaphore(max(1, cfg.max_concurrency))

    async def fetch_one(pid: int, index: int) -> Tuple[int, Optional[List[GameweekRecord]], Optional[str]]:
        nonlocal processed
        if cfg.request_spacing > 0:
            await asyncio.sleep(index * cfg.request_spacing)
        async with sem:
            try:
                summary = await fetch_player_summary(pid)
                result = (pid, summary.history, None)
            except FetchError as e:
                logger.warning(f"Skipping player {pid}: {e}")
                result = (pid, None, str(e))
        processed += 1
        if processed % cfg.progress_log_every == 0 or processed == total:
            logger.info(f"Progress: {processed}/{total} players processed ({processed / total * 100:.1f}%)")
        return result

    step = max(1, cfg.batch_size)
    for start in range(0, total, step):
        chunk = player_ids[start:start + step]
        results = await asyncio.gather(*(fetch_one(pid, i) for i, pid in enumerate(chunk)))
        for pid, history, error in results:
            if error is None:
                batch.histories[pid] = history
            else:
                batch.failures.append(HistoryFetchFailure(player_id=pid, reason=error))

        if start + step < total and cfg.batch_pause > 0:
            await asyncio.sleep(cfg.batch_pause)

    if batch.failures:
        logger.warning(f"{len(batch.failures)}/{total} player histories could not be fetched")
    return batch

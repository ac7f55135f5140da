"""
FPL API Client with rate limiting, bounded timeouts, and schema validation.

Thin fetcher for the four endpoints the cache is built from. It does not cache
and does not retry: refresh tiers already re-run on a schedule, so a failed
call surfaces to the caller as FPLAPIError and the next tick tries again.
"""

import asyncio
import logging
import random
import time
from typing import Any, List, Optional, Type, TypeVar

import httpx
from asyncio_throttle import Throttler
from pydantic import BaseModel, TypeAdapter, ValidationError

from config import Config
from fpl_api.schemas import (
    BootstrapStaticResponse,
    ElementSummaryResponse,
    EventLiveResponse,
    FixtureResponse,
)

logger = logging.getLogger(__name__)

ModelT = TypeVar("ModelT", bound=BaseModel)

_FIXTURES_ADAPTER = TypeAdapter(List[FixtureResponse])

DEFAULT_HEADERS = {
    "User-Agent": "Mozilla/5.0 (Macintosh; Intel Mac OS X 10_15_7) AppleWebKit/537.36 (KHTML, like Gecko) Chrome/120.0.0.0 Safari/537.36",
    "Accept": "application/json",
    "Accept-Language": "en-US,en;q=0.9",
    "Referer": "https://fantasy.premierleague.com/",
}


class FPLAPIError(Exception):
    """Base exception for FPL API errors (transport, HTTP status, or payload)."""

    def __init__(self, message: str, endpoint: Optional[str] = None, status_code: Optional[int] = None):
        super().__init__(message)
        self.endpoint = endpoint
        self.status_code = status_code


class FPLAPIRateLimitError(FPLAPIError):
    """Raised when the FPL API answers 429."""
    pass


class FPLAPISchemaError(FPLAPIError):
    """Raised when a response does not match the expected schema."""
    pass


class FPLAPIClient:
    """Client for interacting with the FPL API."""

    def __init__(self, config: Config, transport: Optional[httpx.AsyncBaseTransport] = None):
        self.config = config
        self.base_url = config.fpl_api_base_url.rstrip("/")

        # Rate limiting: max N req/min plus a minimum gap between requests
        self.throttler = Throttler(
            rate_limit=config.max_requests_per_minute,
            period=60.0
        )
        self.min_interval = config.min_request_interval
        self.last_request_time = 0.0

        self.client = httpx.AsyncClient(
            timeout=httpx.Timeout(config.request_timeout_seconds),
            follow_redirects=True,
            headers=DEFAULT_HEADERS,
            transport=transport,
        )

    async def _wait_for_rate_limit(self):
        """Wait to respect rate limiting."""
        await self.throttler.acquire()

        current_time = time.monotonic()
        time_since_last = current_time - self.last_request_time
        if self.last_request_time and time_since_last < self.min_interval:
            wait_time = self.min_interval - time_since_last
            # Add jitter (±25%)
            jitter = wait_time * 0.25 * (random.random() * 2 - 1)
            await asyncio.sleep(max(wait_time + jitter, 0))

        self.last_request_time = time.monotonic()

    async def _get_json(self, endpoint: str) -> Any:
        """
        GET an endpoint and decode its JSON body.

        Args:
            endpoint: API path relative to the base URL

        Returns:
            Decoded JSON payload

        Raises:
            FPLAPIRateLimitError: On HTTP 429
            FPLAPIError: On timeout, network failure, non-2xx status or non-JSON body
        """
        url = f"{self.base_url}/{endpoint.lstrip('/')}"
        await self._wait_for_rate_limit()

        try:
            response = await self.client.get(url)
        except httpx.TimeoutException as e:
            logger.warning("Timeout from FPL API", extra={"endpoint": endpoint})
            raise FPLAPIError(f"Request to {endpoint} timed out", endpoint=endpoint) from e
        except httpx.HTTPError as e:
            logger.warning("Network error from FPL API", extra={"endpoint": endpoint, "error": str(e)})
            raise FPLAPIError(f"Request to {endpoint} failed: {e}", endpoint=endpoint) from e

        status_code = response.status_code
        if status_code == 429:
            logger.warning("Rate limited by FPL API", extra={
                "endpoint": endpoint,
                "retry_after": response.headers.get("Retry-After"),
            })
            raise FPLAPIRateLimitError("Rate limited by FPL API", endpoint=endpoint, status_code=status_code)

        if not response.is_success:
            error_text = response.text[:500]
            logger.error("Error status from FPL API", extra={
                "endpoint": endpoint,
                "status_code": status_code,
                "error": error_text,
            })
            raise FPLAPIError(
                f"FPL API returned {status_code} for {endpoint}: {error_text}",
                endpoint=endpoint,
                status_code=status_code,
            )

        if not response.content:
            raise FPLAPIError(f"Empty response from {endpoint}", endpoint=endpoint, status_code=status_code)

        # HTML instead of JSON usually means the request was blocked or redirected
        content_type = response.headers.get("content-type", "").lower()
        if "text/html" in content_type:
            logger.error("API returned HTML (blocking?)", extra={
                "url": str(response.url),
                "status_code": status_code,
            })
            raise FPLAPIError(
                "FPL API returned HTML instead of JSON - request may be blocked",
                endpoint=endpoint,
                status_code=status_code,
            )

        try:
            return response.json()
        except ValueError as e:
            logger.error("JSON parse failed", extra={
                "endpoint": endpoint,
                "response_preview": response.text[:500],
            })
            raise FPLAPIError(f"Failed to parse JSON from {endpoint}: {e}", endpoint=endpoint) from e

    def _validate(self, model: Type[ModelT], payload: Any, endpoint: str) -> ModelT:
        try:
            return model.model_validate(payload)
        except ValidationError as e:
            logger.error("Schema validation failed", extra={"endpoint": endpoint, "errors": e.error_count()})
            raise FPLAPISchemaError(f"Unexpected payload from {endpoint}: {e}", endpoint=endpoint) from e

    async def get_bootstrap_static(self) -> BootstrapStaticResponse:
        """
        Get bootstrap-static data (players, teams, gameweeks).

        Returns:
            Validated bootstrap payload
        """
        endpoint = "/bootstrap-static/"
        data = self._validate(BootstrapStaticResponse, await self._get_json(endpoint), endpoint)

        logger.info("Bootstrap-static fetched", extra={
            "players_count": len(data.elements),
            "teams_count": len(data.teams),
            "gameweeks_count": len(data.events),
        })

        return data

    async def get_fixtures(self) -> List[FixtureResponse]:
        """
        Get all fixtures for the season.

        Returns:
            List of validated fixtures
        """
        endpoint = "/fixtures/"
        payload = await self._get_json(endpoint)
        try:
            fixtures = _FIXTURES_ADAPTER.validate_python(payload)
        except ValidationError as e:
            logger.error("Schema validation failed", extra={"endpoint": endpoint, "errors": e.error_count()})
            raise FPLAPISchemaError(f"Unexpected payload from {endpoint}: {e}", endpoint=endpoint) from e

        logger.debug("Fetched fixtures", extra={
            "fixtures_count": len(fixtures)
        })

        return fixtures

    async def get_event_live(self, gameweek: int) -> EventLiveResponse:
        """
        Get live event data for a gameweek.

        Args:
            gameweek: Gameweek number

        Returns:
            Validated live payload
        """
        endpoint = f"/event/{gameweek}/live/"
        data = self._validate(EventLiveResponse, await self._get_json(endpoint), endpoint)

        logger.debug("Fetched live event data", extra={
            "gameweek": gameweek,
            "players_count": len(data.elements)
        })

        return data

    async def get_element_summary(self, player_id: int) -> ElementSummaryResponse:
        """
        Get element (player) summary data.

        Args:
            player_id: FPL player ID

        Returns:
            Validated player summary payload
        """
        endpoint = f"/element-summary/{player_id}/"
        return self._validate(ElementSummaryResponse, await self._get_json(endpoint), endpoint)

    async def close(self):
        """Close the HTTP client."""
        await self.client.aclose()

    async def __aenter__(self):
        """Async context manager entry."""
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        """Async context manager exit."""
        await self.close()

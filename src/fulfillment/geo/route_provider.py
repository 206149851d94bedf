"""Route fetching for display and ETA.

``OSRMRouteProvider`` talks to an OSRM server. ``RouteService`` fetches a
route once per origin/destination pair, simplifies it, pins its endpoints
to the exact markers and falls back to a straight line whenever the
provider cannot answer.
"""

import logging
from collections.abc import Callable
from typing import Any, Protocol

import httpx
import polyline
import requests
from pydantic import BaseModel

from fulfillment.core.exceptions import (
    FulfillmentError,
    NetworkUnavailableError,
    NoRouteFoundError,
    ServiceUnavailableError,
)
from fulfillment.geo.distance import Coordinates, distance_between_m, is_valid_coordinate
from fulfillment.geo.simplify import pin_endpoints, simplify
from fulfillment.settings import OSRMSettings, RouteSettings

logger = logging.getLogger(__name__)


class RouteResult(BaseModel):
    distance_meters: float
    duration_seconds: float
    geometry: list[tuple[float, float]]


class DisplayRoute(BaseModel):
    points: list[tuple[float, float]]
    distance_meters: float
    duration_seconds: float | None = None
    fallback: bool = False


class OSRMServiceError(ServiceUnavailableError):
    """OSRM service error (5xx). Retryable."""

    pass


class OSRMTimeoutError(NetworkUnavailableError):
    """OSRM request timeout. Retryable."""

    pass


class RouteProvider(Protocol):
    async def get_route(self, origin: Coordinates, destination: Coordinates) -> RouteResult | None:
        ...

    def get_route_sync(self, origin: Coordinates, destination: Coordinates) -> RouteResult | None:
        ...


def decode_polyline(encoded: str, precision: int = 5) -> list[tuple[float, float]]:
    """Decode polyline string to list of (lat, lon) tuples."""
    coords = polyline.decode(encoded, precision)
    return [(lat, lon) for lat, lon in coords]


def _parse_route(data: Any) -> RouteResult:
    if not isinstance(data, dict) or data.get("code") == "NoRoute" or not data.get("routes"):
        raise NoRouteFoundError("No route found between coordinates")

    try:
        route = data["routes"][0]
        return RouteResult(
            distance_meters=float(route["distance"]),
            duration_seconds=float(route["duration"]),
            geometry=decode_polyline(route["geometry"]),
        )
    except (KeyError, IndexError, TypeError, ValueError) as e:
        raise NoRouteFoundError(f"Malformed OSRM route: {e!r}") from e


def _route_from_response(status_code: int, load_json: Callable[[], Any]) -> RouteResult:
    """Map an OSRM reply onto a route or a routing error."""
    if status_code >= 500:
        raise OSRMServiceError(f"OSRM server error: {status_code}")
    try:
        data = load_json()
    except ValueError as e:
        raise NoRouteFoundError(f"Unreadable OSRM response (HTTP {status_code})") from e
    if status_code >= 400:
        code = data.get("code") if isinstance(data, dict) else None
        raise NoRouteFoundError(f"OSRM rejected the request: {code or status_code}")
    return _parse_route(data)


class OSRMRouteProvider:
    def __init__(self, base_url: str, timeout: float = 5.0):
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout

    @classmethod
    def from_settings(cls, settings: OSRMSettings) -> "OSRMRouteProvider":
        return cls(settings.base_url, timeout=settings.timeout_s)

    def _route_url(self, origin: Coordinates, destination: Coordinates) -> str:
        origin_lat, origin_lon = origin
        dest_lat, dest_lon = destination
        return (
            f"{self.base_url}/route/v1/driving/"
            f"{origin_lon},{origin_lat};{dest_lon},{dest_lat}"
        )

    async def get_route(self, origin: Coordinates, destination: Coordinates) -> RouteResult:
        """Get route between two coordinates using OSRM."""
        url = self._route_url(origin, destination)
        params = {"overview": "full", "geometries": "polyline"}

        try:
            async with httpx.AsyncClient(timeout=self.timeout) as client:
                response = await client.get(url, params=params)
                return _route_from_response(response.status_code, response.json)

        except httpx.TimeoutException as e:
            raise OSRMTimeoutError(f"Request timed out after {self.timeout}s") from e
        except httpx.NetworkError as e:
            raise OSRMServiceError(f"Network error: {e}") from e

    def get_route_sync(self, origin: Coordinates, destination: Coordinates) -> RouteResult:
        """Blocking route fetch for callers driven by the SimPy clock."""
        url = self._route_url(origin, destination)
        params = {"overview": "full", "geometries": "polyline"}

        try:
            response = requests.get(url, params=params, timeout=self.timeout)
            return _route_from_response(response.status_code, response.json)

        except requests.Timeout as e:
            raise OSRMTimeoutError(f"Request timed out after {self.timeout}s") from e
        except requests.RequestException as e:
            raise OSRMServiceError(f"Network error: {e}") from e


def straight_line(origin: Coordinates, destination: Coordinates) -> DisplayRoute:
    origin = tuple(origin)
    destination = tuple(destination)
    return DisplayRoute(
        points=[origin, destination],
        distance_meters=distance_between_m(origin, destination),
        fallback=True,
    )


class RouteService:
    """Display routes, cached per origin/destination pair."""

    def __init__(self, provider: RouteProvider, settings: RouteSettings | None = None) -> None:
        self.provider = provider
        self.settings = settings or RouteSettings()
        self._cache: dict[str, DisplayRoute] = {}

    def _generate_cache_key(self, origin: Coordinates, destination: Coordinates) -> str:
        origin_lat, origin_lon = origin
        dest_lat, dest_lon = destination
        return f"{origin_lat:.6f},{origin_lon:.6f}-{dest_lat:.6f},{dest_lon:.6f}"

    def clear_cache(self) -> None:
        self._cache.clear()

    async def display_route(
        self, origin: Coordinates | None, destination: Coordinates | None
    ) -> DisplayRoute | None:
        """Route to draw between two markers, or None when either marker is absent."""
        if not (is_valid_coordinate(origin) and is_valid_coordinate(destination)):
            return None

        key = self._generate_cache_key(origin, destination)
        if key in self._cache:
            return self._cache[key]

        try:
            result = await self.provider.get_route(origin, destination)
        except FulfillmentError as e:
            logger.warning(f"Route unavailable, drawing straight line: {e}")
            return straight_line(origin, destination)

        return self._finish(key, result, origin, destination)

    def display_route_sync(
        self, origin: Coordinates | None, destination: Coordinates | None
    ) -> DisplayRoute | None:
        if not (is_valid_coordinate(origin) and is_valid_coordinate(destination)):
            return None

        key = self._generate_cache_key(origin, destination)
        if key in self._cache:
            return self._cache[key]

        try:
            result = self.provider.get_route_sync(origin, destination)
        except FulfillmentError as e:
            logger.warning(f"Route unavailable, drawing straight line: {e}")
            return straight_line(origin, destination)

        return self._finish(key, result, origin, destination)

    def _finish(
        self,
        key: str,
        result: RouteResult | None,
        origin: Coordinates,
        destination: Coordinates,
    ) -> DisplayRoute:
        if result is None or not result.geometry:
            logger.warning("Route provider returned no geometry, drawing straight line")
            return straight_line(origin, destination)

        points = simplify(result.geometry, self.settings.simplify_tolerance_deg)
        route = DisplayRoute(
            points=pin_endpoints(points, origin, destination),
            distance_meters=result.distance_meters,
            duration_seconds=result.duration_seconds,
        )
        self._cache[key] = route
        return route

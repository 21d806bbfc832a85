"""OpenWeather current + forecast API provider implementation."""
import asyncio
import logging
import math
import time
from datetime import datetime
from typing import Any, Dict, List, Optional

import requests

from ground_data import (
    Conditions,
    GroundData,
    Location,
    Metrics,
    Pressure,
    PressureTrend,
    Temperature,
    to_utc,
    validate_location,
)
from ground_provider import FetchFailureError, GroundDataProviderBase, InvalidLocationError


def _round1(value: Optional[float]) -> Optional[float]:
    return None if value is None else round(float(value), 1)


class OpenWeatherGroundProvider(GroundDataProviderBase):
    """
    Ground data provider using the free OpenWeather APIs.

    Current conditions come from https://openweathermap.org/current and the
    timeline from the 5 day / 3 hour forecast (https://openweathermap.org/forecast5).
    Neither requires a One Call subscription. HTTP calls run in a worker
    thread so they don't block the event loop.
    """

    CURRENT_URL = "https://api.openweathermap.org/data/2.5/weather"
    FORECAST_URL = "https://api.openweathermap.org/data/2.5/forecast"
    FORECAST_STEP_HOURS = 3
    # Fetch window around now: one day back, five days of forecast ahead
    PAST_HORIZON_HOURS = 24
    FUTURE_HORIZON_HOURS = 120

    def __init__(
        self,
        api_key: str,
        units: str = "metric",
        lang: str = "en",
        timeout: int = 10,
        max_requests_per_minute: int = 60,  # free tier limit
    ):
        """
        Initialize OpenWeather provider.

        Args:
            api_key: OpenWeather API key
            units: Temperature units ("metric", "imperial", or "standard")
            lang: Language code for descriptions (e.g., "en", "de")
            timeout: HTTP request timeout in seconds
            max_requests_per_minute: Requests allowed per rolling minute
        """
        self.api_key = api_key
        self.units = units
        self.lang = lang
        self.timeout = timeout
        self.max_requests_per_minute = max_requests_per_minute
        self._request_count = 0
        self._window_start = time.monotonic()

    async def fetch_ground_data(self, timestamp: datetime, location: Location) -> GroundData:
        """
        Fetch current conditions. The API has no history, so the latest
        observation is returned whatever the timestamp.
        """
        self._check_location(location)
        data = await asyncio.to_thread(self._get_json, self.CURRENT_URL, location)
        return self._parse_current(data, location)

    async def fetch_timeline_batch(self, location: Location, hours_span: int) -> List[GroundData]:
        """Fetch current conditions plus the 3-hourly forecast, sorted by time."""
        self._check_location(location)
        current_raw, forecast_raw = await asyncio.gather(
            asyncio.to_thread(self._get_json, self.CURRENT_URL, location),
            asyncio.to_thread(self._get_json, self.FORECAST_URL, location),
        )
        samples = [self._parse_current(current_raw, location)] + self._parse_forecast(forecast_raw, location)
        samples.sort(key=lambda sample: sample.timestamp)

        limit = math.ceil(max(hours_span, 1) / self.FORECAST_STEP_HOURS) + 1
        logging.debug(f"Timeline batch: {len(samples)} samples, keeping {limit}")
        return samples[:limit]

    def _check_location(self, location: Location) -> None:
        if not validate_location(location.lat, location.lon):
            raise InvalidLocationError(f"Invalid coordinates provided: lat={location.lat}, lon={location.lon}")

    def _check_rate_limit(self) -> None:
        now = time.monotonic()
        if now - self._window_start >= 60:
            self._request_count = 0
            self._window_start = now
        if self._request_count >= self.max_requests_per_minute:
            raise FetchFailureError("Rate limit exceeded. Please try again later.")
        self._request_count += 1

    def _get_json(self, url: str, location: Location) -> Dict[str, Any]:
        self._check_rate_limit()
        params = {
            "lat": location.lat,
            "lon": location.lon,
            "appid": self.api_key,
            "units": self.units,
            "lang": self.lang,
        }

        try:
            logging.info(f"Making OpenWeather API request: {url}")
            logging.debug(f"Request parameters: lat={location.lat}, lon={location.lon}, units={self.units}, lang={self.lang}")

            response = requests.get(url, params=params, timeout=self.timeout)

            logging.info(f"API response status: {response.status_code}")
            if not response.ok:
                logging.error(f"API request failed with status {response.status_code}")
                self._handle_error_response(response)

            data = response.json()
            logging.debug(f"API response (truncated): {str(data)[:500]}...")
            return data
        except requests.exceptions.RequestException as e:
            logging.error(f"Network error during API request: {e}")
            raise FetchFailureError(f"Network error: {str(e)}") from e
        except ValueError as e:
            logging.error(f"Failed to decode API response: {e}")
            raise FetchFailureError(f"Failed to parse response: {str(e)}") from e

    def _parse_item(self, item: Dict[str, Any], location: Location) -> GroundData:
        weather_array = item.get("weather", [])
        if not weather_array:
            raise FetchFailureError("Response missing 'weather' array")
        weather = weather_array[0]

        main_data = item.get("main", {})
        if not main_data:
            raise FetchFailureError("Response missing 'main' block")

        pressure = main_data.get("pressure")
        try:
            return GroundData(
                timestamp=to_utc(item["dt"]),
                location=location,
                metrics=Metrics(
                    temperature=Temperature(
                        current=_round1(main_data.get("temp")),
                        feels_like=_round1(main_data.get("feels_like")),
                        min_24h=_round1(main_data.get("temp_min")),
                        max_24h=_round1(main_data.get("temp_max")),
                    ),
                    humidity=main_data.get("humidity"),
                    pressure=Pressure(
                        current=pressure,
                        sea_level=main_data.get("sea_level") or pressure,
                        # OpenWeather doesn't report a trend
                        trend=PressureTrend.STEADY,
                    ),
                ),
                conditions=Conditions(
                    description=weather.get("description", ""),
                    icon=weather.get("icon", ""),
                ),
            )
        except (KeyError, ValueError, TypeError) as e:
            logging.error(f"Failed to parse API response: {e}", exc_info=True)
            raise FetchFailureError(f"Failed to parse response: {str(e)}") from e

    def _parse_current(self, data: Dict[str, Any], requested: Location) -> GroundData:
        coord = data.get("coord") or {}
        location = Location(
            lat=coord.get("lat", requested.lat),
            lon=coord.get("lon", requested.lon),
            city=data.get("name"),
            country=(data.get("sys") or {}).get("country"),
        )
        sample = self._parse_item(data, location)
        logging.info(f"Parsed current conditions: {sample.metrics.temperature.current}°, {sample.conditions.description}")
        return sample

    def _parse_forecast(self, data: Dict[str, Any], requested: Location) -> List[GroundData]:
        city = data.get("city") or {}
        coord = city.get("coord") or {}
        location = Location(
            lat=coord.get("lat", requested.lat),
            lon=coord.get("lon", requested.lon),
            city=city.get("name"),
            country=city.get("country"),
        )
        items = data.get("list")
        if items is None:
            raise FetchFailureError("Forecast response missing 'list'")
        return [self._parse_item(item, location) for item in items]

    def _handle_error_response(self, response: requests.Response) -> None:
        """Parse and raise error from OpenWeather error response."""
        try:
            error_data = response.json()
        except ValueError:
            logging.error(f"Non-JSON error response: HTTP {response.status_code}, body: {response.text[:500]}")
            raise FetchFailureError(f"HTTP {response.status_code}: {response.text[:200]}")

        cod = error_data.get("cod", response.status_code)
        message = error_data.get("message", "Unknown error")
        parameters = error_data.get("parameters", [])
        logging.error(f"OpenWeather API error response: {error_data}")

        error_msg = f"OpenWeather API error {cod}: {message}"
        if parameters:
            error_msg += f" (parameters: {', '.join(parameters)})"
        raise FetchFailureError(error_msg)

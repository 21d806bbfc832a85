"""Tests for OpenWeather provider."""
import pytest
import requests
from datetime import datetime, timezone
from unittest.mock import Mock, patch
from ground_data import GroundData, Location, PressureTrend
from ground_provider import FetchFailureError, InvalidLocationError
from openweather_provider import OpenWeatherGroundProvider

LOCATION = Location(lat=33.44, lon=-94.04)
NOW_DT = 1684929490


@pytest.fixture
def sample_current_response():
    """Sample OpenWeather current weather response."""
    return {
        "coord": {"lon": -94.04, "lat": 33.44},
        "weather": [
            {
                "id": 803,
                "main": "Clouds",
                "description": "broken clouds",
                "icon": "04d"
            }
        ],
        "base": "stations",
        "main": {
            "temp": 20.5,
            "feels_like": 19.8,
            "temp_min": 18.25,
            "temp_max": 23.0,
            "pressure": 1014,
            "humidity": 89
        },
        "visibility": 10000,
        "wind": {"speed": 3.13, "deg": 93},
        "dt": NOW_DT,
        "sys": {"country": "US"},
        "timezone": -18000,
        "name": "Testville",
        "id": 123
    }


@pytest.fixture
def sample_forecast_response():
    """Sample 5 day / 3 hour forecast response."""
    def item(step, temp):
        return {
            "dt": NOW_DT + 600 + step * 10800,
            "main": {"temp": temp, "feels_like": temp - 1, "pressure": 1012, "sea_level": 1015, "humidity": 70},
            "weather": [{"main": "Rain", "description": "light rain", "icon": "10d"}],
        }

    return {
        "cod": "200",
        "list": [item(3, 15.0), item(0, 21.0), item(1, 18.0), item(2, 16.0)],
        "city": {"name": "Testville", "country": "US", "coord": {"lat": 33.44, "lon": -94.04}},
    }


@pytest.fixture
def provider():
    """Create OpenWeather provider instance."""
    return OpenWeatherGroundProvider(api_key="test_key", units="metric")


def ok_response(data):
    mock_response = Mock()
    mock_response.ok = True
    mock_response.status_code = 200
    mock_response.json.return_value = data
    return mock_response


@pytest.mark.anyio
async def test_fetch_ground_data_success(provider, sample_current_response):
    """Test successful API call and parsing."""
    with patch('openweather_provider.requests.get') as mock_get:
        mock_get.return_value = ok_response(sample_current_response)

        sample = await provider.fetch_ground_data(datetime.now(timezone.utc), LOCATION)

        assert isinstance(sample, GroundData)
        assert sample.is_valid()
        assert sample.timestamp == datetime.fromtimestamp(NOW_DT, tz=timezone.utc)
        assert sample.location.city == "Testville"
        assert sample.location.country == "US"
        assert sample.metrics.temperature.current == 20.5
        assert sample.metrics.temperature.feels_like == 19.8
        assert sample.metrics.temperature.max_24h == 23.0
        assert sample.metrics.humidity == 89
        assert sample.metrics.pressure.current == 1014
        assert sample.metrics.pressure.sea_level == 1014
        assert sample.metrics.pressure.trend is PressureTrend.STEADY
        assert sample.conditions.description == "broken clouds"
        assert sample.conditions.icon == "04d"

        params = mock_get.call_args.kwargs["params"]
        assert params["lat"] == 33.44
        assert params["appid"] == "test_key"
        assert mock_get.call_args.kwargs["timeout"] == 10


@pytest.mark.anyio
async def test_fetch_ground_data_uses_requested_coordinates(provider, sample_current_response):
    del sample_current_response["coord"]
    with patch('openweather_provider.requests.get') as mock_get:
        mock_get.return_value = ok_response(sample_current_response)

        sample = await provider.fetch_ground_data(datetime.now(timezone.utc), LOCATION)

        assert sample.location.lat == 33.44
        assert sample.location.lon == -94.04


@pytest.mark.anyio
async def test_fetch_timeline_batch(provider, sample_current_response, sample_forecast_response):
    """Test current + forecast samples are merged, sorted and trimmed."""
    def fake_get(url, params=None, timeout=None):
        if url == OpenWeatherGroundProvider.FORECAST_URL:
            return ok_response(sample_forecast_response)
        return ok_response(sample_current_response)

    with patch('openweather_provider.requests.get', side_effect=fake_get) as mock_get:
        samples = await provider.fetch_timeline_batch(LOCATION, hours_span=6)

        assert mock_get.call_count == 2
        assert len(samples) == 3
        timestamps = [sample.timestamp for sample in samples]
        assert timestamps == sorted(timestamps)
        assert [sample.metrics.temperature.current for sample in samples] == [20.5, 21.0, 18.0]
        assert samples[1].metrics.pressure.sea_level == 1015


@pytest.mark.anyio
async def test_forecast_missing_list(provider, sample_current_response):
    def fake_get(url, params=None, timeout=None):
        if url == OpenWeatherGroundProvider.FORECAST_URL:
            return ok_response({"cod": "200"})
        return ok_response(sample_current_response)

    with patch('openweather_provider.requests.get', side_effect=fake_get):
        with pytest.raises(FetchFailureError) as exc_info:
            await provider.fetch_timeline_batch(LOCATION, hours_span=24)

        assert "missing 'list'" in str(exc_info.value)


@pytest.mark.anyio
async def test_http_error(provider):
    """Test handling of HTTP errors."""
    with patch('openweather_provider.requests.get') as mock_get:
        mock_response = Mock()
        mock_response.ok = False
        mock_response.status_code = 401
        mock_response.json.return_value = {
            "cod": 401,
            "message": "Invalid API key"
        }
        mock_get.return_value = mock_response

        with pytest.raises(FetchFailureError) as exc_info:
            await provider.fetch_ground_data(datetime.now(timezone.utc), LOCATION)

        assert "401" in str(exc_info.value)
        assert "Invalid API key" in str(exc_info.value)


@pytest.mark.anyio
async def test_http_error_non_json(provider):
    with patch('openweather_provider.requests.get') as mock_get:
        mock_response = Mock()
        mock_response.ok = False
        mock_response.status_code = 502
        mock_response.text = "Bad Gateway"
        mock_response.json.side_effect = ValueError("No JSON")
        mock_get.return_value = mock_response

        with pytest.raises(FetchFailureError) as exc_info:
            await provider.fetch_ground_data(datetime.now(timezone.utc), LOCATION)

        assert "HTTP 502" in str(exc_info.value)


@pytest.mark.anyio
async def test_network_error(provider):
    """Test handling of network errors."""
    with patch('openweather_provider.requests.get') as mock_get:
        mock_get.side_effect = requests.exceptions.ConnectionError("Connection timeout")

        with pytest.raises(FetchFailureError) as exc_info:
            await provider.fetch_ground_data(datetime.now(timezone.utc), LOCATION)

        assert "Network error" in str(exc_info.value)


@pytest.mark.anyio
async def test_missing_main_block(provider):
    """Test handling of missing main block."""
    response = {
        "coord": {"lon": -94.04, "lat": 33.44},
        "weather": [{"main": "Clear", "description": "clear sky"}],
        "dt": NOW_DT,
    }

    with patch('openweather_provider.requests.get') as mock_get:
        mock_get.return_value = ok_response(response)

        with pytest.raises(FetchFailureError) as exc_info:
            await provider.fetch_ground_data(datetime.now(timezone.utc), LOCATION)

        assert "missing 'main' block" in str(exc_info.value)


@pytest.mark.anyio
async def test_missing_weather_array(provider):
    """Test handling of missing 'weather' array."""
    response = {
        "coord": {"lon": -94.04, "lat": 33.44},
        "main": {"temp": 20.0},
        "dt": NOW_DT,
        "weather": []
    }

    with patch('openweather_provider.requests.get') as mock_get:
        mock_get.return_value = ok_response(response)

        with pytest.raises(FetchFailureError) as exc_info:
            await provider.fetch_ground_data(datetime.now(timezone.utc), LOCATION)

        assert "missing 'weather' array" in str(exc_info.value)


@pytest.mark.anyio
async def test_invalid_location_skips_request(provider):
    with patch('openweather_provider.requests.get') as mock_get:
        with pytest.raises(InvalidLocationError):
            await provider.fetch_ground_data(datetime.now(timezone.utc), Location(lat=0.0, lon=200.0))

        mock_get.assert_not_called()


@pytest.mark.anyio
async def test_rate_limit(sample_current_response):
    provider = OpenWeatherGroundProvider(api_key="test_key", max_requests_per_minute=1)
    with patch('openweather_provider.requests.get') as mock_get:
        mock_get.return_value = ok_response(sample_current_response)

        await provider.fetch_ground_data(datetime.now(timezone.utc), LOCATION)
        with pytest.raises(FetchFailureError) as exc_info:
            await provider.fetch_ground_data(datetime.now(timezone.utc), LOCATION)

        assert "Rate limit" in str(exc_info.value)
        assert mock_get.call_count == 1

"""Scripted weather timeline session: fetch, scroll hour by hour, preload neighbours."""
import argparse
import asyncio
import logging
import os
import sys

from dotenv import load_dotenv

from data_manager import DataManager
from ground_data import DEFAULT_LOCATION, Location, validate_location
from ground_display import GroundDisplay
from openweather_provider import OpenWeatherGroundProvider
from scheduler import LoopScheduler
from timeline import Timeline
from timeline_controller import TimelineController

BASE_DIR = os.path.dirname(os.path.abspath(__file__))
DEFAULT_LOG_FILE = os.path.join(BASE_DIR, "weather-timeline.log")


def parse_args(argv=None) -> argparse.Namespace:
    parser = argparse.ArgumentParser("Weather timeline")
    parser.add_argument("--log-file", default=DEFAULT_LOG_FILE)
    parser.add_argument("--units", choices=["metric", "imperial", "standard"], default="metric")
    parser.add_argument("--cache-ttl", type=int, default=300)
    parser.add_argument("--max-retries", type=int, default=3)
    parser.add_argument("--retry-delay", type=float, default=1.0)
    parser.add_argument("--timeout", type=int, default=10, help="HTTP timeout in seconds")
    parser.add_argument("--viewport-width", type=int, default=1024)
    parser.add_argument("--preload-radius", type=int, default=6)
    parser.add_argument("--steps", type=int, default=6, help="Hours to scroll forward")
    parser.add_argument("--verbose", action="store_true")
    return parser.parse_args(argv)


def setup_logging(log_file: str, verbose: bool) -> None:
    log_level = logging.DEBUG if verbose else logging.INFO
    logging.basicConfig(
        level=log_level,
        format="%(asctime)s - %(levelname)s - %(message)s",
        handlers=[
            logging.StreamHandler(sys.stdout),
            logging.FileHandler(log_file)
        ]
    )


def load_config():
    """
    Read API key and location from the environment (.env supported).

    Returns:
        Tuple of (api_key, location, lang)
    """
    load_dotenv()
    api_key = os.getenv("WEATHER_API_KEY")
    lat = os.getenv("WEATHER_LAT")
    lon = os.getenv("WEATHER_LON")
    lang = os.getenv("WEATHER_LANG", "en")

    if not api_key:
        raise SystemExit("Missing WEATHER_API_KEY in environment")

    if lat is None and lon is None:
        location = DEFAULT_LOCATION
    elif not lat or not lon:
        raise SystemExit("Set both WEATHER_LAT and WEATHER_LON, or neither")
    else:
        try:
            location = Location(lat=float(lat), lon=float(lon))
        except ValueError as exc:
            raise SystemExit(f"Invalid coordinates: {exc}") from exc
        if not validate_location(location.lat, location.lon):
            raise SystemExit(f"Coordinates out of range: lat={location.lat} lon={location.lon}")

    logging.info("Configuration loaded: lat=%s lon=%s lang=%s", location.lat, location.lon, lang)
    return api_key, location, lang


def build_data_manager(api_key: str, location: Location, lang: str, args: argparse.Namespace) -> DataManager:
    provider = OpenWeatherGroundProvider(
        api_key=api_key,
        units=args.units,
        lang=lang,
        timeout=args.timeout,
    )
    manager = DataManager(
        provider=provider,
        location=location,
        cache_ttl_seconds=args.cache_ttl,
        max_retries=args.max_retries,
        retry_delay_seconds=args.retry_delay,
        past_horizon_hours=provider.PAST_HORIZON_HOURS,
        future_horizon_hours=provider.FUTURE_HORIZON_HOURS,
    )
    logging.info("Data manager ready (cache ttl=%ss)", args.cache_ttl)
    return manager


async def run_session(manager: DataManager, location: Location, args: argparse.Namespace) -> None:
    timeline = Timeline(LoopScheduler(), viewport_width=args.viewport_width)
    display = GroundDisplay()
    controller = TimelineController(
        timeline,
        manager,
        display,
        location=location,
        preload_radius=args.preload_radius,
    )
    settle = timeline.snap_duration + 0.1

    try:
        timeline.center_on_now()
        await asyncio.sleep(0)
        await controller.wait_idle()

        for step in range(args.steps):
            logging.info("Step %s: moving one hour forward", step + 1)
            timeline.key_down("PageDown")
            await asyncio.sleep(settle)
            await controller.wait_idle()

        logging.info("Session stats: %s", manager.stats())
    finally:
        await controller.close()
        timeline.destroy()
        await manager.close()


def main(argv=None) -> None:
    args = parse_args(argv)
    setup_logging(args.log_file, args.verbose)
    api_key, location, lang = load_config()
    manager = build_data_manager(api_key, location, lang, args)

    try:
        asyncio.run(run_session(manager, location, args))
    except KeyboardInterrupt:
        logging.info("Stopping timeline session")


if __name__ == "__main__":
    main()

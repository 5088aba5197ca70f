"""Configuration loading: defaults → YAML overlay → argparse overlay."""

from __future__ import annotations

import argparse
import os
from dataclasses import dataclass, field
from pathlib import Path

import yaml


@dataclass
class StationsConfig:
    """The fixed station pair the board shows trains between.

    Attributes:
        origin: CRS code of the home station (e.g. "TWI" for Twickenham).
            Outbound trains run origin → destination.
        destination: CRS code of the other end (e.g. "WAT" for Waterloo).
        origin_name: Display name for the origin. Empty means use the code.
        destination_name: Display name for the destination.
        destination_names: Extra names that count as "going to the
            destination" when departures are filtered locally, e.g. a
            through train to "London Waterloo" when the board only
            reports its final destination.
        origin_names: Same as destination_names, for the inbound direction.
        destination_group: Other stations at the destination end that inbound
            trains are also taken from, e.g. the other London termini. Their
            boards are queried alongside the destination and merged.
    """

    # Default pair: Twickenham <-> London Waterloo
    origin: str = "TWI"
    destination: str = "WAT"
    origin_name: str = "Twickenham"
    destination_name: str = "London Waterloo"
    destination_names: list[str] = field(default_factory=lambda: ["London Waterloo"])
    origin_names: list[str] = field(default_factory=lambda: ["Twickenham"])
    destination_group: list[str] = field(default_factory=lambda: ["VIC", "CLJ"])

    @property
    def inbound_origins(self) -> list[str]:
        """Stations inbound trains are fetched from, the destination first."""
        return list(dict.fromkeys([self.destination, *self.destination_group]))


@dataclass
class RefreshConfig:
    """Refresh and countdown timing.

    Attributes:
        interval_seconds: Seconds between automatic refresh cycles while
            the board is visible.
        tick_seconds: Seconds between countdown redraws.
        departure_rows: Rows requested per board from Huxley.
    """

    # Seconds between automatic refresh cycles
    interval_seconds: int = 30
    # Countdown redraw period
    tick_seconds: int = 1
    # Rows requested per departures/arrivals board
    departure_rows: int = 20


@dataclass
class MatchingConfig:
    """How departures are gathered and matched to arrivals.

    Attributes:
        strategy: "upstream" (Huxley filters by destination),
            "downstream" (filter locally) or "hybrid" (union of both).
        arrival_source: "batch" uses one arrivals-board query, "detail"
            looks up every candidate's calling points concurrently.
        window: Raw departures considered per cycle.
        disambiguation_window: Larger window used for the hybrid strategy,
            whose merged board holds more false positives.
        max_results: Trains shown.
        detail_workers: Concurrent service lookups for arrival_source=detail.
    """

    strategy: str = "downstream"
    arrival_source: str = "batch"
    window: int = 10
    disambiguation_window: int = 20
    # Trains shown on the board
    max_results: int = 3
    detail_workers: int = 4

    @property
    def effective_window(self) -> int:
        if self.strategy == "hybrid":
            return self.disambiguation_window
        return self.window


@dataclass
class DirectionConfig:
    """Direction selection.

    Attributes:
        default: "outbound" or "inbound" to pin the starting direction.
            None means use the saved choice, then the time-of-day heuristic.
        cutoff_hour: London hour from which the heuristic picks inbound.
        state_file: YAML file the last chosen direction is saved to.
            Empty disables persistence.
    """

    default: str | None = None
    # Commute heuristic: outbound before 14:00, inbound after
    cutoff_hour: int = 14
    state_file: str = "~/.config/nexttrain/direction.yaml"


@dataclass
class ApiConfig:
    """Huxley endpoint settings."""

    base_url: str = "https://huxley2.azurewebsites.net"
    # Per-request timeout in seconds
    timeout: float = 10.0


@dataclass
class Config:
    """Top-level application configuration.

    Assembled from three layers with increasing priority:
      1. Hardcoded defaults (dataclass field values)
      2. YAML file overlay (config.yaml or --config path)
      3. CLI argument overlay (--origin, --refresh, etc.)

    Attributes:
        stations: Origin/destination pair.
        refresh: Refresh and countdown timing.
        matching: Departure strategy and arrival matching settings.
        direction: Direction selection settings.
        api: Huxley endpoint settings.
        search: CLI-only: station name to look up (--search).
        fetch_test: CLI-only: if True, print one board to stdout and exit.
        debug: CLI-only: if True, enable debug-level logging.
    """

    stations: StationsConfig = field(default_factory=StationsConfig)
    refresh: RefreshConfig = field(default_factory=RefreshConfig)
    matching: MatchingConfig = field(default_factory=MatchingConfig)
    direction: DirectionConfig = field(default_factory=DirectionConfig)
    api: ApiConfig = field(default_factory=ApiConfig)
    # CLI-only flags (not persisted in YAML)
    search: str | None = None
    fetch_test: bool = False
    debug: bool = False


def _overlay(target: object, data: dict | None, keys: tuple[str, ...]) -> None:
    if not data:
        return
    for key in keys:
        if key in data:
            setattr(target, key, data[key])


def _apply_yaml(config: Config, yaml_path: str) -> None:
    """Overlay YAML config values onto the Config object."""
    if not os.path.exists(yaml_path):
        return

    with open(yaml_path, "r") as f:
        data = yaml.safe_load(f)

    if not data:
        return

    _overlay(config.stations, data.get("stations"), (
        "origin", "destination", "origin_name", "destination_name", "destination_names", "origin_names",
        "destination_group",
    ))
    _overlay(config.refresh, data.get("refresh"), ("interval_seconds", "tick_seconds", "departure_rows"))
    _overlay(config.matching, data.get("matching"), (
        "strategy", "arrival_source", "window", "disambiguation_window", "max_results", "detail_workers",
    ))
    _overlay(config.direction, data.get("direction"), ("default", "cutoff_hour", "state_file"))
    _overlay(config.api, data.get("api"), ("base_url", "timeout"))

    stations = data.get("stations") or {}
    # The default group belongs to the default destination
    if "destination" in stations and "destination_group" not in stations:
        config.stations.destination_group = []

    # CRS codes are case-insensitive upstream but compared verbatim here
    config.stations.origin = str(config.stations.origin).upper()
    config.stations.destination = str(config.stations.destination).upper()
    config.stations.destination_group = [str(crs).upper() for crs in config.stations.destination_group or []]


def _build_parser() -> argparse.ArgumentParser:
    """Build the CLI argument parser.

    All arguments are optional overlays on top of YAML config.
    """
    parser = argparse.ArgumentParser(
        prog="nexttrain",
        description="Next fastest trains between two National Rail stations",
    )
    parser.add_argument(
        "--config",
        type=str,
        help="Path to YAML config file",
    )
    parser.add_argument(
        "--origin",
        type=str,
        help="Origin station CRS code",
    )
    parser.add_argument(
        "--destination",
        type=str,
        help="Destination station CRS code",
    )
    parser.add_argument(
        "--direction",
        choices=["outbound", "inbound"],
        help="Start in this direction instead of the saved/time-of-day default",
    )
    parser.add_argument(
        "--refresh",
        type=int,
        help="Refresh interval in seconds",
    )
    parser.add_argument(
        "--strategy",
        choices=["upstream", "downstream", "hybrid"],
        help="How departures are filtered by destination",
    )
    parser.add_argument(
        "--arrival-source",
        choices=["batch", "detail"],
        help="Arrivals board (batch) or per-service calling points (detail)",
    )
    parser.add_argument(
        "--max-results",
        type=int,
        help="Number of trains to show",
    )
    parser.add_argument(
        "--search",
        type=str,
        help="Search for a station CRS code by name",
    )
    parser.add_argument(
        "--fetch-test",
        action="store_true",
        default=False,
        help="Fetch and print the board once",
    )
    parser.add_argument(
        "--debug",
        action="store_true",
        default=False,
        help="Enable debug logging",
    )
    return parser


def _apply_args(config: Config, args: argparse.Namespace) -> None:
    """Overlay CLI arguments onto the Config object."""
    if args.origin:
        config.stations.origin = args.origin.upper()
        config.stations.origin_name = ""
        config.stations.origin_names = []

    if args.destination:
        config.stations.destination = args.destination.upper()
        config.stations.destination_name = ""
        config.stations.destination_names = []
        config.stations.destination_group = []

    if args.direction:
        config.direction.default = args.direction

    if args.refresh is not None:
        config.refresh.interval_seconds = args.refresh

    if args.strategy:
        config.matching.strategy = args.strategy

    if args.arrival_source:
        config.matching.arrival_source = args.arrival_source

    if args.max_results is not None:
        config.matching.max_results = args.max_results

    if args.search:
        config.search = args.search

    config.fetch_test = args.fetch_test
    config.debug = args.debug


def load_config(
    yaml_path: str | None = None,
    cli_args: list[str] | None = None,
) -> Config:
    """Load config: defaults → YAML overlay → argparse overlay.

    Args:
        yaml_path: Path to YAML config file. Defaults to config.yaml in project root.
        cli_args: CLI arguments list. None means use sys.argv.
    """
    config = Config()

    parser = _build_parser()
    args = parser.parse_args(cli_args if cli_args is not None else None)

    # Default YAML path: config.yaml in project root (three levels up from
    # this file). CLI --config overrides.
    if yaml_path is None:
        if args.config:
            yaml_path = args.config
        else:
            yaml_path = os.path.join(
                Path(__file__).resolve().parent.parent.parent, "config.yaml"
            )

    _apply_yaml(config, yaml_path)
    _apply_args(config, args)

    return config

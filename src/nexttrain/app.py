"""Refresh-cycle orchestration and terminal board output."""

from __future__ import annotations

import logging
import signal
import sys
import threading
import time
from datetime import datetime
from typing import TextIO

import requests

from nexttrain.api import HuxleyClient, RefreshCancelled
from nexttrain.config import Config
from nexttrain.direction import Direction, DirectionStore, default_direction
from nexttrain.engine import merge_trains, resolve_trains
from nexttrain.models import ArrivalTag, BoardSession, ResolvedTrain
from nexttrain.timeutil import LONDON, london_now

logger = logging.getLogger(__name__)

# ANSI: clear screen and home the cursor
_CLEAR = "\033[2J\033[H"
# Countdown colours by urgency: red, yellow
_URGENCY_COLOURS = {"urgent": "\033[31m", "soon": "\033[33m"}
_RESET = "\033[0m"


def _station_label(code: str, name: str) -> str:
    return (name or code).upper()


def render_board(
    session: BoardSession,
    config: Config,
    now: datetime | None = None,
    color: bool = False,
) -> str:
    """Render the session's current trains as plain text.

    Countdowns are recomputed from each train's absolute departure, so
    redrawing on every tick never drifts. While a refresh is in flight
    the tick is stopped and countdowns read "...". With ``color`` the
    countdown of a train about to leave is highlighted.
    """
    now = now or london_now()
    stations = config.stations
    home = _station_label(stations.origin, stations.origin_name)
    away = _station_label(stations.destination, stations.destination_name)
    if session.direction is Direction.OUTBOUND:
        header = f"{home} → {away}"
    else:
        group = stations.inbound_origins[1:]
        if group:
            away += f" (+{', '.join(group)})"
        header = f"{away} → {home}"

    lines = [header, "─" * max(len(header), 40)]
    if not session.fetch_ok:
        lines.append("Unable to load trains. Will retry on the next refresh.")
    elif not session.trains:
        lines.append("No trains found" if session.last_update else "Loading...")
    for train in session.trains:
        ticking = session.tick_started is not None
        countdown = f"{train.countdown(now) if ticking else '...':>9}"
        colour = _URGENCY_COLOURS.get(train.urgency(now)) if color and ticking else None
        if colour:
            countdown = f"{colour}{countdown}{_RESET}"
        status = {"on-time": "On time", "delayed": "Delayed", "cancelled": "Cancelled"}[train.status]
        arrival = train.arrival_display
        if train.arrival_tag is ArrivalTag.UNKNOWN:
            arrival += " (check at station)"
        lines.append(
            f"{train.departure_display:<16} → {arrival:<26} {train.duration_display:<12}"
            f"{train.platform_display:<10} {status:<10} {countdown}"
        )
        lines.append(f"    {train.destination} · {train.operator}")

    if session.last_update:
        lines.append("")
        lines.append(f"Updated {session.last_update.astimezone(LONDON):%H:%M:%S}")
    return "\n".join(lines)


class BoardApp:
    """Owns one BoardSession and drives its refresh cycles.

    Refresh cycles run on the caller's thread and never overlap. Manual
    refresh, visibility changes and direction switches only set flags
    (they may be invoked from signal handlers); the loop picks them up.
    """

    def __init__(
        self,
        config: Config,
        client: HuxleyClient | None = None,
        out: TextIO | None = None,
    ) -> None:
        """Initialize the board application.

        Args:
            config: Fully assembled application configuration.
            client: Huxley client; a new one is created if omitted.
            out: Stream the board is drawn to. Defaults to stdout.
        """
        self.config = config
        self.client = client or HuxleyClient(config)
        self.store = DirectionStore(config.direction.state_file)
        self.out = out or sys.stdout
        self.session = BoardSession(direction=self._initial_direction())
        # Set to abandon the in-flight cycle's service lookups
        self._cancel = threading.Event()
        self._refresh_requested = False
        # Set from signal handlers, acted on by run()
        self._switch_requested = False
        self._resume_requested = False
        self._running = False

    def _initial_direction(self) -> Direction:
        cfg = self.config.direction
        if cfg.default:
            return Direction(cfg.default)
        saved = self.store.load()
        if saved is not None:
            logger.info("Using saved direction: %s", saved.value)
            return saved
        return default_direction(cutoff_hour=cfg.cutoff_hour)

    def _route(self) -> tuple[list[str], str, list[str]]:
        """(from-stations, to, to-aliases) for the session's current direction."""
        stations = self.config.stations
        if self.session.direction is Direction.OUTBOUND:
            origins = [stations.origin]
            to_crs = stations.destination
            names = [stations.destination_name, *stations.destination_names]
        else:
            origins = stations.inbound_origins
            to_crs = stations.origin
            names = [stations.origin_name, *stations.origin_names]
        # Keep order, drop blanks and duplicates
        return origins, to_crs, list(dict.fromkeys(n for n in names if n))

    def _fetch_station(
        self,
        from_crs: str,
        to_crs: str,
        names: list[str],
        now: datetime,
        cancel: threading.Event,
    ) -> list[ResolvedTrain]:
        """Fetch and resolve one origin board.

        Raises:
            requests.RequestException, ValueError: The departures fetch failed.
            RefreshCancelled: A newer cycle superseded this one.
        """
        matching = self.config.matching
        rows = self.config.refresh.departure_rows
        window = matching.effective_window

        departures = self.client.fetch_departure_records(
            from_crs, to_crs, matching.strategy, rows, names, now=now,
        )
        if matching.arrival_source == "detail":
            candidates = [
                d for d in departures[:window]
                if not d.is_cancelled and not d.status.is_cancelled
            ]
            arrivals = self.client.fetch_service_arrivals(
                candidates, to_crs, matching.detail_workers, cancel,
            )
        else:
            arrivals = self.client.fetch_arrival_infos(to_crs, from_crs, rows)
        # Truncation happens after all stations are merged
        return resolve_trains(
            departures, arrivals, from_crs, to_crs,
            window=window, max_results=window, now=now,
        )

    def refresh(self, now: datetime | None = None) -> bool:
        """Run one complete refresh cycle and publish its results.

        Each origin board is fetched and resolved in turn, then all of
        them are ranked together. A board whose departures fetch fails is
        skipped; only when every board fails is the cycle failed.

        Returns True if results (possibly empty) were published. A failed
        cycle publishes nothing and marks the session failed; a cancelled
        cycle is discarded.
        """
        self._refresh_requested = False
        self._cancel = threading.Event()
        cancel = self._cancel
        generation = self.session.begin_cycle()
        origins, to_crs, names = self._route()
        now = now or london_now()
        t0 = time.time()

        groups: list[list[ResolvedTrain]] = []
        for from_crs in origins:
            if cancel.is_set():
                logger.info("Refresh cycle %d superseded, discarding", generation)
                return False
            try:
                groups.append(self._fetch_station(from_crs, to_crs, names, now, cancel))
            except (requests.RequestException, ValueError):
                logger.warning("Failed to fetch departures from %s", from_crs, exc_info=True)
            except RefreshCancelled:
                logger.info("Refresh cycle %d superseded, discarding", generation)
                return False

        if not groups:
            self.session.fail(generation)
            return False

        trains = merge_trains(groups, max_results=self.config.matching.max_results)
        published = self.session.publish(generation, trains, now)
        logger.info(
            "Refresh %d: %d trains %s -> %s (%d/%d boards, %.1fs)",
            generation, len(trains), ",".join(origins), to_crs,
            len(groups), len(origins), time.time() - t0,
        )
        return published

    def request_refresh(self) -> None:
        """Ask for an immediate refresh, abandoning any lookups still in flight."""
        self._refresh_requested = True
        self._cancel.set()

    def switch_direction(self) -> Direction:
        """Toggle direction, persist it and request a refresh."""
        self.session.direction = self.session.direction.toggled()
        self.session.trains = []
        self.store.save(self.session.direction)
        logger.info("Switched direction to %s", self.session.direction.value)
        self.request_refresh()
        return self.session.direction

    def request_switch(self) -> None:
        """Ask run() to switch direction, abandoning any lookups still in flight."""
        self._switch_requested = True
        self._cancel.set()

    def set_visible(self, visible: bool) -> None:
        """Suspend periodic refresh while hidden; refresh at once on return."""
        was_visible = self.session.visible
        self.session.visible = visible
        if not visible:
            self.session.tick_started = None
            logger.debug("Board hidden, periodic refresh suspended")
        elif not was_visible:
            logger.debug("Board visible again, refreshing")
            self.request_refresh()

    def _due(self) -> bool:
        if self._refresh_requested:
            return True
        return self.session.needs_refresh(self.config.refresh.interval_seconds)

    def _draw(self) -> None:
        self.out.write(_CLEAR + render_board(self.session, self.config, color=True) + "\n")
        self.out.flush()

    def _install_signals(self) -> None:
        signal.signal(signal.SIGTERM, lambda *_: self.stop())
        # POSIX only: SIGUSR1 forces a refresh, SIGUSR2 switches direction,
        # SIGCONT (resume after Ctrl-Z) counts as the board becoming visible again
        if hasattr(signal, "SIGUSR1"):
            signal.signal(signal.SIGUSR1, lambda *_: self.request_refresh())
        if hasattr(signal, "SIGUSR2"):
            signal.signal(signal.SIGUSR2, lambda *_: self.request_switch())
        if hasattr(signal, "SIGCONT"):
            signal.signal(signal.SIGCONT, lambda *_: setattr(self, "_resume_requested", True))

    def _handle_requests(self) -> None:
        """Act on switch and resume requests raised by signal handlers."""
        if self._switch_requested:
            self._switch_requested = False
            self.switch_direction()
        if self._resume_requested:
            self._resume_requested = False
            # The terminal was stopped, so treat it as hidden until now
            self.session.visible = False
            self.set_visible(True)

    def stop(self) -> None:
        self._running = False
        self._cancel.set()

    def run(self) -> None:
        """Run the refresh/tick loop until stopped."""
        self._install_signals()
        refresh_cfg = self.config.refresh
        logger.info(
            "Starting board %s <-> %s, refresh=%ds, direction=%s",
            self.config.stations.origin, self.config.stations.destination,
            refresh_cfg.interval_seconds, self.session.direction.value,
        )
        self._running = True
        last_draw = 0.0
        while self._running:
            self._handle_requests()
            if self._due():
                self.refresh()
                self._draw()
                last_draw = time.time()
            elif self.session.visible and time.time() - last_draw >= refresh_cfg.tick_seconds:
                self._draw()
                last_draw = time.time()
            time.sleep(0.1)
        logger.info("Board stopped")

"""Huxley 2 (National Rail Darwin JSON proxy) client."""

from __future__ import annotations

import logging
import threading
import time
from concurrent.futures import FIRST_COMPLETED, ThreadPoolExecutor, wait
from datetime import datetime, timedelta
from urllib.parse import quote

import requests

from nexttrain.config import Config
from nexttrain.models import (
    ArrivalInfo,
    DepartureRecord,
    parse_arrival,
    parse_calling_points,
    parse_departure,
)
from nexttrain.timeutil import london_now, nearest_day, parse_clock_time

logger = logging.getLogger(__name__)

# Public Huxley 2 instance, no access token required for boards.
# Docs: https://huxley2.azurewebsites.net/swagger
BASE_URL = "https://huxley2.azurewebsites.net"

STRATEGIES = ("upstream", "downstream", "hybrid")


class RefreshCancelled(Exception):
    """A newer refresh superseded the one whose lookups were in flight."""


def serves_destination(
    record: DepartureRecord,
    destination_crs: str,
    destination_names: list[str] | tuple[str, ...] = (),
) -> bool:
    """Whether a departure gets the passenger to ``destination_crs``.

    True if the train terminates there, calls there (when calling points
    were expanded), or its destination name contains a configured alias.
    """
    if record.destination_crs and record.destination_crs.upper() == destination_crs.upper():
        return True
    if destination_crs.upper() in (crs.upper() for crs in record.calling_at):
        return True
    name = record.destination_name.lower()
    return any(alias.lower() in name for alias in destination_names if alias)


def _train_services(data) -> list[dict]:
    """The trainServices list of a board reply.

    Raises:
        ValueError: The reply is not a board object.
    """
    if data is None:
        return []
    if not isinstance(data, dict):
        raise ValueError(f"Unexpected board reply: {type(data).__name__}")
    # trainServices is null, not [], when the board is empty
    services = data.get("trainServices") or []
    if not isinstance(services, list):
        raise ValueError(f"Unexpected trainServices: {type(services).__name__}")
    return [raw for raw in services if isinstance(raw, dict)]


def _schedule_key(record: DepartureRecord, now: datetime) -> datetime:
    """Sort key for merged boards, with each time placed on its nearest day."""
    parsed = parse_clock_time(record.scheduled_departure, now=now)
    if parsed is None:
        return now + timedelta(days=2)
    return nearest_day(parsed, now)


class HuxleyClient:
    """Client for the Huxley 2 departures, arrivals and service endpoints."""

    def __init__(self, config: Config) -> None:
        """Initialize the Huxley client.

        Creates a requests.Session for HTTP connection reuse across the
        departures, arrivals and per-service lookups of a refresh cycle.

        Args:
            config: Application configuration. Used for the base URL,
                request timeout and board sizes.
        """
        self.config = config
        self.base_url = config.api.base_url.rstrip("/")
        self.timeout = config.api.timeout
        self.session = requests.Session()
        self.session.headers.update({"Accept": "application/json"})

    def _get(self, path: str, params: dict | None = None):
        resp = self.session.get(f"{self.base_url}{path}", params=params, timeout=self.timeout)
        resp.raise_for_status()
        return resp.json()

    def get_departures(
        self,
        crs: str,
        filter_crs: str | None = None,
        rows: int = 20,
        expand: bool = False,
    ) -> list[dict]:
        """Fetch raw trainServices dicts from a departure board.

        GET /departures/{crs}[/to/{filter_crs}]/{rows}. With ``expand``
        each service carries its subsequent calling points.
        """
        path = f"/departures/{crs}"
        if filter_crs:
            path += f"/to/{filter_crs}"
        path += f"/{rows}"
        params = {"expand": "true"} if expand else None
        return _train_services(self._get(path, params))

    def get_arrivals(self, crs: str, from_crs: str, rows: int = 20) -> list[dict]:
        """Fetch raw trainServices dicts from an arrivals board.

        GET /arrivals/{crs}/from/{from_crs}/{rows}
        """
        return _train_services(self._get(f"/arrivals/{crs}/from/{from_crs}/{rows}"))

    def get_service(self, service_id: str) -> dict:
        """Fetch calling-point detail for one service.

        GET /service/{id}
        """
        return self._get(f"/service/{quote(service_id, safe='')}")

    def search_stations(self, query: str) -> list[dict]:
        """Look up CRS codes by station name.

        GET /crs/{query}
        """
        return self._get(f"/crs/{quote(query, safe='')}") or []

    def fetch_departure_records(
        self,
        origin: str,
        destination: str,
        strategy: str = "downstream",
        rows: int = 20,
        destination_names: list[str] | tuple[str, ...] = (),
        now: datetime | None = None,
    ) -> list[DepartureRecord]:
        """Fetch departures from ``origin`` that serve ``destination``.

        Strategies:
            upstream: ask Huxley to filter by destination. Cheap, but
                Darwin's filter occasionally misses or over-includes.
            downstream: fetch the whole board and filter locally.
            hybrid: union of both, deduplicated by service id and
                ordered by scheduled departure.

        Any HTTP or transport failure propagates; without departures the
        cycle cannot proceed.
        """
        if strategy not in STRATEGIES:
            raise ValueError(f"Unknown departure strategy: {strategy!r}")

        records: list[DepartureRecord] = []
        seen: set[str] = set()

        def _add(raw_list: list[dict], local_filter: bool) -> None:
            for raw in raw_list:
                record = parse_departure(raw)
                if record is None:
                    continue
                if local_filter and not serves_destination(record, destination, destination_names):
                    continue
                if record.service_id and record.service_id in seen:
                    continue
                seen.add(record.service_id)
                records.append(record)

        t0 = time.time()
        if strategy in ("upstream", "hybrid"):
            _add(self.get_departures(origin, destination, rows), local_filter=False)
        if strategy in ("downstream", "hybrid"):
            _add(self.get_departures(origin, rows=rows, expand=True), local_filter=True)
        if strategy == "hybrid":
            now = now or london_now()
            records.sort(key=lambda r: _schedule_key(r, now))

        logger.info(
            "Fetched %d departures %s -> %s (%s, %.1fs)",
            len(records), origin, destination, strategy, time.time() - t0,
        )
        return records

    def fetch_arrival_infos(self, destination: str, origin: str, rows: int = 20) -> list[ArrivalInfo]:
        """Fetch the arrivals board at ``destination`` for trains from ``origin``.

        Failures degrade to an empty list: every candidate then falls back
        to an estimate or "check at station".
        """
        try:
            raw_list = self.get_arrivals(destination, origin, rows)
        except (requests.RequestException, ValueError):
            logger.warning("Arrivals fetch failed for %s from %s", destination, origin, exc_info=True)
            return []
        arrivals = [info for info in (parse_arrival(raw) for raw in raw_list) if info is not None]
        logger.debug("Fetched %d arrivals at %s", len(arrivals), destination)
        return arrivals

    def _service_arrival(self, record: DepartureRecord, destination: str) -> ArrivalInfo | None:
        try:
            detail = self.get_service(record.service_id)
        except (requests.RequestException, ValueError):
            logger.warning("Service detail fetch failed for %s", record.service_id, exc_info=True)
            return None
        try:
            return parse_calling_points(record.service_id, detail, destination)
        except (AttributeError, TypeError):
            logger.warning("Malformed service detail for %s", record.service_id, exc_info=True)
            return None

    def fetch_service_arrivals(
        self,
        departures: list[DepartureRecord],
        destination: str,
        max_workers: int = 4,
        cancel_event: threading.Event | None = None,
    ) -> list[ArrivalInfo]:
        """Look up each departure's arrival at ``destination`` via its calling points.

        Lookups run concurrently on a bounded thread pool and are all
        joined before returning. A failed lookup only loses that service's
        arrival. If ``cancel_event`` is set meanwhile, outstanding lookups
        are cancelled and RefreshCancelled is raised.

        Raises:
            RefreshCancelled: ``cancel_event`` was set before all lookups finished.
        """
        if not departures:
            return []
        t0 = time.time()
        executor = ThreadPoolExecutor(max_workers=max(1, max_workers), thread_name_prefix="service-detail")
        try:
            pending = {executor.submit(self._service_arrival, record, destination) for record in departures}
            done_results: list[ArrivalInfo] = []
            while pending:
                if cancel_event is not None and cancel_event.is_set():
                    for future in pending:
                        future.cancel()
                    raise RefreshCancelled(f"{len(pending)} service lookups abandoned")
                done, pending = wait(pending, timeout=0.2, return_when=FIRST_COMPLETED)
                for future in done:
                    info = future.result()
                    if info is not None:
                        done_results.append(info)
        finally:
            executor.shutdown(wait=False, cancel_futures=True)

        logger.info(
            "Resolved %d/%d service arrivals at %s (%.1fs)",
            len(done_results), len(departures), destination, time.time() - t0,
        )
        return done_results

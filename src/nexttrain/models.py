"""Data models for National Rail departure and arrival data."""

from __future__ import annotations

import enum
import time
from dataclasses import dataclass, field
from datetime import datetime, timedelta

from nexttrain.direction import Direction
from nexttrain.timeutil import format_countdown, format_duration, parse_clock_time

# Countdown urgency thresholds, in seconds before departure
URGENT_SECONDS = 120
SOON_SECONDS = 300


class StatusKind(enum.Enum):
    """Kinds of live status reported in Huxley's etd/eta fields."""

    ON_TIME = "on-time"
    DELAYED_NO_TIME = "delayed-no-time"
    DELAYED_WITH_TIME = "delayed-with-time"
    CANCELLED = "cancelled"
    # Arrival side only: no usable prediction at all
    CHECK_AT_STATION = "check-at-station"


@dataclass(frozen=True)
class ServiceStatus:
    """Tagged live status. ``clock`` is set only for DELAYED_WITH_TIME."""

    kind: StatusKind
    clock: str | None = None

    @classmethod
    def on_time(cls) -> ServiceStatus:
        return cls(StatusKind.ON_TIME)

    @classmethod
    def delayed(cls, clock: str | None = None) -> ServiceStatus:
        if clock:
            return cls(StatusKind.DELAYED_WITH_TIME, clock)
        return cls(StatusKind.DELAYED_NO_TIME)

    @classmethod
    def cancelled(cls) -> ServiceStatus:
        return cls(StatusKind.CANCELLED)

    @classmethod
    def check_at_station(cls) -> ServiceStatus:
        return cls(StatusKind.CHECK_AT_STATION)

    @property
    def is_cancelled(self) -> bool:
        return self.kind is StatusKind.CANCELLED


def parse_status(text: str | None, *, arrival: bool = False) -> ServiceStatus:
    """Map a raw Huxley etd/eta string onto a ServiceStatus.

    Huxley reports "On time", "Delayed", "Cancelled", a bare "HH:MM"
    expected time, or occasionally "No report"/empty. Unrecognised text
    means "no live data": departures then run to schedule, while
    arrivals become CHECK_AT_STATION.
    """
    value = (text or "").strip()
    lowered = value.lower()
    if lowered == "on time":
        return ServiceStatus.on_time()
    if lowered == "delayed":
        return ServiceStatus.delayed()
    if lowered == "cancelled":
        return ServiceStatus.cancelled()
    if parse_clock_time(value) is not None:
        return ServiceStatus.delayed(value.rstrip("*").strip())
    if arrival:
        return ServiceStatus.check_at_station()
    return ServiceStatus.on_time()


def _service_ids(raw: dict) -> tuple[str, tuple[str, ...]]:
    """Primary service id plus the other id encodings Huxley exposes."""
    primary = str(raw.get("serviceID") or raw.get("serviceId") or "")
    alternates = []
    for key in ("serviceIdUrlSafe", "serviceIdGuid", "serviceIdPercentEncoded", "rsid"):
        value = raw.get(key)
        if value and str(value) != primary:
            alternates.append(str(value))
    return primary, tuple(alternates)


@dataclass
class DepartureRecord:
    """One row of a departure board, as reported upstream.

    Attributes:
        service_id: Opaque Darwin service id, the key used to match arrivals.
        alternate_ids: Other encodings of the same id (url-safe, GUID, RSID).
        scheduled_departure: "HH:MM" scheduled departure (std).
        status: Tagged live departure status parsed from etd.
        platform: Platform string, None if not yet allocated. A trailing
            "*" marks an unconfirmed (predicted) platform.
        destination_name: Final destination of the train, not the
            configured destination station.
        destination_crs: CRS code of the final destination.
        operator_name: Train operating company.
        is_cancelled: Upstream isCancelled flag.
        calling_at: CRS codes of subsequent calling points, when the
            upstream query expanded them.
    """

    service_id: str
    scheduled_departure: str
    status: ServiceStatus
    destination_name: str
    operator_name: str = ""
    platform: str | None = None
    destination_crs: str = ""
    is_cancelled: bool = False
    alternate_ids: tuple[str, ...] = ()
    calling_at: tuple[str, ...] = ()

    @property
    def effective_departure(self) -> str:
        """Delay-adjusted departure clock string."""
        if self.status.kind is StatusKind.DELAYED_WITH_TIME and self.status.clock:
            return self.status.clock
        return self.scheduled_departure

    @property
    def is_delayed(self) -> bool:
        return self.status.kind in (StatusKind.DELAYED_NO_TIME, StatusKind.DELAYED_WITH_TIME)


def parse_departure(raw: dict) -> DepartureRecord | None:
    """Parse a raw Huxley trainServices entry. Returns None for unusable records."""
    destinations = raw.get("destination") or []
    destination = destinations[0] if destinations else None
    std = raw.get("std")
    if not destination or not destination.get("locationName") or not std:
        return None

    service_id, alternates = _service_ids(raw)
    calling_at: list[str] = []
    for group in raw.get("subsequentCallingPoints") or []:
        for point in group.get("callingPoint") or []:
            if point.get("crs"):
                calling_at.append(point["crs"])

    return DepartureRecord(
        service_id=service_id,
        alternate_ids=alternates,
        scheduled_departure=std,
        status=parse_status(raw.get("etd")),
        # Huxley sends null or "" before a platform is allocated
        platform=raw.get("platform") or None,
        destination_name=destination["locationName"].strip(),
        destination_crs=destination.get("crs") or "",
        operator_name=raw.get("operator") or "",
        is_cancelled=bool(raw.get("isCancelled", False)),
        calling_at=tuple(calling_at),
    )


@dataclass
class ArrivalInfo:
    """Arrival prediction for one service at the configured destination.

    Only valid for the refresh cycle that fetched it.
    """

    service_id: str
    scheduled_arrival: str | None
    status: ServiceStatus
    is_cancelled: bool = False
    alternate_ids: tuple[str, ...] = ()


def parse_arrival(raw: dict) -> ArrivalInfo | None:
    """Parse one trainServices entry from an arrivals board."""
    service_id, alternates = _service_ids(raw)
    if not service_id:
        return None
    return ArrivalInfo(
        service_id=service_id,
        alternate_ids=alternates,
        scheduled_arrival=raw.get("sta") or None,
        status=parse_status(raw.get("eta"), arrival=True),
        is_cancelled=bool(raw.get("isCancelled", False)),
    )


def parse_calling_points(service_id: str, detail: dict, destination_crs: str) -> ArrivalInfo | None:
    """Extract the arrival at ``destination_crs`` from a service-detail reply.

    Only subsequent calling points are searched: the departure board is
    for the origin, so the destination must lie ahead of it. Returns None
    if the service does not call there or the reply is malformed.
    """
    for group in detail.get("subsequentCallingPoints") or []:
        for point in group.get("callingPoint") or []:
            if point.get("crs") != destination_crs:
                continue
            return ArrivalInfo(
                service_id=service_id,
                scheduled_arrival=point.get("st") or None,
                status=parse_status(point.get("et"), arrival=True),
                is_cancelled=bool(point.get("isCancelled", False)),
            )
    return None


class ArrivalTag(enum.Enum):
    """Certainty of a resolved arrival time."""

    CONFIRMED = "confirmed"
    ESTIMATED = "estimated"
    UNKNOWN = "unknown"


@dataclass
class ResolvedTrain:
    """A ranked service ready for display.

    Attributes:
        scheduled_departure: Timetabled "HH:MM" departure.
        departure: Effective (delay-adjusted) "HH:MM" departure.
        scheduled_arrival: Timetabled "HH:MM" arrival, None if unknown.
        arrival: Effective or estimated "HH:MM" arrival, None when the
            tag is UNKNOWN ("check at station").
        arrival_tag: Certainty of ``arrival``.
        platform: Platform string with any "*" marker stripped, or "-".
        platform_confirmed: False for predicted or missing platforms.
        destination: Final destination of the train.
        operator: Train operating company.
        is_delayed: Departure is running late.
        is_cancelled: Always False for ranked trains; kept for display.
        seconds_until_departure: Signed seconds from the effective departure.
        seconds_until_arrival: Ranking key. Includes the estimate penalty,
            so it is not a display value. None for UNKNOWN arrivals.
        departure_at: Absolute effective departure, used by the countdown tick.
        journey: Journey duration when known (confirmed or estimated).
    """

    service_id: str
    scheduled_departure: str
    departure: str
    scheduled_arrival: str | None
    arrival: str | None
    arrival_tag: ArrivalTag
    platform: str
    platform_confirmed: bool
    destination: str
    operator: str
    is_delayed: bool
    seconds_until_departure: int
    seconds_until_arrival: int | None
    departure_at: datetime
    journey: timedelta | None = None
    is_cancelled: bool = False

    @property
    def status(self) -> str:
        if self.is_cancelled:
            return "cancelled"
        if self.is_delayed:
            return "delayed"
        return "on-time"

    @property
    def departure_display(self) -> str:
        """Scheduled departure, followed by the actual one if it differs."""
        if self.departure != self.scheduled_departure:
            return f"{self.scheduled_departure} (exp {self.departure})"
        return self.departure

    @property
    def arrival_display(self) -> str:
        if self.arrival_tag is ArrivalTag.UNKNOWN:
            return self.scheduled_arrival or "--:--"
        if self.arrival_tag is ArrivalTag.ESTIMATED:
            return f"~{self.arrival}"
        if self.scheduled_arrival and self.arrival != self.scheduled_arrival:
            return f"{self.scheduled_arrival} (exp {self.arrival})"
        return self.arrival or "--:--"

    @property
    def duration_display(self) -> str:
        return format_duration(self.journey)

    @property
    def platform_display(self) -> str:
        if self.platform_confirmed:
            return f"Plat {self.platform}"
        return f"Plat {self.platform}?"

    def countdown(self, now: datetime) -> str:
        """Countdown string relative to ``now``, recomputed from the absolute departure."""
        return format_countdown((self.departure_at - now) // timedelta(seconds=1))

    def urgency(self, now: datetime) -> str | None:
        """Countdown urgency: "urgent" within two minutes, "soon" within five, else None."""
        seconds = (self.departure_at - now) // timedelta(seconds=1)
        if seconds <= URGENT_SECONDS:
            return "urgent"
        if seconds <= SOON_SECONDS:
            return "soon"
        return None


@dataclass
class BoardSession:
    """Per-caller refresh state, passed into and updated by each refresh cycle.

    Holds everything that lives between cycles: the chosen direction and
    the last published results. Journey-time estimates are
    not kept here; they never outlive the cycle that produced them.

    Attributes:
        direction: Current travel direction.
        trains: Results published by the last successful cycle.
        fetch_ok: False after a cycle whose departures fetch failed.
        last_refresh: Unix timestamp when the last cycle started. 0.0
            forces the first refresh.
        last_update: London time of the last successful publish.
        generation: Incremented at the start of every cycle. A cycle may
            only publish if its generation is still current.
        visible: False while the consuming surface is hidden; periodic
            refresh is suspended.
        tick_started: Unix timestamp the countdown tick was (re)started,
            or None while stopped.
    """

    direction: Direction
    trains: list[ResolvedTrain] = field(default_factory=list)
    fetch_ok: bool = True
    last_refresh: float = 0.0
    last_update: datetime | None = None
    generation: int = 0
    visible: bool = True
    tick_started: float | None = None

    def needs_refresh(self, interval_seconds: int) -> bool:
        """Check if a periodic refresh is due."""
        if not self.visible:
            return False
        return time.time() - self.last_refresh >= interval_seconds

    def begin_cycle(self) -> int:
        """Start a new cycle: stop the tick, bump the generation and return it."""
        self.tick_started = None
        self.generation += 1
        self.last_refresh = time.time()
        return self.generation

    def publish(self, generation: int, trains: list[ResolvedTrain], now: datetime) -> bool:
        """Publish a cycle's results if no newer cycle has started since."""
        if generation != self.generation:
            return False
        self.trains = trains
        self.fetch_ok = True
        self.last_update = now
        self.tick_started = time.time()
        return True

    def fail(self, generation: int) -> None:
        """Mark the cycle failed; no partial results are kept."""
        if generation != self.generation:
            return
        self.trains = []
        self.fetch_ok = False
        self.tick_started = time.time()

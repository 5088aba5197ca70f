"""Arrival resolution and ranking for one refresh cycle.

Takes the raw departure records from the origin board and whatever
arrival predictions the same cycle produced, works out when each train
really leaves and arrives, and returns the few best options ordered by
arrival.
"""

from __future__ import annotations

import logging
import re
from collections.abc import Iterable
from datetime import datetime, timedelta

from nexttrain.models import (
    ArrivalInfo,
    ArrivalTag,
    DepartureRecord,
    ResolvedTrain,
    StatusKind,
)
from nexttrain.timeutil import format_clock, journey_duration, london_now, nearest_day, parse_clock_time

logger = logging.getLogger(__name__)

# Trains up to a minute past their effective departure stay on the board
# to absorb clock skew between us and the upstream feed.
STALE_AFTER_SECONDS = 60
# Added to the ranking key of estimated arrivals so a confirmed arrival
# wins at equal time.
ESTIMATE_PENALTY_SECONDS = 300

_NUMERIC_PREFIX_RE = re.compile(r"^\d+")

JourneyKey = tuple[str, str, str]


class JourneyTimeCache:
    """Observed journey durations, keyed by (origin, destination, train destination).

    Lives for exactly one resolve_trains() call. Durations are only as
    fresh as the data that produced them, so nothing carries over.
    """

    def __init__(self) -> None:
        self._durations: dict[JourneyKey, timedelta] = {}

    def record(self, key: JourneyKey, duration: timedelta) -> None:
        self._durations[key] = duration

    def lookup(self, key: JourneyKey) -> timedelta | None:
        return self._durations.get(key)

    def __len__(self) -> int:
        return len(self._durations)


def match_keys(service_id: str, alternate_ids: Iterable[str] = ()) -> list[str]:
    """Lookup keys for a service, most tolerant first.

    The numeric prefix of a Darwin service id is stable across boards
    while the suffix formatting drifts between endpoints, so it is tried
    before the exact forms.
    """
    keys: list[str] = []
    prefix = _NUMERIC_PREFIX_RE.match(service_id or "")
    if prefix:
        keys.append(prefix.group())
    for value in (service_id, *alternate_ids):
        if value and value not in keys:
            keys.append(value)
    return keys


class ArrivalIndex:
    """Same-cycle arrival predictions indexed by every match key."""

    def __init__(self, arrivals: Iterable[ArrivalInfo] = ()) -> None:
        self._by_key: dict[str, ArrivalInfo] = {}
        for info in arrivals:
            for key in match_keys(info.service_id, info.alternate_ids):
                # First arrival wins if two share a key
                self._by_key.setdefault(key, info)

    def find(self, record: DepartureRecord) -> ArrivalInfo | None:
        for key in match_keys(record.service_id, record.alternate_ids):
            info = self._by_key.get(key)
            if info is not None:
                return info
        return None

    def __len__(self) -> int:
        return len(self._by_key)


def _seconds_between(instant: datetime, now: datetime) -> int:
    return (instant - now) // timedelta(seconds=1)


def _platform(raw: str | None) -> tuple[str, bool]:
    """Split a platform string into (display value, confirmed)."""
    if not raw or raw.strip() in ("", "-"):
        return "-", False
    value = raw.strip()
    if "*" in value:
        return value.replace("*", "").strip() or "-", False
    return value, True


def _matched_arrival(
    record: DepartureRecord,
    info: ArrivalInfo,
    scheduled_departure_at: datetime,
    departure_at: datetime,
    now: datetime,
) -> datetime | None:
    """Effective arrival for a departure with a matched prediction.

    Rollover is anchored on the scheduled departure so an on-time
    arrival is never pushed to tomorrow by a late departure.
    """
    kind = info.status.kind

    if kind is StatusKind.ON_TIME:
        return parse_clock_time(info.scheduled_arrival, reference=scheduled_departure_at, now=now)
    if kind is StatusKind.DELAYED_NO_TIME:
        # Assume the departure delay carries through at the timetabled journey time
        scheduled = journey_duration(record.scheduled_departure, info.scheduled_arrival, now=now)
        if scheduled is not None:
            return departure_at + scheduled
        return parse_clock_time(info.scheduled_arrival, reference=scheduled_departure_at, now=now)
    if kind is StatusKind.DELAYED_WITH_TIME:
        return parse_clock_time(info.status.clock, reference=scheduled_departure_at, now=now)
    # CHECK_AT_STATION: matched, but no usable time
    return None


def resolve_train(
    record: DepartureRecord,
    index: ArrivalIndex,
    cache: JourneyTimeCache,
    origin: str,
    destination: str,
    now: datetime,
) -> ResolvedTrain | None:
    """Resolve one departure into a ResolvedTrain, or None if it must be dropped.

    Drops cancelled and stale departures, unparseable departure times and
    departures whose matched arrival is cancelled. Updates ``cache`` from
    any matched arrival and reads it when nothing matched.
    """
    if record.is_cancelled or record.status.is_cancelled:
        logger.debug("Dropping cancelled service %s", record.service_id)
        return None

    effective_departure = record.effective_departure
    scheduled_at = parse_clock_time(record.scheduled_departure, now=now)
    departure_at = parse_clock_time(effective_departure, now=now)
    if departure_at is None:
        logger.debug("Skipping %s: bad departure time %r", record.service_id, effective_departure)
        return None
    # Board times carry no date: place the schedule on the day nearest now,
    # then the expected time on the day nearest the schedule, so a delay
    # can carry the departure past midnight
    scheduled_at = nearest_day(scheduled_at, now) if scheduled_at is not None else None
    departure_at = nearest_day(departure_at, scheduled_at or now)
    scheduled_at = scheduled_at or departure_at
    departure_seconds = _seconds_between(departure_at, now)
    if departure_seconds < -STALE_AFTER_SECONDS:
        logger.debug("Dropping departed service %s (%ds ago)", record.service_id, -departure_seconds)
        return None

    key = (origin, destination, record.destination_name)
    scheduled_arrival: str | None = None
    arrival_at: datetime | None = None
    tag = ArrivalTag.UNKNOWN

    info = index.find(record)
    if info is not None:
        if info.is_cancelled or info.status.is_cancelled:
            logger.debug("Dropping %s: cancelled at %s", record.service_id, destination)
            return None
        scheduled_arrival = info.scheduled_arrival
        arrival_at = _matched_arrival(record, info, scheduled_at, departure_at, now)
        if arrival_at is not None:
            tag = ArrivalTag.CONFIRMED

        scheduled_journey = journey_duration(record.scheduled_departure, scheduled_arrival, now=now)
        if scheduled_journey is not None:
            observed = arrival_at - departure_at if arrival_at is not None else None
            if observed is None or observed < timedelta(0):
                observed = scheduled_journey
            cache.record(key, observed)
    else:
        cached = cache.lookup(key)
        if cached is not None:
            arrival_at = departure_at + cached
            tag = ArrivalTag.ESTIMATED

    arrival_seconds: int | None = None
    journey: timedelta | None = None
    if arrival_at is not None:
        arrival_seconds = _seconds_between(arrival_at, now)
        if tag is ArrivalTag.ESTIMATED:
            arrival_seconds += ESTIMATE_PENALTY_SECONDS
        if arrival_at >= departure_at:
            journey = arrival_at - departure_at

    platform, platform_confirmed = _platform(record.platform)
    return ResolvedTrain(
        service_id=record.service_id,
        scheduled_departure=record.scheduled_departure,
        departure=effective_departure,
        scheduled_arrival=scheduled_arrival,
        arrival=format_clock(arrival_at) if arrival_at is not None else None,
        arrival_tag=tag,
        platform=platform,
        platform_confirmed=platform_confirmed,
        destination=record.destination_name,
        operator=record.operator_name,
        is_delayed=record.is_delayed,
        seconds_until_departure=departure_seconds,
        seconds_until_arrival=arrival_seconds,
        departure_at=departure_at,
        journey=journey,
    )


def _rank_key(train: ResolvedTrain) -> tuple[int, int]:
    # Known arrivals first by arrival, then unknown ones by departure
    if train.seconds_until_arrival is None:
        return 1, train.seconds_until_departure
    return 0, train.seconds_until_arrival


def rank_trains(trains: Iterable[ResolvedTrain]) -> list[ResolvedTrain]:
    """Stable sort by ranking arrival, unknown arrivals last."""
    return sorted(trains, key=_rank_key)


def drop_overtaken(ranked: Iterable[ResolvedTrain]) -> list[ResolvedTrain]:
    """Remove trains overtaken by an earlier-ranked train.

    Walks the ranked list and rejects a train if an already accepted
    train leaves later yet arrives earlier. Trains without an arrival
    never take part.
    """
    accepted: list[ResolvedTrain] = []
    for train in ranked:
        if train.seconds_until_arrival is not None:
            overtaken_by = next(
                (
                    other for other in accepted
                    if other.seconds_until_arrival is not None
                    and other.seconds_until_departure > train.seconds_until_departure
                    and other.seconds_until_arrival < train.seconds_until_arrival
                ),
                None,
            )
            if overtaken_by is not None:
                logger.debug(
                    "Dropping %s (%s): overtaken by %s (%s)",
                    train.service_id, train.departure,
                    overtaken_by.service_id, overtaken_by.departure,
                )
                continue
        accepted.append(train)
    return accepted


def resolve_trains(
    departures: Iterable[DepartureRecord],
    arrivals: Iterable[ArrivalInfo] | ArrivalIndex | None,
    origin: str,
    destination: str,
    *,
    window: int = 10,
    max_results: int = 3,
    now: datetime | None = None,
) -> list[ResolvedTrain]:
    """Produce the ranked train list for one refresh cycle.

    Args:
        departures: Departure records in upstream (scheduled) order.
        arrivals: Same-cycle arrival predictions at ``destination``. May be
            empty when the arrival source failed.
        origin: CRS code the departures were fetched for.
        destination: CRS code the passenger is travelling to.
        window: Only the first ``window`` departures are considered.
        max_results: Number of trains returned.
        now: Frozen current time (London). Defaults to the wall clock.

    Returns:
        Up to ``max_results`` trains, ordered by (penalised) arrival.
    """
    now = now or london_now()
    index = arrivals if isinstance(arrivals, ArrivalIndex) else ArrivalIndex(arrivals or ())
    cache = JourneyTimeCache()

    candidates = list(departures)[:window]
    resolved: list[ResolvedTrain] = []
    for record in candidates:
        train = resolve_train(record, index, cache, origin, destination, now)
        if train is not None:
            resolved.append(train)

    accepted = drop_overtaken(rank_trains(resolved))
    logger.debug(
        "Resolved %d/%d candidates, %d after consistency filter (%d journey times cached)",
        len(resolved), len(candidates),
        len(accepted), len(cache),
    )
    return accepted[:max_results]


def merge_trains(
    groups: Iterable[Iterable[ResolvedTrain]],
    max_results: int = 3,
) -> list[ResolvedTrain]:
    """Merge trains resolved from several origin boards into one ranking.

    The merged list is ranked and filtered for overtaking as a whole, so
    a fast train from one station can push out a slow one from another.
    """
    merged = [train for group in groups for train in group]
    return drop_overtaken(rank_trains(merged))[:max_results]

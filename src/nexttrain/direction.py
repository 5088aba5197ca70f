"""Travel direction: toggle, time-of-day default and persisted preference."""

from __future__ import annotations

import enum
import logging
import os
from datetime import datetime

import yaml

from nexttrain.timeutil import LONDON, london_now

logger = logging.getLogger(__name__)


class Direction(enum.Enum):
    """Which way along the configured origin/destination pair we travel."""

    OUTBOUND = "outbound"
    INBOUND = "inbound"

    def toggled(self) -> Direction:
        return Direction.INBOUND if self is Direction.OUTBOUND else Direction.OUTBOUND

    def stations(self, origin: str, destination: str) -> tuple[str, str]:
        """(from, to) station codes for this direction."""
        if self is Direction.OUTBOUND:
            return origin, destination
        return destination, origin


def default_direction(now: datetime | None = None, cutoff_hour: int = 14) -> Direction:
    """Commute heuristic: outbound before the cutoff hour (London time), inbound after."""
    now = (now or london_now()).astimezone(LONDON)
    return Direction.OUTBOUND if now.hour < cutoff_hour else Direction.INBOUND


class DirectionStore:
    """Persists the last chosen direction in a small YAML file."""

    def __init__(self, path: str | None) -> None:
        self.path = os.path.expanduser(path) if path else None

    def load(self) -> Direction | None:
        """Return the saved direction, or None if absent or unreadable."""
        if not self.path or not os.path.exists(self.path):
            return None
        try:
            with open(self.path, "r") as f:
                data = yaml.safe_load(f) or {}
            return Direction(data.get("direction"))
        except (OSError, yaml.YAMLError, ValueError, AttributeError):
            logger.warning("Ignoring unreadable direction file %s", self.path, exc_info=True)
            return None

    def save(self, direction: Direction) -> None:
        if not self.path:
            return
        try:
            parent = os.path.dirname(self.path)
            if parent:
                os.makedirs(parent, exist_ok=True)
            with open(self.path, "w") as f:
                yaml.safe_dump({"direction": direction.value}, f)
        except OSError:
            logger.warning("Could not save direction to %s", self.path, exc_info=True)

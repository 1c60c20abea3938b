"""Deviation-interval bookkeeping for the monitoring loop.

Consecutive off-route samples that arrive within two update intervals of
each other extend the same :class:`DeviationPoint`; a longer gap opens a
new one. Intervals older than the retention window are pruned.
"""

from __future__ import annotations

from src.models.ride import DeviationPoint, Location
from src.services.safety.constants import (
    DEVIATION_CONTINUATION_GAP_MS,
    DEVIATION_RETENTION_MS,
    SAFE_CORRIDOR_RADIUS,
)


def is_deviated(distance_from_route: float) -> bool:
    return distance_from_route > SAFE_CORRIDOR_RADIUS


def track_deviation(
    history: list[DeviationPoint],
    location: Location,
    distance_from_route: float,
    *,
    now_ms: int,
    retention_ms: int = DEVIATION_RETENTION_MS,
) -> list[DeviationPoint]:
    """Record an off-route sample (if it is one) and return the pruned history."""
    if is_deviated(distance_from_route):
        last = history[-1] if history else None
        if last is not None and now_ms - last.timestamp < DEVIATION_CONTINUATION_GAP_MS:
            started_at = last.timestamp - last.duration
            last.duration = now_ms - started_at
            last.timestamp = now_ms
            last.distance_from_route = distance_from_route
        else:
            history.append(
                DeviationPoint(
                    location=location,
                    distance_from_route=distance_from_route,
                    duration=0,
                    timestamp=now_ms,
                )
            )

    return [point for point in history if now_ms - point.timestamp < retention_ms]

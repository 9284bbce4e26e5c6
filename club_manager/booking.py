from __future__ import annotations

from datetime import datetime, timezone
from typing import Iterable

from .models import ReservationRecord


def has_time_overlap(new_start: datetime, new_end: datetime, exist_start: datetime, exist_end: datetime) -> bool:
    """Return True when two time intervals overlap by even one instant.

    Intervals are treated as half-open ranges: [start, end)
    so touching boundaries (e.g. 14:00-16:00 and 16:00-18:00) do not overlap.
    """
    if new_start >= new_end:
        raise ValueError("new_start must be earlier than new_end.")
    if exist_start >= exist_end:
        raise ValueError("exist_start must be earlier than exist_end.")

    return new_start < exist_end and exist_start < new_end


def has_conflict(
    reservations: Iterable[ReservationRecord],
    resource_id: int,
    start: datetime,
    end: datetime,
    exclude_reservation_id: int | None = None,
) -> bool:
    """Return True if [start, end) overlaps any reservation held on the same resource."""
    if start >= end:
        raise ValueError("start must be earlier than end.")

    for reservation in reservations:
        if reservation.resource_id != resource_id:
            continue
        if exclude_reservation_id is not None and reservation.id == exclude_reservation_id:
            continue
        if has_time_overlap(start, end, reservation.start, reservation.end):
            return True
    return False


def overlaps_window(
    start: datetime,
    end: datetime,
    window_from: datetime | None,
    window_to: datetime | None,
) -> bool:
    if window_from is not None and end <= window_from:
        return False
    if window_to is not None and start >= window_to:
        return False
    return True


def parse_iso_datetime(value: str) -> datetime:
    """Parse an ISO 8601 string into the naive UTC form reservations are stored in.

    Aware values are converted to UTC and lose their offset; naive values are
    taken as already being UTC. Raises ValueError on malformed input.
    """
    parsed = datetime.fromisoformat(value)
    if parsed.tzinfo is not None:
        parsed = parsed.astimezone(timezone.utc).replace(tzinfo=None)
    return parsed

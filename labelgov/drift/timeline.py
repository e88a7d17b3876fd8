"""
Timeline helpers — build snapshots from live resources and merge them into a
bounded, chronologically ordered timeline.

Snapshot windows are defined by a cron expression: a new entry replaces any
existing entry taken within the same window (daily by default).
"""

from datetime import datetime
from typing import List, Optional, Sequence

from croniter import croniter

from labelgov.labels import canonical_label_hash
from labelgov.models.resource import GceResource
from labelgov.models.timeline import ResourceSnapshot, TimelineEntry

DEFAULT_SCHEDULE = "0 0 * * *"
DEFAULT_RETENTION = 90


def take_snapshot(resource: GceResource) -> ResourceSnapshot:
    meta = {"machine_type": resource.machine_type} if resource.machine_type else None
    return ResourceSnapshot(
        id=resource.id,
        name=resource.name,
        type=resource.type,
        status=resource.status,
        zone=resource.zone,
        label_hash=canonical_label_hash(resource.labels),
        meta=meta,
    )


def capture(resources: Sequence[GceResource], taken_at: datetime) -> TimelineEntry:
    """Snapshot every resource at one instant."""
    return TimelineEntry(
        date=taken_at.date().isoformat(),
        timestamp=taken_at,
        resources=[take_snapshot(r) for r in resources],
    )


def window_start(timestamp: datetime, schedule: str = DEFAULT_SCHEDULE) -> datetime:
    """Most recent schedule fire at or before the timestamp."""
    if croniter.match(schedule, timestamp):
        return timestamp.replace(second=0, microsecond=0)
    return croniter(schedule, timestamp).get_prev(datetime)


def merge_entry(
    timeline: Sequence[TimelineEntry],
    entry: TimelineEntry,
    schedule: str = DEFAULT_SCHEDULE,
    retention: int = DEFAULT_RETENTION,
) -> List[TimelineEntry]:
    """
    Return a new timeline containing the entry. An existing entry in the same
    schedule window is replaced; only the newest `retention` entries are kept.
    Raises ValueError for an invalid cron expression.
    """
    if not croniter.is_valid(schedule):
        raise ValueError(f"Invalid snapshot schedule: {schedule!r}")

    window = window_start(entry.timestamp, schedule)
    kept = [e for e in timeline if window_start(e.timestamp, schedule) != window]
    kept.append(entry)
    kept.sort(key=lambda e: e.timestamp)
    return kept[-retention:]


def find_entry(
    timeline: Sequence[TimelineEntry], date: str
) -> Optional[TimelineEntry]:
    """Newest entry recorded on the given YYYY-MM-DD date."""
    matches = [e for e in timeline if e.date == date]
    return max(matches, key=lambda e: e.timestamp) if matches else None

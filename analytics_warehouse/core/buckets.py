"""Bucket-start canonicalization.

Every timestamp is first normalized into the warehouse time zone (naive
values are read as wall-clock time in that zone) and then truncated. Day
and coarser buckets therefore start at local midnight, and weeks start on
Sunday.
"""

from datetime import datetime, timedelta, tzinfo
from typing import Dict

from ..models.aggregates import Granularity


def normalize(timestamp: datetime, tz: tzinfo) -> datetime:
    """Return ``timestamp`` as an aware datetime in ``tz``."""
    if timestamp.tzinfo is None:
        return timestamp.replace(tzinfo=tz)
    return timestamp.astimezone(tz)


def truncate(timestamp: datetime, granularity: Granularity, tz: tzinfo) -> datetime:
    """Canonical start of the bucket containing ``timestamp``.

    Idempotent: truncating a bucket start returns it unchanged.
    """
    local = normalize(timestamp, tz)
    granularity = Granularity.parse(granularity)

    if granularity == Granularity.MINUTE:
        return local.replace(second=0, microsecond=0)
    if granularity == Granularity.HOUR:
        return local.replace(minute=0, second=0, microsecond=0)

    midnight = local.replace(hour=0, minute=0, second=0, microsecond=0)
    if granularity == Granularity.DAY:
        return midnight
    if granularity == Granularity.WEEK:
        # weekday(): Monday is 0, Sunday is 6
        return midnight - timedelta(days=(midnight.weekday() + 1) % 7)
    if granularity == Granularity.MONTH:
        return midnight.replace(day=1)
    if granularity == Granularity.QUARTER:
        first_month = 3 * ((midnight.month - 1) // 3) + 1
        return midnight.replace(month=first_month, day=1)
    return midnight.replace(month=1, day=1)


def bucket_starts(timestamp: datetime, tz: tzinfo) -> Dict[Granularity, datetime]:
    """Bucket start for every granularity, finest first."""
    return {
        granularity: truncate(timestamp, granularity, tz) for granularity in Granularity
    }

"""Per-container age distribution and deletion impact."""

from collections import Counter
from datetime import datetime, timezone
from typing import Iterable

from retention_audit.models import (
    AGE_BUCKETS,
    GIB,
    ContainerResult,
    ObjectRecord,
    bucket_for_age,
)
from retention_audit.utils.validators import validate_retention_days


def _as_utc(value: datetime) -> datetime:
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


def age_in_days(last_modified: datetime, now: datetime) -> int:
    """Whole days elapsed between last modification and ``now``."""
    return (_as_utc(now) - _as_utc(last_modified)).days


def analyze_container(
    container: str,
    objects: Iterable[ObjectRecord],
    retention_days: int,
    now: datetime,
    cost_per_gb_month: float = 0.0,
) -> ContainerResult:
    """Compute the retention impact for one container.

    An object is a deletion candidate when its age in days is strictly greater
    than ``retention_days``. The result depends only on the multiset of
    objects, never on their order.

    Args:
        container: Container name.
        objects: Object metadata of the container.
        retention_days: Proposed retention window in days.
        now: Reference time for ages.
        cost_per_gb_month: Storage price used for the savings estimate.

    Returns:
        ContainerResult with counts, sizes, age histogram and savings.

    Raises:
        ValueError: If retention_days is negative.
    """
    validate_retention_days(retention_days)

    histogram: Counter[str] = Counter()
    total_count = 0
    total_size = 0
    deletion_count = 0
    deletion_size = 0

    for obj in objects:
        age = age_in_days(obj.last_modified, now)
        histogram[bucket_for_age(age).label] += 1
        total_count += 1
        total_size += obj.size

        if age > retention_days:
            deletion_count += 1
            deletion_size += obj.size

    percent = 100.0 * deletion_count / total_count if total_count else 0.0

    return ContainerResult(
        container=container,
        total_count=total_count,
        total_size=total_size,
        deletion_count=deletion_count,
        deletion_size=deletion_size,
        percent_to_delete=percent,
        est_monthly_savings=deletion_size / GIB * cost_per_gb_month,
        age_distribution={bucket.label: histogram[bucket.label] for bucket in AGE_BUCKETS},
    )

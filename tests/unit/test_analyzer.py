"""Unit tests for the container analyzer."""

import random
from datetime import datetime, timedelta, timezone

import pytest

from conftest import make_objects
from retention_audit.analyzer import age_in_days, analyze_container
from retention_audit.models import GIB, ObjectRecord


def test_age_in_days_truncates_partial_days(now: datetime) -> None:
    """Test that ages count whole days only."""
    assert age_in_days(now - timedelta(days=3, hours=23), now) == 3
    assert age_in_days(now - timedelta(hours=1), now) == 0


def test_age_in_days_naive_timestamp_is_utc(now: datetime) -> None:
    """Test that naive timestamps are treated as UTC."""
    naive = (now - timedelta(days=2)).replace(tzinfo=None)
    assert age_in_days(naive, now) == 2


def test_deletion_threshold_is_strict(now: datetime) -> None:
    """Test that an object exactly at the retention age is kept."""
    objects = make_objects("logs", [89, 90, 91], now)

    result = analyze_container("logs", objects, 90, now)

    assert result.total_count == 3
    assert result.deletion_count == 1
    assert result.deletion_size == 1024


def test_age_distribution_boundaries(now: datetime) -> None:
    """Test histogram placement at bucket edges."""
    objects = make_objects("logs", [7, 8, 365, 366], now)

    result = analyze_container("logs", objects, 30, now)

    assert result.age_distribution["0-7"] == 1
    assert result.age_distribution["8-30"] == 1
    assert result.age_distribution["181-365"] == 1
    assert result.age_distribution["365+"] == 1
    assert sum(result.age_distribution.values()) == result.total_count


def test_age_distribution_has_every_label(now: datetime) -> None:
    """Test that empty buckets are reported with zero."""
    result = analyze_container("logs", make_objects("logs", [1], now), 30, now)

    assert list(result.age_distribution) == [
        "0-7", "8-30", "31-60", "61-90", "91-180", "181-365", "365+"
    ]
    assert result.age_distribution["365+"] == 0


def test_empty_container(now: datetime) -> None:
    """Test that an empty container yields zeros and no division error."""
    result = analyze_container("empty", [], 90, now)

    assert result.total_count == 0
    assert result.total_size == 0
    assert result.percent_to_delete == 0.0
    assert result.est_monthly_savings == 0.0


def test_negative_retention_rejected(now: datetime) -> None:
    """Test that a negative retention window is rejected."""
    with pytest.raises(ValueError, match="Retention days"):
        analyze_container("logs", [], -1, now)


def test_zero_retention_flags_every_object_older_than_a_day(now: datetime) -> None:
    """Test retention of zero days."""
    objects = make_objects("logs", [0, 1, 2], now)

    result = analyze_container("logs", objects, 0, now)

    assert result.deletion_count == 2


def test_result_independent_of_order(now: datetime) -> None:
    """Test that shuffling objects does not change the result."""
    ages = [1, 15, 45, 75, 120, 200, 400, 91, 90, 89]
    objects = make_objects("logs", ages, now)
    shuffled = list(objects)
    random.Random(7).shuffle(shuffled)

    assert analyze_container("logs", objects, 90, now) == analyze_container(
        "logs", shuffled, 90, now
    )


def test_scenario_mixed_account(now: datetime, scenario_objects) -> None:
    """Test the empty, all-old and mixed containers at 90 days retention."""
    results = {
        name: analyze_container(name, objects, 90, now)
        for name, objects in scenario_objects.items()
    }

    assert results["empty"].deletion_count == 0
    assert results["all-old"].deletion_count == 10
    assert results["all-old"].percent_to_delete == 100.0
    assert results["mixed"].deletion_count == 5
    assert results["mixed"].percent_to_delete == 50.0


def test_monthly_savings_estimate(now: datetime) -> None:
    """Test savings derived from deletion size and price."""
    objects = [
        ObjectRecord(
            container="big",
            key=f"blob-{i}",
            size=GIB,
            last_modified=now - timedelta(days=400),
            provider="azure",
        )
        for i in range(2)
    ]

    result = analyze_container("big", objects, 90, now, cost_per_gb_month=0.02)

    assert result.deletion_size == 2 * GIB
    assert result.est_monthly_savings == pytest.approx(0.04)


def test_sizes_sum_over_objects(now: datetime) -> None:
    """Test that totals add up object sizes."""
    objects = make_objects("logs", [1, 200], now, size=500)

    result = analyze_container("logs", objects, 90, now)

    assert result.total_size == 1000
    assert result.deletion_size == 500
    assert result.total_size_gb == pytest.approx(1000 / GIB)


def test_timestamps_in_other_timezone(now: datetime) -> None:
    """Test that offsets are honoured when computing ages."""
    eastern = timezone(timedelta(hours=-5))
    modified = (now - timedelta(days=10)).astimezone(eastern)

    assert age_in_days(modified, now) == 10

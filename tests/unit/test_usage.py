"""Tests for prismgen.core.usage - daily, hourly and session quotas."""

import json
from datetime import datetime, timedelta

import pytest

from prismgen.core.usage import UsageTracker

pytestmark = pytest.mark.unit


class Clock:
    def __init__(self, moment: datetime):
        self.moment = moment

    def __call__(self) -> datetime:
        return self.moment


@pytest.fixture
def clock() -> Clock:
    return Clock(datetime(2025, 1, 31, 14, 30))


@pytest.fixture
def usage_file(temp_dir):
    return temp_dir / "usage" / "usage.json"


def make_tracker(usage_file, clock, **limits) -> UsageTracker:
    values = dict(daily_limit=20, hourly_limit=10, session_limit=5)
    values.update(limits)
    return UsageTracker(usage_file, now=clock, **values)


def test_fresh_tracker_allows(usage_file, clock):
    tracker = make_tracker(usage_file, clock)
    check = tracker.can_use()
    assert check.allowed
    assert check.reason is None
    assert tracker.get_usage_stats()["session"] == {"used": 0, "limit": 5, "remaining": 5}


def test_session_limit(usage_file, clock):
    tracker = make_tracker(usage_file, clock, session_limit=2)
    tracker.record_usage()
    tracker.record_usage()

    check = tracker.can_use()
    assert not check.allowed
    assert check.reason.startswith("Session generation limit reached (2)")

    # A new tracker is a new session; the daily and hourly counts carry over.
    restarted = make_tracker(usage_file, clock, session_limit=2)
    assert restarted.can_use().allowed
    assert restarted.get_usage_stats()["daily"]["used"] == 2


def test_hourly_limit_resets_next_hour(usage_file, clock):
    tracker = make_tracker(usage_file, clock, hourly_limit=1)
    tracker.record_usage()
    assert tracker.can_use().reason.startswith("Hourly generation limit reached (1)")

    clock.moment += timedelta(hours=1)
    assert tracker.can_use().allowed


def test_daily_limit_checked_first(usage_file, clock):
    tracker = make_tracker(usage_file, clock, daily_limit=1, hourly_limit=1, session_limit=1)
    tracker.record_usage()
    assert tracker.can_use().reason.startswith("Daily generation limit reached (1)")


def test_disabled_always_allows(usage_file, clock):
    tracker = make_tracker(usage_file, clock, session_limit=1, enabled=False)
    tracker.record_usage()
    tracker.record_usage()
    assert tracker.can_use().allowed
    assert tracker.get_usage_stats()["session"]["used"] == 2


def test_counters_persist_across_instances(usage_file, clock):
    make_tracker(usage_file, clock).record_usage()

    reloaded = make_tracker(usage_file, clock)
    stats = reloaded.get_usage_stats()
    assert stats["daily"]["used"] == 1
    assert stats["hourly"]["used"] == 1
    assert stats["session"]["used"] == 0


def test_old_entries_pruned(usage_file, clock):
    usage_file.parent.mkdir(parents=True)
    usage_file.write_text(
        json.dumps(
            {
                "daily": {"2025-01-01": 4, "2025-01-31": 2},
                "hourly": {"2025-01-29T10": 3, "2025-01-31T14": 2},
            }
        )
    )
    tracker = make_tracker(usage_file, clock)
    tracker.record_usage()

    data = json.loads(usage_file.read_text())
    assert data == {"daily": {"2025-01-31": 3}, "hourly": {"2025-01-31T14": 3}}


def test_corrupt_file_starts_empty(usage_file, clock):
    usage_file.parent.mkdir(parents=True)
    usage_file.write_text("{not json")
    tracker = make_tracker(usage_file, clock)
    assert tracker.get_usage_stats()["daily"]["used"] == 0

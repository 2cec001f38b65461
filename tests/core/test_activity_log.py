# tests/core/test_activity_log.py
import pytest

from contextchat.core import activity_log as activity
from contextchat.core.activity_log import ActivityLog


def test_add_records_entry():
    log = ActivityLog()
    entry = log.add(activity.API_RESPONSE, "Response", token_count=12, response_time_ms=340, details={"top_p": 0.9})
    assert log.entries == [entry]
    assert entry.token_count == 12 and entry.response_time_ms == 340
    assert entry.details == {"top_p": 0.9}
    assert entry.timestamp > 0


def test_unknown_type_rejected():
    with pytest.raises(ValueError):
        ActivityLog().add("gossip", "nope")


def test_bounded_keeps_newest():
    log = ActivityLog(max_entries=3)
    for i in range(5):
        log.add(activity.INFO, f"entry {i}")
    assert [e.message for e in log.entries] == ["entry 2", "entry 3", "entry 4"]
    log.clear()
    assert len(log) == 0


def test_subscribers_and_unsubscribe():
    log = ActivityLog()
    seen = []
    unsubscribe = log.subscribe(seen.append)
    log.add(activity.WARNING, "first")
    unsubscribe()
    unsubscribe()
    log.add(activity.WARNING, "second")
    assert [e.message for e in seen] == ["first"]


def test_failing_subscriber_does_not_block_others():
    log = ActivityLog()
    seen = []

    def broken(entry):
        raise RuntimeError("subscriber bug")

    log.subscribe(broken)
    log.subscribe(seen.append)
    log.add(activity.ERROR, "still delivered")
    assert len(seen) == 1
    assert len(log) == 1

"""Tests for counter persistence and daily progress tracking."""

from unittest.mock import patch

import pytest

from sync_counter.services.counter_store import (
    ANONYMOUS_USER,
    CounterStore,
    counter_to_dict,
    normalize_day,
    normalize_user_name,
)


@pytest.fixture
def store():
    return CounterStore(tz_name="UTC")


@pytest.mark.parametrize(
    "raw,expected",
    [("prAbH", "Prabh"), ("  sam ", "Sam"), ("", None), ("   ", None), (None, None)],
)
def test_normalize_user_name(raw, expected):
    assert normalize_user_name(raw) == expected


def test_normalize_day_accepts_dates_and_timestamps():
    assert normalize_day("2024-03-04", "UTC") == "2024-03-04"
    assert normalize_day("2024-03-04T23:30:00Z", "UTC") == "2024-03-04"
    # 23:30 UTC is already the next day in Tokyo
    assert normalize_day("2024-03-04T23:30:00Z", "Asia/Tokyo") == "2024-03-05"


def test_normalize_day_falls_back_to_today_on_garbage():
    with patch("sync_counter.services.counter_store.today_key", return_value="2030-01-01"):
        assert normalize_day("not a date", "UTC") == "2030-01-01"
        assert normalize_day(None, "UTC") == "2030-01-01"


def test_upsert_creates_then_updates(db, store):
    counter, created = store.upsert(db, {"name": "  Pushups ", "value": 2, "daily_goal": 10})
    assert created
    assert counter.id.startswith("counter-")
    assert counter.name == "Pushups"
    assert counter.value == 2
    assert counter.daily_goal == 10

    again, created = store.upsert(db, {"id": counter.id, "name": "Situps"})
    assert not created
    assert again.id == counter.id
    assert again.name == "Situps"
    assert again.value == 2


def test_upsert_keeps_client_supplied_id(db, store):
    counter, created = store.upsert(db, {"id": "counter-offline-1", "name": "Laps"})
    assert created
    assert store.get_by_id(db, "counter-offline-1") is counter


def test_list_is_ordered_by_name(db, store):
    for name in ("b", "c", "a"):
        store.upsert(db, {"name": name, "id": f"id-{name}"})
    assert [c.name for c in store.list(db)] == ["a", "b", "c"]


def test_apply_delta_records_progress(db, store):
    counter, _ = store.upsert(db, {"id": "c1", "name": "Pushups"})

    store.apply_delta(db, "c1", 1, user="prAbh", day="2024-03-04")
    store.apply_delta(db, "c1", 1, user="Prabh", day="2024-03-04")
    counter = store.apply_delta(db, "c1", 1, user="sam", day="2024-03-04")

    assert counter.value == 3
    assert counter.users == {"Prabh": 2, "Sam": 1}
    assert counter.history["2024-03-04"] == {
        "users": {"Prabh": 2, "Sam": 1},
        "total": 3,
        "day": "Monday",
    }


def test_apply_delta_without_user_counts_as_anonymous(db, store):
    store.upsert(db, {"id": "c1", "name": "Pushups"})
    counter = store.apply_delta(db, "c1", 2, day="2024-03-04")
    assert counter.users == {ANONYMOUS_USER: 2}


def test_decrement_below_zero_clamps_tallies_not_value(db, store):
    store.upsert(db, {"id": "c1", "name": "Pushups"})
    counter = store.apply_delta(db, "c1", -1, user="Prabh", day="2024-03-04")

    assert counter.value == -1
    assert counter.users["Prabh"] == 0
    assert counter.history["2024-03-04"]["total"] == 0


def test_daily_count_tracks_today(db, store):
    store.upsert(db, {"id": "c1", "name": "Pushups"})
    with patch("sync_counter.services.counter_store.today_key", return_value="2024-03-04"):
        counter = store.apply_delta(db, "c1", 3, user="Prabh", day="2024-03-04")
        assert counter.daily_count == 3
        counter = store.apply_delta(db, "c1", 1, user="Prabh", day="2024-03-03")
        assert counter.daily_count == 3


def test_apply_delta_unknown_counter(db, store):
    assert store.apply_delta(db, "missing", 1) is None


def test_every_mutation_moves_last_updated(db, store):
    counter, _ = store.upsert(db, {"id": "c1", "name": "Pushups"})
    with patch("sync_counter.services.counter_store.now_ms", side_effect=[5000, 6000]):
        assert store.apply_delta(db, "c1", 1).last_updated == 5000
        assert store.reset(db, "c1").last_updated == 6000
    assert store.get_by_id(db, "c1").value == 0


def test_delete(db, store):
    store.upsert(db, {"id": "c1", "name": "Pushups"})
    assert store.delete(db, "c1").id == "c1"
    assert store.get_by_id(db, "c1") is None
    assert store.delete(db, "c1") is None


def test_counter_to_dict_wire_shape(db, store):
    counter, _ = store.upsert(db, {"id": "c1", "name": "Pushups", "daily_goal": 5})
    payload = counter_to_dict(counter)
    assert set(payload) == {
        "id", "name", "value", "dailyGoal", "dailyCount", "users", "history", "imageUrl", "lastUpdated",
    }
    assert payload["dailyGoal"] == 5
    assert payload["imageUrl"] is None


def test_server_generated_ids_do_not_collide_within_a_millisecond(db, store):
    with patch("time.time", return_value=1_700_000_000.0):
        first, _ = store.upsert(db, {"name": "Laps"})
        second, created = store.upsert(db, {"name": "Sprints"})

    assert created
    assert first.id != second.id
    assert store.get_by_id(db, first.id).name == "Laps"

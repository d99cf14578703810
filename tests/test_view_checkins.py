from datetime import date, datetime, timedelta, timezone
from uuid import uuid4

import pytest

from models import MIGRATION_SOURCE, HealthEvent
from view_checkins import CompatibilityView

DAY = datetime(2025, 7, 24, tzinfo=timezone.utc)


@pytest.fixture
def view():
    return CompatibilityView()


def make_event(event_id, event_type, subtype, data, occurred_at=DAY, correlation_id=None, user_id="u1", source=None):
    return HealthEvent(
        id=str(event_id),
        user_id=user_id,
        event_type=event_type,
        event_subtype=subtype,
        event_data=data,
        occurred_at=occurred_at,
        correlation_id=correlation_id,
        source=source or ("api" if correlation_id else MIGRATION_SOURCE),
        created_at=occurred_at,
    )


def mood(event_id, name="hopeful", **kw):
    return make_event(event_id, "mood", "daily_checkin", {"mood": name}, **kw)


def medication(event_id, status="taken", **kw):
    return make_event(event_id, "medication", "daily_status", {"status": status}, **kw)


def test_correlated_events_flatten_into_one_record(view):
    cid = uuid4()
    result = view.reconstruct([mood(1, correlation_id=cid), medication(2, correlation_id=cid)])

    assert len(result.checkins) == 1
    record = result.checkins[0]
    assert record["id"] == str(cid)
    assert record["mood_today"] == "hopeful"
    assert record["medication_taken"] == "yes"
    assert record["date_submitted"] == "2025-07-24"
    assert result.inconsistencies == []


def test_record_carries_every_legacy_field(view):
    record = view.reconstruct([mood(1, correlation_id=uuid4())]).checkins[0]

    assert set(record) == set(view.field_names)
    assert record["side_effects"] is None
    assert record["phq4_total_score"] is None
    assert record["medication_taken"] == "not tracked"


def test_extra_event_data_is_not_surfaced(view):
    event = make_event(1, "mood", "daily_checkin", {"mood": "hopeful", "energy": 3}, correlation_id=uuid4())
    record = view.reconstruct([event]).checkins[0]
    assert "energy" not in record


def test_distinct_correlations_never_merge(view):
    first, second = uuid4(), uuid4()
    events = [mood(1, correlation_id=first), mood(2, correlation_id=second)]

    records = view.reconstruct(events).checkins

    assert len(records) == 2
    assert {r["id"] for r in records} == {str(first), str(second)}


def test_newest_first_and_oldest_first(view):
    older, newer = uuid4(), uuid4()
    events = [
        mood(1, correlation_id=older, occurred_at=DAY - timedelta(days=1)),
        mood(2, correlation_id=newer),
    ]

    assert [r["id"] for r in view.reconstruct(events).checkins] == [str(newer), str(older)]
    assert [r["id"] for r in view.reconstruct(events, newest_first=False).checkins] == [str(older), str(newer)]


def test_equal_timestamps_keep_insertion_order(view):
    a, b = uuid4(), uuid4()
    events = [mood(1, correlation_id=a), mood(2, correlation_id=b)]

    assert [r["id"] for r in view.reconstruct(events).checkins] == [str(a), str(b)]
    assert [r["id"] for r in view.reconstruct(events, newest_first=False).checkins] == [str(a), str(b)]


def test_uncorrelated_events_group_by_day(view):
    events = [
        mood(10),
        medication(11, status="missed"),
        mood(12, name="uncertain", occurred_at=DAY - timedelta(days=1)),
    ]

    records = view.reconstruct(events).checkins

    assert len(records) == 2
    assert records[0]["id"] == "10"
    assert records[0]["mood_today"] == "hopeful"
    assert records[0]["medication_taken"] == "no"
    assert records[1]["id"] == "12"
    assert records[1]["date_submitted"] == "2025-07-23"


def test_day_groups_are_per_user(view):
    records = view.reconstruct([mood(1, user_id="u1"), mood(2, user_id="u2")]).checkins
    assert [r["user_id"] for r in records] == ["u1", "u2"]


def test_correlated_and_uncorrelated_same_day_stay_apart(view):
    cid = uuid4()
    records = view.reconstruct([mood(1), medication(2, correlation_id=cid)]).checkins
    assert len(records) == 2


def test_conflicting_occurred_at_is_reported(view):
    cid = uuid4()
    events = [
        mood(1, correlation_id=cid),
        medication(2, correlation_id=cid, occurred_at=DAY + timedelta(days=1)),
    ]

    result = view.reconstruct(events)

    assert len(result.checkins) == 1
    assert result.checkins[0]["date_submitted"] == "2025-07-24"
    assert len(result.inconsistencies) == 1
    issue = result.inconsistencies[0]
    assert issue.checkin_id == str(cid)
    assert issue.as_dict()["type"] == "ReconstructionInconsistency"


def test_later_event_of_same_type_is_a_correction(view):
    cid = uuid4()
    events = [
        mood(1, "hopeful", correlation_id=cid),
        medication(2, correlation_id=cid),
        mood(3, "defeated", correlation_id=cid),
    ]

    result = view.reconstruct(events)

    record = result.checkins[0]
    assert record["mood_today"] == "defeated"
    assert record["medication_taken"] == "yes"
    assert len(result.inconsistencies) == 1
    assert result.inconsistencies[0].details == {"superseded": "1", "kept": "3"}


def test_latest_of_several_corrections_wins(view):
    cid = uuid4()
    events = [mood(n, name, correlation_id=cid) for n, name in [(1, "hopeful"), (2, "defeated"), (3, "uncertain")]]

    result = view.reconstruct(events)

    assert result.checkins[0]["mood_today"] == "uncertain"
    assert [i.details["superseded"] for i in result.inconsistencies] == ["1", "2"]


def test_uncorrelated_api_events_are_not_checkins(view):
    standalone = make_event(1, "mood", "daily_checkin", {"mood": "defeated"}, source="api")

    assert view.reconstruct([standalone]).checkins == []


def test_uncorrelated_api_event_does_not_add_a_second_checkin(view):
    cid = uuid4()
    standalone = mood(2, "defeated", occurred_at=DAY + timedelta(hours=12), source="api")

    records = view.reconstruct([mood(1, correlation_id=cid), standalone]).checkins

    assert [r["id"] for r in records] == [str(cid)]
    assert records[0]["mood_today"] == "hopeful"


def test_unknown_event_types_are_skipped(view):
    cid = uuid4()
    events = [mood(1, correlation_id=cid), make_event(2, "sleep", "nightly", {"hours": 7}, correlation_id=cid)]

    result = view.reconstruct(events)

    assert result.checkins[0]["mood_today"] == "hopeful"
    assert result.inconsistencies == []


def test_phq4_scores_read_back(view):
    data = {
        "feeling_nervous": 2, "stop_worrying": 3, "little_interest": 1, "feeling_down": 2,
        "anxiety_score": 5, "depression_score": 3, "total_score": 8, "severity": "moderate",
    }
    record = view.reconstruct([make_event(1, "assessment", "phq4", data, correlation_id=uuid4())]).checkins[0]

    assert record["phq4_total_score"] == 8
    assert record["phq4_anxiety_score"] == 5
    assert record["phq4_depression_score"] == 3


def test_empty_input(view):
    result = view.reconstruct([])
    assert result.checkins == []
    assert result.inconsistencies == []


def test_from_legacy_row(view):
    row = {
        "id": 7,
        "user_id": "u1",
        "date_submitted": date(2025, 7, 24),
        "created_at": DAY,
        "mood_today": "hopeful",
        "medication_taken": None,
        "side_effects": [],
    }

    record = view.from_legacy_row(row)

    assert set(record) == set(view.field_names)
    assert record["id"] == "7"
    assert record["date_submitted"] == "2025-07-24"
    assert record["medication_taken"] == "not tracked"
    assert record["side_effects"] is None

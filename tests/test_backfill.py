from datetime import date

import pytest

from backfill import backfill_checkins, legacy_payload
from errors import DuplicateCheckinError
from mapper_checkins import CompatibilityMapper

from conftest import fixed_clock


def legacy_row(row_id, day, **fields):
    row = {
        "id": row_id,
        "user_id": "u1",
        "date_submitted": day,
        "created_at": None,
        "mood_today": "hopeful",
        "medication_taken": None,
        "side_effects": None,
    }
    row.update(fields)
    return row


@pytest.fixture
def mapper():
    return CompatibilityMapper(clock=fixed_clock)


def test_legacy_payload_parses_json_text_lists():
    payload = legacy_payload(legacy_row(1, date(2025, 7, 20), side_effects='["nausea"]'))

    assert payload["side_effects"] == ["nausea"]
    assert "id" not in payload
    assert "user_id" not in payload
    assert "medication_taken" not in payload


def test_legacy_payload_wraps_bare_string():
    payload = legacy_payload(legacy_row(1, date(2025, 7, 20), coping_strategies_used="journaling"))
    assert payload["coping_strategies_used"] == ["journaling"]


def test_backfill_writes_uncorrelated_migration_events(event_repo, mapper, v2_service):
    rows = [
        legacy_row(1, date(2025, 7, 20), medication_taken="yes"),
        legacy_row(2, date(2025, 7, 21), side_effects='["bloating"]'),
    ]

    report = backfill_checkins(rows, event_repo, mapper)

    assert report.migrated == 2
    assert report.failed == []
    assert all(e.correlation_id is None for e in event_repo.events)
    assert {e.source for e in event_repo.events} == {"migration"}

    records = v2_service.get_checkins("u1").checkins
    assert [r["date_submitted"] for r in records] == ["2025-07-21", "2025-07-20"]
    assert records[0]["side_effects"] == ["bloating"]
    assert records[1]["medication_taken"] == "yes"


def test_backfill_is_idempotent(event_repo, mapper):
    rows = [legacy_row(1, date(2025, 7, 20))]
    backfill_checkins(rows, event_repo, mapper)

    again = backfill_checkins(rows, event_repo, mapper)

    assert again.migrated == 0
    assert again.skipped == 1
    assert len(event_repo.events) == 1


def test_migrated_day_blocks_new_submission(event_repo, mapper, v2_service):
    backfill_checkins([legacy_row(1, date(2025, 7, 20))], event_repo, mapper)

    with pytest.raises(DuplicateCheckinError) as exc:
        v2_service.create_checkin("u1", {"mood_today": "defeated", "date_submitted": "2025-07-20"})

    assert exc.value.existing["mood_today"] == "hopeful"


def test_backfill_reports_invalid_rows(event_repo, mapper):
    rows = [
        legacy_row(1, date(2025, 7, 20), phq4_feeling_nervous=1, phq4_stop_worrying=1,
                   phq4_little_interest=1, phq4_feeling_down=1, phq4_total_score=7),
        legacy_row(2, date(2025, 7, 21)),
    ]

    report = backfill_checkins(rows, event_repo, mapper)

    assert report.migrated == 1
    assert [f["id"] for f in report.failed] == [1]
    assert report.failed[0]["fields"] == ["phq4_total_score"]


def test_backfill_skips_rows_with_nothing_to_store(event_repo, mapper):
    report = backfill_checkins([legacy_row(1, date(2025, 7, 20), mood_today=None)], event_repo, mapper)

    assert report.skipped == 1
    assert event_repo.events == []

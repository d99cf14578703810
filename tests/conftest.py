import itertools
from datetime import date, datetime, timezone
from typing import Any, Dict, List, Optional, Tuple

import pytest
from fastapi.testclient import TestClient

from errors import DuplicateCheckinError
from models import HealthEvent
from repo_checkins import LEGACY_COLUMNS
from service_checkins import CheckinService
from service_events import EventService
from settings import Settings

FIXED_NOW = datetime(2025, 7, 24, 15, 30, tzinfo=timezone.utc)


def fixed_clock() -> datetime:
    return FIXED_NOW


class InMemoryEventRepo:
    """Same surface and transaction contract as `EventRepo`, minus Postgres.

    `fail_on_event` makes the Nth event of the next insert blow up, to
    check that a half-written check-in never becomes visible.
    """

    def __init__(self):
        self.events: List[HealthEvent] = []
        self.submissions: Dict[Tuple[str, date], Any] = {}
        self.fail_on_event: Optional[int] = None
        self._ids = itertools.count(1)

    def _stage(self, events) -> List[HealthEvent]:
        staged = []
        for index, e in enumerate(events):
            if self.fail_on_event is not None and index == self.fail_on_event:
                self.fail_on_event = None
                raise RuntimeError("simulated insert failure")
            staged.append(HealthEvent(
                id=str(next(self._ids)),
                created_at=datetime.now(timezone.utc),
                **e.model_dump(),
            ))
        return staged

    def insert_events(self, events):
        staged = self._stage(events)
        self.events.extend(staged)
        return staged

    def insert_checkin(self, user_id, checkin_date, correlation_id, events, source="api"):
        if (user_id, checkin_date) in self.submissions:
            raise DuplicateCheckinError(user_id, checkin_date)
        staged = self._stage(events)
        self.submissions[(user_id, checkin_date)] = correlation_id
        self.events.extend(staged)
        return staged

    def fetch_events(self, user_id, start_date=None, end_date=None):
        out = []
        for e in self.events:
            day = e.occurred_at.astimezone(timezone.utc).date()
            if e.user_id != user_id:
                continue
            if start_date is not None and day < start_date:
                continue
            if end_date is not None and day > end_date:
                continue
            out.append(e)
        return sorted(out, key=lambda e: int(e.id))

    def fetch_correlation(self, user_id, correlation_id):
        return [e for e in self.events if e.user_id == user_id and e.correlation_id == correlation_id]

    def fetch_event(self, user_id, event_id):
        # same int() coercion as the BIGSERIAL lookup
        event_id = str(int(event_id))
        for e in self.events:
            if e.user_id == user_id and e.id == event_id:
                return e
        return None

    def fetch_timeline(self, user_id, limit):
        mine = [e for e in self.events if e.user_id == user_id]
        mine.sort(key=lambda e: (e.occurred_at, int(e.id)), reverse=True)
        return mine[:limit]

    def ping(self):
        return None


class InMemoryLegacyRepo:
    """Stands in for `LegacyCheckinRepo` (flat `daily_checkins`)."""

    def __init__(self):
        self.rows: List[Dict[str, Any]] = []
        self._ids = itertools.count(1)

    def insert_checkin(self, row):
        key = (row["user_id"], row["date_submitted"])
        if any((r["user_id"], r["date_submitted"]) == key for r in self.rows):
            raise DuplicateCheckinError(row["user_id"], row["date_submitted"])
        stored = {c: row.get(c) for c in LEGACY_COLUMNS}
        stored["id"] = next(self._ids)
        stored["created_at"] = datetime.now(timezone.utc)
        self.rows.append(stored)
        return dict(stored)

    def fetch_checkins(self, user_id, start_date=None, end_date=None, limit=None, newest_first=True):
        rows = [
            r for r in self.rows
            if r["user_id"] == user_id
            and (start_date is None or r["date_submitted"] >= start_date)
            and (end_date is None or r["date_submitted"] <= end_date)
        ]
        rows.sort(key=lambda r: r["id"])
        rows.sort(key=lambda r: r["date_submitted"], reverse=newest_first)
        return [dict(r) for r in rows[:limit]]

    def fetch_checkin(self, user_id, checkin_id):
        for r in self.rows:
            if r["user_id"] == user_id and r["id"] == int(checkin_id):
                return dict(r)
        return None

    def find_by_user_and_date(self, user_id, checkin_date):
        for r in self.rows:
            if r["user_id"] == user_id and r["date_submitted"] == checkin_date:
                return dict(r)
        return None


@pytest.fixture
def event_repo():
    return InMemoryEventRepo()


@pytest.fixture
def legacy_repo():
    return InMemoryLegacyRepo()


@pytest.fixture
def v2_service(event_repo, legacy_repo):
    return CheckinService(Settings(use_schema_v2=True), event_repo, legacy_repo, clock=fixed_clock)


@pytest.fixture
def legacy_service(event_repo, legacy_repo):
    return CheckinService(Settings(use_schema_v2=False), event_repo, legacy_repo, clock=fixed_clock)


@pytest.fixture(params=[True, False], ids=["v2", "legacy"])
def checkin_service(request, event_repo, legacy_repo):
    """Runs a test once per schema mode."""
    return CheckinService(
        Settings(use_schema_v2=request.param), event_repo, legacy_repo, clock=fixed_clock
    )


@pytest.fixture
def event_service(event_repo):
    return EventService(Settings(use_schema_v2=True), event_repo)


@pytest.fixture
def make_client():
    import main

    def _make(checkin_service, event_service):
        main.app.dependency_overrides[main.get_checkin_service] = lambda: checkin_service
        main.app.dependency_overrides[main.get_event_service] = lambda: event_service
        return TestClient(main.app)

    yield _make
    main.app.dependency_overrides.clear()

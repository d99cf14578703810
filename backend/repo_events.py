"""
Repository: SQL operations for `health_events`.

This file contains only DB interaction code. It maps Pydantic models
to SQL parameters and converts DB rows back to `HealthEvent`. Keep
business rules out of this module.

Important notes:
- `event_data` goes through `Jsonb` so Postgres stores native JSONB.
- Events are append-only: there is no update or delete here.
- `insert_checkin` claims the user's day in `checkin_submissions` and
  inserts every event of the submission in ONE transaction. Either the
  whole correlation group is durable when it returns, or nothing is.
- Reads return events in insertion order (`id ASC`); the view relies on
  that to break ties.
"""

from datetime import date, datetime, time, timedelta, timezone
from typing import Any, Callable, Dict, List, Optional, Sequence
from uuid import UUID

from psycopg.errors import UniqueViolation
from psycopg.rows import dict_row
from psycopg.types.json import Jsonb

from db import get_conn
from errors import DuplicateCheckinError
from models import HealthEvent, HealthEventIn

EVENT_COLUMNS = (
    "id, user_id, event_type, event_subtype, event_data, "
    "occurred_at, correlation_id, source, created_at"
)


def _row_to_event(r: Dict[str, Any]) -> HealthEvent:
    return HealthEvent(
        id=str(r["id"]),
        user_id=r["user_id"],
        event_type=r["event_type"],
        event_subtype=r["event_subtype"],
        event_data=r["event_data"] or {},
        occurred_at=r["occurred_at"],
        correlation_id=r["correlation_id"],
        source=r["source"],
        created_at=r["created_at"],
    )


def _day_start(d: date) -> datetime:
    return datetime.combine(d, time.min, tzinfo=timezone.utc)


class EventRepo:
    """DB access only. No business logic here.

    Responsibilities:
    - Map `HealthEventIn` -> SQL parameters
    - Execute queries and return `HealthEvent` objects
    - Keep transaction/commit boundaries local and explicit
    """

    def __init__(self, connect: Callable = get_conn):
        self._connect = connect

    def _insert(self, cur, e: HealthEventIn) -> HealthEvent:
        cur.execute(
            "INSERT INTO health_events "
            "(user_id, event_type, event_subtype, event_data, occurred_at, correlation_id, source) "
            f"VALUES (%s, %s, %s, %s, %s, %s, %s) RETURNING {EVENT_COLUMNS}",
            (
                e.user_id,
                e.event_type,
                e.event_subtype,
                Jsonb(e.event_data),
                e.occurred_at,
                e.correlation_id,
                e.source,
            ),
        )
        return _row_to_event(cur.fetchone())

    def insert_events(self, events: Sequence[HealthEventIn]) -> List[HealthEvent]:
        """Insert a batch of standalone events in one transaction."""

        with self._connect() as conn:
            with conn.cursor(row_factory=dict_row) as cur:
                stored = [self._insert(cur, e) for e in events]
            conn.commit()
        return stored

    def insert_checkin(
        self,
        user_id: str,
        checkin_date: date,
        correlation_id: Optional[UUID],
        events: Sequence[HealthEventIn],
        source: str = "api",
    ) -> List[HealthEvent]:
        """Claim `(user_id, checkin_date)` and insert the submission's events.

        Raises `DuplicateCheckinError` if the day is already claimed; in that
        case nothing is written.
        """

        with self._connect() as conn:
            with conn.cursor(row_factory=dict_row) as cur:
                try:
                    cur.execute(
                        "INSERT INTO checkin_submissions (user_id, checkin_date, correlation_id, source) "
                        "VALUES (%s, %s, %s, %s)",
                        (user_id, checkin_date, correlation_id, source),
                    )
                except UniqueViolation as exc:
                    conn.rollback()
                    raise DuplicateCheckinError(user_id, checkin_date) from exc
                stored = [self._insert(cur, e) for e in events]
            conn.commit()
        return stored

    def fetch_events(
        self,
        user_id: str,
        start_date: Optional[date] = None,
        end_date: Optional[date] = None,
    ) -> List[HealthEvent]:
        """Events for `user_id` with `occurred_at` inside the UTC day range."""

        sql = f"SELECT {EVENT_COLUMNS} FROM health_events WHERE user_id=%s"
        params: List[Any] = [user_id]
        if start_date is not None:
            sql += " AND occurred_at >= %s"
            params.append(_day_start(start_date))
        if end_date is not None:
            sql += " AND occurred_at < %s"
            params.append(_day_start(end_date + timedelta(days=1)))
        sql += " ORDER BY id ASC"

        with self._connect() as conn:
            with conn.cursor(row_factory=dict_row) as cur:
                cur.execute(sql, params)
                return [_row_to_event(r) for r in cur.fetchall()]

    def fetch_correlation(self, user_id: str, correlation_id: UUID) -> List[HealthEvent]:
        with self._connect() as conn:
            with conn.cursor(row_factory=dict_row) as cur:
                cur.execute(
                    f"SELECT {EVENT_COLUMNS} FROM health_events "
                    "WHERE user_id=%s AND correlation_id=%s ORDER BY id ASC",
                    (user_id, correlation_id),
                )
                return [_row_to_event(r) for r in cur.fetchall()]

    def fetch_event(self, user_id: str, event_id: str) -> Optional[HealthEvent]:
        with self._connect() as conn:
            with conn.cursor(row_factory=dict_row) as cur:
                cur.execute(
                    f"SELECT {EVENT_COLUMNS} FROM health_events WHERE user_id=%s AND id=%s",
                    (user_id, int(event_id)),
                )
                row = cur.fetchone()
                return _row_to_event(row) if row else None

    def fetch_timeline(self, user_id: str, limit: int) -> List[HealthEvent]:
        """Most recent `limit` events for `user_id`, newest first."""

        with self._connect() as conn:
            with conn.cursor(row_factory=dict_row) as cur:
                cur.execute(
                    f"SELECT {EVENT_COLUMNS} FROM health_events "
                    "WHERE user_id=%s ORDER BY occurred_at DESC, id DESC LIMIT %s",
                    (user_id, limit),
                )
                return [_row_to_event(r) for r in cur.fetchall()]

    def ping(self) -> None:
        """Lightweight DB health check. Raises on error."""

        with self._connect() as conn:
            with conn.cursor() as cur:
                cur.execute("SELECT 1;")

"""
Repository: SQL operations for the legacy flat `daily_checkins` table.

Used only when the service runs in `legacy-only` mode. Column names come
from the fixed `LEGACY_COLUMNS` list, never from request data. List
fields are stored as JSONB.
"""

from datetime import date
from typing import Any, Callable, Dict, List, Mapping, Optional

from psycopg.errors import UniqueViolation
from psycopg.rows import dict_row
from psycopg.types.json import Jsonb

from db import get_conn
from errors import DuplicateCheckinError

LEGACY_COLUMNS = [
    "user_id",
    "date_submitted",
    "mood_today",
    "confidence_today",
    "medication_taken",
    "user_note",
    "primary_concern_today",
    "anxiety_level",
    "side_effects",
    "missed_doses",
    "injection_confidence",
    "appointment_within_3_days",
    "appointment_anxiety",
    "coping_strategies_used",
    "partner_involved_today",
    "wish_knew_more_about",
    "phq4_feeling_nervous",
    "phq4_stop_worrying",
    "phq4_little_interest",
    "phq4_feeling_down",
    "phq4_total_score",
    "phq4_anxiety_score",
    "phq4_depression_score",
]
JSON_COLUMNS = {"side_effects", "coping_strategies_used", "wish_knew_more_about"}


class LegacyCheckinRepo:
    def __init__(self, connect: Callable = get_conn):
        self._connect = connect

    def insert_checkin(self, row: Mapping[str, Any]) -> Dict[str, Any]:
        """Insert one flat row; `DuplicateCheckinError` if the day is taken."""

        columns = [c for c in LEGACY_COLUMNS if row.get(c) is not None]
        values = [Jsonb(row[c]) if c in JSON_COLUMNS else row[c] for c in columns]
        placeholders = ", ".join(["%s"] * len(columns))

        with self._connect() as conn:
            with conn.cursor(row_factory=dict_row) as cur:
                try:
                    cur.execute(
                        f"INSERT INTO daily_checkins ({', '.join(columns)}) "
                        f"VALUES ({placeholders}) RETURNING *",
                        values,
                    )
                except UniqueViolation as exc:
                    conn.rollback()
                    raise DuplicateCheckinError(row["user_id"], row["date_submitted"]) from exc
                stored = cur.fetchone()
            conn.commit()
        return stored

    def fetch_checkins(
        self,
        user_id: str,
        start_date: Optional[date] = None,
        end_date: Optional[date] = None,
        limit: Optional[int] = None,
        newest_first: bool = True,
    ) -> List[Dict[str, Any]]:
        sql = "SELECT * FROM daily_checkins WHERE user_id=%s"
        params: List[Any] = [user_id]
        if start_date is not None:
            sql += " AND date_submitted >= %s"
            params.append(start_date)
        if end_date is not None:
            sql += " AND date_submitted <= %s"
            params.append(end_date)
        sql += f" ORDER BY date_submitted {'DESC' if newest_first else 'ASC'}, id ASC"
        if limit is not None:
            sql += " LIMIT %s"
            params.append(limit)

        with self._connect() as conn:
            with conn.cursor(row_factory=dict_row) as cur:
                cur.execute(sql, params)
                return cur.fetchall()

    def fetch_checkin(self, user_id: str, checkin_id: str) -> Optional[Dict[str, Any]]:
        with self._connect() as conn:
            with conn.cursor(row_factory=dict_row) as cur:
                cur.execute(
                    "SELECT * FROM daily_checkins WHERE user_id=%s AND id=%s",
                    (user_id, int(checkin_id)),
                )
                return cur.fetchone()

    def find_by_user_and_date(self, user_id: str, checkin_date: date) -> Optional[Dict[str, Any]]:
        with self._connect() as conn:
            with conn.cursor(row_factory=dict_row) as cur:
                cur.execute(
                    "SELECT * FROM daily_checkins WHERE user_id=%s AND date_submitted=%s",
                    (user_id, checkin_date),
                )
                return cur.fetchone()

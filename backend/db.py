"""
Database connection helper and schema.

This module centralizes how connections are created. Right now we use
`psycopg.connect(settings.db_url)` which opens a new connection per call.

Usage:
    from db import get_conn
    with get_conn() as conn:
        with conn.cursor() as cur:
            cur.execute("SELECT 1;")

Leaving the `with get_conn()` block commits if `conn.commit()` was
called and rolls back on an exception, so one block is one unit of work.

`SCHEMA_SQL` holds the DDL for both check-in schemas. They coexist:
`daily_checkins` is the legacy flat table, `health_events` the Schema V2
event store. `checkin_submissions` is the one-row-per-user-per-day ledger
that makes duplicate V2 check-ins fail inside the insert transaction.
"""

import psycopg
from settings import settings


SCHEMA_SQL = '''
CREATE TABLE IF NOT EXISTS health_events (
    id BIGSERIAL PRIMARY KEY,
    user_id TEXT NOT NULL,
    event_type TEXT NOT NULL,
    event_subtype TEXT NOT NULL,
    event_data JSONB NOT NULL DEFAULT '{}'::jsonb,
    occurred_at TIMESTAMP WITH TIME ZONE NOT NULL,
    correlation_id UUID,
    source TEXT NOT NULL DEFAULT 'api',
    created_at TIMESTAMP WITH TIME ZONE NOT NULL DEFAULT NOW()
);

CREATE INDEX IF NOT EXISTS idx_health_events_user_occurred
    ON health_events (user_id, occurred_at DESC);
CREATE INDEX IF NOT EXISTS idx_health_events_correlation
    ON health_events (correlation_id) WHERE correlation_id IS NOT NULL;

CREATE TABLE IF NOT EXISTS checkin_submissions (
    id BIGSERIAL PRIMARY KEY,
    user_id TEXT NOT NULL,
    checkin_date DATE NOT NULL,
    correlation_id UUID,
    source TEXT NOT NULL DEFAULT 'api',
    created_at TIMESTAMP WITH TIME ZONE NOT NULL DEFAULT NOW(),
    CONSTRAINT uq_checkin_submissions_user_day UNIQUE (user_id, checkin_date)
);

CREATE TABLE IF NOT EXISTS daily_checkins (
    id BIGSERIAL PRIMARY KEY,
    user_id TEXT NOT NULL,
    date_submitted DATE NOT NULL,
    mood_today TEXT,
    confidence_today INTEGER,
    medication_taken TEXT,
    user_note TEXT,
    primary_concern_today TEXT,
    anxiety_level INTEGER,
    side_effects JSONB,
    missed_doses INTEGER,
    injection_confidence INTEGER,
    appointment_within_3_days BOOLEAN,
    appointment_anxiety INTEGER,
    coping_strategies_used JSONB,
    partner_involved_today BOOLEAN,
    wish_knew_more_about JSONB,
    phq4_feeling_nervous INTEGER,
    phq4_stop_worrying INTEGER,
    phq4_little_interest INTEGER,
    phq4_feeling_down INTEGER,
    phq4_total_score INTEGER,
    phq4_anxiety_score INTEGER,
    phq4_depression_score INTEGER,
    created_at TIMESTAMP WITH TIME ZONE NOT NULL DEFAULT NOW(),
    CONSTRAINT uq_daily_checkins_user_day UNIQUE (user_id, date_submitted)
);
'''


def get_conn(db_url: str | None = None):
    """Return a new psycopg connection (default: `settings.db_url`).

    We add a short `connect_timeout` so HTTP requests don't hang
    indefinitely if the database is unreachable.
    """

    return psycopg.connect(db_url or settings.db_url, connect_timeout=5)


def init_schema() -> None:
    """Apply `SCHEMA_SQL`. Idempotent."""

    with get_conn() as conn:
        with conn.cursor() as cur:
            cur.execute(SCHEMA_SQL)
        conn.commit()

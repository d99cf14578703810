#!/usr/bin/env python3
"""
Migration Script: copy legacy daily_checkins rows into health_events.

Usage:
    python migrate_checkins_to_events.py [--batch-size 500] [--user USER_ID]

Prerequisites:
    - PostgreSQL running with the novara database
    - create_tables.py already applied
"""

import argparse
import os
import sys

from psycopg.rows import dict_row

sys.path.insert(0, os.path.dirname(os.path.abspath(__file__)) + '/..')

from backfill import backfill_checkins
from db import get_conn
from logging_setup import configure_logging
from mapper_checkins import CompatibilityMapper
from repo_events import EventRepo
from settings import settings


def fetch_batch(conn, user_id, batch_size, after_id):
    """Keyset-paginate legacy rows in insertion order."""
    sql = "SELECT * FROM daily_checkins WHERE id > %s"
    params = [after_id]
    if user_id:
        sql += " AND user_id = %s"
        params.append(user_id)
    sql += " ORDER BY id ASC LIMIT %s"
    params.append(batch_size)
    with conn.cursor(row_factory=dict_row) as cur:
        cur.execute(sql, params)
        return cur.fetchall()


def main():
    parser = argparse.ArgumentParser(description=__doc__.splitlines()[1])
    parser.add_argument('--batch-size', type=int, default=500)
    parser.add_argument('--user', default=None, help='only migrate this user_id')
    args = parser.parse_args()

    configure_logging(settings.log_level, settings.log_json)

    print(f"Connecting to {settings.db_url}...")
    try:
        conn = get_conn()
    except Exception as e:
        print(f"ERROR: Could not connect to database: {e}")
        sys.exit(1)

    repo = EventRepo()
    mapper = CompatibilityMapper()
    totals = {'migrated': 0, 'skipped': 0, 'failed': 0}
    after_id = 0

    try:
        while True:
            rows = fetch_batch(conn, args.user, args.batch_size, after_id)
            if not rows:
                break
            after_id = rows[-1]['id']
            report = backfill_checkins(rows, repo, mapper)
            totals['migrated'] += report.migrated
            totals['skipped'] += report.skipped
            totals['failed'] += len(report.failed)
            for failure in report.failed:
                print(f"  ⚠️  Row {failure['id']} not migrated: {failure['error']}")
            print(f"  ...{totals['migrated']} migrated, {totals['skipped']} skipped so far")
    finally:
        conn.close()

    print("\n" + "=" * 80)
    print(f"✓ MIGRATION COMPLETE: {totals['migrated']} migrated, "
          f"{totals['skipped']} skipped, {totals['failed']} failed")
    print("=" * 80)
    if totals['failed']:
        sys.exit(2)


if __name__ == '__main__':
    main()

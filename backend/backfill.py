"""
Backfill legacy `daily_checkins` rows into `health_events`.

Migrated events get `source='migration'` and NO `correlation_id`; the
compatibility view regroups them by user and day on its separate,
logged path. No synthetic correlation ids are invented.

Each row is its own transaction (via `EventRepo.insert_checkin`), which
also claims the user's day in `checkin_submissions`. Rows whose day is
already claimed are skipped, so re-running the backfill is safe and new
V2 submissions for a migrated day still conflict.
"""

import json
from dataclasses import dataclass, field
from typing import Any, Dict, Iterable, List, Mapping

import structlog

from errors import DuplicateCheckinError, SchemaError
from mapper_checkins import CompatibilityMapper
from models import MIGRATION_SOURCE
from repo_checkins import JSON_COLUMNS, LEGACY_COLUMNS
from repo_events import EventRepo

logger = structlog.get_logger(__name__)


@dataclass
class BackfillReport:
    migrated: int = 0
    skipped: int = 0
    failed: List[Dict[str, Any]] = field(default_factory=list)
    unmapped: int = 0


def _as_list(value: Any) -> Any:
    # older rows stored list columns as JSON text, or as a bare string
    if isinstance(value, str):
        try:
            parsed = json.loads(value)
        except ValueError:
            return [value]
        return parsed if isinstance(parsed, list) else [value]
    return value


def legacy_payload(row: Mapping[str, Any]) -> Dict[str, Any]:
    payload = {}
    for column in LEGACY_COLUMNS:
        if column == "user_id" or row.get(column) is None:
            continue
        value = row[column]
        payload[column] = _as_list(value) if column in JSON_COLUMNS else value
    return payload


def backfill_checkins(
    rows: Iterable[Mapping[str, Any]],
    repo: EventRepo,
    mapper: CompatibilityMapper,
) -> BackfillReport:
    report = BackfillReport()
    for row in rows:
        user_id = str(row["user_id"])
        try:
            d = mapper.decompose(user_id, legacy_payload(row), source=MIGRATION_SOURCE, correlate=False)
        except SchemaError as exc:
            report.failed.append({"id": row.get("id"), "fields": exc.fields, "error": str(exc)})
            logger.warning("backfill_row_invalid", row_id=row.get("id"), fields=exc.fields)
            continue
        if d.unmapped is not None:
            report.unmapped += 1
        if d.is_empty:
            report.skipped += 1
            continue
        try:
            repo.insert_checkin(user_id, d.checkin_date, None, d.events, source=MIGRATION_SOURCE)
        except DuplicateCheckinError:
            report.skipped += 1
            continue
        report.migrated += 1

    logger.info(
        "backfill_batch_done",
        migrated=report.migrated,
        skipped=report.skipped,
        failed=len(report.failed),
    )
    return report

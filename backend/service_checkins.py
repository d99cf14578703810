"""
Service / facade layer for legacy-shaped check-ins.

`CheckinService` is the dual-schema router. It is built from a `Settings`
object and reads `use_schema_v2` once, in the constructor:

- `legacy-only`: check-ins live in the flat `daily_checkins` table.
- `v2-with-compat-view`: check-ins are decomposed into `health_events`
  and rebuilt by the compatibility view on read.

Both modes validate through the same mapper, so they accept and reject
the same payloads and return the same field set. This module is free of
SQL; repositories do the I/O.

Key responsibilities:
- reject invalid fields (`SchemaError`) before anything is written
- report unmapped fields (warning, or rejection in strict mode)
- surface duplicate same-day check-ins as `DuplicateCheckinError`
- clamp read limits to configured bounds
"""

from dataclasses import dataclass, field
from datetime import date, datetime, timedelta, timezone
from enum import Enum
from typing import Any, Callable, Dict, List, Mapping, Optional
from uuid import UUID

import structlog

import analytics
from errors import DuplicateCheckinError, SchemaError
from models import MIGRATION_SOURCE
from event_registry import EventTypeRegistry
from mapper_checkins import CheckinDecomposition, CompatibilityMapper
from repo_checkins import LegacyCheckinRepo
from repo_events import EventRepo
from settings import Settings
from view_checkins import CompatibilityView

logger = structlog.get_logger(__name__)


def _is_row_id(value: str) -> bool:
    # str.isdigit() alone accepts non-ASCII digits that int() rejects
    return value.isascii() and value.isdigit()


class SchemaMode(str, Enum):
    LEGACY_ONLY = "legacy-only"
    V2_WITH_COMPAT_VIEW = "v2-with-compat-view"


@dataclass
class CheckinWriteResult:
    checkin: Dict[str, Any]
    schema_mode: SchemaMode
    event_ids: List[str] = field(default_factory=list)
    correlation_id: Optional[str] = None
    warnings: List[UserWarning] = field(default_factory=list)

    def as_dict(self) -> Dict[str, Any]:
        return {
            "checkin": self.checkin,
            "schema_mode": self.schema_mode.value,
            "event_ids": self.event_ids,
            "correlation_id": self.correlation_id,
            "warnings": [w.as_dict() for w in self.warnings],
        }


@dataclass
class CheckinReadResult:
    checkins: List[Dict[str, Any]]
    schema_mode: SchemaMode
    warnings: List[UserWarning] = field(default_factory=list)

    def as_dict(self) -> Dict[str, Any]:
        return {
            "checkins": self.checkins,
            "count": len(self.checkins),
            "schema_mode": self.schema_mode.value,
            "warnings": [w.as_dict() for w in self.warnings],
        }


class CheckinService:
    """Routes check-in writes/reads to the legacy table or the event store.

    Example usage:
        svc = CheckinService(Settings(use_schema_v2=True), EventRepo(), LegacyCheckinRepo())
        svc.create_checkin("u1", {"mood_today": "hopeful", "confidence_today": 8})
    """

    def __init__(
        self,
        config: Settings,
        event_repo: EventRepo,
        legacy_repo: LegacyCheckinRepo,
        registry: Optional[EventTypeRegistry] = None,
        clock: Optional[Callable[[], datetime]] = None,
    ):
        self.config = config
        self.mode = (
            SchemaMode.V2_WITH_COMPAT_VIEW if config.use_schema_v2 else SchemaMode.LEGACY_ONLY
        )
        self.event_repo = event_repo
        self.legacy_repo = legacy_repo
        self.mapper = CompatibilityMapper(registry, clock)
        self.view = CompatibilityView(registry)
        self._clock = clock or (lambda: datetime.now(timezone.utc))
        logger.info("checkin_schema_mode_selected", schema_mode=self.mode.value)

    @property
    def uses_events(self) -> bool:
        return self.mode is SchemaMode.V2_WITH_COMPAT_VIEW

    # -- write path -------------------------------------------------------

    def create_checkin(
        self,
        user_id: str,
        payload: Mapping[str, Any],
        caller_user: Optional[str] = None,
    ) -> CheckinWriteResult:
        """Validate, decompose, and persist one legacy check-in.

        Raises:
        - `SchemaError` for invalid fields (or unmapped ones in strict mode)
        - `DuplicateCheckinError` if the user already checked in that day
        - `PermissionError` if `caller_user` writes for another user
        """

        if caller_user and caller_user != user_id:
            raise PermissionError("Cannot submit check-ins for another user")

        decomposition = self.mapper.decompose(user_id, payload)
        warnings: List[UserWarning] = []
        if decomposition.unmapped is not None:
            fields = decomposition.unmapped.fields
            if self.config.strict_unmapped_fields:
                logger.warning("checkin_rejected_unmapped_fields", user_id=user_id, fields=fields)
                raise SchemaError("checkin", "legacy", fields, "not stored by any event type")
            logger.warning("checkin_unmapped_fields", user_id=user_id, fields=fields)
            warnings.append(decomposition.unmapped)

        if decomposition.is_empty:
            logger.info("checkin_empty", user_id=user_id)
            return CheckinWriteResult(
                checkin=self.view.empty_checkin(user_id=user_id),
                schema_mode=self.mode,
                warnings=warnings,
            )

        if self.uses_events:
            result = self._create_with_events(decomposition)
        else:
            result = self._create_legacy(decomposition)
        result.warnings = warnings
        logger.info(
            "checkin_created",
            user_id=user_id,
            schema_mode=self.mode.value,
            checkin_id=result.checkin["id"],
            event_count=len(result.event_ids),
        )
        return result

    def _create_with_events(self, d: CheckinDecomposition) -> CheckinWriteResult:
        try:
            stored = self.event_repo.insert_checkin(
                d.user_id, d.checkin_date, d.correlation_id, d.events
            )
        except DuplicateCheckinError as exc:
            self._attach_existing(exc)
            raise

        reconstructed = self.view.reconstruct(stored)
        return CheckinWriteResult(
            checkin=reconstructed.checkins[0],
            schema_mode=self.mode,
            event_ids=[e.id for e in stored],
            correlation_id=str(d.correlation_id),
        )

    def _create_legacy(self, d: CheckinDecomposition) -> CheckinWriteResult:
        row = self.view.project(d.events, user_id=d.user_id, date_submitted=d.checkin_date)
        try:
            stored = self.legacy_repo.insert_checkin(row)
        except DuplicateCheckinError as exc:
            self._attach_existing(exc)
            raise
        return CheckinWriteResult(checkin=self.view.from_legacy_row(stored), schema_mode=self.mode)

    def _attach_existing(self, exc: DuplicateCheckinError) -> None:
        exc.existing = self._existing_checkin(exc.user_id, exc.checkin_date)
        logger.warning(
            "checkin_duplicate",
            user_id=exc.user_id,
            checkin_date=exc.checkin_date.isoformat(),
            existing_id=exc.existing["id"] if exc.existing else None,
        )

    def _existing_checkin(self, user_id: str, checkin_date: date) -> Optional[Dict[str, Any]]:
        if self.uses_events:
            found = self.view.reconstruct(
                self.event_repo.fetch_events(user_id, checkin_date, checkin_date)
            ).checkins
            return found[0] if found else None
        row = self.legacy_repo.find_by_user_and_date(user_id, checkin_date)
        return self.view.from_legacy_row(row) if row else None

    # -- read path --------------------------------------------------------

    def _today(self) -> date:
        return self._clock().astimezone(timezone.utc).date()

    def _clamp_limit(self, limit: Optional[int]) -> int:
        if limit is None:
            limit = self.config.default_checkin_limit
        return max(1, min(limit, self.config.max_checkin_limit))

    def get_checkins(
        self,
        user_id: str,
        start_date: Optional[date] = None,
        end_date: Optional[date] = None,
        limit: Optional[int] = None,
        newest_first: bool = True,
    ) -> CheckinReadResult:
        """Check-ins in `[start_date, end_date]`, at most `limit` of them.

        Without `start_date` the range starts `checkin_lookback_days` before
        `end_date` (or today), so a read never loads a user's whole history.
        """

        limit = self._clamp_limit(limit)
        if start_date is None:
            start_date = (end_date or self._today()) - timedelta(days=self.config.checkin_lookback_days)

        if not self.uses_events:
            rows = self.legacy_repo.fetch_checkins(user_id, start_date, end_date, limit, newest_first)
            return CheckinReadResult([self.view.from_legacy_row(r) for r in rows], self.mode)

        events = self.event_repo.fetch_events(user_id, start_date, end_date)
        result = self.view.reconstruct(events, newest_first=newest_first)
        checkins = result.checkins[:limit]
        returned = {c["id"] for c in checkins}
        warnings = [w for w in result.inconsistencies if w.checkin_id in returned]
        return CheckinReadResult(checkins, self.mode, warnings)

    def get_checkin(self, user_id: str, checkin_id: str) -> Optional[CheckinReadResult]:
        """One check-in by id (correlation id, or event id for day groups)."""

        if not self.uses_events:
            if not _is_row_id(checkin_id):
                return None
            row = self.legacy_repo.fetch_checkin(user_id, checkin_id)
            if row is None:
                return None
            return CheckinReadResult([self.view.from_legacy_row(row)], self.mode)

        try:
            events = self.event_repo.fetch_correlation(user_id, UUID(checkin_id))
        except ValueError:
            events = self._day_group_events(user_id, checkin_id)
        result = self.view.reconstruct(events)
        matches = [c for c in result.checkins if c["id"] == checkin_id]
        if not matches:
            return None
        warnings = [w for w in result.inconsistencies if w.checkin_id == checkin_id]
        return CheckinReadResult(matches, self.mode, warnings)

    def _day_group_events(self, user_id: str, event_id: str) -> list:
        if not _is_row_id(event_id):
            return []
        event = self.event_repo.fetch_event(user_id, event_id)
        if event is None or event.correlation_id is not None or event.source != MIGRATION_SOURCE:
            return []
        day = event.occurred_at.astimezone(timezone.utc).date()
        return [
            e for e in self.event_repo.fetch_events(user_id, day, day)
            if e.correlation_id is None and e.source == MIGRATION_SOURCE
        ]

    def get_analytics(self, user_id: str, timeframe: str = "week") -> Dict[str, Any]:
        if timeframe not in analytics.TIMEFRAME_DAYS:
            raise ValueError(
                f"Unsupported timeframe: {timeframe} (use {', '.join(analytics.TIMEFRAME_DAYS)})"
            )
        today = self._today()
        start = today - timedelta(days=analytics.TIMEFRAME_DAYS[timeframe])
        result = self.get_checkins(
            user_id,
            start_date=start,
            end_date=today,
            limit=self.config.max_checkin_limit,
            newest_first=False,
        )
        summary = analytics.summarize(result.checkins, timeframe)
        summary["schema_mode"] = self.mode.value
        return summary

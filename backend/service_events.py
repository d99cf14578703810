"""
Service / facade layer for direct health-event access.

This module implements business rules and normalization before any DB
interaction. It is free of SQL; it calls `EventRepo` to
perform database operations. Legacy check-ins go through
`CheckinService`; this service is for clients that already speak
Schema V2.

Key responsibilities:
- protect the system (max batch sizes)
- validate event semantics against the `EventTypeRegistry`
- enforce timestamp rules (timezone-awareness + UTC normalization)
- refuse V2-only operations while running `legacy-only`
- perform (future) permission checks using `caller_user`
- keep check-in groups intact: a `correlation_id` may only amend an
  existing check-in, at that check-in's `occurred_at`
"""

from typing import Dict, List, Optional, Tuple
from datetime import datetime, timezone
from uuid import UUID

import structlog

from errors import SchemaUnavailableError
from event_registry import EventTypeRegistry, registry as default_registry
from models import MIGRATION_SOURCE, HealthEvent, HealthEventIn
from repo_events import EventRepo
from settings import Settings

logger = structlog.get_logger(__name__)


class EventService:
    """Business rules + validation + normalization.

    Example usage:
        svc = EventService(settings, EventRepo())
        svc.ingest_events(events, caller_user='alice')
    """

    def __init__(
        self,
        config: Settings,
        repo: EventRepo,
        registry: Optional[EventTypeRegistry] = None,
    ):
        self.config = config
        self.repo = repo
        self.registry = registry or default_registry

    def _require_v2(self) -> None:
        if not self.config.use_schema_v2:
            raise SchemaUnavailableError(
                "Schema V2 not available. Enable with USE_SCHEMA_V2=true"
            )

    def ingest_events(
        self, events: List[HealthEventIn], caller_user: Optional[str] = None
    ) -> List[HealthEvent]:
        """Validate and persist a batch of events in one transaction.

        Steps:
        1. Quick guards (V2 enabled, empty list, batch size limit).
        2. Validate and normalize each `HealthEventIn` in-place.
        3. Delegate to `EventRepo.insert_events()` for the DB write.

        Raises:
        - `UnknownEventTypeError` / `SchemaError` (both `ValueError`)
        - `ValueError` for a missing tzinfo, an oversized batch, a reserved
          `source`, or a `correlation_id` that does not name an existing
          check-in at the same `occurred_at`
        - `PermissionError` if `caller_user` attempts to write for another user
        - `SchemaUnavailableError` in legacy-only mode
        """

        # 1) protect the system
        self._require_v2()
        if len(events) == 0:
            return []
        if len(events) > self.config.max_batch_size:
            raise ValueError(
                f"Too many events in one request: {len(events)} (max {self.config.max_batch_size})"
            )

        # 2) validate/normalize each event
        for e in events:
            schema = self.registry.get(e.event_type, e.event_subtype)
            e.event_subtype = schema.event_subtype
            data = self.registry.validate(e.event_type, e.event_data, e.event_subtype)
            e.event_data = data.model_dump(exclude_none=True)

            # Must be timezone-aware
            if e.occurred_at.tzinfo is None:
                raise ValueError("occurred_at must include timezone info (e.g., 2026-02-20T10:00:00Z)")

            # Normalize to UTC; the repository stores timestamps as UTC.
            e.occurred_at = e.occurred_at.astimezone(timezone.utc)

            if caller_user and e.user_id != caller_user:
                raise PermissionError("Cannot write events for another user")

            if e.source == MIGRATION_SOURCE:
                raise ValueError(f"source {MIGRATION_SOURCE!r} is reserved for the check-in backfill")

        self._check_corrections(events)

        # 3) DB write via repository
        stored = self.repo.insert_events(events)
        logger.info(
            "health_events_ingested",
            count=len(stored),
            event_types=sorted({e.event_type for e in stored}),
        )
        return stored

    def _check_corrections(self, events: List[HealthEventIn]) -> None:
        """Correlated events may only amend a check-in that already exists.

        New check-ins go through `CheckinService`, which claims the user's
        day. Uncorrelated events are standalone timeline entries and never
        read back as check-ins.
        """

        groups: Dict[Tuple[str, UUID], datetime] = {}
        for e in events:
            if e.correlation_id is None:
                continue
            key = (e.user_id, e.correlation_id)
            if key not in groups:
                existing = self.repo.fetch_correlation(e.user_id, e.correlation_id)
                if not existing:
                    raise ValueError(
                        f"Unknown correlation_id {e.correlation_id}; submit new check-ins to /checkins"
                    )
                groups[key] = existing[0].occurred_at
            if e.occurred_at != groups[key]:
                raise ValueError(
                    f"occurred_at must match the check-in it amends ({groups[key].isoformat()})"
                )

    def get_timeline(self, user_id: str, limit: int) -> List[HealthEvent]:
        """Return raw events for `user_id` capped by configured limits."""

        self._require_v2()
        limit = max(1, min(limit, self.config.max_timeline_limit))
        return self.repo.fetch_timeline(user_id, limit)

    def health_check(self) -> None:
        """Perform a lightweight DB ping via the repository."""

        self.repo.ping()

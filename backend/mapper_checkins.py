"""
Compatibility mapper: legacy check-in payload -> typed health events.

One legacy submission becomes at most one event per registered type. All
events of a submission share one `correlation_id` and one `occurred_at`
(derived from `date_submitted`, or "now" when absent), so the view can put
the check-in back together later.

Keys no registered type claims are never dropped silently: they come back
as an `UnmappedFieldWarning` on the decomposition for the caller to report.
This module only builds events; persisting them is the repository's job.
"""

from dataclasses import dataclass, field
from datetime import date, datetime, timezone
from typing import Any, Callable, Dict, List, Mapping, Optional
from uuid import UUID, uuid4

import structlog

from errors import SchemaError, UnmappedFieldWarning
from event_registry import EventTypeRegistry, registry as default_registry
from models import HealthEventIn

logger = structlog.get_logger(__name__)

# Keys describing the submission itself rather than any event.
ENVELOPE_FIELDS = frozenset({"date_submitted"})


@dataclass
class CheckinDecomposition:
    user_id: str
    occurred_at: datetime
    correlation_id: Optional[UUID]
    events: List[HealthEventIn] = field(default_factory=list)
    unmapped: Optional[UnmappedFieldWarning] = None

    @property
    def checkin_date(self) -> date:
        return self.occurred_at.date()

    @property
    def is_empty(self) -> bool:
        return not self.events


def parse_occurred_at(value: Any, now: datetime) -> datetime:
    """Resolve `date_submitted` to an aware UTC datetime.

    A bare date means midnight UTC of that day. Datetimes must carry a
    timezone, same rule as direct event ingest.
    """

    if value is None or value == "":
        return now.astimezone(timezone.utc)
    try:
        if isinstance(value, datetime):
            parsed = value
        elif isinstance(value, date):
            parsed = datetime(value.year, value.month, value.day, tzinfo=timezone.utc)
        elif isinstance(value, str) and len(value) == 10:
            d = date.fromisoformat(value)
            parsed = datetime(d.year, d.month, d.day, tzinfo=timezone.utc)
        elif isinstance(value, str):
            parsed = datetime.fromisoformat(value.replace("Z", "+00:00"))
        else:
            raise ValueError(f"unsupported type {type(value).__name__}")
    except ValueError as exc:
        raise SchemaError("checkin", "legacy", ["date_submitted"], str(exc)) from exc

    if parsed.tzinfo is None:
        raise SchemaError(
            "checkin", "legacy", ["date_submitted"],
            "must be a date or include timezone info (e.g., 2025-07-24T10:00:00Z)",
        )
    return parsed.astimezone(timezone.utc)


class CompatibilityMapper:
    """Legacy check-in -> events. Stateless apart from its registry and clock."""

    def __init__(
        self,
        registry: Optional[EventTypeRegistry] = None,
        clock: Optional[Callable[[], datetime]] = None,
    ):
        self.registry = registry or default_registry
        self._clock = clock or (lambda: datetime.now(timezone.utc))

    def decompose(
        self,
        user_id: str,
        payload: Mapping[str, Any],
        source: str = "api",
        correlate: bool = True,
    ) -> CheckinDecomposition:
        """Partition `payload` by owning event type and validate each event.

        `correlate=False` leaves `correlation_id` empty; only historical
        backfills use it, and the view regroups those events by day.

        Raises `SchemaError` naming every invalid legacy field.
        """

        occurred_at = parse_occurred_at(payload.get("date_submitted"), self._clock())
        result = CheckinDecomposition(
            user_id=user_id,
            occurred_at=occurred_at,
            correlation_id=uuid4() if correlate else None,
        )

        claimed: Dict[tuple, Dict[str, Any]] = {}
        unmapped: List[str] = []
        for key, value in payload.items():
            if key in ENVELOPE_FIELDS:
                continue
            owner = self.registry.owner_of(key)
            if owner is None:
                unmapped.append(key)
                continue
            claimed.setdefault(owner.key, {})[key] = value

        errors: List[SchemaError] = []
        for schema in self.registry.schemas():
            values = claimed.get(schema.key)
            if not values:
                continue
            raw = schema.absorb(values)
            if raw is None:
                continue
            try:
                data = self.registry.validate(schema.event_type, raw, schema.event_subtype)
            except SchemaError as exc:
                errors.append(exc)
                continue
            result.events.append(HealthEventIn(
                user_id=user_id,
                event_type=schema.event_type,
                event_subtype=schema.event_subtype,
                event_data=data.model_dump(exclude_none=True),
                occurred_at=occurred_at,
                correlation_id=result.correlation_id,
                source=source,
            ))

        if len(errors) == 1:
            raise errors[0]
        if errors:
            raise SchemaError(
                "checkin", "legacy",
                [f for e in errors for f in e.fields],
                "; ".join(e.detail for e in errors if e.detail),
            )

        if unmapped:
            result.unmapped = UnmappedFieldWarning(unmapped)

        logger.debug(
            "checkin_decomposed",
            user_id=user_id,
            correlation_id=str(result.correlation_id) if result.correlation_id else None,
            event_types=[e.event_type for e in result.events],
            unmapped=unmapped,
        )
        return result

"""
Compatibility view: health events -> legacy-shaped check-in records.

Nothing here touches the database; `reconstruct()` is a pure function of
the events it is given. Records always carry every legacy field (null
when no event supplies it), so consumers never branch on schema version.

Grouping has two paths:
- events with a `correlation_id` are grouped by it (one submission each);
- events without one that came from the historical backfill are grouped
  by user and UTC day. This path is logged every time it is taken.

Other uncorrelated events are standalone timeline entries and are not
part of any check-in.

Events are immutable, so a correction is a later event of the same type
in the same group. The latest one wins; the superseded one is reported.

Data that contradicts itself inside a group is reported as a
`ReconstructionInconsistency` next to a best-effort record; reads never
fail because of it.
"""

from dataclasses import dataclass, field
from datetime import date, datetime, timezone
from typing import Any, Dict, Iterable, List, Mapping, Optional, Tuple

import structlog

from errors import ReconstructionInconsistency, UnknownEventTypeError
from event_registry import EventSchema, EventTypeRegistry, registry as default_registry
from models import MIGRATION_SOURCE, HealthEvent, HealthEventIn

logger = structlog.get_logger(__name__)

ENVELOPE_OUTPUT = ("id", "user_id", "date_submitted", "created_at")
LIST_FIELDS = ("side_effects", "coping_strategies_used", "wish_knew_more_about")

CORRELATION = "correlation"
DAY = "day"


@dataclass
class EventGroup:
    kind: str
    key: Tuple[str, ...]
    user_id: str
    events: List[HealthEvent] = field(default_factory=list)

    @property
    def checkin_id(self) -> str:
        if self.kind == CORRELATION:
            return self.key[1]
        # uncorrelated groups borrow their first event's id
        return self.events[0].id

    @property
    def occurred_at(self) -> datetime:
        return min(e.occurred_at for e in self.events)


@dataclass
class ReconstructionResult:
    checkins: List[Dict[str, Any]] = field(default_factory=list)
    inconsistencies: List[ReconstructionInconsistency] = field(default_factory=list)


def _iso(value: Any) -> Optional[str]:
    if value is None:
        return None
    if isinstance(value, (date, datetime)):
        return value.isoformat()
    return str(value)


class CompatibilityView:
    def __init__(self, registry: Optional[EventTypeRegistry] = None):
        self.registry = registry or default_registry

    @property
    def field_names(self) -> List[str]:
        return list(ENVELOPE_OUTPUT) + self.registry.legacy_fields()

    def empty_checkin(self, **envelope: Any) -> Dict[str, Any]:
        record: Dict[str, Any] = {name: None for name in ENVELOPE_OUTPUT}
        for schema in self.registry.schemas():
            record.update(schema.empty_projection())
        record.update(envelope)
        return record

    def project(self, events: Iterable[HealthEventIn], **envelope: Any) -> Dict[str, Any]:
        """Flatten not-yet-stored events of one submission (legacy write path)."""

        record = self.empty_checkin(**envelope)
        for event in events:
            schema = self.registry.get(event.event_type, event.event_subtype)
            record.update(schema.project(event.event_data))
        return record

    def group(self, events: Iterable[HealthEvent]) -> List[EventGroup]:
        """Group events, keeping first-seen order (callers pass insertion order).

        Uncorrelated events outside the backfill are left out.
        """

        groups: Dict[Tuple[str, ...], EventGroup] = {}
        for event in events:
            if event.correlation_id is not None:
                key: Tuple[str, ...] = (CORRELATION, str(event.correlation_id))
                kind = CORRELATION
            elif event.source != MIGRATION_SOURCE:
                continue
            else:
                day = event.occurred_at.astimezone(timezone.utc).date().isoformat()
                key = (DAY, event.user_id, day)
                kind = DAY
            group = groups.get(key)
            if group is None:
                group = groups[key] = EventGroup(kind=kind, key=key, user_id=event.user_id)
            group.events.append(event)
        return list(groups.values())

    def flatten(self, group: EventGroup) -> Tuple[Dict[str, Any], List[ReconstructionInconsistency]]:
        issues: List[ReconstructionInconsistency] = []
        checkin_id = group.checkin_id

        occurred = sorted({e.occurred_at for e in group.events})
        if group.kind == CORRELATION and len(occurred) > 1:
            issues.append(ReconstructionInconsistency(
                checkin_id,
                "events disagree on occurred_at",
                {"occurred_at": [o.isoformat() for o in occurred]},
            ))

        record = self.empty_checkin(
            id=checkin_id,
            user_id=group.user_id,
            date_submitted=occurred[0].astimezone(timezone.utc).date().isoformat(),
            created_at=_iso(min(e.created_at for e in group.events)),
        )

        # group.events is in insertion order, so the last one seen is the latest
        latest: Dict[Tuple[str, str], Tuple[EventSchema, HealthEvent]] = {}
        for event in group.events:
            try:
                schema = self.registry.get(event.event_type, event.event_subtype)
            except UnknownEventTypeError:
                logger.debug("checkin_event_skipped", event_id=event.id, event_type=event.event_type)
                continue
            if schema.key in latest:
                issues.append(ReconstructionInconsistency(
                    checkin_id,
                    f"{schema.event_type}/{schema.event_subtype} superseded by a later event",
                    {"superseded": latest[schema.key][1].id, "kept": event.id},
                ))
            latest[schema.key] = (schema, event)

        for schema, event in latest.values():
            record.update(schema.project(event.event_data))
        return record, issues

    def reconstruct(self, events: Iterable[HealthEvent], newest_first: bool = True) -> ReconstructionResult:
        groups = self.group(events)
        day_groups = [g for g in groups if g.kind == DAY]
        if day_groups:
            logger.info(
                "checkins_grouped_by_day",
                count=len(day_groups),
                days=[g.key[2] for g in day_groups],
            )

        # stable sort: equal timestamps keep insertion order
        groups.sort(key=lambda g: g.occurred_at, reverse=newest_first)

        result = ReconstructionResult()
        for group in groups:
            record, issues = self.flatten(group)
            result.checkins.append(record)
            result.inconsistencies.extend(issues)

        for issue in result.inconsistencies:
            logger.warning(
                "checkin_reconstruction_inconsistent",
                checkin_id=issue.checkin_id,
                reason=issue.reason,
                **issue.details,
            )
        return result

    def from_legacy_row(self, row: Mapping[str, Any]) -> Dict[str, Any]:
        """Shape a legacy `daily_checkins` row like a reconstructed record."""

        record = self.empty_checkin()
        for name in record:
            if name in row and row[name] is not None:
                record[name] = row[name]
        record["id"] = _iso(record["id"])
        record["date_submitted"] = _iso(record["date_submitted"])
        record["created_at"] = _iso(record["created_at"])
        for name in LIST_FIELDS:
            if record[name] == []:
                record[name] = None
        return record

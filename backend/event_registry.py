"""
Event type registry for `health_events`.

Each `(event_type, event_subtype)` pair is bound to:
- a Pydantic payload model (the shape of `event_data`), and
- the legacy check-in fields it absorbs on write and produces on read.

The mapper (write path) and the view (read path) both go through the
registry, so a legacy field round-trips through exactly one event type.
Payload models allow extra keys: they are stored untouched but are not
surfaced on reconstruction.

Registration order matters: it is the order events are emitted for one
check-in and the order legacy fields appear in reconstructed records.
"""

from typing import Any, Dict, FrozenSet, Iterable, List, Literal, Mapping, Optional, Tuple, Type

from pydantic import BaseModel, ConfigDict, Field, ValidationError, ValidationInfo, field_validator

from errors import SchemaError, UnknownEventTypeError


class EventData(BaseModel):
    model_config = ConfigDict(extra="allow")


class MoodData(EventData):
    mood: str = Field(min_length=1)
    confidence: Optional[int] = Field(default=None, ge=1, le=10)
    anxiety_level: Optional[int] = Field(default=None, ge=1, le=10)
    note: Optional[str] = None
    primary_concern: Optional[str] = Field(default=None, max_length=500)
    injection_confidence: Optional[int] = Field(default=None, ge=1, le=10)
    partner_involved: Optional[bool] = None
    appointment_within_3_days: Optional[bool] = None
    appointment_anxiety: Optional[int] = Field(default=None, ge=1, le=10)
    coping_strategies: Optional[List[str]] = None
    info_needs: Optional[List[str]] = None


class MedicationData(EventData):
    status: Literal["taken", "missed"]
    missed_doses: Optional[int] = Field(default=None, ge=0)


class SymptomData(EventData):
    symptoms: List[str] = Field(min_length=1)
    related_to: str = "medication"


def phq4_severity(total: int) -> str:
    if total >= 9:
        return "severe"
    if total >= 6:
        return "moderate"
    if total >= 3:
        return "mild"
    return "minimal"


class Phq4Data(EventData):
    """PHQ-4 answers (0-3 each) plus scores fixed at write time.

    Scores are computed when absent and must match when supplied, so a
    stored assessment never disagrees with its own answers.
    """

    feeling_nervous: int = Field(ge=0, le=3)
    stop_worrying: int = Field(ge=0, le=3)
    little_interest: int = Field(ge=0, le=3)
    feeling_down: int = Field(ge=0, le=3)
    anxiety_score: Optional[int] = Field(default=None, validate_default=True)
    depression_score: Optional[int] = Field(default=None, validate_default=True)
    total_score: Optional[int] = Field(default=None, validate_default=True)
    severity: Optional[str] = Field(default=None, validate_default=True)

    @field_validator("anxiety_score", "depression_score", "total_score")
    @classmethod
    def _check_score(cls, value: Optional[int], info: ValidationInfo) -> Optional[int]:
        parts = {
            "anxiety_score": ("feeling_nervous", "stop_worrying"),
            "depression_score": ("little_interest", "feeling_down"),
            "total_score": ("feeling_nervous", "stop_worrying", "little_interest", "feeling_down"),
        }[info.field_name]
        if any(p not in info.data for p in parts):
            # an answer already failed validation
            return value
        expected = sum(info.data[p] for p in parts)
        if value is not None and value != expected:
            raise ValueError(f"must equal the sum of its answers ({expected})")
        return expected

    @field_validator("severity")
    @classmethod
    def _check_severity(cls, value: Optional[str], info: ValidationInfo) -> Optional[str]:
        total = info.data.get("total_score")
        if total is None:
            return value
        return phq4_severity(total)


class EventSchema:
    """Binds one `(event_type, event_subtype)` to its payload and legacy fields.

    `field_map` maps legacy check-in field -> `event_data` key. `defaults`
    gives the legacy value reported when a check-in has no event of this
    type (fields not listed default to `None`).
    """

    def __init__(
        self,
        event_type: str,
        event_subtype: str,
        data_model: Type[EventData],
        field_map: Mapping[str, str],
        defaults: Optional[Mapping[str, Any]] = None,
    ):
        self.event_type = event_type
        self.event_subtype = event_subtype
        self.data_model = data_model
        self.field_map: Dict[str, str] = dict(field_map)
        self.defaults: Dict[str, Any] = dict(defaults or {})
        self._legacy_by_key = {v: k for k, v in self.field_map.items()}

    @property
    def key(self) -> Tuple[str, str]:
        return (self.event_type, self.event_subtype)

    @property
    def legacy_fields(self) -> FrozenSet[str]:
        return frozenset(self.field_map)

    def legacy_name(self, data_key: str) -> str:
        return self._legacy_by_key.get(data_key, data_key)

    def absorb(self, values: Mapping[str, Any]) -> Optional[Dict[str, Any]]:
        """Turn claimed legacy values into raw `event_data`, or `None` for no event."""

        data = {self.field_map[k]: v for k, v in values.items() if v is not None}
        return data or None

    def project(self, event_data: Mapping[str, Any]) -> Dict[str, Any]:
        """Turn stored `event_data` back into legacy fields."""

        return {legacy: event_data.get(key) for legacy, key in self.field_map.items()}

    def empty_projection(self) -> Dict[str, Any]:
        return {legacy: self.defaults.get(legacy) for legacy in self.field_map}

    def __repr__(self) -> str:
        return f"EventSchema({self.event_type!r}, {self.event_subtype!r})"


MEDICATION_STATUS = {"yes": "taken", "no": "missed"}
NOT_TRACKED = "not tracked"


class MedicationSchema(EventSchema):
    """`medication_taken` is a tri-state; `not tracked` means no event."""

    def absorb(self, values):
        taken = values.get("medication_taken")
        missed = values.get("missed_doses")
        data: Dict[str, Any] = {}
        if taken is None or taken == NOT_TRACKED:
            if not missed:
                return None
        else:
            data["status"] = MEDICATION_STATUS.get(taken, taken) if isinstance(taken, str) else taken
        if missed is not None:
            data["missed_doses"] = missed
        return data

    def project(self, event_data):
        status = event_data.get("status")
        return {
            "medication_taken": {"taken": "yes", "missed": "no"}.get(status, NOT_TRACKED),
            "missed_doses": event_data.get("missed_doses"),
        }


class SymptomSchema(EventSchema):
    def absorb(self, values):
        symptoms = values.get("side_effects")
        if symptoms is None or symptoms == []:
            return None
        return {"symptoms": symptoms, "related_to": "medication"}


class EventTypeRegistry:
    """The closed-at-any-time vocabulary of health event types."""

    def __init__(self, schemas: Iterable[EventSchema] = ()):
        self._schemas: Dict[Tuple[str, str], EventSchema] = {}
        self._default_subtype: Dict[str, str] = {}
        self._owners: Dict[str, EventSchema] = {}
        for schema in schemas:
            self.register(schema)

    def register(self, schema: EventSchema) -> None:
        if schema.key in self._schemas:
            raise ValueError(f"{schema!r} is already registered")
        for legacy in schema.legacy_fields:
            owner = self._owners.get(legacy)
            if owner is not None:
                raise ValueError(f"Legacy field {legacy!r} is already owned by {owner!r}")
        self._schemas[schema.key] = schema
        self._default_subtype.setdefault(schema.event_type, schema.event_subtype)
        for legacy in schema.legacy_fields:
            self._owners[legacy] = schema

    def event_types(self) -> List[str]:
        return list(self._default_subtype)

    def schemas(self) -> List[EventSchema]:
        return list(self._schemas.values())

    def get(self, event_type: str, event_subtype: Optional[str] = None) -> EventSchema:
        if event_subtype is None:
            event_subtype = self._default_subtype.get(event_type)
        schema = self._schemas.get((event_type, event_subtype))
        if schema is None:
            raise UnknownEventTypeError(event_type, event_subtype)
        return schema

    def fields_for(self, event_type: str, event_subtype: Optional[str] = None) -> FrozenSet[str]:
        return self.get(event_type, event_subtype).legacy_fields

    def owner_of(self, legacy_field: str) -> Optional[EventSchema]:
        return self._owners.get(legacy_field)

    def legacy_fields(self) -> List[str]:
        return [f for schema in self._schemas.values() for f in schema.field_map]

    def validate(
        self,
        event_type: str,
        event_data: Mapping[str, Any],
        event_subtype: Optional[str] = None,
    ) -> EventData:
        """Validate `event_data`; raise `SchemaError` naming the bad fields."""

        schema = self.get(event_type, event_subtype)
        try:
            return schema.data_model.model_validate(dict(event_data))
        except ValidationError as exc:
            fields = []
            details = []
            for err in exc.errors():
                loc = err.get("loc") or ()
                name = schema.legacy_name(str(loc[0])) if loc else schema.event_type
                fields.append(name)
                details.append(f"{name}: {err.get('msg')}")
            raise SchemaError(
                schema.event_type, schema.event_subtype, fields, "; ".join(details)
            ) from exc


def build_default_registry() -> EventTypeRegistry:
    return EventTypeRegistry([
        EventSchema("mood", "daily_checkin", MoodData, {
            "mood_today": "mood",
            "confidence_today": "confidence",
            "anxiety_level": "anxiety_level",
            "user_note": "note",
            "primary_concern_today": "primary_concern",
            "injection_confidence": "injection_confidence",
            "partner_involved_today": "partner_involved",
            "appointment_within_3_days": "appointment_within_3_days",
            "appointment_anxiety": "appointment_anxiety",
            "coping_strategies_used": "coping_strategies",
            "wish_knew_more_about": "info_needs",
        }),
        MedicationSchema("medication", "daily_status", MedicationData, {
            "medication_taken": "status",
            "missed_doses": "missed_doses",
        }, defaults={"medication_taken": NOT_TRACKED}),
        SymptomSchema("symptom", "side_effect", SymptomData, {
            "side_effects": "symptoms",
        }),
        EventSchema("assessment", "phq4", Phq4Data, {
            "phq4_feeling_nervous": "feeling_nervous",
            "phq4_stop_worrying": "stop_worrying",
            "phq4_little_interest": "little_interest",
            "phq4_feeling_down": "feeling_down",
            "phq4_total_score": "total_score",
            "phq4_anxiety_score": "anxiety_score",
            "phq4_depression_score": "depression_score",
        }),
    ])


registry = build_default_registry()

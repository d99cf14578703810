"""
Pydantic models used across the backend.

Input shapes validate at the FastAPI route boundary and are reused in
service/repo layers. `HealthEvent` is the stored shape returned by the
repository; keep DB-only fields (`id`, `created_at`) out of the input
models.

The per-type `event_data` payload models live in `event_registry`, next
to the legacy field mapping that uses them.
"""

from pydantic import BaseModel, ConfigDict, Field
from typing import Any, Dict, Optional
from datetime import datetime
from uuid import UUID

# Events copied from the flat table. Only these may lack a correlation_id
# and still be read back as a check-in.
MIGRATION_SOURCE = "migration"


class HealthEventIn(BaseModel):
    """Input shape for one health event.

    Fields:
    - `user_id`: owning user.
    - `event_type`: registered type (validated by `EventTypeRegistry`).
    - `event_subtype`: qualifier; `None` means the type's default subtype.
    - `event_data`: JSON payload validated against the registered schema.
    - `occurred_at`: real-world time. Service enforces timezone-awareness.
    - `correlation_id`: shared by every event from one check-in submission.
    - `source`: provenance tag (e.g., `api`, `migration`).
    """

    user_id: str
    event_type: str
    event_subtype: Optional[str] = None
    event_data: Dict[str, Any] = Field(default_factory=dict)
    occurred_at: datetime
    correlation_id: Optional[UUID] = None
    source: str = "api"


class HealthEvent(HealthEventIn):
    """A stored, immutable event row."""

    id: str
    event_subtype: str
    created_at: datetime


class CheckinIn(BaseModel):
    """Legacy check-in body: `user_id` plus flat, optional check-in fields.

    Unknown keys are accepted here; the mapper decides which are
    stored and reports the rest as unmapped.
    """

    model_config = ConfigDict(extra="allow")

    user_id: str

    def legacy_fields(self) -> Dict[str, Any]:
        return dict(self.model_extra or {})

"""
Domain errors and warnings for the check-in compatibility layer.

Errors are raised by the service layer and translated into HTTP status
codes in `main.py`. Warnings are never raised: they are collected,
logged, and returned alongside a successful response.

- `UnknownEventTypeError` / `SchemaError` subclass `ValueError`, so any
  caller that already treats `ValueError` as "bad input" keeps working.
- `UnmappedFieldWarning` / `ReconstructionInconsistency` subclass
  `UserWarning` and serialize themselves with `as_dict()`.
"""

from datetime import date
from typing import Any, Dict, Iterable, List, Optional


class CheckinError(Exception):
    """Base class for check-in compatibility errors."""


class UnknownEventTypeError(CheckinError, ValueError):
    def __init__(self, event_type: str, event_subtype: Optional[str] = None):
        self.event_type = event_type
        self.event_subtype = event_subtype
        label = event_type if event_subtype is None else f"{event_type}/{event_subtype}"
        super().__init__(f"Unknown event type: {label}")


class SchemaError(CheckinError, ValueError):
    """`event_data` failed validation for its `(event_type, event_subtype)`.

    `fields` names the offending fields using legacy check-in names where a
    mapping exists, so API callers see the keys they actually sent.
    """

    def __init__(
        self,
        event_type: str,
        event_subtype: str,
        fields: Iterable[str],
        detail: str = "",
    ):
        self.event_type = event_type
        self.event_subtype = event_subtype
        self.fields: List[str] = sorted(set(fields))
        self.detail = detail
        message = f"Invalid {event_type}/{event_subtype} data"
        if self.fields:
            message += f" for fields: {', '.join(self.fields)}"
        if detail:
            message += f" ({detail})"
        super().__init__(message)


class DuplicateCheckinError(CheckinError):
    def __init__(
        self,
        user_id: str,
        checkin_date: date,
        existing: Optional[Dict[str, Any]] = None,
    ):
        self.user_id = user_id
        self.checkin_date = checkin_date
        self.existing = existing
        super().__init__(
            f"Check-in already submitted for {user_id} on {checkin_date.isoformat()}"
        )


class SchemaUnavailableError(CheckinError):
    """A Schema V2-only operation was requested in legacy-only mode."""


class UnmappedFieldWarning(UserWarning):
    def __init__(self, fields: Iterable[str]):
        self.fields: List[str] = sorted(set(fields))
        super().__init__(f"Fields not stored: {', '.join(self.fields)}")

    def as_dict(self) -> Dict[str, Any]:
        return {"type": "UnmappedFieldWarning", "fields": self.fields}


class ReconstructionInconsistency(UserWarning):
    def __init__(self, checkin_id: str, reason: str, details: Optional[Dict[str, Any]] = None):
        self.checkin_id = checkin_id
        self.reason = reason
        self.details = details or {}
        super().__init__(f"Check-in {checkin_id}: {reason}")

    def as_dict(self) -> Dict[str, Any]:
        return {
            "type": "ReconstructionInconsistency",
            "checkin_id": self.checkin_id,
            "reason": self.reason,
            "details": self.details,
        }

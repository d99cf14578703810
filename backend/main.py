from fastapi import Depends, FastAPI, HTTPException, Query
from typing import List, Optional
from datetime import date

import structlog

from errors import DuplicateCheckinError, SchemaError, SchemaUnavailableError, UnknownEventTypeError
from logging_setup import configure_logging
from models import CheckinIn, HealthEventIn
from repo_checkins import LegacyCheckinRepo
from repo_events import EventRepo
from service_checkins import CheckinService
from service_events import EventService
from settings import settings

configure_logging(settings.log_level, settings.log_json)
logger = structlog.get_logger(__name__)

app = FastAPI(title="Novara Check-in Backend")

# Repos + services are built once from `settings`; the schema flag is read
# here and nowhere else. Tests override the `get_*_service` dependencies.
event_repo = EventRepo()
checkin_svc = CheckinService(settings, event_repo, LegacyCheckinRepo())
event_svc = EventService(settings, event_repo)


def get_checkin_service() -> CheckinService:
    return checkin_svc


def get_event_service() -> EventService:
    return event_svc


def _bad_request(e: ValueError) -> HTTPException:
    if isinstance(e, SchemaError):
        return HTTPException(status_code=400, detail={"error": str(e), "fields": e.fields})
    if isinstance(e, UnknownEventTypeError):
        return HTTPException(status_code=400, detail={"error": str(e), "event_type": e.event_type})
    return HTTPException(status_code=400, detail=str(e))


@app.get("/health")
def health(svc: EventService = Depends(get_event_service)):
    try:
        svc.health_check()
        return {"ok": True}
    except Exception as e:
        logger.exception("health_check_failed")
        raise HTTPException(status_code=500, detail=f"DB health check failed: {e}")


@app.post("/checkins", status_code=201)
def create_checkin(body: CheckinIn, svc: CheckinService = Depends(get_checkin_service)):
    try:
        result = svc.create_checkin(body.user_id, body.legacy_fields(), caller_user=None)  # later: auth user here
    except DuplicateCheckinError as e:
        raise HTTPException(status_code=409, detail={
            "error": "You have already submitted a check-in for today. Please try again tomorrow.",
            "existing_checkin": e.existing,
        })
    except PermissionError as e:
        raise HTTPException(status_code=403, detail=str(e))
    except ValueError as e:
        raise _bad_request(e)
    except Exception as e:
        logger.exception("checkin_create_failed", user_id=body.user_id)
        raise HTTPException(status_code=500, detail=f"Check-in failed: {e}")
    return {"success": True, **result.as_dict()}


@app.get("/checkins")
def list_checkins(
    user_id: str = Query(...),
    start_date: Optional[date] = None,
    end_date: Optional[date] = None,
    limit: Optional[int] = None,
    order: str = Query("desc", pattern="^(asc|desc)$"),
    svc: CheckinService = Depends(get_checkin_service),
):
    try:
        result = svc.get_checkins(
            user_id, start_date, end_date, limit, newest_first=(order == "desc")
        )
    except Exception as e:
        logger.exception("checkin_list_failed", user_id=user_id)
        raise HTTPException(status_code=500, detail=f"Check-in lookup failed: {e}")
    return {"success": True, **result.as_dict()}


@app.get("/checkins/{checkin_id}")
def get_checkin(
    checkin_id: str,
    user_id: str = Query(...),
    svc: CheckinService = Depends(get_checkin_service),
):
    try:
        result = svc.get_checkin(user_id, checkin_id)
    except Exception as e:
        logger.exception("checkin_get_failed", user_id=user_id, checkin_id=checkin_id)
        raise HTTPException(status_code=500, detail=f"Check-in lookup failed: {e}")
    if result is None:
        raise HTTPException(status_code=404, detail="Check-in not found")
    body = result.as_dict()
    return {
        "success": True,
        "checkin": body["checkins"][0],
        "schema_mode": body["schema_mode"],
        "warnings": body["warnings"],
    }


@app.post("/events")
def ingest(events: List[HealthEventIn], svc: EventService = Depends(get_event_service)):
    try:
        stored = svc.ingest_events(events, caller_user=None)  # later: auth user here
        return {"inserted": len(stored), "event_ids": [e.id for e in stored]}
    except SchemaUnavailableError as e:
        raise HTTPException(status_code=503, detail=str(e))
    except PermissionError as e:
        raise HTTPException(status_code=403, detail=str(e))
    except ValueError as e:
        raise _bad_request(e)
    except Exception as e:
        logger.exception("event_ingest_failed")
        raise HTTPException(status_code=500, detail=f"Insert failed: {e}")


@app.get("/timeline")
def timeline(
    user_id: str = Query(...),
    limit: int = 200,
    svc: EventService = Depends(get_event_service),
):
    try:
        return svc.get_timeline(user_id, limit)
    except SchemaUnavailableError as e:
        raise HTTPException(status_code=503, detail=str(e))
    except Exception as e:
        logger.exception("timeline_failed", user_id=user_id)
        raise HTTPException(status_code=500, detail=f"Timeline failed: {e}")


@app.get("/analytics")
def checkin_analytics(
    user_id: str = Query(...),
    timeframe: str = "week",
    svc: CheckinService = Depends(get_checkin_service),
):
    try:
        return svc.get_analytics(user_id, timeframe)
    except ValueError as e:
        raise _bad_request(e)
    except Exception as e:
        logger.exception("analytics_failed", user_id=user_id)
        raise HTTPException(status_code=500, detail=f"Analytics failed: {e}")

from __future__ import annotations
from datetime import datetime
from typing import Any, Dict, List, Optional
import logging

import pytz

from google.auth.exceptions import RefreshError
from google.oauth2.credentials import Credentials
from googleapiclient.discovery import build
from googleapiclient.errors import HttpError

from daybrief.errors import NotAuthenticated, UpstreamFailure
from daybrief.services.days import bucket_events, four_day_window, window_from_today

log = logging.getLogger(__name__)

DEBUG_SAMPLE_SIZE = 5

def build_service(creds: Credentials):
    return build("calendar", "v3", credentials=creds, cache_discovery=False)

def _execute(request) -> Dict[str, Any]:
    try:
        return request.execute()
    except RefreshError as e:
        log.info("Access token refresh rejected: %s", e)
        raise NotAuthenticated() from e
    except HttpError as e:
        if e.resp is not None and e.resp.status == 401:
            raise NotAuthenticated() from e
        raise UpstreamFailure(_http_error_message(e)) from e

def _http_error_message(e: HttpError) -> str:
    return getattr(e, "reason", None) or str(e)

def list_events(service, calendar_id: str, start: datetime, end: Optional[datetime] = None,
                max_results: Optional[int] = None) -> List[Dict[str, Any]]:
    if start.tzinfo is None or (end is not None and end.tzinfo is None):
        raise ValueError("list_events requires tz-aware datetimes")
    params: Dict[str, Any] = {
        "calendarId": calendar_id,
        "timeMin": start.isoformat(),
        "singleEvents": True,
        "orderBy": "startTime",
    }
    if end is not None:
        params["timeMax"] = end.isoformat()
    if max_results is not None:
        params["maxResults"] = max_results
    resp = _execute(service.events().list(**params))
    return resp.get("items", [])

def fetch_window(service, tz: str, days_forward: int = 1, calendar_id: str = "primary",
                 now: Optional[datetime] = None) -> List[Dict[str, Any]]:
    start, end = window_from_today(tz, days_forward, now)
    return list_events(service, calendar_id, start, end)

def fetch_four_day_view(service, tz: str, calendar_id: str = "primary",
                        now: Optional[datetime] = None) -> Dict[str, Any]:
    start, end = four_day_window(tz, now)
    events = list_events(service, calendar_id, start, end)
    return {"days": bucket_events(events, tz, now)}

def list_calendars_with_sample(service, tz: str, now: Optional[datetime] = None) -> List[Dict[str, Any]]:
    """Every visible calendar with up to five upcoming events each.

    A failing calendar is reported with an ``error`` entry and no events
    instead of failing the whole listing.
    """
    resp = _execute(service.calendarList().list())
    calendars = resp.get("items")
    if not isinstance(calendars, list):
        raise UpstreamFailure("Calendar list response had no items")

    start = now or datetime.now(pytz.timezone(tz))
    out = []
    for cal in calendars:
        entry: Dict[str, Any] = {"calendarId": cal.get("id"), "summary": cal.get("summary"), "events": []}
        try:
            entry["events"] = list_events(service, cal.get("id"), start, max_results=DEBUG_SAMPLE_SIZE)
        except UpstreamFailure as e:
            log.warning("Sample fetch failed for calendar %s: %s", cal.get("id"), e.message)
            entry["error"] = e.message
        out.append(entry)
    return out

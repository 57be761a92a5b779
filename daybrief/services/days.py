from __future__ import annotations
from datetime import date, datetime, timedelta
from typing import Any, Dict, List, Optional, Tuple

import pytz
from dateutil import parser as dtparser

LABELS = {-1: "Yesterday", 0: "Today", 1: "Tomorrow", 2: "Day After"}

def start_of_day(d: date, tz) -> datetime:
    return tz.localize(datetime(d.year, d.month, d.day))

def today_in(tzname: str, now: Optional[datetime] = None) -> date:
    tz = pytz.timezone(tzname)
    now = now or datetime.now(tz)
    if now.tzinfo is None:
        now = tz.localize(now)
    return now.astimezone(tz).date()

def window_from_today(tzname: str, days_forward: int, now: Optional[datetime] = None) -> Tuple[datetime, datetime]:
    tz = pytz.timezone(tzname)
    today = today_in(tzname, now)
    return start_of_day(today, tz), start_of_day(today + timedelta(days=days_forward), tz)

def four_day_window(tzname: str, now: Optional[datetime] = None) -> Tuple[datetime, datetime]:
    """Start of yesterday to the end of the day after tomorrow, local time."""
    tz = pytz.timezone(tzname)
    today = today_in(tzname, now)
    return start_of_day(today - timedelta(days=1), tz), start_of_day(today + timedelta(days=3), tz)

def label_for(day: date, today: date) -> str:
    offset = (day - today).days
    return LABELS.get(offset, day.strftime("%A"))

def event_day_key(event: Dict[str, Any], tzname: str) -> Optional[str]:
    """Local ``YYYY-MM-DD`` of an event's start, or None if it has no usable start."""
    start = event.get("start") or {}
    if start.get("dateTime"):
        try:
            dt = dtparser.isoparse(start["dateTime"])
        except ValueError:
            return None
        tz = pytz.timezone(tzname)
        dt = tz.localize(dt) if dt.tzinfo is None else dt.astimezone(tz)
        return dt.strftime("%Y-%m-%d")
    if start.get("date"):
        return start["date"][:10]
    return None

def bucket_events(events: List[Dict[str, Any]], tzname: str, now: Optional[datetime] = None) -> List[Dict[str, Any]]:
    today = today_in(tzname, now)
    days = [today + timedelta(days=offset) for offset in (-1, 0, 1, 2)]
    buckets = [
        {"key": d.strftime("%Y-%m-%d"), "label": label_for(d, today), "events": []}
        for d in days
    ]
    by_key = {b["key"]: b for b in buckets}
    for ev in events:
        bucket = by_key.get(event_day_key(ev, tzname))
        # events starting outside the four days are dropped
        if bucket is not None:
            bucket["events"].append(ev)
    return buckets

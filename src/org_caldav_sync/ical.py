"""
iCalendar encoding and decoding of event fields.
"""

import hashlib
from datetime import date
from datetime import datetime
from datetime import time
from datetime import timedelta
from datetime import timezone

from icalendar import Calendar
from icalendar import Event

from org_caldav_sync.models import CalendarSyncError
from org_caldav_sync.models import EventFields

PRODID = "-//org-caldav-sync//EN"

# Properties that servers often add/modify and should be ignored for change detection
_VOLATILE_PROPS = ("DTSTAMP", "LAST-MODIFIED", "CREATED", "SEQUENCE")


class ICalError(CalendarSyncError):
    """iCalendar data that cannot be turned into event fields."""


def _parse(ical_string: str):
    try:
        return Calendar.from_ical(ical_string)
    except ValueError as e:
        raise ICalError(f"Invalid iCalendar data: {e}") from e


def _first_vevent(ical_string: str) -> Event:
    """Return the first VEVENT, whether or not it is wrapped in a VCALENDAR."""
    comp = _parse(ical_string)
    if comp.name == "VEVENT":
        return comp
    for sub in comp.walk("VEVENT"):
        return sub
    raise ICalError("No VEVENT component found")


def _to_local_naive(value: datetime) -> datetime:
    if value.tzinfo is None:
        return value
    return value.astimezone().replace(tzinfo=None)


def event_to_ical(uid: str, fields: EventFields) -> str:
    """Build a single VEVENT for an event.

    Timed events use floating local datetimes.  All-day events use DATE
    values with an exclusive DTEND, as RFC 5545 requires.
    """
    event = Event()
    event.add("uid", uid)
    event.add("summary", fields.title)
    if fields.all_day:
        event.add("dtstart", fields.start_date)
        event.add("dtend", fields.end_date + timedelta(days=1))
    else:
        start = datetime.combine(fields.start_date, fields.start_time)
        end = datetime.combine(fields.end_date, fields.end_time or fields.start_time)
        event.add("dtstart", start)
        event.add("dtend", end)
    if fields.body:
        event.add("description", fields.body)
    return event.to_ical().decode("utf-8")


def encode(event_ics: str, sequence: int, preamble: str | None = None) -> str:
    """Wrap a VEVENT into a VCALENDAR ready to be stored remotely.

    ``preamble`` is an optional VCALENDAR whose top-level properties and
    VTIMEZONE components are carried over.  Pushes from a sync run send
    floating times and pass none.
    """
    event = _first_vevent(event_ics)
    if "SEQUENCE" in event:
        del event["SEQUENCE"]
    event.add("sequence", sequence)
    if "DTSTAMP" not in event:
        event.add("dtstamp", datetime.now(timezone.utc))

    cal = Calendar()
    if preamble:
        header = _parse(preamble)
        for key, value in header.items():
            cal.add(key, value)
        for sub in header.subcomponents:
            if sub.name == "VTIMEZONE":
                cal.add_component(sub)
    if "PRODID" not in cal:
        cal.add("prodid", PRODID)
    if "VERSION" not in cal:
        cal.add("version", "2.0")
    cal.add_component(event)
    return cal.to_ical().decode("utf-8")


def decode(ical_string: str) -> EventFields:
    """Extract title, start/end and body from the first VEVENT."""
    event = _first_vevent(ical_string)
    if "DTSTART" not in event:
        raise ICalError("VEVENT has no DTSTART")

    start = event.decoded("DTSTART")
    if "DTEND" in event:
        end = event.decoded("DTEND")
    elif "DURATION" in event:
        end = start + event.decoded("DURATION")
    else:
        end = None

    title = str(event.get("SUMMARY", ""))
    body = str(event.get("DESCRIPTION", "")).rstrip("\n")

    if isinstance(start, datetime):
        start = _to_local_naive(start)
        if isinstance(end, datetime):
            end = _to_local_naive(end)
        elif isinstance(end, date):
            end = datetime.combine(end, time())
        else:
            end = start
        end = max(end, start)
        return EventFields(
            title=title,
            start_date=start.date(),
            start_time=start.time().replace(second=0, microsecond=0),
            end_date=end.date(),
            end_time=end.time().replace(second=0, microsecond=0),
            body=body,
        )

    # All-day: DTEND is exclusive
    if isinstance(end, datetime):
        end = end.date()
    end_date = end - timedelta(days=1) if end else start
    return EventFields(
        title=title,
        start_date=start,
        end_date=max(end_date, start),
        body=body,
    )


def sequence_of(ical_string: str) -> int | None:
    """Return the SEQUENCE of the first VEVENT, or None if absent."""
    event = _first_vevent(ical_string)
    if "SEQUENCE" not in event:
        return None
    try:
        return int(event.decoded("SEQUENCE"))
    except (TypeError, ValueError) as e:
        raise ICalError(f"Invalid SEQUENCE: {e}") from e


def compute_hash(ical_string: str) -> str:
    """
    Generate SHA256 hash of iCal content for change detection.

    Normalizes the content by removing volatile server-added properties
    to prevent false change detection.
    """
    comp = _parse(ical_string)
    events = [comp] if comp.name == "VEVENT" else comp.walk("VEVENT")
    for event in events:
        for prop in _VOLATILE_PROPS:
            if prop in event:
                del event[prop]
    return hashlib.sha256(comp.to_ical()).hexdigest()

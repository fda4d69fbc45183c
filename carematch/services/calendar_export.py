"""iCalendar export of a single appointment."""

from datetime import datetime, timezone
from typing import Any
from zoneinfo import ZoneInfo

from pydantic import BaseModel

from carematch.core.config import LifecyclePolicy, load_policy
from carematch.services.temporal_policy import end_datetime, start_datetime

PRODUCT_ID = '-//carematch//Appointments//EN'
UID_DOMAIN = 'carematch'
DEFAULT_LOCATION = 'Not specified'
ONLINE_LOCATION = 'Online video call'


class CalendarEvent(BaseModel):
    start: datetime
    end: datetime
    summary: str
    description: str
    location: str
    unique_id: str


def _escape(value: str) -> str:
    return (
        value.replace('\\', '\\\\')
        .replace(';', '\\;')
        .replace(',', '\\,')
        .replace('\r\n', '\\n')
        .replace('\n', '\\n')
    )


def _format_utc(moment: datetime, policy: LifecyclePolicy) -> str:
    aware = moment if moment.tzinfo else moment.replace(tzinfo=ZoneInfo(policy.timezone))
    return aware.astimezone(ZoneInfo('UTC')).strftime('%Y%m%dT%H%M%SZ')


def build_calendar_event(appointment: Any, educator_name: str | None = None) -> CalendarEvent:
    counterpart = educator_name or 'your educator'
    description_lines = [f'Appointment with {counterpart}']
    if appointment.notes:
        description_lines.append(f'Notes: {appointment.notes}')

    if appointment.location_type == 'online':
        location = ONLINE_LOCATION
    else:
        location = appointment.address or DEFAULT_LOCATION

    return CalendarEvent(
        start=start_datetime(appointment),
        end=end_datetime(appointment),
        summary=f'Appointment - {counterpart}',
        description='\n'.join(description_lines),
        location=location,
        unique_id=f'{appointment.id}@{UID_DOMAIN}',
    )


def render_ics(
    event: CalendarEvent,
    policy: LifecyclePolicy | None = None,
    generated_at: datetime | None = None,
) -> str:
    """Render ``event`` as a VCALENDAR; DTSTAMP is when the file was produced."""
    policy = policy or load_policy()
    generated_at = generated_at or datetime.now(timezone.utc)
    lines = [
        'BEGIN:VCALENDAR',
        'VERSION:2.0',
        f'PRODID:{PRODUCT_ID}',
        'CALSCALE:GREGORIAN',
        'METHOD:PUBLISH',
        'BEGIN:VEVENT',
        f'UID:{event.unique_id}',
        f'DTSTAMP:{_format_utc(generated_at, policy)}',
        f'DTSTART:{_format_utc(event.start, policy)}',
        f'DTEND:{_format_utc(event.end, policy)}',
        f'SUMMARY:{_escape(event.summary)}',
        f'DESCRIPTION:{_escape(event.description)}',
        f'LOCATION:{_escape(event.location)}',
        'STATUS:CONFIRMED',
        'END:VEVENT',
        'END:VCALENDAR',
    ]
    return '\r\n'.join(lines) + '\r\n'

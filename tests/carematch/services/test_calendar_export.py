from datetime import date, datetime, time, timezone
from types import SimpleNamespace

from carematch.core.config import LifecyclePolicy
from carematch.services import calendar_export


def make_appointment(**overrides) -> SimpleNamespace:
    fields = {
        'id': 42,
        'date': date(2026, 3, 10),
        'start_time': time(14, 0),
        'end_time': time(15, 0),
        'location_type': 'home',
        'address': '12 rue des Lilas, Lyon',
        'notes': 'Bring the sensory kit',
    }
    fields.update(overrides)
    return SimpleNamespace(**fields)


def test_build_calendar_event_has_exact_field_set() -> None:
    event = calendar_export.build_calendar_event(make_appointment(), educator_name='Alex Durand')

    assert set(event.model_dump()) == {'start', 'end', 'summary', 'description', 'location', 'unique_id'}
    assert event.start == datetime(2026, 3, 10, 14, 0)
    assert event.end == datetime(2026, 3, 10, 15, 0)
    assert event.summary == 'Appointment - Alex Durand'
    assert event.description == 'Appointment with Alex Durand\nNotes: Bring the sensory kit'
    assert event.location == '12 rue des Lilas, Lyon'
    assert event.unique_id == '42@carematch'


def test_online_appointments_use_video_location() -> None:
    event = calendar_export.build_calendar_event(make_appointment(location_type='online', address=None))

    assert event.location == 'Online video call'


def test_render_ics_uses_utc_stamps_and_crlf() -> None:
    event = calendar_export.build_calendar_event(make_appointment(), educator_name='Alex Durand')

    ics = calendar_export.render_ics(event, LifecyclePolicy(timezone='Europe/Paris'))
    lines = ics.split('\r\n')

    assert lines[0] == 'BEGIN:VCALENDAR'
    assert 'DTSTART:20260310T130000Z' in lines
    assert 'DTEND:20260310T140000Z' in lines
    assert 'UID:42@carematch' in lines
    assert 'LOCATION:12 rue des Lilas\\, Lyon' in lines
    assert 'DESCRIPTION:Appointment with Alex Durand\\nNotes: Bring the sensory kit' in lines
    assert ics.endswith('END:VCALENDAR\r\n')


def test_render_ics_stamps_generation_time_not_event_start() -> None:
    event = calendar_export.build_calendar_event(make_appointment(), educator_name='Alex Durand')
    policy = LifecyclePolicy(timezone='Europe/Paris')

    naive = calendar_export.render_ics(event, policy, generated_at=datetime(2026, 2, 1, 9, 30)).split('\r\n')
    aware = calendar_export.render_ics(
        event, policy, generated_at=datetime(2026, 2, 1, 8, 30, tzinfo=timezone.utc)
    ).split('\r\n')

    assert 'DTSTAMP:20260201T083000Z' in naive
    assert 'DTSTAMP:20260201T083000Z' in aware
    assert 'DTSTAMP:20260310T130000Z' not in naive


def test_render_ics_defaults_stamp_to_current_time() -> None:
    event = calendar_export.build_calendar_event(make_appointment(date=date(2031, 6, 1)))

    before = datetime.now(timezone.utc).replace(microsecond=0)
    lines = calendar_export.render_ics(event, LifecyclePolicy(timezone='Europe/Paris')).split('\r\n')
    after = datetime.now(timezone.utc)

    stamp = next(line for line in lines if line.startswith('DTSTAMP:'))
    stamped_at = datetime.strptime(stamp, 'DTSTAMP:%Y%m%dT%H%M%SZ').replace(tzinfo=timezone.utc)
    assert before <= stamped_at <= after

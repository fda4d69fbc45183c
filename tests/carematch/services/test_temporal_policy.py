from datetime import date, datetime, time, timedelta, timezone
from types import SimpleNamespace

import pytest

from carematch.core.config import LifecyclePolicy
from carematch.services import temporal_policy

POLICY = LifecyclePolicy()
DAY = date(2026, 3, 10)


def make_appointment(**overrides) -> SimpleNamespace:
    fields = {
        'date': DAY,
        'start_time': time(14, 0),
        'end_time': time(15, 0),
        'location_type': 'online',
        'started_at': None,
    }
    fields.update(overrides)
    return SimpleNamespace(**fields)


def at(hour: int, minute: int = 0, second: int = 0, day: date = DAY) -> datetime:
    return datetime.combine(day, time(hour, minute, second))


def test_scheduled_duration_is_end_minus_start() -> None:
    appointment = make_appointment(start_time=time(9, 30), end_time=time(11, 0))

    assert temporal_policy.scheduled_duration(appointment) == timedelta(minutes=90)


def test_can_cancel_is_true_exactly_at_cutoff() -> None:
    appointment = make_appointment()
    now = at(14, 0) - timedelta(hours=48)

    assert temporal_policy.can_cancel(appointment, now, POLICY).allowed is True


def test_can_cancel_is_false_one_second_after_cutoff() -> None:
    appointment = make_appointment()
    now = at(14, 0) - timedelta(hours=47, minutes=59, seconds=59)

    decision = temporal_policy.can_cancel(appointment, now, POLICY)

    assert decision.allowed is False
    assert decision.hours_remaining == 47
    assert '48 hours' in decision.reason


def test_can_cancel_reports_zero_hours_once_started() -> None:
    decision = temporal_policy.can_cancel(make_appointment(), at(16, 0), POLICY)

    assert decision.allowed is False
    assert decision.hours_remaining == 0


def test_can_report_no_show_opens_after_grace_period() -> None:
    appointment = make_appointment()

    assert temporal_policy.can_report_no_show(appointment, at(15, 0), POLICY).allowed is True
    assert temporal_policy.can_report_no_show(appointment, at(15, 30), POLICY).allowed is True


def test_can_report_no_show_reports_minutes_remaining() -> None:
    decision = temporal_policy.can_report_no_show(make_appointment(), at(14, 20, 30), POLICY)

    assert decision.allowed is False
    assert decision.minutes_remaining == 40


def test_can_report_no_show_waits_for_end_of_long_slot() -> None:
    appointment = make_appointment(start_time=time(14, 0), end_time=time(17, 0))

    during_slot = temporal_policy.can_report_no_show(appointment, at(15, 0), POLICY)
    just_before_end = temporal_policy.can_report_no_show(appointment, at(16, 59, 59), POLICY)

    assert during_slot.allowed is False
    assert during_slot.minutes_remaining == 120
    assert just_before_end.allowed is False
    assert just_before_end.minutes_remaining == 1
    assert temporal_policy.can_report_no_show(appointment, at(17, 0), POLICY).allowed is True


def test_can_report_no_show_keeps_grace_period_for_short_slot() -> None:
    appointment = make_appointment(start_time=time(14, 0), end_time=time(14, 30))

    assert temporal_policy.can_report_no_show(appointment, at(14, 59), POLICY).allowed is False
    assert temporal_policy.can_report_no_show(appointment, at(15, 0), POLICY).allowed is True


def test_can_report_no_show_is_false_once_session_started() -> None:
    appointment = make_appointment(started_at=at(14, 5))

    decision = temporal_policy.can_report_no_show(appointment, at(16, 0), POLICY)

    assert decision.allowed is False
    assert decision.minutes_remaining is None


@pytest.mark.parametrize(
    ('now', 'expected'),
    [
        (at(13, 44), False),
        (at(13, 45), True),
        (at(13, 46), True),
        (at(14, 30), True),
        (at(15, 0), True),
        (at(15, 0, 1), False),
    ],
)
def test_can_join_video_call_window(now: datetime, expected: bool) -> None:
    assert temporal_policy.can_join_video_call(make_appointment(), now, POLICY).allowed is expected


@pytest.mark.parametrize('location_type', ['home', 'office'])
def test_can_join_video_call_is_false_when_not_online(location_type: str) -> None:
    appointment = make_appointment(location_type=location_type)

    for now in (at(13, 50), at(14, 0), at(14, 30)):
        assert temporal_policy.can_join_video_call(appointment, now, POLICY).allowed is False


def test_can_join_video_call_requires_same_day() -> None:
    appointment = make_appointment(start_time=time(0, 5), end_time=time(1, 0))
    previous_evening = datetime(2026, 3, 9, 23, 55)

    decision = temporal_policy.can_join_video_call(appointment, previous_evening, POLICY)

    assert decision.allowed is False


def test_can_complete_session_is_boundary_inclusive() -> None:
    appointment = make_appointment(started_at=at(14, 7, 30))

    exactly = at(15, 7, 30)
    one_second_early = exactly - timedelta(seconds=1)

    assert temporal_policy.can_complete_session(appointment, exactly, POLICY).allowed is True
    early = temporal_policy.can_complete_session(appointment, one_second_early, POLICY)
    assert early.allowed is False
    assert early.seconds_remaining == 1
    assert early.minutes_remaining == 1


def test_can_complete_session_requires_start() -> None:
    decision = temporal_policy.can_complete_session(make_appointment(), at(16, 0), POLICY)

    assert decision.allowed is False
    assert decision.reason == 'The session has not been started.'


def test_can_start_session_closes_after_end_time() -> None:
    appointment = make_appointment()

    assert temporal_policy.can_start_session(appointment, at(15, 0), POLICY).allowed is True
    assert temporal_policy.can_start_session(appointment, at(15, 0, 1), POLICY).allowed is False


def test_aware_now_is_converted_to_platform_wall_clock() -> None:
    # 12:46 UTC is 13:46 in Paris during winter time.
    now = datetime(2026, 3, 10, 12, 46, tzinfo=timezone.utc)

    assert temporal_policy.to_wall_clock(now, POLICY) == at(13, 46)
    assert temporal_policy.can_join_video_call(make_appointment(), now, POLICY).allowed is True


def test_evaluate_collects_every_decision() -> None:
    snapshot = temporal_policy.evaluate(make_appointment(), at(13, 50), POLICY)

    assert snapshot.can_join_video_call.allowed is True
    assert snapshot.can_cancel.allowed is False
    assert snapshot.can_report_no_show.allowed is False
    assert snapshot.can_start_session.allowed is True
    assert snapshot.can_complete_session.allowed is False


def test_custom_policy_windows_are_honoured() -> None:
    policy = LifecyclePolicy(cancellation_cutoff_hours=24, video_join_lead_minutes=5)
    appointment = make_appointment()

    assert temporal_policy.can_cancel(appointment, at(14, 0) - timedelta(hours=24), policy).allowed is True
    assert temporal_policy.can_join_video_call(appointment, at(13, 54), policy).allowed is False
    assert temporal_policy.can_join_video_call(appointment, at(13, 55), policy).allowed is True

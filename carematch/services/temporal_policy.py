"""Pure time-window rules for appointment actions.

Every function takes the appointment and the current time and answers whether
an action is allowed right now. Nothing here touches the database or the
clock: callers pass ``now`` explicitly, which is what makes the windows
testable down to the second.

All instants are naive wall-clock datetimes in the platform timezone. The
appointment's ``date`` and ``start_time``/``end_time`` columns are combined
as-is, and a timezone-aware ``now`` is converted into the platform timezone
before comparison.
"""

import math
from datetime import date, datetime, timedelta
from typing import Any
from zoneinfo import ZoneInfo

from pydantic import BaseModel

from carematch.core.config import LifecyclePolicy, load_policy


class PolicyDecision(BaseModel):
    allowed: bool
    reason: str | None = None
    hours_remaining: int | None = None
    minutes_remaining: int | None = None
    seconds_remaining: int | None = None


class PolicySnapshot(BaseModel):
    can_cancel: PolicyDecision
    can_report_no_show: PolicyDecision
    can_join_video_call: PolicyDecision
    can_start_session: PolicyDecision
    can_complete_session: PolicyDecision


def local_now(policy: LifecyclePolicy | None = None) -> datetime:
    policy = policy or load_policy()
    return datetime.now(ZoneInfo(policy.timezone)).replace(tzinfo=None)


def to_wall_clock(moment: datetime, policy: LifecyclePolicy | None = None) -> datetime:
    if moment.tzinfo is None:
        return moment
    policy = policy or load_policy()
    return moment.astimezone(ZoneInfo(policy.timezone)).replace(tzinfo=None)


def start_datetime(appointment: Any) -> datetime:
    return datetime.combine(appointment.date, appointment.start_time)


def end_datetime(appointment: Any) -> datetime:
    return datetime.combine(appointment.date, appointment.end_time)


def scheduled_duration(appointment: Any) -> timedelta:
    return end_datetime(appointment) - start_datetime(appointment)


def _ceil_seconds(delta: timedelta) -> int:
    return max(0, math.ceil(delta.total_seconds()))


def _ceil_minutes(delta: timedelta) -> int:
    return max(0, math.ceil(delta.total_seconds() / 60))


def can_cancel(appointment: Any, now: datetime, policy: LifecyclePolicy | None = None) -> PolicyDecision:
    policy = policy or load_policy()
    now = to_wall_clock(now, policy)
    starts_at = start_datetime(appointment)
    cutoff = starts_at - timedelta(hours=policy.cancellation_cutoff_hours)

    if now <= cutoff:
        return PolicyDecision(allowed=True)

    hours_until_start = max(0, math.floor((starts_at - now).total_seconds() / 3600))
    return PolicyDecision(
        allowed=False,
        reason=(
            f'Appointments can only be cancelled up to {policy.cancellation_cutoff_hours} hours '
            f'before they start ({hours_until_start} hour(s) remaining).'
        ),
        hours_remaining=hours_until_start,
    )


def can_report_no_show(appointment: Any, now: datetime, policy: LifecyclePolicy | None = None) -> PolicyDecision:
    policy = policy or load_policy()
    if appointment.started_at is not None:
        return PolicyDecision(allowed=False, reason='The session has already started.')

    now = to_wall_clock(now, policy)
    # Both the grace period and the booked slot must be over.
    reportable_at = max(
        start_datetime(appointment) + timedelta(minutes=policy.no_show_grace_minutes),
        end_datetime(appointment),
    )
    if now >= reportable_at:
        return PolicyDecision(allowed=True)

    minutes_left = _ceil_minutes(reportable_at - now)
    return PolicyDecision(
        allowed=False,
        reason=f'You must wait {minutes_left} more minute(s) before reporting an absence.',
        minutes_remaining=minutes_left,
    )


def can_join_video_call(appointment: Any, now: datetime, policy: LifecyclePolicy | None = None) -> PolicyDecision:
    policy = policy or load_policy()
    if appointment.location_type != 'online':
        return PolicyDecision(allowed=False, reason='This appointment does not take place online.')

    now = to_wall_clock(now, policy)
    appointment_date: date = appointment.date
    if now.date() != appointment_date:
        return PolicyDecision(allowed=False, reason='The video call is only available on the day of the appointment.')

    opens_at = start_datetime(appointment) - timedelta(minutes=policy.video_join_lead_minutes)
    closes_at = end_datetime(appointment)
    if now < opens_at:
        minutes_left = _ceil_minutes(opens_at - now)
        return PolicyDecision(
            allowed=False,
            reason=f'The video call opens in {minutes_left} minute(s).',
            minutes_remaining=minutes_left,
        )
    if now > closes_at:
        return PolicyDecision(allowed=False, reason='The appointment has ended.')

    return PolicyDecision(allowed=True)


def can_start_session(appointment: Any, now: datetime, policy: LifecyclePolicy | None = None) -> PolicyDecision:
    now = to_wall_clock(now, policy)
    if now > end_datetime(appointment):
        return PolicyDecision(allowed=False, reason='The appointment time slot is over; the session can no longer start.')
    return PolicyDecision(allowed=True)


def can_complete_session(appointment: Any, now: datetime, policy: LifecyclePolicy | None = None) -> PolicyDecision:
    if appointment.started_at is None:
        return PolicyDecision(allowed=False, reason='The session has not been started.')

    now = to_wall_clock(now, policy)
    completable_at = appointment.started_at + scheduled_duration(appointment)
    if now >= completable_at:
        return PolicyDecision(allowed=True)

    remaining = completable_at - now
    return PolicyDecision(
        allowed=False,
        reason=f'The full session duration has not elapsed yet ({_ceil_minutes(remaining)} minute(s) remaining).',
        minutes_remaining=_ceil_minutes(remaining),
        seconds_remaining=_ceil_seconds(remaining),
    )


def evaluate(appointment: Any, now: datetime, policy: LifecyclePolicy | None = None) -> PolicySnapshot:
    policy = policy or load_policy()
    return PolicySnapshot(
        can_cancel=can_cancel(appointment, now, policy),
        can_report_no_show=can_report_no_show(appointment, now, policy),
        can_join_video_call=can_join_video_call(appointment, now, policy),
        can_start_session=can_start_session(appointment, now, policy),
        can_complete_session=can_complete_session(appointment, now, policy),
    )

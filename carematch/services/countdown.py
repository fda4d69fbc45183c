"""Session countdown shown to the educator while a session runs.

The value is always re-derived from ``started_at`` and the scheduled duration;
it never decides anything. Completion is gated by
``temporal_policy.can_complete_session`` on the server.
"""

import time
from collections.abc import Callable, Iterator
from datetime import datetime, timedelta
from typing import Any

from pydantic import BaseModel

from carematch.services.temporal_policy import scheduled_duration


class CountdownSnapshot(BaseModel):
    started: bool
    total_seconds: int
    elapsed_seconds: int
    remaining_seconds: int
    display: str
    finished: bool


def remaining(started_at: datetime, duration: timedelta, now: datetime) -> timedelta:
    left = started_at + duration - now
    return max(left, timedelta(0))


def format_remaining(seconds: int) -> str:
    hours, rest = divmod(max(0, seconds), 3600)
    minutes, secs = divmod(rest, 60)
    return f'{hours:02d}:{minutes:02d}:{secs:02d}'


def countdown_for(appointment: Any, now: datetime) -> CountdownSnapshot:
    duration = scheduled_duration(appointment)
    total = int(duration.total_seconds())

    if appointment.started_at is None:
        return CountdownSnapshot(
            started=False,
            total_seconds=total,
            elapsed_seconds=0,
            remaining_seconds=total,
            display=format_remaining(total),
            finished=False,
        )

    left = int(remaining(appointment.started_at, duration, now).total_seconds())
    return CountdownSnapshot(
        started=True,
        total_seconds=total,
        elapsed_seconds=total - left,
        remaining_seconds=left,
        display=format_remaining(left),
        finished=left == 0,
    )


def tick(
    appointment: Any,
    clock: Callable[[], datetime],
    interval_seconds: float = 1.0,
    sleep: Callable[[float], None] = time.sleep,
) -> Iterator[CountdownSnapshot]:
    """Yield a fresh snapshot every interval until the countdown reaches zero."""
    while True:
        snapshot = countdown_for(appointment, clock())
        yield snapshot
        if snapshot.finished or not snapshot.started:
            return
        sleep(interval_seconds)

"""Attendance status rules applied by the backing store.

Clients never classify attendance themselves; they render whatever status
and duration the store returns. The store picks a strategy per transition:
a check-in is on time up to ``start + grace``, a check-out before ``end``
turns an on-time day into an early leave.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from dataclasses import dataclass
from datetime import datetime, time, timedelta
from typing import Optional

from .models import AttendanceStatus

DEFAULT_START = time(9, 0)
DEFAULT_END = time(18, 0)
DEFAULT_GRACE_MINUTES = 5


class StatusStrategy(ABC):
    @abstractmethod
    def on_check_in(self) -> AttendanceStatus:
        raise NotImplementedError

    @abstractmethod
    def on_check_out(self, current: Optional[AttendanceStatus]) -> Optional[AttendanceStatus]:
        raise NotImplementedError


class OnTimeStrategy(StatusStrategy):
    def on_check_in(self) -> AttendanceStatus:
        return AttendanceStatus.PRESENT

    def on_check_out(self, current: Optional[AttendanceStatus]) -> Optional[AttendanceStatus]:
        return current


class LateStrategy(StatusStrategy):
    def on_check_in(self) -> AttendanceStatus:
        return AttendanceStatus.LATE

    def on_check_out(self, current: Optional[AttendanceStatus]) -> Optional[AttendanceStatus]:
        return current


class EarlyLeaveStrategy(StatusStrategy):
    def on_check_in(self) -> AttendanceStatus:
        return AttendanceStatus.PRESENT

    def on_check_out(self, current: Optional[AttendanceStatus]) -> Optional[AttendanceStatus]:
        return AttendanceStatus.EARLY_LEAVE


@dataclass(frozen=True)
class WorkdayPolicy:
    """Working hours used to classify check-ins and check-outs (local time)."""

    start: time = DEFAULT_START
    end: time = DEFAULT_END
    grace_minutes: int = DEFAULT_GRACE_MINUTES

    def __post_init__(self) -> None:
        if self.grace_minutes < 0:
            raise ValueError("grace_minutes must not be negative")
        if self.end <= self.start:
            raise ValueError("Workday end must be after its start")

    def for_check_in(self, local_now: datetime) -> StatusStrategy:
        deadline = datetime.combine(local_now.date(), self.start, tzinfo=local_now.tzinfo)
        if local_now <= deadline + timedelta(minutes=self.grace_minutes):
            return OnTimeStrategy()
        return LateStrategy()

    def for_check_out(self, local_now: datetime, current: Optional[AttendanceStatus]) -> StatusStrategy:
        end = datetime.combine(local_now.date(), self.end, tzinfo=local_now.tzinfo)
        if local_now < end and current is AttendanceStatus.PRESENT:
            return EarlyLeaveStrategy()
        return OnTimeStrategy()

    def check_in_status(self, local_now: datetime) -> AttendanceStatus:
        return self.for_check_in(local_now).on_check_in()

    def check_out_status(self, local_now: datetime, current: Optional[AttendanceStatus]) -> Optional[AttendanceStatus]:
        return self.for_check_out(local_now, current).on_check_out(current)


def work_duration_minutes(check_in_time: datetime, check_out_time: datetime) -> int:
    """Whole minutes worked; never negative."""

    seconds = (check_out_time - check_in_time).total_seconds()
    return max(int(seconds // 60), 0)


def parse_clock(value: str) -> time:
    """Parse an ``HH:MM`` string."""

    try:
        hours_text, minutes_text = value.strip().split(":", 1)
        return time(int(hours_text), int(minutes_text))
    except (AttributeError, ValueError) as exc:
        raise ValueError(f"Invalid time of day '{value}', expected HH:MM") from exc


__all__ = [
    "EarlyLeaveStrategy",
    "LateStrategy",
    "OnTimeStrategy",
    "StatusStrategy",
    "WorkdayPolicy",
    "parse_clock",
    "work_duration_minutes",
]

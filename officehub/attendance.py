"""Client-side attendance state for the active user's current day."""

from __future__ import annotations

import asyncio
import logging
from contextlib import suppress
from dataclasses import dataclass, replace
from datetime import datetime, timedelta, timezone
from typing import Awaitable, Callable, Optional, Set, Tuple

from .events import Listeners, Subscription
from .models import AttendancePhase, AttendanceRecord
from .providers import AttendanceStore
from .results import ActionResult, Reason, StoreResult
from .sessions import SessionManager, SessionView

logger = logging.getLogger("officehub.attendance")

DEFAULT_TARGET = timedelta(hours=8)
DEFAULT_NOTES_DEBOUNCE = 1.0

CHECK_IN_MESSAGE = "출근이 기록되었습니다."
CHECK_OUT_MESSAGE = "퇴근이 기록되었습니다."
NOTES_MESSAGE = "메모가 저장되었습니다."

Clock = Callable[[], datetime]


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def format_duration(value: timedelta) -> str:
    """Render a duration as "H시간 M분"."""

    minutes = max(int(value.total_seconds() // 60), 0)
    return f"{minutes // 60}시간 {minutes % 60}분"


@dataclass(frozen=True)
class WorkProgress:
    """Live, never persisted display values for an open check-in."""

    elapsed: timedelta = timedelta(0)
    fraction: float = 0.0
    remaining: timedelta = DEFAULT_TARGET

    @property
    def remaining_label(self) -> str:
        return format_duration(self.remaining)

    @property
    def elapsed_label(self) -> str:
        return format_duration(self.elapsed)


def work_progress(
    check_in_time: Optional[datetime],
    now: datetime,
    *,
    check_out_time: Optional[datetime] = None,
    target: timedelta = DEFAULT_TARGET,
) -> WorkProgress:
    """Elapsed time, progress towards ``target`` and time left, in whole minutes.

    Without an open check-in (never checked in, or already checked out) the
    defaults are returned: nothing elapsed and the full target remaining.
    """

    if check_in_time is None or check_out_time is not None:
        return WorkProgress(remaining=target)

    seconds = max((now - check_in_time).total_seconds(), 0.0)
    elapsed = timedelta(minutes=int(seconds // 60))
    fraction = min(elapsed / target, 1.0) if target > timedelta(0) else 1.0
    remaining = max(target - elapsed, timedelta(0))
    return WorkProgress(elapsed=elapsed, fraction=fraction, remaining=remaining)


@dataclass(frozen=True)
class AttendanceSnapshot:
    user_id: Optional[str]
    record: Optional[AttendanceRecord]
    phase: AttendancePhase
    notes: str
    loading: bool
    progress: WorkProgress


SnapshotListener = Callable[[AttendanceSnapshot], None]


class AttendanceTracker:
    """Drive check-in, check-out and notes for one active user at a time."""

    def __init__(
        self,
        store: AttendanceStore,
        *,
        clock: Optional[Clock] = None,
        target: timedelta = DEFAULT_TARGET,
        notes_debounce: float = DEFAULT_NOTES_DEBOUNCE,
    ) -> None:
        self._store = store
        self._clock = clock or _utcnow
        self._target = target
        self._notes_debounce = notes_debounce
        self._user_id: Optional[str] = None
        self._record: Optional[AttendanceRecord] = None
        self._notes = ""
        self._fetching = False
        self._mutating = False
        self._epoch = 0
        self._pending_notes: Optional[Tuple[str, str]] = None
        self._notes_task: Optional[asyncio.Task[None]] = None
        self._tasks: Set[asyncio.Task[object]] = set()
        self._binding: Optional[Subscription] = None
        self._listeners: Listeners[SnapshotListener] = Listeners("attendance snapshot")

    # ------------------------------------------------------------------
    # Read side
    # ------------------------------------------------------------------
    @property
    def user_id(self) -> Optional[str]:
        return self._user_id

    @property
    def record(self) -> Optional[AttendanceRecord]:
        return self._record

    @property
    def notes(self) -> str:
        return self._notes

    @property
    def loading(self) -> bool:
        return self._fetching or self._mutating

    @property
    def phase(self) -> AttendancePhase:
        return self._record.phase if self._record is not None else AttendancePhase.NOT_CHECKED_IN

    def progress(self, now: Optional[datetime] = None) -> WorkProgress:
        record = self._record
        if record is None:
            return WorkProgress(remaining=self._target)
        return work_progress(
            record.check_in_time,
            now or self._clock(),
            check_out_time=record.check_out_time,
            target=self._target,
        )

    def snapshot(self, now: Optional[datetime] = None) -> AttendanceSnapshot:
        return AttendanceSnapshot(
            user_id=self._user_id,
            record=self._record,
            phase=self.phase,
            notes=self._notes,
            loading=self.loading,
            progress=self.progress(now),
        )

    def subscribe(self, listener: SnapshotListener) -> Subscription:
        return self._listeners.add(listener)

    # ------------------------------------------------------------------
    # Session coupling
    # ------------------------------------------------------------------
    def bind(self, manager: SessionManager) -> Subscription:
        """Follow the manager's active user, resetting before each new fetch."""

        if self._binding is not None:
            self._binding.close()

        def _on_view(view: SessionView) -> None:
            user_id = view.user_id
            if user_id == self._user_id:
                return
            self.reset()
            self._user_id = user_id
            if user_id is not None:
                self._spawn(self.fetch_today_status(user_id))

        view_subscription = manager.subscribe(_on_view)
        scoped_subscription = manager.register_session_scoped(self.reset)
        _on_view(manager.view)

        def _release() -> None:
            view_subscription.close()
            scoped_subscription.close()

        self._binding = Subscription(_release)
        return self._binding

    def reset(self) -> None:
        """Drop every piece of state that belongs to the previous user or day."""

        self._epoch += 1
        self._record = None
        self._notes = ""
        self._fetching = False
        self._mutating = False
        self._pending_notes = None
        task, self._notes_task = self._notes_task, None
        if task is not None:
            task.cancel()
        self._notify()

    async def close(self) -> None:
        await self.flush_notes()
        binding, self._binding = self._binding, None
        if binding is not None:
            binding.close()
        tasks = list(self._tasks)
        if self._notes_task is not None:
            tasks.append(self._notes_task)
            self._notes_task = None
        for task in tasks:
            task.cancel()
        for task in tasks:
            with suppress(asyncio.CancelledError):
                await task
        self._tasks.clear()

    # ------------------------------------------------------------------
    # Store-backed operations
    # ------------------------------------------------------------------
    async def fetch_today_status(self, user_id: str) -> ActionResult:
        self._activate(user_id)
        epoch = self._epoch
        self._fetching = True
        self._notify()
        try:
            record = await self._store.get_today(user_id)
        except Exception:
            logger.exception("Failed to fetch today's attendance for %s", user_id)
            return ActionResult.failure(Reason.UNAVAILABLE)
        finally:
            if epoch == self._epoch:
                self._fetching = False
                self._notify()

        if epoch != self._epoch:
            logger.info("Discarding attendance for %s fetched before a reset", user_id)
            return ActionResult.failure(Reason.UNAVAILABLE)

        self._record = record
        self._notes = record.notes if record is not None else ""
        self._notify()
        return ActionResult.success(data=record)

    async def check_in(self, user_id: str) -> ActionResult:
        return await self._mutate(user_id, self._store.check_in, CHECK_IN_MESSAGE)

    async def check_out(self, user_id: str) -> ActionResult:
        return await self._mutate(user_id, self._store.check_out, CHECK_OUT_MESSAGE)

    async def update_notes(self, user_id: str, text: str) -> ActionResult:
        self._activate(user_id)
        epoch = self._epoch
        try:
            result = await self._store.set_notes(user_id, text)
        except Exception:
            logger.exception("Failed to save notes for %s", user_id)
            return ActionResult.failure(Reason.UNAVAILABLE)

        if not result.ok:
            logger.info("Notes rejected for %s: %s", user_id, result.reason)
            return ActionResult.failure(result.reason or Reason.UNAVAILABLE)

        if epoch == self._epoch:
            self._notes = text
            if self._record is not None:
                self._record = replace(self._record, notes=text)
            self._notify()
        return ActionResult.success(NOTES_MESSAGE)

    def queue_notes(self, user_id: str, text: str) -> None:
        """Persist ``text`` once edits pause for the debounce interval."""

        self._pending_notes = (user_id, text)
        if self._notes_task is not None:
            self._notes_task.cancel()
        self._notes_task = asyncio.get_running_loop().create_task(self._flush_later())

    async def flush_notes(self) -> Optional[ActionResult]:
        """Persist queued notes now (e.g. when the editor loses focus)."""

        task, self._notes_task = self._notes_task, None
        if task is not None and task is not asyncio.current_task():
            task.cancel()
        pending, self._pending_notes = self._pending_notes, None
        if pending is None:
            return None
        result = await self.update_notes(*pending)
        if not result.ok:
            logger.warning("Queued notes for %s were not saved: %s", pending[0], result.reason)
        return result

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------
    async def _mutate(
        self,
        user_id: str,
        operation: Callable[[str], Awaitable[StoreResult]],
        success_message: str,
    ) -> ActionResult:
        if self._mutating:
            return ActionResult.failure(Reason.REQUEST_IN_FLIGHT)

        self._activate(user_id)
        epoch = self._epoch
        self._mutating = True
        self._notify()
        try:
            try:
                result = await operation(user_id)
            except Exception:
                logger.exception("Attendance request failed for %s", user_id)
                return ActionResult.failure(Reason.UNAVAILABLE)

            if not result.ok:
                logger.info("Attendance request rejected for %s: %s", user_id, result.reason)
                return ActionResult.failure(result.reason or Reason.UNAVAILABLE)

            if epoch == self._epoch:
                await self.fetch_today_status(user_id)
            return ActionResult.success(success_message, data=self._record)
        finally:
            if epoch == self._epoch:
                self._mutating = False
                self._notify()

    async def _flush_later(self) -> None:
        await asyncio.sleep(self._notes_debounce)
        self._notes_task = None
        await self.flush_notes()

    def _activate(self, user_id: str) -> None:
        if user_id != self._user_id:
            self.reset()
            self._user_id = user_id

    def _spawn(self, coro: Awaitable[object]) -> None:
        task = asyncio.ensure_future(coro)
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)

    def _notify(self) -> None:
        if len(self._listeners):
            self._listeners.notify(self.snapshot())


class ProgressTicker:
    """Recompute live progress on a fixed interval; never calls the store."""

    def __init__(
        self,
        tracker: AttendanceTracker,
        callback: Callable[[WorkProgress], None],
        *,
        interval: float = 1.0,
    ) -> None:
        self._tracker = tracker
        self._callback = callback
        self._interval = interval
        self._task: Optional[asyncio.Task[None]] = None

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    def start(self) -> None:
        if self._task is None:
            self._task = asyncio.get_running_loop().create_task(self._run())

    async def stop(self) -> None:
        task, self._task = self._task, None
        if task is not None:
            task.cancel()
            with suppress(asyncio.CancelledError):
                await task

    async def __aenter__(self) -> "ProgressTicker":
        self.start()
        return self

    async def __aexit__(self, *exc_info: object) -> None:
        await self.stop()

    async def _run(self) -> None:
        while True:
            try:
                self._callback(self._tracker.progress())
            except Exception:
                logger.exception("Progress callback failed")
            await asyncio.sleep(self._interval)


__all__ = [
    "AttendanceSnapshot",
    "AttendanceTracker",
    "DEFAULT_TARGET",
    "ProgressTicker",
    "WorkProgress",
    "format_duration",
    "work_progress",
]

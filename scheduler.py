"""Background sweep that cancels pending appointments whose slot has passed.

Each sweep also retries slot releases that a cancellation could not finish.

Runs once when started, then every ``interval_seconds``. A single asyncio task
owns the loop; ``stop()`` cancels it. Sweeps are serialized, so a sweep
requested while another is in progress is skipped rather than overlapped.
"""

import asyncio
import logging
import os
import re
from datetime import datetime
from typing import Optional

from pydantic import BaseModel

from appointment_store import AppointmentStore
from errors import InvalidStateError, UpstreamError
from lifecycle import LifecycleManager
from models.models import Actor

logger = logging.getLogger(__name__)

OVERDUE_SWEEP_INTERVAL_SECONDS = float(os.getenv("OVERDUE_SWEEP_INTERVAL_SECONDS", str(60 * 60)))

TIME_PATTERN = re.compile(r"(\d+):(\d+)")


def parse_slot_datetime(slot_date: str, slot_time: str) -> datetime:
    """Combine ``"1_6_2026"`` and ``"10:00 am"`` into a naive local datetime.

    Raises ValueError for anything that does not parse.
    """
    parts = slot_date.split("_")
    if len(parts) != 3:
        raise ValueError(f"malformed slot date {slot_date!r}")
    day, month, year = (int(p) for p in parts)

    match = TIME_PATTERN.search(slot_time)
    if not match:
        raise ValueError(f"malformed slot time {slot_time!r}")
    hours, minutes = int(match.group(1)), int(match.group(2))

    is_pm = "pm" in slot_time.lower()
    if is_pm and hours != 12:
        hours += 12
    if not is_pm and hours == 12:
        hours = 0

    return datetime(year, month, day, hours, minutes)


class SweepResult(BaseModel):
    cancelled_count: int = 0
    released_count: int = 0  # deferred slot releases completed
    skipped: int = 0  # malformed slot data
    failed: int = 0
    completed: bool = True
    overlapped: bool = False


class OverdueScheduler:
    def __init__(self, appointments: AppointmentStore, lifecycle: LifecycleManager,
                 interval_seconds: float = OVERDUE_SWEEP_INTERVAL_SECONDS, clock=datetime.now):
        self.appointments = appointments
        self.lifecycle = lifecycle
        self.interval_seconds = interval_seconds
        self.clock = clock
        self._lock = asyncio.Lock()
        self._task: Optional[asyncio.Task] = None

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    async def sweep(self, now: Optional[datetime] = None) -> SweepResult:
        if self._lock.locked():
            logger.info("[Scheduler] Sweep already in progress, skipping")
            return SweepResult(completed=False, overlapped=True)
        async with self._lock:
            return await self._sweep(now or self.clock())

    async def _retry_releases(self, result: SweepResult):
        try:
            unreleased = await self.appointments.unreleased()
        except UpstreamError as e:
            logger.error(f"[Scheduler] Error loading cancelled appointments with held slots: {e.message}")
            result.completed = False
            return

        for appointment in unreleased:
            if await self.lifecycle.release_slots(appointment):
                result.released_count += 1
                logger.info(f"[Scheduler] Released held slot of cancelled appointment {appointment.id}")
            else:
                result.failed += 1

    async def _sweep(self, now: datetime) -> SweepResult:
        result = SweepResult()
        await self._retry_releases(result)
        try:
            candidates = await self.appointments.overdue_candidates()
        except UpstreamError as e:
            logger.error(f"[Scheduler] Error loading pending appointments: {e.message}")
            result.completed = False
            return result

        for doc in candidates:
            appointment_id = doc.get("_id")
            try:
                scheduled = parse_slot_datetime(doc["slotDate"], doc["slotTime"])
            except (KeyError, TypeError, ValueError) as e:
                logger.warning(f"[Scheduler] Skipping appointment {appointment_id} with unreadable slot: {e}")
                result.skipped += 1
                continue

            if scheduled >= now:
                continue

            try:
                await self.lifecycle.cancel(appointment_id, Actor.system())
            except InvalidStateError:
                logger.info(f"[Scheduler] Appointment {appointment_id} changed state before expiry, leaving it")
                continue
            except Exception:
                logger.exception(f"[Scheduler] Error auto-cancelling appointment {appointment_id}")
                result.failed += 1
                continue

            result.cancelled_count += 1
            logger.info(f"[Scheduler] Auto-cancelled overdue appointment {appointment_id} for user {doc.get('userId')}")

        if result.cancelled_count > 0:
            logger.info(f"[Scheduler] Successfully cancelled {result.cancelled_count} overdue pending appointments")
        return result

    async def _run(self):
        logger.info(f"[Scheduler] Appointment scheduler started (runs every {self.interval_seconds:g}s)")
        while True:
            try:
                await self.sweep()
            except Exception:
                logger.exception("[Scheduler] Error cancelling overdue appointments")
            await asyncio.sleep(self.interval_seconds)

    def start(self) -> asyncio.Task:
        if self.running:
            return self._task
        self._task = asyncio.create_task(self._run(), name="overdue-appointment-scheduler")
        return self._task

    async def stop(self):
        task, self._task = self._task, None
        if task is None:
            return
        task.cancel()
        try:
            await task
        except asyncio.CancelledError:
            pass
        logger.info("[Scheduler] Appointment scheduler stopped")

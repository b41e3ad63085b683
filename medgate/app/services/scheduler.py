"""
Appointment scheduler.

Keeps, per doctor, an ordered index of SCHEDULED intervals and serialises
every check-then-write against that index behind the doctor's own lock:

- book:        validate -> overlap check -> persist -> index insert
- cancel:      SCHEDULED -> CANCELLED
- complete:    SCHEDULED -> COMPLETED
- reschedule:  SCHEDULED -> SCHEDULED on a new interval, all-or-nothing

Different doctors never contend for the same lock. Repository errors raised
during a commit propagate unchanged and leave the index untouched.
"""
from __future__ import annotations

import logging
import threading
from bisect import bisect_left, insort
from contextlib import contextmanager
from datetime import datetime, timedelta
from typing import Callable, Dict, Iterator, List, Optional, Tuple

from ..domain.models import Appointment, AppointmentStatus, Interval, as_utc, utcnow
from ..domain.policy import Identity
from ..domain.results import Result, SchedulingError, SchedulingErrorKind, SchedulingTimeout
from ..infra.repository import AppointmentRepository
from .audit import AuditLog

logger = logging.getLogger(__name__)

Clock = Callable[[], datetime]
SchedulingResult = Result[Appointment, SchedulingError]


class KeyedLocks:
    """One lock per key, created on first use."""

    def __init__(self) -> None:
        self._locks: Dict[str, threading.Lock] = {}
        self._registry = threading.Lock()

    def get(self, key: str) -> threading.Lock:
        with self._registry:
            lock = self._locks.get(key)
            if lock is None:
                lock = self._locks[key] = threading.Lock()
            return lock

    def acquire(self, key: str, timeout: Optional[float] = None) -> threading.Lock:
        """Take the lock of ``key`` and return it; the caller releases it."""
        lock = self.get(key)
        acquired = lock.acquire(timeout=-1 if timeout is None else max(timeout, 0))
        if not acquired:
            raise SchedulingTimeout(f"timed out waiting for bookings of {key}")
        return lock

    @contextmanager
    def hold(self, key: str, timeout: Optional[float] = None) -> Iterator[None]:
        lock = self.acquire(key, timeout)
        try:
            yield
        finally:
            lock.release()


class DoctorBookings:
    """Sorted, non-overlapping SCHEDULED intervals of one doctor."""

    def __init__(self, appointments: Optional[List[Appointment]] = None) -> None:
        self._entries: List[Tuple[datetime, datetime, str]] = []
        self._appointments: Dict[str, Appointment] = {}
        for appointment in appointments or []:
            self.add(appointment)

    def __len__(self) -> int:
        return len(self._entries)

    def add(self, appointment: Appointment) -> None:
        insort(self._entries, (appointment.start_time, appointment.end_time, appointment.id))
        self._appointments[appointment.id] = appointment

    def discard(self, appointment_id: str) -> None:
        if self._appointments.pop(appointment_id, None) is None:
            return
        self._entries = [entry for entry in self._entries if entry[2] != appointment_id]

    def replace(self, appointment: Appointment) -> None:
        self.discard(appointment.id)
        self.add(appointment)

    def conflict(self, interval: Interval, ignore_id: Optional[str] = None) -> Optional[str]:
        """Return the id of a booking overlapping ``interval``, if any.

        Entries never overlap each other, so their ends are sorted as well and
        only the nearest neighbour on each side can collide.
        """
        index = bisect_left(self._entries, (interval.start,))

        before = index - 1
        if before >= 0 and self._entries[before][2] == ignore_id:
            before -= 1
        if before >= 0 and self._entries[before][1] > interval.start:
            return self._entries[before][2]

        after = index
        if after < len(self._entries) and self._entries[after][2] == ignore_id:
            after += 1
        if after < len(self._entries) and self._entries[after][0] < interval.end:
            return self._entries[after][2]
        return None

    def appointments(self) -> List[Appointment]:
        return [self._appointments[entry[2]] for entry in self._entries]


class AppointmentScheduler:
    def __init__(
        self,
        repository: AppointmentRepository,
        clock: Clock = utcnow,
        audit: Optional[AuditLog] = None,
        lock_timeout: Optional[float] = None,
    ) -> None:
        self.repository = repository
        self.clock = clock
        self.audit = audit
        self.lock_timeout = lock_timeout
        self._locks = KeyedLocks()
        self._books: Dict[str, DoctorBookings] = {}

    # ── public operations ────────────────────────────────────────────

    def book(
        self,
        doctor_id: str,
        patient_id: str,
        interval: Interval,
        now: Optional[datetime] = None,
        actor: Optional[Identity] = None,
        timeout: Optional[float] = None,
    ) -> SchedulingResult:
        error = self._validate(interval, now)
        if error is None:
            with self._critical("book", doctor_id, None, actor, timeout):
                book = self._bookings_of(doctor_id)
                conflict = book.conflict(interval)
                if conflict is not None:
                    error = _double_booked(doctor_id, conflict)
                else:
                    appointment = self.repository.create(
                        Appointment(
                            doctor_id=doctor_id,
                            patient_id=patient_id,
                            start_time=interval.start,
                            end_time=interval.end,
                        )
                    )
                    book.add(appointment)

        if error is not None:
            return self._reject("book", None, error, actor)
        return self._commit("book", appointment, actor)

    def cancel(
        self,
        appointment_id: str,
        actor: Optional[Identity] = None,
        timeout: Optional[float] = None,
    ) -> SchedulingResult:
        return self._finish("cancel", appointment_id, AppointmentStatus.CANCELLED, actor, timeout)

    def complete(
        self,
        appointment_id: str,
        actor: Optional[Identity] = None,
        timeout: Optional[float] = None,
    ) -> SchedulingResult:
        return self._finish("complete", appointment_id, AppointmentStatus.COMPLETED, actor, timeout)

    def reschedule(
        self,
        appointment_id: str,
        new_interval: Interval,
        now: Optional[datetime] = None,
        actor: Optional[Identity] = None,
        timeout: Optional[float] = None,
    ) -> SchedulingResult:
        error = self._validate(new_interval, now)
        if error is not None:
            return self._reject("reschedule", appointment_id, error, actor)

        current = self.repository.get(appointment_id)
        if current is None:
            return self._reject("reschedule", appointment_id, _not_found(appointment_id), actor)

        with self._critical("reschedule", current.doctor_id, appointment_id, actor, timeout):
            book = self._bookings_of(current.doctor_id)
            current = self.repository.get(appointment_id)
            if current.status != AppointmentStatus.SCHEDULED:
                error = _invalid_transition(current, "reschedule")
            else:
                conflict = book.conflict(new_interval, ignore_id=appointment_id)
                if conflict is not None:
                    error = _double_booked(current.doctor_id, conflict)
                else:
                    updated = self.repository.set_interval(appointment_id, new_interval)
                    book.replace(updated)

        if error is not None:
            return self._reject("reschedule", appointment_id, error, actor)
        return self._commit("reschedule", updated, actor)

    def bookings(self, doctor_id: str, timeout: Optional[float] = None) -> List[Appointment]:
        """Snapshot of the doctor's SCHEDULED appointments, earliest first."""
        with self._locks.hold(doctor_id, self._timeout(timeout)):
            return self._bookings_of(doctor_id).appointments()

    def suggest_slots(
        self,
        doctor_id: str,
        window: Interval,
        duration: timedelta,
        now: Optional[datetime] = None,
        grid_minutes: int = 15,
        limit: int = 10,
        timeout: Optional[float] = None,
    ) -> List[Interval]:
        """Free grid-aligned slots of ``duration`` inside ``window``.

        Suggestions are not held; booking one can still fail if another request
        takes it first.
        """
        if duration <= timedelta(0) or grid_minutes <= 0 or window.start >= window.end:
            return []

        step = timedelta(minutes=grid_minutes)
        moment = as_utc(now if now is not None else self.clock())
        cursor = _align(max(window.start, moment), step)

        slots: List[Interval] = []
        with self._locks.hold(doctor_id, self._timeout(timeout)):
            book = self._bookings_of(doctor_id)
            while cursor + duration <= window.end and len(slots) < limit:
                candidate = Interval(cursor, cursor + duration)
                if book.conflict(candidate) is None:
                    slots.append(candidate)
                cursor += step
        return slots

    # ── internals ────────────────────────────────────────────────────

    def _finish(
        self,
        operation: str,
        appointment_id: str,
        target: AppointmentStatus,
        actor: Optional[Identity],
        timeout: Optional[float],
    ) -> SchedulingResult:
        current = self.repository.get(appointment_id)
        if current is None:
            return self._reject(operation, appointment_id, _not_found(appointment_id), actor)

        error: Optional[SchedulingError] = None
        with self._critical(operation, current.doctor_id, appointment_id, actor, timeout):
            book = self._bookings_of(current.doctor_id)
            current = self.repository.get(appointment_id)
            if current.status != AppointmentStatus.SCHEDULED:
                error = _invalid_transition(current, operation)
            else:
                updated = self.repository.set_status(appointment_id, target)
                book.discard(appointment_id)

        if error is not None:
            return self._reject(operation, appointment_id, error, actor)
        return self._commit(operation, updated, actor)

    @contextmanager
    def _critical(
        self,
        operation: str,
        doctor_id: str,
        appointment_id: Optional[str],
        actor: Optional[Identity],
        timeout: Optional[float],
    ) -> Iterator[None]:
        try:
            lock = self._locks.acquire(doctor_id, self._timeout(timeout))
        except SchedulingTimeout:
            logger.warning("%s timed out waiting for doctor %s", operation, doctor_id)
            if self.audit is not None:
                self.audit.record_scheduling(operation, appointment_id, False, "timeout", actor)
            raise
        try:
            yield
        finally:
            lock.release()

    def _bookings_of(self, doctor_id: str) -> DoctorBookings:
        # caller holds the doctor's lock
        book = self._books.get(doctor_id)
        if book is None:
            book = DoctorBookings(
                self.repository.find_by_doctor_and_status(doctor_id, AppointmentStatus.SCHEDULED)
            )
            self._books[doctor_id] = book
        return book

    def _validate(self, interval: Interval, now: Optional[datetime]) -> Optional[SchedulingError]:
        if not interval.start < interval.end:
            return SchedulingError(
                SchedulingErrorKind.INVALID_INTERVAL,
                "appointment must end after it starts",
            )
        moment = as_utc(now if now is not None else self.clock())
        if interval.start < moment:
            return SchedulingError(
                SchedulingErrorKind.PAST_INTERVAL,
                "appointment cannot start in the past",
            )
        return None

    def _timeout(self, timeout: Optional[float]) -> Optional[float]:
        return self.lock_timeout if timeout is None else timeout

    def _commit(
        self, operation: str, appointment: Appointment, actor: Optional[Identity]
    ) -> SchedulingResult:
        logger.info(
            "%s committed: appointment %s doctor %s [%s, %s)",
            operation,
            appointment.id,
            appointment.doctor_id,
            appointment.start_time.isoformat(),
            appointment.end_time.isoformat(),
        )
        if self.audit is not None:
            self.audit.record_scheduling(
                operation, appointment.id, True, appointment.status.value, actor
            )
        return Result.success(appointment)

    def _reject(
        self,
        operation: str,
        appointment_id: Optional[str],
        error: SchedulingError,
        actor: Optional[Identity],
    ) -> SchedulingResult:
        logger.warning("%s rejected (%s): %s", operation, error.kind.value, error.message)
        if self.audit is not None:
            self.audit.record_scheduling(
                operation, appointment_id, False, error.kind.value, actor
            )
        return Result.failure(error)


def _align(moment: datetime, step: timedelta) -> datetime:
    """Round ``moment`` up to the next multiple of ``step`` since midnight."""
    midnight = moment.replace(hour=0, minute=0, second=0, microsecond=0)
    steps = -(-(moment - midnight) // step)
    return midnight + steps * step


def _not_found(appointment_id: str) -> SchedulingError:
    return SchedulingError(
        SchedulingErrorKind.NOT_FOUND,
        f"appointment {appointment_id} does not exist",
    )


def _invalid_transition(appointment: Appointment, operation: str) -> SchedulingError:
    return SchedulingError(
        SchedulingErrorKind.INVALID_TRANSITION,
        f"cannot {operation} a {appointment.status.value} appointment",
    )


def _double_booked(doctor_id: str, conflicting_id: str) -> SchedulingError:
    return SchedulingError(
        SchedulingErrorKind.DOUBLE_BOOKED,
        f"doctor {doctor_id} already has an overlapping appointment",
        conflicting_id=conflicting_id,
    )

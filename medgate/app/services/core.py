"""Call surface offered to the transport layer."""
from __future__ import annotations

from datetime import datetime, timedelta
from typing import List, Optional

from ..domain.models import Interval, utcnow
from ..domain.policy import Action, Identity, PolicyEngine, default_engine
from ..infra.repository import AppointmentRepository
from .audit import AuditFilter, AuditLog, AuditQuery
from .guard import GuardResult, ResourceGuard, ResourceLookup
from .scheduler import AppointmentScheduler, Clock, SchedulingResult


class HospitalCore:
    """Wires policy engine, guard, scheduler and decision log together.

    One instance lives for the whole process; the scheduler's booking index and
    the decision chain are shared by every request.
    """

    def __init__(
        self,
        repository: AppointmentRepository,
        audit: AuditLog,
        engine: PolicyEngine = default_engine,
        clock: Clock = utcnow,
        lock_timeout: Optional[float] = None,
    ) -> None:
        self.audit = audit
        self.clock = clock
        self.guard = ResourceGuard(engine, audit)
        self.scheduler = AppointmentScheduler(
            repository, clock=clock, audit=audit, lock_timeout=lock_timeout
        )

    def authorize(
        self,
        identity: Identity,
        action: Action,
        resource_lookup: Optional[ResourceLookup] = None,
    ) -> GuardResult:
        return self.guard.guard(identity, action, resource_lookup)

    def book_appointment(
        self,
        doctor_id: str,
        patient_id: str,
        interval: Interval,
        now: Optional[datetime] = None,
        actor: Optional[Identity] = None,
        timeout: Optional[float] = None,
    ) -> SchedulingResult:
        return self.scheduler.book(doctor_id, patient_id, interval, now, actor, timeout)

    def cancel_appointment(
        self,
        appointment_id: str,
        actor: Optional[Identity] = None,
        timeout: Optional[float] = None,
    ) -> SchedulingResult:
        return self.scheduler.cancel(appointment_id, actor, timeout)

    def reschedule_appointment(
        self,
        appointment_id: str,
        new_interval: Interval,
        now: Optional[datetime] = None,
        actor: Optional[Identity] = None,
        timeout: Optional[float] = None,
    ) -> SchedulingResult:
        return self.scheduler.reschedule(appointment_id, new_interval, now, actor, timeout)

    def complete_appointment(
        self,
        appointment_id: str,
        actor: Optional[Identity] = None,
        timeout: Optional[float] = None,
    ) -> SchedulingResult:
        return self.scheduler.complete(appointment_id, actor, timeout)

    def suggest_slots(
        self,
        doctor_id: str,
        window: Interval,
        duration: timedelta,
        grid_minutes: int = 15,
        limit: int = 10,
    ) -> List[Interval]:
        return self.scheduler.suggest_slots(
            doctor_id, window, duration, grid_minutes=grid_minutes, limit=limit
        )

    def decisions(self, flt: Optional[AuditFilter] = None) -> AuditQuery:
        return self.audit.query(flt)

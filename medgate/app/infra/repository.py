"""Appointment persistence adapters used by the scheduler."""
from __future__ import annotations

import threading
from typing import Dict, List, Optional, Protocol

from sqlmodel import select

from ..domain.models import Appointment, AppointmentStatus, Interval, utcnow
from .db import SessionFactory


class AppointmentRepository(Protocol):
    def create(self, appointment: Appointment) -> Appointment: ...

    def get(self, appointment_id: str) -> Optional[Appointment]: ...

    def find_by_doctor_and_status(
        self, doctor_id: str, status: AppointmentStatus
    ) -> List[Appointment]: ...

    def set_status(self, appointment_id: str, status: AppointmentStatus) -> Appointment: ...

    def set_interval(self, appointment_id: str, interval: Interval) -> Appointment: ...


class SqlAppointmentRepository:
    """Repository backed by SQLModel; one short session per call."""

    def __init__(self, session_factory: SessionFactory) -> None:
        self.session_factory = session_factory

    def create(self, appointment: Appointment) -> Appointment:
        with self.session_factory() as session:
            session.add(appointment)
            session.flush()
            session.refresh(appointment)
        return appointment

    def get(self, appointment_id: str) -> Optional[Appointment]:
        with self.session_factory() as session:
            return session.get(Appointment, appointment_id)

    def find_by_doctor_and_status(
        self, doctor_id: str, status: AppointmentStatus
    ) -> List[Appointment]:
        stmt = (
            select(Appointment)
            .where(Appointment.doctor_id == doctor_id)
            .where(Appointment.status == status)
            .order_by(Appointment.start_time.asc())
        )
        with self.session_factory() as session:
            return list(session.exec(stmt).all())

    def set_status(self, appointment_id: str, status: AppointmentStatus) -> Appointment:
        with self.session_factory() as session:
            appointment = self._require(session, appointment_id)
            appointment.status = status
            appointment.updated_at = utcnow()
            session.add(appointment)
            session.flush()
            session.refresh(appointment)
        return appointment

    def set_interval(self, appointment_id: str, interval: Interval) -> Appointment:
        with self.session_factory() as session:
            appointment = self._require(session, appointment_id)
            appointment.start_time = interval.start
            appointment.end_time = interval.end
            appointment.updated_at = utcnow()
            session.add(appointment)
            session.flush()
            session.refresh(appointment)
        return appointment

    @staticmethod
    def _require(session, appointment_id: str) -> Appointment:
        appointment = session.get(Appointment, appointment_id)
        if appointment is None:
            raise LookupError(f"appointment {appointment_id} does not exist")
        return appointment


class InMemoryAppointmentRepository:
    """Process-local repository; hands out copies so callers cannot mutate storage."""

    def __init__(self) -> None:
        self._rows: Dict[str, Appointment] = {}
        self._lock = threading.Lock()

    def create(self, appointment: Appointment) -> Appointment:
        with self._lock:
            self._rows[appointment.id] = _copy(appointment)
        return _copy(appointment)

    def get(self, appointment_id: str) -> Optional[Appointment]:
        with self._lock:
            row = self._rows.get(appointment_id)
            return _copy(row) if row else None

    def find_by_doctor_and_status(
        self, doctor_id: str, status: AppointmentStatus
    ) -> List[Appointment]:
        with self._lock:
            rows = [
                _copy(row)
                for row in self._rows.values()
                if row.doctor_id == doctor_id and row.status == status
            ]
        return sorted(rows, key=lambda row: row.start_time)

    def set_status(self, appointment_id: str, status: AppointmentStatus) -> Appointment:
        with self._lock:
            row = self._rows[appointment_id]
            row.status = status
            row.updated_at = utcnow()
            return _copy(row)

    def set_interval(self, appointment_id: str, interval: Interval) -> Appointment:
        with self._lock:
            row = self._rows[appointment_id]
            row.start_time = interval.start
            row.end_time = interval.end
            row.updated_at = utcnow()
            return _copy(row)


def _copy(row: Appointment) -> Appointment:
    return Appointment(
        id=row.id,
        doctor_id=row.doctor_id,
        patient_id=row.patient_id,
        start_time=row.start_time,
        end_time=row.end_time,
        status=row.status,
        created_at=row.created_at,
        updated_at=row.updated_at,
    )

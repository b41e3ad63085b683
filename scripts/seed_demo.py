#!/usr/bin/env python3
"""Seed MedGate DB with demo staff, patients, records and appointments."""
from __future__ import annotations

import argparse
import logging
from datetime import timedelta

from medgate.app.domain.models import Interval, MedicalRecord, Patient, StaffMember, utcnow
from medgate.app.domain.policy import Identity, Role
from medgate.app.infra.db import build_engine, init_db, session_factory
from medgate.app.infra.repository import SqlAppointmentRepository
from medgate.app.services.audit import AuditLog, SqlAuditSink
from medgate.app.services.core import HospitalCore

logger = logging.getLogger("seed_demo")

WARDS = ["cardiology", "oncology", "pediatrics"]


def parse_args() -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Seed DB with demo hospital data")
    parser.add_argument("--doctors", type=int, default=3)
    parser.add_argument("--patients-per-doctor", type=int, default=2)
    parser.add_argument("--database-url", default="sqlite:///./medgate.db")
    return parser.parse_args()


def ensure_staff(sessions, staff_id: str, full_name: str, role: Role, ward: str) -> None:
    with sessions() as db:
        if db.get(StaffMember, staff_id):
            return
        db.add(StaffMember(id=staff_id, full_name=full_name, role=role.value, ward=ward))


def ensure_patient(sessions, patient_id: str, ward: str, doctor_id: str) -> None:
    with sessions() as db:
        if db.get(Patient, patient_id):
            return
        db.add(Patient(id=patient_id, full_name=f"Demo Patient {patient_id}", ward=ward))
        db.add(
            MedicalRecord(
                patient_id=patient_id,
                doctor_id=doctor_id,
                summary="Initial consultation notes",
            )
        )


def main() -> int:
    args = parse_args()
    logging.basicConfig(level=logging.INFO)
    engine = build_engine(args.database_url)
    init_db(engine)
    sessions = session_factory(engine)
    core = HospitalCore(SqlAppointmentRepository(sessions), AuditLog(SqlAuditSink(sessions)))

    ensure_staff(sessions, "admin-1", "Demo Admin", Role.ADMIN, WARDS[0])
    ensure_staff(sessions, "desk-1", "Demo Receptionist", Role.RECEPTIONIST, WARDS[0])
    receptionist = Identity(subject_id="desk-1", role=Role.RECEPTIONIST.value)

    tomorrow = (utcnow() + timedelta(days=1)).replace(hour=9, minute=0, second=0, microsecond=0)
    booked = 0
    for idx in range(1, args.doctors + 1):
        doctor_id = f"doc-{idx}"
        ward = WARDS[(idx - 1) % len(WARDS)]
        ensure_staff(sessions, doctor_id, f"Dr Demo {idx}", Role.DOCTOR, ward)
        ensure_staff(sessions, f"nurse-{idx}", f"Nurse Demo {idx}", Role.NURSE, ward)
        for slot in range(args.patients_per_doctor):
            patient_id = f"pat-{idx}-{slot + 1}"
            ensure_patient(sessions, patient_id, ward, doctor_id)
            start = tomorrow + timedelta(minutes=30 * slot)
            result = core.book_appointment(
                doctor_id,
                patient_id,
                Interval(start, start + timedelta(minutes=30)),
                actor=receptionist,
            )
            if result.ok:
                booked += 1
            else:
                logger.info("skipped %s: %s", patient_id, result.error.message)

    core.audit.close()
    print(f"Seeded {args.doctors} doctors; booked {booked} appointments.")
    return 0


if __name__ == "__main__":
    raise SystemExit(main())

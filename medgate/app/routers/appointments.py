"""Appointment booking routes."""
from datetime import datetime, timedelta
from typing import List

from fastapi import APIRouter, Depends, HTTPException, Query, status
from sqlmodel import Session

from .. import config
from ..deps import current_identity, db_session, enforce, get_core, unwrap
from ..domain.models import Appointment, AppointmentRead, Interval, Patient, StaffMember
from ..domain.policy import Action, Identity, ResourceRef, ResourceType, Role, Verb, coerce_role
from ..domain.schemas import AppointmentIn, RescheduleIn, SlotOut
from ..services.core import HospitalCore
from ..services.resources import SqlResourceLookup

router = APIRouter()


def _appointment_action(verb: Verb, appointment_id: str) -> Action:
    return Action(verb, ResourceType.APPOINTMENT, resource_id=appointment_id)


def _require_doctor(session: Session, doctor_id: str) -> StaffMember:
    doctor = session.get(StaffMember, doctor_id)
    if not doctor or doctor.role != Role.DOCTOR.value:
        raise HTTPException(status_code=404, detail="Doctor not found")
    return doctor


@router.post("/", response_model=AppointmentRead, status_code=status.HTTP_201_CREATED)
def book_appointment(
    payload: AppointmentIn,
    identity: Identity = Depends(current_identity),
    core: HospitalCore = Depends(get_core),
    session: Session = Depends(db_session),
):
    lookup = SqlResourceLookup(session)
    action = Action(
        Verb.CREATE,
        ResourceType.APPOINTMENT,
        owner_refs=lookup.proposed(ResourceType.APPOINTMENT, payload.patient_id, payload.doctor_id),
    )
    enforce(core.authorize(identity, action, lookup))
    _require_doctor(session, payload.doctor_id)
    if not session.get(Patient, payload.patient_id):
        raise HTTPException(status_code=404, detail="Patient not found")

    interval = Interval(payload.start_time, payload.end_time)
    return unwrap(
        core.book_appointment(payload.doctor_id, payload.patient_id, interval, actor=identity)
    )


@router.get("/{appointment_id}", response_model=AppointmentRead)
def get_appointment(
    appointment_id: str,
    identity: Identity = Depends(current_identity),
    core: HospitalCore = Depends(get_core),
    session: Session = Depends(db_session),
):
    enforce(
        core.authorize(
            identity,
            _appointment_action(Verb.READ, appointment_id),
            SqlResourceLookup(session),
        )
    )
    appointment = session.get(Appointment, appointment_id)
    if not appointment:
        raise HTTPException(status_code=404, detail="Appointment not found")
    return appointment


@router.post("/{appointment_id}/cancel", response_model=AppointmentRead)
def cancel_appointment(
    appointment_id: str,
    identity: Identity = Depends(current_identity),
    core: HospitalCore = Depends(get_core),
    session: Session = Depends(db_session),
):
    enforce(
        core.authorize(
            identity,
            _appointment_action(Verb.UPDATE, appointment_id),
            SqlResourceLookup(session),
        )
    )
    return unwrap(core.cancel_appointment(appointment_id, actor=identity))


@router.post("/{appointment_id}/reschedule", response_model=AppointmentRead)
def reschedule_appointment(
    appointment_id: str,
    payload: RescheduleIn,
    identity: Identity = Depends(current_identity),
    core: HospitalCore = Depends(get_core),
    session: Session = Depends(db_session),
):
    enforce(
        core.authorize(
            identity,
            _appointment_action(Verb.UPDATE, appointment_id),
            SqlResourceLookup(session),
        )
    )
    interval = Interval(payload.start_time, payload.end_time)
    return unwrap(core.reschedule_appointment(appointment_id, interval, actor=identity))


@router.post("/{appointment_id}/complete", response_model=AppointmentRead)
def complete_appointment(
    appointment_id: str,
    identity: Identity = Depends(current_identity),
    core: HospitalCore = Depends(get_core),
    session: Session = Depends(db_session),
):
    action = _appointment_action(Verb.UPDATE, appointment_id)
    # a patient's UPDATE right covers cancel and reschedule only
    if coerce_role(identity.role) == Role.PATIENT:
        enforce(core.guard.refuse(identity, action, "patients cannot complete appointments"))
    enforce(core.authorize(identity, action, SqlResourceLookup(session)))
    return unwrap(core.complete_appointment(appointment_id, actor=identity))


@router.get("/doctors/{doctor_id}", response_model=List[AppointmentRead])
def doctor_bookings(
    doctor_id: str,
    identity: Identity = Depends(current_identity),
    core: HospitalCore = Depends(get_core),
    session: Session = Depends(db_session),
):
    """Scheduled appointments of a doctor, narrowed to the ones the caller may read."""
    lookup = SqlResourceLookup(session)
    enforce(
        core.authorize(identity, Action(Verb.READ, ResourceType.DOCTOR, resource_id=doctor_id), lookup)
    )
    _require_doctor(session, doctor_id)

    visible = []
    for appointment in core.scheduler.bookings(doctor_id):
        ref = ResourceRef(
            ResourceType.APPOINTMENT,
            resource_id=appointment.id,
            patient_id=appointment.patient_id,
            doctor_id=appointment.doctor_id,
            ward=lookup.ward_of(appointment.patient_id),
        )
        action = _appointment_action(Verb.READ, appointment.id)
        if core.guard.engine.evaluate(identity, action, ref).allowed:
            visible.append(appointment)
    return visible


@router.get("/doctors/{doctor_id}/slots", response_model=List[SlotOut])
def doctor_slots(
    doctor_id: str,
    start: datetime = Query(...),
    end: datetime = Query(...),
    duration_minutes: int = Query(30, ge=5, le=480),
    limit: int = Query(config.MAX_SUGGESTED_SLOTS, ge=1, le=100),
    identity: Identity = Depends(current_identity),
    core: HospitalCore = Depends(get_core),
    session: Session = Depends(db_session),
):
    enforce(
        core.authorize(
            identity,
            Action(Verb.READ, ResourceType.DOCTOR, resource_id=doctor_id),
            SqlResourceLookup(session),
        )
    )
    _require_doctor(session, doctor_id)
    slots = core.suggest_slots(
        doctor_id,
        Interval(start, end),
        timedelta(minutes=duration_minutes),
        grid_minutes=config.SLOT_GRID_MINUTES,
        limit=limit,
    )
    return [SlotOut(start_time=slot.start, end_time=slot.end) for slot in slots]

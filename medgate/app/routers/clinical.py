"""Patient, medical record and prescription routes."""
from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, status
from sqlmodel import Session

from ..deps import current_identity, db_session, enforce, get_core
from ..domain.models import (
    MedicalRecord,
    MedicalRecordRead,
    Patient,
    PatientRead,
    Prescription,
    PrescriptionRead,
)
from ..domain.policy import Action, Identity, ResourceRef, ResourceType, Role, Verb, coerce_role
from ..domain.schemas import MedicalRecordIn, PatientIn, PrescriptionIn
from ..services.core import HospitalCore
from ..services.resources import SqlResourceLookup

router = APIRouter()


def _authorize_read(
    core: HospitalCore,
    identity: Identity,
    resource_type: ResourceType,
    resource_id: str,
    session: Session,
) -> None:
    enforce(
        core.authorize(
            identity,
            Action(Verb.READ, resource_type, resource_id=resource_id),
            SqlResourceLookup(session),
        )
    )


def _prescriber(identity: Identity, doctor_id: Optional[str]) -> Optional[str]:
    if doctor_id:
        return doctor_id
    if coerce_role(identity.role) == Role.DOCTOR:
        return identity.subject_id
    return None


@router.post("/patients/", response_model=PatientRead, status_code=status.HTTP_201_CREATED)
def create_patient(
    payload: PatientIn,
    identity: Identity = Depends(current_identity),
    core: HospitalCore = Depends(get_core),
    session: Session = Depends(db_session),
):
    action = Action(
        Verb.CREATE,
        ResourceType.PATIENT,
        owner_refs=ResourceRef(ResourceType.PATIENT, patient_id=payload.id, ward=payload.ward),
    )
    enforce(core.authorize(identity, action))
    if payload.id and session.get(Patient, payload.id):
        raise HTTPException(status_code=400, detail="Patient already exists")
    patient = Patient(**payload.model_dump(exclude_none=True))
    session.add(patient)
    session.flush()
    session.refresh(patient)
    return patient


@router.get("/patients/{patient_id}", response_model=PatientRead)
def get_patient(
    patient_id: str,
    identity: Identity = Depends(current_identity),
    core: HospitalCore = Depends(get_core),
    session: Session = Depends(db_session),
):
    _authorize_read(core, identity, ResourceType.PATIENT, patient_id, session)
    patient = session.get(Patient, patient_id)
    if not patient:
        raise HTTPException(status_code=404, detail="Patient not found")
    return patient


@router.post("/records/", response_model=MedicalRecordRead, status_code=status.HTTP_201_CREATED)
def create_record(
    payload: MedicalRecordIn,
    identity: Identity = Depends(current_identity),
    core: HospitalCore = Depends(get_core),
    session: Session = Depends(db_session),
):
    doctor_id = _prescriber(identity, payload.doctor_id)
    lookup = SqlResourceLookup(session)
    action = Action(
        Verb.CREATE,
        ResourceType.MEDICAL_RECORD,
        owner_refs=lookup.proposed(ResourceType.MEDICAL_RECORD, payload.patient_id, doctor_id),
    )
    enforce(core.authorize(identity, action, lookup))
    if doctor_id is None:
        raise HTTPException(status_code=422, detail="doctor_id is required")
    if not session.get(Patient, payload.patient_id):
        raise HTTPException(status_code=404, detail="Patient not found")
    record = MedicalRecord(patient_id=payload.patient_id, doctor_id=doctor_id, summary=payload.summary)
    session.add(record)
    session.flush()
    session.refresh(record)
    return record


@router.get("/records/{record_id}", response_model=MedicalRecordRead)
def get_record(
    record_id: str,
    identity: Identity = Depends(current_identity),
    core: HospitalCore = Depends(get_core),
    session: Session = Depends(db_session),
):
    _authorize_read(core, identity, ResourceType.MEDICAL_RECORD, record_id, session)
    record = session.get(MedicalRecord, record_id)
    if not record:
        raise HTTPException(status_code=404, detail="Record not found")
    return record


@router.post(
    "/prescriptions/",
    response_model=PrescriptionRead,
    status_code=status.HTTP_201_CREATED,
)
def create_prescription(
    payload: PrescriptionIn,
    identity: Identity = Depends(current_identity),
    core: HospitalCore = Depends(get_core),
    session: Session = Depends(db_session),
):
    doctor_id = _prescriber(identity, payload.doctor_id)
    lookup = SqlResourceLookup(session)
    action = Action(
        Verb.CREATE,
        ResourceType.PRESCRIPTION,
        owner_refs=lookup.proposed(ResourceType.PRESCRIPTION, payload.patient_id, doctor_id),
    )
    enforce(core.authorize(identity, action, lookup))
    if doctor_id is None:
        raise HTTPException(status_code=422, detail="doctor_id is required")
    if not session.get(Patient, payload.patient_id):
        raise HTTPException(status_code=404, detail="Patient not found")
    prescription = Prescription(
        patient_id=payload.patient_id,
        doctor_id=doctor_id,
        medication=payload.medication,
        dosage=payload.dosage,
    )
    session.add(prescription)
    session.flush()
    session.refresh(prescription)
    return prescription


@router.get("/prescriptions/{prescription_id}", response_model=PrescriptionRead)
def get_prescription(
    prescription_id: str,
    identity: Identity = Depends(current_identity),
    core: HospitalCore = Depends(get_core),
    session: Session = Depends(db_session),
):
    _authorize_read(core, identity, ResourceType.PRESCRIPTION, prescription_id, session)
    prescription = session.get(Prescription, prescription_id)
    if not prescription:
        raise HTTPException(status_code=404, detail="Prescription not found")
    return prescription

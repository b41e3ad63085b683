"""API I/O schemas."""
from datetime import datetime
from typing import List, Optional

from pydantic import BaseModel, Field


class AppointmentIn(BaseModel):
    doctor_id: str
    patient_id: str
    start_time: datetime
    end_time: datetime


class RescheduleIn(BaseModel):
    start_time: datetime
    end_time: datetime


class SlotOut(BaseModel):
    start_time: datetime
    end_time: datetime


class PatientIn(BaseModel):
    id: Optional[str] = Field(None, description="subject id of the patient; generated when omitted")
    full_name: str
    ward: Optional[str] = None


class MedicalRecordIn(BaseModel):
    patient_id: str
    doctor_id: Optional[str] = Field(None, description="defaults to the calling doctor")
    summary: str


class PrescriptionIn(BaseModel):
    patient_id: str
    doctor_id: Optional[str] = Field(None, description="defaults to the calling doctor")
    medication: str
    dosage: str


class AuditHealthOut(BaseModel):
    dropped: int
    chain_ok: bool
    checked: int
    problems: List[str] = Field(default_factory=list)

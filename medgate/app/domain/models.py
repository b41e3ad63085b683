"""Domain models shared between API and persistence layers."""
from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from enum import Enum
from typing import Optional
from uuid import uuid4

from pydantic import BaseModel, ConfigDict
from sqlalchemy import DateTime
from sqlalchemy.types import TypeDecorator
from sqlmodel import Column, Field as SQLField, SQLModel


def utcnow() -> datetime:
    """Aware UTC now; every stored timestamp uses this convention."""
    return datetime.now(timezone.utc)


def as_utc(value: datetime) -> datetime:
    """Return ``value`` as aware UTC; naive values are taken to be UTC already."""
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


class UTCDateTime(TypeDecorator):
    """Timestamp column that always binds and loads aware UTC datetimes.

    SQLite drops the offset on storage, so loaded values get UTC re-attached.
    """
    impl = DateTime(timezone=True)
    cache_ok = True

    def process_bind_param(self, value, dialect):
        if value is None:
            return None
        return as_utc(value)

    def process_result_value(self, value, dialect):
        if value is None:
            return None
        return as_utc(value)


def _timestamp(**kwargs) -> Column:
    return Column(UTCDateTime(), nullable=False, **kwargs)


def _new_id() -> str:
    return str(uuid4())


class AppointmentStatus(str, Enum):
    SCHEDULED = "scheduled"
    CANCELLED = "cancelled"
    COMPLETED = "completed"


class Outcome(str, Enum):
    ALLOW = "allow"
    DENY = "deny"


class DecisionCategory(str, Enum):
    AUTHORIZATION = "authorization"
    SCHEDULING = "scheduling"


@dataclass(frozen=True)
class Interval:
    """Half-open ``[start, end)`` time range, normalised to aware UTC."""

    start: datetime
    end: datetime

    def __post_init__(self) -> None:
        object.__setattr__(self, "start", as_utc(self.start))
        object.__setattr__(self, "end", as_utc(self.end))

    @property
    def duration(self) -> timedelta:
        return self.end - self.start

    def overlaps(self, other: "Interval") -> bool:
        return self.start < other.end and other.start < self.end


class Appointment(SQLModel, table=True):
    """Booked slot; never deleted, only moved through its status."""

    __tablename__ = "appointments"

    id: str = SQLField(default_factory=_new_id, primary_key=True, index=True)
    doctor_id: str = SQLField(index=True)
    patient_id: str = SQLField(index=True)
    start_time: datetime = SQLField(sa_column=_timestamp(index=True))
    end_time: datetime = SQLField(sa_column=_timestamp())
    status: AppointmentStatus = SQLField(default=AppointmentStatus.SCHEDULED, index=True)
    created_at: datetime = SQLField(default_factory=utcnow, sa_column=_timestamp())
    updated_at: datetime = SQLField(default_factory=utcnow, sa_column=_timestamp())

    @property
    def interval(self) -> Interval:
        return Interval(self.start_time, self.end_time)


class AppointmentRead(BaseModel):
    id: str
    doctor_id: str
    patient_id: str
    start_time: datetime
    end_time: datetime
    status: AppointmentStatus
    created_at: datetime
    updated_at: datetime

    model_config = ConfigDict(from_attributes=True)


class DecisionRecord(SQLModel, table=True):
    """Append-only authorization / scheduling decision, hash-chained."""

    __tablename__ = "decision_records"

    id: Optional[int] = SQLField(default=None, primary_key=True)
    created_at: datetime = SQLField(default_factory=utcnow, sa_column=_timestamp(index=True))
    category: DecisionCategory = SQLField(index=True)
    subject_id: str = SQLField(index=True)
    role: Optional[str] = SQLField(default=None)
    verb: str
    resource_type: str = SQLField(index=True)
    resource_id: Optional[str] = SQLField(default=None)
    outcome: Outcome = SQLField(index=True)
    reason: str = SQLField(default="")
    prev_hash: Optional[str] = SQLField(default=None)
    curr_hash: Optional[str] = SQLField(default=None, index=True)


class DecisionRecordRead(BaseModel):
    id: Optional[int]
    created_at: datetime
    category: DecisionCategory
    subject_id: str
    role: Optional[str]
    verb: str
    resource_type: str
    resource_id: Optional[str]
    outcome: Outcome
    reason: str
    prev_hash: Optional[str]
    curr_hash: Optional[str]

    model_config = ConfigDict(from_attributes=True)


class Patient(SQLModel, table=True):
    """Patient profile; ``id`` is the patient's subject id."""

    __tablename__ = "patients"

    id: str = SQLField(default_factory=_new_id, primary_key=True, index=True)
    full_name: str
    ward: Optional[str] = SQLField(default=None, index=True)
    created_at: datetime = SQLField(default_factory=utcnow, sa_column=_timestamp())


class PatientRead(BaseModel):
    id: str
    full_name: str
    ward: Optional[str]
    created_at: datetime

    model_config = ConfigDict(from_attributes=True)


class StaffMember(SQLModel, table=True):
    __tablename__ = "staff_members"

    id: str = SQLField(default_factory=_new_id, primary_key=True, index=True)
    full_name: str
    role: str = SQLField(index=True)
    specialty: Optional[str] = SQLField(default=None)
    ward: Optional[str] = SQLField(default=None)


class MedicalRecord(SQLModel, table=True):
    __tablename__ = "medical_records"

    id: str = SQLField(default_factory=_new_id, primary_key=True, index=True)
    patient_id: str = SQLField(index=True)
    doctor_id: str = SQLField(index=True)
    summary: str
    created_at: datetime = SQLField(default_factory=utcnow, sa_column=_timestamp())


class MedicalRecordRead(BaseModel):
    id: str
    patient_id: str
    doctor_id: str
    summary: str
    created_at: datetime

    model_config = ConfigDict(from_attributes=True)


class Prescription(SQLModel, table=True):
    __tablename__ = "prescriptions"

    id: str = SQLField(default_factory=_new_id, primary_key=True, index=True)
    patient_id: str = SQLField(index=True)
    doctor_id: str = SQLField(index=True)
    medication: str
    dosage: str
    created_at: datetime = SQLField(default_factory=utcnow, sa_column=_timestamp())


class PrescriptionRead(BaseModel):
    id: str
    patient_id: str
    doctor_id: str
    medication: str
    dosage: str
    created_at: datetime

    model_config = ConfigDict(from_attributes=True)

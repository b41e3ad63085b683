"""Resource lookups over the SQLModel tables.

Each lookup returns only the owner-identifying fields the policy predicates
need, or ``None`` when the row does not exist.
"""
from typing import Optional

from sqlmodel import Session

from ..domain.models import Appointment, MedicalRecord, Patient, Prescription, StaffMember
from ..domain.policy import ResourceRef, ResourceType, Role


class SqlResourceLookup:
    def __init__(self, session: Session) -> None:
        self.session = session

    def __call__(self, resource_type: ResourceType, resource_id: str) -> Optional[ResourceRef]:
        handler = getattr(self, f"_{resource_type.value}", None)
        if handler is None:
            return None
        return handler(resource_id)

    def ward_of(self, patient_id: str) -> Optional[str]:
        patient = self.session.get(Patient, patient_id)
        return patient.ward if patient else None

    def proposed(
        self,
        resource_type: ResourceType,
        patient_id: Optional[str] = None,
        doctor_id: Optional[str] = None,
    ) -> ResourceRef:
        """Owner refs of a resource that a CREATE would produce."""
        return ResourceRef(
            resource_type=resource_type,
            patient_id=patient_id,
            doctor_id=doctor_id,
            ward=self.ward_of(patient_id) if patient_id else None,
        )

    def _patient(self, resource_id: str) -> Optional[ResourceRef]:
        patient = self.session.get(Patient, resource_id)
        if not patient:
            return None
        return ResourceRef(
            ResourceType.PATIENT,
            resource_id=patient.id,
            patient_id=patient.id,
            user_id=patient.id,
            ward=patient.ward,
        )

    def _appointment(self, resource_id: str) -> Optional[ResourceRef]:
        appointment = self.session.get(Appointment, resource_id)
        if not appointment:
            return None
        return ResourceRef(
            ResourceType.APPOINTMENT,
            resource_id=appointment.id,
            patient_id=appointment.patient_id,
            doctor_id=appointment.doctor_id,
            ward=self.ward_of(appointment.patient_id),
        )

    def _medical_record(self, resource_id: str) -> Optional[ResourceRef]:
        record = self.session.get(MedicalRecord, resource_id)
        if not record:
            return None
        return ResourceRef(
            ResourceType.MEDICAL_RECORD,
            resource_id=record.id,
            patient_id=record.patient_id,
            doctor_id=record.doctor_id,
            ward=self.ward_of(record.patient_id),
        )

    def _prescription(self, resource_id: str) -> Optional[ResourceRef]:
        prescription = self.session.get(Prescription, resource_id)
        if not prescription:
            return None
        return ResourceRef(
            ResourceType.PRESCRIPTION,
            resource_id=prescription.id,
            patient_id=prescription.patient_id,
            doctor_id=prescription.doctor_id,
            ward=self.ward_of(prescription.patient_id),
        )

    def _doctor(self, resource_id: str) -> Optional[ResourceRef]:
        staff = self.session.get(StaffMember, resource_id)
        if not staff or staff.role != Role.DOCTOR.value:
            return None
        return ResourceRef(
            ResourceType.DOCTOR,
            resource_id=staff.id,
            doctor_id=staff.id,
            user_id=staff.id,
            ward=staff.ward,
        )

    def _user(self, resource_id: str) -> Optional[ResourceRef]:
        if self.session.get(StaffMember, resource_id) or self.session.get(Patient, resource_id):
            return ResourceRef(ResourceType.USER, resource_id=resource_id, user_id=resource_id)
        return None

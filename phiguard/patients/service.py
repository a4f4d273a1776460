from uuid import UUID

from sqlmodel import Session, func, select

from ..core.clock import utcnow
from ..core.errors import Conflict, RecordNotFound
from ..core.logging import get_logger
from ..models.Patient import CreatePatientRequest, Patient, UpdatePatientRequest

logger = get_logger(__name__)

MAX_PAGE_SIZE = 100


def _active(session: Session) -> list[Patient]:
    return list(session.exec(select(Patient).where(Patient.deleted == False)).all())  # noqa: E712


def find_by_medical_record_number(session: Session, mrn: str) -> Patient | None:
    """
    MRN is stored as a non-deterministic envelope, so it cannot be matched in
    SQL. Load the active patients and compare decrypted values in memory.
    """
    for patient in _active(session):
        if patient.medical_record_number == mrn:
            return patient
    return None


def create_patient(session: Session, request: CreatePatientRequest) -> Patient:
    if find_by_medical_record_number(session, request.medical_record_number) is not None:
        raise Conflict("A patient with this medical record number already exists")

    patient = Patient(
        first_name=request.first_name,
        last_name=request.last_name,
        ssn=request.ssn,
        email=request.email,
        date_of_birth=request.date_of_birth,
        medical_record_number=request.medical_record_number,
    )
    session.add(patient)
    session.commit()
    session.refresh(patient)
    logger.info("patient_created", patient_id=str(patient.id))
    return patient


def get_patient(session: Session, patient_id: UUID) -> Patient:
    patient = session.get(Patient, patient_id)
    if patient is None or patient.deleted:
        raise RecordNotFound(f"Patient not found with ID: {patient_id}")
    return patient


def get_patient_by_medical_record_number(session: Session, mrn: str) -> Patient:
    patient = find_by_medical_record_number(session, mrn)
    if patient is None:
        # The MRN itself is protected and stays out of the message
        raise RecordNotFound("Patient not found")
    return patient


def list_patients(session: Session, page: int = 0, size: int = 20) -> tuple[list[Patient], int]:
    size = max(1, min(size, MAX_PAGE_SIZE))
    page = max(0, page)
    total = session.exec(
        select(func.count()).select_from(Patient).where(Patient.deleted == False)  # noqa: E712
    ).one()
    statement = (
        select(Patient)
        .where(Patient.deleted == False)  # noqa: E712
        .order_by(Patient.created_at.desc())
        .offset(page * size)
        .limit(size)
    )
    return list(session.exec(statement).all()), total


def update_patient(session: Session, patient_id: UUID, request: UpdatePatientRequest) -> Patient:
    patient = get_patient(session, patient_id)
    changed = request.changed_fields()
    for name in changed:
        setattr(patient, name, getattr(request, name))
    patient.updated_at = utcnow()
    session.add(patient)
    session.commit()
    session.refresh(patient)
    logger.info("patient_updated", patient_id=str(patient_id), fields=changed)
    return patient


def delete_patient(session: Session, patient_id: UUID) -> None:
    patient = get_patient(session, patient_id)
    patient.deleted = True
    session.add(patient)
    session.commit()
    logger.info("patient_soft_deleted", patient_id=str(patient_id))

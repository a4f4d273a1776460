from typing import Optional
from uuid import UUID

from sqlmodel import Session, func, select

from ..core.clock import utcnow
from ..core.errors import RecordNotFound
from ..core.logging import get_logger
from ..models.ClinicalRecord import ClinicalRecord, CreateClinicalRecordRequest, UpdateClinicalRecordRequest
from ..patients.service import MAX_PAGE_SIZE, get_patient

logger = get_logger(__name__)

# Only plaintext columns can be ordered in SQL
SORTABLE_COLUMNS = {
    "created_at": ClinicalRecord.created_at,
    "updated_at": ClinicalRecord.updated_at,
    "record_type": ClinicalRecord.record_type,
}


def create_clinical_record(session: Session, request: CreateClinicalRecordRequest) -> ClinicalRecord:
    # No foreign key: the patient must exist and be active when the record is written
    get_patient(session, request.patient_id)

    record = ClinicalRecord(
        patient_id=request.patient_id,
        record_type=request.record_type,
        diagnosis=request.diagnosis,
        treatment_plan=request.treatment_plan,
        notes=request.notes,
        medications=request.medications,
        visit_date=request.visit_date,
        attending_physician=request.attending_physician,
    )
    session.add(record)
    session.commit()
    session.refresh(record)
    logger.info("clinical_record_created", record_id=str(record.id), patient_id=str(record.patient_id))
    return record


def get_clinical_record(session: Session, record_id: UUID) -> ClinicalRecord:
    record = session.get(ClinicalRecord, record_id)
    if record is None or record.deleted:
        raise RecordNotFound(f"Clinical record not found with ID: {record_id}")
    return record


def list_clinical_records(
    session: Session,
    patient_id: UUID,
    record_type: Optional[str] = None,
    page: int = 0,
    size: int = 20,
    sort_by: str = "created_at",
    descending: bool = True,
) -> tuple[list[ClinicalRecord], int]:
    """Active records of an active patient, optionally of one record type."""
    get_patient(session, patient_id)
    if sort_by not in SORTABLE_COLUMNS:
        raise ValueError(f"Cannot sort clinical records by {sort_by}")

    size = max(1, min(size, MAX_PAGE_SIZE))
    page = max(0, page)
    conditions = [
        ClinicalRecord.patient_id == patient_id,
        ClinicalRecord.deleted == False,  # noqa: E712
    ]
    if record_type:
        conditions.append(ClinicalRecord.record_type == record_type)

    total = session.exec(select(func.count()).select_from(ClinicalRecord).where(*conditions)).one()
    column = SORTABLE_COLUMNS[sort_by]
    statement = (
        select(ClinicalRecord)
        .where(*conditions)
        .order_by(column.desc() if descending else column.asc(), ClinicalRecord.id.asc())
        .offset(page * size)
        .limit(size)
    )
    return list(session.exec(statement).all()), total


def update_clinical_record(session: Session, record_id: UUID,
                           request: UpdateClinicalRecordRequest) -> ClinicalRecord:
    record = get_clinical_record(session, record_id)
    changed = request.changed_fields()
    for name in changed:
        setattr(record, name, getattr(request, name))
    record.updated_at = utcnow()
    session.add(record)
    session.commit()
    session.refresh(record)
    logger.info("clinical_record_updated", record_id=str(record_id), fields=changed)
    return record


def delete_clinical_record(session: Session, record_id: UUID) -> None:
    record = get_clinical_record(session, record_id)
    record.deleted = True
    session.add(record)
    session.commit()
    logger.info("clinical_record_soft_deleted", record_id=str(record_id))

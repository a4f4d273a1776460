from typing import Any, Literal, Mapping, Optional
from uuid import UUID

from fastapi import APIRouter, Depends, Query, Request, Response, status
from sqlmodel import Session, SQLModel

from ..audit.policy import audited
from ..auth.service import require_roles
from ..core.database import get_session
from ..models.ClinicalRecord import (
    ClinicalRecordResponse,
    CreateClinicalRecordRequest,
    RecordType,
    UpdateClinicalRecordRequest,
)
from ..models.User import CLINICAL_ROLES, Role, User
from .service import (
    create_clinical_record,
    delete_clinical_record,
    get_clinical_record,
    list_clinical_records,
    update_clinical_record,
    MAX_PAGE_SIZE,
)

router = APIRouter(prefix="/clinical-records", tags=["clinical-records"])

clinical_staff = require_roles(*CLINICAL_ROLES)
admin_only = require_roles(Role.ADMIN.value)


class ClinicalRecordPage(SQLModel):
    items: list[ClinicalRecordResponse]
    page: int
    size: int
    total: int


def _created_for_patient(inputs: Mapping[str, Any], result: Any) -> str:
    return f"Created clinical record for patient ID: {result.patient_id}"


def _listed_page(inputs: Mapping[str, Any], result: Any) -> str:
    detail = (
        f"Listed clinical records for patient ID: {inputs['patient_id']}"
        f" - page: {result.page}, size: {result.size}"
    )
    record_type = inputs.get("record_type")
    if record_type is not None:
        detail += f", recordType: {record_type.value}"
    return detail


def _updated_fields(inputs: Mapping[str, Any], result: Any) -> str:
    # Field names only; the request also carries the new values
    return f"Updated fields: {inputs['payload'].changed_fields()}"


@router.post("", response_model=ClinicalRecordResponse, status_code=status.HTTP_201_CREATED)
@audited("CLINICAL_RECORD_CREATED", "CLINICAL_RECORD", detail_rule=_created_for_patient)
def create_clinical_record_endpoint(
    payload: CreateClinicalRecordRequest,
    request: Request,
    current_user: User = Depends(clinical_staff),
    session: Session = Depends(get_session),
):
    return ClinicalRecordResponse.from_record(create_clinical_record(session, payload))


@router.get("/patient/{patient_id}", response_model=ClinicalRecordPage)
@audited("CLINICAL_RECORD_LIST_VIEWED", "CLINICAL_RECORD", detail_rule=_listed_page)
def list_clinical_records_endpoint(
    patient_id: UUID,
    request: Request,
    record_type: Optional[RecordType] = Query(default=None),
    page: int = Query(default=0, ge=0),
    size: int = Query(default=20, ge=1),
    sort_by: Literal["created_at", "updated_at", "record_type"] = Query(default="created_at"),
    direction: Literal["asc", "desc"] = Query(default="desc"),
    current_user: User = Depends(clinical_staff),
    session: Session = Depends(get_session),
):
    records, total = list_clinical_records(
        session,
        patient_id,
        record_type=record_type.value if record_type is not None else None,
        page=page,
        size=size,
        sort_by=sort_by,
        descending=direction == "desc",
    )
    return ClinicalRecordPage(
        items=[ClinicalRecordResponse.from_record(r) for r in records],
        page=page,
        size=min(size, MAX_PAGE_SIZE),
        total=total,
    )


@router.get("/{id}", response_model=ClinicalRecordResponse)
@audited("CLINICAL_RECORD_VIEWED", "CLINICAL_RECORD", detail="Viewed clinical record")
def get_clinical_record_endpoint(
    id: UUID,
    request: Request,
    current_user: User = Depends(clinical_staff),
    session: Session = Depends(get_session),
):
    return ClinicalRecordResponse.from_record(get_clinical_record(session, id))


@router.put("/{id}", response_model=ClinicalRecordResponse)
@audited("CLINICAL_RECORD_UPDATED", "CLINICAL_RECORD", detail_rule=_updated_fields)
def update_clinical_record_endpoint(
    id: UUID,
    payload: UpdateClinicalRecordRequest,
    request: Request,
    current_user: User = Depends(clinical_staff),
    session: Session = Depends(get_session),
):
    return ClinicalRecordResponse.from_record(update_clinical_record(session, id, payload))


@router.delete("/{id}", status_code=status.HTTP_204_NO_CONTENT)
@audited("CLINICAL_RECORD_DELETED", "CLINICAL_RECORD", detail="Soft-deleted clinical record")
def delete_clinical_record_endpoint(
    id: UUID,
    request: Request,
    current_user: User = Depends(admin_only),
    session: Session = Depends(get_session),
):
    delete_clinical_record(session, id)
    return Response(status_code=status.HTTP_204_NO_CONTENT)

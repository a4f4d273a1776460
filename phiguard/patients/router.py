from typing import Any, Mapping
from uuid import UUID

from fastapi import APIRouter, Depends, Query, Request, Response, status
from sqlmodel import Session, SQLModel

from ..audit.policy import audited
from ..auth.service import require_roles
from ..core.database import get_session
from ..models.Patient import CreatePatientRequest, PatientResponse, UpdatePatientRequest
from ..models.User import CLINICAL_ROLES, Role, User
from .service import (
    create_patient,
    delete_patient,
    get_patient,
    get_patient_by_medical_record_number,
    list_patients,
    update_patient,
    MAX_PAGE_SIZE,
)

router = APIRouter(prefix="/patients", tags=["patients"])

clinical_staff = require_roles(*CLINICAL_ROLES)
admin_only = require_roles(Role.ADMIN.value)


class PatientPage(SQLModel):
    items: list[PatientResponse]
    page: int
    size: int
    total: int


def _updated_fields(inputs: Mapping[str, Any], result: Any) -> str:
    # Field names only; the request also carries the new values
    return f"Updated fields: {inputs['payload'].changed_fields()}"


def _listed_page(inputs: Mapping[str, Any], result: Any) -> str:
    return f"Listed patients - page: {result.page}, size: {result.size}"


@router.post("", response_model=PatientResponse, status_code=status.HTTP_201_CREATED)
@audited("PATIENT_CREATED", "PATIENT", detail="Created patient record")
def create_patient_endpoint(
    payload: CreatePatientRequest,
    request: Request,
    current_user: User = Depends(clinical_staff),
    session: Session = Depends(get_session),
):
    return PatientResponse.from_patient(create_patient(session, payload))


@router.get("", response_model=PatientPage)
@audited("PATIENT_LIST_VIEWED", "PATIENT", detail_rule=_listed_page)
def list_patients_endpoint(
    request: Request,
    page: int = Query(default=0, ge=0),
    size: int = Query(default=20, ge=1),
    current_user: User = Depends(clinical_staff),
    session: Session = Depends(get_session),
):
    patients, total = list_patients(session, page, size)
    return PatientPage(
        items=[PatientResponse.from_patient(p) for p in patients],
        page=page,
        size=min(size, MAX_PAGE_SIZE),
        total=total,
    )


@router.get("/mrn/{mrn}", response_model=PatientResponse)
@audited("PATIENT_VIEWED", "PATIENT", detail="Viewed patient by MRN")
def get_patient_by_mrn_endpoint(
    mrn: str,
    request: Request,
    current_user: User = Depends(clinical_staff),
    session: Session = Depends(get_session),
):
    return PatientResponse.from_patient(get_patient_by_medical_record_number(session, mrn))


@router.get("/{id}", response_model=PatientResponse)
@audited("PATIENT_VIEWED", "PATIENT", detail="Viewed patient record")
def get_patient_endpoint(
    id: UUID,
    request: Request,
    current_user: User = Depends(clinical_staff),
    session: Session = Depends(get_session),
):
    return PatientResponse.from_patient(get_patient(session, id))


@router.put("/{id}", response_model=PatientResponse)
@audited("PATIENT_UPDATED", "PATIENT", detail_rule=_updated_fields)
def update_patient_endpoint(
    id: UUID,
    payload: UpdatePatientRequest,
    request: Request,
    current_user: User = Depends(clinical_staff),
    session: Session = Depends(get_session),
):
    return PatientResponse.from_patient(update_patient(session, id, payload))


@router.delete("/{id}", status_code=status.HTTP_204_NO_CONTENT)
@audited("PATIENT_DELETED", "PATIENT", detail="Soft-deleted patient record")
def delete_patient_endpoint(
    id: UUID,
    request: Request,
    current_user: User = Depends(admin_only),
    session: Session = Depends(get_session),
):
    delete_patient(session, id)
    return Response(status_code=status.HTTP_204_NO_CONTENT)
